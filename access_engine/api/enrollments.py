"""Learner enrollment and progress endpoints.

Lesson progress and quiz submissions may complete the enrollment.  The
completion cascade (notification + certificate) is handed to FastAPI
BackgroundTasks, so it runs after the response has been produced and
never delays or fails the learner's request.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import BaseModel, Field

from access_engine.api.dependencies import get_tracker, require_role, require_user
from access_engine.api.ratelimit import require_rate_limit
from access_engine.models.enrollment import Enrollment
from access_engine.models.principal import Principal
from access_engine.services.progress_tracker import (
    CourseOutline,
    ProgressTracker,
    ProgressUpdate,
)
from access_engine.services.rate_limiter import PROGRESS_LIMIT, QUIZ_SUBMIT_LIMIT

router = APIRouter(tags=["enrollments"])

_progress_limit = require_rate_limit("progress", PROGRESS_LIMIT)
_quiz_limit = require_rate_limit("quiz", QUIZ_SUBMIT_LIMIT)


# --- Pydantic schemas ---


class EnrollIn(BaseModel):
    course_id: UUID


class LessonProgressOut(BaseModel):
    lesson_id: UUID
    completed: bool
    completed_at: int | None
    time_spent_minutes: int


class QuizAttemptOut(BaseModel):
    attempt_number: int
    score: int
    total_points: int
    passed: bool
    completed_at: int


class QuizHistoryOut(BaseModel):
    quiz_id: UUID
    best_score: int
    attempts: list[QuizAttemptOut]


class EnrollmentOut(BaseModel):
    id: UUID
    user_id: UUID
    course_id: UUID
    org_id: UUID | None
    status: str
    progress_percentage: int
    enrolled_at: int
    completed_at: int | None
    last_accessed_at: int | None
    lesson_progress: list[LessonProgressOut]
    quiz_attempts: list[QuizHistoryOut]


class LessonProgressIn(BaseModel):
    completed: bool = True
    time_spent_minutes: int = Field(default=0, ge=0)


class ProgressUpdateOut(BaseModel):
    enrollment: EnrollmentOut
    completed_now: bool


class QuizSubmitIn(BaseModel):
    # question id -> answer; a list for multi-answer questions
    answers: dict[str, str | list[str]]


class QuizSubmissionOut(BaseModel):
    score: int
    passed: bool
    total_points: int
    earned_points: int
    correct_count: int
    total_questions: int
    attempt_number: int
    enrollment: EnrollmentOut
    completed_now: bool


class LessonStateOut(BaseModel):
    lesson_id: UUID
    position: int
    title: str
    locked: bool
    completed: bool


class QuizStateOut(BaseModel):
    quiz_id: UUID
    title: str
    locked: bool
    can_retake: bool
    passed: bool
    best_score: int
    attempts: int
    max_attempts: int | None


class OutlineOut(BaseModel):
    enrollment: EnrollmentOut
    lessons: list[LessonStateOut]
    quizzes: list[QuizStateOut]


def _enrollment_out(e: Enrollment) -> EnrollmentOut:
    return EnrollmentOut(
        id=e.id,
        user_id=e.user_id,
        course_id=e.course_id,
        org_id=e.org_id,
        status=e.status,
        progress_percentage=e.progress_percentage,
        enrolled_at=e.enrolled_at,
        completed_at=e.completed_at,
        last_accessed_at=e.last_accessed_at,
        lesson_progress=[
            LessonProgressOut(
                lesson_id=p.lesson_id,
                completed=p.completed,
                completed_at=p.completed_at,
                time_spent_minutes=p.time_spent_minutes,
            )
            for p in e.lesson_progress
        ],
        quiz_attempts=[
            QuizHistoryOut(
                quiz_id=h.quiz_id,
                best_score=h.best_score,
                attempts=[
                    QuizAttemptOut(
                        attempt_number=a.attempt_number,
                        score=a.score,
                        total_points=a.total_points,
                        passed=a.passed,
                        completed_at=a.completed_at,
                    )
                    for a in h.attempts
                ],
            )
            for h in e.quiz_attempts
        ],
    )


def _update_out(update: ProgressUpdate) -> ProgressUpdateOut:
    return ProgressUpdateOut(
        enrollment=_enrollment_out(update.enrollment),
        completed_now=update.completed_now,
    )


def _outline_out(outline: CourseOutline) -> OutlineOut:
    return OutlineOut(
        enrollment=_enrollment_out(outline.enrollment),
        lessons=[
            LessonStateOut(
                lesson_id=s.lesson_id,
                position=s.position,
                title=s.title,
                locked=s.locked,
                completed=s.completed,
            )
            for s in outline.lessons
        ],
        quizzes=[
            QuizStateOut(
                quiz_id=s.quiz_id,
                title=s.title,
                locked=s.locked,
                can_retake=s.can_retake,
                passed=s.passed,
                best_score=s.best_score,
                attempts=s.attempts,
                max_attempts=s.max_attempts,
            )
            for s in outline.quizzes
        ],
    )


# ---------------------------------------------------------------------------
# Enrollment lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/v1/enrollments", response_model=EnrollmentOut, status_code=status.HTTP_201_CREATED
)
async def enroll(
    body: EnrollIn,
    principal: Annotated[Principal, Depends(require_user)],
    tracker: Annotated[ProgressTracker, Depends(get_tracker)],
) -> EnrollmentOut:
    enrollment = await tracker.enroll(principal.user_id, body.course_id)
    return _enrollment_out(enrollment)


@router.get("/v1/enrollments/me", response_model=list[EnrollmentOut])
async def my_enrollments(
    principal: Annotated[Principal, Depends(require_user)],
    tracker: Annotated[ProgressTracker, Depends(get_tracker)],
) -> list[EnrollmentOut]:
    return [
        _enrollment_out(e) for e in await tracker.list_user_enrollments(principal.user_id)
    ]


@router.get("/v1/enrollments/{enrollment_id}", response_model=EnrollmentOut)
async def get_enrollment(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    tracker: Annotated[ProgressTracker, Depends(get_tracker)],
) -> EnrollmentOut:
    return _enrollment_out(await tracker.get_enrollment(enrollment_id, principal.user_id))


@router.get("/v1/enrollments/{enrollment_id}/outline", response_model=OutlineOut)
async def course_outline(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    tracker: Annotated[ProgressTracker, Depends(get_tracker)],
) -> OutlineOut:
    """Lessons and quizzes of the enrolled course with their lock state."""
    return _outline_out(await tracker.course_outline(enrollment_id, principal.user_id))


@router.delete("/v1/enrollments/{enrollment_id}", response_model=EnrollmentOut)
async def drop_enrollment(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    tracker: Annotated[ProgressTracker, Depends(get_tracker)],
) -> EnrollmentOut:
    return _enrollment_out(await tracker.drop(enrollment_id, principal.user_id))


@router.get("/v1/courses/{course_id}/enrollments", response_model=list[EnrollmentOut])
async def list_course_enrollments(
    course_id: UUID,
    _principal: Annotated[Principal, Depends(require_role("admin"))],
    tracker: Annotated[ProgressTracker, Depends(get_tracker)],
) -> list[EnrollmentOut]:
    return [_enrollment_out(e) for e in await tracker.list_course_enrollments(course_id)]


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@router.put(
    "/v1/enrollments/{enrollment_id}/lessons/{lesson_id}",
    response_model=ProgressUpdateOut,
    dependencies=[Depends(_progress_limit)],
)
async def record_lesson_progress(
    enrollment_id: UUID,
    lesson_id: UUID,
    body: LessonProgressIn,
    background_tasks: BackgroundTasks,
    principal: Annotated[Principal, Depends(require_user)],
    tracker: Annotated[ProgressTracker, Depends(get_tracker)],
) -> ProgressUpdateOut:
    update = await tracker.record_lesson_progress(
        enrollment_id,
        principal.user_id,
        lesson_id,
        body.completed,
        time_spent_minutes=body.time_spent_minutes,
        defer=background_tasks.add_task,
    )
    return _update_out(update)


@router.post(
    "/v1/enrollments/{enrollment_id}/quizzes/{quiz_id}/submit",
    response_model=QuizSubmissionOut,
    dependencies=[Depends(_quiz_limit)],
)
async def submit_quiz(
    enrollment_id: UUID,
    quiz_id: UUID,
    body: QuizSubmitIn,
    background_tasks: BackgroundTasks,
    principal: Annotated[Principal, Depends(require_user)],
    tracker: Annotated[ProgressTracker, Depends(get_tracker)],
) -> QuizSubmissionOut:
    submission = await tracker.submit_quiz(
        enrollment_id,
        principal.user_id,
        quiz_id,
        body.answers,
        defer=background_tasks.add_task,
    )
    grade = submission.grade
    return QuizSubmissionOut(
        score=grade.score,
        passed=grade.passed,
        total_points=grade.total_points,
        earned_points=grade.earned_points,
        correct_count=grade.correct_count,
        total_questions=grade.total_questions,
        attempt_number=submission.attempt.attempt_number,
        enrollment=_enrollment_out(submission.update.enrollment),
        completed_now=submission.update.completed_now,
    )
