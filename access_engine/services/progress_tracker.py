"""Progress tracker: enrollments, lesson/quiz progress and completion.

Every mutation of an enrollment is a read / compute / compare-and-swap
loop on Enrollment.version:

    1. load the enrollment
    2. apply the change and recompute progress_percentage from catalog
       counts fetched fresh for this attempt
    3. if the result reaches 100% while ACTIVE, flip to COMPLETED
    4. save_if_version(expected = version read in step 1)
       - lost the race: back to 1 (bounded by max_retries)

Only the writer whose CAS carried the ACTIVE -> COMPLETED edge sees
completed_now=True, and only that writer runs the completion cascade.
COMPLETED never goes back to ACTIVE, so the cascade runs at most once
per enrollment no matter how many submissions race.

The cascade runs after the write.  HTTP handlers pass ``defer`` (FastAPI
BackgroundTasks.add_task) so it runs after the request transaction has
committed; in-process callers omit it and the cascade is awaited inline.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from access_engine.core.clock import Clock, utc_now
from access_engine.core.errors import (
    LESSON_LOCKED,
    LICENSE_EXPIRED,
    LICENSE_INACTIVE,
    NO_LICENSE,
    NO_SEATS,
    NOT_ENROLLED,
    PREREQUISITES_UNMET,
    RETAKE_NOT_ALLOWED,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from access_engine.core.metrics import ENROLLMENT_COMPLETIONS, PROGRESS_WRITE_CONFLICTS
from access_engine.models.course import Course, Quiz
from access_engine.models.enrollment import (
    ACTIVE,
    COMPLETED,
    DROPPED,
    Enrollment,
    LessonProgress,
    QuizAttempt,
    QuizAttemptHistory,
)
from access_engine.repos.catalog_repo import CourseCatalog
from access_engine.repos.enrollment_repo import EnrollmentRepo
from access_engine.services import access_gate, quiz_grader
from access_engine.services.access_gate import LessonState, QuizState
from access_engine.services.collaborators import (
    COURSE_ENROLLED,
    QUIZ_FAILED,
    QUIZ_PASSED,
    Notifier,
)
from access_engine.services.completion_cascade import (
    CompletionCascade,
    build_snapshot,
)
from access_engine.services.entitlement_ledger import EntitlementLedger
from access_engine.services.quiz_grader import Answer, GradeResult

logger = logging.getLogger(__name__)

Defer = Callable[..., Any]

_DENIAL_MESSAGES = {
    NO_SEATS: "No seats available for this course. Please contact your administrator.",
    LICENSE_EXPIRED: "Your organization's license for this course has expired.",
    LICENSE_INACTIVE: "Your organization's license for this course is not active yet.",
    NO_LICENSE: (
        "This is a paid course. Please contact your administrator to purchase access."
    ),
}


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    enrollment: Enrollment
    completed_now: bool = False


@dataclass(frozen=True, slots=True)
class QuizSubmission:
    grade: GradeResult
    attempt: QuizAttempt
    update: ProgressUpdate


@dataclass(frozen=True, slots=True)
class CourseOutline:
    enrollment: Enrollment
    lessons: list[LessonState]
    quizzes: list[QuizState]


class ProgressTracker:
    def __init__(
        self,
        enrollments: EnrollmentRepo,
        catalog: CourseCatalog,
        ledger: EntitlementLedger,
        cascade: CompletionCascade,
        notifier: Notifier,
        *,
        clock: Clock = utc_now,
        max_retries: int = 5,
    ) -> None:
        self._enrollments = enrollments
        self._catalog = catalog
        self._ledger = ledger
        self._cascade = cascade
        self._notifier = notifier
        self._clock = clock
        self._max_retries = max_retries

    # ------------------------------------------------------------------
    # Enrollment lifecycle
    # ------------------------------------------------------------------

    async def enroll(
        self, user_id: UUID, course_id: UUID, *, bypass_entitlement: bool = False
    ) -> Enrollment:
        course = await self._catalog.get_course(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        if not course.is_published:
            raise ConflictError("Cannot enroll in unpublished course")

        existing = await self._enrollments.get_by_user_course(user_id, course_id)
        if existing is not None and existing.status == ACTIVE:
            raise ConflictError("Already enrolled in this course")
        if existing is not None and existing.status == COMPLETED:
            raise ConflictError("Course already completed")

        if not bypass_entitlement:
            await self._check_entitlement(user_id, course)

        now = self._clock()
        if existing is not None:
            update = await self._mutate(
                existing.id,
                user_id,
                lambda e: _reactivate(e, now),
                recompute=False,
            )
            enrollment = update.enrollment
        else:
            enrollment = Enrollment.new(
                user_id=user_id, course_id=course_id, org_id=course.org_id, now=now
            )
            if not await self._enrollments.add(enrollment):
                raise ConflictError("Already enrolled in this course")

        logger.info(
            "User %s enrolled in course %s",
            user_id,
            course_id,
            extra={"enrollment_id": str(enrollment.id), "course_id": str(course_id)},
        )
        await self._notify(
            user_id,
            enrollment.org_id,
            COURSE_ENROLLED,
            {"course_id": str(course_id), "course_title": course.title},
        )
        return enrollment

    async def drop(self, enrollment_id: UUID, user_id: UUID) -> Enrollment:
        def _drop(current: Enrollment) -> Enrollment:
            if current.status != ACTIVE:
                raise BadRequestError("Only active enrollments can be dropped")
            return dataclasses.replace(
                current, status=DROPPED, last_accessed_at=self._clock()
            )

        update = await self._mutate(enrollment_id, user_id, _drop, recompute=False)
        logger.info(
            "Enrollment %s dropped",
            enrollment_id,
            extra={"enrollment_id": str(enrollment_id)},
        )
        return update.enrollment

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def record_lesson_progress(
        self,
        enrollment_id: UUID,
        user_id: UUID,
        lesson_id: UUID,
        completed: bool,
        *,
        time_spent_minutes: int = 0,
        defer: Defer | None = None,
    ) -> ProgressUpdate:
        if time_spent_minutes < 0:
            raise BadRequestError("time_spent_minutes must be >= 0")
        enrollment = await self._load(enrollment_id, user_id)
        lessons = await self._catalog.list_lessons(enrollment.course_id)
        index = next((i for i, ls in enumerate(lessons) if ls.id == lesson_id), None)
        if index is None:
            raise NotFoundError("Lesson not found in this course")

        def _apply(current: Enrollment) -> Enrollment:
            _require_not_dropped(current)
            entry = current.lesson(lesson_id) or LessonProgress(lesson_id=lesson_id)
            if (
                completed
                and not entry.completed
                and access_gate.lesson_locked(lessons, current, index)
            ):
                raise ForbiddenError(
                    "Complete the previous lesson first", reason=LESSON_LOCKED
                )
            now = self._clock()
            updated_entry = LessonProgress(
                lesson_id=lesson_id,
                completed=completed,
                completed_at=(entry.completed_at or now) if completed else None,
                time_spent_minutes=entry.time_spent_minutes + time_spent_minutes,
            )
            return dataclasses.replace(
                current,
                lesson_progress=_upsert_lesson(current.lesson_progress, updated_entry),
                last_accessed_at=now,
            )

        update = await self._mutate(enrollment_id, user_id, _apply)
        await self._after_write(update, defer)
        return update

    async def submit_quiz(
        self,
        enrollment_id: UUID,
        user_id: UUID,
        quiz_id: UUID,
        answers: Mapping[str, Answer],
        *,
        defer: Defer | None = None,
    ) -> QuizSubmission:
        enrollment = await self._load(enrollment_id, user_id)
        if enrollment.status == DROPPED:
            raise ForbiddenError(
                "You must be enrolled in this course", reason=NOT_ENROLLED
            )
        quiz = await self._require_quiz(quiz_id, enrollment.course_id)
        if access_gate.quiz_locked(quiz, enrollment):
            raise ForbiddenError("Quiz prerequisites not met", reason=PREREQUISITES_UNMET)
        if not access_gate.quiz_retake_allowed(quiz, enrollment.quiz_history(quiz_id)):
            raise ForbiddenError(
                "Maximum attempts reached or already passed", reason=RETAKE_NOT_ALLOWED
            )

        result = quiz_grader.grade(quiz, answers)
        update = await self._append_attempt(
            enrollment_id, user_id, quiz, result, enforce_retake=True, defer=defer
        )
        history = update.enrollment.quiz_history(quiz_id)
        attempt = history.attempts[-1]  # type: ignore[union-attr]

        await self._notify(
            user_id,
            update.enrollment.org_id,
            QUIZ_PASSED if result.passed else QUIZ_FAILED,
            {
                "quiz_id": str(quiz_id),
                "quiz_title": quiz.title,
                "course_id": str(quiz.course_id),
                "passed": result.passed,
                "score": result.score,
            },
        )
        return QuizSubmission(grade=result, attempt=attempt, update=update)

    async def record_quiz_attempt(
        self,
        enrollment_id: UUID,
        user_id: UUID,
        quiz_id: UUID,
        result: GradeResult,
        *,
        defer: Defer | None = None,
    ) -> ProgressUpdate:
        """Append an already-graded attempt (e.g. graded elsewhere)."""
        enrollment = await self._load(enrollment_id, user_id)
        quiz = await self._require_quiz(quiz_id, enrollment.course_id)
        return await self._append_attempt(
            enrollment_id, user_id, quiz, result, enforce_retake=False, defer=defer
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_enrollment(
        self, enrollment_id: UUID, user_id: UUID | None = None
    ) -> Enrollment:
        return await self._load(enrollment_id, user_id)

    async def list_user_enrollments(self, user_id: UUID) -> list[Enrollment]:
        return await self._enrollments.list_by_user(user_id)

    async def list_course_enrollments(self, course_id: UUID) -> list[Enrollment]:
        return await self._enrollments.list_by_course(course_id)

    async def course_outline(self, enrollment_id: UUID, user_id: UUID) -> CourseOutline:
        enrollment = await self._load(enrollment_id, user_id)
        lessons = await self._catalog.list_lessons(enrollment.course_id)
        quizzes = await self._catalog.list_quizzes(enrollment.course_id)
        progress = None if enrollment.status == DROPPED else enrollment
        return CourseOutline(
            enrollment=enrollment,
            lessons=access_gate.lesson_states(lessons, progress),
            quizzes=access_gate.quiz_states(quizzes, progress),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _check_entitlement(self, user_id: UUID, course: Course) -> None:
        if course.is_free or course.catalog_course_id is None:
            return
        entry = await self._catalog.get_catalog_entry(course.catalog_course_id)
        if entry is not None and entry.is_free:
            return
        decision = await self._ledger.authorize_enrollment(
            user_id, course.catalog_course_id
        )
        if not decision.allowed:
            reason = decision.reason or NO_LICENSE
            logger.warning(
                "Enrollment refused user=%s course=%s reason=%s",
                user_id,
                course.id,
                reason,
                extra={"course_id": str(course.id)},
            )
            raise ForbiddenError(_DENIAL_MESSAGES[reason], reason=reason)

    async def _load(self, enrollment_id: UUID, user_id: UUID | None) -> Enrollment:
        enrollment = await self._enrollments.get(enrollment_id)
        if enrollment is None or (user_id is not None and enrollment.user_id != user_id):
            raise NotFoundError("Enrollment not found")
        return enrollment

    async def _require_quiz(self, quiz_id: UUID, course_id: UUID) -> Quiz:
        quiz = await self._catalog.get_quiz(quiz_id)
        if quiz is None or quiz.course_id != course_id:
            raise NotFoundError("Quiz not found in this course")
        return quiz

    async def _append_attempt(
        self,
        enrollment_id: UUID,
        user_id: UUID,
        quiz: Quiz,
        result: GradeResult,
        *,
        enforce_retake: bool,
        defer: Defer | None,
    ) -> ProgressUpdate:
        def _apply(current: Enrollment) -> Enrollment:
            _require_not_dropped(current)
            history = current.quiz_history(quiz.id) or QuizAttemptHistory(quiz_id=quiz.id)
            # re-checked against the version being written: two racing
            # submissions cannot both use the last allowed attempt
            if enforce_retake and not access_gate.quiz_retake_allowed(quiz, history):
                raise ForbiddenError(
                    "Maximum attempts reached or already passed",
                    reason=RETAKE_NOT_ALLOWED,
                )
            now = self._clock()
            attempt = QuizAttempt(
                attempt_number=len(history.attempts) + 1,
                score=result.score,
                total_points=result.total_points,
                passed=result.passed,
                completed_at=now,
            )
            updated_history = QuizAttemptHistory(
                quiz_id=quiz.id,
                attempts=(*history.attempts, attempt),
                best_score=max(history.best_score, result.score),
            )
            return dataclasses.replace(
                current,
                quiz_attempts=_upsert_quiz(current.quiz_attempts, updated_history),
                last_accessed_at=now,
            )

        update = await self._mutate(enrollment_id, user_id, _apply)
        await self._after_write(update, defer)
        return update

    async def _mutate(
        self,
        enrollment_id: UUID,
        user_id: UUID,
        change: Callable[[Enrollment], Enrollment | Awaitable[Enrollment]],
        *,
        recompute: bool = True,
    ) -> ProgressUpdate:
        for _ in range(self._max_retries):
            current = await self._load(enrollment_id, user_id)
            changed = change(current)
            if isinstance(changed, Awaitable):
                changed = await changed

            completed_now = False
            if recompute:
                pct = await self._percentage(changed)
                changed = dataclasses.replace(changed, progress_percentage=pct)
                if changed.status == ACTIVE and pct >= 100:
                    changed = dataclasses.replace(
                        changed, status=COMPLETED, completed_at=self._clock()
                    )
                    completed_now = True

            stored = await self._enrollments.save_if_version(changed, current.version)
            if stored is not None:
                return ProgressUpdate(enrollment=stored, completed_now=completed_now)

            PROGRESS_WRITE_CONFLICTS.inc()
            logger.debug(
                "Enrollment %s version %d moved, retrying", enrollment_id, current.version
            )

        raise ConflictError("Enrollment was modified concurrently, please retry")

    async def _percentage(self, enrollment: Enrollment) -> int:
        counts = await self._catalog.get_course_counts(enrollment.course_id)
        if counts.total == 0:
            return 0
        lesson_ids = {
            ls.id for ls in await self._catalog.list_lessons(enrollment.course_id)
        }
        quiz_ids = {q.id for q in await self._catalog.list_quizzes(enrollment.course_id)}
        done = len(enrollment.completed_lesson_ids() & lesson_ids) + len(
            enrollment.passed_quiz_ids() & quiz_ids
        )
        return min(100, quiz_grader.percentage(done, counts.total))

    async def _after_write(self, update: ProgressUpdate, defer: Defer | None) -> None:
        enrollment = update.enrollment
        course = await self._catalog.get_course(enrollment.course_id)

        if course is not None and course.catalog_course_id is not None:
            try:
                await self._ledger.mirror_progress(
                    enrollment.user_id,
                    course.catalog_course_id,
                    enrollment.progress_percentage,
                )
            except Exception:
                logger.exception(
                    "Progress mirror failed enrollment=%s", enrollment.id
                )

        if not update.completed_now:
            return

        ENROLLMENT_COMPLETIONS.inc()
        logger.info(
            "Enrollment %s completed user=%s course=%s",
            enrollment.id,
            enrollment.user_id,
            enrollment.course_id,
            extra={
                "enrollment_id": str(enrollment.id),
                "course_id": str(enrollment.course_id),
            },
        )
        snapshot = build_snapshot(enrollment, course.title if course else "")
        if defer is not None:
            defer(self._cascade.run, snapshot)
        else:
            await self._cascade.run(snapshot)

    async def _notify(
        self, user_id: UUID, org_id: UUID | None, type: str, payload: dict[str, Any]
    ) -> None:
        try:
            await self._notifier.notify(user_id, org_id, type, payload)
        except Exception:
            logger.exception("%s notification failed user=%s", type, user_id)


def _require_not_dropped(enrollment: Enrollment) -> None:
    if enrollment.status == DROPPED:
        raise ForbiddenError("Enrollment is not active", reason=NOT_ENROLLED)


def _reactivate(enrollment: Enrollment, now: int) -> Enrollment:
    if enrollment.status != DROPPED:
        raise ConflictError("Already enrolled in this course")
    return dataclasses.replace(enrollment, status=ACTIVE, last_accessed_at=now)


def _upsert_lesson(
    entries: tuple[LessonProgress, ...], entry: LessonProgress
) -> tuple[LessonProgress, ...]:
    if any(e.lesson_id == entry.lesson_id for e in entries):
        return tuple(entry if e.lesson_id == entry.lesson_id else e for e in entries)
    return (*entries, entry)


def _upsert_quiz(
    entries: tuple[QuizAttemptHistory, ...], entry: QuizAttemptHistory
) -> tuple[QuizAttemptHistory, ...]:
    if any(h.quiz_id == entry.quiz_id for h in entries):
        return tuple(entry if h.quiz_id == entry.quiz_id else h for h in entries)
    return (*entries, entry)
