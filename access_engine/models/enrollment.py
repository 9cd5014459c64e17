from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

# Enrollment statuses
ACTIVE = "ACTIVE"
COMPLETED = "COMPLETED"
DROPPED = "DROPPED"


@dataclass(frozen=True, slots=True)
class LessonProgress:
    lesson_id: UUID
    completed: bool = False
    completed_at: int | None = None
    time_spent_minutes: int = 0


@dataclass(frozen=True, slots=True)
class QuizAttempt:
    attempt_number: int
    score: int
    total_points: int
    passed: bool
    completed_at: int


@dataclass(frozen=True, slots=True)
class QuizAttemptHistory:
    quiz_id: UUID
    attempts: tuple[QuizAttempt, ...] = ()
    best_score: int = 0

    @property
    def has_passed(self) -> bool:
        return any(a.passed for a in self.attempts)


@dataclass(frozen=True, slots=True)
class Enrollment:
    """A learner's enrollment in one course.

    lesson_progress and quiz_attempts are stored inline (JSONB in Postgres)
    and the whole record is written with a version check, so a mutation
    either lands on the version it read or is retried.
    """

    id: UUID
    user_id: UUID
    course_id: UUID
    org_id: UUID | None
    enrolled_at: int
    status: str = ACTIVE  # ACTIVE|COMPLETED|DROPPED
    progress_percentage: int = 0
    lesson_progress: tuple[LessonProgress, ...] = ()
    quiz_attempts: tuple[QuizAttemptHistory, ...] = ()
    completed_at: int | None = None
    last_accessed_at: int | None = None
    version: int = 1

    def lesson(self, lesson_id: UUID) -> LessonProgress | None:
        for entry in self.lesson_progress:
            if entry.lesson_id == lesson_id:
                return entry
        return None

    def quiz_history(self, quiz_id: UUID) -> QuizAttemptHistory | None:
        for entry in self.quiz_attempts:
            if entry.quiz_id == quiz_id:
                return entry
        return None

    def completed_lesson_ids(self) -> frozenset[UUID]:
        return frozenset(e.lesson_id for e in self.lesson_progress if e.completed)

    def passed_quiz_ids(self) -> frozenset[UUID]:
        return frozenset(h.quiz_id for h in self.quiz_attempts if h.has_passed)

    @staticmethod
    def new(
        *, user_id: UUID, course_id: UUID, org_id: UUID | None, now: int
    ) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            user_id=user_id,
            course_id=course_id,
            org_id=org_id,
            enrolled_at=now,
            last_accessed_at=now,
        )
