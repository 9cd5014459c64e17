from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

# Question kinds
MULTIPLE_CHOICE = "multiple_choice"
TRUE_FALSE = "true_false"
SHORT_ANSWER = "short_answer"

DEFAULT_PASSING_SCORE = 60


@dataclass(frozen=True, slots=True)
class CatalogCourse:
    """A licensable catalog entry that organizations buy access to."""

    id: UUID
    title: str
    is_free: bool = False
    purchase_count: int = 0
    enrollment_count: int = 0

    @staticmethod
    def new(*, title: str, is_free: bool = False) -> CatalogCourse:
        return CatalogCourse(id=uuid4(), title=title, is_free=is_free)


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    org_id: UUID | None
    title: str
    status: str = "draft"  # draft|published|retired
    catalog_course_id: UUID | None = None
    is_free: bool = False

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    @staticmethod
    def new(
        *,
        title: str,
        org_id: UUID | None = None,
        status: str = "draft",
        catalog_course_id: UUID | None = None,
        is_free: bool = False,
    ) -> Course:
        return Course(
            id=uuid4(),
            org_id=org_id,
            title=title,
            status=status,
            catalog_course_id=catalog_course_id,
            is_free=is_free,
        )


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    course_id: UUID
    position: int
    title: str
    duration_minutes: int = 0

    @staticmethod
    def new(
        *, course_id: UUID, position: int, title: str, duration_minutes: int = 0
    ) -> Lesson:
        return Lesson(
            id=uuid4(),
            course_id=course_id,
            position=position,
            title=title,
            duration_minutes=duration_minutes,
        )


@dataclass(frozen=True, slots=True)
class QuizQuestion:
    id: str
    prompt: str
    kind: str  # multiple_choice|true_false|short_answer
    correct_answer: str | tuple[str, ...]
    points: int = 1
    options: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Quiz:
    id: UUID
    course_id: UUID
    title: str
    position: int = 0
    questions: tuple[QuizQuestion, ...] = ()
    passing_score: int = DEFAULT_PASSING_SCORE
    max_attempts: int | None = None
    required_lesson_ids: tuple[UUID, ...] = ()

    @staticmethod
    def new(
        *,
        course_id: UUID,
        title: str,
        questions: tuple[QuizQuestion, ...],
        position: int = 0,
        passing_score: int | None = None,
        max_attempts: int | None = None,
        required_lesson_ids: tuple[UUID, ...] = (),
    ) -> Quiz:
        return Quiz(
            id=uuid4(),
            course_id=course_id,
            title=title,
            position=position,
            questions=questions,
            passing_score=(
                DEFAULT_PASSING_SCORE if passing_score is None else passing_score
            ),
            max_attempts=max_attempts,
            required_lesson_ids=required_lesson_ids,
        )


@dataclass(frozen=True, slots=True)
class CourseCounts:
    lesson_count: int
    quiz_count: int

    @property
    def total(self) -> int:
        return self.lesson_count + self.quiz_count
