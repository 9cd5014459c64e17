"""Read side of the course catalog, plus the two counters the ledger bumps.

Course authoring lives elsewhere; the engine only needs to read courses,
their lessons and quizzes, and the licensable catalog entry they link to.
"""

from __future__ import annotations

import dataclasses
from typing import Protocol
from uuid import UUID

from access_engine.models.course import (
    CatalogCourse,
    Course,
    CourseCounts,
    Lesson,
    Quiz,
)


class CourseCatalog(Protocol):
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def is_course_published(self, course_id: UUID) -> bool: ...
    async def list_lessons(self, course_id: UUID) -> list[Lesson]: ...
    async def list_quizzes(self, course_id: UUID) -> list[Quiz]: ...
    async def get_quiz(self, quiz_id: UUID) -> Quiz | None: ...
    async def get_course_counts(self, course_id: UUID) -> CourseCounts: ...
    async def get_catalog_entry(self, catalog_course_id: UUID) -> CatalogCourse | None: ...


class CatalogStats(Protocol):
    async def increment_purchase_count(self, catalog_course_id: UUID) -> None: ...
    async def increment_enrollment_count(
        self, catalog_course_id: UUID, n: int = 1
    ) -> None: ...


class InMemoryCourseCatalog:
    """Satisfies both CourseCatalog and CatalogStats.

    The add_* methods are for seeding (dev runs and tests).
    """

    def __init__(self) -> None:
        self._courses: dict[UUID, Course] = {}
        self._lessons: dict[UUID, Lesson] = {}
        self._quizzes: dict[UUID, Quiz] = {}
        self._entries: dict[UUID, CatalogCourse] = {}

    def add_course(self, course: Course) -> None:
        self._courses[course.id] = course

    def add_lesson(self, lesson: Lesson) -> None:
        self._lessons[lesson.id] = lesson

    def add_quiz(self, quiz: Quiz) -> None:
        self._quizzes[quiz.id] = quiz

    def add_catalog_entry(self, entry: CatalogCourse) -> None:
        self._entries[entry.id] = entry

    def remove_lesson(self, lesson_id: UUID) -> None:
        self._lessons.pop(lesson_id, None)

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def is_course_published(self, course_id: UUID) -> bool:
        course = self._courses.get(course_id)
        return course is not None and course.is_published

    async def list_lessons(self, course_id: UUID) -> list[Lesson]:
        found = [ls for ls in self._lessons.values() if ls.course_id == course_id]
        return sorted(found, key=lambda ls: ls.position)

    async def list_quizzes(self, course_id: UUID) -> list[Quiz]:
        found = [q for q in self._quizzes.values() if q.course_id == course_id]
        return sorted(found, key=lambda q: q.position)

    async def get_quiz(self, quiz_id: UUID) -> Quiz | None:
        return self._quizzes.get(quiz_id)

    async def get_course_counts(self, course_id: UUID) -> CourseCounts:
        return CourseCounts(
            lesson_count=sum(
                1 for ls in self._lessons.values() if ls.course_id == course_id
            ),
            quiz_count=sum(1 for q in self._quizzes.values() if q.course_id == course_id),
        )

    async def get_catalog_entry(self, catalog_course_id: UUID) -> CatalogCourse | None:
        return self._entries.get(catalog_course_id)

    async def increment_purchase_count(self, catalog_course_id: UUID) -> None:
        entry = self._entries.get(catalog_course_id)
        if entry is not None:
            self._entries[catalog_course_id] = dataclasses.replace(
                entry, purchase_count=entry.purchase_count + 1
            )

    async def increment_enrollment_count(
        self, catalog_course_id: UUID, n: int = 1
    ) -> None:
        entry = self._entries.get(catalog_course_id)
        if entry is not None:
            self._entries[catalog_course_id] = dataclasses.replace(
                entry, enrollment_count=entry.enrollment_count + n
            )
