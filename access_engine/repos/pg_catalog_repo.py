"""PostgreSQL implementation of CourseCatalog / CatalogStats."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from access_engine.db.tables import CatalogCourseRow, CourseRow, LessonRow, QuizRow
from access_engine.models.course import (
    CatalogCourse,
    Course,
    CourseCounts,
    Lesson,
    Quiz,
    QuizQuestion,
)


class PgCourseCatalog:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_course(self, course_id: UUID) -> Course | None:
        row = await self._session.get(CourseRow, course_id)
        if row is None:
            return None
        return Course(
            id=row.id,
            org_id=row.org_id,
            title=row.title,
            status=row.status,
            catalog_course_id=row.catalog_course_id,
            is_free=row.is_free,
        )

    async def is_course_published(self, course_id: UUID) -> bool:
        stmt = select(CourseRow.status).where(CourseRow.id == course_id)
        status = (await self._session.execute(stmt)).scalar_one_or_none()
        return status == "published"

    async def list_lessons(self, course_id: UUID) -> list[Lesson]:
        stmt = (
            select(LessonRow)
            .where(LessonRow.course_id == course_id)
            .order_by(LessonRow.position)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [
            Lesson(
                id=r.id,
                course_id=r.course_id,
                position=r.position,
                title=r.title,
                duration_minutes=r.duration_minutes,
            )
            for r in rows
        ]

    async def list_quizzes(self, course_id: UUID) -> list[Quiz]:
        stmt = (
            select(QuizRow).where(QuizRow.course_id == course_id).order_by(QuizRow.position)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_quiz(r) for r in rows]

    async def get_quiz(self, quiz_id: UUID) -> Quiz | None:
        row = await self._session.get(QuizRow, quiz_id)
        if row is None:
            return None
        return _row_to_quiz(row)

    async def get_course_counts(self, course_id: UUID) -> CourseCounts:
        lesson_count = (
            await self._session.execute(
                select(func.count())
                .select_from(LessonRow)
                .where(LessonRow.course_id == course_id)
            )
        ).scalar_one()
        quiz_count = (
            await self._session.execute(
                select(func.count())
                .select_from(QuizRow)
                .where(QuizRow.course_id == course_id)
            )
        ).scalar_one()
        return CourseCounts(lesson_count=lesson_count, quiz_count=quiz_count)

    async def get_catalog_entry(self, catalog_course_id: UUID) -> CatalogCourse | None:
        row = await self._session.get(CatalogCourseRow, catalog_course_id)
        if row is None:
            return None
        return CatalogCourse(
            id=row.id,
            title=row.title,
            is_free=row.is_free,
            purchase_count=row.purchase_count,
            enrollment_count=row.enrollment_count,
        )

    async def increment_purchase_count(self, catalog_course_id: UUID) -> None:
        await self._session.execute(
            update(CatalogCourseRow)
            .where(CatalogCourseRow.id == catalog_course_id)
            .values(purchase_count=CatalogCourseRow.purchase_count + 1)
        )

    async def increment_enrollment_count(
        self, catalog_course_id: UUID, n: int = 1
    ) -> None:
        await self._session.execute(
            update(CatalogCourseRow)
            .where(CatalogCourseRow.id == catalog_course_id)
            .values(enrollment_count=CatalogCourseRow.enrollment_count + n)
        )


def _row_to_quiz(row: QuizRow) -> Quiz:
    return Quiz(
        id=row.id,
        course_id=row.course_id,
        title=row.title,
        position=row.position,
        questions=tuple(
            QuizQuestion(
                id=str(q["id"]),
                prompt=q.get("prompt", ""),
                kind=q.get("kind", "short_answer"),
                correct_answer=(
                    tuple(q["correct_answer"])
                    if isinstance(q.get("correct_answer"), list)
                    else q.get("correct_answer", "")
                ),
                points=q.get("points", 1),
                options=tuple(q.get("options", [])),
            )
            for q in row.questions or []
        ),
        passing_score=row.passing_score,
        max_attempts=row.max_attempts,
        required_lesson_ids=tuple(row.required_lesson_ids or []),
    )
