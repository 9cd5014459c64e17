"""PostgreSQL implementation of EnrollmentRepo.

Lesson progress and quiz attempts are stored as JSONB arrays on the
enrollment row.  Writes go through save_if_version, an UPDATE guarded by
the version column.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from access_engine.db.tables import EnrollmentRow
from access_engine.models.enrollment import (
    Enrollment,
    LessonProgress,
    QuizAttempt,
    QuizAttemptHistory,
)


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        row = await self._session.get(EnrollmentRow, enrollment_id)
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def get_by_user_course(
        self, user_id: UUID, course_id: UUID
    ) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.user_id == user_id, EnrollmentRow.course_id == course_id
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def add(self, enrollment: Enrollment) -> bool:
        stmt = (
            insert(EnrollmentRow)
            .values(id=enrollment.id, **_enrollment_values(enrollment))
            .on_conflict_do_nothing(index_elements=["user_id", "course_id"])
            .returning(EnrollmentRow.id)
        )
        inserted = (await self._session.execute(stmt)).scalar_one_or_none()
        return inserted is not None

    async def save_if_version(
        self, enrollment: Enrollment, expected_version: int
    ) -> Enrollment | None:
        values = _enrollment_values(enrollment)
        values["version"] = expected_version + 1
        stmt = (
            update(EnrollmentRow)
            .where(
                EnrollmentRow.id == enrollment.id,
                EnrollmentRow.version == expected_version,
            )
            .values(**values)
            .returning(EnrollmentRow.id)
        )
        if (await self._session.execute(stmt)).scalar_one_or_none() is None:
            return None  # version moved on: concurrent writer won
        row = await self._session.get(
            EnrollmentRow, enrollment.id, populate_existing=True
        )
        return _row_to_enrollment(row) if row is not None else None

    async def list_by_user(self, user_id: UUID) -> list[Enrollment]:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.user_id == user_id)
            .order_by(EnrollmentRow.enrolled_at.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_enrollment(r) for r in rows]

    async def list_by_course(self, course_id: UUID) -> list[Enrollment]:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.course_id == course_id)
            .order_by(EnrollmentRow.enrolled_at.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_enrollment(r) for r in rows]


def _enrollment_values(e: Enrollment) -> dict:
    return {
        "user_id": e.user_id,
        "course_id": e.course_id,
        "org_id": e.org_id,
        "status": e.status,
        "progress_percentage": e.progress_percentage,
        "lesson_progress": [
            {
                "lesson_id": str(p.lesson_id),
                "completed": p.completed,
                "completed_at": p.completed_at,
                "time_spent_minutes": p.time_spent_minutes,
            }
            for p in e.lesson_progress
        ],
        "quiz_attempts": [
            {
                "quiz_id": str(h.quiz_id),
                "best_score": h.best_score,
                "attempts": [
                    {
                        "attempt_number": a.attempt_number,
                        "score": a.score,
                        "total_points": a.total_points,
                        "passed": a.passed,
                        "completed_at": a.completed_at,
                    }
                    for a in h.attempts
                ],
            }
            for h in e.quiz_attempts
        ],
        "enrolled_at": e.enrolled_at,
        "completed_at": e.completed_at,
        "last_accessed_at": e.last_accessed_at,
        "version": e.version,
    }


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        id=row.id,
        user_id=row.user_id,
        course_id=row.course_id,
        org_id=row.org_id,
        enrolled_at=row.enrolled_at,
        status=row.status,
        progress_percentage=row.progress_percentage,
        lesson_progress=tuple(
            LessonProgress(
                lesson_id=UUID(p["lesson_id"]),
                completed=p.get("completed", False),
                completed_at=p.get("completed_at"),
                time_spent_minutes=p.get("time_spent_minutes", 0),
            )
            for p in row.lesson_progress or []
        ),
        quiz_attempts=tuple(
            QuizAttemptHistory(
                quiz_id=UUID(h["quiz_id"]),
                best_score=h.get("best_score", 0),
                attempts=tuple(QuizAttempt(**a) for a in h.get("attempts", [])),
            )
            for h in row.quiz_attempts or []
        ),
        completed_at=row.completed_at,
        last_accessed_at=row.last_accessed_at,
        version=row.version,
    )
