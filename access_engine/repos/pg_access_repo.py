"""PostgreSQL implementation of AccessRepo."""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from access_engine.db.tables import UserCourseAccessRow
from access_engine.models.license import ACTIVE, REVOKED, UserAccess


class PgAccessRepo:
    """Satisfies the AccessRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, access_id: UUID) -> UserAccess | None:
        row = await self._session.get(UserCourseAccessRow, access_id)
        if row is None:
            return None
        return _row_to_access(row)

    async def add_many(self, accesses: Sequence[UserAccess]) -> list[UserAccess]:
        if not accesses:
            return []
        stmt = (
            insert(UserCourseAccessRow)
            .values(
                [
                    {
                        "id": a.id,
                        "user_id": a.user_id,
                        "license_id": a.license_id,
                        "org_id": a.org_id,
                        "catalog_course_id": a.catalog_course_id,
                        "status": a.status,
                        "progress_percentage": a.progress_percentage,
                        "assigned_at": a.assigned_at,
                        "assigned_by": a.assigned_by,
                    }
                    for a in accesses
                ]
            )
            .on_conflict_do_nothing(
                index_elements=["user_id", "license_id"],
                index_where=UserCourseAccessRow.status == ACTIVE,
            )
            .returning(UserCourseAccessRow.id)
        )
        inserted_ids = set((await self._session.execute(stmt)).scalars().all())
        return [a for a in accesses if a.id in inserted_ids]

    async def active_user_ids(self, license_id: UUID) -> set[UUID]:
        stmt = select(UserCourseAccessRow.user_id).where(
            UserCourseAccessRow.license_id == license_id,
            UserCourseAccessRow.status == ACTIVE,
        )
        return set((await self._session.execute(stmt)).scalars().all())

    async def list_by_license(
        self, license_id: UUID, status: str | None = None
    ) -> list[UserAccess]:
        stmt = select(UserCourseAccessRow).where(
            UserCourseAccessRow.license_id == license_id
        )
        if status is not None:
            stmt = stmt.where(UserCourseAccessRow.status == status)
        stmt = stmt.order_by(UserCourseAccessRow.assigned_at.desc())
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_access(r) for r in rows]

    async def list_by_user(
        self, user_id: UUID, org_id: UUID | None = None
    ) -> list[UserAccess]:
        stmt = select(UserCourseAccessRow).where(UserCourseAccessRow.user_id == user_id)
        if org_id is not None:
            stmt = stmt.where(UserCourseAccessRow.org_id == org_id)
        stmt = stmt.order_by(UserCourseAccessRow.assigned_at.desc())
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_access(r) for r in rows]

    async def list_active_for_course(
        self, user_id: UUID, catalog_course_id: UUID
    ) -> list[UserAccess]:
        stmt = select(UserCourseAccessRow).where(
            UserCourseAccessRow.user_id == user_id,
            UserCourseAccessRow.catalog_course_id == catalog_course_id,
            UserCourseAccessRow.status == ACTIVE,
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_access(r) for r in rows]

    async def revoke(
        self, access_id: UUID, *, now: int, revoked_by: UUID | None, reason: str | None
    ) -> UserAccess | None:
        stmt = (
            update(UserCourseAccessRow)
            .where(
                UserCourseAccessRow.id == access_id,
                UserCourseAccessRow.status == ACTIVE,
            )
            .values(
                status=REVOKED,
                revoked_at=now,
                revoked_by=revoked_by,
                revocation_reason=reason,
            )
            .returning(UserCourseAccessRow.id)
        )
        if (await self._session.execute(stmt)).scalar_one_or_none() is None:
            return None  # missing, or a concurrent revoke got there first
        row = await self._session.get(
            UserCourseAccessRow, access_id, populate_existing=True
        )
        return _row_to_access(row) if row is not None else None

    async def revoke_all_for_license(
        self, license_id: UUID, *, now: int, revoked_by: UUID | None, reason: str
    ) -> int:
        stmt = (
            update(UserCourseAccessRow)
            .where(
                UserCourseAccessRow.license_id == license_id,
                UserCourseAccessRow.status == ACTIVE,
            )
            .values(
                status=REVOKED,
                revoked_at=now,
                revoked_by=revoked_by,
                revocation_reason=reason,
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def set_progress(
        self, user_id: UUID, catalog_course_id: UUID, percentage: int
    ) -> None:
        stmt = (
            update(UserCourseAccessRow)
            .where(
                UserCourseAccessRow.user_id == user_id,
                UserCourseAccessRow.catalog_course_id == catalog_course_id,
                UserCourseAccessRow.status == ACTIVE,
            )
            .values(progress_percentage=percentage)
        )
        await self._session.execute(stmt)


def _row_to_access(row: UserCourseAccessRow) -> UserAccess:
    return UserAccess(
        id=row.id,
        user_id=row.user_id,
        license_id=row.license_id,
        org_id=row.org_id,
        catalog_course_id=row.catalog_course_id,
        assigned_at=row.assigned_at,
        status=row.status,
        assigned_by=row.assigned_by,
        progress_percentage=row.progress_percentage,
        revoked_at=row.revoked_at,
        revoked_by=row.revoked_by,
        revocation_reason=row.revocation_reason,
    )
