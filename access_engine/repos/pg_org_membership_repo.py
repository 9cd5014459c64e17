"""PostgreSQL implementation of OrgMembershipRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from access_engine.db.tables import OrgMembershipRow
from access_engine.models.organization import OrgMembership


class PgOrgMembershipRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, org_id: UUID, user_id: UUID) -> OrgMembership | None:
        row = await self._session.get(OrgMembershipRow, (org_id, user_id))
        if row is None:
            return None
        return _row_to_membership(row)

    async def list_by_user(self, user_id: UUID) -> list[OrgMembership]:
        stmt = select(OrgMembershipRow).where(OrgMembershipRow.user_id == user_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_membership(r) for r in rows]


def _row_to_membership(row: OrgMembershipRow) -> OrgMembership:
    return OrgMembership(org_id=row.org_id, user_id=row.user_id, org_role=row.org_role)
