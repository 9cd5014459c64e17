from __future__ import annotations

from typing import Protocol
from uuid import UUID

from access_engine.models.organization import OrgMembership


class OrgMembershipRepo(Protocol):
    async def get(self, org_id: UUID, user_id: UUID) -> OrgMembership | None: ...
    async def list_by_user(self, user_id: UUID) -> list[OrgMembership]: ...


class InMemoryOrgMembershipRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[UUID, UUID], OrgMembership] = {}

    def add(self, membership: OrgMembership) -> None:
        key = (membership.org_id, membership.user_id)
        if key in self._store:
            raise ValueError("membership already exists")
        self._store[key] = membership

    async def get(self, org_id: UUID, user_id: UUID) -> OrgMembership | None:
        return self._store.get((org_id, user_id))

    async def list_by_user(self, user_id: UUID) -> list[OrgMembership]:
        return [m for m in self._store.values() if m.user_id == user_id]
