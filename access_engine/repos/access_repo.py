from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

from access_engine.models.license import ACTIVE, REVOKED, UserAccess


class AccessRepo(Protocol):
    async def get(self, access_id: UUID) -> UserAccess | None: ...
    async def add_many(self, accesses: Sequence[UserAccess]) -> list[UserAccess]: ...
    async def active_user_ids(self, license_id: UUID) -> set[UUID]: ...
    async def list_by_license(
        self, license_id: UUID, status: str | None = None
    ) -> list[UserAccess]: ...
    async def list_by_user(
        self, user_id: UUID, org_id: UUID | None = None
    ) -> list[UserAccess]: ...
    async def list_active_for_course(
        self, user_id: UUID, catalog_course_id: UUID
    ) -> list[UserAccess]: ...
    async def revoke(
        self, access_id: UUID, *, now: int, revoked_by: UUID | None, reason: str | None
    ) -> UserAccess | None: ...
    async def revoke_all_for_license(
        self, license_id: UUID, *, now: int, revoked_by: UUID | None, reason: str
    ) -> int: ...
    async def set_progress(
        self, user_id: UUID, catalog_course_id: UUID, percentage: int
    ) -> None: ...


class InMemoryAccessRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, UserAccess] = {}

    async def get(self, access_id: UUID) -> UserAccess | None:
        return self._by_id.get(access_id)

    async def add_many(self, accesses: Sequence[UserAccess]) -> list[UserAccess]:
        """Insert grants, skipping any (user, license) that already has an
        ACTIVE grant.  Returns the grants actually inserted."""
        live = {
            (a.user_id, a.license_id)
            for a in self._by_id.values()
            if a.status == ACTIVE
        }
        inserted = []
        for access in accesses:
            key = (access.user_id, access.license_id)
            if key in live:
                continue
            live.add(key)
            self._by_id[access.id] = access
            inserted.append(access)
        return inserted

    async def active_user_ids(self, license_id: UUID) -> set[UUID]:
        return {
            a.user_id
            for a in self._by_id.values()
            if a.license_id == license_id and a.status == ACTIVE
        }

    async def list_by_license(
        self, license_id: UUID, status: str | None = None
    ) -> list[UserAccess]:
        found = [
            a
            for a in self._by_id.values()
            if a.license_id == license_id and (status is None or a.status == status)
        ]
        return sorted(found, key=lambda a: a.assigned_at, reverse=True)

    async def list_by_user(
        self, user_id: UUID, org_id: UUID | None = None
    ) -> list[UserAccess]:
        found = [
            a
            for a in self._by_id.values()
            if a.user_id == user_id and (org_id is None or a.org_id == org_id)
        ]
        return sorted(found, key=lambda a: a.assigned_at, reverse=True)

    async def list_active_for_course(
        self, user_id: UUID, catalog_course_id: UUID
    ) -> list[UserAccess]:
        return [
            a
            for a in self._by_id.values()
            if a.user_id == user_id
            and a.catalog_course_id == catalog_course_id
            and a.status == ACTIVE
        ]

    async def revoke(
        self, access_id: UUID, *, now: int, revoked_by: UUID | None, reason: str | None
    ) -> UserAccess | None:
        """ACTIVE -> REVOKED.  None if missing or no longer ACTIVE."""
        access = self._by_id.get(access_id)
        if access is None or access.status != ACTIVE:
            return None
        updated = dataclasses.replace(
            access,
            status=REVOKED,
            revoked_at=now,
            revoked_by=revoked_by,
            revocation_reason=reason,
        )
        self._by_id[access_id] = updated
        return updated

    async def revoke_all_for_license(
        self, license_id: UUID, *, now: int, revoked_by: UUID | None, reason: str
    ) -> int:
        count = 0
        for access in list(self._by_id.values()):
            if access.license_id == license_id and access.status == ACTIVE:
                self._by_id[access.id] = dataclasses.replace(
                    access,
                    status=REVOKED,
                    revoked_at=now,
                    revoked_by=revoked_by,
                    revocation_reason=reason,
                )
                count += 1
        return count

    async def set_progress(
        self, user_id: UUID, catalog_course_id: UUID, percentage: int
    ) -> None:
        for access in list(self._by_id.values()):
            if (
                access.user_id == user_id
                and access.catalog_course_id == catalog_course_id
                and access.status == ACTIVE
            ):
                self._by_id[access.id] = dataclasses.replace(
                    access, progress_percentage=percentage
                )
