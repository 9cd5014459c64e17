from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from access_engine.models.license import ACTIVE, EXPIRED, SEAT, License


class LicenseRepo(Protocol):
    async def get(self, license_id: UUID) -> License | None: ...
    async def add(self, license: License) -> bool: ...
    async def get_open(self, org_id: UUID, catalog_course_id: UUID) -> License | None: ...
    async def list_by_org(
        self, org_id: UUID, status: str | None = None
    ) -> list[License]: ...
    async def list_for_course(
        self, org_ids: Iterable[UUID], catalog_course_id: UUID
    ) -> list[License]: ...
    async def try_consume_seats(self, license_id: UUID, n: int) -> License | None: ...
    async def release_seats(self, license_id: UUID, n: int = 1) -> None: ...
    async def transition(
        self,
        license_id: UUID,
        from_statuses: tuple[str, ...],
        to_status: str,
        **changes: object,
    ) -> License | None: ...
    async def expire_due(self, now: int) -> list[License]: ...
    async def update_subscription(
        self, license_id: UUID, subscription_id: str, next_billing_at: int | None
    ) -> License | None: ...


class InMemoryLicenseRepo:
    """Dict-backed repo.  Each conditional update reads and writes with no
    await in between, so it cannot interleave with another coroutine."""

    def __init__(self) -> None:
        self._by_id: dict[UUID, License] = {}

    async def get(self, license_id: UUID) -> License | None:
        return self._by_id.get(license_id)

    async def add(self, license: License) -> bool:
        """Insert unless an open license already exists for (org, course)."""
        if license.is_open and self._find_open(license.org_id, license.catalog_course_id):
            return False
        self._by_id[license.id] = license
        return True

    async def get_open(self, org_id: UUID, catalog_course_id: UUID) -> License | None:
        return self._find_open(org_id, catalog_course_id)

    async def list_by_org(self, org_id: UUID, status: str | None = None) -> list[License]:
        found = [
            lic
            for lic in self._by_id.values()
            if lic.org_id == org_id and (status is None or lic.status == status)
        ]
        return sorted(found, key=lambda lic: lic.purchased_at, reverse=True)

    async def list_for_course(
        self, org_ids: Iterable[UUID], catalog_course_id: UUID
    ) -> list[License]:
        wanted = set(org_ids)
        found = [
            lic
            for lic in self._by_id.values()
            if lic.org_id in wanted and lic.catalog_course_id == catalog_course_id
        ]
        return sorted(found, key=lambda lic: lic.purchased_at, reverse=True)

    async def try_consume_seats(self, license_id: UUID, n: int) -> License | None:
        """Add n to seats_used iff the license is ACTIVE and has room."""
        lic = self._by_id.get(license_id)
        if lic is None or lic.status != ACTIVE or lic.kind != SEAT:
            return None
        if lic.seat_count is None or lic.seats_used + n > lic.seat_count:
            return None
        updated = dataclasses.replace(
            lic, seats_used=lic.seats_used + n, version=lic.version + 1
        )
        self._by_id[license_id] = updated
        return updated

    async def release_seats(self, license_id: UUID, n: int = 1) -> None:
        lic = self._by_id.get(license_id)
        if lic is None:
            return
        self._by_id[license_id] = dataclasses.replace(
            lic, seats_used=max(0, lic.seats_used - n), version=lic.version + 1
        )

    async def transition(
        self,
        license_id: UUID,
        from_statuses: tuple[str, ...],
        to_status: str,
        **changes: object,
    ) -> License | None:
        """Move to to_status iff the current status is one of from_statuses."""
        lic = self._by_id.get(license_id)
        if lic is None or lic.status not in from_statuses:
            return None
        updated = dataclasses.replace(
            lic, status=to_status, version=lic.version + 1, **changes
        )
        self._by_id[license_id] = updated
        return updated

    async def expire_due(self, now: int) -> list[License]:
        expired = []
        for lic in list(self._by_id.values()):
            if lic.status == ACTIVE and lic.valid_until is not None and lic.valid_until < now:
                updated = dataclasses.replace(
                    lic, status=EXPIRED, version=lic.version + 1
                )
                self._by_id[lic.id] = updated
                expired.append(updated)
        return expired

    async def update_subscription(
        self, license_id: UUID, subscription_id: str, next_billing_at: int | None
    ) -> License | None:
        lic = self._by_id.get(license_id)
        if lic is None:
            return None
        updated = dataclasses.replace(
            lic,
            is_subscription=True,
            subscription_id=subscription_id,
            next_billing_at=next_billing_at,
            version=lic.version + 1,
        )
        self._by_id[license_id] = updated
        return updated

    def _find_open(self, org_id: UUID, catalog_course_id: UUID) -> License | None:
        for lic in self._by_id.values():
            if (
                lic.org_id == org_id
                and lic.catalog_course_id == catalog_course_id
                and lic.is_open
            ):
                return lic
        return None
