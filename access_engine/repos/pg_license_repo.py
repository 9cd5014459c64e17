"""PostgreSQL implementation of LicenseRepo.

Seat accounting and status changes are single conditional UPDATEs, so two
concurrent assignments cannot both see the last free seat.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from access_engine.db.tables import CourseLicenseRow
from access_engine.models.license import (
    ACTIVE,
    EXPIRED,
    OPEN_STATUSES,
    SEAT,
    License,
)


class PgLicenseRepo:
    """Satisfies the LicenseRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, license_id: UUID) -> License | None:
        row = await self._session.get(CourseLicenseRow, license_id)
        if row is None:
            return None
        return _row_to_license(row)

    async def add(self, license: License) -> bool:
        stmt = (
            insert(CourseLicenseRow)
            .values(
                id=license.id,
                org_id=license.org_id,
                catalog_course_id=license.catalog_course_id,
                kind=license.kind,
                status=license.status,
                seat_count=license.seat_count,
                seats_used=license.seats_used,
                valid_from=license.valid_from,
                valid_until=license.valid_until,
                amount_paid=license.amount_paid,
                currency=license.currency,
                purchased_by=license.purchased_by,
                purchased_at=license.purchased_at,
                payment_reference=license.payment_reference,
                is_subscription=license.is_subscription,
                subscription_id=license.subscription_id,
                subscription_interval=license.subscription_interval,
                next_billing_at=license.next_billing_at,
                version=license.version,
            )
            .on_conflict_do_nothing(
                index_elements=["org_id", "catalog_course_id"],
                index_where=CourseLicenseRow.status.in_(OPEN_STATUSES),
            )
            .returning(CourseLicenseRow.id)
        )
        inserted = (await self._session.execute(stmt)).scalar_one_or_none()
        return inserted is not None

    async def get_open(self, org_id: UUID, catalog_course_id: UUID) -> License | None:
        stmt = select(CourseLicenseRow).where(
            CourseLicenseRow.org_id == org_id,
            CourseLicenseRow.catalog_course_id == catalog_course_id,
            CourseLicenseRow.status.in_(OPEN_STATUSES),
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_license(row)

    async def list_by_org(self, org_id: UUID, status: str | None = None) -> list[License]:
        stmt = select(CourseLicenseRow).where(CourseLicenseRow.org_id == org_id)
        if status is not None:
            stmt = stmt.where(CourseLicenseRow.status == status)
        stmt = stmt.order_by(CourseLicenseRow.purchased_at.desc())
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_license(r) for r in rows]

    async def list_for_course(
        self, org_ids: Iterable[UUID], catalog_course_id: UUID
    ) -> list[License]:
        ids = list(org_ids)
        if not ids:
            return []
        stmt = (
            select(CourseLicenseRow)
            .where(
                CourseLicenseRow.org_id.in_(ids),
                CourseLicenseRow.catalog_course_id == catalog_course_id,
            )
            .order_by(CourseLicenseRow.purchased_at.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_license(r) for r in rows]

    async def try_consume_seats(self, license_id: UUID, n: int) -> License | None:
        stmt = (
            update(CourseLicenseRow)
            .where(
                CourseLicenseRow.id == license_id,
                CourseLicenseRow.status == ACTIVE,
                CourseLicenseRow.kind == SEAT,
                CourseLicenseRow.seats_used + n <= CourseLicenseRow.seat_count,
            )
            .values(
                seats_used=CourseLicenseRow.seats_used + n,
                version=CourseLicenseRow.version + 1,
            )
            .returning(CourseLicenseRow.id)
        )
        updated = (await self._session.execute(stmt)).scalar_one_or_none()
        if updated is None:
            return None  # no room, or not an ACTIVE seat license
        return await self._reload(license_id)

    async def release_seats(self, license_id: UUID, n: int = 1) -> None:
        stmt = (
            update(CourseLicenseRow)
            .where(CourseLicenseRow.id == license_id)
            .values(
                seats_used=func.greatest(CourseLicenseRow.seats_used - n, 0),
                version=CourseLicenseRow.version + 1,
            )
        )
        await self._session.execute(stmt)

    async def transition(
        self,
        license_id: UUID,
        from_statuses: tuple[str, ...],
        to_status: str,
        **changes: object,
    ) -> License | None:
        stmt = (
            update(CourseLicenseRow)
            .where(
                CourseLicenseRow.id == license_id,
                CourseLicenseRow.status.in_(from_statuses),
            )
            .values(
                status=to_status,
                version=CourseLicenseRow.version + 1,
                **changes,
            )
            .returning(CourseLicenseRow.id)
        )
        updated = (await self._session.execute(stmt)).scalar_one_or_none()
        if updated is None:
            return None
        return await self._reload(license_id)

    async def expire_due(self, now: int) -> list[License]:
        stmt = (
            update(CourseLicenseRow)
            .where(
                CourseLicenseRow.status == ACTIVE,
                CourseLicenseRow.valid_until.is_not(None),
                CourseLicenseRow.valid_until < now,
            )
            .values(status=EXPIRED, version=CourseLicenseRow.version + 1)
            .returning(CourseLicenseRow.id)
        )
        ids = list((await self._session.execute(stmt)).scalars().all())
        if not ids:
            return []
        rows = (
            (
                await self._session.execute(
                    select(CourseLicenseRow)
                    .where(CourseLicenseRow.id.in_(ids))
                    .execution_options(populate_existing=True)
                )
            )
            .scalars()
            .all()
        )
        return [_row_to_license(r) for r in rows]

    async def update_subscription(
        self, license_id: UUID, subscription_id: str, next_billing_at: int | None
    ) -> License | None:
        stmt = (
            update(CourseLicenseRow)
            .where(CourseLicenseRow.id == license_id)
            .values(
                is_subscription=True,
                subscription_id=subscription_id,
                next_billing_at=next_billing_at,
                version=CourseLicenseRow.version + 1,
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self._reload(license_id)

    async def _reload(self, license_id: UUID) -> License | None:
        row = await self._session.get(
            CourseLicenseRow, license_id, populate_existing=True
        )
        if row is None:
            return None
        return _row_to_license(row)


def _row_to_license(row: CourseLicenseRow) -> License:
    return License(
        id=row.id,
        org_id=row.org_id,
        catalog_course_id=row.catalog_course_id,
        kind=row.kind,
        status=row.status,
        valid_from=row.valid_from,
        purchased_at=row.purchased_at,
        purchased_by=row.purchased_by,
        seat_count=row.seat_count,
        seats_used=row.seats_used,
        valid_until=row.valid_until,
        amount_paid=row.amount_paid,
        currency=row.currency,
        payment_reference=row.payment_reference,
        is_subscription=row.is_subscription,
        subscription_id=row.subscription_id,
        subscription_interval=row.subscription_interval,
        next_billing_at=row.next_billing_at,
        cancelled_at=row.cancelled_at,
        cancellation_reason=row.cancellation_reason,
        version=row.version,
    )
