"""Entitlement ledger: licenses an organization bought and the per-user
grants that consume them.

License lifecycle:

    PENDING ──activate──▶ ACTIVE ──sweep (valid_until passed)──▶ EXPIRED
       │                    │
       └──────cancel────────┴──────────────▶ CANCELLED

Seat accounting (SEAT licenses only): seats_used is changed exclusively
through LicenseRepo.try_consume_seats / release_seats, which are single
conditional updates.  The ledger never writes a seat count it computed
from a value it read earlier.

Validity is re-checked at read time (has_access), so a license whose
valid_until has passed stops granting access even before the sweep
flips it to EXPIRED.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from access_engine.core.clock import Clock, add_months, utc_now
from access_engine.core.errors import (
    LICENSE_EXPIRED,
    LICENSE_INACTIVE,
    NO_LICENSE,
    NO_SEATS,
    BadRequestError,
    ConflictError,
    EngineError,
    ForbiddenError,
    NotFoundError,
)
from access_engine.core.metrics import (
    LICENSE_OPERATIONS,
    LICENSES_EXPIRED,
    SEAT_ASSIGNMENTS,
)
from access_engine.models.license import (
    ACTIVE,
    CANCELLED,
    EXPIRED,
    LICENSE_KINDS,
    OPEN_STATUSES,
    PENDING,
    SEAT,
    TIME_LIMITED,
    License,
    PaymentFacts,
    UserAccess,
)
from access_engine.repos.access_repo import AccessRepo
from access_engine.repos.catalog_repo import CatalogStats
from access_engine.repos.license_repo import LicenseRepo
from access_engine.repos.org_membership_repo import OrgMembershipRepo
from access_engine.services.collaborators import LICENSE_ASSIGNED, Notifier

logger = logging.getLogger(__name__)

CANCELLATION_REVOKE_REASON = "License cancelled"

# Most specific denial wins when several licenses refuse an enrollment
_DENIAL_PRIORITY = (NO_SEATS, LICENSE_EXPIRED, LICENSE_INACTIVE, NO_LICENSE)


@dataclass(frozen=True, slots=True)
class EntitlementDecision:
    allowed: bool
    reason: str | None = None
    access: UserAccess | None = None


class EntitlementLedger:
    def __init__(
        self,
        licenses: LicenseRepo,
        accesses: AccessRepo,
        memberships: OrgMembershipRepo,
        catalog_stats: CatalogStats,
        notifier: Notifier,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._licenses = licenses
        self._accesses = accesses
        self._memberships = memberships
        self._catalog_stats = catalog_stats
        self._notifier = notifier
        self._clock = clock

    # ------------------------------------------------------------------
    # License lifecycle
    # ------------------------------------------------------------------

    async def create_license(
        self,
        org_id: UUID,
        catalog_course_id: UUID,
        kind: str,
        *,
        seat_count: int | None = None,
        duration_months: int | None = None,
        payment: PaymentFacts | None = None,
        purchased_by: UUID | None = None,
        auto_assign_to: UUID | None = None,
        pending: bool = False,
    ) -> License:
        if kind not in LICENSE_KINDS:
            raise BadRequestError(f"Unknown license kind {kind!r}")
        if kind == SEAT and (seat_count is None or seat_count < 1):
            raise BadRequestError("Seat licenses require seat_count >= 1")
        if kind == TIME_LIMITED and (duration_months is None or duration_months < 1):
            raise BadRequestError("Time-limited licenses require duration_months >= 1")

        if await self._licenses.get_open(org_id, catalog_course_id) is not None:
            raise ConflictError(
                "Organization already has an active license for this course"
            )

        now = self._clock()
        license = License.new(
            org_id=org_id,
            catalog_course_id=catalog_course_id,
            kind=kind,
            now=now,
            payment=payment or PaymentFacts(),
            purchased_by=purchased_by,
            seat_count=seat_count,
            valid_until=(
                add_months(now, duration_months)
                if kind == TIME_LIMITED and duration_months
                else None
            ),
            pending=pending,
        )
        if not await self._licenses.add(license):
            # lost the race against a concurrent purchase
            raise ConflictError(
                "Organization already has an active license for this course"
            )

        await self._catalog_stats.increment_purchase_count(catalog_course_id)
        LICENSE_OPERATIONS.labels(operation="created").inc()
        logger.info(
            "License %s created org=%s course=%s kind=%s status=%s seats=%s",
            license.id,
            org_id,
            catalog_course_id,
            kind,
            license.status,
            seat_count,
            extra={"license_id": str(license.id), "org_id": str(org_id)},
        )

        if auto_assign_to is not None and license.status == ACTIVE:
            try:
                await self._grant(license, [auto_assign_to], actor=purchased_by)
            except EngineError as e:
                logger.warning(
                    "Auto-assignment of license %s to user=%s failed: %s",
                    license.id,
                    auto_assign_to,
                    e.message,
                    extra={"license_id": str(license.id)},
                )

        return await self._licenses.get(license.id) or license

    async def activate_license(self, license_id: UUID) -> License:
        """PENDING -> ACTIVE once the payment collaborator reports success.

        The validity window starts at activation, not at purchase.
        """
        current = await self._require_license(license_id)
        if current.status != PENDING:
            raise BadRequestError(
                f"Only pending licenses can be activated (status {current.status})",
                reason=LICENSE_INACTIVE,
            )
        now = self._clock()
        changes: dict[str, object] = {"valid_from": now}
        if current.valid_until is not None:
            changes["valid_until"] = now + (current.valid_until - current.valid_from)

        activated = await self._licenses.transition(
            license_id, (PENDING,), ACTIVE, **changes
        )
        if activated is None:
            raise ConflictError("License changed state concurrently")
        LICENSE_OPERATIONS.labels(operation="activated").inc()
        logger.info(
            "License %s activated", license_id, extra={"license_id": str(license_id)}
        )
        return activated

    async def cancel_license(
        self,
        license_id: UUID,
        reason: str | None = None,
        *,
        org_id: UUID | None = None,
        actor: UUID | None = None,
    ) -> License:
        """Cancel and revoke every live grant.  SEAT licenses end at 0 used."""
        current = await self._require_license(license_id, org_id=org_id)
        if current.status == CANCELLED:
            raise BadRequestError("License is already cancelled")
        if current.status == EXPIRED:
            raise BadRequestError("Cannot cancel an expired license")

        now = self._clock()
        changes: dict[str, object] = {
            "cancelled_at": now,
            "cancellation_reason": reason,
        }
        if current.kind == SEAT:
            changes["seats_used"] = 0
        cancelled = await self._licenses.transition(
            license_id, OPEN_STATUSES, CANCELLED, **changes
        )
        if cancelled is None:
            raise ConflictError("License changed state concurrently")

        revoked = await self._accesses.revoke_all_for_license(
            license_id, now=now, revoked_by=actor, reason=CANCELLATION_REVOKE_REASON
        )
        if revoked:
            SEAT_ASSIGNMENTS.labels(result="revoked").inc(revoked)
        LICENSE_OPERATIONS.labels(operation="cancelled").inc()
        logger.info(
            "License %s cancelled (%d grants revoked) reason=%s",
            license_id,
            revoked,
            reason,
            extra={"license_id": str(license_id), "org_id": str(current.org_id)},
        )
        return cancelled

    async def expire_due_licenses(self) -> int:
        """Move ACTIVE licenses past valid_until to EXPIRED.

        Grants are left in place; has_access already refuses them because
        the license is no longer valid.  Re-running is a no-op.
        """
        expired = await self._licenses.expire_due(self._clock())
        for lic in expired:
            logger.info(
                "License %s expired org=%s course=%s",
                lic.id,
                lic.org_id,
                lic.catalog_course_id,
                extra={"license_id": str(lic.id), "org_id": str(lic.org_id)},
            )
        if expired:
            LICENSES_EXPIRED.inc(len(expired))
        return len(expired)

    async def update_subscription(
        self, license_id: UUID, subscription_id: str, next_billing_at: int | None
    ) -> License:
        updated = await self._licenses.update_subscription(
            license_id, subscription_id, next_billing_at
        )
        if updated is None:
            raise NotFoundError("License not found")
        logger.info(
            "License %s linked to subscription %s",
            license_id,
            subscription_id,
            extra={"license_id": str(license_id)},
        )
        return updated

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    async def assign_users(
        self,
        license_id: UUID,
        org_id: UUID,
        user_ids: Sequence[UUID],
        actor: UUID | None,
    ) -> list[UserAccess]:
        requested = list(dict.fromkeys(user_ids))
        if not requested:
            raise BadRequestError("user_ids must not be empty")

        license = await self._require_license(license_id, org_id=org_id)
        if license.status != ACTIVE:
            raise BadRequestError("License is not active", reason=LICENSE_INACTIVE)
        if license.is_expired_at(self._clock()):
            raise BadRequestError("License has expired", reason=LICENSE_EXPIRED)

        available = license.seats_available
        if available is not None and len(requested) > available:
            raise BadRequestError(
                f"Not enough seats available. Available: {available}, "
                f"Requested: {len(requested)}",
                reason=NO_SEATS,
            )

        for user_id in requested:
            if await self._memberships.get(org_id, user_id) is None:
                raise BadRequestError("One or more users not found in this organization")

        return await self._grant(license, requested, actor=actor)

    async def revoke_access(
        self,
        access_id: UUID,
        actor: UUID | None,
        reason: str | None = None,
        *,
        org_id: UUID | None = None,
    ) -> UserAccess:
        access = await self._accesses.get(access_id)
        if access is None:
            raise NotFoundError("Access record not found")
        if org_id is not None and access.org_id != org_id:
            raise ForbiddenError("Access record belongs to another organization")
        if access.status != ACTIVE:
            raise BadRequestError("Access is not active")

        revoked = await self._accesses.revoke(
            access_id, now=self._clock(), revoked_by=actor, reason=reason
        )
        if revoked is None:
            raise BadRequestError("Access is not active")

        license = await self._licenses.get(access.license_id)
        if license is not None and license.kind == SEAT:
            await self._licenses.release_seats(license.id, 1)

        SEAT_ASSIGNMENTS.labels(result="revoked").inc()
        logger.info(
            "Access %s revoked user=%s license=%s by=%s",
            access_id,
            access.user_id,
            access.license_id,
            actor,
            extra={"access_id": str(access_id), "license_id": str(access.license_id)},
        )
        return revoked

    async def has_access(
        self, user_id: UUID, catalog_course_id: UUID, org_id: UUID | None = None
    ) -> bool:
        """True iff an ACTIVE grant exists whose license is ACTIVE and inside
        its validity window right now."""
        now = self._clock()
        for access in await self._accesses.list_active_for_course(
            user_id, catalog_course_id
        ):
            if org_id is not None and access.org_id != org_id:
                continue
            license = await self._licenses.get(access.license_id)
            if license is not None and license.is_valid_at(now):
                return True
        return False

    async def authorize_enrollment(
        self, user_id: UUID, catalog_course_id: UUID
    ) -> EntitlementDecision:
        """Decide whether user may enroll in a paid catalog course.

        A valid direct grant always wins.  Otherwise each license held by
        one of the user's organizations is tried: UNLIMITED and
        TIME_LIMITED licenses grant on the spot, SEAT licenses claim a
        seat for the user.  If nothing grants, the most specific refusal
        is reported.
        """
        if await self.has_access(user_id, catalog_course_id):
            return EntitlementDecision(allowed=True)

        memberships = await self._memberships.list_by_user(user_id)
        licenses = await self._licenses.list_for_course(
            [m.org_id for m in memberships], catalog_course_id
        )

        now = self._clock()
        denials: set[str] = set()
        for license in licenses:
            if license.status == PENDING:
                denials.add(LICENSE_INACTIVE)
                continue
            if license.status == EXPIRED or (
                license.status == ACTIVE and license.is_expired_at(now)
            ):
                denials.add(LICENSE_EXPIRED)
                continue
            if license.status != ACTIVE:
                denials.add(NO_LICENSE)
                continue

            try:
                granted = await self._grant(license, [user_id], actor=user_id)
            except ConflictError:
                # a concurrent request granted it first
                return EntitlementDecision(allowed=True)
            except BadRequestError as e:
                denials.add(e.reason or NO_SEATS)
                continue
            return EntitlementDecision(allowed=True, access=granted[0])

        for reason in _DENIAL_PRIORITY:
            if reason in denials:
                return EntitlementDecision(allowed=False, reason=reason)
        return EntitlementDecision(allowed=False, reason=NO_LICENSE)

    async def mirror_progress(
        self, user_id: UUID, catalog_course_id: UUID, percentage: int
    ) -> None:
        await self._accesses.set_progress(user_id, catalog_course_id, percentage)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_license(self, license_id: UUID, org_id: UUID | None = None) -> License:
        return await self._require_license(license_id, org_id=org_id)

    async def list_org_licenses(
        self, org_id: UUID, status: str | None = None
    ) -> list[License]:
        return await self._licenses.list_by_org(org_id, status)

    async def list_active_licenses(self, org_id: UUID) -> list[License]:
        now = self._clock()
        return [
            lic
            for lic in await self._licenses.list_by_org(org_id, ACTIVE)
            if lic.is_valid_at(now)
        ]

    async def list_license_users(
        self,
        license_id: UUID,
        org_id: UUID | None = None,
        status: str | None = None,
    ) -> list[UserAccess]:
        await self._require_license(license_id, org_id=org_id)
        return await self._accesses.list_by_license(license_id, status)

    async def list_user_access(
        self, user_id: UUID, org_id: UUID | None = None
    ) -> list[UserAccess]:
        return await self._accesses.list_by_user(user_id, org_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _require_license(
        self, license_id: UUID, *, org_id: UUID | None = None
    ) -> License:
        license = await self._licenses.get(license_id)
        if license is None:
            raise NotFoundError("License not found")
        if org_id is not None and license.org_id != org_id:
            raise ForbiddenError("License belongs to another organization")
        return license

    async def _grant(
        self, license: License, user_ids: Sequence[UUID], *, actor: UUID | None
    ) -> list[UserAccess]:
        existing = await self._accesses.active_user_ids(license.id)
        new_users = [u for u in user_ids if u not in existing]
        if not new_users:
            raise ConflictError("All users already have access to this course")

        if license.kind == SEAT:
            consumed = await self._licenses.try_consume_seats(license.id, len(new_users))
            if consumed is None:
                fresh = await self._licenses.get(license.id)
                available = fresh.seats_available if fresh is not None else 0
                raise BadRequestError(
                    f"Not enough seats available. Available: {available}, "
                    f"Requested: {len(new_users)}",
                    reason=NO_SEATS,
                )

        now = self._clock()
        inserted = await self._accesses.add_many(
            [
                UserAccess.new(user_id=u, license=license, now=now, assigned_by=actor)
                for u in new_users
            ]
        )
        if license.kind == SEAT and len(inserted) < len(new_users):
            # some users were granted concurrently; hand their seats back
            await self._licenses.release_seats(
                license.id, len(new_users) - len(inserted)
            )
        if not inserted:
            raise ConflictError("All users already have access to this course")

        # cancel_license may have swept grants before these landed
        current = await self._licenses.get(license.id)
        if current is not None and current.status == CANCELLED:
            await self._accesses.revoke_all_for_license(
                license.id, now=now, revoked_by=actor, reason=CANCELLATION_REVOKE_REASON
            )
            logger.warning(
                "License %s cancelled while granting; %d grant(s) revoked",
                license.id,
                len(inserted),
                extra={"license_id": str(license.id), "org_id": str(license.org_id)},
            )
            raise BadRequestError("License has been cancelled", reason=LICENSE_INACTIVE)

        await self._catalog_stats.increment_enrollment_count(
            license.catalog_course_id, len(inserted)
        )
        SEAT_ASSIGNMENTS.labels(result="granted").inc(len(inserted))
        logger.info(
            "License %s granted to %d user(s) by=%s",
            license.id,
            len(inserted),
            actor,
            extra={"license_id": str(license.id), "org_id": str(license.org_id)},
        )

        for access in inserted:
            await self._notify_assigned(access)
        return inserted

    async def _notify_assigned(self, access: UserAccess) -> None:
        try:
            await self._notifier.notify(
                access.user_id,
                access.org_id,
                LICENSE_ASSIGNED,
                {
                    "catalog_course_id": str(access.catalog_course_id),
                    "license_id": str(access.license_id),
                },
            )
        except Exception:
            logger.exception(
                "license_assigned notification failed user=%s license=%s",
                access.user_id,
                access.license_id,
            )
