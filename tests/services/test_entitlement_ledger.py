from __future__ import annotations

import asyncio
import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from access_engine.core.errors import (
    LICENSE_EXPIRED,
    LICENSE_INACTIVE,
    NO_LICENSE,
    NO_SEATS,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from access_engine.models.course import CatalogCourse
from access_engine.models.license import (
    ACTIVE,
    CANCELLED,
    EXPIRED,
    PENDING,
    REVOKED,
    SEAT,
    TIME_LIMITED,
    UNLIMITED,
    PaymentFacts,
)
from access_engine.repos.access_repo import InMemoryAccessRepo
from access_engine.services.collaborators import LICENSE_ASSIGNED
from access_engine.services.entitlement_ledger import CANCELLATION_REVOKE_REASON
from tests.conftest import T0, Engine, YieldingLicenseRepo, add_member, build_engine

DAY = 86400


@pytest.fixture
def engine() -> Engine:
    return build_engine()


@pytest.fixture
def catalog_entry(engine: Engine) -> CatalogCourse:
    entry = CatalogCourse.new(title="Kubernetes for Teams")
    engine.repos.catalog.add_catalog_entry(entry)
    return entry


def _members(engine: Engine, org_id, n: int) -> list:
    users = [uuid4() for _ in range(n)]
    for user_id in users:
        add_member(engine.repos, org_id, user_id)
    return users


# ---- creation ----


def test_create_seat_license(engine: Engine, catalog_entry: CatalogCourse) -> None:
    org_id = uuid4()
    lic = asyncio.run(
        engine.ledger.create_license(
            org_id,
            catalog_entry.id,
            SEAT,
            seat_count=5,
            payment=PaymentFacts(amount_paid=Decimal("499.00"), payment_reference="pi_1"),
        )
    )
    assert lic.status == ACTIVE
    assert lic.seat_count == 5
    assert lic.seats_used == 0
    assert lic.amount_paid == Decimal("499.00")
    assert lic.valid_until is None
    entry = asyncio.run(engine.repos.catalog.get_catalog_entry(catalog_entry.id))
    assert entry.purchase_count == 1


def test_seat_license_requires_positive_seat_count(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    with pytest.raises(BadRequestError):
        asyncio.run(engine.ledger.create_license(uuid4(), catalog_entry.id, SEAT, seat_count=0))


def test_unknown_kind_rejected(engine: Engine, catalog_entry: CatalogCourse) -> None:
    with pytest.raises(BadRequestError):
        asyncio.run(engine.ledger.create_license(uuid4(), catalog_entry.id, "LIFETIME"))


def test_time_limited_window_clamps_to_month_end(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    lic = asyncio.run(
        engine.ledger.create_license(
            uuid4(), catalog_entry.id, TIME_LIMITED, duration_months=1
        )
    )
    assert lic.valid_from == T0
    assert lic.valid_until == int(
        datetime.datetime(2026, 2, 28, tzinfo=datetime.UTC).timestamp()
    )


def test_second_open_license_for_same_course_conflicts(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))
    with pytest.raises(ConflictError):
        asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))


def test_new_license_allowed_after_cancellation(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    first = asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))
    asyncio.run(engine.ledger.cancel_license(first.id, "switching plans"))
    second = asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))
    assert second.id != first.id


def test_auto_assign_grants_purchaser(engine: Engine, catalog_entry: CatalogCourse) -> None:
    org_id = uuid4()
    buyer = uuid4()
    add_member(engine.repos, org_id, buyer, "owner")
    lic = asyncio.run(
        engine.ledger.create_license(
            org_id,
            catalog_entry.id,
            SEAT,
            seat_count=3,
            purchased_by=buyer,
            auto_assign_to=buyer,
        )
    )
    assert lic.seats_used == 1
    assert asyncio.run(engine.ledger.has_access(buyer, catalog_entry.id)) is True


def test_pending_license_skips_auto_assign(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    buyer = uuid4()
    lic = asyncio.run(
        engine.ledger.create_license(
            uuid4(), catalog_entry.id, UNLIMITED, auto_assign_to=buyer, pending=True
        )
    )
    assert lic.status == PENDING
    assert asyncio.run(engine.ledger.has_access(buyer, catalog_entry.id)) is False


# ---- activation and subscription ----


def test_activate_pending_license_restarts_window(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    lic = asyncio.run(
        engine.ledger.create_license(
            uuid4(), catalog_entry.id, TIME_LIMITED, duration_months=1, pending=True
        )
    )
    span = lic.valid_until - lic.valid_from
    engine.clock.advance(2 * DAY)
    activated = asyncio.run(engine.ledger.activate_license(lic.id))
    assert activated.status == ACTIVE
    assert activated.valid_from == T0 + 2 * DAY
    assert activated.valid_until - activated.valid_from == span


def test_activate_active_license_rejected(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    lic = asyncio.run(engine.ledger.create_license(uuid4(), catalog_entry.id, UNLIMITED))
    with pytest.raises(BadRequestError):
        asyncio.run(engine.ledger.activate_license(lic.id))


def test_update_subscription(engine: Engine, catalog_entry: CatalogCourse) -> None:
    lic = asyncio.run(engine.ledger.create_license(uuid4(), catalog_entry.id, UNLIMITED))
    updated = asyncio.run(
        engine.ledger.update_subscription(lic.id, "sub_123", T0 + 30 * DAY)
    )
    assert updated.is_subscription is True
    assert updated.subscription_id == "sub_123"
    with pytest.raises(NotFoundError):
        asyncio.run(engine.ledger.update_subscription(uuid4(), "sub_x", None))


# ---- seat assignment ----


def test_five_seat_license_walkthrough(engine: Engine, catalog_entry: CatalogCourse) -> None:
    org_id = uuid4()
    manager = uuid4()
    users = _members(engine, org_id, 6)
    lic = asyncio.run(
        engine.ledger.create_license(org_id, catalog_entry.id, SEAT, seat_count=5)
    )

    granted = asyncio.run(engine.ledger.assign_users(lic.id, org_id, users[:5], manager))
    assert len(granted) == 5
    assert asyncio.run(engine.ledger.get_license(lic.id)).seats_used == 5

    with pytest.raises(BadRequestError) as exc:
        asyncio.run(engine.ledger.assign_users(lic.id, org_id, [users[5]], manager))
    assert exc.value.reason == NO_SEATS
    assert exc.value.message == "Not enough seats available. Available: 0, Requested: 1"

    asyncio.run(engine.ledger.revoke_access(granted[0].id, manager, "left the team"))
    assert asyncio.run(engine.ledger.get_license(lic.id)).seats_used == 4

    asyncio.run(engine.ledger.assign_users(lic.id, org_id, [users[5]], manager))
    assert asyncio.run(engine.ledger.get_license(lic.id)).seats_used == 5
    assert asyncio.run(engine.ledger.has_access(users[5], catalog_entry.id)) is True
    assert asyncio.run(engine.ledger.has_access(users[0], catalog_entry.id)) is False


def test_assign_rejects_non_members(engine: Engine, catalog_entry: CatalogCourse) -> None:
    org_id = uuid4()
    lic = asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))
    with pytest.raises(BadRequestError, match="not found in this organization"):
        asyncio.run(engine.ledger.assign_users(lic.id, org_id, [uuid4()], None))


def test_assign_on_foreign_license_forbidden(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    lic = asyncio.run(engine.ledger.create_license(uuid4(), catalog_entry.id, UNLIMITED))
    other_org = uuid4()
    users = _members(engine, other_org, 1)
    with pytest.raises(ForbiddenError):
        asyncio.run(engine.ledger.assign_users(lic.id, other_org, users, None))


def test_assign_skips_users_who_already_have_access(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    users = _members(engine, org_id, 2)
    lic = asyncio.run(
        engine.ledger.create_license(org_id, catalog_entry.id, SEAT, seat_count=5)
    )
    asyncio.run(engine.ledger.assign_users(lic.id, org_id, [users[0]], None))

    granted = asyncio.run(engine.ledger.assign_users(lic.id, org_id, users, None))
    assert [a.user_id for a in granted] == [users[1]]
    assert asyncio.run(engine.ledger.get_license(lic.id)).seats_used == 2

    with pytest.raises(ConflictError):
        asyncio.run(engine.ledger.assign_users(lic.id, org_id, users, None))


def test_assign_sends_one_notification_per_grant(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    users = _members(engine, org_id, 3)
    lic = asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))
    asyncio.run(engine.ledger.assign_users(lic.id, org_id, users, None))
    sent = engine.notifier.of_type(LICENSE_ASSIGNED)
    assert {n.user_id for n in sent} == set(users)
    assert all(n.payload["license_id"] == str(lic.id) for n in sent)


def test_notification_failure_does_not_undo_grant(catalog_entry: CatalogCourse) -> None:
    engine = build_engine()
    engine.repos.catalog.add_catalog_entry(catalog_entry)

    async def broken(*args, **kwargs):
        raise RuntimeError("mail server down")

    engine.notifier.notify = broken  # type: ignore[method-assign]
    org_id = uuid4()
    users = _members(engine, org_id, 1)
    lic = asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))
    granted = asyncio.run(engine.ledger.assign_users(lic.id, org_id, users, None))
    assert len(granted) == 1
    assert asyncio.run(engine.ledger.has_access(users[0], catalog_entry.id)) is True


def test_concurrent_assignments_never_oversell(catalog_entry: CatalogCourse) -> None:
    engine = build_engine(licenses=YieldingLicenseRepo())
    engine.repos.catalog.add_catalog_entry(catalog_entry)
    org_id = uuid4()
    users = _members(engine, org_id, 4)

    async def scenario():
        lic = await engine.ledger.create_license(org_id, catalog_entry.id, SEAT, seat_count=2)
        results = await asyncio.gather(
            *(engine.ledger.assign_users(lic.id, org_id, [u], None) for u in users),
            return_exceptions=True,
        )
        return lic, results

    lic, results = asyncio.run(scenario())
    granted = [r for r in results if isinstance(r, list)]
    refused = [r for r in results if isinstance(r, BadRequestError)]
    assert len(granted) == 2
    assert len(refused) == 2
    assert all(e.reason == NO_SEATS for e in refused)
    # every caller passed the up-front seat check; the row update refused two
    assert engine.repos.licenses.refused_consumes == 2
    assert asyncio.run(engine.ledger.get_license(lic.id)).seats_used == 2


# ---- revocation ----


def test_revoke_twice_rejected(engine: Engine, catalog_entry: CatalogCourse) -> None:
    org_id = uuid4()
    users = _members(engine, org_id, 1)
    lic = asyncio.run(
        engine.ledger.create_license(org_id, catalog_entry.id, SEAT, seat_count=2)
    )
    [access] = asyncio.run(engine.ledger.assign_users(lic.id, org_id, users, None))
    revoked = asyncio.run(engine.ledger.revoke_access(access.id, None, "offboarded"))
    assert revoked.status == REVOKED
    assert revoked.revocation_reason == "offboarded"
    with pytest.raises(BadRequestError):
        asyncio.run(engine.ledger.revoke_access(access.id, None))


def test_revoke_from_other_org_forbidden(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    users = _members(engine, org_id, 1)
    lic = asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))
    [access] = asyncio.run(engine.ledger.assign_users(lic.id, org_id, users, None))
    with pytest.raises(ForbiddenError):
        asyncio.run(engine.ledger.revoke_access(access.id, None, org_id=uuid4()))


def test_seat_release_never_goes_negative(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    lic = asyncio.run(
        engine.ledger.create_license(uuid4(), catalog_entry.id, SEAT, seat_count=2)
    )
    asyncio.run(engine.repos.licenses.release_seats(lic.id, 3))
    assert asyncio.run(engine.ledger.get_license(lic.id)).seats_used == 0


# ---- cancellation and expiry ----


def test_cancel_revokes_every_grant(engine: Engine, catalog_entry: CatalogCourse) -> None:
    org_id = uuid4()
    users = _members(engine, org_id, 3)
    lic = asyncio.run(
        engine.ledger.create_license(org_id, catalog_entry.id, SEAT, seat_count=5)
    )
    asyncio.run(engine.ledger.assign_users(lic.id, org_id, users, None))

    cancelled = asyncio.run(engine.ledger.cancel_license(lic.id, "refund"))
    assert cancelled.status == CANCELLED
    assert cancelled.seats_used == 0
    assert cancelled.cancellation_reason == "refund"

    grants = asyncio.run(engine.ledger.list_license_users(lic.id))
    assert len(grants) == 3
    assert all(g.status == REVOKED for g in grants)
    assert all(g.revocation_reason == CANCELLATION_REVOKE_REASON for g in grants)
    assert not any(
        asyncio.run(engine.ledger.has_access(u, catalog_entry.id)) for u in users
    )

    with pytest.raises(BadRequestError):
        asyncio.run(engine.ledger.cancel_license(lic.id))


class _SlowInsertAccessRepo(InMemoryAccessRepo):
    async def add_many(self, accesses):
        await asyncio.sleep(0)
        return await super().add_many(accesses)


def test_grant_racing_cancel_is_revoked(catalog_entry: CatalogCourse) -> None:
    engine = build_engine(accesses=_SlowInsertAccessRepo())
    engine.repos.catalog.add_catalog_entry(catalog_entry)
    org_id = uuid4()
    users = _members(engine, org_id, 1)

    async def scenario():
        lic = await engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED)
        # the assignment suspends just before writing; cancel runs in the gap
        return lic, await asyncio.gather(
            engine.ledger.assign_users(lic.id, org_id, users, None),
            engine.ledger.cancel_license(lic.id, "refund"),
            return_exceptions=True,
        )

    lic, (assigned, cancelled) = asyncio.run(scenario())
    assert isinstance(assigned, BadRequestError)
    assert assigned.reason == LICENSE_INACTIVE
    assert cancelled.status == CANCELLED

    [grant] = asyncio.run(engine.ledger.list_license_users(lic.id))
    assert grant.status == REVOKED
    assert grant.revocation_reason == CANCELLATION_REVOKE_REASON


def test_access_ends_at_valid_until_before_sweep(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    users = _members(engine, org_id, 1)
    lic = asyncio.run(
        engine.ledger.create_license(
            org_id, catalog_entry.id, TIME_LIMITED, duration_months=1
        )
    )
    asyncio.run(engine.ledger.assign_users(lic.id, org_id, users, None))

    engine.clock.now = lic.valid_until
    assert asyncio.run(engine.ledger.has_access(users[0], catalog_entry.id)) is True

    engine.clock.now = lic.valid_until + 1
    assert asyncio.run(engine.ledger.has_access(users[0], catalog_entry.id)) is False
    assert asyncio.run(engine.ledger.get_license(lic.id)).status == ACTIVE


def test_expiry_sweep_is_idempotent(engine: Engine, catalog_entry: CatalogCourse) -> None:
    lic = asyncio.run(
        engine.ledger.create_license(
            uuid4(), catalog_entry.id, TIME_LIMITED, duration_months=1
        )
    )
    assert asyncio.run(engine.ledger.expire_due_licenses()) == 0

    engine.clock.now = lic.valid_until + 1
    assert asyncio.run(engine.ledger.expire_due_licenses()) == 1
    assert asyncio.run(engine.ledger.expire_due_licenses()) == 0
    assert asyncio.run(engine.ledger.get_license(lic.id)).status == EXPIRED

    with pytest.raises(BadRequestError):
        asyncio.run(engine.ledger.cancel_license(lic.id))


def test_list_active_licenses_hides_lapsed(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    other = CatalogCourse.new(title="Terraform")
    engine.repos.catalog.add_catalog_entry(other)
    asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))
    timed = asyncio.run(
        engine.ledger.create_license(org_id, other.id, TIME_LIMITED, duration_months=1)
    )
    engine.clock.now = timed.valid_until + 1
    active = asyncio.run(engine.ledger.list_active_licenses(org_id))
    assert [lic.catalog_course_id for lic in active] == [catalog_entry.id]


# ---- enrollment authorization ----


def test_authorize_with_no_license(engine: Engine, catalog_entry: CatalogCourse) -> None:
    decision = asyncio.run(engine.ledger.authorize_enrollment(uuid4(), catalog_entry.id))
    assert decision.allowed is False
    assert decision.reason == NO_LICENSE


def test_authorize_claims_a_seat(engine: Engine, catalog_entry: CatalogCourse) -> None:
    org_id = uuid4()
    [user] = _members(engine, org_id, 1)
    lic = asyncio.run(
        engine.ledger.create_license(org_id, catalog_entry.id, SEAT, seat_count=1)
    )
    decision = asyncio.run(engine.ledger.authorize_enrollment(user, catalog_entry.id))
    assert decision.allowed is True
    assert decision.access is not None
    assert decision.access.assigned_by == user
    assert asyncio.run(engine.ledger.get_license(lic.id)).seats_used == 1

    # the existing grant wins; no second seat is consumed
    again = asyncio.run(engine.ledger.authorize_enrollment(user, catalog_entry.id))
    assert again.allowed is True
    assert asyncio.run(engine.ledger.get_license(lic.id)).seats_used == 1


def test_authorize_reports_no_seats(engine: Engine, catalog_entry: CatalogCourse) -> None:
    org_id = uuid4()
    first, second = _members(engine, org_id, 2)
    asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, SEAT, seat_count=1))
    asyncio.run(engine.ledger.authorize_enrollment(first, catalog_entry.id))
    decision = asyncio.run(engine.ledger.authorize_enrollment(second, catalog_entry.id))
    assert decision.allowed is False
    assert decision.reason == NO_SEATS


def test_authorize_reports_expired_license(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    [user] = _members(engine, org_id, 1)
    lic = asyncio.run(
        engine.ledger.create_license(
            org_id, catalog_entry.id, TIME_LIMITED, duration_months=1
        )
    )
    engine.clock.now = lic.valid_until + 1
    decision = asyncio.run(engine.ledger.authorize_enrollment(user, catalog_entry.id))
    assert decision.reason == LICENSE_EXPIRED


def test_authorize_reports_pending_license(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    [user] = _members(engine, org_id, 1)
    asyncio.run(
        engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED, pending=True)
    )
    decision = asyncio.run(engine.ledger.authorize_enrollment(user, catalog_entry.id))
    assert decision.reason == LICENSE_INACTIVE


def test_authorize_ignores_licenses_of_other_orgs(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    asyncio.run(engine.ledger.create_license(uuid4(), catalog_entry.id, UNLIMITED))
    [user] = _members(engine, uuid4(), 1)
    decision = asyncio.run(engine.ledger.authorize_enrollment(user, catalog_entry.id))
    assert decision.reason == NO_LICENSE


def test_mirror_progress_updates_active_grant(
    engine: Engine, catalog_entry: CatalogCourse
) -> None:
    org_id = uuid4()
    [user] = _members(engine, org_id, 1)
    lic = asyncio.run(engine.ledger.create_license(org_id, catalog_entry.id, UNLIMITED))
    asyncio.run(engine.ledger.assign_users(lic.id, org_id, [user], None))
    asyncio.run(engine.ledger.mirror_progress(user, catalog_entry.id, 40))
    [access] = asyncio.run(engine.ledger.list_user_access(user))
    assert access.progress_percentage == 40
