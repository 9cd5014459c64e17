from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

# License kinds
SEAT = "SEAT"
UNLIMITED = "UNLIMITED"
TIME_LIMITED = "TIME_LIMITED"
LICENSE_KINDS = (SEAT, UNLIMITED, TIME_LIMITED)

# License statuses
PENDING = "PENDING"
ACTIVE = "ACTIVE"
EXPIRED = "EXPIRED"
CANCELLED = "CANCELLED"
OPEN_STATUSES = (PENDING, ACTIVE)

# Access statuses (ACTIVE shared with licenses)
REVOKED = "REVOKED"
COMPLETED = "COMPLETED"


@dataclass(frozen=True, slots=True)
class PaymentFacts:
    """What the payment collaborator tells us about a purchase.

    The engine records these; it never moves money.
    """

    amount_paid: Decimal = Decimal("0")
    currency: str = "USD"
    payment_reference: str | None = None  # opaque payment-intent id
    is_subscription: bool = False
    subscription_id: str | None = None
    subscription_interval: str | None = None  # month|year
    next_billing_at: int | None = None


@dataclass(frozen=True, slots=True)
class License:
    """An organization's entitlement to a catalog course."""

    id: UUID
    org_id: UUID
    catalog_course_id: UUID
    kind: str  # SEAT|UNLIMITED|TIME_LIMITED
    status: str  # PENDING|ACTIVE|EXPIRED|CANCELLED
    valid_from: int
    purchased_at: int
    purchased_by: UUID | None = None
    seat_count: int | None = None
    seats_used: int = 0
    valid_until: int | None = None
    amount_paid: Decimal = Decimal("0")
    currency: str = "USD"
    payment_reference: str | None = None
    is_subscription: bool = False
    subscription_id: str | None = None
    subscription_interval: str | None = None
    next_billing_at: int | None = None
    cancelled_at: int | None = None
    cancellation_reason: str | None = None
    version: int = 1

    @property
    def seats_available(self) -> int | None:
        """Free seats on a SEAT license; None when seats are not counted."""
        if self.kind != SEAT or self.seat_count is None:
            return None
        return max(0, self.seat_count - self.seats_used)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_expired_at(self, now: int) -> bool:
        return self.valid_until is not None and now > self.valid_until

    def is_valid_at(self, now: int) -> bool:
        """ACTIVE and inside the validity window (valid_until is inclusive)."""
        return self.status == ACTIVE and not self.is_expired_at(now)

    @staticmethod
    def new(
        *,
        org_id: UUID,
        catalog_course_id: UUID,
        kind: str,
        now: int,
        payment: PaymentFacts,
        purchased_by: UUID | None = None,
        seat_count: int | None = None,
        valid_until: int | None = None,
        pending: bool = False,
    ) -> License:
        return License(
            id=uuid4(),
            org_id=org_id,
            catalog_course_id=catalog_course_id,
            kind=kind,
            status=PENDING if pending else ACTIVE,
            valid_from=now,
            purchased_at=now,
            purchased_by=purchased_by,
            seat_count=seat_count if kind == SEAT else None,
            valid_until=valid_until,
            amount_paid=payment.amount_paid,
            currency=payment.currency,
            payment_reference=payment.payment_reference,
            is_subscription=payment.is_subscription,
            subscription_id=payment.subscription_id,
            subscription_interval=payment.subscription_interval,
            next_billing_at=payment.next_billing_at,
        )


@dataclass(frozen=True, slots=True)
class UserAccess:
    """A single user's grant against a license."""

    id: UUID
    user_id: UUID
    license_id: UUID
    org_id: UUID
    catalog_course_id: UUID
    assigned_at: int
    status: str = ACTIVE  # ACTIVE|REVOKED|COMPLETED
    assigned_by: UUID | None = None
    progress_percentage: int = 0
    revoked_at: int | None = None
    revoked_by: UUID | None = None
    revocation_reason: str | None = None

    @staticmethod
    def new(
        *,
        user_id: UUID,
        license: License,
        now: int,
        assigned_by: UUID | None = None,
    ) -> UserAccess:
        return UserAccess(
            id=uuid4(),
            user_id=user_id,
            license_id=license.id,
            org_id=license.org_id,
            catalog_course_id=license.catalog_course_id,
            assigned_at=now,
            assigned_by=assigned_by,
        )
