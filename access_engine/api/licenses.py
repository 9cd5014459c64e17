"""License and access endpoints.

POST /v1/licenses is called by the payment collaborator (platform admin
token) once a purchase has been recorded.  Everything under
/v1/orgs/{org_id}/... is org-scoped: the caller's membership is resolved
from the path, and writes require an owner/admin org role.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from access_engine.api.dependencies import (
    get_ledger,
    org_id_of,
    require_license_manager,
    require_role,
    resolve_org_principal,
)
from access_engine.models.license import License, PaymentFacts, UserAccess
from access_engine.models.principal import Principal
from access_engine.services.entitlement_ledger import EntitlementLedger

router = APIRouter(tags=["licenses"])

_require_platform_admin = require_role("admin")


# --- Pydantic schemas ---


class LicenseCreateIn(BaseModel):
    org_id: UUID
    catalog_course_id: UUID
    kind: str  # SEAT|UNLIMITED|TIME_LIMITED
    seat_count: int | None = None
    duration_months: int | None = None
    amount_paid: Decimal = Decimal("0")
    currency: str = "USD"
    payment_reference: str | None = None
    is_subscription: bool = False
    subscription_id: str | None = None
    subscription_interval: str | None = None
    next_billing_at: int | None = None
    purchased_by: UUID | None = None
    auto_assign: bool = False
    pending: bool = False


class LicenseOut(BaseModel):
    id: UUID
    org_id: UUID
    catalog_course_id: UUID
    kind: str
    status: str
    seat_count: int | None
    seats_used: int
    seats_available: int | None
    valid_from: int
    valid_until: int | None
    amount_paid: str
    currency: str
    payment_reference: str | None
    purchased_by: UUID | None
    purchased_at: int
    is_subscription: bool
    subscription_id: str | None
    next_billing_at: int | None
    cancelled_at: int | None
    cancellation_reason: str | None


class AccessOut(BaseModel):
    id: UUID
    user_id: UUID
    license_id: UUID
    org_id: UUID
    catalog_course_id: UUID
    status: str
    progress_percentage: int
    assigned_at: int
    assigned_by: UUID | None
    revoked_at: int | None
    revoked_by: UUID | None
    revocation_reason: str | None


class AssignIn(BaseModel):
    user_ids: list[UUID] = Field(min_length=1)


class ReasonIn(BaseModel):
    reason: str | None = None


class SubscriptionIn(BaseModel):
    subscription_id: str
    next_billing_at: int | None = None


class AccessCheckOut(BaseModel):
    catalog_course_id: UUID
    has_access: bool


def _license_out(lic: License) -> LicenseOut:
    return LicenseOut(
        id=lic.id,
        org_id=lic.org_id,
        catalog_course_id=lic.catalog_course_id,
        kind=lic.kind,
        status=lic.status,
        seat_count=lic.seat_count,
        seats_used=lic.seats_used,
        seats_available=lic.seats_available,
        valid_from=lic.valid_from,
        valid_until=lic.valid_until,
        amount_paid=str(lic.amount_paid),
        currency=lic.currency,
        payment_reference=lic.payment_reference,
        purchased_by=lic.purchased_by,
        purchased_at=lic.purchased_at,
        is_subscription=lic.is_subscription,
        subscription_id=lic.subscription_id,
        next_billing_at=lic.next_billing_at,
        cancelled_at=lic.cancelled_at,
        cancellation_reason=lic.cancellation_reason,
    )


def _access_out(access: UserAccess) -> AccessOut:
    return AccessOut(
        id=access.id,
        user_id=access.user_id,
        license_id=access.license_id,
        org_id=access.org_id,
        catalog_course_id=access.catalog_course_id,
        status=access.status,
        progress_percentage=access.progress_percentage,
        assigned_at=access.assigned_at,
        assigned_by=access.assigned_by,
        revoked_at=access.revoked_at,
        revoked_by=access.revoked_by,
        revocation_reason=access.revocation_reason,
    )


# ---------------------------------------------------------------------------
# Payment collaborator
# ---------------------------------------------------------------------------


@router.post(
    "/v1/licenses", response_model=LicenseOut, status_code=status.HTTP_201_CREATED
)
async def create_license(
    body: LicenseCreateIn,
    _principal: Annotated[Principal, Depends(_require_platform_admin)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> LicenseOut:
    """Record a purchased license.  ``auto_assign`` grants the purchaser a seat."""
    lic = await ledger.create_license(
        body.org_id,
        body.catalog_course_id,
        body.kind,
        seat_count=body.seat_count,
        duration_months=body.duration_months,
        payment=PaymentFacts(
            amount_paid=body.amount_paid,
            currency=body.currency,
            payment_reference=body.payment_reference,
            is_subscription=body.is_subscription,
            subscription_id=body.subscription_id,
            subscription_interval=body.subscription_interval,
            next_billing_at=body.next_billing_at,
        ),
        purchased_by=body.purchased_by,
        auto_assign_to=body.purchased_by if body.auto_assign else None,
        pending=body.pending,
    )
    return _license_out(lic)


@router.post("/v1/licenses/{license_id}/activate", response_model=LicenseOut)
async def activate_license(
    license_id: UUID,
    _principal: Annotated[Principal, Depends(_require_platform_admin)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> LicenseOut:
    """Payment settled: PENDING -> ACTIVE."""
    return _license_out(await ledger.activate_license(license_id))


@router.put("/v1/licenses/{license_id}/subscription", response_model=LicenseOut)
async def update_subscription(
    license_id: UUID,
    body: SubscriptionIn,
    _principal: Annotated[Principal, Depends(_require_platform_admin)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> LicenseOut:
    lic = await ledger.update_subscription(
        license_id, body.subscription_id, body.next_billing_at
    )
    return _license_out(lic)


# ---------------------------------------------------------------------------
# Org-scoped license views and management
# ---------------------------------------------------------------------------


@router.get("/v1/orgs/{org_id}/licenses", response_model=list[LicenseOut])
async def list_org_licenses(
    principal: Annotated[Principal, Depends(require_license_manager)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[LicenseOut]:
    licenses = await ledger.list_org_licenses(org_id_of(principal), status_filter)
    return [_license_out(lic) for lic in licenses]


# declared before /{license_id} so "active" is not parsed as an id
@router.get("/v1/orgs/{org_id}/licenses/active", response_model=list[LicenseOut])
async def list_active_licenses(
    principal: Annotated[Principal, Depends(resolve_org_principal)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> list[LicenseOut]:
    """Any member may see which courses the org currently covers."""
    licenses = await ledger.list_active_licenses(org_id_of(principal))
    return [_license_out(lic) for lic in licenses]


@router.get("/v1/orgs/{org_id}/licenses/{license_id}", response_model=LicenseOut)
async def get_license(
    license_id: UUID,
    principal: Annotated[Principal, Depends(require_license_manager)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> LicenseOut:
    return _license_out(await ledger.get_license(license_id, org_id_of(principal)))


@router.get(
    "/v1/orgs/{org_id}/licenses/{license_id}/users", response_model=list[AccessOut]
)
async def list_license_users(
    license_id: UUID,
    principal: Annotated[Principal, Depends(require_license_manager)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[AccessOut]:
    accesses = await ledger.list_license_users(
        license_id, org_id_of(principal), status_filter
    )
    return [_access_out(a) for a in accesses]


@router.post(
    "/v1/orgs/{org_id}/licenses/{license_id}/assign",
    response_model=list[AccessOut],
    status_code=status.HTTP_201_CREATED,
)
async def assign_users(
    license_id: UUID,
    body: AssignIn,
    principal: Annotated[Principal, Depends(require_license_manager)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> list[AccessOut]:
    granted = await ledger.assign_users(
        license_id, org_id_of(principal), body.user_ids, principal.user_id
    )
    return [_access_out(a) for a in granted]


@router.put("/v1/orgs/{org_id}/licenses/{license_id}/cancel", response_model=LicenseOut)
async def cancel_license(
    license_id: UUID,
    body: ReasonIn,
    principal: Annotated[Principal, Depends(require_license_manager)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> LicenseOut:
    lic = await ledger.cancel_license(
        license_id,
        body.reason,
        org_id=org_id_of(principal),
        actor=principal.user_id,
    )
    return _license_out(lic)


# ---------------------------------------------------------------------------
# Org-scoped access
# ---------------------------------------------------------------------------


@router.put("/v1/orgs/{org_id}/access/{access_id}/revoke", response_model=AccessOut)
async def revoke_access(
    access_id: UUID,
    body: ReasonIn,
    principal: Annotated[Principal, Depends(require_license_manager)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> AccessOut:
    access = await ledger.revoke_access(
        access_id, principal.user_id, body.reason, org_id=org_id_of(principal)
    )
    return _access_out(access)


@router.get("/v1/orgs/{org_id}/access/me", response_model=list[AccessOut])
async def my_access(
    principal: Annotated[Principal, Depends(resolve_org_principal)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> list[AccessOut]:
    accesses = await ledger.list_user_access(principal.user_id, org_id_of(principal))
    return [_access_out(a) for a in accesses]


@router.get(
    "/v1/orgs/{org_id}/access/check/{catalog_course_id}",
    response_model=AccessCheckOut,
)
async def check_access(
    catalog_course_id: UUID,
    principal: Annotated[Principal, Depends(resolve_org_principal)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
) -> AccessCheckOut:
    allowed = await ledger.has_access(
        principal.user_id, catalog_course_id, org_id_of(principal)
    )
    return AccessCheckOut(catalog_course_id=catalog_course_id, has_access=allowed)
