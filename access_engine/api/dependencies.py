from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass, replace
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from access_engine.core.config import SETTINGS
from access_engine.db.engine import async_session_factory, session_scope
from access_engine.models.organization import LICENSE_MANAGER_ROLES
from access_engine.models.principal import Principal
from access_engine.repos.access_repo import AccessRepo, InMemoryAccessRepo
from access_engine.repos.catalog_repo import InMemoryCourseCatalog
from access_engine.repos.certificate_repo import CertificateRepo, InMemoryCertificateRepo
from access_engine.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from access_engine.repos.license_repo import InMemoryLicenseRepo, LicenseRepo
from access_engine.repos.org_membership_repo import (
    InMemoryOrgMembershipRepo,
    OrgMembershipRepo,
)
from access_engine.repos.pg_access_repo import PgAccessRepo
from access_engine.repos.pg_catalog_repo import PgCourseCatalog
from access_engine.repos.pg_certificate_repo import PgCertificateRepo
from access_engine.repos.pg_enrollment_repo import PgEnrollmentRepo
from access_engine.repos.pg_license_repo import PgLicenseRepo
from access_engine.repos.pg_org_membership_repo import PgOrgMembershipRepo
from access_engine.services import token_service
from access_engine.services.collaborators import (
    CertificateIssuer,
    Notifier,
    QueueNotifier,
    RepoCertificateIssuer,
    SessionCertificateIssuer,
)
from access_engine.services.completion_cascade import CompletionCascade
from access_engine.services.entitlement_ledger import EntitlementLedger
from access_engine.services.progress_tracker import ProgressTracker
from access_engine.services.task_queue import task_queue

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Repos:
    """Every repository a request may touch, bound to one unit of work."""

    licenses: LicenseRepo
    accesses: AccessRepo
    enrollments: EnrollmentRepo
    catalog: InMemoryCourseCatalog | PgCourseCatalog
    memberships: OrgMembershipRepo
    certificates: CertificateRepo


def new_memory_repos() -> Repos:
    return Repos(
        licenses=InMemoryLicenseRepo(),
        accesses=InMemoryAccessRepo(),
        enrollments=InMemoryEnrollmentRepo(),
        catalog=InMemoryCourseCatalog(),
        memberships=InMemoryOrgMembershipRepo(),
        certificates=InMemoryCertificateRepo(),
    )


def pg_repos(session) -> Repos:
    return Repos(
        licenses=PgLicenseRepo(session),
        accesses=PgAccessRepo(session),
        enrollments=PgEnrollmentRepo(session),
        catalog=PgCourseCatalog(session),
        memberships=PgOrgMembershipRepo(session),
        certificates=PgCertificateRepo(session),
    )


# Module-level store used when DATABASE_URL is not set (dev, tests).
# Tests swap it out through reset_memory_repos().
memory_repos = new_memory_repos()


def reset_memory_repos() -> Repos:
    global memory_repos
    memory_repos = new_memory_repos()
    return memory_repos


async def get_repos() -> AsyncGenerator[Repos, None]:
    """Request-scoped repositories.

    Postgres: one session per request, committed when the handler
    returns, rolled back when it raises.
    """
    if async_session_factory is None:
        yield memory_repos
        return
    async with session_scope() as session:
        yield pg_repos(session)


# ---------------------------------------------------------------------------
# Collaborators and services
# ---------------------------------------------------------------------------

_notifier = QueueNotifier(task_queue)


def get_notifier() -> Notifier:
    return _notifier


def get_certificate_issuer(
    repos: Annotated[Repos, Depends(get_repos)],
) -> CertificateIssuer:
    # The cascade runs as a background task, after the request session
    # is gone, so the Postgres issuer opens its own.
    if async_session_factory is None:
        return RepoCertificateIssuer(repos.certificates)
    return SessionCertificateIssuer(session_scope, PgCertificateRepo)


def get_ledger(
    repos: Annotated[Repos, Depends(get_repos)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> EntitlementLedger:
    return EntitlementLedger(
        repos.licenses,
        repos.accesses,
        repos.memberships,
        repos.catalog,
        notifier,
    )


def get_tracker(
    repos: Annotated[Repos, Depends(get_repos)],
    ledger: Annotated[EntitlementLedger, Depends(get_ledger)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    issuer: Annotated[CertificateIssuer, Depends(get_certificate_issuer)],
) -> ProgressTracker:
    return ProgressTracker(
        repos.enrollments,
        repos.catalog,
        ledger,
        CompletionCascade(issuer, notifier),
        notifier,
        max_retries=SETTINGS.progress_max_retries,
    )


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Validate the bearer token and return the caller's Principal."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    try:
        user_id = UUID(claims["sub"])
    except ValueError:
        logger.warning("Token subject is not a UUID: %s", claims["sub"])
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    return Principal(user_id=user_id, roles=frozenset(claims.get("roles", [])))


def require_role(role: str):
    """Dependency factory: demand a platform role.

    Usage: Depends(require_role("admin"))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s", principal.user_id, role
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


# ---------------------------------------------------------------------------
# Org-scoped access guards
# ---------------------------------------------------------------------------


async def resolve_org_principal(
    org_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    repos: Annotated[Repos, Depends(get_repos)],
) -> Principal:
    """Attach org_id/org_role from the path's org to the Principal.

    403 when the caller is not a member.  Platform admins act as org
    admins everywhere.
    """
    if principal.is_platform_admin():
        return replace(principal, org_id=org_id, org_role="admin")

    membership = await repos.memberships.get(org_id, principal.user_id)
    if membership is None:
        logger.warning(
            "Access denied: user=%s not a member of org=%s",
            principal.user_id,
            org_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this organization",
        )

    return replace(principal, org_id=org_id, org_role=membership.org_role)


def require_any_org_role(roles: set[str] | frozenset[str]):
    """Dependency factory: demand one of ``roles`` in the path's org.

    Usage::

        _require_manager = require_any_org_role({"owner", "admin"})
    """

    def _guard(
        principal: Annotated[Principal, Depends(resolve_org_principal)],
    ) -> Principal:
        if principal.is_platform_admin():
            return principal
        if not principal.has_any_org_role(roles):
            logger.warning(
                "Access denied: user=%s org_role=%s required_any=%s org=%s",
                principal.user_id,
                principal.org_role,
                sorted(roles),
                principal.org_id,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient org permissions",
            )
        return principal

    return _guard


require_license_manager = require_any_org_role(LICENSE_MANAGER_ROLES)


def org_id_of(principal: Principal) -> UUID:
    """org_id from an org-scoped Principal.

    The org guards always set it before a handler runs.
    """
    if principal.org_id is None:
        raise HTTPException(status_code=500, detail="org context not resolved")
    return principal.org_id
