from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

LICENSE_MANAGER_ROLES = frozenset({"owner", "admin"})


@dataclass(frozen=True, slots=True)
class OrgMembership:
    """A user's membership in an organization (maintained by the identity
    service; read-only here)."""

    org_id: UUID
    user_id: UUID
    org_role: str  # owner|admin|instructor|learner

    @property
    def can_manage_licenses(self) -> bool:
        return self.org_role in LICENSE_MANAGER_ROLES
