from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Principal:
    """Caller identity taken from a validated access token.

    user_id: token subject
    roles:   platform roles ("admin" for platform operators and the
             payment collaborator, "user" for everyone else)

    Org-scoped routes enrich it with the caller's membership:
    org_id, org_role (owner|admin|instructor|learner).
    """

    user_id: UUID
    roles: frozenset[str]
    org_id: UUID | None = None
    org_role: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_org_role(self, roles: set[str] | frozenset[str]) -> bool:
        return self.org_role in roles

    def is_platform_admin(self) -> bool:
        return "admin" in self.roles
