from __future__ import annotations

from typing import Protocol
from uuid import UUID

from access_engine.models.certificate import Certificate


class CertificateRepo(Protocol):
    async def get_live(self, user_id: UUID, course_id: UUID) -> Certificate | None: ...
    async def add_if_absent(self, certificate: Certificate) -> Certificate: ...
    async def list_by_user(self, user_id: UUID) -> list[Certificate]: ...


class InMemoryCertificateRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Certificate] = {}

    async def get_live(self, user_id: UUID, course_id: UUID) -> Certificate | None:
        for cert in self._by_id.values():
            if (
                cert.user_id == user_id
                and cert.course_id == course_id
                and not cert.is_revoked
            ):
                return cert
        return None

    async def add_if_absent(self, certificate: Certificate) -> Certificate:
        """Store the certificate unless a live one exists for (user, course);
        either way return the live certificate."""
        existing = await self.get_live(certificate.user_id, certificate.course_id)
        if existing is not None:
            return existing
        self._by_id[certificate.id] = certificate
        return certificate

    async def list_by_user(self, user_id: UUID) -> list[Certificate]:
        found = [c for c in self._by_id.values() if c.user_id == user_id]
        return sorted(found, key=lambda c: c.issued_at, reverse=True)
