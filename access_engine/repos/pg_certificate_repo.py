"""PostgreSQL implementation of CertificateRepo."""

from __future__ import annotations

import dataclasses
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from access_engine.db.tables import CertificateRow
from access_engine.models.certificate import Certificate, CertificateMetadata


class PgCertificateRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_live(self, user_id: UUID, course_id: UUID) -> Certificate | None:
        stmt = select(CertificateRow).where(
            CertificateRow.user_id == user_id,
            CertificateRow.course_id == course_id,
            CertificateRow.is_revoked.is_(False),
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_certificate(row)

    async def add_if_absent(self, certificate: Certificate) -> Certificate:
        stmt = (
            insert(CertificateRow)
            .values(
                id=certificate.id,
                org_id=certificate.org_id,
                user_id=certificate.user_id,
                course_id=certificate.course_id,
                certificate_number=certificate.certificate_number,
                completion_date=certificate.completion_date,
                issued_at=certificate.issued_at,
                metadata_json=dataclasses.asdict(certificate.metadata),
                is_revoked=False,
            )
            .on_conflict_do_nothing(
                index_elements=["user_id", "course_id"],
                index_where=CertificateRow.is_revoked.is_(False),
            )
            .returning(CertificateRow.id)
        )
        if (await self._session.execute(stmt)).scalar_one_or_none() is not None:
            return certificate
        existing = await self.get_live(certificate.user_id, certificate.course_id)
        if existing is None:
            raise RuntimeError("certificate insert skipped but no live certificate found")
        return existing

    async def list_by_user(self, user_id: UUID) -> list[Certificate]:
        stmt = (
            select(CertificateRow)
            .where(CertificateRow.user_id == user_id)
            .order_by(CertificateRow.issued_at.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_certificate(r) for r in rows]


def _row_to_certificate(row: CertificateRow) -> Certificate:
    return Certificate(
        id=row.id,
        org_id=row.org_id,
        user_id=row.user_id,
        course_id=row.course_id,
        certificate_number=row.certificate_number,
        completion_date=row.completion_date,
        issued_at=row.issued_at,
        metadata=CertificateMetadata(**(row.metadata_json or {})),
        is_revoked=row.is_revoked,
    )
