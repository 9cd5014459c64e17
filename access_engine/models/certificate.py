from __future__ import annotations

import uuid
from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class CertificateMetadata:
    total_lessons: int = 0
    total_quizzes: int = 0
    total_time_spent_minutes: int = 0
    average_quiz_score: int = 0


@dataclass(frozen=True, slots=True)
class Certificate:
    id: UUID
    org_id: UUID | None
    user_id: UUID
    course_id: UUID
    certificate_number: str
    completion_date: int
    issued_at: int
    metadata: CertificateMetadata
    is_revoked: bool = False

    @staticmethod
    def new(
        *,
        org_id: UUID | None,
        user_id: UUID,
        course_id: UUID,
        completion_date: int,
        issued_at: int,
        metadata: CertificateMetadata,
    ) -> Certificate:
        return Certificate(
            id=uuid.uuid4(),
            org_id=org_id,
            user_id=user_id,
            course_id=course_id,
            certificate_number=certificate_number(org_id, issued_at),
            completion_date=completion_date,
            issued_at=issued_at,
            metadata=metadata,
        )


def _base36(value: int) -> str:
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def certificate_number(org_id: UUID | None, issued_at: int) -> str:
    """Human-quotable number: ORG4-<base36 millis>-<8 random hex>."""
    prefix = str(org_id)[:4].upper() if org_id else "CERT"
    stamp = _base36(issued_at * 1000)
    return f"{prefix}-{stamp}-{uuid.uuid4().hex[:8].upper()}"
