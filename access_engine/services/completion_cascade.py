"""Side effects of a course completion.

Runs once, after the enrollment write that moved ACTIVE -> COMPLETED has
landed.  Each step is independent: a failure is logged with the ids
needed to replay it by hand, counted, and swallowed.  Completion itself
is never rolled back because a notification or certificate failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from access_engine.core.metrics import CASCADE_FAILURES
from access_engine.models.certificate import Certificate, CertificateMetadata
from access_engine.models.enrollment import Enrollment
from access_engine.services.collaborators import (
    COURSE_COMPLETED,
    CertificateIssuer,
    Notifier,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompletionSnapshot:
    enrollment_id: UUID
    org_id: UUID | None
    user_id: UUID
    course_id: UUID
    course_title: str
    completed_at: int
    metadata: CertificateMetadata


def build_snapshot(enrollment: Enrollment, course_title: str) -> CompletionSnapshot:
    best_scores = [h.best_score for h in enrollment.quiz_attempts]
    if best_scores:
        n = len(best_scores)
        average = (2 * sum(best_scores) + n) // (2 * n)
    else:
        average = 0
    return CompletionSnapshot(
        enrollment_id=enrollment.id,
        org_id=enrollment.org_id,
        user_id=enrollment.user_id,
        course_id=enrollment.course_id,
        course_title=course_title,
        completed_at=enrollment.completed_at or enrollment.last_accessed_at or 0,
        metadata=CertificateMetadata(
            total_lessons=len(enrollment.lesson_progress),
            total_quizzes=len(enrollment.quiz_attempts),
            total_time_spent_minutes=sum(
                p.time_spent_minutes for p in enrollment.lesson_progress
            ),
            average_quiz_score=average,
        ),
    )


class CompletionCascade:
    def __init__(self, certificates: CertificateIssuer, notifier: Notifier) -> None:
        self._certificates = certificates
        self._notifier = notifier

    async def run(self, snapshot: CompletionSnapshot) -> Certificate | None:
        log_ids = {
            "enrollment_id": str(snapshot.enrollment_id),
            "course_id": str(snapshot.course_id),
            "org_id": str(snapshot.org_id),
        }

        try:
            await self._notifier.notify(
                snapshot.user_id,
                snapshot.org_id,
                COURSE_COMPLETED,
                {
                    "course_id": str(snapshot.course_id),
                    "course_title": snapshot.course_title,
                },
            )
        except Exception:
            CASCADE_FAILURES.labels(step="notification").inc()
            logger.exception(
                "Completion notification failed user=%s course=%s enrollment=%s",
                snapshot.user_id,
                snapshot.course_id,
                snapshot.enrollment_id,
                extra=log_ids,
            )

        try:
            return await self._certificates.issue_or_get(
                snapshot.org_id,
                snapshot.user_id,
                snapshot.course_id,
                snapshot.metadata,
                snapshot.completed_at,
            )
        except Exception:
            CASCADE_FAILURES.labels(step="certificate").inc()
            logger.exception(
                "Certificate issuance failed user=%s course=%s enrollment=%s",
                snapshot.user_id,
                snapshot.course_id,
                snapshot.enrollment_id,
                extra=log_ids,
            )
            return None
