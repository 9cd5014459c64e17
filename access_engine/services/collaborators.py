"""Interfaces to the services the engine consumes but does not own.

Notifier:          accepts "something happened to this learner" facts.
                   Delivery (in-app feed, email) is somebody else's job;
                   here we only record or enqueue.
CertificateIssuer: issues a completion certificate, idempotently per
                   (user, course).

Each has an in-process implementation (tests, dev runs) and the one the
HTTP app wires in production.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from access_engine.core.clock import Clock, utc_now
from access_engine.core.metrics import NOTIFICATIONS_ENQUEUED
from access_engine.models.certificate import Certificate, CertificateMetadata
from access_engine.repos.certificate_repo import CertificateRepo
from access_engine.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

# Notification types
COURSE_ENROLLED = "course_enrolled"
COURSE_COMPLETED = "course_completed"
QUIZ_PASSED = "quiz_passed"
QUIZ_FAILED = "quiz_failed"
LICENSE_ASSIGNED = "license_assigned"

NOTIFICATION_QUEUE = "notifications"


class Notifier(Protocol):
    async def notify(
        self,
        user_id: UUID,
        org_id: UUID | None,
        type: str,
        payload: dict[str, Any],
    ) -> None: ...


class CertificateIssuer(Protocol):
    async def issue_or_get(
        self,
        org_id: UUID | None,
        user_id: UUID,
        course_id: UUID,
        metadata: CertificateMetadata,
        completion_date: int,
    ) -> Certificate: ...


# ---------------------------------------------------------------------------
# Notifiers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SentNotification:
    user_id: UUID
    org_id: UUID | None
    type: str
    payload: dict[str, Any]


@dataclass
class RecordingNotifier:
    """Keeps every notification in a list.  Dev/test only."""

    sent: list[SentNotification] = field(default_factory=list)

    async def notify(
        self,
        user_id: UUID,
        org_id: UUID | None,
        type: str,
        payload: dict[str, Any],
    ) -> None:
        self.sent.append(SentNotification(user_id, org_id, type, dict(payload)))

    def of_type(self, type: str) -> list[SentNotification]:
        return [n for n in self.sent if n.type == type]


class QueueNotifier:
    """Pushes notification facts onto the task queue for the delivery worker."""

    def __init__(self, queue: TaskQueue, queue_name: str = NOTIFICATION_QUEUE) -> None:
        self._queue = queue
        self._queue_name = queue_name

    async def notify(
        self,
        user_id: UUID,
        org_id: UUID | None,
        type: str,
        payload: dict[str, Any],
    ) -> None:
        task = await self._queue.enqueue(
            self._queue_name,
            {
                "user_id": str(user_id),
                "org_id": str(org_id) if org_id is not None else None,
                "type": type,
                "payload": {k: _jsonable(v) for k, v in payload.items()},
            },
        )
        NOTIFICATIONS_ENQUEUED.labels(type=type).inc()
        logger.debug("Notification %s queued task=%s user=%s", type, task.id, user_id)


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    return value


# ---------------------------------------------------------------------------
# Certificate issuers
# ---------------------------------------------------------------------------


class RepoCertificateIssuer:
    """Issues certificates into a CertificateRepo.

    Idempotent: a second call for the same (user, course) returns the
    certificate that is already live instead of minting another.
    """

    def __init__(self, repo: CertificateRepo, *, clock: Clock = utc_now) -> None:
        self._repo = repo
        self._clock = clock

    async def issue_or_get(
        self,
        org_id: UUID | None,
        user_id: UUID,
        course_id: UUID,
        metadata: CertificateMetadata,
        completion_date: int,
    ) -> Certificate:
        existing = await self._repo.get_live(user_id, course_id)
        if existing is not None:
            return existing
        candidate = Certificate.new(
            org_id=org_id,
            user_id=user_id,
            course_id=course_id,
            completion_date=completion_date,
            issued_at=self._clock(),
            metadata=metadata,
        )
        stored = await self._repo.add_if_absent(candidate)
        if stored.id == candidate.id:
            logger.info(
                "Certificate %s issued user=%s course=%s",
                stored.certificate_number,
                user_id,
                course_id,
                extra={"course_id": str(course_id), "org_id": str(org_id)},
            )
        return stored


class SessionCertificateIssuer:
    """RepoCertificateIssuer over a fresh database session per call.

    The completion cascade runs after the request's session has been
    committed and closed, so it cannot borrow that one.
    """

    def __init__(
        self,
        session_scope: Callable[[], Any],
        repo_factory: Callable[[Any], CertificateRepo],
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._session_scope = session_scope
        self._repo_factory = repo_factory
        self._clock = clock

    async def issue_or_get(
        self,
        org_id: UUID | None,
        user_id: UUID,
        course_id: UUID,
        metadata: CertificateMetadata,
        completion_date: int,
    ) -> Certificate:
        async with self._session_scope() as session:
            issuer = RepoCertificateIssuer(self._repo_factory(session), clock=self._clock)
            return await issuer.issue_or_get(
                org_id, user_id, course_id, metadata, completion_date
            )
