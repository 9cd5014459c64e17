from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from access_engine import worker
from access_engine.api import dependencies
from access_engine.models.course import CatalogCourse
from access_engine.models.license import ACTIVE, EXPIRED, TIME_LIMITED, UNLIMITED
from access_engine.services.collaborators import (
    LICENSE_ASSIGNED,
    NOTIFICATION_QUEUE,
    QueueNotifier,
)
from access_engine.services.entitlement_ledger import EntitlementLedger
from access_engine.services.task_queue import task_queue
from tests.conftest import FakeClock


def test_queue_notifier_serializes_ids() -> None:
    user_id, org_id, license_id = uuid4(), uuid4(), uuid4()
    notifier = QueueNotifier(task_queue)
    asyncio.run(
        notifier.notify(user_id, org_id, LICENSE_ASSIGNED, {"license_id": license_id})
    )

    task = asyncio.run(task_queue.dequeue(NOTIFICATION_QUEUE))
    assert task.payload == {
        "user_id": str(user_id),
        "org_id": str(org_id),
        "type": LICENSE_ASSIGNED,
        "payload": {"license_id": str(license_id)},
    }


def test_handle_notification_accepts_envelope() -> None:
    asyncio.run(
        worker.handle_notification(
            {"user_id": str(uuid4()), "org_id": None, "type": "quiz_passed", "payload": {}}
        )
    )


def test_handle_notification_rejects_missing_fields() -> None:
    with pytest.raises(ValueError, match="missing fields"):
        asyncio.run(worker.handle_notification({"type": "quiz_passed"}))


def test_drain_once_handles_queued_task() -> None:
    asyncio.run(
        QueueNotifier(task_queue).notify(uuid4(), None, "course_enrolled", {})
    )
    assert asyncio.run(worker.drain_once()) == 1
    assert asyncio.run(task_queue.queue_length(NOTIFICATION_QUEUE)) == 0
    assert asyncio.run(worker.drain_once()) == 0


def test_drain_once_drops_failing_task() -> None:
    asyncio.run(task_queue.enqueue(NOTIFICATION_QUEUE, {"garbage": True}))
    # logged and dropped, not raised
    assert asyncio.run(worker.drain_once()) == 1
    assert asyncio.run(task_queue.queue_length(NOTIFICATION_QUEUE)) == 0


def test_expire_licenses_once_sweeps_memory_store() -> None:
    repos = dependencies.memory_repos
    entry = CatalogCourse.new(title="Security Basics")
    repos.catalog.add_catalog_entry(entry)
    clock = FakeClock()
    ledger = EntitlementLedger(
        repos.licenses,
        repos.accesses,
        repos.memberships,
        repos.catalog,
        QueueNotifier(task_queue),
        clock=clock,
    )
    org_id = uuid4()
    timed = asyncio.run(
        ledger.create_license(org_id, entry.id, TIME_LIMITED, duration_months=1)
    )
    other = CatalogCourse.new(title="Networking")
    repos.catalog.add_catalog_entry(other)
    forever = asyncio.run(ledger.create_license(org_id, other.id, UNLIMITED))

    # the sweep runs on the wall clock, long past the pinned one
    assert asyncio.run(worker.expire_licenses_once()) == 1
    assert asyncio.run(repos.licenses.get(timed.id)).status == EXPIRED
    assert asyncio.run(repos.licenses.get(forever.id)).status == ACTIVE
    assert asyncio.run(worker.expire_licenses_once()) == 0
