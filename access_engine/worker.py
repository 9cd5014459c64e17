"""Background worker process.

RUN:  python -m access_engine.worker

Same image as the API, different command:
  api:    uvicorn access_engine.main:app --host 0.0.0.0 --port 8000
  worker: python -m access_engine.worker

Two loops share the event loop:

  queue loop   drains the registered task queues (today: "notifications",
               filled by QueueNotifier) and dispatches each task to its
               handler.  A failing task is logged and dropped.
  expiry sweep every LICENSE_SWEEP_INTERVAL_SECONDS moves ACTIVE licenses
               past valid_until to EXPIRED.  Re-running it is a no-op, so
               several workers sweeping at once is harmless.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from access_engine.api import dependencies
from access_engine.core.config import SETTINGS
from access_engine.core.logging import setup_logging
from access_engine.db.engine import async_session_factory, session_scope
from access_engine.services.collaborators import NOTIFICATION_QUEUE, QueueNotifier
from access_engine.services.entitlement_ledger import EntitlementLedger
from access_engine.services.task_queue import task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("access_engine.worker")

_IDLE_SLEEP_SECONDS = 0.5


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(NOTIFICATION_QUEUE)
async def handle_notification(payload: dict) -> None:
    """Hand a notification fact to the delivery channel.

    Rendering and sending (in-app feed, email) belong to the messaging
    service; this process only validates the envelope and forwards it.
    """
    missing = [k for k in ("user_id", "type", "payload") if k not in payload]
    if missing:
        raise ValueError(f"notification task missing fields: {missing}")
    logger.info(
        "Delivering %s notification to user=%s org=%s",
        payload["type"],
        payload["user_id"],
        payload.get("org_id"),
        extra={"org_id": payload.get("org_id")},
    )


# ---------------------------------------------------------------------------
# License expiry sweep
# ---------------------------------------------------------------------------


def _ledger_for(repos: dependencies.Repos) -> EntitlementLedger:
    return EntitlementLedger(
        repos.licenses,
        repos.accesses,
        repos.memberships,
        repos.catalog,
        QueueNotifier(task_queue),
    )


async def expire_licenses_once() -> int:
    if async_session_factory is None:
        return await _ledger_for(dependencies.memory_repos).expire_due_licenses()
    async with session_scope() as session:
        return await _ledger_for(dependencies.pg_repos(session)).expire_due_licenses()


async def run_expiry_sweep(interval_seconds: int) -> None:
    logger.info("License expiry sweep every %ds", interval_seconds)
    while True:
        try:
            expired = await expire_licenses_once()
            if expired:
                logger.info("Expiry sweep moved %d license(s) to EXPIRED", expired)
        except Exception:
            logger.exception("License expiry sweep failed")
        await asyncio.sleep(interval_seconds)


# ---------------------------------------------------------------------------
# Queue loop
# ---------------------------------------------------------------------------


async def drain_once() -> int:
    """One round over every registered queue; returns tasks handled."""
    handled = 0
    for queue_name, handler in HANDLERS.items():
        task = await task_queue.dequeue(queue_name, timeout=1)
        if task is None:
            continue
        handled += 1
        try:
            await handler(task.payload)
            logger.info("Task %s on [%s] completed", task.id, queue_name)
        except Exception:
            # no dead-letter queue; the task is dropped
            logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return handled


async def run_queue_loop() -> None:
    logger.info("Worker listening on queues: %s", list(HANDLERS))
    while True:
        if not await drain_once():
            # the in-memory queue returns at once when empty
            await asyncio.sleep(_IDLE_SLEEP_SECONDS)


async def run_worker() -> None:
    await asyncio.gather(
        run_queue_loop(),
        run_expiry_sweep(SETTINGS.license_sweep_interval_seconds),
    )


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
