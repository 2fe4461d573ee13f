"""Background worker process.

RUN:  python -m app.worker

Same image as the API, different command:
  api:    uvicorn app.main:app --host 0.0.0.0 --port 8000
  worker: python -m app.worker

The loop polls every registered queue round-robin, dequeues one task at a
time and dispatches it to its handler.  A failing task is logged and
dropped; certificate issuance is idempotent and the maintenance sweep
re-finds anything a lost task missed.  Once per ``MAINTENANCE_INTERVAL``
the worker enqueues a maintenance task for itself.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.models.enrollment import Enrollment, EnrollmentStatus, utcnow
from app.repos.unit_of_work import UnitOfWork, unit_of_work
from app.services import task_queue as tq
from app.services.cache import cache_service
from app.services.enrollment_service import expire_overdue, modify_enrollment
from app.services.membership_service import find_expiring_memberships
from app.services.notifications import notification_dispatcher
from app.services.progress_tracker import summary_cache_key

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")

MAINTENANCE_INTERVAL = 3600
PAYMENT_DUE_WINDOW_DAYS = 3

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@register_handler(tq.NOTIFICATIONS_QUEUE)
async def handle_notification(payload: dict) -> None:
    # Delivery provider (email/SMS) plugs in here; the log line is the receipt.
    logger.info(
        "Delivering template=%s to recipient=%s",
        payload.get("template"),
        payload.get("recipient_id"),
        extra={"template": payload.get("template")},
    )


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


def certificate_id_for(enrollment_id: UUID) -> str:
    return f"CERT-{enrollment_id.hex[:12].upper()}"


def issue_certificate(e: Enrollment) -> Enrollment:
    if e.certificate_issued or e.status != EnrollmentStatus.COMPLETED:
        return e
    return replace(e, certificate_issued=True, certificate_id=certificate_id_for(e.id))


async def grant_certificate(uow: UnitOfWork, enrollment_id: UUID) -> Enrollment:
    """Mark a completed enrollment certified.  Repeated calls change nothing."""
    before, after = await modify_enrollment(uow, enrollment_id, issue_certificate)
    if after is before:
        return after
    await uow.commit()
    try:
        await cache_service.delete(summary_cache_key(enrollment_id))
    except Exception:
        logger.warning("Could not drop progress summary for %s", enrollment_id, exc_info=True)
    logger.info(
        "Certificate %s issued for enrollment=%s",
        after.certificate_id,
        enrollment_id,
        extra={"enrollment_id": str(enrollment_id)},
    )
    await notification_dispatcher.send(
        recipient_id=str(after.student_id),
        template="certificate_issued",
        context={
            "enrollment_id": str(enrollment_id),
            "certificate_id": after.certificate_id,
        },
    )
    return after


@register_handler(tq.CERTIFICATE_QUEUE)
async def handle_certificate_issuance(payload: dict) -> None:
    async with unit_of_work() as uow:
        await grant_certificate(uow, UUID(payload["enrollment_id"]))


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


async def send_payment_reminders(
    uow: UnitOfWork, now: datetime, within_days: int = PAYMENT_DUE_WINDOW_DAYS
) -> int:
    horizon = now + timedelta(days=within_days)
    sent = 0
    for e in await uow.enrollments.list_by_status(EnrollmentStatus.ACTIVE):
        due = e.next_payment_date
        if due is None or due > horizon:
            continue
        if await notification_dispatcher.send_reminder(
            entity_id=str(e.id),
            interval="payment_due",
            bucket=due.date().isoformat(),
            recipient_id=str(e.student_id),
            template="payment_due",
            context={
                "enrollment_id": str(e.id),
                "due_date": due.isoformat(),
                "overdue": due < now,
            },
        ):
            sent += 1
    return sent


async def send_membership_reminders(
    uow: UnitOfWork, now: datetime, within_days: int | None = None
) -> int:
    within_days = SETTINGS.expiring_soon_days if within_days is None else within_days
    sent = 0
    for e in await find_expiring_memberships(uow, within_days, now=now):
        info = e.membership_info
        if await notification_dispatcher.send_reminder(
            entity_id=str(e.id),
            interval="membership_expiry",
            bucket=info.end_date.date().isoformat(),
            recipient_id=str(e.student_id),
            template="membership_expiring",
            context={
                "enrollment_id": str(e.id),
                "membership_type": info.membership_type,
                "end_date": info.end_date.isoformat(),
                "auto_renewal": info.auto_renewal,
            },
        ):
            sent += 1
    return sent


async def run_maintenance(uow: UnitOfWork, now: datetime | None = None) -> dict:
    now = now or utcnow()
    expired = await expire_overdue(uow, now)
    report = {
        "expired": len(expired),
        "payment_reminders": await send_payment_reminders(uow, now),
        "membership_reminders": await send_membership_reminders(uow, now),
    }
    logger.info("Maintenance sweep: %s", report, extra=report)
    return report


@register_handler(tq.MAINTENANCE_QUEUE)
async def handle_maintenance(payload: dict) -> None:
    async with unit_of_work() as uow:
        await run_maintenance(uow)


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def dispatch(queue_name: str, task: tq.Task) -> None:
    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        logger.exception("Task %s on [%s] failed", task.id, queue_name)


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    next_sweep = time.monotonic()
    while True:
        if time.monotonic() >= next_sweep:
            await tq.submit(tq.MAINTENANCE_QUEUE, {"scheduled_at": utcnow().isoformat()})
            next_sweep = time.monotonic() + MAINTENANCE_INTERVAL

        for queue_name in queues:
            task = await tq.task_queue.dequeue(queue_name, timeout=1)
            if task is None:
                continue
            await dispatch(queue_name, task)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
