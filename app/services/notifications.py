"""Notification dispatch and reminder de-duplication.

Delivery (email, SMS) belongs to the worker; the API side only enqueues a
message on the ``notifications`` queue.  Sends are fire-and-forget: an
enqueue failure is logged and never fails the operation that triggered it.

Reminders (payment due, membership expiring) are claimed in a shared
store before they are sent.  The claim key is
``(entity, interval, time bucket)``, so two workers, or one worker after a
restart, never send the same reminder twice for the same period.

  InMemoryReminderLedger: per-process dict with expiry timestamps
  RedisReminderLedger:    SET NX EX, shared across processes
"""

from __future__ import annotations

import logging
import time
from typing import Protocol, runtime_checkable

from app.db.redis import redis_pool
from app.services import task_queue as tq

logger = logging.getLogger(__name__)

# A claimed reminder key outlives its bucket by a margin.
REMINDER_TTL_SECONDS = 40 * 24 * 3600


def reminder_key(entity_id: str, interval: str, bucket: str) -> str:
    return f"{entity_id}:{interval}:{bucket}"


@runtime_checkable
class ReminderLedger(Protocol):
    async def claim(self, key: str, ttl_seconds: int) -> bool:
        """True the first time ``key`` is claimed within its TTL, else False."""
        ...


class InMemoryReminderLedger:
    def __init__(self) -> None:
        self._sent: dict[str, float] = {}

    async def claim(self, key: str, ttl_seconds: int) -> bool:
        now = time.time()
        expires_at = self._sent.get(key)
        if expires_at is not None and expires_at > now:
            return False
        self._sent[key] = now + ttl_seconds
        return True


class RedisReminderLedger:
    _PREFIX = "reminders:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def claim(self, key: str, ttl_seconds: int) -> bool:
        # SET NX EX claims and expires in one atomic command
        created = await self._redis.set(
            f"{self._PREFIX}{key}", "1", nx=True, ex=ttl_seconds
        )
        return bool(created)


class NotificationDispatcher:
    def __init__(self, ledger: ReminderLedger) -> None:
        self._ledger = ledger

    async def send(self, *, recipient_id: str, template: str, context: dict) -> None:
        try:
            await tq.submit(
                tq.NOTIFICATIONS_QUEUE,
                {"recipient_id": recipient_id, "template": template, "context": context},
            )
        except Exception:
            logger.exception(
                "Dropping notification template=%s recipient=%s", template, recipient_id
            )

    async def send_reminder(
        self,
        *,
        entity_id: str,
        interval: str,
        bucket: str,
        recipient_id: str,
        template: str,
        context: dict,
    ) -> bool:
        """Send once per (entity, interval, bucket).  Returns False if already sent."""
        key = reminder_key(entity_id, interval, bucket)
        if not await self._ledger.claim(key, REMINDER_TTL_SECONDS):
            logger.debug("Reminder %s already sent", key)
            return False
        await self.send(recipient_id=recipient_id, template=template, context=context)
        return True


if redis_pool is not None:
    reminder_ledger: ReminderLedger = RedisReminderLedger(redis_pool)
else:
    reminder_ledger = InMemoryReminderLedger()

notification_dispatcher = NotificationDispatcher(reminder_ledger)
