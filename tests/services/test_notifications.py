from __future__ import annotations

import asyncio

import pytest

from app.services import task_queue as tq
from app.services.notifications import (
    InMemoryReminderLedger,
    NotificationDispatcher,
    reminder_key,
)


def _remind(dispatcher: NotificationDispatcher, bucket: str) -> bool:
    return asyncio.run(
        dispatcher.send_reminder(
            entity_id="e-1",
            interval="payment_due",
            bucket=bucket,
            recipient_id="s-1",
            template="payment_due",
            context={},
        )
    )


def test_reminder_sent_once_per_bucket() -> None:
    dispatcher = NotificationDispatcher(InMemoryReminderLedger())
    assert _remind(dispatcher, "2026-03-01") is True
    assert _remind(dispatcher, "2026-03-01") is False
    assert _remind(dispatcher, "2026-04-01") is True
    assert asyncio.run(tq.task_queue.queue_length(tq.NOTIFICATIONS_QUEUE)) == 2


def test_claim_expires_after_ttl() -> None:
    ledger = InMemoryReminderLedger()
    key = reminder_key("e-1", "membership_expiry", "2026-03-01")
    assert asyncio.run(ledger.claim(key, ttl_seconds=60)) is True
    assert asyncio.run(ledger.claim(key, ttl_seconds=60)) is False

    ledger._sent[key] = 0.0  # long expired
    assert asyncio.run(ledger.claim(key, ttl_seconds=60)) is True


def test_enqueue_failure_does_not_raise(monkeypatch: pytest.MonkeyPatch) -> None:
    async def down(queue: str, payload: dict) -> tq.Task:
        raise ConnectionError("queue unavailable")

    monkeypatch.setattr(tq, "submit", down)
    dispatcher = NotificationDispatcher(InMemoryReminderLedger())
    asyncio.run(dispatcher.send(recipient_id="s-1", template="welcome", context={}))
