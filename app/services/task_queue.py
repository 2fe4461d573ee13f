"""Background task queue on Redis lists.

Producer (API):    LPUSH onto ``tasks:<queue>`` and return immediately.
Consumer (worker): BRPOP from the tail.  Head-in, tail-out is FIFO.

Delivery is at-most-once: a worker that dies mid-task loses that task.
Certificate issuance is idempotent on the enrollment (it checks
``certificate_issued``), and reminder sends are de-duplicated, so a lost
or repeated task is recoverable by the next maintenance sweep.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from app.core.metrics import QUEUE_DEPTH
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)

NOTIFICATIONS_QUEUE = "notifications"
CERTIFICATE_QUEUE = "certificate_issuance"
MAINTENANCE_QUEUE = "maintenance"


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    queue: str
    payload: dict


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-process queue used when REDIS_URL is unset (tests, local dev)."""

    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        self._queues.setdefault(queue, []).append(task)
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue, [])
        if tasks:
            return tasks.pop(0)
        return None

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))


class RedisTaskQueue:
    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        task_json = json.dumps(
            {"id": task.id, "queue": task.queue, "payload": task.payload},
            default=str,
        )
        await self._redis.lpush(f"{self._PREFIX}{queue}", task_json)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        return Task(**json.loads(task_json))

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(f"{self._PREFIX}{queue}")


if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()


async def submit(queue: str, payload: dict) -> Task:
    """Enqueue on the shared queue and refresh the depth gauge."""
    task = await task_queue.enqueue(queue, payload)
    QUEUE_DEPTH.labels(queue_name=queue).set(await task_queue.queue_length(queue))
    logger.debug("Enqueued task=%s on [%s]", task.id, queue)
    return task
