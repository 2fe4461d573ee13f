"""Course catalogue and batch (offering) repositories.

Courses are read-only to the engine.  Batches are mutated only through
``try_admit`` / ``try_release``, each a single conditional update: the
capacity check and the increment happen in one step, never as a separate
read followed by a write.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.course import ADMITTING_BATCH_STATUSES, Batch, Course


class CourseRepo(Protocol):
    async def get(self, course_id: UUID) -> Course | None: ...
    async def get_by_slug(self, slug: str) -> Course | None: ...
    async def list_all(self) -> list[Course]: ...
    async def add(self, course: Course) -> None: ...
    async def save(self, course: Course) -> None: ...


class BatchRepo(Protocol):
    async def get(self, batch_id: UUID) -> Batch | None: ...
    async def add(self, batch: Batch) -> None: ...
    async def list_for_course(self, course_id: UUID) -> list[Batch]: ...

    async def try_admit(self, batch_id: UUID, student_id: UUID) -> Batch | None:
        """Increment and append where count < capacity and student not in ids.

        Returns the updated batch, or None when the condition did not match.
        """
        ...

    async def try_release(self, batch_id: UUID, student_id: UUID) -> Batch | None:
        """Decrement and remove where student in ids.  None when not matched."""
        ...


class InMemoryCourseRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Course] = {}

    async def get(self, course_id: UUID) -> Course | None:
        return self._by_id.get(course_id)

    async def get_by_slug(self, slug: str) -> Course | None:
        for c in self._by_id.values():
            if c.slug == slug:
                return c
        return None

    async def list_all(self) -> list[Course]:
        return sorted(self._by_id.values(), key=lambda c: c.slug)

    async def add(self, course: Course) -> None:
        if await self.get_by_slug(course.slug) is not None:
            raise ValueError("slug already exists")
        self._by_id[course.id] = course

    async def save(self, course: Course) -> None:
        if course.id not in self._by_id:
            raise KeyError("course not found")
        self._by_id[course.id] = course

    def clear(self) -> None:
        self._by_id.clear()


class InMemoryBatchRepo:
    """Lock-guarded batches.

    The lock is held only across the check-and-set itself, never across an
    await, so it serializes admissions from both the event loop and the
    TestClient's portal thread.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, Batch] = {}
        self._lock = threading.Lock()

    async def get(self, batch_id: UUID) -> Batch | None:
        return self._by_id.get(batch_id)

    async def add(self, batch: Batch) -> None:
        with self._lock:
            self._by_id[batch.id] = batch

    async def list_for_course(self, course_id: UUID) -> list[Batch]:
        return sorted(
            (b for b in self._by_id.values() if b.course_id == course_id),
            key=lambda b: b.start_date,
        )

    async def try_admit(self, batch_id: UUID, student_id: UUID) -> Batch | None:
        with self._lock:
            b = self._by_id.get(batch_id)
            if (
                b is None
                or b.status not in ADMITTING_BATCH_STATUSES
                or b.enrolled_students >= b.capacity
                or student_id in b.enrolled_student_ids
            ):
                return None
            updated = replace(
                b,
                enrolled_students=b.enrolled_students + 1,
                enrolled_student_ids=(*b.enrolled_student_ids, student_id),
            )
            self._by_id[batch_id] = updated
            return updated

    async def try_release(self, batch_id: UUID, student_id: UUID) -> Batch | None:
        with self._lock:
            b = self._by_id.get(batch_id)
            if b is None or student_id not in b.enrolled_student_ids:
                return None
            remaining = tuple(s for s in b.enrolled_student_ids if s != student_id)
            updated = replace(
                b,
                enrolled_students=len(remaining),
                enrolled_student_ids=remaining,
            )
            self._by_id[batch_id] = updated
            return updated

    def clear(self) -> None:
        self._by_id.clear()
