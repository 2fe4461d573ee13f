from __future__ import annotations

import threading
from typing import Protocol
from uuid import UUID

from app.models.progress import ContentType, ProgressRecord


class ProgressRecordRepo(Protocol):
    async def upsert(self, record: ProgressRecord) -> None: ...
    async def get(
        self,
        student_id: UUID,
        course_id: UUID,
        content_type: ContentType,
        content_id: str,
    ) -> ProgressRecord | None: ...
    async def list_for(self, student_id: UUID, course_id: UUID) -> list[ProgressRecord]: ...


class InMemoryProgressRecordRepo:
    def __init__(self) -> None:
        self._store: dict[tuple, ProgressRecord] = {}
        self._lock = threading.Lock()

    async def upsert(self, record: ProgressRecord) -> None:
        with self._lock:
            self._store[record.key] = record

    async def get(
        self,
        student_id: UUID,
        course_id: UUID,
        content_type: ContentType,
        content_id: str,
    ) -> ProgressRecord | None:
        return self._store.get((student_id, course_id, content_type, content_id))

    async def list_for(self, student_id: UUID, course_id: UUID) -> list[ProgressRecord]:
        return [
            r
            for r in self._store.values()
            if r.student_id == student_id and r.course_id == course_id
        ]

    def clear(self) -> None:
        self._store.clear()
