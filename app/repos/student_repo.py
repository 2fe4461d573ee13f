from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.student import Student


class StudentRepo(Protocol):
    async def get(self, student_id: UUID) -> Student | None: ...
    async def add(self, student: Student) -> None: ...
    async def set_membership_type(self, student_id: UUID, tier: str) -> None: ...


class InMemoryStudentRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Student] = {}
        self._lock = threading.Lock()

    async def get(self, student_id: UUID) -> Student | None:
        return self._by_id.get(student_id)

    async def add(self, student: Student) -> None:
        with self._lock:
            if any(s.email == student.email for s in self._by_id.values()):
                raise ValueError("email already exists")
            self._by_id[student.id] = student

    async def set_membership_type(self, student_id: UUID, tier: str) -> None:
        with self._lock:
            s = self._by_id.get(student_id)
            if s is None:
                raise KeyError("student not found")
            self._by_id[student_id] = replace(s, membership_type=tier)

    def clear(self) -> None:
        self._by_id.clear()
