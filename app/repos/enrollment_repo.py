from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.core.errors import (
    ConcurrentModification,
    DuplicateEnrollment,
    MembershipAlreadyActive,
    NotFound,
)
from app.models.enrollment import Enrollment, EnrollmentStatus, EnrollmentType


class EnrollmentRepo(Protocol):
    async def get(self, enrollment_id: UUID) -> Enrollment | None: ...

    async def add(self, enrollment: Enrollment) -> None:
        """Insert a new enrollment.

        Raises DuplicateEnrollment when a live enrollment already holds the
        same (student, course, batch), MembershipAlreadyActive when the
        student already has an active membership.
        """
        ...

    async def update(self, enrollment: Enrollment) -> Enrollment:
        """Compare-and-swap on ``version``.

        Succeeds only when the stored version equals ``enrollment.version``;
        returns the stored copy with the version bumped.  Raises
        ConcurrentModification otherwise.
        """
        ...

    async def find_live(
        self, student_id: UUID, course_id: UUID, batch_id: UUID | None
    ) -> Enrollment | None: ...
    async def get_active_membership(self, student_id: UUID) -> Enrollment | None: ...
    async def list_for_student(self, student_id: UUID) -> list[Enrollment]: ...
    async def list_for_batch(self, batch_id: UUID) -> list[Enrollment]: ...
    async def list_by_status(self, status: EnrollmentStatus) -> list[Enrollment]: ...


def _same_triple(a: Enrollment, b: Enrollment) -> bool:
    return (
        a.student_id == b.student_id
        and a.course_id == b.course_id
        and a.batch_id == b.batch_id
    )


def _is_active_membership(e: Enrollment) -> bool:
    return (
        e.enrollment_type == EnrollmentType.MEMBERSHIP
        and e.status == EnrollmentStatus.ACTIVE
    )


class InMemoryEnrollmentRepo:
    """Uniqueness rules are checked under the same lock as the write."""

    def __init__(self) -> None:
        self._by_id: dict[UUID, Enrollment] = {}
        self._lock = threading.Lock()

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        return self._by_id.get(enrollment_id)

    async def add(self, enrollment: Enrollment) -> None:
        with self._lock:
            self._check_unique(enrollment)
            self._by_id[enrollment.id] = enrollment

    async def update(self, enrollment: Enrollment) -> Enrollment:
        with self._lock:
            current = self._by_id.get(enrollment.id)
            if current is None:
                raise NotFound("enrollment", enrollment.id)
            if current.version != enrollment.version:
                raise ConcurrentModification(
                    "enrollment was modified concurrently",
                    details={"enrollment_id": str(enrollment.id)},
                )
            self._check_unique(enrollment)
            stored = replace(enrollment, version=enrollment.version + 1)
            self._by_id[enrollment.id] = stored
            return stored

    def _check_unique(self, candidate: Enrollment) -> None:
        for e in self._by_id.values():
            if e.id == candidate.id:
                continue
            if (
                _is_active_membership(candidate)
                and _is_active_membership(e)
                and e.student_id == candidate.student_id
            ):
                raise MembershipAlreadyActive(
                    "student already has an active membership",
                    details={"enrollment_id": str(e.id)},
                )
            if (
                not candidate.is_membership
                and candidate.is_live()
                and e.is_live()
                and _same_triple(e, candidate)
            ):
                raise DuplicateEnrollment(
                    "student already enrolled in this course/batch",
                    details={"enrollment_id": str(e.id)},
                )

    async def find_live(
        self, student_id: UUID, course_id: UUID, batch_id: UUID | None
    ) -> Enrollment | None:
        for e in self._by_id.values():
            if (
                e.student_id == student_id
                and e.course_id == course_id
                and e.batch_id == batch_id
                and e.is_live()
            ):
                return e
        return None

    async def get_active_membership(self, student_id: UUID) -> Enrollment | None:
        for e in self._by_id.values():
            if e.student_id == student_id and _is_active_membership(e):
                return e
        return None

    async def list_for_student(self, student_id: UUID) -> list[Enrollment]:
        return sorted(
            (e for e in self._by_id.values() if e.student_id == student_id),
            key=lambda e: e.enrollment_date,
        )

    async def list_for_batch(self, batch_id: UUID) -> list[Enrollment]:
        return sorted(
            (e for e in self._by_id.values() if e.batch_id == batch_id),
            key=lambda e: e.enrollment_date,
        )

    async def list_by_status(self, status: EnrollmentStatus) -> list[Enrollment]:
        return [e for e in self._by_id.values() if e.status == status]

    def clear(self) -> None:
        self._by_id.clear()
