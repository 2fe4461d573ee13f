"""Capacity gate tests.

Admission is one conditional update; concurrent requests for the last
seats must never overshoot capacity.
"""

from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from app.core.errors import CapacityExceeded, DuplicateEnrollment
from app.models.enrollment import EnrollmentStatus, EnrollmentType
from app.repos.unit_of_work import InMemoryUnitOfWork
from app.services import capacity_gate
from app.services.enrollment_service import (
    EnrollmentRequest,
    create_enrollment,
    transition_status,
)
from tests.conftest import make_batch, make_course, make_student


def _admissions(result: str) -> float:
    return REGISTRY.get_sample_value("batch_admissions_total", {"result": result}) or 0.0


def _batch_request(student_id, course, batch) -> EnrollmentRequest:
    return EnrollmentRequest(
        student_id=student_id,
        course_id=course.id,
        enrollment_type=EnrollmentType.BATCH,
        batch_id=batch.id,
        batch_size=2,
    )


def test_concurrent_admissions_never_exceed_capacity(uow: InMemoryUnitOfWork) -> None:
    course = make_course()
    batch = make_batch(course, capacity=3)
    students = [make_student(f"s{i}@example.com") for i in range(8)]

    async def run() -> list:
        return await asyncio.gather(
            *(create_enrollment(uow, _batch_request(s.id, course, batch)) for s in students),
            return_exceptions=True,
        )

    results = asyncio.run(run())
    admitted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(admitted) == 3
    assert all(isinstance(r, CapacityExceeded) for r in rejected)

    stored = asyncio.run(uow.batches.get(batch.id))
    assert stored.enrolled_students == 3
    assert len(stored.enrolled_student_ids) == 3


def test_last_seat_goes_to_exactly_one(uow: InMemoryUnitOfWork) -> None:
    course = make_course()
    batch = make_batch(course, capacity=2)
    a, b, c = (make_student(f"{n}@example.com") for n in "abc")

    asyncio.run(create_enrollment(uow, _batch_request(a.id, course, batch)))

    async def race() -> list:
        return await asyncio.gather(
            create_enrollment(uow, _batch_request(b.id, course, batch)),
            create_enrollment(uow, _batch_request(c.id, course, batch)),
            return_exceptions=True,
        )

    outcomes = asyncio.run(race())
    assert sum(1 for o in outcomes if isinstance(o, CapacityExceeded)) == 1
    assert asyncio.run(uow.batches.get(batch.id)).enrolled_students == 2


def test_cancellation_releases_seat(uow: InMemoryUnitOfWork) -> None:
    course = make_course()
    batch = make_batch(course, capacity=1)
    a, b = make_student("a@example.com"), make_student("b@example.com")

    first = asyncio.run(create_enrollment(uow, _batch_request(a.id, course, batch)))
    with pytest.raises(CapacityExceeded):
        asyncio.run(create_enrollment(uow, _batch_request(b.id, course, batch)))

    asyncio.run(transition_status(uow, first.id, EnrollmentStatus.CANCELLED))
    assert asyncio.run(uow.batches.get(batch.id)).enrolled_students == 0

    asyncio.run(create_enrollment(uow, _batch_request(b.id, course, batch)))
    assert asyncio.run(uow.batches.get(batch.id)).enrolled_student_ids == (b.id,)


def test_admit_same_student_twice_is_duplicate(uow: InMemoryUnitOfWork) -> None:
    course = make_course()
    batch = make_batch(course, capacity=5)
    s = make_student()
    asyncio.run(capacity_gate.admit(uow.batches, batch.id, s.id))
    before = _admissions("duplicate")
    with pytest.raises(DuplicateEnrollment):
        asyncio.run(capacity_gate.admit(uow.batches, batch.id, s.id))
    assert _admissions("duplicate") - before == 1


def test_release_of_unheld_seat_is_noop(uow: InMemoryUnitOfWork) -> None:
    course = make_course()
    batch = make_batch(course, capacity=5)
    s = make_student()
    result = asyncio.run(capacity_gate.release(uow.batches, batch.id, s.id))
    assert result.enrolled_students == 0


def test_available_batches_skip_full_ones(uow: InMemoryUnitOfWork) -> None:
    course = make_course()
    full = make_batch(course, capacity=1, code="FULL")
    open_ = make_batch(course, capacity=4, code="OPEN")
    asyncio.run(capacity_gate.admit(uow.batches, full.id, make_student().id))

    available = asyncio.run(capacity_gate.list_available_batches(uow, course.id))
    assert [b.id for b in available] == [open_.id]
