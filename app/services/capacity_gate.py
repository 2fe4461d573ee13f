"""Capacity gate: admission control for capacity-bounded batches.

The check (``count < capacity``) and the increment are one conditional
update inside the batch repo.  When that update matches nothing we re-read
only to explain why; the re-read never decides admission.
"""

from __future__ import annotations

import logging
from uuid import UUID

from app.core.errors import (
    CapacityExceeded,
    DuplicateEnrollment,
    InvalidEnrollmentStructure,
    NotFound,
)
from app.core.metrics import BATCH_ADMISSIONS
from app.models.course import ADMITTING_BATCH_STATUSES, Batch
from app.repos.course_repo import BatchRepo
from app.repos.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


async def admit(batches: BatchRepo, batch_id: UUID, student_id: UUID) -> Batch:
    admitted = await batches.try_admit(batch_id, student_id)
    if admitted is not None:
        BATCH_ADMISSIONS.labels(result="admitted").inc()
        logger.info(
            "Admitted student=%s to batch=%s (%d/%d)",
            student_id,
            batch_id,
            admitted.enrolled_students,
            admitted.capacity,
            extra={"batch_id": str(batch_id), "student_id": str(student_id)},
        )
        return admitted

    current = await batches.get(batch_id)
    if current is None:
        raise NotFound("batch", batch_id)
    if student_id in current.enrolled_student_ids:
        BATCH_ADMISSIONS.labels(result="duplicate").inc()
        raise DuplicateEnrollment(
            "student already holds a seat in this batch",
            details={"batch_id": str(batch_id)},
        )
    if current.status not in ADMITTING_BATCH_STATUSES:
        raise InvalidEnrollmentStructure(
            "batch is not open for enrollment",
            details={"batch_id": str(batch_id), "batch_status": current.status.value},
        )
    BATCH_ADMISSIONS.labels(result="full").inc()
    raise CapacityExceeded(
        "batch is full",
        details={"batch_id": str(batch_id), "capacity": current.capacity},
    )


async def release(
    batches: BatchRepo,
    batch_id: UUID,
    student_id: UUID,
    *,
    compensating: bool = False,
) -> Batch:
    """Give a seat back.  Releasing a seat the student does not hold is a no-op."""
    released = await batches.try_release(batch_id, student_id)
    if released is not None:
        BATCH_ADMISSIONS.labels(
            result="compensated" if compensating else "released"
        ).inc()
        logger.info(
            "Released seat of student=%s in batch=%s%s",
            student_id,
            batch_id,
            " (compensation)" if compensating else "",
            extra={"batch_id": str(batch_id), "student_id": str(student_id)},
        )
        return released

    current = await batches.get(batch_id)
    if current is None:
        raise NotFound("batch", batch_id)
    logger.info("Student=%s holds no seat in batch=%s", student_id, batch_id)
    return current


async def list_available_batches(uow: UnitOfWork, course_id: UUID) -> list[Batch]:
    if await uow.courses.get(course_id) is None:
        raise NotFound("course", course_id)
    return [
        b
        for b in await uow.batches.list_for_course(course_id)
        if b.status in ADMITTING_BATCH_STATUSES and b.available_seats > 0
    ]
