"""Enrollment lifecycle: creation, status transitions, transfers, queries.

Creation validates everything (student, course, batch structure,
duplicates, pricing) before the first write.  The two writes, batch
admission and the enrollment insert, share one unit of work: in Postgres
they commit together; in the in-memory store a failed insert releases the
seat again before the error propagates.

Every later mutation of an enrollment goes through ``modify_enrollment``:
read, apply a pure function, compare-and-swap on ``version``, re-read and
re-apply on conflict.  Concurrent payments and lesson updates therefore
never overwrite each other.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from app.core.config import SETTINGS
from app.core.errors import (
    ConcurrentModification,
    DuplicateEnrollment,
    InvalidEnrollmentStructure,
    InvalidStatusTransition,
    NotFound,
)
from app.core.metrics import ENROLLMENTS_CREATED, OPTIMISTIC_RETRIES
from app.models.course import ADMITTING_BATCH_STATUSES, Batch, Course
from app.models.enrollment import (
    BATCH_TYPES,
    ZERO,
    BatchInfo,
    BatchMember,
    Enrollment,
    EnrollmentSource,
    EnrollmentStatus,
    EnrollmentType,
    PaymentPlan,
    can_transition,
    utcnow,
)
from app.models.student import GENERAL_TIER, Student
from app.repos.unit_of_work import UnitOfWork
from app.services import capacity_gate, notifications, storage
from app.services import task_queue as tq
from app.services.pricing import money, resolve_pricing

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 5

Mutation = Callable[[Enrollment], Enrollment]


@dataclass(frozen=True, slots=True)
class EnrollmentRequest:
    student_id: UUID
    course_id: UUID
    enrollment_type: EnrollmentType = EnrollmentType.INDIVIDUAL
    batch_id: UUID | None = None
    batch_size: int = 1
    member_ids: tuple[UUID, ...] = ()
    currency: str = "INR"
    discount_code: str | None = None
    discount_amount: Decimal = ZERO
    enrollment_source: EnrollmentSource = EnrollmentSource.WEBSITE
    payment_plan: PaymentPlan | None = None
    installments_count: int = 1
    created_by: str | None = None


# ---------------------------------------------------------------------------
# Reads and the optimistic write loop
# ---------------------------------------------------------------------------


async def load_enrollment(uow: UnitOfWork, enrollment_id: UUID) -> Enrollment:
    enrollment = await uow.enrollments.get(enrollment_id)
    if enrollment is None:
        raise NotFound("enrollment", enrollment_id)
    return enrollment


async def modify_enrollment(
    uow: UnitOfWork, enrollment_id: UUID, mutate: Mutation
) -> tuple[Enrollment, Enrollment]:
    """Apply ``mutate`` with compare-and-swap; returns (before, after).

    ``mutate`` must be pure: it may run more than once.  Returning its
    argument unchanged means "nothing to do" and skips the write.
    """
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        current = await load_enrollment(uow, enrollment_id)
        updated = mutate(current)
        if updated is current:
            return current, current
        try:
            stored = await uow.enrollments.update(updated)
        except ConcurrentModification:
            if attempt == MAX_WRITE_ATTEMPTS:
                raise
            OPTIMISTIC_RETRIES.inc()
            logger.info(
                "Version conflict on enrollment=%s, retrying (attempt %d)",
                enrollment_id,
                attempt,
                extra={"enrollment_id": str(enrollment_id)},
            )
            continue
        return current, stored
    raise ConcurrentModification("enrollment was modified concurrently")


async def list_for_student(
    uow: UnitOfWork,
    student_id: UUID,
    *,
    active_only: bool = False,
    now: datetime | None = None,
) -> list[Enrollment]:
    enrollments = await uow.enrollments.list_for_student(student_id)
    if not active_only:
        return enrollments
    now = now or utcnow()
    return [
        e
        for e in enrollments
        if e.status == EnrollmentStatus.ACTIVE and e.access_expiry_date > now
    ]


async def list_batch_students(uow: UnitOfWork, batch_id: UUID) -> list[Enrollment]:
    if await uow.batches.get(batch_id) is None:
        raise NotFound("batch", batch_id)
    return [e for e in await uow.enrollments.list_for_batch(batch_id) if e.is_live()]


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def load_student(uow: UnitOfWork, student_id: UUID) -> Student:
    student = await uow.students.get(student_id)
    if student is None:
        raise NotFound("student", student_id)
    if not student.is_active:
        raise InvalidEnrollmentStructure(
            "student account is deactivated",
            details={"student_id": str(student_id)},
        )
    return student


async def _load_batch(uow: UnitOfWork, batch_id: UUID, course: Course) -> Batch:
    batch = await uow.batches.get(batch_id)
    if batch is None:
        raise NotFound("batch", batch_id)
    if batch.course_id != course.id:
        raise InvalidEnrollmentStructure(
            "batch does not belong to this course",
            details={"batch_id": str(batch_id), "course_id": str(course.id)},
        )
    if batch.status not in ADMITTING_BATCH_STATUSES:
        raise InvalidEnrollmentStructure(
            "batch is not open for enrollment",
            details={"batch_id": str(batch_id), "batch_status": batch.status.value},
        )
    return batch


def _batch_info_for(req: EnrollmentRequest, batch: Batch, course: Course) -> BatchInfo:
    if batch.is_one_to_one:
        if req.batch_size != 1:
            raise InvalidEnrollmentStructure(
                "a one-to-one batch requires batch_size 1",
                details={"batch_size": req.batch_size},
            )
    elif req.batch_size < 2:
        raise InvalidEnrollmentStructure(
            "a group batch requires batch_size of at least 2",
            details={"batch_size": req.batch_size},
        )

    price = course.price_for(req.currency)
    if price is not None and price.max_batch_size and req.batch_size > price.max_batch_size:
        raise InvalidEnrollmentStructure(
            "batch_size exceeds the course maximum",
            details={"batch_size": req.batch_size, "max_batch_size": price.max_batch_size},
        )

    members = tuple(dict.fromkeys(m for m in req.member_ids if m != req.student_id))
    if len(members) > req.batch_size - 1:
        raise InvalidEnrollmentStructure(
            "more batch members than batch_size allows",
            details={"batch_size": req.batch_size, "members": len(members)},
        )
    now = utcnow()
    return BatchInfo(
        batch_size=req.batch_size,
        is_batch_leader=not batch.is_one_to_one,
        batch_members=tuple(BatchMember(student_id=m, joined_date=now) for m in members),
    )


def _default_plan(enrollment_type: EnrollmentType) -> PaymentPlan:
    if enrollment_type == EnrollmentType.SCHOLARSHIP:
        return PaymentPlan.SCHOLARSHIP
    if enrollment_type == EnrollmentType.TRIAL:
        return PaymentPlan.FREE
    return PaymentPlan.FULL


def access_expiry_for(course: Course, batch: Batch | None, now: datetime) -> datetime:
    if batch is not None:
        return batch.end_date + timedelta(days=SETTINGS.batch_grace_days)
    return now + timedelta(days=course.access_duration_days)


async def create_enrollment(uow: UnitOfWork, req: EnrollmentRequest) -> Enrollment:
    if req.enrollment_type == EnrollmentType.MEMBERSHIP:
        raise InvalidEnrollmentStructure("memberships are created through the membership API")

    student = await load_student(uow, req.student_id)
    course = await uow.courses.get(req.course_id)
    if course is None:
        raise NotFound("course", req.course_id)

    batch: Batch | None = None
    batch_info: BatchInfo | None = None
    if req.enrollment_type in BATCH_TYPES:
        if req.batch_id is None:
            raise InvalidEnrollmentStructure(
                f"{req.enrollment_type.value} enrollments require a batch"
            )
        batch = await _load_batch(uow, req.batch_id, course)
        batch_info = _batch_info_for(req, batch, course)
    elif req.batch_id is not None:
        batch = await _load_batch(uow, req.batch_id, course)
        if not batch.is_one_to_one:
            raise InvalidEnrollmentStructure(
                "individual enrollments may only reference a one-to-one batch",
                details={"batch_id": str(batch.id)},
            )
        batch_info = BatchInfo(batch_size=1)

    batch_id = batch.id if batch is not None else None
    existing = await uow.enrollments.find_live(student.id, course.id, batch_id)
    if existing is not None:
        raise DuplicateEnrollment(
            "student already enrolled in this course/batch",
            details={"enrollment_id": str(existing.id)},
        )

    plan = req.payment_plan or _default_plan(req.enrollment_type)
    if plan == PaymentPlan.INSTALLMENT and req.installments_count < 2:
        raise InvalidEnrollmentStructure("installment plans need at least 2 installments")

    now = utcnow()
    snapshot = resolve_pricing(
        course,
        req.enrollment_type,
        currency=req.currency,
        batch_size=batch_info.batch_size if batch_info else 1,
        discount_code=req.discount_code,
        discount_amount=req.discount_amount,
    )
    enrollment = Enrollment.new(
        student_id=student.id,
        course_id=course.id,
        batch_id=batch_id,
        enrollment_type=req.enrollment_type,
        access_expiry_date=access_expiry_for(course, batch, now),
        pricing_snapshot=snapshot,
        enrollment_source=req.enrollment_source,
        batch_info=batch_info,
        learning_path=course.learning_path,
        payment_plan=plan,
        installments_count=req.installments_count if plan == PaymentPlan.INSTALLMENT else 1,
        created_by=req.created_by,
        enrollment_date=now,
    )

    await _admit_and_insert(uow, enrollment)
    await uow.commit()

    ENROLLMENTS_CREATED.labels(enrollment_type=enrollment.enrollment_type.value).inc()
    logger.info(
        "Created %s enrollment=%s student=%s course=%s batch=%s",
        enrollment.enrollment_type.value,
        enrollment.id,
        student.id,
        course.id,
        batch_id,
        extra={"enrollment_id": str(enrollment.id), "student_id": str(student.id)},
    )
    await _after_create(enrollment, area=course.slug, title=course.title)
    return enrollment


async def _admit_and_insert(uow: UnitOfWork, enrollment: Enrollment) -> None:
    if enrollment.batch_id is None:
        await uow.enrollments.add(enrollment)
        return

    await capacity_gate.admit(uow.batches, enrollment.batch_id, enrollment.student_id)
    try:
        await uow.enrollments.add(enrollment)
    except Exception:
        if not uow.transactional:
            await capacity_gate.release(
                uow.batches,
                enrollment.batch_id,
                enrollment.student_id,
                compensating=True,
            )
        raise


async def _after_create(enrollment: Enrollment, *, area: str, title: str) -> None:
    student_id = str(enrollment.student_id)
    try:
        await storage.storage_provisioner.provision_student_area(student_id, area)
    except Exception:
        logger.warning(
            "Storage provisioning failed for student=%s area=%s",
            student_id,
            area,
            exc_info=True,
            extra={"enrollment_id": str(enrollment.id)},
        )

    await notifications.notification_dispatcher.send(
        recipient_id=student_id,
        template="enrollment_confirmation",
        context={
            "enrollment_id": str(enrollment.id),
            "enrollment_type": enrollment.enrollment_type.value,
            "title": title,
            "access_expiry_date": enrollment.access_expiry_date.isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


def final_score(enrollment: Enrollment) -> Decimal:
    """Mean assessment percentage, or overall progress when nothing was assessed."""
    scored = [a for a in enrollment.assessments if a.max_score > 0]
    if not scored:
        return money(enrollment.progress.overall_percentage)
    total = sum((a.score / a.max_score * 100 for a in scored), Decimal(0))
    return money(total / len(scored))


async def request_certificate(enrollment: Enrollment) -> None:
    await tq.submit(
        tq.CERTIFICATE_QUEUE,
        {
            "enrollment_id": str(enrollment.id),
            "student_id": str(enrollment.student_id),
            "course_id": str(enrollment.course_id),
            "final_score": str(final_score(enrollment)),
        },
    )


def transition(
    enrollment: Enrollment,
    target: EnrollmentStatus,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> Enrollment:
    if not can_transition(enrollment.status, target):
        raise InvalidStatusTransition(
            f"cannot move enrollment from {enrollment.status.value} to {target.value}",
            details={"from": enrollment.status.value, "to": target.value},
        )
    changes: dict = {"status": target}
    if target == EnrollmentStatus.COMPLETED:
        changes["completed_on"] = now or utcnow()
    if target in (EnrollmentStatus.CANCELLED, EnrollmentStatus.EXPIRED):
        changes["next_payment_date"] = None
        if enrollment.membership_info is not None:
            changes["membership_info"] = replace(
                enrollment.membership_info, auto_renewal=False
            )
    if reason:
        changes["notes"] = (*enrollment.notes, f"{target.value}: {reason}")
    return replace(enrollment, **changes)


async def transition_status(
    uow: UnitOfWork,
    enrollment_id: UUID,
    target: EnrollmentStatus,
    *,
    reason: str | None = None,
) -> Enrollment:
    """Administrator/system transition; applies the transition's side effects."""
    before, after = await modify_enrollment(
        uow, enrollment_id, lambda e: transition(e, target, reason=reason)
    )
    logger.info(
        "Enrollment=%s %s -> %s",
        enrollment_id,
        before.status.value,
        after.status.value,
        extra={"enrollment_id": str(enrollment_id)},
    )

    if target == EnrollmentStatus.CANCELLED and before.batch_id is not None:
        await capacity_gate.release(uow.batches, before.batch_id, before.student_id)
    if before.is_membership and target in (
        EnrollmentStatus.CANCELLED,
        EnrollmentStatus.EXPIRED,
    ):
        await uow.students.set_membership_type(before.student_id, GENERAL_TIER)

    await uow.commit()
    if target == EnrollmentStatus.COMPLETED:
        await request_certificate(after)
    return after


async def expire_overdue(uow: UnitOfWork, now: datetime | None = None) -> list[UUID]:
    """Move active enrollments whose access (or membership term) ended to expired."""
    now = now or utcnow()
    expired: list[UUID] = []
    for e in await uow.enrollments.list_by_status(EnrollmentStatus.ACTIVE):
        deadline = e.membership_info.end_date if e.membership_info else e.access_expiry_date
        if deadline > now:
            continue
        try:
            await transition_status(
                uow, e.id, EnrollmentStatus.EXPIRED, reason="access period ended"
            )
        except InvalidStatusTransition:
            logger.info("Enrollment=%s changed state before expiry, skipping", e.id)
            continue
        expired.append(e.id)
    if expired:
        logger.info("Expired %d enrollments", len(expired))
    return expired


# ---------------------------------------------------------------------------
# Batch transfer and member management
# ---------------------------------------------------------------------------


async def transfer_to_batch(
    uow: UnitOfWork,
    enrollment_id: UUID,
    batch_id: UUID,
    *,
    actor: str | None = None,
) -> Enrollment:
    """Move an active individual enrollment into a one-to-one batch of the same course.

    A new enrollment of the same type (batch_size 1, no leader) carries over
    pricing, payments, progress and assessments; the old one is cancelled
    with a note.
    """
    source = await load_enrollment(uow, enrollment_id)
    if source.status != EnrollmentStatus.ACTIVE:
        raise InvalidStatusTransition(
            "only active enrollments can be transferred",
            details={"status": source.status.value},
        )
    if source.enrollment_type in BATCH_TYPES or source.is_membership or source.batch_id:
        raise InvalidEnrollmentStructure(
            "only individual enrollments without a batch can be transferred"
        )

    course = await uow.courses.get(source.course_id)
    if course is None:
        raise NotFound("course", source.course_id)
    batch = await _load_batch(uow, batch_id, course)
    if not batch.is_one_to_one:
        raise InvalidEnrollmentStructure(
            "an individual enrollment can only move into a one-to-one batch",
            details={"batch_id": str(batch.id), "batch_type": batch.batch_type.value},
        )
    existing = await uow.enrollments.find_live(source.student_id, course.id, batch.id)
    if existing is not None:
        raise DuplicateEnrollment(
            "student already enrolled in this batch",
            details={"enrollment_id": str(existing.id)},
        )

    now = utcnow()
    target = replace(
        Enrollment.new(
            student_id=source.student_id,
            course_id=course.id,
            batch_id=batch.id,
            enrollment_type=source.enrollment_type,
            access_expiry_date=access_expiry_for(course, batch, now),
            pricing_snapshot=source.pricing_snapshot,
            enrollment_source=EnrollmentSource.TRANSFER,
            batch_info=BatchInfo(batch_size=1),
            learning_path=source.learning_path,
            payment_plan=source.payment_plan,
            installments_count=source.installments_count,
            created_by=actor,
            enrollment_date=now,
        ),
        progress=source.progress,
        assessments=source.assessments,
        payments=source.payments,
        total_amount_paid=source.total_amount_paid,
        next_payment_date=source.next_payment_date,
        notes=(f"transferred from enrollment {source.id}",),
    )

    await _admit_and_insert(uow, target)
    try:
        await modify_enrollment(
            uow,
            source.id,
            lambda e: transition(
                e,
                EnrollmentStatus.CANCELLED,
                reason=f"transferred to batch {batch.batch_code}",
            ),
        )
    except Exception:
        if not uow.transactional:
            await transition_status(
                uow, target.id, EnrollmentStatus.CANCELLED, reason="transfer aborted"
            )
        raise
    await uow.commit()
    logger.info(
        "Transferred enrollment=%s to batch=%s as enrollment=%s",
        source.id,
        batch.id,
        target.id,
        extra={"enrollment_id": str(target.id), "batch_id": str(batch.id)},
    )
    return target


def _require_leader(e: Enrollment) -> BatchInfo:
    if e.enrollment_type not in BATCH_TYPES or e.batch_info is None:
        raise InvalidEnrollmentStructure("not a batch enrollment")
    if not e.batch_info.is_batch_leader:
        raise InvalidEnrollmentStructure("only the batch leader manages members")
    if e.status != EnrollmentStatus.ACTIVE:
        raise InvalidStatusTransition(
            "members can only change on an active enrollment",
            details={"status": e.status.value},
        )
    return e.batch_info


async def add_batch_member(
    uow: UnitOfWork, enrollment_id: UUID, member_id: UUID
) -> Enrollment:
    current = await load_enrollment(uow, enrollment_id)
    course = await uow.courses.get(current.course_id) if current.course_id else None
    price = course.price_for(current.pricing_snapshot.currency) if course else None
    max_size = price.max_batch_size if price else None

    def mutate(e: Enrollment) -> Enrollment:
        info = _require_leader(e)
        if member_id == e.student_id or any(
            m.student_id == member_id for m in info.batch_members
        ):
            raise InvalidEnrollmentStructure(
                "student is already part of this batch enrollment",
                details={"student_id": str(member_id)},
            )
        members = (*info.batch_members, BatchMember(student_id=member_id, joined_date=utcnow()))
        size = len(members) + 1
        if max_size and size > max_size:
            raise InvalidEnrollmentStructure(
                "batch_size exceeds the course maximum",
                details={"batch_size": size, "max_batch_size": max_size},
            )
        return replace(e, batch_info=replace(info, batch_members=members, batch_size=size))

    _, after = await modify_enrollment(uow, enrollment_id, mutate)
    return after


async def remove_batch_member(
    uow: UnitOfWork, enrollment_id: UUID, member_id: UUID
) -> Enrollment:
    def mutate(e: Enrollment) -> Enrollment:
        info = _require_leader(e)
        members = tuple(m for m in info.batch_members if m.student_id != member_id)
        if len(members) == len(info.batch_members):
            raise NotFound("batch member", member_id)
        return replace(
            e, batch_info=replace(info, batch_members=members, batch_size=len(members) + 1)
        )

    _, after = await modify_enrollment(uow, enrollment_id, mutate)
    return after
