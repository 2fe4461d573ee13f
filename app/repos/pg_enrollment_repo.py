"""PostgreSQL implementation of EnrollmentRepo.

Sub-documents are (de)serialized with pydantic TypeAdapters over the
domain dataclasses, so Decimal/datetime/UUID/enum values round-trip
through JSONB without hand-written converters.

Uniqueness is enforced by the partial unique indexes declared in
app/db/tables.py; violations are mapped back to domain errors by index
name.  Writes run inside a SAVEPOINT so a rejected insert leaves the
surrounding unit of work usable.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from pydantic import TypeAdapter
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    ConcurrentModification,
    DuplicateEnrollment,
    MembershipAlreadyActive,
    NotFound,
)
from app.db.tables import (
    ACTIVE_MEMBERSHIP_INDEX,
    LIVE_COURSE_ENROLLMENT_INDEX,
    EnrollmentRow,
)
from app.models.course import LearningPath
from app.models.enrollment import (
    AssessmentScore,
    BatchInfo,
    Enrollment,
    EnrollmentSource,
    EnrollmentStatus,
    EnrollmentType,
    MembershipInfo,
    Payment,
    PaymentPlan,
    PricingSnapshot,
    Progress,
)

_PRICING = TypeAdapter(PricingSnapshot)
_BATCH_INFO = TypeAdapter(BatchInfo | None)
_MEMBERSHIP_INFO = TypeAdapter(MembershipInfo | None)
_PROGRESS = TypeAdapter(Progress)
_ASSESSMENTS = TypeAdapter(tuple[AssessmentScore, ...])
_PAYMENTS = TypeAdapter(tuple[Payment, ...])

_enrollments = EnrollmentRow.__table__


class PgEnrollmentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        stmt = select(_enrollments).where(_enrollments.c.id == enrollment_id)
        row = (await self._session.execute(stmt)).one_or_none()
        return _row_to_enrollment(row) if row is not None else None

    async def add(self, enrollment: Enrollment) -> None:
        stmt = insert(_enrollments).values(id=enrollment.id, **_values(enrollment))
        try:
            async with self._session.begin_nested():
                await self._session.execute(stmt)
        except IntegrityError as exc:
            raise _map_integrity_error(exc) from exc

    async def update(self, enrollment: Enrollment) -> Enrollment:
        values = _values(enrollment)
        values["version"] = enrollment.version + 1
        stmt = (
            update(_enrollments)
            .where(
                _enrollments.c.id == enrollment.id,
                _enrollments.c.version == enrollment.version,
            )
            .values(**values)
        )
        try:
            async with self._session.begin_nested():
                result = await self._session.execute(stmt)
        except IntegrityError as exc:
            raise _map_integrity_error(exc) from exc

        if result.rowcount == 0:
            if await self.get(enrollment.id) is None:
                raise NotFound("enrollment", enrollment.id)
            raise ConcurrentModification(
                "enrollment was modified concurrently",
                details={"enrollment_id": str(enrollment.id)},
            )
        return replace(enrollment, version=enrollment.version + 1)

    async def find_live(
        self, student_id: UUID, course_id: UUID, batch_id: UUID | None
    ) -> Enrollment | None:
        batch_clause = (
            _enrollments.c.batch_id.is_(None)
            if batch_id is None
            else _enrollments.c.batch_id == batch_id
        )
        stmt = select(_enrollments).where(
            _enrollments.c.student_id == student_id,
            _enrollments.c.course_id == course_id,
            batch_clause,
            _enrollments.c.status != EnrollmentStatus.CANCELLED.value,
        )
        row = (await self._session.execute(stmt)).first()
        return _row_to_enrollment(row) if row is not None else None

    async def get_active_membership(self, student_id: UUID) -> Enrollment | None:
        stmt = select(_enrollments).where(
            _enrollments.c.student_id == student_id,
            _enrollments.c.enrollment_type == EnrollmentType.MEMBERSHIP.value,
            _enrollments.c.status == EnrollmentStatus.ACTIVE.value,
        )
        row = (await self._session.execute(stmt)).first()
        return _row_to_enrollment(row) if row is not None else None

    async def list_for_student(self, student_id: UUID) -> list[Enrollment]:
        stmt = (
            select(_enrollments)
            .where(_enrollments.c.student_id == student_id)
            .order_by(_enrollments.c.enrollment_date)
        )
        return [_row_to_enrollment(r) for r in (await self._session.execute(stmt)).all()]

    async def list_for_batch(self, batch_id: UUID) -> list[Enrollment]:
        stmt = (
            select(_enrollments)
            .where(_enrollments.c.batch_id == batch_id)
            .order_by(_enrollments.c.enrollment_date)
        )
        return [_row_to_enrollment(r) for r in (await self._session.execute(stmt)).all()]

    async def list_by_status(self, status: EnrollmentStatus) -> list[Enrollment]:
        stmt = select(_enrollments).where(_enrollments.c.status == status.value)
        return [_row_to_enrollment(r) for r in (await self._session.execute(stmt)).all()]


def _map_integrity_error(exc: IntegrityError) -> Exception:
    message = str(exc.orig)
    if ACTIVE_MEMBERSHIP_INDEX in message:
        return MembershipAlreadyActive("student already has an active membership")
    if LIVE_COURSE_ENROLLMENT_INDEX in message:
        return DuplicateEnrollment("student already enrolled in this course/batch")
    return exc


def _values(e: Enrollment) -> dict:
    return {
        "student_id": e.student_id,
        "course_id": e.course_id,
        "batch_id": e.batch_id,
        "enrollment_type": e.enrollment_type.value,
        "status": e.status.value,
        "enrollment_date": e.enrollment_date,
        "enrollment_source": e.enrollment_source.value,
        "access_expiry_date": e.access_expiry_date,
        "learning_path": e.learning_path.value,
        "pricing_snapshot": _PRICING.dump_python(e.pricing_snapshot, mode="json"),
        "batch_info": _BATCH_INFO.dump_python(e.batch_info, mode="json"),
        "membership_info": _MEMBERSHIP_INFO.dump_python(e.membership_info, mode="json"),
        "progress": _PROGRESS.dump_python(e.progress, mode="json"),
        "assessments": _ASSESSMENTS.dump_python(e.assessments, mode="json"),
        "payments": _PAYMENTS.dump_python(e.payments, mode="json"),
        "total_amount_paid": e.total_amount_paid,
        "payment_plan": e.payment_plan.value,
        "installments_count": e.installments_count,
        "next_payment_date": e.next_payment_date,
        "certificate_issued": e.certificate_issued,
        "certificate_id": e.certificate_id,
        "completed_on": e.completed_on,
        "notes": list(e.notes),
        "created_by": e.created_by,
        "version": e.version,
    }


def _row_to_enrollment(row) -> Enrollment:
    return Enrollment(
        id=row.id,
        student_id=row.student_id,
        course_id=row.course_id,
        batch_id=row.batch_id,
        enrollment_type=EnrollmentType(row.enrollment_type),
        status=EnrollmentStatus(row.status),
        enrollment_date=row.enrollment_date,
        enrollment_source=EnrollmentSource(row.enrollment_source),
        access_expiry_date=row.access_expiry_date,
        learning_path=LearningPath(row.learning_path),
        pricing_snapshot=_PRICING.validate_python(row.pricing_snapshot),
        batch_info=_BATCH_INFO.validate_python(row.batch_info),
        membership_info=_MEMBERSHIP_INFO.validate_python(row.membership_info),
        progress=_PROGRESS.validate_python(row.progress),
        assessments=_ASSESSMENTS.validate_python(row.assessments or []),
        payments=_PAYMENTS.validate_python(row.payments or []),
        total_amount_paid=row.total_amount_paid,
        payment_plan=PaymentPlan(row.payment_plan),
        installments_count=row.installments_count,
        next_payment_date=row.next_payment_date,
        certificate_issued=row.certificate_issued,
        certificate_id=row.certificate_id,
        completed_on=row.completed_on,
        notes=tuple(row.notes or ()),
        created_by=row.created_by,
        version=row.version,
    )
