"""Enrollment, payment and batch-membership endpoints.

Thin layer: pydantic validates the request, the service does the work,
EngineErrors become HTTP responses in app/api/errors.py.  Students act on
their own enrollments; status changes and refunds are admin-only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from app.api.dependencies import (
    ensure_can_read,
    ensure_can_write,
    get_uow,
    require_any_role,
    require_role,
    require_user,
    student_id_of,
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
    PaymentType,
    PricingSnapshot,
    Progress,
)
from app.models.principal import STAFF_ROLES, Principal
from app.repos.unit_of_work import UnitOfWork
from app.services import enrollment_service, payment_ledger

router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])
batches_router = APIRouter(prefix="/v1/batches", tags=["enrollments"])


class EnrollmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    course_id: UUID | None
    batch_id: UUID | None
    enrollment_type: EnrollmentType
    status: EnrollmentStatus
    enrollment_date: datetime
    enrollment_source: EnrollmentSource
    access_expiry_date: datetime
    pricing_snapshot: PricingSnapshot
    batch_info: BatchInfo | None
    membership_info: MembershipInfo | None
    learning_path: LearningPath
    progress: Progress
    assessments: list[AssessmentScore]
    payments: list[Payment]
    total_amount_paid: Decimal
    payment_plan: PaymentPlan
    installments_count: int
    next_payment_date: datetime | None
    certificate_issued: bool
    certificate_id: str | None
    completed_on: datetime | None
    notes: list[str]
    version: int


class EnrollmentCreateIn(BaseModel):
    course_id: UUID
    enrollment_type: EnrollmentType = EnrollmentType.INDIVIDUAL
    batch_id: UUID | None = None
    batch_size: int = Field(1, ge=1)
    member_ids: list[UUID] = Field(default_factory=list)
    currency: str = "INR"
    discount_code: str | None = None
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    enrollment_source: EnrollmentSource = EnrollmentSource.WEBSITE
    payment_plan: PaymentPlan | None = None
    installments_count: int = Field(1, ge=1, le=36)
    # staff may enroll someone else
    student_id: UUID | None = None


class StatusChangeIn(BaseModel):
    status: EnrollmentStatus
    reason: str | None = Field(None, max_length=500)


class TransferIn(BaseModel):
    batch_id: UUID


class MemberIn(BaseModel):
    student_id: UUID


class PaymentCreateIn(BaseModel):
    amount: Decimal
    transaction_id: str = Field(min_length=1, max_length=200)
    method: str
    currency: str | None = None
    status: str = "completed"
    payment_type: str = "enrollment"
    payment_date: datetime | None = None


class PaymentVerifyIn(BaseModel):
    order_id: str = Field(min_length=1)
    payment_id: str = Field(min_length=1)
    signature: str | None = None
    amount: Decimal
    method: str
    currency: str | None = None
    payment_type: str = "enrollment"


class RefundIn(BaseModel):
    transaction_id: str = Field(min_length=1)
    amount: Decimal | None = None
    refund_transaction_id: str | None = None


def to_out(e: Enrollment) -> EnrollmentOut:
    return EnrollmentOut.model_validate(e)


async def _load_readable(uow: UnitOfWork, enrollment_id: UUID, principal: Principal) -> Enrollment:
    enrollment = await enrollment_service.load_enrollment(uow, enrollment_id)
    ensure_can_read(principal, enrollment.student_id)
    return enrollment


async def _load_writable(uow: UnitOfWork, enrollment_id: UUID, principal: Principal) -> Enrollment:
    enrollment = await enrollment_service.load_enrollment(uow, enrollment_id)
    ensure_can_write(principal, enrollment.student_id)
    return enrollment


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("", response_model=EnrollmentOut, status_code=status.HTTP_201_CREATED)
async def create_enrollment(
    body: EnrollmentCreateIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    student_id = body.student_id or student_id_of(principal)
    ensure_can_write(principal, student_id)
    enrollment = await enrollment_service.create_enrollment(
        uow,
        enrollment_service.EnrollmentRequest(
            student_id=student_id,
            course_id=body.course_id,
            enrollment_type=body.enrollment_type,
            batch_id=body.batch_id,
            batch_size=body.batch_size,
            member_ids=tuple(body.member_ids),
            currency=body.currency.upper(),
            discount_code=body.discount_code,
            discount_amount=body.discount_amount,
            enrollment_source=body.enrollment_source,
            payment_plan=body.payment_plan,
            installments_count=body.installments_count,
            created_by=principal.user_id,
        ),
    )
    return to_out(enrollment)


@router.get("", response_model=list[EnrollmentOut])
async def list_enrollments(
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
    student_id: UUID | None = None,
    active_only: bool = False,
) -> list[EnrollmentOut]:
    target = student_id or student_id_of(principal)
    ensure_can_read(principal, target)
    enrollments = await enrollment_service.list_for_student(
        uow, target, active_only=active_only
    )
    return [to_out(e) for e in enrollments]


@router.get("/{enrollment_id}", response_model=EnrollmentOut)
async def get_enrollment(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    return to_out(await _load_readable(uow, enrollment_id, principal))


@router.post("/{enrollment_id}/status", response_model=EnrollmentOut)
async def change_status(
    enrollment_id: UUID,
    body: StatusChangeIn,
    _admin: Annotated[Principal, Depends(require_role("admin"))],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    enrollment = await enrollment_service.transition_status(
        uow, enrollment_id, body.status, reason=body.reason
    )
    return to_out(enrollment)


@router.post(
    "/{enrollment_id}/transfer",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def transfer(
    enrollment_id: UUID,
    body: TransferIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    await _load_writable(uow, enrollment_id, principal)
    enrollment = await enrollment_service.transfer_to_batch(
        uow, enrollment_id, body.batch_id, actor=principal.user_id
    )
    return to_out(enrollment)


@router.post("/{enrollment_id}/members", response_model=EnrollmentOut)
async def add_member(
    enrollment_id: UUID,
    body: MemberIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    await _load_writable(uow, enrollment_id, principal)
    return to_out(
        await enrollment_service.add_batch_member(uow, enrollment_id, body.student_id)
    )


@router.delete("/{enrollment_id}/members/{member_id}", response_model=EnrollmentOut)
async def remove_member(
    enrollment_id: UUID,
    member_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    await _load_writable(uow, enrollment_id, principal)
    return to_out(
        await enrollment_service.remove_batch_member(uow, enrollment_id, member_id)
    )


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@router.post("/{enrollment_id}/payments", response_model=EnrollmentOut)
async def record_payment(
    enrollment_id: UUID,
    body: PaymentCreateIn,
    _admin: Annotated[Principal, Depends(require_role("admin"))],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    """Record an already-settled payment.  Students pay through /payments/verify."""
    enrollment = await payment_ledger.record_payment(
        uow,
        enrollment_id,
        payment_ledger.PaymentIn(
            amount=body.amount,
            transaction_id=body.transaction_id,
            method=body.method,
            currency=body.currency,
            status=body.status,
            payment_type=body.payment_type,
            payment_date=body.payment_date,
        ),
    )
    return to_out(enrollment)


@router.post("/{enrollment_id}/payments/verify", response_model=EnrollmentOut)
async def verify_payment(
    enrollment_id: UUID,
    body: PaymentVerifyIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    await _load_writable(uow, enrollment_id, principal)
    enrollment = await payment_ledger.verify_and_record(
        uow,
        enrollment_id,
        order_id=body.order_id,
        payment_id=body.payment_id,
        signature=body.signature,
        amount=body.amount,
        method=body.method,
        currency=body.currency,
        payment_type=body.payment_type,
    )
    return to_out(enrollment)


@router.get("/{enrollment_id}/payments", response_model=list[Payment])
async def list_payments(
    enrollment_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
    payment_type: Annotated[PaymentType | None, Query()] = None,
) -> list[Payment]:
    await _load_readable(uow, enrollment_id, principal)
    return await payment_ledger.payment_history(
        uow, enrollment_id, payment_type=payment_type
    )


@router.post("/{enrollment_id}/refunds", response_model=EnrollmentOut)
async def refund_payment(
    enrollment_id: UUID,
    body: RefundIn,
    _admin: Annotated[Principal, Depends(require_role("admin"))],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    enrollment = await payment_ledger.record_refund(
        uow,
        enrollment_id,
        body.transaction_id,
        amount=body.amount,
        refund_transaction_id=body.refund_transaction_id,
    )
    return to_out(enrollment)


# ---------------------------------------------------------------------------
# Batch roster
# ---------------------------------------------------------------------------


@batches_router.get("/{batch_id}/students", response_model=list[EnrollmentOut])
async def list_batch_students(
    batch_id: UUID,
    _staff: Annotated[Principal, Depends(require_any_role(set(STAFF_ROLES)))],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> list[EnrollmentOut]:
    return [to_out(e) for e in await enrollment_service.list_batch_students(uow, batch_id)]
