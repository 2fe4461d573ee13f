"""Membership endpoints.

  POST /v1/memberships                      subscribe (one active per student)
  GET  /v1/memberships/status               caller's active membership
  POST /v1/memberships/{id}/upgrade         silver -> gold only
  POST /v1/memberships/{id}/renew           extends from the current end date
  POST /v1/memberships/{id}/cancel
  GET  /v1/memberships/benefits/{tier}
  GET  /v1/memberships/pricing
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.api.dependencies import (
    ensure_can_read,
    ensure_can_write,
    get_uow,
    require_user,
    student_id_of,
)
from app.api.enrollments import EnrollmentOut, to_out
from app.models.enrollment import Payment
from app.models.membership import (
    MEMBERSHIP_CURRENCY,
    TIER_CATEGORY_LIMIT,
    TIER_ORDER,
    TIER_PRICES,
    MembershipTier,
    benefits_for,
)
from app.models.principal import Principal
from app.repos.unit_of_work import UnitOfWork
from app.services import membership_service
from app.services.enrollment_service import load_enrollment

router = APIRouter(prefix="/v1/memberships", tags=["memberships"])


class MembershipPaymentIn(BaseModel):
    transaction_id: str = Field(min_length=1, max_length=200)
    method: str
    amount: Decimal | None = None
    status: str = "completed"

    def to_payment(self) -> membership_service.MembershipPayment:
        return membership_service.MembershipPayment(
            transaction_id=self.transaction_id,
            method=self.method,
            amount=self.amount,
            status=self.status,
        )


class MembershipCreateIn(BaseModel):
    membership_type: MembershipTier
    duration_months: int
    auto_renewal: bool = False
    payment: MembershipPaymentIn | None = None
    student_id: UUID | None = None


class UpgradeIn(BaseModel):
    new_membership_type: MembershipTier
    payment: MembershipPaymentIn | None = None


class RenewIn(BaseModel):
    duration_months: int
    payment: MembershipPaymentIn | None = None


class CancelIn(BaseModel):
    reason: str | None = Field(None, max_length=500)


class MembershipStatusOut(BaseModel):
    status: str
    membership_type: str
    end_date: datetime
    days_remaining: int
    auto_renewal: bool


class MembershipOverviewOut(BaseModel):
    has_membership: bool
    enrollment: EnrollmentOut | None = None
    membership_status: MembershipStatusOut | None = None
    benefits: list[str] = Field(default_factory=list)
    payment_history: list[Payment] = Field(default_factory=list)


class BenefitsOut(BaseModel):
    membership_type: MembershipTier
    benefits: list[str]
    category_limit: int


class TierPricingOut(BaseModel):
    membership_type: MembershipTier
    currency: str
    prices: dict[int, Decimal]


async def _membership_for_write(
    uow: UnitOfWork, enrollment_id: UUID, principal: Principal
) -> None:
    enrollment = await load_enrollment(uow, enrollment_id)
    ensure_can_write(principal, enrollment.student_id)


@router.post("", response_model=EnrollmentOut, status_code=status.HTTP_201_CREATED)
async def create_membership(
    body: MembershipCreateIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    student_id = body.student_id or student_id_of(principal)
    ensure_can_write(principal, student_id)
    enrollment = await membership_service.create_membership(
        uow,
        student_id,
        body.membership_type,
        body.duration_months,
        auto_renewal=body.auto_renewal,
        payment=body.payment.to_payment() if body.payment else None,
        created_by=principal.user_id,
    )
    return to_out(enrollment)


@router.get("/status", response_model=MembershipOverviewOut)
async def get_membership_status(
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
    student_id: UUID | None = None,
) -> MembershipOverviewOut:
    target = student_id or student_id_of(principal)
    ensure_can_read(principal, target)
    enrollment = await uow.enrollments.get_active_membership(target)
    if enrollment is None:
        return MembershipOverviewOut(has_membership=False)
    return MembershipOverviewOut(
        has_membership=True,
        enrollment=to_out(enrollment),
        membership_status=MembershipStatusOut(
            **membership_service.membership_status(enrollment)
        ),
        benefits=list(enrollment.membership_info.benefits),
        payment_history=membership_service.membership_payments(enrollment),
    )


@router.post("/{enrollment_id}/upgrade", response_model=EnrollmentOut)
async def upgrade_membership(
    enrollment_id: UUID,
    body: UpgradeIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    await _membership_for_write(uow, enrollment_id, principal)
    enrollment = await membership_service.upgrade_membership(
        uow,
        enrollment_id,
        body.new_membership_type,
        payment=body.payment.to_payment() if body.payment else None,
    )
    return to_out(enrollment)


@router.post("/{enrollment_id}/renew", response_model=EnrollmentOut)
async def renew_membership(
    enrollment_id: UUID,
    body: RenewIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    await _membership_for_write(uow, enrollment_id, principal)
    enrollment = await membership_service.renew_membership(
        uow,
        enrollment_id,
        body.duration_months,
        payment=body.payment.to_payment() if body.payment else None,
    )
    return to_out(enrollment)


@router.post("/{enrollment_id}/cancel", response_model=EnrollmentOut)
async def cancel_membership(
    enrollment_id: UUID,
    body: CancelIn,
    principal: Annotated[Principal, Depends(require_user)],
    uow: Annotated[UnitOfWork, Depends(get_uow)],
) -> EnrollmentOut:
    await _membership_for_write(uow, enrollment_id, principal)
    enrollment = await membership_service.cancel_membership(
        uow, enrollment_id, reason=body.reason
    )
    return to_out(enrollment)


@router.get("/benefits/{tier}", response_model=BenefitsOut)
async def get_benefits(
    tier: MembershipTier,
    _principal: Annotated[Principal, Depends(require_user)],
) -> BenefitsOut:
    return BenefitsOut(
        membership_type=tier,
        benefits=list(benefits_for(tier)),
        category_limit=TIER_CATEGORY_LIMIT[tier],
    )


@router.get("/pricing", response_model=list[TierPricingOut])
async def get_pricing(
    _principal: Annotated[Principal, Depends(require_user)],
) -> list[TierPricingOut]:
    return [
        TierPricingOut(
            membership_type=tier,
            currency=MEMBERSHIP_CURRENCY,
            prices=dict(TIER_PRICES[tier]),
        )
        for tier in TIER_ORDER
    ]
