"""Membership state machine.

A membership is an Enrollment with ``enrollment_type=membership`` and no
course.  The store allows at most one *active* membership per student;
the pre-check here gives a clean error, the unique index (or the locked
check in memory) is what actually holds under concurrency.

Term arithmetic is calendar months (dateutil relativedelta), so a 1-month
membership started on Jan 31 ends on Feb 28/29.  Renewal extends from the
current end date, never from "now": renewing early loses nothing and
renewing late does not gift the lapsed days.

The student's denormalized ``membership_type`` follows every change and is
reset to ``general`` on cancellation or expiry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from dateutil.relativedelta import relativedelta

from app.core.config import SETTINGS
from app.core.errors import (
    EnrollmentInactive,
    InvalidEnrollmentStructure,
    InvalidTierTransition,
    MembershipAlreadyActive,
    NotFound,
)
from app.core.metrics import ENROLLMENTS_CREATED
from app.models.enrollment import (
    ZERO,
    Enrollment,
    EnrollmentStatus,
    EnrollmentType,
    MembershipInfo,
    PaymentPlan,
    PaymentStatus,
    PaymentType,
    utcnow,
)
from app.models.membership import (
    MEMBERSHIP_CURRENCY,
    VALID_DURATIONS,
    MembershipTier,
    benefits_for,
    is_upgrade,
    price_for,
)
from app.repos.unit_of_work import UnitOfWork
from app.services import notifications
from app.services.enrollment_service import (
    load_enrollment,
    load_student,
    modify_enrollment,
    transition_status,
)
from app.services.payment_ledger import PaymentIn, apply_payment, build_payment
from app.services.pricing import money, resolve_membership_pricing

logger = logging.getLogger(__name__)

MEMBERSHIP_PAYMENT_TYPES = frozenset(
    {PaymentType.MEMBERSHIP, PaymentType.UPGRADE, PaymentType.RENEWAL}
)


@dataclass(frozen=True, slots=True)
class MembershipPayment:
    """Payment details supplied with a membership operation.

    ``amount`` defaults to the list price of what is being bought.
    """

    transaction_id: str
    method: str
    amount: Decimal | None = None
    status: str = PaymentStatus.COMPLETED.value


def _check_duration(duration_months: int) -> None:
    if duration_months not in VALID_DURATIONS:
        raise InvalidEnrollmentStructure(
            "unsupported membership duration",
            details={"duration_months": duration_months, "allowed": list(VALID_DURATIONS)},
        )


def _with_payment(
    e: Enrollment,
    payment: MembershipPayment | None,
    *,
    default_amount: Decimal,
    payment_type: PaymentType,
    when: datetime,
) -> Enrollment:
    if payment is None:
        return e
    data = PaymentIn(
        amount=payment.amount if payment.amount is not None else default_amount,
        transaction_id=payment.transaction_id,
        method=payment.method,
        currency=MEMBERSHIP_CURRENCY,
        status=payment.status,
        payment_type=payment_type.value,
    )
    return apply_payment(e, build_payment(e, data, when))


def _last_term(info: MembershipInfo) -> int:
    """Most recently purchased term, the duration upgrade prices are quoted for."""
    if info.term_months in VALID_DURATIONS:
        return info.term_months
    if info.duration_months in VALID_DURATIONS:
        return info.duration_months
    return min(VALID_DURATIONS)


def _membership_of(e: Enrollment) -> MembershipInfo:
    if not e.is_membership or e.membership_info is None:
        raise InvalidEnrollmentStructure(
            "enrollment is not a membership", details={"enrollment_id": str(e.id)}
        )
    return e.membership_info


async def create_membership(
    uow: UnitOfWork,
    student_id: UUID,
    tier: MembershipTier,
    duration_months: int,
    *,
    auto_renewal: bool = False,
    payment: MembershipPayment | None = None,
    created_by: str | None = None,
) -> Enrollment:
    _check_duration(duration_months)
    student = await load_student(uow, student_id)
    now = utcnow()
    existing = await uow.enrollments.get_active_membership(student.id)
    if existing is not None and existing.membership_info.end_date <= now:
        # Term ran out before the maintenance sweep got to it.
        await transition_status(
            uow, existing.id, EnrollmentStatus.EXPIRED, reason="membership term ended"
        )
        existing = None
    if existing is not None:
        raise MembershipAlreadyActive(
            "student already has an active membership",
            details={"enrollment_id": str(existing.id)},
        )

    end = now + relativedelta(months=duration_months)
    snapshot = resolve_membership_pricing(tier, duration_months)
    enrollment = Enrollment.new(
        student_id=student.id,
        enrollment_type=EnrollmentType.MEMBERSHIP,
        access_expiry_date=end,
        pricing_snapshot=snapshot,
        membership_info=MembershipInfo(
            membership_type=tier.value,
            duration_months=duration_months,
            start_date=now,
            end_date=end,
            auto_renewal=auto_renewal,
            benefits=benefits_for(tier),
            term_months=duration_months,
        ),
        payment_plan=PaymentPlan.SUBSCRIPTION,
        created_by=created_by,
        enrollment_date=now,
    )
    enrollment = _with_payment(
        enrollment,
        payment,
        default_amount=snapshot.final_price,
        payment_type=PaymentType.MEMBERSHIP,
        when=now,
    )

    await uow.enrollments.add(enrollment)
    await uow.students.set_membership_type(student.id, tier.value)
    await uow.commit()

    ENROLLMENTS_CREATED.labels(enrollment_type=EnrollmentType.MEMBERSHIP.value).inc()
    logger.info(
        "Created %s membership=%s for student=%s (%d months)",
        tier.value,
        enrollment.id,
        student.id,
        duration_months,
        extra={"enrollment_id": str(enrollment.id), "student_id": str(student.id)},
    )
    await notifications.notification_dispatcher.send(
        recipient_id=str(student.id),
        template="membership_welcome",
        context={
            "enrollment_id": str(enrollment.id),
            "membership_type": tier.value,
            "end_date": end.isoformat(),
        },
    )
    return enrollment


async def upgrade_membership(
    uow: UnitOfWork,
    enrollment_id: UUID,
    new_tier: MembershipTier,
    *,
    payment: MembershipPayment | None = None,
) -> Enrollment:
    when = utcnow()

    def mutate(e: Enrollment) -> Enrollment:
        info = _membership_of(e)
        if e.status != EnrollmentStatus.ACTIVE:
            raise EnrollmentInactive(
                "only an active membership can be upgraded",
                details={"status": e.status.value},
            )
        current = MembershipTier(info.membership_type)
        if not is_upgrade(current, new_tier):
            raise InvalidTierTransition(
                f"cannot change membership from {current.value} to {new_tier.value}",
                details={"from": current.value, "to": new_tier.value},
            )
        upgraded = replace(
            e,
            membership_info=replace(
                info,
                membership_type=new_tier.value,
                previous_type=current.value,
                upgrade_date=when,
                benefits=benefits_for(new_tier),
            ),
            notes=(*e.notes, f"upgraded: {current.value} -> {new_tier.value}"),
        )
        if payment is None:
            return upgraded
        default_amount = ZERO
        if payment.amount is None:
            term = _last_term(info)
            difference = price_for(new_tier, term) - price_for(current, term)
            default_amount = money(max(difference, ZERO))
        return _with_payment(
            upgraded,
            payment,
            default_amount=default_amount,
            payment_type=PaymentType.UPGRADE,
            when=when,
        )

    before, after = await modify_enrollment(uow, enrollment_id, mutate)
    await uow.students.set_membership_type(after.student_id, new_tier.value)
    await uow.commit()
    logger.info(
        "Upgraded membership=%s %s -> %s",
        enrollment_id,
        before.membership_info.membership_type,
        new_tier.value,
        extra={"enrollment_id": str(enrollment_id)},
    )
    return after


async def renew_membership(
    uow: UnitOfWork,
    enrollment_id: UUID,
    duration_months: int,
    *,
    payment: MembershipPayment | None = None,
) -> Enrollment:
    _check_duration(duration_months)
    when = utcnow()

    def mutate(e: Enrollment) -> Enrollment:
        info = _membership_of(e)
        if e.status != EnrollmentStatus.ACTIVE:
            raise EnrollmentInactive(
                f"a {e.status.value} membership cannot be renewed",
                details={"status": e.status.value},
            )
        new_end = info.end_date + relativedelta(months=duration_months)
        renewed = replace(
            e,
            membership_info=replace(
                info,
                end_date=new_end,
                duration_months=info.duration_months + duration_months,
                term_months=duration_months,
            ),
            access_expiry_date=new_end,
            notes=(*e.notes, f"renewed: +{duration_months} months"),
        )
        tier = MembershipTier(info.membership_type)
        return _with_payment(
            renewed,
            payment,
            default_amount=price_for(tier, duration_months),
            payment_type=PaymentType.RENEWAL,
            when=when,
        )

    _, after = await modify_enrollment(uow, enrollment_id, mutate)
    await uow.commit()
    logger.info(
        "Renewed membership=%s by %d months, now ends %s",
        enrollment_id,
        duration_months,
        after.membership_info.end_date.isoformat(),
        extra={"enrollment_id": str(enrollment_id)},
    )
    return after


async def cancel_membership(
    uow: UnitOfWork, enrollment_id: UUID, *, reason: str | None = None
) -> Enrollment:
    _membership_of(await load_enrollment(uow, enrollment_id))
    return await transition_status(
        uow,
        enrollment_id,
        EnrollmentStatus.CANCELLED,
        reason=reason or "membership cancelled",
    )


def membership_status(e: Enrollment, now: datetime | None = None) -> dict:
    info = _membership_of(e)
    now = now or utcnow()
    remaining = info.end_date - now
    days_remaining = max(remaining.days, 0) if remaining > timedelta(0) else 0

    if e.status == EnrollmentStatus.CANCELLED:
        state = "cancelled"
    elif e.status != EnrollmentStatus.ACTIVE or info.end_date <= now:
        state = "expired"
    elif remaining <= timedelta(days=SETTINGS.expiring_soon_days):
        state = "expiring_soon"
    else:
        state = "active"

    return {
        "status": state,
        "membership_type": info.membership_type,
        "end_date": info.end_date,
        "days_remaining": days_remaining,
        "auto_renewal": info.auto_renewal,
    }


async def get_active_membership(uow: UnitOfWork, student_id: UUID) -> Enrollment:
    enrollment = await uow.enrollments.get_active_membership(student_id)
    if enrollment is None:
        raise NotFound("membership", student_id)
    return enrollment


def membership_payments(e: Enrollment) -> list:
    return [p for p in e.payments if p.payment_type in MEMBERSHIP_PAYMENT_TYPES]


async def find_expiring_memberships(
    uow: UnitOfWork, within_days: int, now: datetime | None = None
) -> list[Enrollment]:
    now = now or utcnow()
    horizon = now + timedelta(days=within_days)
    return [
        e
        for e in await uow.enrollments.list_by_status(EnrollmentStatus.ACTIVE)
        if e.membership_info is not None and now < e.membership_info.end_date <= horizon
    ]
