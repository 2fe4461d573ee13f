from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from dateutil.relativedelta import relativedelta

from app.core.errors import (
    EnrollmentInactive,
    InvalidEnrollmentStructure,
    InvalidTierTransition,
    MembershipAlreadyActive,
)
from app.models.enrollment import EnrollmentStatus, PaymentPlan, PaymentType
from app.models.membership import MembershipTier, benefits_for
from app.repos.unit_of_work import InMemoryUnitOfWork
from app.services import task_queue as tq
from app.services.enrollment_service import EnrollmentRequest, create_enrollment
from app.services.membership_service import (
    MembershipPayment,
    cancel_membership,
    create_membership,
    find_expiring_memberships,
    membership_payments,
    membership_status,
    renew_membership,
    upgrade_membership,
)
from tests.conftest import make_course, make_student


def _subscribe(uow, student, tier=MembershipTier.SILVER, months=3, **kwargs):
    return asyncio.run(create_membership(uow, student.id, tier, months, **kwargs))


def test_create_membership(uow: InMemoryUnitOfWork) -> None:
    student = make_student()
    m = _subscribe(
        uow, student, payment=MembershipPayment(transaction_id="m-1", method="upi")
    )

    info = m.membership_info
    assert m.course_id is None
    assert m.payment_plan == PaymentPlan.SUBSCRIPTION
    assert info.end_date == info.start_date + relativedelta(months=3)
    assert m.access_expiry_date == info.end_date
    assert info.benefits == benefits_for(MembershipTier.SILVER)
    assert m.pricing_snapshot.final_price == Decimal("2499.00")
    assert m.total_amount_paid == Decimal("2499.00")
    assert m.payments[0].payment_type == PaymentType.MEMBERSHIP
    assert asyncio.run(uow.students.get(student.id)).membership_type == "silver"

    task = asyncio.run(tq.task_queue.dequeue(tq.NOTIFICATIONS_QUEUE))
    assert task.payload["template"] == "membership_welcome"


def test_only_one_active_membership(uow: InMemoryUnitOfWork) -> None:
    student = make_student()
    first = _subscribe(uow, student)
    with pytest.raises(MembershipAlreadyActive):
        _subscribe(uow, student, MembershipTier.GOLD)

    asyncio.run(cancel_membership(uow, first.id, reason="switching"))
    assert asyncio.run(uow.students.get(student.id)).membership_type == "general"
    second = _subscribe(uow, student, MembershipTier.GOLD)
    assert second.status == EnrollmentStatus.ACTIVE


def test_lapsed_membership_does_not_block_a_new_one(uow: InMemoryUnitOfWork) -> None:
    student = make_student()
    old = _subscribe(uow, student, months=1)
    yesterday = datetime.now(UTC) - timedelta(days=1)
    asyncio.run(
        uow.enrollments.update(
            replace(
                old,
                membership_info=replace(old.membership_info, end_date=yesterday),
                access_expiry_date=yesterday,
            )
        )
    )

    fresh = _subscribe(uow, student, MembershipTier.GOLD, months=1)

    assert fresh.status == EnrollmentStatus.ACTIVE
    assert asyncio.run(uow.enrollments.get(old.id)).status == EnrollmentStatus.EXPIRED
    assert asyncio.run(uow.students.get(student.id)).membership_type == "gold"

def test_concurrent_subscriptions_admit_one(uow: InMemoryUnitOfWork) -> None:
    student = make_student()

    async def race() -> list:
        return await asyncio.gather(
            create_membership(uow, student.id, MembershipTier.SILVER, 1),
            create_membership(uow, student.id, MembershipTier.GOLD, 1),
            return_exceptions=True,
        )

    outcomes = asyncio.run(race())
    assert sum(1 for o in outcomes if isinstance(o, MembershipAlreadyActive)) == 1


def test_unsupported_duration(uow: InMemoryUnitOfWork) -> None:
    with pytest.raises(InvalidEnrollmentStructure):
        _subscribe(uow, make_student(), months=5)


def test_upgrade_only_moves_up(uow: InMemoryUnitOfWork) -> None:
    student = make_student()
    m = _subscribe(uow, student)

    gold = asyncio.run(
        upgrade_membership(
            uow,
            m.id,
            MembershipTier.GOLD,
            payment=MembershipPayment(transaction_id="up-1", method="credit_card"),
        )
    )
    assert gold.membership_info.membership_type == "gold"
    assert gold.membership_info.previous_type == "silver"
    assert gold.membership_info.upgrade_date is not None
    assert gold.membership_info.benefits == benefits_for(MembershipTier.GOLD)
    upgrade = gold.payment("up-1")
    assert upgrade.payment_type == PaymentType.UPGRADE
    assert upgrade.amount == Decimal("1500.00")  # 3999 - 2499
    assert asyncio.run(uow.students.get(student.id)).membership_type == "gold"

    for target in (MembershipTier.GOLD, MembershipTier.SILVER):
        with pytest.raises(InvalidTierTransition):
            asyncio.run(upgrade_membership(uow, m.id, target))


def test_upgrade_after_renewal_prices_the_last_term(uow: InMemoryUnitOfWork) -> None:
    m = _subscribe(uow, make_student(), months=3)
    renewed = asyncio.run(renew_membership(uow, m.id, 1))
    assert renewed.membership_info.duration_months == 4

    gold = asyncio.run(
        upgrade_membership(
            uow,
            m.id,
            MembershipTier.GOLD,
            payment=MembershipPayment(transaction_id="up-4", method="upi"),
        )
    )
    assert gold.membership_info.membership_type == "gold"
    assert gold.payment("up-4").amount == Decimal("1000.00")  # 1999 - 999, one-month term


def test_upgrade_without_payment_records_none(uow: InMemoryUnitOfWork) -> None:
    m = _subscribe(uow, make_student(), months=12)
    asyncio.run(renew_membership(uow, m.id, 12))
    gold = asyncio.run(upgrade_membership(uow, m.id, MembershipTier.GOLD))
    assert gold.membership_info.duration_months == 24
    assert membership_payments(gold) == []

def test_renewal_extends_from_end_date(uow: InMemoryUnitOfWork) -> None:
    m = _subscribe(uow, make_student())
    original_end = m.membership_info.end_date

    renewed = asyncio.run(
        renew_membership(
            uow, m.id, 6, payment=MembershipPayment(transaction_id="rn-1", method="upi")
        )
    )
    assert renewed.membership_info.end_date == original_end + relativedelta(months=6)
    assert renewed.membership_info.duration_months == 9
    assert renewed.access_expiry_date == renewed.membership_info.end_date
    assert renewed.payment("rn-1").amount == Decimal("3999.00")
    assert [p.transaction_id for p in membership_payments(renewed)] == ["rn-1"]


def test_cancelled_membership_cannot_renew_or_upgrade(uow: InMemoryUnitOfWork) -> None:
    m = _subscribe(uow, make_student())
    asyncio.run(cancel_membership(uow, m.id))
    with pytest.raises(EnrollmentInactive):
        asyncio.run(renew_membership(uow, m.id, 1))
    with pytest.raises(EnrollmentInactive):
        asyncio.run(upgrade_membership(uow, m.id, MembershipTier.GOLD))


def test_course_enrollment_is_not_a_membership(uow: InMemoryUnitOfWork) -> None:
    student = make_student()
    e = asyncio.run(
        create_enrollment(uow, EnrollmentRequest(student_id=student.id, course_id=make_course().id))
    )
    with pytest.raises(InvalidEnrollmentStructure):
        asyncio.run(upgrade_membership(uow, e.id, MembershipTier.GOLD))
    with pytest.raises(InvalidEnrollmentStructure):
        asyncio.run(cancel_membership(uow, e.id))


def test_status_windows(uow: InMemoryUnitOfWork) -> None:
    m = _subscribe(uow, make_student(), months=6)
    end = m.membership_info.end_date

    assert membership_status(m, end - timedelta(days=90))["status"] == "active"
    soon = membership_status(m, end - timedelta(days=10))
    assert soon["status"] == "expiring_soon"
    assert soon["days_remaining"] == 10
    late = membership_status(m, end + timedelta(days=1))
    assert late["status"] == "expired"
    assert late["days_remaining"] == 0


def test_find_expiring(uow: InMemoryUnitOfWork) -> None:
    m = _subscribe(uow, make_student(), months=1)
    end = m.membership_info.end_date
    expiring = asyncio.run(find_expiring_memberships(uow, 7, now=end - timedelta(days=3)))
    assert [e.id for e in expiring] == [m.id]
    assert asyncio.run(find_expiring_memberships(uow, 7, now=end - timedelta(days=20))) == []
