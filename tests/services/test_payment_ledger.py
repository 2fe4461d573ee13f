"""Payment ledger tests: idempotent events, installments, refunds."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from app.core.errors import EnrollmentInactive, InvalidPayment, NotFound
from app.models.enrollment import (
    EnrollmentStatus,
    PaymentPlan,
    PaymentStatus,
    PaymentType,
)
from app.repos.unit_of_work import InMemoryUnitOfWork
from app.services import payment_gateway
from app.services.enrollment_service import (
    EnrollmentRequest,
    create_enrollment,
    transition_status,
)
from app.services.payment_ledger import (
    PaymentIn,
    payment_history,
    record_payment,
    record_refund,
    verify_and_record,
)
from tests.conftest import make_course, make_student


def _enrollment(uow, **overrides):
    req = EnrollmentRequest(
        student_id=make_student().id, course_id=make_course().id, **overrides
    )
    return asyncio.run(create_enrollment(uow, req))


def _pay(uow, enrollment_id, amount="1000", tx="tx-1", **kwargs):
    method = kwargs.pop("method", "upi")
    data = PaymentIn(amount=Decimal(amount), transaction_id=tx, method=method, **kwargs)
    return asyncio.run(record_payment(uow, enrollment_id, data))


def test_payment_updates_total(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    paid = _pay(uow, e.id)
    assert paid.total_amount_paid == Decimal("1000.00")
    assert paid.payments[0].currency == "INR"
    assert paid.payments[0].status == PaymentStatus.COMPLETED


def test_identical_replay_is_a_noop(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    first = _pay(uow, e.id)
    again = _pay(uow, e.id)
    assert len(again.payments) == 1
    assert again.total_amount_paid == Decimal("1000.00")
    assert again.version == first.version


def test_conflicting_reuse_of_transaction_id(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    _pay(uow, e.id)
    with pytest.raises(InvalidPayment):
        _pay(uow, e.id, amount="500")


def test_pending_then_confirmed(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    pending = _pay(uow, e.id, status="pending")
    assert pending.total_amount_paid == Decimal("0.00")

    confirmed = _pay(uow, e.id, status="completed")
    assert len(confirmed.payments) == 1
    assert confirmed.payments[0].status == PaymentStatus.COMPLETED
    assert confirmed.total_amount_paid == Decimal("1000.00")


def test_failed_payment_counts_nothing(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    _pay(uow, e.id, status="pending")
    failed = _pay(uow, e.id, status="failed")
    assert failed.total_amount_paid == Decimal("0.00")


@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": "0"},
        {"amount": "-5"},
        {"method": ""},
        {"method": "cheque"},
        {"currency": "XYZ"},
        {"currency": "USD"},
        {"payment_type": "refund"},
        {"status": "refunded"},
    ],
)
def test_invalid_payments_rejected(uow: InMemoryUnitOfWork, overrides: dict) -> None:
    e = _enrollment(uow)
    with pytest.raises(InvalidPayment):
        _pay(uow, e.id, **overrides)
    assert asyncio.run(uow.enrollments.get(e.id)).payments == ()


def test_cancelled_enrollment_refuses_payment(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    asyncio.run(transition_status(uow, e.id, EnrollmentStatus.CANCELLED))
    with pytest.raises(EnrollmentInactive):
        _pay(uow, e.id)


def test_installment_schedule_advances_monthly(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow, payment_plan=PaymentPlan.INSTALLMENT, installments_count=3)
    jan31 = datetime(2026, 1, 31, 10, tzinfo=UTC)

    first = _pay(uow, e.id, amount="400", tx="i1", payment_date=jan31)
    assert first.next_payment_date == datetime(2026, 2, 28, 10, tzinfo=UTC)

    second = _pay(
        uow,
        e.id,
        amount="300",
        tx="i2",
        payment_type="installment",
        payment_date=datetime(2026, 2, 28, 10, tzinfo=UTC),
    )
    assert second.next_payment_date == datetime(2026, 3, 28, 10, tzinfo=UTC)

    last = _pay(uow, e.id, amount="300", tx="i3", payment_type="installment")
    assert last.next_payment_date is None
    assert last.total_amount_paid == Decimal("1000.00")


def test_non_installment_payment_keeps_schedule(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow, payment_plan=PaymentPlan.INSTALLMENT, installments_count=3)
    first = _pay(uow, e.id, amount="400", tx="i1", payment_date=datetime(2026, 1, 10, tzinfo=UTC))
    due = first.next_payment_date

    extra = _pay(
        uow,
        e.id,
        amount="50",
        tx="u1",
        payment_type="upgrade",
        payment_date=datetime(2026, 1, 20, tzinfo=UTC),
    )
    assert extra.next_payment_date == due == datetime(2026, 2, 10, tzinfo=UTC)

def test_partial_then_full_refund(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    _pay(uow, e.id)

    partial = asyncio.run(record_refund(uow, e.id, "tx-1", amount=Decimal("250")))
    original = partial.payment("tx-1")
    assert original.status == PaymentStatus.PARTIALLY_REFUNDED
    assert original.refunded_amount == Decimal("250.00")
    assert partial.total_amount_paid == Decimal("750.00")
    refund = partial.payment("refund_tx-1_1")
    assert refund.payment_type == PaymentType.REFUND
    assert refund.refund_of == "tx-1"

    rest = asyncio.run(record_refund(uow, e.id, "tx-1"))
    assert rest.payment("tx-1").status == PaymentStatus.REFUNDED
    assert rest.payment("refund_tx-1_2").amount == Decimal("750.00")
    assert rest.total_amount_paid == Decimal("0.00")


def test_refund_is_idempotent_on_its_id(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    _pay(uow, e.id)
    first = asyncio.run(
        record_refund(uow, e.id, "tx-1", amount=Decimal("100"), refund_transaction_id="r-1")
    )
    again = asyncio.run(
        record_refund(uow, e.id, "tx-1", amount=Decimal("100"), refund_transaction_id="r-1")
    )
    assert again.version == first.version
    assert again.total_amount_paid == Decimal("900.00")


def test_refund_limits(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    _pay(uow, e.id)
    with pytest.raises(InvalidPayment):
        asyncio.run(record_refund(uow, e.id, "tx-1", amount=Decimal("1500")))
    with pytest.raises(NotFound):
        asyncio.run(record_refund(uow, e.id, "missing"))

    _pay(uow, e.id, tx="tx-pending", status="pending")
    with pytest.raises(InvalidPayment):
        asyncio.run(record_refund(uow, e.id, "tx-pending"))


def test_history_filters_by_type(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    _pay(uow, e.id)
    asyncio.run(record_refund(uow, e.id, "tx-1", amount=Decimal("10")))
    refunds = asyncio.run(payment_history(uow, e.id, payment_type=PaymentType.REFUND))
    everything = asyncio.run(payment_history(uow, e.id))
    assert [p.transaction_id for p in refunds] == ["refund_tx-1_1"]
    assert len(everything) == 2


def test_gateway_signature_checked(
    uow: InMemoryUnitOfWork, monkeypatch: pytest.MonkeyPatch
) -> None:
    gateway = payment_gateway.HmacPaymentGateway("s3cret", allow_mock_orders=False)
    monkeypatch.setattr(payment_gateway, "payment_gateway", gateway)
    e = _enrollment(uow)

    with pytest.raises(InvalidPayment):
        asyncio.run(
            verify_and_record(
                uow,
                e.id,
                order_id="order_1",
                payment_id="pay_1",
                signature="forged",
                amount=Decimal("1000"),
                method="credit_card",
            )
        )

    recorded = asyncio.run(
        verify_and_record(
            uow,
            e.id,
            order_id="order_1",
            payment_id="pay_1",
            signature=gateway.sign("order_1", "pay_1"),
            amount=Decimal("1000"),
            method="credit_card",
        )
    )
    assert recorded.payment("pay_1").status == PaymentStatus.COMPLETED


def test_mock_orders_skip_signature_outside_prod(uow: InMemoryUnitOfWork) -> None:
    e = _enrollment(uow)
    recorded = asyncio.run(
        verify_and_record(
            uow,
            e.id,
            order_id="mock_order_42",
            payment_id="pay_42",
            signature=None,
            amount=Decimal("1000"),
            method="upi",
        )
    )
    assert recorded.total_amount_paid == Decimal("1000.00")
