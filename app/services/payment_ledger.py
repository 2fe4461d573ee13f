"""Payment ledger.

Payments are events on the enrollment; history is never rewritten except
for two in-place status advances:

  - a ``pending`` payment later confirmed as ``completed``/``failed``
    under the same transaction id
  - a refunded payment is marked ``refunded``/``partially_refunded``; the
    refund itself is appended as a separate ``refund`` event for audit

Transaction ids are unique per enrollment.  Replaying an identical event
is a no-op, so a retried webhook never double-counts.  Reusing an id for
a different event is rejected.

total_amount_paid = completed amounts + the unrefunded remainder of
partially refunded payments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID

from dateutil.relativedelta import relativedelta

from app.core.errors import EnrollmentInactive, InvalidPayment, NotFound
from app.core.metrics import PAYMENTS_RECORDED
from app.models.enrollment import (
    ZERO,
    Enrollment,
    EnrollmentStatus,
    Payment,
    PaymentMethod,
    PaymentPlan,
    PaymentStatus,
    PaymentType,
    utcnow,
)
from app.repos.unit_of_work import UnitOfWork
from app.services import payment_gateway as gateway
from app.services.enrollment_service import load_enrollment, modify_enrollment
from app.services.pricing import SUPPORTED_CURRENCIES, money

logger = logging.getLogger(__name__)

BILLING_PERIOD = relativedelta(months=1)


@dataclass(frozen=True, slots=True)
class PaymentIn:
    amount: Decimal
    transaction_id: str
    method: str | None
    currency: str | None = None
    status: str = PaymentStatus.COMPLETED.value
    payment_type: str = PaymentType.ENROLLMENT.value
    payment_date: datetime | None = None


def _parse(enum_cls: type[StrEnum], value: str, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidPayment(f"unknown {field}", details={field: value}) from None


def build_payment(enrollment: Enrollment, data: PaymentIn, when: datetime) -> Payment:
    if data.amount is None or data.amount <= 0:
        raise InvalidPayment(
            "payment amount must be positive", details={"amount": str(data.amount)}
        )
    if not data.method:
        raise InvalidPayment("payment method is required")
    if not data.transaction_id:
        raise InvalidPayment("transaction_id is required")

    method = _parse(PaymentMethod, data.method, "method")
    status = _parse(PaymentStatus, data.status, "status")
    payment_type = _parse(PaymentType, data.payment_type, "payment_type")
    if payment_type == PaymentType.REFUND or status in (
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    ):
        raise InvalidPayment("refunds are recorded through the refund operation")

    currency = (data.currency or enrollment.pricing_snapshot.currency).upper()
    if currency not in SUPPORTED_CURRENCIES:
        raise InvalidPayment("unsupported currency", details={"currency": currency})
    if currency != enrollment.pricing_snapshot.currency:
        raise InvalidPayment(
            "payment currency does not match the enrollment currency",
            details={"currency": currency, "expected": enrollment.pricing_snapshot.currency},
        )

    return Payment(
        amount=money(data.amount),
        currency=currency,
        method=method,
        transaction_id=data.transaction_id,
        status=status,
        payment_date=data.payment_date or when,
        payment_type=payment_type,
    )


def compute_total_paid(payments: tuple[Payment, ...]) -> Decimal:
    total = ZERO
    for p in payments:
        if p.payment_type == PaymentType.REFUND:
            continue
        if p.status == PaymentStatus.COMPLETED:
            total += p.amount
        elif p.status == PaymentStatus.PARTIALLY_REFUNDED:
            total += p.amount - p.refunded_amount
    return money(total)


INSTALLMENT_PAYMENT_TYPES = frozenset({PaymentType.ENROLLMENT, PaymentType.INSTALLMENT})


def installments_paid(payments: tuple[Payment, ...]) -> int:
    return sum(
        1
        for p in payments
        if p.payment_type in INSTALLMENT_PAYMENT_TYPES
        and p.status in (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED)
    )


def _next_payment_date(e: Enrollment, payment: Payment) -> datetime | None:
    if (
        e.payment_plan != PaymentPlan.INSTALLMENT
        or payment.status != PaymentStatus.COMPLETED
        or payment.payment_type not in INSTALLMENT_PAYMENT_TYPES
    ):
        return e.next_payment_date
    if installments_paid(e.payments) < e.installments_count:
        return payment.payment_date + BILLING_PERIOD
    return None


def _same_event(a: Payment, b: Payment) -> bool:
    return (
        a.amount == b.amount
        and a.currency == b.currency
        and a.method == b.method
        and a.status == b.status
        and a.payment_type == b.payment_type
    )


def apply_payment(e: Enrollment, payment: Payment) -> Enrollment:
    """Pure ledger step.  Returns ``e`` itself for an identical replay."""
    if e.status == EnrollmentStatus.CANCELLED:
        raise EnrollmentInactive(
            "cannot record payments on a cancelled enrollment",
            details={"enrollment_id": str(e.id)},
        )

    existing = e.payment(payment.transaction_id)
    if existing is not None:
        if _same_event(existing, payment):
            return e
        confirms_pending = (
            existing.status == PaymentStatus.PENDING
            and payment.status in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)
            and existing.amount == payment.amount
            and existing.currency == payment.currency
            and existing.payment_type == payment.payment_type
        )
        if not confirms_pending:
            raise InvalidPayment(
                "transaction_id already recorded with different details",
                details={"transaction_id": payment.transaction_id},
            )
        payments = tuple(
            payment if p.transaction_id == payment.transaction_id else p
            for p in e.payments
        )
    else:
        payments = (*e.payments, payment)

    updated = replace(e, payments=payments, total_amount_paid=compute_total_paid(payments))
    return replace(updated, next_payment_date=_next_payment_date(updated, payment))


async def record_payment(uow: UnitOfWork, enrollment_id: UUID, data: PaymentIn) -> Enrollment:
    when = utcnow()
    before, after = await modify_enrollment(
        uow, enrollment_id, lambda e: apply_payment(e, build_payment(e, data, when))
    )
    if after is before:
        logger.info(
            "Replayed payment tx=%s on enrollment=%s ignored",
            data.transaction_id,
            enrollment_id,
            extra={"enrollment_id": str(enrollment_id)},
        )
        return after

    await uow.commit()
    PAYMENTS_RECORDED.labels(status=data.status).inc()
    logger.info(
        "Recorded %s payment tx=%s amount=%s on enrollment=%s (total paid %s)",
        data.status,
        data.transaction_id,
        data.amount,
        enrollment_id,
        after.total_amount_paid,
        extra={"enrollment_id": str(enrollment_id)},
    )
    return after


def apply_refund(
    e: Enrollment,
    transaction_id: str,
    amount: Decimal | None,
    refund_transaction_id: str | None,
    when: datetime,
) -> Enrollment:
    original = e.payment(transaction_id)
    if original is None:
        raise NotFound("payment", transaction_id)
    if original.payment_type == PaymentType.REFUND:
        raise InvalidPayment("a refund cannot be refunded")

    refund_tx = refund_transaction_id or (
        f"refund_{transaction_id}_"
        f"{sum(1 for p in e.payments if p.refund_of == transaction_id) + 1}"
    )
    previous = e.payment(refund_tx)
    if previous is not None:
        if previous.refund_of == transaction_id and (
            amount is None or previous.amount == money(amount)
        ):
            return e
        raise InvalidPayment(
            "transaction_id already recorded with different details",
            details={"transaction_id": refund_tx},
        )

    if original.status not in (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED):
        raise InvalidPayment(
            "only completed payments can be refunded",
            details={"status": original.status.value},
        )
    refundable = original.amount - original.refunded_amount
    refund_amount = money(amount) if amount is not None else refundable
    if refund_amount <= 0:
        raise InvalidPayment("refund amount must be positive")
    if refund_amount > refundable:
        raise InvalidPayment(
            "refund exceeds the refundable amount",
            details={"refundable": str(refundable), "requested": str(refund_amount)},
        )

    refunded_total = original.refunded_amount + refund_amount
    adjusted = replace(
        original,
        refunded_amount=refunded_total,
        status=(
            PaymentStatus.REFUNDED
            if refunded_total == original.amount
            else PaymentStatus.PARTIALLY_REFUNDED
        ),
    )
    refund_event = Payment(
        amount=refund_amount,
        currency=original.currency,
        method=original.method,
        transaction_id=refund_tx,
        status=PaymentStatus.REFUNDED,
        payment_date=when,
        payment_type=PaymentType.REFUND,
        refund_of=transaction_id,
    )
    payments = (
        *(adjusted if p.transaction_id == transaction_id else p for p in e.payments),
        refund_event,
    )
    return replace(e, payments=payments, total_amount_paid=compute_total_paid(payments))


async def record_refund(
    uow: UnitOfWork,
    enrollment_id: UUID,
    transaction_id: str,
    *,
    amount: Decimal | None = None,
    refund_transaction_id: str | None = None,
) -> Enrollment:
    when = utcnow()
    before, after = await modify_enrollment(
        uow,
        enrollment_id,
        lambda e: apply_refund(e, transaction_id, amount, refund_transaction_id, when),
    )
    if after is not before:
        await uow.commit()
        PAYMENTS_RECORDED.labels(status=PaymentStatus.REFUNDED.value).inc()
        logger.info(
            "Refunded tx=%s on enrollment=%s (total paid %s)",
            transaction_id,
            enrollment_id,
            after.total_amount_paid,
            extra={"enrollment_id": str(enrollment_id)},
        )
    return after


async def payment_history(
    uow: UnitOfWork,
    enrollment_id: UUID,
    *,
    payment_type: PaymentType | None = None,
) -> list[Payment]:
    enrollment = await load_enrollment(uow, enrollment_id)
    return [
        p
        for p in enrollment.payments
        if payment_type is None or p.payment_type == payment_type
    ]


async def verify_and_record(
    uow: UnitOfWork,
    enrollment_id: UUID,
    *,
    order_id: str,
    payment_id: str,
    signature: str | None,
    amount: Decimal,
    method: str,
    currency: str | None = None,
    payment_type: str = PaymentType.ENROLLMENT.value,
) -> Enrollment:
    """Record a gateway-confirmed payment; the gateway payment id is the transaction id."""
    if not gateway.payment_gateway.verify(
        order_id=order_id, payment_id=payment_id, signature=signature
    ):
        logger.warning(
            "Signature verification failed for order=%s payment=%s",
            order_id,
            payment_id,
            extra={"enrollment_id": str(enrollment_id)},
        )
        raise InvalidPayment(
            "payment signature verification failed",
            details={"order_id": order_id},
        )
    return await record_payment(
        uow,
        enrollment_id,
        PaymentIn(
            amount=amount,
            transaction_id=payment_id,
            method=method,
            currency=currency,
            payment_type=payment_type,
        ),
    )
