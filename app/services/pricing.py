"""Pricing resolver.

Turns a course's live price list into the immutable PricingSnapshot stored
on an enrollment.  Order of application:

  1. base price: individual price for individual-style types, batch price
     for batch/group
  2. early-bird percentage (individual) or group percentage (batch, once
     batch_size reaches the course's min_batch_size); either one
     reclassifies ``pricing_type``
  3. explicit discount amount, floored at zero
  4. scholarship and trial enrollments are zero-priced; the whole original
     price is recorded as discount

There is no fallback to another currency: a course without a price entry
for the requested currency is a configuration error.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from app.core.errors import ConfigurationError, InvalidEnrollmentStructure
from app.models.course import Course
from app.models.enrollment import (
    INDIVIDUAL_PRICED_TYPES,
    ZERO,
    ZERO_PRICED_TYPES,
    EnrollmentType,
    PricingSnapshot,
    PricingType,
)
from app.models.membership import (
    MEMBERSHIP_CURRENCY,
    VALID_DURATIONS,
    MembershipTier,
    price_for,
)

SUPPORTED_CURRENCIES = frozenset(
    {"INR", "USD", "EUR", "GBP", "AUD", "CAD", "SGD", "AED", "JPY", "CHF", "NZD"}
)

_CENTS = Decimal("0.01")


def money(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(_CENTS, rounding=ROUND_HALF_UP)


def _percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    return money(amount * Decimal(percent) / Decimal(100))


def resolve_pricing(
    course: Course,
    enrollment_type: EnrollmentType,
    *,
    currency: str = "INR",
    batch_size: int = 1,
    discount_code: str | None = None,
    discount_amount: Decimal = ZERO,
) -> PricingSnapshot:
    if enrollment_type == EnrollmentType.MEMBERSHIP:
        raise InvalidEnrollmentStructure("membership pricing comes from the tier table")
    if discount_amount < 0:
        raise InvalidEnrollmentStructure("discount amount cannot be negative")

    price = course.price_for(currency)
    if price is None:
        raise ConfigurationError(
            f"course has no pricing for currency {currency}",
            details={"course_id": str(course.id), "currency": currency},
        )

    if enrollment_type in INDIVIDUAL_PRICED_TYPES:
        original = money(price.individual)
        pricing_type = PricingType.INDIVIDUAL
        discounted = original
        if price.early_bird_discount > 0:
            discounted = original - _percent_of(original, price.early_bird_discount)
            pricing_type = PricingType.EARLY_BIRD
    else:
        original = money(price.batch)
        pricing_type = PricingType.BATCH
        discounted = original
        if batch_size >= price.min_batch_size and price.group_discount > 0:
            discounted = original - _percent_of(original, price.group_discount)
            pricing_type = PricingType.GROUP_DISCOUNT

    if enrollment_type in ZERO_PRICED_TYPES:
        final = ZERO
    else:
        final = max(discounted - money(discount_amount), ZERO)

    return PricingSnapshot(
        original_price=original,
        final_price=money(final),
        currency=currency,
        pricing_type=pricing_type,
        discount_applied=money(original - final),
        discount_code=discount_code,
    )


def resolve_membership_pricing(
    tier: MembershipTier,
    duration_months: int,
    *,
    currency: str = MEMBERSHIP_CURRENCY,
) -> PricingSnapshot:
    if currency != MEMBERSHIP_CURRENCY:
        raise ConfigurationError(
            f"membership pricing is not configured for currency {currency}",
            details={"currency": currency},
        )
    if duration_months not in VALID_DURATIONS:
        raise InvalidEnrollmentStructure(
            "unsupported membership duration",
            details={"duration_months": duration_months, "allowed": list(VALID_DURATIONS)},
        )
    amount = price_for(tier, duration_months)
    return PricingSnapshot(
        original_price=amount,
        final_price=amount,
        currency=currency,
        pricing_type=PricingType.MEMBERSHIP,
    )


def quote_pricing(
    course: Course,
    enrollment_type: EnrollmentType,
    *,
    currency: str = "INR",
    batch_size: int = 1,
    discount_code: str | None = None,
    discount_amount: Decimal = ZERO,
) -> dict:
    """Read-only preview of what ``resolve_pricing`` would snapshot."""
    snapshot = resolve_pricing(
        course,
        enrollment_type,
        currency=currency,
        batch_size=batch_size,
        discount_code=discount_code,
        discount_amount=discount_amount,
    )
    return {
        "course_id": str(course.id),
        "enrollment_type": enrollment_type.value,
        "batch_size": batch_size,
        "original_price": snapshot.original_price,
        "final_price": snapshot.final_price,
        "currency": snapshot.currency,
        "pricing_type": snapshot.pricing_type.value,
        "discount_applied": snapshot.discount_applied,
        "discount_code": snapshot.discount_code,
        "savings": snapshot.discount_applied,
    }
