from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.errors import ConfigurationError, InvalidEnrollmentStructure
from app.models.course import Course, CoursePrice
from app.models.enrollment import EnrollmentType, PricingType
from app.models.membership import MembershipTier
from app.services.pricing import (
    money,
    quote_pricing,
    resolve_membership_pricing,
    resolve_pricing,
)


def _course(**price_overrides) -> Course:
    price = {
        "currency": "INR",
        "individual": Decimal("1000.00"),
        "batch": Decimal("800.00"),
        "min_batch_size": 3,
    }
    price.update(price_overrides)
    return Course.new(slug="pricing", title="Pricing", prices=(CoursePrice(**price),))


def test_individual_uses_individual_price() -> None:
    snap = resolve_pricing(_course(), EnrollmentType.INDIVIDUAL)
    assert snap.original_price == Decimal("1000.00")
    assert snap.final_price == Decimal("1000.00")
    assert snap.pricing_type == PricingType.INDIVIDUAL
    assert snap.discount_applied == Decimal("0.00")


def test_batch_uses_batch_price() -> None:
    snap = resolve_pricing(_course(), EnrollmentType.BATCH, batch_size=2)
    assert snap.original_price == Decimal("800.00")
    assert snap.pricing_type == PricingType.BATCH


def test_early_bird_reclassifies_pricing_type() -> None:
    snap = resolve_pricing(_course(early_bird_discount=Decimal("10")), EnrollmentType.INDIVIDUAL)
    assert snap.final_price == Decimal("900.00")
    assert snap.pricing_type == PricingType.EARLY_BIRD
    assert snap.discount_applied == Decimal("100.00")


def test_group_discount_needs_min_batch_size() -> None:
    course = _course(group_discount=Decimal("25"))
    below = resolve_pricing(course, EnrollmentType.GROUP, batch_size=2)
    at = resolve_pricing(course, EnrollmentType.GROUP, batch_size=3)
    assert below.final_price == Decimal("800.00")
    assert below.pricing_type == PricingType.BATCH
    assert at.final_price == Decimal("600.00")
    assert at.pricing_type == PricingType.GROUP_DISCOUNT


def test_explicit_discount_is_floored_at_zero() -> None:
    snap = resolve_pricing(
        _course(), EnrollmentType.INDIVIDUAL, discount_amount=Decimal("5000"), discount_code="BIG"
    )
    assert snap.final_price == Decimal("0.00")
    assert snap.discount_applied == snap.original_price
    assert snap.discount_code == "BIG"


@pytest.mark.parametrize("kind", [EnrollmentType.SCHOLARSHIP, EnrollmentType.TRIAL])
def test_scholarship_and_trial_are_free(kind: EnrollmentType) -> None:
    snap = resolve_pricing(_course(), kind)
    assert snap.final_price == Decimal("0.00")
    assert snap.discount_applied == Decimal("1000.00")


def test_missing_currency_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        resolve_pricing(_course(), EnrollmentType.INDIVIDUAL, currency="USD")


def test_negative_discount_rejected() -> None:
    with pytest.raises(InvalidEnrollmentStructure):
        resolve_pricing(_course(), EnrollmentType.INDIVIDUAL, discount_amount=Decimal("-1"))


def test_membership_type_not_priced_from_course() -> None:
    with pytest.raises(InvalidEnrollmentStructure):
        resolve_pricing(_course(), EnrollmentType.MEMBERSHIP)


def test_membership_pricing_from_tier_table() -> None:
    snap = resolve_membership_pricing(MembershipTier.GOLD, 12)
    assert snap.final_price == Decimal("6999.00")
    assert snap.pricing_type == PricingType.MEMBERSHIP
    assert snap.currency == "INR"


def test_membership_pricing_rejects_unknown_duration() -> None:
    with pytest.raises(InvalidEnrollmentStructure):
        resolve_membership_pricing(MembershipTier.SILVER, 2)


def test_quote_matches_snapshot() -> None:
    quote = quote_pricing(_course(early_bird_discount=Decimal("20")), EnrollmentType.INDIVIDUAL)
    assert quote["final_price"] == Decimal("800.00")
    assert quote["savings"] == Decimal("200.00")
    assert quote["pricing_type"] == "early_bird"


def test_money_rounds_half_up() -> None:
    assert money(Decimal("10.005")) == Decimal("10.01")
    assert money("3") == Decimal("3.00")
