"""Membership tiers and their static data.

Tier data (ordering, prices, benefit sets) is looked up by tier name.  An
enrollment keeps a snapshot of the benefits assigned to it; changing the
table below never rewrites existing memberships.
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum


class MembershipTier(StrEnum):
    SILVER = "silver"
    GOLD = "gold"


# Lowest first.  Upgrades must move strictly right.
TIER_ORDER: tuple[MembershipTier, ...] = (MembershipTier.SILVER, MembershipTier.GOLD)

VALID_DURATIONS: tuple[int, ...] = (1, 3, 6, 12)

MEMBERSHIP_CURRENCY = "INR"

TIER_PRICES: dict[MembershipTier, dict[int, Decimal]] = {
    MembershipTier.SILVER: {
        1: Decimal("999.00"),
        3: Decimal("2499.00"),
        6: Decimal("3999.00"),
        12: Decimal("4999.00"),
    },
    MembershipTier.GOLD: {
        1: Decimal("1999.00"),
        3: Decimal("3999.00"),
        6: Decimal("5999.00"),
        12: Decimal("6999.00"),
    },
}

TIER_BENEFITS: dict[MembershipTier, tuple[str, ...]] = {
    MembershipTier.SILVER: (
        "access:1_course_category",
        "discount:special",
        "support:standard",
    ),
    MembershipTier.GOLD: (
        "access:3_course_categories",
        "discount:15_percent",
        "support:priority",
        "career:counselling",
    ),
}

TIER_CATEGORY_LIMIT: dict[MembershipTier, int] = {
    MembershipTier.SILVER: 1,
    MembershipTier.GOLD: 3,
}


def tier_rank(tier: MembershipTier) -> int:
    return TIER_ORDER.index(tier)


def is_upgrade(current: MembershipTier, target: MembershipTier) -> bool:
    return tier_rank(target) > tier_rank(current)


def benefits_for(tier: MembershipTier) -> tuple[str, ...]:
    return TIER_BENEFITS[tier]


def price_for(tier: MembershipTier, duration_months: int) -> Decimal:
    """List price for a tier and duration.  Raises KeyError for unknown durations."""
    return TIER_PRICES[tier][duration_months]
