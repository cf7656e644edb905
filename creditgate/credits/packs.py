"""Credit package and subscription tier definitions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from creditgate.credits.errors import UnknownPackage, UnknownSubscriptionTier


@dataclass(frozen=True, slots=True)
class CreditPackage:
    """A purchasable one-time credit package."""

    id: str
    name: str
    price: Decimal  # USD
    base_credits: int
    bonus_credits: int = 0

    @property
    def total_credits(self) -> int:
        return self.base_credits + self.bonus_credits

    @property
    def price_per_credit(self) -> Decimal:
        return (self.price / self.total_credits).quantize(Decimal("0.001"))


@dataclass(frozen=True, slots=True)
class SubscriptionTier:
    """A recurring plan that grants credits once per billing period."""

    id: str
    name: str
    monthly_price: Decimal  # USD
    monthly_credits: int


# fmt: off
CREDIT_PACKAGES: dict[str, CreditPackage] = {
    "starter": CreditPackage("starter", "Starter Pack", Decimal("9.99"), 100, 0),
    "professional": CreditPackage("professional", "Professional Pack", Decimal("39.99"), 500, 100),
    "business": CreditPackage("business", "Business Pack", Decimal("69.99"), 1000, 300),
    "enterprise": CreditPackage("enterprise", "Enterprise Pack", Decimal("149.99"), 2500, 750),
}

SUBSCRIPTION_TIERS: dict[str, SubscriptionTier] = {
    "basic_monitor": SubscriptionTier("basic_monitor", "Basic Monitor", Decimal("29"), 300),
    "pro_monitor": SubscriptionTier("pro_monitor", "Pro Monitor", Decimal("79"), 900),
    "enterprise_monitor": SubscriptionTier("enterprise_monitor", "Enterprise", Decimal("199"), 2500),
}
# fmt: on

_PERIOD_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def get_package(package_id: str) -> CreditPackage:
    """Get a credit package by id.

    Raises:
        UnknownPackage: If the package is not registered.
    """
    try:
        return CREDIT_PACKAGES[package_id]
    except KeyError:
        raise UnknownPackage(package_id) from None


def get_subscription_tier(tier_id: str) -> SubscriptionTier:
    """Get a subscription tier by id.

    Raises:
        UnknownSubscriptionTier: If the tier is not registered.
    """
    try:
        return SUBSCRIPTION_TIERS[tier_id]
    except KeyError:
        raise UnknownSubscriptionTier(tier_id) from None


def find_best_package(credits_needed: int) -> CreditPackage | None:
    """Smallest package whose total credits cover ``credits_needed``."""
    candidates = [p for p in CREDIT_PACKAGES.values() if p.total_credits >= credits_needed]
    if not candidates:
        return None
    return min(candidates, key=lambda p: p.total_credits)


def current_period_key(now: datetime | None = None) -> str:
    """Billing period key (``YYYY-MM``) for a point in time, UTC."""
    current = now or datetime.now(UTC)
    return current.strftime("%Y-%m")


def validate_period_key(period_key: str) -> str:
    """Ensure a period key has the ``YYYY-MM`` shape.

    Raises:
        ValueError: If the key is malformed.
    """
    if not _PERIOD_KEY_RE.match(period_key):
        msg = f"Period key must look like YYYY-MM, got {period_key!r}"
        raise ValueError(msg)
    return period_key
