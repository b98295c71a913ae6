"""Eco points scoring.

Buying a product close to its expiration date keeps it out of the bin, so the
closer the date the more points a purchase is worth. Perishable categories earn
a multiplier on top of the urgency tier.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal


@dataclass(frozen=True, slots=True)
class EcoPointsTier:
    key: str
    label: str
    description: str
    base_points: int
    min_days: int | None
    max_days: int | None

    def matches(self, days_until_expiry: int) -> bool:
        if self.min_days is not None and days_until_expiry < self.min_days:
            return False
        if self.max_days is not None and days_until_expiry > self.max_days:
            return False
        return True


# Most urgent first; the first matching tier wins.
ECO_POINTS_TIERS: tuple[EcoPointsTier, ...] = (
    EcoPointsTier(
        key="expires_today",
        label="Expires today",
        description="Expires today or already expired - highest waste-reduction impact",
        base_points=100,
        min_days=None,
        max_days=0,
    ),
    EcoPointsTier(
        key="expires_tomorrow",
        label="Expires tomorrow",
        description="Expires in 1 day - high priority",
        base_points=80,
        min_days=1,
        max_days=1,
    ),
    EcoPointsTier(
        key="expires_2_3_days",
        label="Expires in 2-3 days",
        description="Close to expiry - significant contribution",
        base_points=60,
        min_days=2,
        max_days=3,
    ),
    EcoPointsTier(
        key="expires_4_7_days",
        label="Expires in 4-7 days",
        description="Expires within a week - good contribution",
        base_points=40,
        min_days=4,
        max_days=7,
    ),
    EcoPointsTier(
        key="expires_8_14_days",
        label="Expires in 8-14 days",
        description="Expires within two weeks - basic contribution",
        base_points=25,
        min_days=8,
        max_days=14,
    ),
    EcoPointsTier(
        key="expires_15_30_days",
        label="Expires in 15-30 days",
        description="Expires within a month - minimal contribution",
        base_points=15,
        min_days=15,
        max_days=30,
    ),
    EcoPointsTier(
        key="standard",
        label="More than 30 days",
        description="Distant expiry - standard score",
        base_points=10,
        min_days=31,
        max_days=None,
    ),
)


CATEGORY_MULTIPLIERS: dict[str, Decimal] = {
    "Meat and Poultry": Decimal("1.3"),
    "Dairy": Decimal("1.2"),
    "Deli": Decimal("1.2"),
    "Bakery": Decimal("1.15"),
    "Produce": Decimal("1.1"),
}

# Catalogue names used by Brazilian stores.
_CATEGORY_ALIASES: dict[str, str] = {
    "meat/poultry": "Meat and Poultry",
    "carnes e aves": "Meat and Poultry",
    "laticínios": "Dairy",
    "laticinios": "Dairy",
    "frios": "Deli",
    "padaria": "Bakery",
    "hortifruti": "Produce",
}

_MULTIPLIER_LOOKUP: dict[str, Decimal] = {
    **{name.casefold(): m for name, m in CATEGORY_MULTIPLIERS.items()},
    **{alias: CATEGORY_MULTIPLIERS[name] for alias, name in _CATEGORY_ALIASES.items()},
}

_ONE_DAY = timedelta(days=1)


def _as_utc(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def days_until_expiry(expiration_date: date | datetime, *, now: datetime | None = None) -> int:
    """Whole days left before expiry, rounded up. Negative once expired.

    A plain date is taken as midnight UTC of that day.
    """
    current = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return math.ceil((_as_utc(expiration_date) - current) / _ONE_DAY)


def tier_for_days(days: int) -> EcoPointsTier:
    for tier in ECO_POINTS_TIERS:
        if tier.matches(days):
            return tier
    return ECO_POINTS_TIERS[-1]


def get_eco_points_rule(
    expiration_date: date | datetime, *, now: datetime | None = None
) -> EcoPointsTier:
    return tier_for_days(days_until_expiry(expiration_date, now=now))


def category_multiplier(category: str | None) -> Decimal:
    if not category:
        return Decimal("1")
    return _MULTIPLIER_LOOKUP.get(category.strip().casefold(), Decimal("1"))


def calculate_eco_points(
    expiration_date: date | datetime,
    category: str | None = None,
    quantity: int = 1,
    *,
    now: datetime | None = None,
) -> int:
    """Score a purchase of ``quantity`` units of one product.

    The per-unit score is ``round(base_points * multiplier)`` with halves rounded up,
    and the cart line score is that times ``quantity``. Never raises for an unknown
    category or a past date.
    """
    tier = get_eco_points_rule(expiration_date, now=now)
    unit_points = (tier.base_points * category_multiplier(category)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(unit_points) * max(1, quantity)
