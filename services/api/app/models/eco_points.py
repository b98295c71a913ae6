from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class EcoPointsTierOut(BaseModel):
    key: str
    label: str
    description: str
    base_points: int
    min_days: int | None = None
    max_days: int | None = None


class EcoPointsRulesResponse(BaseModel):
    tiers: list[EcoPointsTierOut]
    category_multipliers: dict[str, Decimal]
    default_multiplier: Decimal = Decimal("1")


class EcoPointsQuote(BaseModel):
    product_id: int
    category: str
    quantity: int
    days_until_expiry: int
    unit_points: int
    total_points: int
    tier: EcoPointsTierOut


class EcoActionOut(BaseModel):
    id: int
    action_type: str
    points_earned: int
    description: str
    order_id: int | None = None
    created_at: str


class CustomerEcoPointsResponse(BaseModel):
    customer_email: str
    total_points: int
    actions: list[EcoActionOut] = Field(default_factory=list)
