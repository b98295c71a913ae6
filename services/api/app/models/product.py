from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    supermarket_name: str | None = None
    original_price: Decimal = Field(..., ge=0)
    discount_price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=0)
    expiration_date: date

    @model_validator(mode="after")
    def _discount_not_above_original(self) -> "ProductCreateRequest":
        if self.discount_price > self.original_price:
            raise ValueError("discount_price must not exceed original_price")
        return self


class ProductOut(BaseModel):
    id: int
    name: str
    category: str
    supermarket_name: str | None = None
    original_price: Decimal
    discount_price: Decimal
    quantity: int
    expiration_date: date
    is_active: bool

    days_until_expiry: int
    eco_points: int
