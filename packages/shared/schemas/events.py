"""Shared event schema (v1).

Order and payment changes are recorded in an append-only event log. Staff and
customer clients read these events to render an order's audit trail.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EntityTypeV1(str, Enum):
    PRODUCT = "Product"
    ORDER = "Order"


class EventTypeV1(str, Enum):
    PRODUCT_CREATED = "PRODUCT_CREATED"
    ORDER_CREATED = "ORDER_CREATED"
    PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    ORDER_PARTIALLY_CONFIRMED = "ORDER_PARTIALLY_CONFIRMED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    CANCELLATION_FAILED = "CANCELLATION_FAILED"
    REFUND_ISSUED = "REFUND_ISSUED"
    CONFIRMATION_FAILED = "CONFIRMATION_FAILED"
    ECO_POINTS_AWARDED = "ECO_POINTS_AWARDED"


class EventV1(BaseModel):
    id: str
    entity_type: EntityTypeV1
    entity_id: str

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
