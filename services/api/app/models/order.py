from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    PENDING = "pending"
    PAYMENT_CONFIRMED = "payment_confirmed"
    CONFIRMED = "confirmed"
    PARTIALLY_CONFIRMED = "partially_confirmed"
    CANCELLED = "cancelled"


class ItemConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    DENIED = "denied"


class OrderItemInput(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)


class OrderCreateRequest(BaseModel):
    customer_name: str = Field(..., min_length=1)
    customer_email: str | None = None
    customer_phone: str | None = None
    fulfillment_method: Literal["pickup", "delivery"] = "pickup"
    delivery_fee: Decimal = Field(Decimal("0.00"), ge=0)
    payment_method: Literal["pix", "card"] | None = None
    items: list[OrderItemInput] = Field(..., min_length=1)


class PaymentCaptureRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1)
    payment_method: Literal["pix", "card"] | None = None


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    price_at_time: Decimal
    line_total: Decimal
    confirmation_status: ItemConfirmationStatus | None = None


class OrderOut(BaseModel):
    id: int
    customer_name: str
    customer_email: str | None = None
    customer_phone: str | None = None

    status: OrderStatus
    fulfillment_method: str
    delivery_fee: Decimal
    total_amount: Decimal

    payment_method: str | None = None
    payment_reference: str | None = None

    refund_id: str | None = None
    refund_amount: Decimal | None = None
    refund_status: str | None = None

    items: list[OrderItemOut]
    created_at: str


class OrderItemSnapshot(BaseModel):
    """A line item as the confirmation engine sees it."""

    id: int
    product_id: int
    quantity: int = Field(..., ge=1)
    price_at_time: Decimal
    confirmation_status: ItemConfirmationStatus | None = None

    @property
    def line_total(self) -> Decimal:
        return self.price_at_time * self.quantity


class OrderSnapshot(BaseModel):
    id: int
    status: OrderStatus
    payment_reference: str | None = None
    delivery_fee: Decimal = Decimal("0.00")
    refunded_amount: Decimal = Decimal("0.00")
    items: list[OrderItemSnapshot] = Field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0.00"))

    @property
    def total_amount(self) -> Decimal:
        return self.subtotal + self.delivery_fee


class ConfirmationDecision(BaseModel):
    order_item_id: int
    confirmed: bool


class OrderConfirmRequest(BaseModel):
    decisions: list[ConfirmationDecision] = Field(default_factory=list)
    reason: str | None = None


class RefundOut(BaseModel):
    refund_id: str
    status: str
    amount: Decimal


class OrderConfirmResponse(BaseModel):
    order_id: int
    status: OrderStatus
    confirmed_item_ids: list[int]
    denied_item_ids: list[int]
    confirmed_total: Decimal
    refund_amount: Decimal
    refund_required: bool
    refund: RefundOut | None = None
    eco_points_awarded: int = 0


class OrderCancelRequest(BaseModel):
    reason: str | None = None


class OrderCancelResponse(BaseModel):
    order_id: int
    status: OrderStatus
    previous_status: OrderStatus
    refund_amount: Decimal
    refund_required: bool
    refund: RefundOut | None = None
