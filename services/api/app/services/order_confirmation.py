"""Staff confirmation of paid orders, item by item.

Staff review an order after the customer has paid and mark each line item as
available (confirmed) or not (denied). Denied items are refunded against the
captured payment. A whole order can also be cancelled, which refunds whatever
was captured and not yet given back. The engine only computes the outcome and issues the refund
instruction; loading and persisting the order is the caller's job, inside the
caller's transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from services.api.app.models.order import (
    ConfirmationDecision,
    ItemConfirmationStatus,
    OrderSnapshot,
    OrderStatus,
)
from services.api.app.services.payment_base import RefundGateway, RefundReceipt

logger = logging.getLogger(__name__)

CONFIRMABLE_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT, OrderStatus.PAYMENT_CONFIRMED}
)

_CENTS = Decimal("0.01")


class OrderConfirmationError(Exception):
    """Base class for order confirmation errors."""


class ValidationError(OrderConfirmationError):
    """The order or the submitted decisions cannot be confirmed as-is."""


class RefundFailedError(OrderConfirmationError):
    def __init__(self, payment_reference: str, amount: Decimal, reason: str) -> None:
        super().__init__(
            f"Refund of {amount} for payment {payment_reference} failed: {reason}. "
            "The order was left unchanged; retry once the payment provider recovers."
        )
        self.payment_reference = payment_reference
        self.amount = amount
        self.reason = reason


@dataclass(frozen=True, slots=True)
class ConfirmationResult:
    order_id: int
    order_status: OrderStatus
    confirmed_item_ids: frozenset[int]
    denied_item_ids: frozenset[int]
    confirmed_total: Decimal
    refund_amount: Decimal
    refund_required: bool
    item_statuses: dict[int, ItemConfirmationStatus] = field(default_factory=dict)
    refund: RefundReceipt | None = None

    def apply(self, order: OrderSnapshot) -> OrderSnapshot:
        """Return a copy of ``order`` with this outcome applied. ``order`` is left untouched."""
        items = [
            item.model_copy(update={"confirmation_status": self.item_statuses[item.id]})
            for item in order.items
        ]
        return order.model_copy(update={"status": self.order_status, "items": items})


@dataclass(frozen=True, slots=True)
class CancellationResult:
    order_id: int
    previous_status: OrderStatus
    refund_amount: Decimal
    refund_required: bool
    refund: RefundReceipt | None = None


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENTS)


def refund_idempotency_key(order_id: int, action: str = "confirmation") -> str:
    # One refund per order and action; a retried request must not refund twice.
    return f"saveup-order-{order_id}-{action}-refund"


class OrderConfirmationEngine:
    def __init__(self, gateway: RefundGateway) -> None:
        self._gateway = gateway

    def confirm(
        self,
        order: OrderSnapshot | None,
        decisions: Iterable[ConfirmationDecision],
        *,
        reason: str | None = None,
    ) -> ConfirmationResult:
        decisions = list(decisions)
        by_item = self._validate(order, decisions)
        assert order is not None

        confirmed = [item for item in order.items if by_item[item.id]]
        denied = [item for item in order.items if not by_item[item.id]]

        confirmed_total = _money(sum((i.line_total for i in confirmed), Decimal("0")))
        refund_amount = _money(sum((i.line_total for i in denied), Decimal("0")))

        if not confirmed:
            status = OrderStatus.CANCELLED
            # Nothing will be delivered, so the delivery fee goes back as well.
            refund_amount = _money(refund_amount + order.delivery_fee)
        elif not denied:
            status = OrderStatus.CONFIRMED
        else:
            status = OrderStatus.PARTIALLY_CONFIRMED

        refund_required = bool(denied) and order.payment_reference is not None

        receipt: RefundReceipt | None = None
        # Providers reject zero-amount refunds; denied free items need no money moved.
        if refund_required and refund_amount > 0:
            receipt = self._issue_refund(
                order,
                refund_amount,
                idempotency_key=refund_idempotency_key(order.id),
                reason=reason or "Items unavailable at confirmation",
            )

        item_statuses = {
            item.id: (
                ItemConfirmationStatus.CONFIRMED if by_item[item.id] else ItemConfirmationStatus.DENIED
            )
            for item in order.items
        }

        logger.info(
            "Order %s -> %s (confirmed=%d denied=%d refund=%s)",
            order.id,
            status.value,
            len(confirmed),
            len(denied),
            refund_amount if refund_required else "none",
        )

        return ConfirmationResult(
            order_id=order.id,
            order_status=status,
            confirmed_item_ids=frozenset(i.id for i in confirmed),
            denied_item_ids=frozenset(i.id for i in denied),
            confirmed_total=confirmed_total,
            refund_amount=refund_amount,
            refund_required=refund_required,
            item_statuses=item_statuses,
            refund=receipt,
        )

    def _validate(
        self, order: OrderSnapshot | None, decisions: list[ConfirmationDecision]
    ) -> dict[int, bool]:
        if order is None:
            raise ValidationError("Order not found")

        if order.status not in CONFIRMABLE_STATUSES:
            raise ValidationError(
                f"Order {order.id} cannot be confirmed from status {order.status.value!r}"
            )

        if not order.items:
            raise ValidationError(f"Order {order.id} has no items to confirm")

        already_decided = [i.id for i in order.items if i.confirmation_status is not None]
        if already_decided:
            raise ValidationError(
                f"Order {order.id} items already have a confirmation status: {already_decided}"
            )

        item_ids = {item.id for item in order.items}
        by_item: dict[int, bool] = {}
        for decision in decisions:
            if decision.order_item_id not in item_ids:
                raise ValidationError(
                    f"Item {decision.order_item_id} does not belong to order {order.id}"
                )
            if decision.order_item_id in by_item:
                raise ValidationError(f"Duplicate decision for item {decision.order_item_id}")
            by_item[decision.order_item_id] = decision.confirmed

        missing = sorted(item_ids - by_item.keys())
        if missing:
            raise ValidationError(f"Missing decisions for items: {missing}")

        return by_item

    def cancel(self, order: OrderSnapshot | None, *, reason: str) -> CancellationResult:
        """Cancel the whole order and give back whatever captured money is left.

        Anything already refunded at confirmation time is subtracted first, so a
        partially confirmed order only refunds its confirmed items and the delivery fee.
        """
        if order is None:
            raise ValidationError("Order not found")
        if order.status == OrderStatus.CANCELLED:
            raise ValidationError(f"Order {order.id} is already cancelled")

        remaining = _money(max(order.total_amount - order.refunded_amount, Decimal("0")))
        refund_required = order.payment_reference is not None and remaining > 0

        receipt: RefundReceipt | None = None
        if refund_required:
            receipt = self._issue_refund(
                order,
                remaining,
                idempotency_key=refund_idempotency_key(order.id, "cancellation"),
                reason=reason,
            )

        logger.info(
            "Order %s cancelled from %s (refund=%s)",
            order.id,
            order.status.value,
            remaining if refund_required else "none",
        )

        return CancellationResult(
            order_id=order.id,
            previous_status=order.status,
            refund_amount=remaining if refund_required else Decimal("0.00"),
            refund_required=refund_required,
            refund=receipt,
        )

    def _issue_refund(
        self, order: OrderSnapshot, amount: Decimal, *, idempotency_key: str, reason: str
    ) -> RefundReceipt:
        assert order.payment_reference is not None
        try:
            return self._gateway.refund(
                order.payment_reference,
                amount,
                idempotency_key=idempotency_key,
                reason=reason,
            )
        except Exception as e:
            logger.warning(
                "Refund of %s for order %s (payment %s) failed: %s",
                amount,
                order.id,
                order.payment_reference,
                e,
            )
            raise RefundFailedError(order.payment_reference, amount, str(e)) from e


def confirm_order(
    order: OrderSnapshot | None,
    decisions: Iterable[ConfirmationDecision],
    gateway: RefundGateway,
    *,
    reason: str | None = None,
) -> ConfirmationResult:
    return OrderConfirmationEngine(gateway).confirm(order, decisions, reason=reason)


def cancel_order(
    order: OrderSnapshot | None, gateway: RefundGateway, *, reason: str
) -> CancellationResult:
    return OrderConfirmationEngine(gateway).cancel(order, reason=reason)
