from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.db.deps import get_db
from services.api.app.db.event_log import log_event
from services.api.app.db.models import EcoAction, Order, OrderItem, Product
from services.api.app.models.order import (
    ItemConfirmationStatus,
    OrderCancelRequest,
    OrderCancelResponse,
    OrderConfirmRequest,
    OrderConfirmResponse,
    OrderCreateRequest,
    OrderItemOut,
    OrderItemSnapshot,
    OrderOut,
    OrderSnapshot,
    OrderStatus,
    PaymentCaptureRequest,
    RefundOut,
)
from services.api.app.services.eco_points import calculate_eco_points
from services.api.app.services.order_confirmation import (
    ConfirmationResult,
    OrderConfirmationEngine,
    RefundFailedError,
    ValidationError,
)
from services.api.app.services.payment_base import PaymentGatewayConfigError, RefundReceipt
from services.api.app.services.payment_factory import get_refund_gateway
from sqlalchemy import func, select
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_EVENTS = {
    OrderStatus.CONFIRMED: EventTypeV1.ORDER_CONFIRMED,
    OrderStatus.PARTIALLY_CONFIRMED: EventTypeV1.ORDER_PARTIALLY_CONFIRMED,
    OrderStatus.CANCELLED: EventTypeV1.ORDER_CANCELLED,
}


@router.post("/v1/orders", response_model=OrderOut)
def create_order(payload: OrderCreateRequest, db: Session = Depends(get_db)) -> OrderOut:
    if payload.fulfillment_method == "pickup" and payload.delivery_fee > 0:
        raise HTTPException(status_code=422, detail="delivery_fee only applies to delivery orders")

    order = Order(
        customer_name=payload.customer_name,
        customer_email=payload.customer_email,
        customer_phone=payload.customer_phone,
        fulfillment_method=payload.fulfillment_method,
        delivery_fee=payload.delivery_fee,
        payment_method=payload.payment_method,
        status=(
            OrderStatus.AWAITING_PAYMENT.value
            if payload.payment_method is not None
            else OrderStatus.PENDING.value
        ),
        total_amount=Decimal("0.00"),
    )

    subtotal = Decimal("0.00")
    for line in payload.items:
        product = db.get(Product, line.product_id)
        if product is None:
            raise HTTPException(status_code=404, detail=f"Product {line.product_id} not found")
        if not product.is_active:
            raise HTTPException(status_code=409, detail=f"Product {product.id} is not available")
        if product.quantity < line.quantity:
            raise HTTPException(
                status_code=409,
                detail=f"Insufficient stock for product {product.id}: {product.quantity} left",
            )

        product.quantity -= line.quantity
        subtotal += product.discount_price * line.quantity
        order.items.append(
            OrderItem(
                product_id=product.id,
                quantity=line.quantity,
                price_at_time=product.discount_price,
            )
        )

    order.total_amount = subtotal + payload.delivery_fee
    db.add(order)
    db.flush()

    log_event(
        db,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order.id,
        event_type=EventTypeV1.ORDER_CREATED,
        event_payload={
            "status": order.status,
            "total_amount": str(order.total_amount),
            "items": len(order.items),
        },
    )
    db.commit()
    return _order_out(order)


@router.get("/v1/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: int, db: Session = Depends(get_db)) -> OrderOut:
    order = db.get(Order, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return _order_out(order)


@router.post("/v1/orders/{order_id}/payment", response_model=OrderOut)
def capture_payment(
    order_id: int, payload: PaymentCaptureRequest, db: Session = Depends(get_db)
) -> OrderOut:
    order = _load_order_for_update(db, order_id)

    if order.status not in {OrderStatus.AWAITING_PAYMENT.value, OrderStatus.PENDING.value}:
        raise HTTPException(
            status_code=409, detail=f"Payment cannot be recorded for an order in {order.status!r}"
        )

    order.payment_reference = payload.payment_reference
    order.payment_method = payload.payment_method or order.payment_method
    order.status = OrderStatus.PAYMENT_CONFIRMED.value
    order.updated_at = datetime.utcnow()

    log_event(
        db,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order.id,
        event_type=EventTypeV1.PAYMENT_CAPTURED,
        event_payload={
            "payment_reference": payload.payment_reference,
            "payment_method": order.payment_method,
        },
    )
    db.commit()
    return _order_out(order)


@router.post("/v1/staff/orders/{order_id}/confirm", response_model=OrderConfirmResponse)
def confirm_order_items(
    order_id: int, payload: OrderConfirmRequest, db: Session = Depends(get_db)
) -> OrderConfirmResponse:
    order = _load_order_for_update(db, order_id)

    try:
        gateway = get_refund_gateway()
    except PaymentGatewayConfigError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    engine = OrderConfirmationEngine(gateway)
    snapshot = _order_snapshot(order)
    try:
        result = engine.confirm(snapshot, payload.decisions, reason=payload.reason)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except RefundFailedError as e:
        _record_refund_failure(db, order_id, EventTypeV1.CONFIRMATION_FAILED, e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    try:
        _apply_confirmation(db, order, result.apply(snapshot), result, reason=payload.reason)
        points = _award_eco_points(db, order, result)
        db.commit()
    except Exception as e:
        if result.refund is not None:
            _record_orphaned_refund(db, order_id, result.refund, e)
        raise

    return OrderConfirmResponse(
        order_id=order.id,
        status=result.order_status,
        confirmed_item_ids=sorted(result.confirmed_item_ids),
        denied_item_ids=sorted(result.denied_item_ids),
        confirmed_total=result.confirmed_total,
        refund_amount=result.refund_amount,
        refund_required=result.refund_required,
        refund=_refund_out(result.refund),
        eco_points_awarded=points,
    )


@router.post("/v1/orders/{order_id}/cancel", response_model=OrderCancelResponse)
def cancel_order_by_customer(
    order_id: int, payload: OrderCancelRequest, db: Session = Depends(get_db)
) -> OrderCancelResponse:
    return _cancel(
        db, order_id, cancelled_by="customer", reason=payload.reason or "Cancelled by the customer"
    )


@router.post("/v1/staff/orders/{order_id}/cancel", response_model=OrderCancelResponse)
def cancel_order_by_staff(
    order_id: int, payload: OrderCancelRequest, db: Session = Depends(get_db)
) -> OrderCancelResponse:
    return _cancel(db, order_id, cancelled_by="staff", reason=payload.reason or "Cancelled by staff")


def _cancel(db: Session, order_id: int, *, cancelled_by: str, reason: str) -> OrderCancelResponse:
    order = _load_order_for_update(db, order_id)

    try:
        gateway = get_refund_gateway()
    except PaymentGatewayConfigError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    try:
        result = OrderConfirmationEngine(gateway).cancel(_order_snapshot(order), reason=reason)
    except ValidationError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except RefundFailedError as e:
        _record_refund_failure(db, order_id, EventTypeV1.CANCELLATION_FAILED, e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    try:
        now = datetime.utcnow()
        order.status = OrderStatus.CANCELLED.value
        order.updated_at = now
        if result.refund is not None:
            _record_refund(db, order, result.refund, reason=reason, at=now)
        revoked = _revoke_eco_points(db, order)

        log_event(
            db,
            entity_type=EntityTypeV1.ORDER,
            entity_id=order.id,
            event_type=EventTypeV1.ORDER_CANCELLED,
            event_payload={
                "cancelled_by": cancelled_by,
                "previous_status": result.previous_status.value,
                "refund_amount": str(result.refund_amount),
                "refund_required": result.refund_required,
                "reason": reason,
                "eco_points_revoked": revoked,
            },
        )
        db.commit()
    except Exception as e:
        if result.refund is not None:
            _record_orphaned_refund(db, order_id, result.refund, e)
        raise

    return OrderCancelResponse(
        order_id=order.id,
        status=OrderStatus.CANCELLED,
        previous_status=result.previous_status,
        refund_amount=result.refund_amount,
        refund_required=result.refund_required,
        refund=_refund_out(result.refund),
    )


def _record_refund_failure(
    db: Session, order_id: int, event_type: EventTypeV1, e: RefundFailedError
) -> None:
    # Nothing from this attempt is kept; only the failure itself is recorded.
    db.rollback()
    log_event(
        db,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order_id,
        event_type=event_type,
        event_payload={
            "payment_reference": e.payment_reference,
            "amount": str(e.amount),
            "error": e.reason,
        },
    )
    db.commit()


def _record_orphaned_refund(
    db: Session, order_id: int, receipt: RefundReceipt, e: Exception
) -> None:
    """The provider already moved the money but the order update did not persist."""
    logger.error(
        "Refund %s of %s for order %s issued but the order update failed: %s",
        receipt.refund_id,
        receipt.amount,
        order_id,
        e,
    )
    db.rollback()
    log_event(
        db,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order_id,
        event_type=EventTypeV1.REFUND_ISSUED,
        event_payload={
            "refund_id": receipt.refund_id,
            "amount": str(receipt.amount),
            "status": receipt.status,
            "order_updated": False,
            "error": str(e),
        },
    )
    db.commit()


def _refund_out(receipt: RefundReceipt | None) -> RefundOut | None:
    if receipt is None:
        return None
    return RefundOut(refund_id=receipt.refund_id, status=receipt.status, amount=receipt.amount)


def _load_order_for_update(db: Session, order_id: int) -> Order:
    # Row lock serializes concurrent payment/confirmation requests for the same order.
    order = db.execute(
        select(Order).where(Order.id == order_id).with_for_update()
    ).scalar_one_or_none()
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _order_snapshot(order: Order) -> OrderSnapshot:
    return OrderSnapshot(
        id=order.id,
        status=OrderStatus(order.status),
        payment_reference=order.payment_reference,
        delivery_fee=order.delivery_fee or Decimal("0.00"),
        refunded_amount=order.refund_amount or Decimal("0.00"),
        items=[
            OrderItemSnapshot(
                id=item.id,
                product_id=item.product_id,
                quantity=item.quantity,
                price_at_time=item.price_at_time,
                confirmation_status=(
                    ItemConfirmationStatus(item.confirmation_status)
                    if item.confirmation_status
                    else None
                ),
            )
            for item in order.items
        ],
    )


def _apply_confirmation(
    db: Session,
    order: Order,
    updated: OrderSnapshot,
    result: ConfirmationResult,
    *,
    reason: str | None,
) -> None:
    now = datetime.utcnow()

    statuses = {item.id: item.confirmation_status for item in updated.items}
    for item in order.items:
        item.confirmation_status = statuses[item.id].value

    order.status = updated.status.value
    order.updated_at = now

    if result.refund is not None:
        _record_refund(
            db, order, result.refund, reason=reason or "Items unavailable at confirmation", at=now
        )

    log_event(
        db,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order.id,
        event_type=_STATUS_EVENTS[result.order_status],
        event_payload={
            "confirmed_item_ids": sorted(result.confirmed_item_ids),
            "denied_item_ids": sorted(result.denied_item_ids),
            "confirmed_total": str(result.confirmed_total),
            "refund_amount": str(result.refund_amount),
            "refund_required": result.refund_required,
        },
    )


def _record_refund(
    db: Session, order: Order, receipt: RefundReceipt, *, reason: str, at: datetime
) -> None:
    # Confirmation and cancellation may both refund the same order; amounts accumulate.
    already_refunded = order.refund_amount or Decimal("0.00")
    order.refund_id = receipt.refund_id
    order.refund_amount = already_refunded + receipt.amount
    order.refund_status = receipt.status
    order.refund_date = at
    order.refund_reason = reason

    log_event(
        db,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order.id,
        event_type=EventTypeV1.REFUND_ISSUED,
        event_payload={
            "refund_id": receipt.refund_id,
            "payment_reference": order.payment_reference,
            "amount": str(receipt.amount),
            "status": receipt.status,
        },
    )


def _award_eco_points(db: Session, order: Order, result: ConfirmationResult) -> int:
    """Credit the customer for the items that will actually be delivered.

    Points are scored as of checkout time so staff review latency does not change them.
    """
    if not order.customer_email or not result.confirmed_item_ids:
        return 0

    points = 0
    for item in order.items:
        if item.id not in result.confirmed_item_ids:
            continue
        points += calculate_eco_points(
            item.product.expiration_date,
            item.product.category,
            item.quantity,
            now=order.created_at,
        )

    if points <= 0:
        return 0

    action = EcoAction(
        customer_email=order.customer_email,
        action_type="purchase_near_expiry",
        points_earned=points,
        description=f"Near-expiry purchase, order #{order.id}",
        order_id=order.id,
    )
    db.add(action)
    db.flush()

    log_event(
        db,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order.id,
        event_type=EventTypeV1.ECO_POINTS_AWARDED,
        event_payload={"eco_action_id": action.id, "points": points},
    )
    logger.info("Awarded %d eco points to %s for order %s", points, order.customer_email, order.id)
    return points


def _revoke_eco_points(db: Session, order: Order) -> int:
    """Take back points credited at confirmation; nothing is delivered for a cancelled order."""
    if not order.customer_email:
        return 0

    earned = db.execute(
        select(func.coalesce(func.sum(EcoAction.points_earned), 0)).where(
            EcoAction.order_id == order.id
        )
    ).scalar_one()
    if earned <= 0:
        return 0

    db.add(
        EcoAction(
            customer_email=order.customer_email,
            action_type="order_cancelled",
            points_earned=-earned,
            description=f"Order #{order.id} cancelled",
            order_id=order.id,
        )
    )
    logger.info("Revoked %d eco points from %s for order %s", earned, order.customer_email, order.id)
    return earned


def _order_out(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        status=OrderStatus(order.status),
        fulfillment_method=order.fulfillment_method,
        delivery_fee=order.delivery_fee,
        total_amount=order.total_amount,
        payment_method=order.payment_method,
        payment_reference=order.payment_reference,
        refund_id=order.refund_id,
        refund_amount=order.refund_amount,
        refund_status=order.refund_status,
        items=[
            OrderItemOut(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product.name,
                quantity=item.quantity,
                price_at_time=item.price_at_time,
                line_total=item.price_at_time * item.quantity,
                confirmation_status=(
                    ItemConfirmationStatus(item.confirmation_status)
                    if item.confirmation_status
                    else None
                ),
            )
            for item in order.items
        ],
        created_at=order.created_at.isoformat(),
    )
