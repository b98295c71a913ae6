from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.db.deps import get_db
from services.api.app.db.event_log import log_event
from services.api.app.db.models import Product
from services.api.app.models.eco_points import EcoPointsQuote, EcoPointsTierOut
from services.api.app.models.product import ProductCreateRequest, ProductOut
from services.api.app.services.eco_points import (
    calculate_eco_points,
    days_until_expiry,
    tier_for_days,
)
from sqlalchemy.orm import Session

router = APIRouter()


@router.post("/v1/products", response_model=ProductOut)
def create_product(payload: ProductCreateRequest, db: Session = Depends(get_db)) -> ProductOut:
    product = Product(
        name=payload.name,
        category=payload.category,
        supermarket_name=payload.supermarket_name,
        original_price=payload.original_price,
        discount_price=payload.discount_price,
        quantity=payload.quantity,
        expiration_date=payload.expiration_date,
        is_active=True,
    )
    db.add(product)
    db.flush()

    log_event(
        db,
        entity_type=EntityTypeV1.PRODUCT,
        entity_id=product.id,
        event_type=EventTypeV1.PRODUCT_CREATED,
        event_payload={"name": product.name, "category": product.category},
    )
    db.commit()
    return _product_out(product)


@router.get("/v1/products/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)) -> ProductOut:
    product = db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return _product_out(product)


@router.get("/v1/products/{product_id}/eco-points", response_model=EcoPointsQuote)
def quote_eco_points(
    product_id: int,
    quantity: int = Query(1, ge=1),
    db: Session = Depends(get_db),
) -> EcoPointsQuote:
    product = db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")

    now = datetime.now(timezone.utc)
    days = days_until_expiry(product.expiration_date, now=now)
    tier = tier_for_days(days)
    unit_points = calculate_eco_points(product.expiration_date, product.category, now=now)

    return EcoPointsQuote(
        product_id=product.id,
        category=product.category,
        quantity=quantity,
        days_until_expiry=days,
        unit_points=unit_points,
        total_points=unit_points * quantity,
        tier=EcoPointsTierOut(
            key=tier.key,
            label=tier.label,
            description=tier.description,
            base_points=tier.base_points,
            min_days=tier.min_days,
            max_days=tier.max_days,
        ),
    )


def _product_out(product: Product) -> ProductOut:
    now = datetime.now(timezone.utc)
    return ProductOut(
        id=product.id,
        name=product.name,
        category=product.category,
        supermarket_name=product.supermarket_name,
        original_price=product.original_price,
        discount_price=product.discount_price,
        quantity=product.quantity,
        expiration_date=product.expiration_date,
        is_active=product.is_active,
        days_until_expiry=days_until_expiry(product.expiration_date, now=now),
        eco_points=calculate_eco_points(product.expiration_date, product.category, now=now),
    )
