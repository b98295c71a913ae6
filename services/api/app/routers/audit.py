from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.events import EntityTypeV1, EventV1
from services.api.app.db.deps import get_db
from services.api.app.db.models import EventLog, Order
from sqlalchemy.orm import Session

router = APIRouter()


@router.get("/v1/orders/{order_id}/events", response_model=list[EventV1])
def list_order_events(order_id: int, db: Session = Depends(get_db)) -> list[EventV1]:
    if db.get(Order, order_id) is None:
        raise HTTPException(status_code=404, detail="Order not found")

    rows = (
        db.query(EventLog)
        .filter(EventLog.entity_type == EntityTypeV1.ORDER.value)
        .filter(EventLog.entity_id == str(order_id))
        .order_by(EventLog.created_at.asc(), EventLog.id.asc())
        .limit(200)
        .all()
    )

    return [
        EventV1(
            id=str(r.id),
            entity_type=EntityTypeV1(r.entity_type),
            entity_id=r.entity_id,
            event_type=r.event_type,
            payload=r.event_payload_json or {},
            created_at=r.created_at.isoformat(),
        )
        for r in rows
    ]
