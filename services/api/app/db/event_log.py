from __future__ import annotations

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.db.models import EventLog
from sqlalchemy.orm import Session


def log_event(
    db: Session,
    *,
    entity_type: EntityTypeV1,
    entity_id: int | str,
    event_type: EventTypeV1,
    event_payload: dict,
) -> None:
    """Append an audit row. Committed together with the caller's transaction."""
    db.add(
        EventLog(
            entity_type=entity_type.value,
            entity_id=str(entity_id),
            event_type=event_type.value,
            event_payload_json=event_payload,
        )
    )
