from __future__ import annotations

from fastapi import APIRouter, Depends
from services.api.app.db.deps import get_db
from services.api.app.db.models import EcoAction
from services.api.app.models.eco_points import (
    CustomerEcoPointsResponse,
    EcoActionOut,
    EcoPointsRulesResponse,
    EcoPointsTierOut,
)
from services.api.app.services.eco_points import CATEGORY_MULTIPLIERS, ECO_POINTS_TIERS
from sqlalchemy import func
from sqlalchemy.orm import Session

router = APIRouter()


@router.get("/v1/eco-points/rules", response_model=EcoPointsRulesResponse)
def get_rules() -> EcoPointsRulesResponse:
    return EcoPointsRulesResponse(
        tiers=[
            EcoPointsTierOut(
                key=t.key,
                label=t.label,
                description=t.description,
                base_points=t.base_points,
                min_days=t.min_days,
                max_days=t.max_days,
            )
            for t in ECO_POINTS_TIERS
        ],
        category_multipliers=dict(CATEGORY_MULTIPLIERS),
    )


@router.get("/v1/customers/{customer_email}/eco-points", response_model=CustomerEcoPointsResponse)
def get_customer_eco_points(
    customer_email: str, db: Session = Depends(get_db)
) -> CustomerEcoPointsResponse:
    total = (
        db.query(func.coalesce(func.sum(EcoAction.points_earned), 0))
        .filter(EcoAction.customer_email == customer_email)
        .scalar()
    )

    actions = (
        db.query(EcoAction)
        .filter(EcoAction.customer_email == customer_email)
        .order_by(EcoAction.created_at.desc(), EcoAction.id.desc())
        .limit(200)
        .all()
    )

    return CustomerEcoPointsResponse(
        customer_email=customer_email,
        total_points=int(total or 0),
        actions=[
            EcoActionOut(
                id=a.id,
                action_type=a.action_type,
                points_earned=a.points_earned,
                description=a.description,
                order_id=a.order_id,
                created_at=a.created_at.isoformat(),
            )
            for a in actions
        ],
    )
