# backend/schooldb/apps/subscriptions/router.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from schooldb.database import get_db, get_read_db
from schooldb.errors import NotFoundError
from schooldb.security import require_roles, resolve_school_id

from . import schemas, services

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("", response_model=List[schemas.PaymentOrderRead])
def list_subscriptions(
    school_id: Optional[str] = Query(None),
    db: Session = Depends(get_read_db),
    current_user=Depends(require_roles("SCHOOL_ADMIN")),
):
    return services.list_orders(db, school_id=resolve_school_id(current_user, school_id))


@router.get("/active", response_model=schemas.PaymentOrderRead)
def get_active_subscription(
    school_id: Optional[str] = Query(None),
    db: Session = Depends(get_read_db),
    current_user=Depends(require_roles("SCHOOL_ADMIN")),
):
    order = services.get_active_subscription(db, school_id=resolve_school_id(current_user, school_id))
    if order is None:
        raise NotFoundError("No active subscription.")
    return order


@router.post("", response_model=schemas.PaymentOrderRead, status_code=status.HTTP_201_CREATED)
def grant_subscription(
    payload: schemas.GrantSubscriptionRequest,
    db: Session = Depends(get_db),
    current_user=Depends(require_roles("SUPER_ADMIN")),
):
    return services.grant_subscription(
        db,
        school_id=payload.school_id,
        plan_tier=payload.plan_type,
        billing_period=payload.billing_period,
        currency=payload.currency,
        amount=payload.amount,
        payment_reference=payload.payment_reference,
        actor_user_id=current_user.id,
    )
