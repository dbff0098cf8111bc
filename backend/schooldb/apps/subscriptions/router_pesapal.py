# backend/schooldb/apps/subscriptions/router_pesapal.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from schooldb.database import get_db
from schooldb.security import is_platform_operator, require_roles, resolve_school_id
from schooldb.apps.schools import services as school_services

from . import schemas, services
from .gateway import BillingContact, PaymentGatewayClient, get_gateway_client

router = APIRouter(prefix="/pesapal", tags=["payments"])


def _billing_contact(current_user, payload: schemas.SubscribeRequest, country_code: str) -> BillingContact:
    first_name, _, last_name = (getattr(current_user, "full_name", "") or "").strip().partition(" ")
    return BillingContact(
        email=payload.email or getattr(current_user, "email", "") or "",
        phone=payload.phone_number or getattr(current_user, "phone", "") or "",
        first_name=first_name,
        last_name=last_name.strip(),
        country_code=country_code or "UG",
    )


@router.get("/plans", response_model=List[schemas.PlanPriceRead])
def list_plans():
    return services.list_plan_prices()


@router.post("/initiate", response_model=schemas.SubscribeResponse, status_code=status.HTTP_201_CREATED)
def initiate_payment(
    payload: schemas.SubscribeRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
    current_user=Depends(require_roles("SCHOOL_ADMIN")),
):
    school_id = resolve_school_id(current_user)
    school = school_services.get_school(db, school_id)
    order = services.create_order(
        db,
        school_id=school_id,
        plan_tier=payload.plan_type,
        billing_period=payload.billing_period,
        currency=payload.currency,
        contact=_billing_contact(current_user, payload, school.country_code),
        gateway=gateway,
        actor_user_id=current_user.id,
    )
    return schemas.SubscribeResponse(
        order_id=order.id,
        tracking_id=order.tracking_id,
        redirect_url=order.redirect_url,
        amount=order.amount,
        currency=order.currency,
        plan_type=order.plan_type,
        billing_period=order.billing_period,
        expires_at=order.expires_at,
    )


@router.get("/ipn", response_model=schemas.IpnAcknowledgement)
def ipn_callback(
    order_tracking_id: Optional[str] = Query(None, alias="OrderTrackingId"),
    merchant_reference: Optional[str] = Query(None, alias="OrderMerchantReference"),
    notification_type: Optional[str] = Query(None, alias="OrderNotificationType"),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
):
    # Unauthenticated by necessity: the gateway calls this. The payment
    # outcome is always re-read from the gateway, never taken from the query.
    return services.handle_notification(
        db,
        tracking_id=order_tracking_id,
        merchant_reference=merchant_reference,
        notification_type=notification_type,
        gateway=gateway,
    )


@router.get("/status/{tracking_id}", response_model=schemas.PaymentStatusRead)
def payment_status(
    tracking_id: str,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway_client),
    current_user=Depends(require_roles("SCHOOL_ADMIN")),
):
    school_id = None if is_platform_operator(current_user) else resolve_school_id(current_user)
    return services.check_order_status(
        db,
        tracking_id=tracking_id,
        school_id=school_id,
        gateway=gateway,
    )
