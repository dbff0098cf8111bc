# backend/schooldb/apps/subscriptions/schemas.py

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import OrderStatus, PaymentStatus

BillingPeriod = Literal["monthly", "termly", "yearly"]
Currency = Literal["USD", "KES", "UGX"]


class PlanPriceRead(BaseModel):
    key: str
    name: str
    limits: Dict[str, int]
    features: List[str]
    pricing: Dict[str, Dict[str, Decimal]]


class SubscribeRequest(BaseModel):
    plan_type: Literal["standard", "pro"]
    billing_period: BillingPeriod = "termly"
    currency: Currency = "USD"
    phone_number: Optional[str] = Field(None, max_length=32)
    email: Optional[EmailStr] = None


class SubscribeResponse(BaseModel):
    order_id: str = Field(..., alias="orderId")
    tracking_id: Optional[str] = Field(None, alias="trackingId")
    redirect_url: Optional[str] = Field(None, alias="redirectUrl")
    amount: Decimal
    currency: str
    plan_type: str
    billing_period: str
    expires_at: datetime

    class Config:
        populate_by_name = True


class PaymentOrderRead(BaseModel):
    id: str
    school_id: str
    plan_type: str
    billing_period: str
    amount: Decimal
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    starts_at: datetime
    expires_at: datetime
    tracking_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentStatusRead(BaseModel):
    status: PaymentStatus
    order_id: str
    tracking_id: str
    plan_type: str
    amount: Decimal
    currency: str
    payment_method: Optional[str] = None
    expires_at: datetime
    message: Optional[str] = None


class GrantSubscriptionRequest(BaseModel):
    school_id: str
    plan_type: Literal["starter", "standard", "pro"]
    billing_period: BillingPeriod = "termly"
    currency: Currency = "USD"
    amount: Optional[Decimal] = Field(None, ge=0)
    payment_reference: Optional[str] = Field(None, max_length=128)


class IpnAcknowledgement(BaseModel):
    orderNotificationType: str = "IPNCHANGE"
    orderTrackingId: Optional[str] = None
    orderMerchantReference: Optional[str] = None
    status: int = 200
