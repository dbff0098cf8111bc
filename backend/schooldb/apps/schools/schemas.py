# backend/schooldb/apps/schools/schemas.py

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class SchoolCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    slug: str = Field(..., min_length=2, max_length=64, pattern=r"^[a-z0-9][a-z0-9-]*$")
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    country_code: str = Field("UG", min_length=2, max_length=2)


class SchoolRead(BaseModel):
    id: str
    name: str
    slug: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    country_code: str
    is_active: bool
    subscription_status: str
    plan_type: str
    trial_ends_at: Optional[datetime] = None
    subscription_expires_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PlanUsageRead(BaseModel):
    plan_type: str
    plan_label: str
    subscription_status: str
    trial_ends_at: Optional[datetime] = None
    subscription_expires_at: Optional[datetime] = None
    limits: Dict[str, int]
    usage: Dict[str, int]
    features: List[str]
