# backend/schooldb/apps/apikeys/schemas.py

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ApiPermission


class ApiKeyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    permissions: List[ApiPermission] = Field(default_factory=lambda: [ApiPermission.READ], min_length=1)
    rate_limit: int = Field(100, ge=10, le=1000)
    expires_at: Optional[datetime] = None


class ApiKeyRead(BaseModel):
    id: str
    name: str
    key_prefix: str
    permissions: List[str]
    rate_limit: int
    expires_at: Optional[datetime] = None
    is_active: bool
    last_used_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApiKeyCreated(ApiKeyRead):
    """Returned once, on creation; the only time the raw key is visible."""

    key: str


class ExternalSchoolRead(BaseModel):
    id: str
    name: str
    plan_type: str
    subscription_status: str
