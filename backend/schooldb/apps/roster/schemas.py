# backend/schooldb/apps/roster/schemas.py

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class SchoolClassCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    stream: Optional[str] = Field(None, max_length=64)


class SchoolClassRead(SchoolClassCreate):
    id: str
    school_id: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PupilCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=128)
    last_name: str = Field(..., min_length=1, max_length=128)
    admission_number: Optional[str] = Field(None, max_length=32)
    class_id: Optional[str] = None
    date_of_birth: Optional[date] = None


class PupilRead(PupilCreate):
    id: str
    school_id: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
