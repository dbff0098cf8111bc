# backend/schooldb/apps/schools/router.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from schooldb.database import get_db, get_read_db
from schooldb.security import require_roles, resolve_school_id

from . import schemas, services

router = APIRouter(prefix="/schools", tags=["schools"])

_operator = require_roles("SUPER_ADMIN")


@router.get("", response_model=List[schemas.SchoolRead])
def list_schools(
    db: Session = Depends(get_read_db),
    current_user=Depends(_operator),
):
    return services.list_schools(db)


@router.post("", response_model=schemas.SchoolRead, status_code=status.HTTP_201_CREATED)
def create_school(
    payload: schemas.SchoolCreate,
    db: Session = Depends(get_db),
    current_user=Depends(_operator),
):
    return services.create_school(db, data=payload)


@router.get("/me", response_model=schemas.SchoolRead)
def get_my_school(
    db: Session = Depends(get_db),
    current_user=Depends(require_roles("SCHOOL_ADMIN", "TEACHER", "PARENT")),
):
    return services.get_school(db, resolve_school_id(current_user))


@router.get("/me/plan-usage", response_model=schemas.PlanUsageRead)
def get_plan_usage(
    school_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user=Depends(require_roles("SCHOOL_ADMIN")),
):
    return services.plan_usage(db, resolve_school_id(current_user, school_id))


@router.post("/{school_id}/suspend", response_model=schemas.SchoolRead)
def suspend_school(
    school_id: str,
    db: Session = Depends(get_db),
    current_user=Depends(_operator),
):
    return services.suspend_school(db, school_id)


@router.post("/{school_id}/reinstate", response_model=schemas.SchoolRead)
def reinstate_school(
    school_id: str,
    db: Session = Depends(get_db),
    current_user=Depends(_operator),
):
    return services.reinstate_school(db, school_id)
