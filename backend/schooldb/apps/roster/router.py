# backend/schooldb/apps/roster/router.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from schooldb.database import get_db
from schooldb.entitlements import require_capacity
from schooldb.security import require_roles, resolve_school_id
from schooldb.apps.subscriptions.guard import require_active_subscription

from . import schemas, services

router = APIRouter(
    prefix="/roster",
    tags=["roster"],
    dependencies=[Depends(require_active_subscription)],
)

_staff = require_roles("SCHOOL_ADMIN", "TEACHER")
_admin = require_roles("SCHOOL_ADMIN")


@router.get("/classes", response_model=List[schemas.SchoolClassRead])
def list_classes(
    school_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user=Depends(_staff),
):
    return services.list_classes(db, school_id=resolve_school_id(current_user, school_id))


@router.post(
    "/classes",
    response_model=schemas.SchoolClassRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_capacity("classes"))],
)
def create_class(
    payload: schemas.SchoolClassCreate,
    school_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user=Depends(_admin),
):
    return services.create_class(db, school_id=resolve_school_id(current_user, school_id), data=payload)


@router.get("/pupils", response_model=List[schemas.PupilRead])
def list_pupils(
    school_id: Optional[str] = Query(None),
    class_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user=Depends(_staff),
):
    return services.list_pupils(
        db,
        school_id=resolve_school_id(current_user, school_id),
        class_id=class_id,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/pupils",
    response_model=schemas.PupilRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_capacity("pupils"))],
)
def create_pupil(
    payload: schemas.PupilCreate,
    school_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user=Depends(_admin),
):
    return services.create_pupil(db, school_id=resolve_school_id(current_user, school_id), data=payload)
