# backend/schooldb/apps/roster/services.py

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from schooldb.entitlements import ensure_capacity
from schooldb.errors import ValidationError
from schooldb.apps.schools.services import register_resource_counter

from . import models, schemas


def _active_count(model):
    def counter(db: Session, school_id: str) -> int:
        return (
            db.query(func.count(model.id))
            .filter(model.school_id == school_id, model.is_active.is_(True))
            .scalar()
        )

    return counter


register_resource_counter("pupils", _active_count(models.Pupil))
register_resource_counter("classes", _active_count(models.SchoolClass))


def list_classes(db: Session, *, school_id: str) -> List[models.SchoolClass]:
    return (
        db.query(models.SchoolClass)
        .filter(models.SchoolClass.school_id == school_id, models.SchoolClass.is_active.is_(True))
        .order_by(models.SchoolClass.name.asc())
        .all()
    )


def create_class(
    db: Session, *, school_id: str, data: schemas.SchoolClassCreate, enforce_limit: bool = False
) -> models.SchoolClass:
    if enforce_limit:
        ensure_capacity(db, school_id, "classes")
    record = models.SchoolClass(school_id=school_id, name=data.name.strip(), stream=data.stream)
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def list_pupils(
    db: Session,
    *,
    school_id: str,
    class_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[models.Pupil]:
    query = db.query(models.Pupil).filter(
        models.Pupil.school_id == school_id,
        models.Pupil.is_active.is_(True),
    )
    if class_id:
        query = query.filter(models.Pupil.class_id == class_id)
    return (
        query.order_by(models.Pupil.last_name.asc(), models.Pupil.first_name.asc())
        .offset(max(offset, 0))
        .limit(min(max(limit, 1), 500))
        .all()
    )


def create_pupil(
    db: Session, *, school_id: str, data: schemas.PupilCreate, enforce_limit: bool = False
) -> models.Pupil:
    if enforce_limit:
        ensure_capacity(db, school_id, "pupils")
    if data.class_id:
        owned = (
            db.query(models.SchoolClass.id)
            .filter(models.SchoolClass.id == data.class_id, models.SchoolClass.school_id == school_id)
            .first()
        )
        if not owned:
            raise ValidationError("Class does not belong to this school.")
    record = models.Pupil(school_id=school_id, **data.model_dump())
    db.add(record)
    db.commit()
    db.refresh(record)
    return record
