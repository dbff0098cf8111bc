# backend/schooldb/apps/apikeys/router.py

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from schooldb.database import get_db, get_read_db
from schooldb.entitlements import require_feature
from schooldb.security import require_roles, resolve_school_id
from schooldb.apps.subscriptions.guard import require_active_subscription

from . import schemas, services

router = APIRouter(
    prefix="/api-keys",
    tags=["api-keys"],
    dependencies=[
        Depends(require_active_subscription),
        Depends(require_feature("api_access")),
    ],
)

_admin = require_roles("SCHOOL_ADMIN")


@router.get("", response_model=List[schemas.ApiKeyRead])
def list_keys(
    db: Session = Depends(get_read_db),
    current_user=Depends(_admin),
):
    return services.list_api_keys(db, school_id=resolve_school_id(current_user))


@router.post("", response_model=schemas.ApiKeyCreated, status_code=status.HTTP_201_CREATED)
def create_key(
    payload: schemas.ApiKeyCreate,
    db: Session = Depends(get_db),
    current_user=Depends(_admin),
):
    record, raw_key = services.create_api_key(
        db,
        school_id=resolve_school_id(current_user),
        data=payload,
        actor_user_id=current_user.id,
    )
    body = schemas.ApiKeyRead.model_validate(record).model_dump()
    return schemas.ApiKeyCreated(**body, key=raw_key)


@router.post("/{key_id}/revoke", response_model=schemas.ApiKeyRead)
def revoke_key(
    key_id: str,
    db: Session = Depends(get_db),
    current_user=Depends(_admin),
):
    return services.revoke_api_key(db, key_id=key_id, school_id=resolve_school_id(current_user))


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_key(
    key_id: str,
    db: Session = Depends(get_db),
    current_user=Depends(_admin),
):
    services.delete_api_key(db, key_id=key_id, school_id=resolve_school_id(current_user))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
