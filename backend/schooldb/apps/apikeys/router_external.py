# backend/schooldb/apps/apikeys/router_external.py
"""
External API, authenticated with an X-API-Key header instead of a session.

Every request is authenticated, checked against the school's subscription,
then counted against the key's per-minute rate limit.
"""

from __future__ import annotations

from typing import Callable, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Response, status
from sqlalchemy.orm import Session

from schooldb.database import get_db
from schooldb.errors import AuthenticationError, AuthorizationError, RateLimitError
from schooldb.apps.roster import schemas as roster_schemas
from schooldb.apps.roster import services as roster_services
from schooldb.apps.schools import services as school_services
from schooldb.apps.subscriptions import guard

from . import schemas, services
from .ratelimit import RateLimiter, api_key_rate_limiter


def get_rate_limiter() -> RateLimiter:
    return api_key_rate_limiter


def get_api_key_context(
    response: Response,
    background_tasks: BackgroundTasks,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> services.ApiKeyContext:
    if not x_api_key:
        raise AuthenticationError(
            "Missing API key. Provide it in the X-API-Key header.",
            code="API_KEY_MISSING",
        )
    context = services.authenticate(db, x_api_key)
    if context is None:
        raise AuthenticationError("Invalid or expired API key.", code="API_KEY_INVALID")

    # Applies lazy trial/subscription expiry the same way session requests do.
    guard.enforce(guard.evaluate(db, context.school_id))

    result = limiter.check(context.key_id, context.rate_limit)
    headers = result.headers()
    if not result.allowed:
        raise RateLimitError(limit=result.limit, reset_at=result.reset_at, headers=headers)
    response.headers.update(headers)

    background_tasks.add_task(services.touch_last_used, context.key_id)
    return context


def require_permission(permission: str) -> Callable:
    def dependency(
        context: services.ApiKeyContext = Depends(get_api_key_context),
    ) -> services.ApiKeyContext:
        if not context.has_permission(permission):
            raise AuthorizationError(
                f'This API key does not have "{permission}" permission.',
                code="API_PERMISSION_DENIED",
            )
        return context

    return dependency


router = APIRouter(prefix="/external/v1", tags=["external"])


@router.get("/school", response_model=schemas.ExternalSchoolRead)
def get_school(
    db: Session = Depends(get_db),
    context: services.ApiKeyContext = Depends(require_permission("read")),
):
    school = school_services.get_school(db, context.school_id)
    return schemas.ExternalSchoolRead(
        id=school.id,
        name=school.name,
        plan_type=school.plan_type,
        subscription_status=school.subscription_status,
    )


@router.get("/pupils", response_model=List[roster_schemas.PupilRead])
def list_pupils(
    class_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    context: services.ApiKeyContext = Depends(require_permission("read")),
):
    return roster_services.list_pupils(
        db,
        school_id=context.school_id,
        class_id=class_id,
        limit=limit,
        offset=offset,
    )


@router.post("/pupils", response_model=roster_schemas.PupilRead, status_code=status.HTTP_201_CREATED)
def create_pupil(
    payload: roster_schemas.PupilCreate,
    db: Session = Depends(get_db),
    context: services.ApiKeyContext = Depends(require_permission("write")),
):
    return roster_services.create_pupil(
        db,
        school_id=context.school_id,
        data=payload,
        enforce_limit=True,
    )
