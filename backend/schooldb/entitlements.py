"""
Plan entitlement helpers.

FastAPI dependency factories that gate a route on a plan feature flag or on
the plan's numeric limit for a resource kind. They run after the
subscription guard; platform operators bypass both.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from schooldb import plans
from schooldb.apps.schools import services as school_services

from .database import get_db
from .errors import AuthorizationError
from .security import get_current_active_user, is_platform_operator, resolve_school_id


def feature_denied(plan_tier: str, flag: str) -> AuthorizationError:
    plan = plans.get_plan(plan_tier)
    minimum = plans.minimum_plan_for(flag)
    required = plans.PLAN_CATALOG[minimum].label if minimum else None
    return AuthorizationError(
        f"The '{flag}' feature is not available on the {plan.label} plan."
        + (f" Upgrade to {required} or higher to use it." if required else ""),
        code="FEATURE_NOT_AVAILABLE",
        details={"feature": flag, "plan": plan.name, "required_plan": minimum},
    )


def ensure_feature(db: Session, school_id: str, flag: str) -> None:
    snapshot = school_services.get_snapshot(db, school_id)
    if not plans.check_feature(snapshot.plan_tier, flag):
        raise feature_denied(snapshot.plan_tier, flag)


def ensure_capacity(db: Session, school_id: str, kind: str) -> None:
    """Raise PLAN_LIMIT_REACHED if one more `kind` would exceed the plan limit."""
    snapshot = school_services.get_snapshot(db, school_id)
    plan = plans.get_plan(snapshot.plan_tier)
    if plan.limit_for(kind) == plans.UNLIMITED:
        return
    current = school_services.count_active(db, school_id, kind)
    if plans.check_limit(plan.name, kind, current):
        return
    limit = plan.limit_for(kind)
    raise AuthorizationError(
        f"You have reached the maximum number of {kind} ({limit}) allowed on the "
        f"{plan.label} plan. Please upgrade your plan to add more.",
        code="PLAN_LIMIT_REACHED",
        details={"entity": kind, "current": current, "limit": limit, "plan": plan.name},
    )


def require_feature(flag: str) -> Callable:
    """
    Dependency that blocks the route unless the school's plan has `flag`.

    Usage:
        @router.put("/me/branding", dependencies=[Depends(require_feature("theme_customization"))])
    """
    if flag not in plans.FEATURE_FLAGS:
        raise ValueError(f"Unknown feature flag {flag!r}")

    def dependency(
        current_user=Depends(get_current_active_user),
        db: Session = Depends(get_db),
    ):
        if is_platform_operator(current_user):
            return current_user
        ensure_feature(db, resolve_school_id(current_user), flag)
        return current_user

    return dependency


def require_capacity(kind: str) -> Callable:
    """Dependency that blocks creation once the plan limit for `kind` is reached."""
    if kind not in plans.RESOURCE_KINDS:
        raise ValueError(f"Unknown resource kind {kind!r}")

    def dependency(
        current_user=Depends(get_current_active_user),
        db: Session = Depends(get_db),
    ):
        if is_platform_operator(current_user):
            return current_user
        ensure_capacity(db, resolve_school_id(current_user), kind)
        return current_user

    return dependency
