# backend/schooldb/apps/schools/services.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from schooldb import plans
from schooldb.clock import as_utc, utcnow
from schooldb.errors import NotFoundError, ValidationError

from . import models, schemas

logger = logging.getLogger(__name__)

TRIAL_LENGTH_DAYS = int(os.getenv("TRIAL_LENGTH_DAYS", "30"))

SNAPSHOT_FIELDS = frozenset(
    {"subscription_status", "plan_type", "trial_ends_at", "subscription_expires_at"}
)


# ---------------------------------------------------------------------------
# SUBSCRIPTION SNAPSHOT
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubscriptionSnapshot:
    school_id: str
    status: str
    plan_tier: str
    trial_ends_at: Optional[datetime] = None
    subscription_expires_at: Optional[datetime] = None

    @classmethod
    def from_school(cls, school: models.School) -> "SubscriptionSnapshot":
        return cls(
            school_id=school.id,
            status=school.subscription_status,
            plan_tier=school.plan_type or plans.DEFAULT_PLAN,
            trial_ends_at=as_utc(school.trial_ends_at),
            subscription_expires_at=as_utc(school.subscription_expires_at),
        )


def get_school(db: Session, school_id: str) -> models.School:
    # Snapshot columns are written with bulk UPDATEs; always re-read the row.
    school = (
        db.query(models.School)
        .populate_existing()
        .filter(models.School.id == school_id)
        .first()
    )
    if not school:
        raise NotFoundError("School not found.")
    return school


def get_snapshot(db: Session, school_id: str) -> SubscriptionSnapshot:
    return SubscriptionSnapshot.from_school(get_school(db, school_id))


def update_snapshot(
    db: Session,
    school_id: str,
    fields: Mapping[str, Any],
    *,
    expected_status: Optional[str] = None,
    lapsed_field: Optional[str] = None,
    as_of: Optional[datetime] = None,
    commit: bool = True,
) -> bool:
    """
    Apply `fields` to the school's subscription snapshot in one UPDATE.

    When `expected_status` is given the row only changes if its current
    status still matches, so two requests racing on the same school cannot
    overwrite each other's transition. `lapsed_field` and `as_of` further
    require that date column to still be before `as_of`. Returns True when a
    row changed.
    """
    unknown = set(fields) - SNAPSHOT_FIELDS
    if unknown:
        raise ValueError(f"Not subscription snapshot fields: {sorted(unknown)}")
    if lapsed_field is not None and (lapsed_field not in SNAPSHOT_FIELDS or as_of is None):
        raise ValueError(f"Cannot filter on lapsed field {lapsed_field!r}")

    values = dict(fields)
    values["updated_at"] = utcnow()

    query = db.query(models.School).filter(models.School.id == school_id)
    if expected_status is not None:
        query = query.filter(models.School.subscription_status == expected_status)
    if lapsed_field is not None:
        column = getattr(models.School, lapsed_field)
        query = query.filter(column.isnot(None), column < as_of)
    changed = query.update(values, synchronize_session=False)
    if commit:
        db.commit()
    return changed == 1


def activate_subscription(
    db: Session,
    school_id: str,
    *,
    plan_tier: str,
    expires_at: datetime,
    commit: bool = True,
) -> bool:
    """
    Put the school on `plan_tier` until `expires_at`.

    A suspended school keeps its suspension (the new dates still apply, so
    reinstating it lands on the paid plan). Callers activating as part of a
    payment transition pass commit=False and commit both rows together.
    """
    status_expr = case(
        (
            models.School.subscription_status == models.SubscriptionStatus.SUSPENDED.value,
            models.SubscriptionStatus.SUSPENDED.value,
        ),
        else_=models.SubscriptionStatus.ACTIVE.value,
    )
    return update_snapshot(
        db,
        school_id,
        {
            "subscription_status": status_expr,
            "plan_type": plan_tier,
            "subscription_expires_at": expires_at,
        },
        commit=commit,
    )


# ---------------------------------------------------------------------------
# SCHOOL LIFECYCLE
# ---------------------------------------------------------------------------


def list_schools(db: Session) -> List[models.School]:
    return db.query(models.School).order_by(models.School.created_at.desc()).all()


def create_school(
    db: Session,
    *,
    data: schemas.SchoolCreate,
    now: Optional[datetime] = None,
) -> models.School:
    """New schools start on a starter trial of TRIAL_LENGTH_DAYS."""
    now = now or utcnow()
    if db.query(models.School).filter(models.School.slug == data.slug).first():
        raise ValidationError(f"A school with slug '{data.slug}' already exists.")

    school = models.School(
        name=data.name.strip(),
        slug=data.slug,
        contact_email=data.contact_email,
        contact_phone=data.contact_phone,
        country_code=data.country_code.upper(),
        subscription_status=models.SubscriptionStatus.TRIAL.value,
        plan_type=models.PlanTier.STARTER.value,
        trial_ends_at=now + timedelta(days=TRIAL_LENGTH_DAYS),
    )
    db.add(school)
    db.commit()
    db.refresh(school)
    logger.info("School created on trial", extra={"school_id": school.id, "trial_ends_at": school.trial_ends_at})
    return school


def suspend_school(db: Session, school_id: str) -> models.School:
    school = get_school(db, school_id)
    update_snapshot(db, school_id, {"subscription_status": models.SubscriptionStatus.SUSPENDED.value})
    db.refresh(school)
    logger.info("School suspended", extra={"school_id": school_id})
    return school


def reinstate_school(db: Session, school_id: str, *, now: Optional[datetime] = None) -> models.School:
    """
    Lift a suspension.

    The school goes back to whichever state its dates support: active with a
    future expiry, trial with a future trial end, otherwise expired (and the
    guard then applies the grace period).
    """
    now = now or utcnow()
    school = get_school(db, school_id)
    if school.subscription_status != models.SubscriptionStatus.SUSPENDED.value:
        raise ValidationError("School is not suspended.")

    expires_at = as_utc(school.subscription_expires_at)
    trial_ends_at = as_utc(school.trial_ends_at)
    if expires_at and expires_at > now:
        target = models.SubscriptionStatus.ACTIVE
    elif expires_at is None and trial_ends_at and trial_ends_at > now:
        target = models.SubscriptionStatus.TRIAL
    else:
        target = models.SubscriptionStatus.EXPIRED

    update_snapshot(
        db,
        school_id,
        {"subscription_status": target.value},
        expected_status=models.SubscriptionStatus.SUSPENDED.value,
    )
    db.refresh(school)
    logger.info("School reinstated", extra={"school_id": school_id, "status": target.value})
    return school


# ---------------------------------------------------------------------------
# RESOURCE COUNTERS
# ---------------------------------------------------------------------------

ResourceCounter = Callable[[Session, str], int]

_RESOURCE_COUNTERS: Dict[str, ResourceCounter] = {}


def register_resource_counter(kind: str, counter: ResourceCounter) -> None:
    """Domain apps register how to count their active records for plan limits."""
    if kind not in plans.RESOURCE_KINDS:
        raise ValueError(f"Unknown resource kind {kind!r}")
    _RESOURCE_COUNTERS[kind] = counter


def count_active(db: Session, school_id: str, kind: str) -> int:
    counter = _RESOURCE_COUNTERS.get(kind)
    if counter is None:
        raise LookupError(f"No resource counter registered for {kind!r}")
    return int(counter(db, school_id) or 0)


def _user_counter(role: models.UserRole) -> ResourceCounter:
    def counter(db: Session, school_id: str) -> int:
        return (
            db.query(func.count(models.User.id))
            .filter(
                models.User.school_id == school_id,
                models.User.role == role,
                models.User.is_active.is_(True),
            )
            .scalar()
        )

    return counter


register_resource_counter("teachers", _user_counter(models.UserRole.TEACHER))
register_resource_counter("parents", _user_counter(models.UserRole.PARENT))


def plan_usage(db: Session, school_id: str) -> schemas.PlanUsageRead:
    school = get_school(db, school_id)
    plan = plans.get_plan(school.plan_type)
    return schemas.PlanUsageRead(
        plan_type=plan.name,
        plan_label=plan.label,
        subscription_status=school.subscription_status,
        trial_ends_at=school.trial_ends_at,
        subscription_expires_at=school.subscription_expires_at,
        limits=dict(plan.limits),
        usage={kind: count_active(db, school_id, kind) for kind in plans.RESOURCE_KINDS},
        features=sorted(plan.features),
    )
