# backend/schooldb/apps/subscriptions/guard.py
"""
Subscription guard.

Decides on every tenant request whether the school may use the product:

- platform operators always pass
- suspended schools are denied
- trials pass until `trial_ends_at`, then become expired
- active subscriptions pass until `subscription_expires_at`, then become
  expired and fall into the grace check
- expired schools pass for GRACE_PERIOD_DAYS after their last expiry date
- any other status passes

`decide()` is pure. The lazy expiry it asks for comes back as a
`SnapshotPatch`, which `evaluate()` applies as a conditional UPDATE, so
re-applying it to an already expired school changes nothing.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple, Union

from fastapi import Depends, Response
from sqlalchemy.orm import Session

from schooldb.clock import utcnow
from schooldb.database import get_db
from schooldb.errors import AuthorizationError
from schooldb.security import get_current_active_user, is_platform_operator, resolve_school_id
from schooldb.apps.schools import services as school_services
from schooldb.apps.schools.models import SubscriptionStatus
from schooldb.apps.schools.services import SubscriptionSnapshot

from . import audit

logger = logging.getLogger(__name__)

GRACE_PERIOD_DAYS = int(os.getenv("GRACE_PERIOD_DAYS", "7"))

TRIAL_DAYS_LEFT_HEADER = "X-Trial-Days-Left"
SUBSCRIPTION_DAYS_LEFT_HEADER = "X-Subscription-Days-Left"
GRACE_DAYS_LEFT_HEADER = "X-Grace-Days-Left"

TRIAL_EXPIRED = "TRIAL_EXPIRED"
SUBSCRIPTION_SUSPENDED = "SUBSCRIPTION_SUSPENDED"
SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"


@dataclass(frozen=True)
class Allow:
    header_name: Optional[str] = None
    header_value: Optional[str] = None

    allowed = True


@dataclass(frozen=True)
class Deny:
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    allowed = False

    def to_error(self) -> AuthorizationError:
        return AuthorizationError(self.message, code=self.code, details=self.details)


Decision = Union[Allow, Deny]


@dataclass(frozen=True)
class SnapshotPatch:
    """
    A lazy status transition.

    Applied only if the status is still `expected_status` and, when
    `lapsed_field` is set, that date is still before `as_of`. A renewal that
    lands between the read and the write moves the date forward and the
    patch no longer matches.
    """

    school_id: str
    expected_status: str
    fields: Dict[str, Any]
    lapsed_field: Optional[str] = None
    as_of: Optional[datetime] = None


def days_left(until: datetime, now: datetime) -> int:
    return math.ceil((until - now).total_seconds() / 86400)


def _expire_patch(snapshot: SubscriptionSnapshot, lapsed_field: str, now: datetime) -> SnapshotPatch:
    return SnapshotPatch(
        school_id=snapshot.school_id,
        expected_status=snapshot.status,
        fields={"subscription_status": SubscriptionStatus.EXPIRED.value},
        lapsed_field=lapsed_field,
        as_of=now,
    )


def decide(
    snapshot: SubscriptionSnapshot,
    now: datetime,
    *,
    is_platform_operator: bool = False,
    grace_period_days: Optional[int] = None,
) -> Tuple[Decision, Optional[SnapshotPatch]]:
    if is_platform_operator:
        return Allow(), None

    grace_days = GRACE_PERIOD_DAYS if grace_period_days is None else grace_period_days
    status = snapshot.status
    patch: Optional[SnapshotPatch] = None

    if status == SubscriptionStatus.SUSPENDED.value:
        return (
            Deny(
                code=SUBSCRIPTION_SUSPENDED,
                message="Your subscription has been suspended. Please contact support.",
            ),
            None,
        )

    if status == SubscriptionStatus.TRIAL.value:
        trial_ends_at = snapshot.trial_ends_at
        if trial_ends_at is None:
            return Allow(), None
        if now > trial_ends_at:
            return (
                Deny(
                    code=TRIAL_EXPIRED,
                    message=(
                        f"Your {school_services.TRIAL_LENGTH_DAYS}-day free trial has ended. "
                        "Please subscribe to continue using the system."
                    ),
                    details={"trial_ends_at": trial_ends_at},
                ),
                _expire_patch(snapshot, "trial_ends_at", now),
            )
        return Allow(TRIAL_DAYS_LEFT_HEADER, str(days_left(trial_ends_at, now))), None

    if status == SubscriptionStatus.ACTIVE.value:
        expires_at = snapshot.subscription_expires_at
        if expires_at is None:
            return Allow(), None
        if expires_at >= now:
            return Allow(SUBSCRIPTION_DAYS_LEFT_HEADER, str(days_left(expires_at, now))), None
        patch = _expire_patch(snapshot, "subscription_expires_at", now)
        status = SubscriptionStatus.EXPIRED.value

    if status == SubscriptionStatus.EXPIRED.value:
        expiry_date = snapshot.subscription_expires_at or snapshot.trial_ends_at or now
        grace_end = expiry_date + timedelta(days=grace_days)
        if now > grace_end:
            return (
                Deny(
                    code=SUBSCRIPTION_EXPIRED,
                    message="Your subscription has expired. Please renew to continue using the system.",
                    details={"expired_at": expiry_date, "grace_ended_at": grace_end},
                ),
                patch,
            )
        return Allow(GRACE_DAYS_LEFT_HEADER, str(days_left(grace_end, now))), patch

    # Unrecognised status: let the request through rather than lock the school out.
    logger.warning(
        "Unrecognised subscription status; allowing request",
        extra={"school_id": snapshot.school_id, "status": status},
    )
    return Allow(), None


def apply_patch(db: Session, patch: SnapshotPatch) -> bool:
    changed = school_services.update_snapshot(
        db,
        patch.school_id,
        patch.fields,
        expected_status=patch.expected_status,
        lapsed_field=patch.lapsed_field,
        as_of=patch.as_of,
    )
    if changed:
        logger.info(
            "Subscription lapsed",
            extra={"school_id": patch.school_id, "from_status": patch.expected_status},
        )
        audit.safe_record_audit_event(
            db,
            school_id=patch.school_id,
            event="subscription.expired",
            details={"from_status": patch.expected_status},
        )
    return changed


def evaluate(
    db: Session,
    school_id: str,
    *,
    now: Optional[datetime] = None,
    is_platform_operator: bool = False,
) -> Decision:
    """Load the snapshot, decide, and persist any lazy expiry."""
    now = now or utcnow()
    snapshot = school_services.get_snapshot(db, school_id)
    decision, patch = decide(snapshot, now, is_platform_operator=is_platform_operator)
    if patch is not None:
        apply_patch(db, patch)
    return decision


def enforce(decision: Decision, response: Optional[Response] = None) -> None:
    """Raise for a denial; otherwise copy the warning header onto the response."""
    if isinstance(decision, Deny):
        raise decision.to_error()
    if response is not None and decision.header_name:
        response.headers[decision.header_name] = decision.header_value


def require_active_subscription(
    response: Response,
    current_user=Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """
    FastAPI dependency for tenant routes.

    Usage:
        router = APIRouter(
            prefix="/roster",
            dependencies=[Depends(require_active_subscription)],
        )
    """
    if is_platform_operator(current_user):
        return current_user
    school_id = resolve_school_id(current_user)
    enforce(evaluate(db, school_id), response)
    return current_user
