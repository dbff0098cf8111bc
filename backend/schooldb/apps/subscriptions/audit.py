"""Billing audit helpers.

Durable audit entries for order and subscription transitions. Entries are
written after the state change has committed and never block it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def _serialise_details(details: Any) -> str:
    if details is None:
        return ""
    if isinstance(details, (dict, list)):
        try:
            return json.dumps(details, sort_keys=True, default=str)
        except (TypeError, ValueError):
            return repr(details)
    return str(details)


def record_audit_event(
    db: Session, *, school_id: Optional[str], event: str, details: Any
) -> models.BillingAuditLog:
    log = models.BillingAuditLog(
        school_id=school_id,
        event_type=event,
        details=_serialise_details(details),
    )
    db.add(log)
    db.commit()
    return log


def safe_record_audit_event(
    db: Session, *, school_id: Optional[str], event: str, details: Any
) -> Optional[models.BillingAuditLog]:
    """Best-effort variant: rolls back and returns None on failure."""
    try:
        return record_audit_event(db, school_id=school_id, event=event, details=details)
    except Exception:
        db.rollback()
        logger.warning("Billing audit write failed", extra={"school_id": school_id, "event": event})
        return None
