# backend/schooldb/apps/apikeys/services.py

from __future__ import annotations

import hashlib
import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Optional, Tuple

from sqlalchemy.orm import Session

from schooldb import plans
from schooldb.clock import as_utc, utcnow
from schooldb.database import WriteSessionLocal
from schooldb.errors import NotFoundError, ValidationError
from schooldb.apps.schools.models import School, SubscriptionStatus

from . import models, schemas

logger = logging.getLogger(__name__)

KEY_PREFIX_TAG = "sm_live_"
KEY_PREFIX_LENGTH = 12
MAX_ACTIVE_KEYS_PER_SCHOOL = int(os.getenv("API_KEY_MAX_ACTIVE", "5"))

AUTHENTICATABLE_STATUSES = frozenset(
    {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIAL.value}
)
API_ACCESS_FEATURE = "api_access"


@dataclass(frozen=True)
class ApiKeyContext:
    """What an authenticated external request may do, and for which school."""

    key_id: str
    school_id: str
    key_prefix: str
    permissions: FrozenSet[str]
    rate_limit: int
    plan_tier: str

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> Tuple[str, str, str]:
    """Return (raw_key, key_prefix, key_hash) for a fresh key."""
    raw_key = f"{KEY_PREFIX_TAG}{secrets.token_hex(32)}"
    return raw_key, raw_key[:KEY_PREFIX_LENGTH], hash_api_key(raw_key)


def _count_active_keys(db: Session, school_id: str) -> int:
    return (
        db.query(models.ApiKey)
        .filter(models.ApiKey.school_id == school_id, models.ApiKey.is_active.is_(True))
        .count()
    )


def create_api_key(
    db: Session,
    *,
    school_id: str,
    data: schemas.ApiKeyCreate,
    actor_user_id: Optional[str] = None,
) -> Tuple[models.ApiKey, str]:
    """Persist a new key and return it with the raw secret, which is never stored."""
    if _count_active_keys(db, school_id) >= MAX_ACTIVE_KEYS_PER_SCHOOL:
        raise ValidationError(
            f"Maximum {MAX_ACTIVE_KEYS_PER_SCHOOL} active API keys allowed per school. "
            "Please revoke an existing key first.",
            code="API_KEY_LIMIT_REACHED",
        )

    raw_key, key_prefix, key_hash = generate_api_key()
    permissions = sorted({p.value if hasattr(p, "value") else str(p) for p in data.permissions})
    record = models.ApiKey(
        school_id=school_id,
        name=data.name.strip(),
        key_hash=key_hash,
        key_prefix=key_prefix,
        permissions=permissions,
        rate_limit=data.rate_limit,
        expires_at=data.expires_at,
        is_active=True,
        created_by_user_id=actor_user_id,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("API key created", extra={"school_id": school_id, "key_prefix": key_prefix})
    return record, raw_key


def list_api_keys(db: Session, *, school_id: str) -> List[models.ApiKey]:
    return (
        db.query(models.ApiKey)
        .filter(models.ApiKey.school_id == school_id)
        .order_by(models.ApiKey.created_at.desc())
        .all()
    )


def _get_school_key(db: Session, *, key_id: str, school_id: str) -> models.ApiKey:
    record = (
        db.query(models.ApiKey)
        .filter(models.ApiKey.id == key_id, models.ApiKey.school_id == school_id)
        .first()
    )
    if not record:
        raise NotFoundError("API key not found")
    return record


def revoke_api_key(db: Session, *, key_id: str, school_id: str) -> models.ApiKey:
    record = _get_school_key(db, key_id=key_id, school_id=school_id)
    record.is_active = False
    db.commit()
    db.refresh(record)
    logger.info("API key revoked", extra={"school_id": school_id, "key_prefix": record.key_prefix})
    return record


def delete_api_key(db: Session, *, key_id: str, school_id: str) -> None:
    record = _get_school_key(db, key_id=key_id, school_id=school_id)
    prefix = record.key_prefix
    db.delete(record)
    db.commit()
    logger.info("API key deleted", extra={"school_id": school_id, "key_prefix": prefix})


def authenticate(
    db: Session, raw_key: Optional[str], *, now: Optional[datetime] = None
) -> Optional[ApiKeyContext]:
    """
    Resolve a raw key to its school and permissions.

    Returns None for malformed, unknown, revoked or expired keys, for schools
    whose subscription is not active or on trial, and for plans without API
    access. Callers never learn which check failed.
    """
    if not raw_key or not raw_key.startswith(KEY_PREFIX_TAG):
        return None

    now = now or utcnow()
    row = (
        db.query(models.ApiKey, School)
        .join(School, School.id == models.ApiKey.school_id)
        .filter(models.ApiKey.key_hash == hash_api_key(raw_key))
        .first()
    )
    if row is None:
        return None
    record, school = row

    if not record.is_active:
        return None
    expires_at = as_utc(record.expires_at)
    if expires_at is not None and expires_at < now:
        return None
    if school.subscription_status not in AUTHENTICATABLE_STATUSES:
        return None
    if not plans.check_feature(school.plan_type, API_ACCESS_FEATURE):
        return None

    return ApiKeyContext(
        key_id=record.id,
        school_id=record.school_id,
        key_prefix=record.key_prefix,
        permissions=frozenset(record.permissions or [models.ApiPermission.READ.value]),
        rate_limit=record.rate_limit,
        plan_tier=plans.get_plan(school.plan_type).name,
    )


def touch_last_used(key_id: str, *, now: Optional[datetime] = None, session_factory=None) -> None:
    """
    Record key usage. Runs as a background task in its own session; a
    failure here is logged and never reaches the request.
    """
    db = (session_factory or WriteSessionLocal)()
    try:
        db.query(models.ApiKey).filter(models.ApiKey.id == key_id).update(
            {"last_used_at": now or utcnow()},
            synchronize_session=False,
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("API key last-used update failed", extra={"key_id": key_id, "error": str(exc)})
    finally:
        db.close()
