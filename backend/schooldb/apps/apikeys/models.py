# backend/schooldb/apps/apikeys/models.py

from __future__ import annotations

import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)

from schooldb.clock import utcnow
from schooldb.database import Base
from schooldb.ids import generate_id


class ApiPermission(str, enum.Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class ApiKey(Base):
    """
    External access credential for one school.

    Only the sha256 of the secret is stored; `key_prefix` is kept so admins
    can tell keys apart in listings.
    """

    __tablename__ = "api_keys"
    __table_args__ = (
        Index("idx_api_keys_school_active", "school_id", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    school_id = Column(
        String(36),
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(128), nullable=False)
    key_hash = Column(String(64), nullable=False, unique=True)
    key_prefix = Column(String(16), nullable=False)
    permissions = Column(JSON, nullable=False, default=lambda: [ApiPermission.READ.value])
    rate_limit = Column(Integer, nullable=False, default=100)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    created_by_user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
