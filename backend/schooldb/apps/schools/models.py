# backend/schooldb/apps/schools/models.py

from __future__ import annotations

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)

from schooldb.clock import utcnow
from schooldb.database import Base
from schooldb.ids import generate_id


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class UserRole(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"      # Platform operator
    SCHOOL_ADMIN = "SCHOOL_ADMIN"
    TEACHER = "TEACHER"
    PARENT = "PARENT"


class SubscriptionStatus(str, enum.Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class PlanTier(str, enum.Enum):
    STARTER = "starter"
    STANDARD = "standard"
    PRO = "pro"


# ---------------------------------------------------------------------------
# MODELS
# ---------------------------------------------------------------------------


class School(Base):
    """
    A tenant: the unit of data isolation and billing.

    subscription_status / plan_type are plain strings rather than DB enums
    so a row holding an unexpected value still loads; the subscription guard
    lets such rows through instead of failing the request.
    """

    __tablename__ = "schools"
    __table_args__ = (
        Index("idx_schools_subscription", "subscription_status", "subscription_expires_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(64), unique=True, nullable=False, index=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(64), nullable=True)
    country_code = Column(String(2), nullable=False, default="UG")

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    subscription_status = Column(
        String(16),
        nullable=False,
        default=SubscriptionStatus.TRIAL.value,
        index=True,
    )
    plan_type = Column(String(16), nullable=False, default=PlanTier.STARTER.value)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class User(Base):
    """
    Login account. Platform operators (SUPER_ADMIN) have no school; every
    other role is scoped to exactly one school.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        Index("idx_users_school_role_active", "school_id", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    school_id = Column(
        String(36),
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    email = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(64), nullable=True)
    role = Column(
        Enum(UserRole, name="user_role_enum"),
        nullable=False,
        default=UserRole.TEACHER,
        index=True,
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    @property
    def is_superuser(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN
