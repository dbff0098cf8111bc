# backend/schooldb/apps/subscriptions/models.py

from __future__ import annotations

import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)

from schooldb.clock import utcnow
from schooldb.database import Base
from schooldb.ids import generate_id, generate_order_id


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"


class PaymentOrder(Base):
    """
    One subscribe attempt.

    `id` doubles as the merchant reference sent to the gateway. Rows are
    never deleted; `tracking_id` is written once and `payment_status` only
    ever leaves `pending`.
    """

    __tablename__ = "payment_orders"
    __table_args__ = (
        Index("idx_payment_orders_school_created", "school_id", "created_at"),
        Index("idx_payment_orders_payment_status", "payment_status", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_order_id)
    school_id = Column(
        String(36),
        ForeignKey("schools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_type = Column(String(16), nullable=False)
    billing_period = Column(String(16), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    status = Column(
        Enum(OrderStatus, name="payment_order_status_enum"),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    payment_status = Column(
        Enum(PaymentStatus, name="payment_status_enum"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    starts_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    tracking_id = Column(String(64), nullable=True, unique=True)
    redirect_url = Column(Text, nullable=True)
    payment_method = Column(String(64), nullable=True)
    payment_reference = Column(String(128), nullable=True)
    status_description = Column(String(255), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

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


class BillingAuditLog(Base):
    __tablename__ = "billing_audit_logs"

    id = Column(String(36), primary_key=True, default=generate_id)
    school_id = Column(
        String(36),
        ForeignKey("schools.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    event_type = Column(String(128), nullable=False)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
