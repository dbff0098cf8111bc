"""create schools, roster, subscription and api key tables

Revision ID: a1c3e5f7b9d0
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c3e5f7b9d0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


USER_ROLES = ("SUPER_ADMIN", "SCHOOL_ADMIN", "TEACHER", "PARENT")
ORDER_STATUSES = ("PENDING", "ACTIVE", "CANCELLED")
PAYMENT_STATUSES = ("PENDING", "COMPLETED", "FAILED", "REVERSED")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "schools",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=64), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("contact_phone", sa.String(length=64), nullable=True),
        sa.Column("country_code", sa.String(length=2), nullable=False, server_default="UG"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("subscription_status", sa.String(length=16), nullable=False, server_default="trial"),
        sa.Column("plan_type", sa.String(length=16), nullable=False, server_default="starter"),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_schools")),
    )
    op.create_index(op.f("ix_schools_slug"), "schools", ["slug"], unique=True)
    op.create_index(op.f("ix_schools_is_active"), "schools", ["is_active"], unique=False)
    op.create_index(op.f("ix_schools_subscription_status"), "schools", ["subscription_status"], unique=False)
    op.create_index(
        "idx_schools_subscription",
        "schools",
        ["subscription_status", "subscription_expires_at"],
        unique=False,
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("role", sa.Enum(*USER_ROLES, name="user_role_enum"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["school_id"], ["schools.id"], name=op.f("fk_users_school_id_schools"), ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index(op.f("ix_users_school_id"), "users", ["school_id"], unique=False)
    op.create_index(op.f("ix_users_role"), "users", ["role"], unique=False)
    op.create_index(op.f("ix_users_is_active"), "users", ["is_active"], unique=False)
    op.create_index("idx_users_school_role_active", "users", ["school_id", "role", "is_active"], unique=False)

    op.create_table(
        "classes",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("stream", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["school_id"], ["schools.id"], name=op.f("fk_classes_school_id_schools"), ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_classes")),
    )
    op.create_index(op.f("ix_classes_school_id"), "classes", ["school_id"], unique=False)
    op.create_index("idx_classes_school_active", "classes", ["school_id", "is_active"], unique=False)

    op.create_table(
        "pupils",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("class_id", sa.String(length=36), nullable=True),
        sa.Column("admission_number", sa.String(length=32), nullable=True),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["school_id"], ["schools.id"], name=op.f("fk_pupils_school_id_schools"), ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["class_id"], ["classes.id"], name=op.f("fk_pupils_class_id_classes"), ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_pupils")),
    )
    op.create_index(op.f("ix_pupils_school_id"), "pupils", ["school_id"], unique=False)
    op.create_index(op.f("ix_pupils_class_id"), "pupils", ["class_id"], unique=False)
    op.create_index("idx_pupils_school_active", "pupils", ["school_id", "is_active"], unique=False)

    op.create_table(
        "payment_orders",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("plan_type", sa.String(length=16), nullable=False),
        sa.Column("billing_period", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.Enum(*ORDER_STATUSES, name="payment_order_status_enum"), nullable=False),
        sa.Column("payment_status", sa.Enum(*PAYMENT_STATUSES, name="payment_status_enum"), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tracking_id", sa.String(length=64), nullable=True),
        sa.Column("redirect_url", sa.Text(), nullable=True),
        sa.Column("payment_method", sa.String(length=64), nullable=True),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("status_description", sa.String(length=255), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["school_id"], ["schools.id"], name=op.f("fk_payment_orders_school_id_schools"), ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["created_by_user_id"],
            ["users.id"],
            name=op.f("fk_payment_orders_created_by_user_id_users"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_payment_orders")),
        sa.UniqueConstraint("tracking_id", name=op.f("uq_payment_orders_tracking_id")),
    )
    op.create_index(op.f("ix_payment_orders_school_id"), "payment_orders", ["school_id"], unique=False)
    op.create_index(
        "idx_payment_orders_school_created", "payment_orders", ["school_id", "created_at"], unique=False
    )
    op.create_index(
        "idx_payment_orders_payment_status", "payment_orders", ["payment_status", "created_at"], unique=False
    )

    op.create_table(
        "billing_audit_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["school_id"],
            ["schools.id"],
            name=op.f("fk_billing_audit_logs_school_id_schools"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_billing_audit_logs")),
    )
    op.create_index(op.f("ix_billing_audit_logs_school_id"), "billing_audit_logs", ["school_id"], unique=False)

    op.create_table(
        "api_keys",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("key_hash", sa.String(length=64), nullable=False),
        sa.Column("key_prefix", sa.String(length=16), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("rate_limit", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["school_id"], ["schools.id"], name=op.f("fk_api_keys_school_id_schools"), ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["created_by_user_id"],
            ["users.id"],
            name=op.f("fk_api_keys_created_by_user_id_users"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_api_keys")),
        sa.UniqueConstraint("key_hash", name=op.f("uq_api_keys_key_hash")),
    )
    op.create_index(op.f("ix_api_keys_school_id"), "api_keys", ["school_id"], unique=False)
    op.create_index("idx_api_keys_school_active", "api_keys", ["school_id", "is_active"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_api_keys_school_active", table_name="api_keys")
    op.drop_index(op.f("ix_api_keys_school_id"), table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_index(op.f("ix_billing_audit_logs_school_id"), table_name="billing_audit_logs")
    op.drop_table("billing_audit_logs")
    op.drop_index("idx_payment_orders_payment_status", table_name="payment_orders")
    op.drop_index("idx_payment_orders_school_created", table_name="payment_orders")
    op.drop_index(op.f("ix_payment_orders_school_id"), table_name="payment_orders")
    op.drop_table("payment_orders")
    op.drop_index("idx_pupils_school_active", table_name="pupils")
    op.drop_index(op.f("ix_pupils_class_id"), table_name="pupils")
    op.drop_index(op.f("ix_pupils_school_id"), table_name="pupils")
    op.drop_table("pupils")
    op.drop_index("idx_classes_school_active", table_name="classes")
    op.drop_index(op.f("ix_classes_school_id"), table_name="classes")
    op.drop_table("classes")
    op.drop_index("idx_users_school_role_active", table_name="users")
    op.drop_index(op.f("ix_users_is_active"), table_name="users")
    op.drop_index(op.f("ix_users_role"), table_name="users")
    op.drop_index(op.f("ix_users_school_id"), table_name="users")
    op.drop_table("users")
    op.drop_index("idx_schools_subscription", table_name="schools")
    op.drop_index(op.f("ix_schools_subscription_status"), table_name="schools")
    op.drop_index(op.f("ix_schools_is_active"), table_name="schools")
    op.drop_index(op.f("ix_schools_slug"), table_name="schools")
    op.drop_table("schools")
    sa.Enum(name="payment_status_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="payment_order_status_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="user_role_enum").drop(op.get_bind(), checkfirst=True)
