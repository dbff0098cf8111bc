# backend/schooldb/apps/subscriptions/services.py

from __future__ import annotations

import logging
import os
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from schooldb import plans
from schooldb.clock import as_utc, utcnow
from schooldb.errors import GatewayError, NotFoundError, ValidationError
from schooldb.apps.schools import services as school_services
from schooldb.apps.schools.models import School, SubscriptionStatus

from . import audit, models, schemas
from .gateway import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_REVERSED,
    BillingContact,
    OrderRequest,
    PaymentGatewayClient,
)

logger = logging.getLogger(__name__)

RECONCILE_BATCH_LIMIT = int(os.getenv("PAYMENT_RECONCILE_LIMIT", "50"))

UNVERIFIED_STATUS_MESSAGE = "Unable to verify payment status. It may still be processing."

# gateway status code -> (payment_status, order status)
_TRANSITIONS: Dict[int, Tuple[models.PaymentStatus, models.OrderStatus]] = {
    STATUS_COMPLETED: (models.PaymentStatus.COMPLETED, models.OrderStatus.ACTIVE),
    STATUS_FAILED: (models.PaymentStatus.FAILED, models.OrderStatus.CANCELLED),
    STATUS_REVERSED: (models.PaymentStatus.REVERSED, models.OrderStatus.CANCELLED),
}

_AUDIT_EVENTS = {
    models.PaymentStatus.COMPLETED: "order.completed",
    models.PaymentStatus.FAILED: "order.failed",
    models.PaymentStatus.REVERSED: "order.reversed",
}


# ---------------------------------------------------------------------------
# PRICE LIST
# ---------------------------------------------------------------------------


def list_plan_prices() -> List[schemas.PlanPriceRead]:
    out: List[schemas.PlanPriceRead] = []
    for name in plans.PURCHASABLE_PLANS:
        plan = plans.PLAN_CATALOG[name]
        out.append(
            schemas.PlanPriceRead(
                key=plan.name,
                name=plan.label,
                limits=dict(plan.limits),
                features=sorted(plan.features),
                pricing={
                    currency: dict(by_tier[name])
                    for currency, by_tier in plans.PLAN_PRICING.items()
                },
            )
        )
    return out


# ---------------------------------------------------------------------------
# LOOKUPS
# ---------------------------------------------------------------------------


def _find_order(
    db: Session,
    *,
    order_id: Optional[str] = None,
    tracking_id: Optional[str] = None,
) -> Optional[models.PaymentOrder]:
    query = db.query(models.PaymentOrder).populate_existing()
    if order_id:
        return query.filter(models.PaymentOrder.id == order_id).first()
    if tracking_id:
        return query.filter(models.PaymentOrder.tracking_id == tracking_id).first()
    raise ValueError("order_id or tracking_id is required")


def list_orders(db: Session, *, school_id: str) -> List[models.PaymentOrder]:
    return (
        db.query(models.PaymentOrder)
        .filter(models.PaymentOrder.school_id == school_id)
        .order_by(models.PaymentOrder.created_at.desc())
        .all()
    )


def get_active_subscription(
    db: Session, *, school_id: str, now: Optional[datetime] = None
) -> Optional[models.PaymentOrder]:
    """Latest activated order whose period has not ended."""
    now = now or utcnow()
    orders = (
        db.query(models.PaymentOrder)
        .filter(
            models.PaymentOrder.school_id == school_id,
            models.PaymentOrder.status == models.OrderStatus.ACTIVE,
        )
        .order_by(models.PaymentOrder.expires_at.desc())
        .all()
    )
    for order in orders:
        if as_utc(order.expires_at) > now:
            return order
    return None


# ---------------------------------------------------------------------------
# ORDERS
# ---------------------------------------------------------------------------


def _assign_tracking_id(
    db: Session, order_id: str, tracking_id: str, redirect_url: Optional[str] = None
) -> bool:
    """Set the gateway tracking id once; later attempts leave it untouched."""
    values = {"tracking_id": tracking_id, "updated_at": utcnow()}
    if redirect_url:
        values["redirect_url"] = redirect_url
    changed = (
        db.query(models.PaymentOrder)
        .filter(
            models.PaymentOrder.id == order_id,
            models.PaymentOrder.tracking_id.is_(None),
        )
        .update(values, synchronize_session=False)
    )
    db.commit()
    if changed != 1:
        logger.warning(
            "Tracking id already assigned; keeping the original",
            extra={"order_id": order_id, "tracking_id": tracking_id},
        )
    return changed == 1


def create_order(
    db: Session,
    *,
    school_id: str,
    plan_tier: str,
    gateway: PaymentGatewayClient,
    billing_period: str = plans.DEFAULT_BILLING_PERIOD,
    currency: str = plans.DEFAULT_CURRENCY,
    amount: Optional[Decimal] = None,
    contact: Optional[BillingContact] = None,
    actor_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.PaymentOrder:
    """
    Record a pending order and submit it to the gateway.

    The order is committed before the gateway call. If submission fails the
    order stays pending without a tracking id and the GatewayError
    propagates; the school retries with a new order.
    """
    now = now or utcnow()
    currency = (currency or plans.DEFAULT_CURRENCY).upper()
    try:
        quoted = plans.quote(plan_tier, currency, billing_period)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    school = school_services.get_school(db, school_id)
    plan = plans.get_plan(plan_tier)

    order = models.PaymentOrder(
        school_id=school.id,
        plan_type=plan.name,
        billing_period=billing_period,
        amount=quoted if amount is None else amount,
        currency=currency,
        status=models.OrderStatus.PENDING,
        payment_status=models.PaymentStatus.PENDING,
        starts_at=now,
        expires_at=plans.period_end(now, billing_period),
        created_by_user_id=actor_user_id,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info(
        "Payment order created",
        extra={"school_id": school.id, "order_id": order.id, "plan_type": plan.name},
    )

    contact = contact or BillingContact(email=school.contact_email or "", phone=school.contact_phone or "")
    try:
        submitted = gateway.submit_order(
            OrderRequest(
                order_id=order.id,
                amount=Decimal(order.amount),
                currency=currency,
                description=f"{plan.label} plan ({billing_period}) - {school.name}",
                contact=contact,
            )
        )
    except GatewayError as exc:
        logger.warning(
            "Payment order submission failed; order left pending",
            extra={"school_id": school.id, "order_id": order.id, "error": str(exc)},
        )
        raise

    _assign_tracking_id(db, order.id, submitted.tracking_id, submitted.redirect_url)
    db.refresh(order)
    audit.safe_record_audit_event(
        db,
        school_id=school.id,
        event="order.created",
        details={
            "order_id": order.id,
            "tracking_id": order.tracking_id,
            "plan_type": order.plan_type,
            "amount": str(order.amount),
            "currency": order.currency,
        },
    )
    return order


def apply_gateway_result(
    db: Session,
    *,
    status_code: int,
    order_id: Optional[str] = None,
    tracking_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[models.PaymentOrder, bool]:
    """
    Move a pending order to its final payment state.

    Looks the order up by merchant reference (`order_id`) or `tracking_id`.
    Returns (order, applied). Orders that already left `pending`, and status
    codes other than completed/failed/reversed, are a no-op. The order row
    and, on completion, the school's activation are written in one
    transaction; the order UPDATE is conditional on `payment_status` still
    being pending, so a replayed notification or a poll racing a
    notification activates the school at most once.
    """
    now = now or utcnow()
    order = _find_order(db, order_id=order_id, tracking_id=tracking_id)
    if order is None:
        raise NotFoundError("Payment order not found.")

    transition = _TRANSITIONS.get(status_code)
    if transition is None or order.payment_status != models.PaymentStatus.PENDING:
        return order, False

    payment_status, order_status = transition
    values = {
        "payment_status": payment_status,
        "status": order_status,
        "status_description": (description or "")[:255] or None,
        "updated_at": utcnow(),
    }
    if payment_method:
        values["payment_method"] = payment_method[:64]
    if payment_status == models.PaymentStatus.COMPLETED:
        values["payment_reference"] = f"PP-{order.tracking_id or tracking_id or order.id}"
        values["completed_at"] = now

    try:
        changed = (
            db.query(models.PaymentOrder)
            .filter(
                models.PaymentOrder.id == order.id,
                models.PaymentOrder.payment_status == models.PaymentStatus.PENDING,
            )
            .update(values, synchronize_session=False)
        )
        if changed != 1:
            db.rollback()
            db.refresh(order)
            return order, False
        if payment_status == models.PaymentStatus.COMPLETED:
            school_services.activate_subscription(
                db,
                order.school_id,
                plan_tier=order.plan_type,
                expires_at=order.expires_at,
                commit=False,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "Payment order settled",
        extra={
            "school_id": order.school_id,
            "order_id": order.id,
            "payment_status": payment_status.value,
        },
    )
    audit.safe_record_audit_event(
        db,
        school_id=order.school_id,
        event=_AUDIT_EVENTS[payment_status],
        details={
            "order_id": order.id,
            "tracking_id": order.tracking_id,
            "plan_type": order.plan_type,
            "payment_method": order.payment_method,
        },
    )
    return order, True


def grant_subscription(
    db: Session,
    *,
    school_id: str,
    plan_tier: str,
    billing_period: str = plans.DEFAULT_BILLING_PERIOD,
    currency: str = plans.DEFAULT_CURRENCY,
    amount: Optional[Decimal] = None,
    payment_reference: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.PaymentOrder:
    """
    Operator-recorded subscription (offline payment, comp account).

    Skips the gateway; the completed order and the activation commit together.
    """
    now = now or utcnow()
    if plan_tier not in plans.PLAN_CATALOG:
        raise ValidationError(f"Unknown plan {plan_tier!r}")
    if billing_period not in plans.BILLING_PERIOD_MONTHS:
        raise ValidationError(f"Unknown billing period {billing_period!r}")
    currency = (currency or plans.DEFAULT_CURRENCY).upper()
    if amount is None:
        try:
            amount = plans.quote(plan_tier, currency, billing_period)
        except ValueError:
            amount = Decimal("0")

    school_services.get_school(db, school_id)
    order = models.PaymentOrder(
        school_id=school_id,
        plan_type=plan_tier,
        billing_period=billing_period,
        amount=amount,
        currency=currency,
        status=models.OrderStatus.ACTIVE,
        payment_status=models.PaymentStatus.COMPLETED,
        starts_at=now,
        expires_at=plans.period_end(now, billing_period),
        payment_method="manual",
        payment_reference=payment_reference,
        completed_at=now,
        created_by_user_id=actor_user_id,
    )
    try:
        db.add(order)
        db.flush()
        school_services.activate_subscription(
            db,
            school_id,
            plan_tier=plan_tier,
            expires_at=order.expires_at,
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info(
        "Subscription granted manually",
        extra={"school_id": school_id, "order_id": order.id, "plan_type": plan_tier},
    )
    audit.safe_record_audit_event(
        db,
        school_id=school_id,
        event="subscription.granted",
        details={"order_id": order.id, "plan_type": plan_tier, "actor_user_id": actor_user_id},
    )
    return order


# ---------------------------------------------------------------------------
# GATEWAY NOTIFICATIONS + POLLING
# ---------------------------------------------------------------------------


def ipn_acknowledgement(
    tracking_id: Optional[str], merchant_reference: Optional[str]
) -> schemas.IpnAcknowledgement:
    return schemas.IpnAcknowledgement(
        orderNotificationType="IPNCHANGE",
        orderTrackingId=tracking_id,
        orderMerchantReference=merchant_reference,
        status=200,
    )


def handle_notification(
    db: Session,
    *,
    tracking_id: Optional[str],
    merchant_reference: Optional[str],
    gateway: PaymentGatewayClient,
    notification_type: Optional[str] = None,
) -> schemas.IpnAcknowledgement:
    """
    Reconcile one gateway notification.

    Always returns the acknowledgement, whatever happens internally: the
    gateway retries anything else, and a notification we cannot use now
    will not become usable on retry. Failures are logged; status polling
    and the reconciliation job pick up whatever was missed.
    """
    ack = ipn_acknowledgement(tracking_id, merchant_reference)
    log_extra = {
        "tracking_id": tracking_id,
        "order_id": merchant_reference,
        "notification_type": notification_type,
    }
    try:
        if not tracking_id or not merchant_reference:
            logger.warning("Gateway notification missing identifiers", extra=log_extra)
            return ack

        order = _find_order(db, order_id=merchant_reference)
        if order is None:
            logger.warning("Gateway notification for unknown order", extra=log_extra)
            return ack
        if order.tracking_id and order.tracking_id != tracking_id:
            logger.warning("Gateway notification tracking id mismatch", extra=log_extra)
            return ack
        if order.payment_status != models.PaymentStatus.PENDING:
            logger.info("Gateway notification for settled order ignored", extra=log_extra)
            return ack

        if order.tracking_id is None:
            _assign_tracking_id(db, order.id, tracking_id)

        result = gateway.get_transaction_status(tracking_id)
        apply_gateway_result(
            db,
            order_id=order.id,
            tracking_id=tracking_id,
            status_code=result.status_code,
            payment_method=result.payment_method,
            description=result.description,
        )
    except GatewayError as exc:
        logger.warning(
            "Gateway status lookup failed during notification",
            extra={**log_extra, "error": str(exc)},
        )
    except Exception:
        db.rollback()
        logger.exception("Gateway notification handling failed", extra=log_extra)
    return ack


def check_order_status(
    db: Session,
    *,
    tracking_id: str,
    gateway: PaymentGatewayClient,
    school_id: Optional[str] = None,
) -> schemas.PaymentStatusRead:
    """
    Status endpoint: poll the gateway while the order is still pending.

    `school_id` scopes the lookup for tenant callers; orders of another
    school are reported as not found.
    """
    order = _find_order(db, tracking_id=tracking_id)
    if order is None or (school_id is not None and order.school_id != school_id):
        raise NotFoundError("Payment not found.")

    message = None
    if order.payment_status == models.PaymentStatus.PENDING:
        try:
            result = gateway.get_transaction_status(tracking_id)
            order, _ = apply_gateway_result(
                db,
                tracking_id=tracking_id,
                status_code=result.status_code,
                payment_method=result.payment_method,
                description=result.description,
            )
        except GatewayError as exc:
            logger.warning(
                "Payment status poll failed",
                extra={"order_id": order.id, "tracking_id": tracking_id, "error": str(exc)},
            )
            message = UNVERIFIED_STATUS_MESSAGE

    return schemas.PaymentStatusRead(
        status=order.payment_status,
        order_id=order.id,
        tracking_id=tracking_id,
        plan_type=order.plan_type,
        amount=order.amount,
        currency=order.currency,
        payment_method=order.payment_method,
        expires_at=order.expires_at,
        message=message,
    )


def reconcile_pending_orders(
    db: Session,
    *,
    gateway: PaymentGatewayClient,
    limit: int = RECONCILE_BATCH_LIMIT,
) -> dict:
    """
    Poll the gateway for pending orders that have a tracking id.

    Covers notifications that never arrived. Orders without a tracking id
    were never accepted by the gateway and are left alone.
    """
    query = (
        db.query(models.PaymentOrder.id, models.PaymentOrder.tracking_id)
        .filter(
            models.PaymentOrder.payment_status == models.PaymentStatus.PENDING,
            models.PaymentOrder.tracking_id.isnot(None),
        )
        .order_by(models.PaymentOrder.created_at.asc())
        .limit(limit)
    )
    summary = {"checked": 0, "settled": 0, "still_pending": 0, "errors": 0}
    for order_id, tracking_id in query.all():
        summary["checked"] += 1
        try:
            result = gateway.get_transaction_status(tracking_id)
            _, applied = apply_gateway_result(
                db,
                order_id=order_id,
                status_code=result.status_code,
                payment_method=result.payment_method,
                description=result.description,
            )
        except GatewayError as exc:
            summary["errors"] += 1
            logger.warning(
                "Reconciliation status lookup failed",
                extra={"order_id": order_id, "tracking_id": tracking_id, "error": str(exc)},
            )
            continue
        if applied:
            summary["settled"] += 1
        else:
            summary["still_pending"] += 1
    return summary


# ---------------------------------------------------------------------------
# MAINTENANCE
# ---------------------------------------------------------------------------


def expire_lapsed_subscriptions(db: Session, *, now: Optional[datetime] = None) -> dict:
    """
    Bulk version of the guard's lazy expiry, for schools that make no requests.

    Uses the same conditional transitions: trial -> expired past
    trial_ends_at, and active -> expired past subscription_expires_at.
    Orders keep their status; `get_active_subscription` filters on dates.
    """
    now = now or utcnow()
    trials = (
        db.query(School)
        .filter(
            School.subscription_status == SubscriptionStatus.TRIAL.value,
            School.trial_ends_at.isnot(None),
            School.trial_ends_at < now,
        )
        .update(
            {"subscription_status": SubscriptionStatus.EXPIRED.value, "updated_at": utcnow()},
            synchronize_session=False,
        )
    )
    actives = (
        db.query(School)
        .filter(
            School.subscription_status == SubscriptionStatus.ACTIVE.value,
            School.subscription_expires_at.isnot(None),
            School.subscription_expires_at < now,
        )
        .update(
            {"subscription_status": SubscriptionStatus.EXPIRED.value, "updated_at": utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    summary = {"trials_expired": trials, "subscriptions_expired": actives}
    logger.info("Lapsed subscriptions expired", extra=summary)
    return summary
