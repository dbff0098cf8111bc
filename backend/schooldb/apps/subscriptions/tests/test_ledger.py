from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from schooldb.clock import as_utc
from schooldb.errors import GatewayError, NotFoundError, ValidationError
from schooldb.apps.schools import models as school_models
from schooldb.apps.schools import services as school_services
from schooldb.apps.subscriptions import gateway as gateway_module
from schooldb.apps.subscriptions import models, services

NOW = datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)


class FakeGateway:
    """Stands in for PaymentGatewayClient; statuses are keyed by tracking id."""

    def __init__(self):
        self.submitted = []
        self.status_calls = []
        self.statuses = {}
        self.fail_submit = False
        self.fail_status = False

    def submit_order(self, order):
        if self.fail_submit:
            raise GatewayError("Payment gateway returned HTTP 503 for /api/Transactions/SubmitOrderRequest")
        self.submitted.append(order)
        tracking_id = f"track-{len(self.submitted)}"
        return gateway_module.SubmittedOrder(
            tracking_id=tracking_id,
            redirect_url=f"https://gateway.test/pay/{tracking_id}",
            merchant_reference=order.order_id,
        )

    def get_transaction_status(self, tracking_id):
        self.status_calls.append(tracking_id)
        if self.fail_status:
            raise GatewayError("Payment gateway request to /api/Transactions/GetTransactionStatus failed")
        return gateway_module.TransactionStatus(
            status_code=self.statuses.get(tracking_id, gateway_module.STATUS_INVALID),
            payment_method="MpesaKE",
            description="Completed",
        )


def _create_school(db, **overrides):
    values = dict(
        name="Alpha Primary",
        slug="alpha",
        contact_email="office@alpha-primary.com",
        subscription_status="trial",
        plan_type="starter",
        trial_ends_at=NOW + timedelta(days=10),
    )
    values.update(overrides)
    school = school_models.School(**values)
    db.add(school)
    db.commit()
    return school


def _audit_events(db, school_id):
    return [
        row.event_type
        for row in db.query(models.BillingAuditLog)
        .filter(models.BillingAuditLog.school_id == school_id)
        .order_by(models.BillingAuditLog.created_at.asc(), models.BillingAuditLog.id.asc())
        .all()
    ]


def test_create_order_prices_and_submits(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()

    order = services.create_order(
        db_session,
        school_id=school.id,
        plan_tier="pro",
        billing_period="termly",
        currency="usd",
        gateway=gateway,
        now=NOW,
    )

    assert order.id.startswith("SUB-")
    assert order.amount == Decimal("170.00")
    assert order.currency == "USD"
    assert order.payment_status == models.PaymentStatus.PENDING
    assert order.status == models.OrderStatus.PENDING
    assert order.tracking_id == "track-1"
    assert order.redirect_url == "https://gateway.test/pay/track-1"
    assert as_utc(order.expires_at) == datetime(2026, 5, 15, 8, 0, tzinfo=timezone.utc)

    submitted = gateway.submitted[0]
    assert submitted.order_id == order.id
    assert submitted.contact.email == "office@alpha-primary.com"
    assert "Pro plan (termly)" in submitted.description
    assert _audit_events(db_session, school.id) == ["order.created"]


@pytest.mark.parametrize(
    "plan_tier, currency, period",
    [("starter", "USD", "termly"), ("pro", "EUR", "termly"), ("pro", "USD", "weekly")],
)
def test_create_order_rejects_unpriced_requests(db_session, plan_tier, currency, period):
    school = _create_school(db_session)

    with pytest.raises(ValidationError):
        services.create_order(
            db_session,
            school_id=school.id,
            plan_tier=plan_tier,
            currency=currency,
            billing_period=period,
            gateway=FakeGateway(),
        )
    assert db_session.query(models.PaymentOrder).count() == 0


def test_gateway_failure_leaves_pending_order_without_tracking_id(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    gateway.fail_submit = True

    with pytest.raises(GatewayError):
        services.create_order(db_session, school_id=school.id, plan_tier="standard", gateway=gateway)

    orders = services.list_orders(db_session, school_id=school.id)
    assert len(orders) == 1
    assert orders[0].payment_status == models.PaymentStatus.PENDING
    assert orders[0].tracking_id is None
    assert school_services.get_snapshot(db_session, school.id).status == "trial"


def test_completed_notification_activates_school(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    order = services.create_order(
        db_session, school_id=school.id, plan_tier="standard", billing_period="yearly", gateway=gateway, now=NOW
    )
    gateway.statuses["track-1"] = gateway_module.STATUS_COMPLETED

    ack = services.handle_notification(
        db_session, tracking_id="track-1", merchant_reference=order.id, gateway=gateway
    )

    assert ack.model_dump() == {
        "orderNotificationType": "IPNCHANGE",
        "orderTrackingId": "track-1",
        "orderMerchantReference": order.id,
        "status": 200,
    }
    order = services._find_order(db_session, order_id=order.id)
    assert order.payment_status == models.PaymentStatus.COMPLETED
    assert order.status == models.OrderStatus.ACTIVE
    assert order.payment_reference == "PP-track-1"
    assert order.payment_method == "MpesaKE"
    assert order.completed_at is not None

    snapshot = school_services.get_snapshot(db_session, school.id)
    assert snapshot.status == "active"
    assert snapshot.plan_tier == "standard"
    assert snapshot.subscription_expires_at == datetime(2027, 1, 15, 8, 0, tzinfo=timezone.utc)
    assert _audit_events(db_session, school.id) == ["order.created", "order.completed"]


def test_replayed_notification_is_a_no_op(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    order = services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)
    gateway.statuses["track-1"] = gateway_module.STATUS_COMPLETED

    for _ in range(3):
        services.handle_notification(db_session, tracking_id="track-1", merchant_reference=order.id, gateway=gateway)

    # Settled after the first notification; later ones never reach the gateway.
    assert gateway.status_calls == ["track-1"]
    assert _audit_events(db_session, school.id).count("order.completed") == 1


def test_apply_gateway_result_only_leaves_pending_once(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    order = services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)

    _, applied = services.apply_gateway_result(
        db_session, tracking_id="track-1", status_code=gateway_module.STATUS_FAILED
    )
    assert applied is True
    refreshed, applied = services.apply_gateway_result(
        db_session, tracking_id="track-1", status_code=gateway_module.STATUS_COMPLETED
    )

    assert applied is False
    assert refreshed.payment_status == models.PaymentStatus.FAILED
    assert refreshed.status == models.OrderStatus.CANCELLED
    assert school_services.get_snapshot(db_session, school.id).status == "trial"


@pytest.mark.parametrize(
    "status_code, payment_status, order_status",
    [
        (gateway_module.STATUS_FAILED, models.PaymentStatus.FAILED, models.OrderStatus.CANCELLED),
        (gateway_module.STATUS_REVERSED, models.PaymentStatus.REVERSED, models.OrderStatus.CANCELLED),
    ],
)
def test_failed_and_reversed_payments_do_not_activate(db_session, status_code, payment_status, order_status):
    school = _create_school(db_session)
    gateway = FakeGateway()
    order = services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)

    order, applied = services.apply_gateway_result(db_session, order_id=order.id, status_code=status_code)

    assert applied is True
    assert order.payment_status == payment_status
    assert order.status == order_status
    snapshot = school_services.get_snapshot(db_session, school.id)
    assert snapshot.status == "trial"
    assert snapshot.plan_tier == "starter"


def test_invalid_status_code_keeps_order_pending(db_session):
    school = _create_school(db_session)
    order = services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=FakeGateway(), now=NOW)

    order, applied = services.apply_gateway_result(db_session, order_id=order.id, status_code=0)

    assert applied is False
    assert order.payment_status == models.PaymentStatus.PENDING


def test_apply_gateway_result_unknown_order(db_session):
    with pytest.raises(NotFoundError):
        services.apply_gateway_result(db_session, tracking_id="nope", status_code=1)


def test_expired_school_pays_and_is_reactivated(db_session):
    school = _create_school(
        db_session, subscription_status="expired", trial_ends_at=NOW - timedelta(days=40)
    )
    gateway = FakeGateway()
    order = services.create_order(
        db_session, school_id=school.id, plan_tier="standard", billing_period="monthly", gateway=gateway, now=NOW
    )
    gateway.statuses["track-1"] = gateway_module.STATUS_COMPLETED

    services.handle_notification(db_session, tracking_id="track-1", merchant_reference=order.id, gateway=gateway)

    snapshot = school_services.get_snapshot(db_session, school.id)
    assert snapshot.status == "active"
    assert snapshot.plan_tier == "standard"
    assert snapshot.subscription_expires_at == datetime(2026, 2, 15, 8, 0, tzinfo=timezone.utc)


def test_payment_for_suspended_school_keeps_suspension(db_session):
    school = _create_school(db_session, subscription_status="suspended")
    gateway = FakeGateway()
    order = services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)

    services.apply_gateway_result(db_session, order_id=order.id, status_code=gateway_module.STATUS_COMPLETED)

    snapshot = school_services.get_snapshot(db_session, school.id)
    assert snapshot.status == "suspended"
    assert snapshot.plan_tier == "pro"
    assert snapshot.subscription_expires_at is not None


def test_notification_edge_cases_are_acknowledged(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    order = services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)

    for tracking_id, reference in [
        (None, order.id),
        ("track-1", None),
        ("track-1", "SUB-UNKNOWN00000"),
        ("track-999", order.id),
    ]:
        ack = services.handle_notification(
            db_session, tracking_id=tracking_id, merchant_reference=reference, gateway=gateway
        )
        assert ack.status == 200
        assert ack.orderTrackingId == tracking_id

    assert gateway.status_calls == []


def test_notification_survives_gateway_outage(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    order = services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)
    gateway.fail_status = True

    ack = services.handle_notification(db_session, tracking_id="track-1", merchant_reference=order.id, gateway=gateway)

    assert ack.status == 200
    assert services._find_order(db_session, order_id=order.id).payment_status == models.PaymentStatus.PENDING


def test_notification_assigns_missing_tracking_id(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    gateway.fail_submit = True
    with pytest.raises(GatewayError):
        services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)
    order = services.list_orders(db_session, school_id=school.id)[0]
    gateway.statuses["late-track"] = gateway_module.STATUS_COMPLETED

    services.handle_notification(db_session, tracking_id="late-track", merchant_reference=order.id, gateway=gateway)

    order = services._find_order(db_session, order_id=order.id)
    assert order.tracking_id == "late-track"
    assert order.payment_status == models.PaymentStatus.COMPLETED


def test_check_order_status_polls_pending_orders(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)

    pending = services.check_order_status(db_session, tracking_id="track-1", gateway=gateway, school_id=school.id)
    assert pending.status == models.PaymentStatus.PENDING
    assert pending.message is None

    gateway.statuses["track-1"] = gateway_module.STATUS_COMPLETED
    completed = services.check_order_status(db_session, tracking_id="track-1", gateway=gateway, school_id=school.id)
    assert completed.status == models.PaymentStatus.COMPLETED
    assert completed.payment_method == "MpesaKE"

    services.check_order_status(db_session, tracking_id="track-1", gateway=gateway, school_id=school.id)
    assert gateway.status_calls == ["track-1", "track-1"]


def test_check_order_status_reports_unverified_on_gateway_error(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)
    gateway.fail_status = True

    result = services.check_order_status(db_session, tracking_id="track-1", gateway=gateway)

    assert result.status == models.PaymentStatus.PENDING
    assert result.message == services.UNVERIFIED_STATUS_MESSAGE


def test_check_order_status_is_school_scoped(db_session):
    school = _create_school(db_session)
    other = _create_school(db_session, name="Beta Primary", slug="beta")
    gateway = FakeGateway()
    services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)

    with pytest.raises(NotFoundError):
        services.check_order_status(db_session, tracking_id="track-1", gateway=gateway, school_id=other.id)
    with pytest.raises(NotFoundError):
        services.check_order_status(db_session, tracking_id="missing", gateway=gateway)


def test_reconcile_pending_orders(db_session):
    school = _create_school(db_session)
    gateway = FakeGateway()
    for _ in range(3):
        services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)
    gateway.fail_submit = True
    with pytest.raises(GatewayError):
        services.create_order(db_session, school_id=school.id, plan_tier="pro", gateway=gateway, now=NOW)
    gateway.statuses["track-1"] = gateway_module.STATUS_COMPLETED
    gateway.statuses["track-2"] = gateway_module.STATUS_FAILED

    summary = services.reconcile_pending_orders(db_session, gateway=gateway)

    assert summary == {"checked": 3, "settled": 2, "still_pending": 1, "errors": 0}
    assert sorted(gateway.status_calls) == ["track-1", "track-2", "track-3"]
    assert school_services.get_snapshot(db_session, school.id).status == "active"

    gateway.fail_status = True
    assert services.reconcile_pending_orders(db_session, gateway=gateway) == {
        "checked": 1,
        "settled": 0,
        "still_pending": 0,
        "errors": 1,
    }


def test_grant_subscription_records_manual_order(db_session):
    school = _create_school(db_session, subscription_status="expired")

    order = services.grant_subscription(
        db_session,
        school_id=school.id,
        plan_tier="pro",
        billing_period="yearly",
        payment_reference="BANK-001",
        now=NOW,
    )

    assert order.payment_method == "manual"
    assert order.payment_status == models.PaymentStatus.COMPLETED
    assert order.status == models.OrderStatus.ACTIVE
    assert order.amount == Decimal("490.00")
    snapshot = school_services.get_snapshot(db_session, school.id)
    assert snapshot.status == "active"
    assert snapshot.plan_tier == "pro"
    assert _audit_events(db_session, school.id) == ["subscription.granted"]
    assert services.get_active_subscription(db_session, school_id=school.id, now=NOW).id == order.id


def test_grant_starter_is_free_and_validates_input(db_session):
    school = _create_school(db_session)

    order = services.grant_subscription(db_session, school_id=school.id, plan_tier="starter", now=NOW)
    assert order.amount == Decimal("0")

    with pytest.raises(ValidationError):
        services.grant_subscription(db_session, school_id=school.id, plan_tier="gold")
    with pytest.raises(NotFoundError):
        services.grant_subscription(db_session, school_id="missing", plan_tier="pro")


def test_expire_lapsed_subscriptions(db_session):
    lapsed_trial = _create_school(db_session, slug="t1", trial_ends_at=NOW - timedelta(days=1))
    live_trial = _create_school(db_session, slug="t2", trial_ends_at=NOW + timedelta(days=1))
    lapsed_active = _create_school(
        db_session, slug="a1", subscription_status="active", subscription_expires_at=NOW - timedelta(hours=1)
    )
    suspended = _create_school(
        db_session, slug="s1", subscription_status="suspended", subscription_expires_at=NOW - timedelta(days=9)
    )
    lapsed_order = services.grant_subscription(
        db_session, school_id=live_trial.id, plan_tier="pro", billing_period="monthly", now=NOW - timedelta(days=40)
    )

    summary = services.expire_lapsed_subscriptions(db_session, now=NOW)

    assert summary == {"trials_expired": 1, "subscriptions_expired": 2}
    assert school_services.get_snapshot(db_session, lapsed_trial.id).status == "expired"
    assert school_services.get_snapshot(db_session, lapsed_active.id).status == "expired"
    assert school_services.get_snapshot(db_session, live_trial.id).status == "expired"
    assert school_services.get_snapshot(db_session, suspended.id).status == "suspended"
    assert services.get_active_subscription(db_session, school_id=live_trial.id, now=NOW) is None
    db_session.refresh(lapsed_order)
    assert lapsed_order.status == models.OrderStatus.ACTIVE

    assert services.expire_lapsed_subscriptions(db_session, now=NOW) == {
        "trials_expired": 0,
        "subscriptions_expired": 0,
    }
