from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from schooldb.database import get_db, get_read_db
from schooldb.main import API_PREFIX, app
from schooldb.security import get_current_active_user
from schooldb.apps.schools import models as school_models
from schooldb.apps.schools import services as school_services
from schooldb.apps.subscriptions import gateway as gateway_module
from schooldb.apps.subscriptions.gateway import get_gateway_client
from schooldb.apps.subscriptions.tests.test_ledger import FakeGateway


def _create_school(db):
    school = school_models.School(
        name="Alpha Primary",
        slug="alpha",
        subscription_status="trial",
        plan_type="starter",
        trial_ends_at=datetime.now(timezone.utc) + timedelta(days=5),
    )
    db.add(school)
    db.commit()
    return school


@pytest.fixture()
def api(db_session):
    state = SimpleNamespace(user=None, gateway=FakeGateway())

    def _db_override():
        yield db_session

    app.dependency_overrides[get_db] = _db_override
    app.dependency_overrides[get_read_db] = _db_override
    app.dependency_overrides[get_current_active_user] = lambda: state.user
    app.dependency_overrides[get_gateway_client] = lambda: state.gateway
    try:
        with TestClient(app, raise_server_exceptions=False) as client:
            yield client, state
    finally:
        app.dependency_overrides.clear()


def test_subscribe_then_ipn_activates_school(api, db_session):
    client, state = api
    school = _create_school(db_session)
    state.user = SimpleNamespace(
        id="admin-1",
        school_id=school.id,
        role=school_models.UserRole.SCHOOL_ADMIN,
        is_active=True,
        full_name="Ada Lovelace",
        email="ada@alpha-primary.com",
        phone=None,
    )

    response = client.post(
        f"{API_PREFIX}/pesapal/initiate",
        json={"plan_type": "standard", "billing_period": "monthly", "currency": "KES"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["trackingId"] == "track-1"
    assert body["redirectUrl"] == "https://gateway.test/pay/track-1"
    assert body["currency"] == "KES"
    contact = state.gateway.submitted[0].contact
    assert (contact.first_name, contact.last_name, contact.email) == ("Ada", "Lovelace", "ada@alpha-primary.com")

    state.gateway.statuses["track-1"] = gateway_module.STATUS_COMPLETED
    ipn = client.get(
        f"{API_PREFIX}/pesapal/ipn",
        params={
            "OrderTrackingId": "track-1",
            "OrderMerchantReference": body["orderId"],
            "OrderNotificationType": "IPNCHANGE",
        },
    )
    assert ipn.status_code == 200
    assert ipn.json() == {
        "orderNotificationType": "IPNCHANGE",
        "orderTrackingId": "track-1",
        "orderMerchantReference": body["orderId"],
        "status": 200,
    }
    snapshot = school_services.get_snapshot(db_session, school.id)
    assert (snapshot.status, snapshot.plan_tier) == ("active", "standard")

    status_response = client.get(f"{API_PREFIX}/pesapal/status/track-1")
    assert status_response.json()["status"] == "completed"

    active = client.get(f"{API_PREFIX}/subscriptions/active")
    assert active.status_code == 200
    assert active.json()["id"] == body["orderId"]


def test_subscribe_gateway_failure_is_502(api, db_session):
    client, state = api
    school = _create_school(db_session)
    state.user = SimpleNamespace(
        id="admin-1", school_id=school.id, role=school_models.UserRole.SCHOOL_ADMIN, is_active=True
    )
    state.gateway.fail_submit = True

    response = client.post(f"{API_PREFIX}/pesapal/initiate", json={"plan_type": "pro"})

    assert response.status_code == 502
    assert response.json()["code"] == "PAYMENT_GATEWAY_ERROR"


def test_ipn_without_identifiers_is_still_acknowledged(api):
    client, state = api

    response = client.get(f"{API_PREFIX}/pesapal/ipn")

    assert response.status_code == 200
    assert response.json()["status"] == 200
    assert state.gateway.status_calls == []


def test_plans_are_public(api):
    client, _ = api

    response = client.get(f"{API_PREFIX}/pesapal/plans")

    assert response.status_code == 200
    assert [plan["key"] for plan in response.json()] == ["standard", "pro"]


def test_grant_requires_operator(api, db_session):
    client, state = api
    school = _create_school(db_session)
    state.user = SimpleNamespace(
        id="admin-1", school_id=school.id, role=school_models.UserRole.SCHOOL_ADMIN, is_active=True
    )
    payload = {"school_id": school.id, "plan_type": "pro", "billing_period": "yearly"}

    assert client.post(f"{API_PREFIX}/subscriptions", json=payload).status_code == 403

    state.user = SimpleNamespace(id="op-1", school_id=None, role=school_models.UserRole.SUPER_ADMIN, is_active=True)
    response = client.post(f"{API_PREFIX}/subscriptions", json=payload)
    assert response.status_code == 201
    assert response.json()["payment_method"] == "manual"
