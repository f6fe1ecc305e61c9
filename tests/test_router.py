import hashlib
import hmac
import importlib
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.domain.payments.router import get_api_client, get_settings_resolver
from app.main import app
from app.models import TeoriOrder

# The package re-exports the APIRouter as `router`, so fetch the module itself
router_module = importlib.import_module("app.domain.payments.router")

CHECKOUT = {
    "amount": "500.00",
    "reference": "teori_3f6c2a9e-1d2b-4c5d-8e9f-0a1b2c3d4e5f",
    "description": "Teorilektion",
    "return_url": "https://trafikskola.example/betalning/klar",
    "external_booking_id": "bk-1",
}


@pytest.fixture
def client(db_session, resolver, api_client):
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_settings_resolver] = lambda: resolver
    app.dependency_overrides[get_api_client] = lambda: api_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def signed_webhook(client, event, token=None, secret="webhook-secret"):
    body = json.dumps(event)
    signature = hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()
    params = {"t": token} if token else None
    return client.post(
        "/api/payments/teori/webhook",
        content=body,
        params=params,
        headers={"Teori-Signature": signature, "Content-Type": "application/json"},
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_create_checkout(client, fake_api):
    response = client.post("/api/payments/teori/create-checkout", json=CHECKOUT)

    assert response.status_code == 200
    data = response.json()
    assert data["is_existing"] is False
    assert data["checkout_url"] == f"https://pay.teori.test/{data['checkout_id']}"
    assert len(data["merchant_reference"]) <= 25

    again = client.post("/api/payments/teori/create-checkout", json=CHECKOUT)
    assert again.json()["is_existing"] is True
    assert len(fake_api.created) == 1


def test_create_checkout_rejects_invalid_amount(client, fake_api):
    response = client.post("/api/payments/teori/create-checkout", json={**CHECKOUT, "amount": "0"})

    assert response.status_code == 422
    assert fake_api.requests == []


@pytest.mark.parametrize("amount", ["100.005", "100000000"])
def test_create_checkout_rejects_unstorable_amount(client, fake_api, amount):
    response = client.post("/api/payments/teori/create-checkout", json={**CHECKOUT, "amount": amount})

    assert response.status_code == 422
    assert fake_api.requests == []


def test_booking_id_defaults_from_teori_reference(client, db_session, fake_api):
    payload = {k: v for k, v in CHECKOUT.items() if k != "external_booking_id"}

    first = client.post("/api/payments/teori/create-checkout", json=payload)

    assert first.status_code == 200
    order = db_session.query(TeoriOrder).one()
    assert order.external_booking_id == "3f6c2a9e-1d2b-4c5d-8e9f-0a1b2c3d4e5f"

    again = client.post("/api/payments/teori/create-checkout", json=payload)
    assert again.json()["is_existing"] is True
    assert len(fake_api.created) == 1


def test_create_checkout_when_disabled(client, settings_map, fake_api):
    settings_map["teori_enabled"] = "false"

    response = client.post("/api/payments/teori/create-checkout", json=CHECKOUT)

    assert response.status_code == 503
    assert response.json()["detail"] == "Payment method currently unavailable"
    assert fake_api.requests == []


def test_create_checkout_when_misconfigured(client, settings_map):
    del settings_map["teori_api_secret"]

    response = client.post("/api/payments/teori/create-checkout", json=CHECKOUT)

    assert response.status_code == 503


def test_create_checkout_provider_failure(client, fake_api):
    fake_api.create_responses.append(httpx.Response(400, text='{"ErrorCode": "INVALID_REQUEST"}'))

    response = client.post("/api/payments/teori/create-checkout", json=CHECKOUT)

    assert response.status_code == 502
    assert response.json()["detail"] == "Could not start payment, please try again"


def test_webhook_updates_order(client, db_session):
    client.post("/api/payments/teori/create-checkout", json=CHECKOUT)
    order = db_session.query(TeoriOrder).one()

    response = signed_webhook(
        client, {"OrderId": order.provider_order_id, "Status": "Paid"}, token=order.callback_token
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "status": "Paid", "updated": True}
    db_session.refresh(order)
    assert order.status == "Paid"


def test_webhook_requires_callback_token(client, db_session):
    client.post("/api/payments/teori/create-checkout", json=CHECKOUT)
    order = db_session.query(TeoriOrder).one()

    response = signed_webhook(client, {"OrderId": order.provider_order_id, "Status": "Paid"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Missing token"


def test_webhook_bad_signature(client):
    response = signed_webhook(client, {"OrderId": "1", "Status": "Paid"}, secret="forged")

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid signature"


def test_admin_settings_forbidden_without_configured_token(client, monkeypatch):
    monkeypatch.setattr(router_module, "ADMIN_API_TOKEN", None)

    response = client.get("/api/admin/teori/settings", headers={"X-Admin-Token": "anything"})

    assert response.status_code == 403


def test_admin_settings_wrong_token(client, monkeypatch):
    monkeypatch.setattr(router_module, "ADMIN_API_TOKEN", "admin-token")

    response = client.get("/api/admin/teori/settings", headers={"X-Admin-Token": "nope"})

    assert response.status_code == 403


def test_admin_settings_masks_secrets(client, monkeypatch):
    monkeypatch.setattr(router_module, "ADMIN_API_TOKEN", "admin-token")

    response = client.get(
        "/api/admin/teori/settings",
        params={"force_reload": "true"},
        headers={"X-Admin-Token": "admin-token"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["environment"] == "sandbox"
    assert data["api_url"] == "https://pago.teori.nu"
    assert data["api_key_masked"] == "merc...1234"
    assert "api-secret" not in response.text
