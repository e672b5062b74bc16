"""API tests for the payments endpoints (intents, confirm, webhook, methods)."""

import pytest

from apps.orders.domain import StockKey
from apps.payments.adapters import webhook_payload
from apps.payments.domain import EVENT_SUCCEEDED

pytestmark = pytest.mark.django_db


@pytest.fixture
def order_id(client, make_product, address, gateway):
    mug = make_product(name="Mug", category="Accessories", price="12.50", stock=5)
    body = {
        "customer_id": "cust-1",
        "items": [{"product_id": str(mug.id), "quantity": 1}],
        "shipping_address": address,
        "payment_method": "stripe",
    }
    r = client.post("/api/orders/", data=body, content_type="application/json")
    assert r.status_code == 201
    return r.json()["id"]


def create_intent(client, order_id):
    return client.post("/api/payments/intents/", data={"order_id": order_id}, content_type="application/json")


def test_create_intent_twice_returns_same_intent(client, order_id):
    r1 = create_intent(client, order_id)
    r2 = create_intent(client, order_id)
    assert r1.status_code == r2.status_code == 200
    assert r1.json()["payment_intent_id"] == r2.json()["payment_intent_id"]
    assert r1.json()["client_secret"]


def test_create_intent_unknown_order(client, gateway):
    r = create_intent(client, "00000000-0000-0000-0000-000000000000")
    assert r.status_code == 404


def test_confirm_flow(client, gateway, order_id):
    intent_id = create_intent(client, order_id).json()["payment_intent_id"]
    url = "/api/payments/confirm/"
    data = {"order_id": order_id, "payment_intent_id": intent_id}

    r = client.post(url, data=data, content_type="application/json")
    assert r.status_code == 400
    assert r.json() == {"detail": "PAYMENT_NOT_COMPLETED", "gateway_status": "requires_payment_method"}

    gateway.set_status(intent_id, "succeeded")
    r = client.post(url, data=data, content_type="application/json")
    assert r.status_code == 200
    assert r.json()["payment_status"] == "completed"
    assert r.json()["status"] == "processing"

    # paying again is a no-op, and a new intent can no longer be created
    assert client.post(url, data=data, content_type="application/json").status_code == 200
    r = create_intent(client, order_id)
    assert r.status_code == 409
    assert r.json()["detail"] == "ALREADY_PAID"


def test_webhook_marks_order_paid_and_ignores_duplicates(client, gateway, ledger, order_id):
    intent_id = create_intent(client, order_id).json()["payment_intent_id"]
    body = webhook_payload(EVENT_SUCCEEDED, intent_id, order_id)
    for _ in range(2):
        r = client.post(
            "/api/payments/webhook/", data=body, content_type="application/json", HTTP_STRIPE_SIGNATURE=gateway.sign(body)
        )
        assert r.status_code == 200
        assert r.json()["received"] is True

    order = client.get(f"/api/orders/{order_id}/").json()
    assert order["payment_status"] == "completed"
    product_id = order["items"][0]["product_id"]
    assert ledger.sales(StockKey(product_id)) == 1


def test_webhook_rejects_bad_signature(client, gateway, order_id):
    body = webhook_payload(EVENT_SUCCEEDED, "pi_x", order_id)
    r = client.post("/api/payments/webhook/", data=body, content_type="application/json", HTTP_STRIPE_SIGNATURE="t=1,v1=00")
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_SIGNATURE"
    assert client.get(f"/api/orders/{order_id}/").json()["payment_status"] == "pending"


def test_payment_methods(client):
    r = client.get("/api/payments/methods/")
    assert r.status_code == 200
    assert [m["id"] for m in r.json()["methods"]] == ["stripe", "paypal", "cod"]
