import pytest

from apps.orders.http_adapters import HttpStockLedgerClient


@pytest.mark.django_db
def test_health_ok_in_process(client):
    r = client.get("/api/health/")
    assert r.status_code == 200
    assert r.json()["components"]["db"]["ok"] is True
    assert r.json()["components"]["ledger"]["mode"] == "in-process"


@pytest.mark.django_db
def test_health_reports_ledger_down(client, settings, monkeypatch):
    settings.USE_HTTP_ADAPTERS = True
    monkeypatch.setattr(HttpStockLedgerClient, "health", lambda self: False)
    r = client.get("/api/health/")
    assert r.status_code == 503
    assert r.json()["components"]["ledger"]["ok"] is False


@pytest.mark.django_db
def test_request_id_is_echoed_or_generated(client):
    r = client.get("/api/health/", HTTP_X_REQUEST_ID="req-abc")
    assert r["X-Request-ID"] == "req-abc"
    assert client.get("/api/health/")["X-Request-ID"]


def test_oversized_api_body_is_rejected(client, monkeypatch):
    monkeypatch.setattr("gateway.middleware.MAX_API_BYTES", 10)
    r = client.post("/api/orders/", data={"items": ["x" * 50]}, content_type="application/json")
    assert r.status_code == 413
    assert r.json() == {"detail": "PAYLOAD_TOO_LARGE"}
