"""API tests for the stock ledger service endpoints."""
from fastapi.testclient import TestClient

from main import app

client = TestClient(app)


def _seed(product_id, size, available):
    r = client.put("/stock", json={"product_id": product_id, "size": size, "available": available})
    assert r.status_code == 200


def test_health():
    assert client.get("/health").json() == {"ok": True}


def test_reserve_ok_then_read_stock():
    _seed("A", "M", 1)
    r = client.post(
        "/reservations",
        json={"reservation_id": "o-1", "items": [{"product_id": "A", "size": "M", "quantity": 1}]},
    )
    assert r.status_code == 200
    assert r.json()["reserved"] is True
    assert client.get("/stock", params={"product_id": "A", "size": "M"}).json()["available"] == 0


def test_reserve_insufficient_returns_422_with_line():
    _seed("A", "M", 0)
    r = client.post(
        "/reservations",
        json={"reservation_id": "o-2", "items": [{"product_id": "A", "size": "M", "quantity": 1}]},
    )
    assert r.status_code == 422
    body = r.json()["detail"]
    assert body["detail"] == "INSUFFICIENT_STOCK"
    assert body["line"] == 0


def test_commit_and_release_are_idempotent():
    _seed("B", None, 4)
    items = [{"product_id": "B", "quantity": 2}]
    client.post("/reservations", json={"reservation_id": "o-3", "items": items})

    assert client.post("/reservations/o-3/release", json={"items": items}).json() == {"applied": True}
    assert client.post("/reservations/o-3/release", json={"items": items}).json() == {"applied": False}
    assert client.get("/stock", params={"product_id": "B"}).json()["available"] == 4


def test_request_id_is_echoed():
    r = client.get("/health", headers={"X-Request-ID": "abc"})
    assert r.headers["X-Request-ID"] == "abc"


def test_validation_error_on_bad_quantity():
    r = client.post(
        "/reservations",
        json={"reservation_id": "o-4", "items": [{"product_id": "A", "quantity": 0}]},
    )
    assert r.status_code == 422


def test_stock_levels_batch():
    _seed("B", "S", 4)
    _seed("C", None, 2)
    r = client.post(
        "/stock/levels",
        json={"keys": [{"product_id": "B", "size": "S"}, {"product_id": "C"}, {"product_id": "D", "size": "M"}]},
    )
    assert r.status_code == 200
    assert [(lv["product_id"], lv["size"], lv["available"]) for lv in r.json()["levels"]] == [
        ("B", "S", 4),
        ("C", None, 2),
        ("D", "M", 0),
    ]


def test_release_before_reserve_blocks_the_reservation():
    _seed("E", "M", 1)
    items = [{"product_id": "E", "size": "M", "quantity": 1}]
    r = client.post("/reservations/o-lost/release", json={"items": items})
    assert r.json() == {"applied": False}
    r = client.post("/reservations", json={"reservation_id": "o-lost", "items": items})
    assert r.status_code == 200
    assert client.get("/stock", params={"product_id": "E", "size": "M"}).json()["available"] == 1
