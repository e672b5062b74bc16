"""Catalog endpoints: allow-listed updates, restocking and stock checks."""

from decimal import Decimal

import pytest

from apps.catalog.models import Product
from apps.catalog.reader import DjangoCatalogReader
from apps.orders.domain import StockKey

pytestmark = pytest.mark.django_db


def test_patch_applies_only_allowed_fields(staff_client, make_product):
    p = make_product(name="Mug", category="Accessories", price="12.50", stock=3)
    r = staff_client.patch(
        f"/api/catalog/products/{p.id}/",
        data={"price": "14.00", "tags": ["kitchen"]},
        content_type="application/json",
    )
    assert r.status_code == 200
    p.refresh_from_db()
    assert p.price == Decimal("14.00")
    assert p.tags == ["kitchen"]
    assert p.name == "Mug"


@pytest.mark.parametrize("field", ["total_stock", "id", "created_at", "variants"])
def test_patch_rejects_fields_outside_allow_list(staff_client, make_product, field):
    p = make_product(name="Mug", category="Accessories", price="12.50", stock=3)
    r = staff_client.patch(
        f"/api/catalog/products/{p.id}/", data={field: 999}, content_type="application/json"
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_PAYLOAD"
    p.refresh_from_db()
    assert p.name == "Mug"


def test_patch_requires_staff(client, make_product):
    p = make_product(name="Mug", category="Accessories", price="12.50", stock=3)
    r = client.patch(f"/api/catalog/products/{p.id}/", data={"name": "x"}, content_type="application/json")
    assert r.status_code == 403


def test_patch_unknown_product(staff_client):
    r = staff_client.patch(
        "/api/catalog/products/00000000-0000-0000-0000-000000000000/",
        data={"name": "x"},
        content_type="application/json",
    )
    assert r.status_code == 404
    assert r.json()["detail"] == "PRODUCT_NOT_FOUND"


def test_restock_sized_product_sets_ledger_and_variant(staff_client, make_product, ledger):
    p = make_product(name="Classic Tee", category="T-Shirts", price="29.99", stock={"M": 1})
    r = staff_client.put(
        f"/api/catalog/products/{p.id}/stock/", data={"size": "L", "available": 5}, content_type="application/json"
    )
    assert r.status_code == 200
    assert ledger.available(StockKey(str(p.id), "L")) == 5
    assert {v["size"]: v["stock"] for v in r.json()["variants"]} == {"M": 1, "L": 5}
    assert r.json()["total_stock"] == 6


def test_restock_sized_product_requires_size(staff_client, make_product):
    p = make_product(name="Classic Tee", category="T-Shirts", price="29.99", stock={"M": 1})
    r = staff_client.put(f"/api/catalog/products/{p.id}/stock/", data={"available": 5}, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["detail"] == "SIZE_REQUIRED"


def test_restock_rejects_negative(staff_client, make_product):
    p = make_product(name="Mug", category="Accessories", price="12.50", stock=3)
    r = staff_client.put(f"/api/catalog/products/{p.id}/stock/", data={"available": -1}, content_type="application/json")
    assert r.status_code == 400


def test_reader_maps_sized_categories(settings, make_product):
    settings.SIZED_CATEGORIES = ["Hoodies"]
    hoodie = make_product(name="Hoodie", category="Hoodies", price="49.00", stock={"S": 2})
    tee = make_product(name="Tee", category="T-Shirts", price="19.00", stock=4)
    reader = DjangoCatalogReader()
    assert reader.get_product(str(hoodie.id)).sized is True
    assert reader.get_product(str(tee.id)).sized is False
    assert reader.get_product("garbage") is None
    assert Product.objects.count() == 2


def test_product_body_counts_follow_reservations(staff_client, make_product, address):
    tee = make_product(name="Classic Tee", category="T-Shirts", price="29.99", stock={"M": 3, "L": 1})
    body = {
        "customer_id": "cust-1",
        "items": [{"product_id": str(tee.id), "size": "M", "quantity": 2}],
        "shipping_address": address,
        "payment_method": "cod",
    }
    assert staff_client.post("/api/orders/", data=body, content_type="application/json").status_code == 201

    r = staff_client.patch(f"/api/catalog/products/{tee.id}/", data={"brand": "Acme"}, content_type="application/json")
    assert r.status_code == 200
    assert {v["size"]: v["stock"] for v in r.json()["variants"]} == {"M": 1, "L": 1}
    assert r.json()["total_stock"] == 2


def check(client, **data):
    return client.post("/api/catalog/products/check-availability/", data=data, content_type="application/json")


def test_availability_for_sized_product(client, make_product):
    tee = make_product(name="Classic Tee", category="T-Shirts", price="29.99", stock={"M": 2})
    r = check(client, product_id=str(tee.id), size="M", quantity=2)
    assert r.status_code == 200
    assert r.json() == {"available": True, "available_stock": 2, "requested_quantity": 2, "size": "M"}

    assert check(client, product_id=str(tee.id), size="M", quantity=3).json()["available"] is False
    assert check(client, product_id=str(tee.id), size="XL", quantity=1).json() == {
        "available": False,
        "available_stock": 0,
        "requested_quantity": 1,
        "size": "XL",
    }


def test_availability_requires_size_for_sized_category(client, make_product):
    tee = make_product(name="Classic Tee", category="T-Shirts", price="29.99", stock={"M": 2})
    r = check(client, product_id=str(tee.id), quantity=1)
    assert r.status_code == 400
    assert r.json()["detail"] == "SIZE_REQUIRED"


def test_availability_for_non_sized_product_reads_ledger(client, make_product, ledger):
    mug = make_product(name="Mug", category="Accessories", price="12.50", stock=1)
    assert check(client, product_id=str(mug.id), quantity=1).json()["available"] is True
    ledger.set_available(StockKey(str(mug.id)), 0)
    r = check(client, product_id=str(mug.id), quantity=1)
    assert r.json() == {"available": False, "available_stock": 0, "requested_quantity": 1, "size": None}


def test_availability_unknown_or_inactive_product(client, make_product):
    hidden = make_product(name="Old Mug", category="Accessories", price="5.00", stock=3, is_active=False)
    assert check(client, product_id=str(hidden.id), quantity=1).status_code == 404
    r = check(client, product_id="00000000-0000-0000-0000-000000000000", quantity=1)
    assert r.status_code == 404
    assert r.json()["detail"] == "PRODUCT_NOT_FOUND"


def test_availability_rejects_zero_quantity(client, make_product):
    mug = make_product(name="Mug", category="Accessories", price="12.50", stock=1)
    assert check(client, product_id=str(mug.id), quantity=0).status_code == 400
