import uuid
from decimal import Decimal

import pytest
from django.core.cache import cache

from apps.catalog.models import Product, ProductVariant
from apps.orders import providers as order_providers
from apps.orders.adapters import InMemoryStockLedger
from apps.orders.domain import StockKey
from apps.orders.http_adapters import ledger_breaker
from apps.payments import providers as payment_providers
from apps.payments.adapters import FakeGateway

ADDRESS = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "street": "1 Analytical Way",
    "city": "London",
    "state": "LDN",
    "zip_code": "10001",
    "country": "US",
}


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.PAYMENT_GATEWAY = "fake"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    cache.clear()  # throttling state
    ledger_breaker.reset()
    order_providers.reset_stock_ledger()
    payment_providers.reset_gateway()
    yield
    order_providers.reset_stock_ledger()
    payment_providers.reset_gateway()


@pytest.fixture
def ledger():
    """The in-process ledger the providers hand to the state machine."""
    led = InMemoryStockLedger()
    order_providers.reset_stock_ledger(led)
    return led


@pytest.fixture
def gateway():
    gw = FakeGateway(webhook_secret="whsec_test")
    payment_providers.set_gateway(gw)
    return gw


@pytest.fixture
def address():
    return dict(ADDRESS)


@pytest.fixture
def make_product(db, ledger):
    """Create a catalog product and seed its ledger stock.

    ``stock`` is an int for non-sized products or a ``{size: count}`` dict.
    """

    def _make(name="Classic Tee", category="T-Shirts", price="29.99", stock=None, is_active=True):
        product = Product.objects.create(
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}",
            category=category,
            price=Decimal(price),
            is_active=is_active,
        )
        if isinstance(stock, dict):
            for size, count in stock.items():
                ProductVariant.objects.create(product=product, size=size, sku=f"{name[:3].upper()}-{size}")
                ledger.set_available(StockKey(str(product.id), size), count)
        elif stock is not None:
            ledger.set_available(StockKey(str(product.id)), stock)
        return product

    return _make


@pytest.fixture
def staff_client(client, django_user_model):
    user = django_user_model.objects.create_user(username="staff", password="pw", is_staff=True)
    client.force_login(user)
    return client
