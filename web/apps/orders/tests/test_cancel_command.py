from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from apps.orders import providers
from apps.orders.domain import CartItem, OrderStatus, StockKey
from apps.orders.models import OrderModel


@pytest.mark.django_db
def test_command_cancels_abandoned_orders(ledger, make_product, address):
    mug = make_product(name="Mug", category="Accessories", price="12.50", stock=2)
    service = providers.get_order_service()
    order = service.create("cust-1", [CartItem(str(mug.id), 2)], address, "paypal")
    OrderModel.objects.filter(id=order.id).update(created_at=timezone.now() - timedelta(hours=1))

    out = StringIO()
    call_command("cancel_expired_orders", stdout=out)

    assert "cancelled=1" in out.getvalue()
    assert service.get(order.id).status == OrderStatus.CANCELLED
    assert ledger.available(StockKey(str(mug.id))) == 2
