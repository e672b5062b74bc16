"""Payment gateway factory.

``get_gateway()`` / ``set_gateway()`` swap implementations:
- ``FakeGateway`` for development and testing (``PAYMENT_GATEWAY=fake``)
- ``StripeGateway`` for production (``PAYMENT_GATEWAY=stripe``)
"""

from django.conf import settings

from apps.orders.providers import get_order_service

from .adapters import FakeGateway
from .domain import GatewayPort, PaymentReconciler
from .stripe_adapter import StripeGateway

_current_gateway: GatewayPort | None = None


def get_gateway() -> GatewayPort:
    """Return the current payment gateway, building it from settings once."""
    global _current_gateway
    if _current_gateway is None:
        if settings.PAYMENT_GATEWAY == "stripe":
            _current_gateway = StripeGateway(settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET)
        else:
            _current_gateway = FakeGateway(webhook_secret=settings.STRIPE_WEBHOOK_SECRET)
    return _current_gateway


def set_gateway(gateway: GatewayPort) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None


def get_reconciler() -> PaymentReconciler:
    return PaymentReconciler(orders=get_order_service(), gateway=get_gateway())
