"""Service provider helpers for wiring ``OrderStateMachine`` with its ports.

``get_order_service`` returns a state machine wired with the Django catalog
reader, the ORM repository, the pricing policy from settings, and a stock
ledger. The ledger is the HTTP client for the ledger service when
``settings.USE_HTTP_ADAPTERS`` is truthy (the default), otherwise a
process-wide ``InMemoryStockLedger``. The in-memory ledger is neither durable
nor shared between workers, so it only suits tests and single-process dev.
"""

import threading
from datetime import timedelta

from django.conf import settings

from apps.catalog.reader import DjangoCatalogReader

from .adapters import InMemoryStockLedger
from .domain import OrderStateMachine, StockLedgerPort
from .http_adapters import HttpStockLedgerClient
from .pricing import PricingPolicy
from .repository import OrderRepository

_lock = threading.Lock()
_memory_ledger: InMemoryStockLedger | None = None


def get_stock_ledger() -> StockLedgerPort:
    """Return the configured stock ledger."""
    global _memory_ledger
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpStockLedgerClient()
    with _lock:
        if _memory_ledger is None:
            _memory_ledger = InMemoryStockLedger()
        return _memory_ledger


def reset_stock_ledger(ledger: InMemoryStockLedger | None = None) -> None:
    """Replace (or drop) the in-memory ledger. Intended for tests."""
    global _memory_ledger
    with _lock:
        _memory_ledger = ledger


def get_order_service() -> OrderStateMachine:
    """Return a configured ``OrderStateMachine`` instance."""
    return OrderStateMachine(
        catalog=DjangoCatalogReader(),
        ledger=get_stock_ledger(),
        repository=OrderRepository(),
        pricing=PricingPolicy.from_settings(),
        abandonment_window=timedelta(minutes=settings.ORDER_ABANDONMENT_MINUTES),
        currency=settings.ORDER_CURRENCY,
    )
