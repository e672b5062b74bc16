"""Stock queries served from the stock ledger.

The catalog decides which stock key a request maps to (the same sized /
non-sized rule the order state machine applies); the ledger answers how many
units that key has. Nothing here reserves anything, so an answer can be stale
by the time an order is placed.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from apps.orders.domain import CatalogPort, NotFound, StockKey, StockLedgerPort, ValidationError

from .models import Product
from .reader import is_sized_category


class AvailabilityCheckDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_id: str = Field(min_length=1, max_length=64)
    size: Optional[str] = Field(default=None, max_length=16)
    quantity: int = Field(ge=1)


@dataclass(frozen=True)
class Availability:
    available: bool
    available_stock: int
    requested_quantity: int
    size: Optional[str] = None

    def to_json(self) -> dict:
        return {
            "available": self.available,
            "available_stock": self.available_stock,
            "requested_quantity": self.requested_quantity,
            "size": self.size,
        }


def check_availability(check: AvailabilityCheckDTO, catalog: CatalogPort, ledger: StockLedgerPort) -> Availability:
    """Tell whether ``quantity`` units of a product (and size) are in stock.

    A size the product is not offered in has no stock.

    Raises:
        NotFound: ``PRODUCT_NOT_FOUND`` for an unknown or inactive product.
        ValidationError: ``SIZE_REQUIRED`` for a sized product without size.
    """
    product = catalog.get_product(check.product_id)
    if product is None or not product.active:
        raise NotFound("PRODUCT_NOT_FOUND", product_id=check.product_id)

    size = (check.size or "").strip() or None
    if product.takes_size(size):
        if size is None:
            raise ValidationError("SIZE_REQUIRED", product_id=product.id)
        if product.variant(size) is None:
            return Availability(False, 0, check.quantity, size)
        key = StockKey(product.id, size)
    else:
        key = StockKey(product.id)

    count = ledger.get_available([key]).get(key, 0)
    return Availability(count >= check.quantity, count, check.quantity, size)


def stock_levels(product: Product, ledger: StockLedgerPort) -> Dict[Optional[str], int]:
    """Available units per size of ``product`` (``None`` for non-sized stock)."""
    sizes = [v.size for v in product.variants.all()]
    if sizes:
        keys = [StockKey(str(product.id), size) for size in sizes]
    elif is_sized_category(product.category):
        return {}
    else:
        keys = [StockKey(str(product.id))]
    counts = ledger.get_available(keys)
    return {key.size: counts.get(key, 0) for key in keys}
