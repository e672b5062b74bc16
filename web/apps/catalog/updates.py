"""Staff-side catalog mutations.

``ProductUpdateDTO`` is the allow-list of product attributes that may be
changed from outside; anything else in the payload (stock counters, ids,
timestamps) is rejected. Stock changes go through ``restock`` instead, which
sets the ledger's available count; the catalog only records which sizes a
product is offered in.
"""

import logging
import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from apps.orders.domain import NotFound, StockKey, StockLedgerPort, ValidationError

from .models import Product, ProductVariant
from .reader import is_sized_category

logger = logging.getLogger("catalog")


class ProductUpdateDTO(BaseModel):
    """Externally mutable product attributes."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=5000)
    category: Optional[str] = Field(default=None, min_length=1, max_length=32)
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    is_active: Optional[bool] = None
    brand: Optional[str] = Field(default=None, max_length=64)
    material: Optional[str] = Field(default=None, max_length=64)
    tags: Optional[list[str]] = None


class RestockDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    size: Optional[str] = Field(default=None, max_length=16)
    available: int = Field(ge=0)


def _get_product(product_id) -> Product:
    try:
        return Product.objects.get(pk=uuid.UUID(str(product_id)))
    except (Product.DoesNotExist, ValueError):
        raise NotFound("PRODUCT_NOT_FOUND", product_id=str(product_id))


def apply_product_update(product_id, update: ProductUpdateDTO) -> Product:
    """Apply only the fields the caller set.

    Raises:
        NotFound: Unknown product.
    """
    product = _get_product(product_id)
    changes = update.model_dump(exclude_unset=True)
    for name, value in changes.items():
        setattr(product, name, value)
    if changes:
        product.save(update_fields=[*changes.keys(), "updated_at"])
        logger.info("product updated", extra={"product_id": str(product.id), "fields": sorted(changes)})
    return product


def restock(product_id, data: RestockDTO, ledger: StockLedgerPort) -> Product:
    """Set the available count of one stock key of a product.

    A new size is added to the product's variants once the ledger has it.

    Raises:
        NotFound: Unknown product.
        ValidationError: ``SIZE_REQUIRED`` for a sized product without size.
    """
    product = _get_product(product_id)
    size = (data.size or "").strip() or None
    if is_sized_category(product.category) and size is None:
        raise ValidationError("SIZE_REQUIRED", product_id=str(product.id))

    ledger.set_available(StockKey(str(product.id), size), data.available)
    if size is not None:
        ProductVariant.objects.get_or_create(product=product, size=size)
    logger.info(
        "product restocked",
        extra={"product_id": str(product.id), "size": size, "available": data.available},
    )
    return product
