"""Catalog Reader: read-only product lookup backed by the Django ORM."""

import uuid
from typing import Optional

from django.conf import settings

from apps.orders.domain import CatalogPort, CatalogProduct, CatalogVariant

from .models import Product


def is_sized_category(category: str) -> bool:
    return category in getattr(settings, "SIZED_CATEGORIES", ["T-Shirts"])


def to_catalog_product(p: Product) -> CatalogProduct:
    return CatalogProduct(
        id=str(p.id),
        name=p.name,
        active=p.is_active,
        price=p.price,
        sized=is_sized_category(p.category),
        variants=tuple(CatalogVariant(size=v.size, sku=v.sku) for v in p.variants.all()),
    )


class DjangoCatalogReader(CatalogPort):
    def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        try:
            pk = uuid.UUID(str(product_id))
        except ValueError:
            return None
        p = Product.objects.prefetch_related("variants").filter(pk=pk).first()
        return to_catalog_product(p) if p else None
