import uuid
from django.db import models


class Product(models.Model):
    """Catalog product. Stock counts live in the stock ledger, keyed by id (and size)."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=120, unique=True, null=True, blank=True)
    description = models.TextField(blank=True, default="")
    category = models.CharField(max_length=32, db_index=True)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    original_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    brand = models.CharField(max_length=64, blank=True, default="")
    material = models.CharField(max_length=64, blank=True, default="")
    tags = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"
        ordering = ["name"]


class ProductVariant(models.Model):
    product = models.ForeignKey(Product, related_name="variants", on_delete=models.CASCADE)
    size = models.CharField(max_length=16)
    sku = models.CharField(max_length=64, blank=True, default="")

    class Meta:
        db_table = "product_variants"
        constraints = [
            models.UniqueConstraint(fields=["product", "size"], name="ux_variant_product_size"),
        ]
