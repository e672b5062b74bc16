import uuid
from django.db import models, transaction
from django.db.models import F


class OrderModel(models.Model):
    # UUID PK exposed by the API; also the reservation id in the ledger
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal incremental counter, source of the order number
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        SHIPPED = "shipped"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"
        REFUNDED = "refunded"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending"
        COMPLETED = "completed"
        FAILED = "failed"

    class StockState(models.TextChoices):
        RESERVED = "reserved"
        COMMITTED = "committed"
        RELEASED = "released"

    customer_id = models.CharField(max_length=64, db_index=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    stock_state = models.CharField(max_length=16, choices=StockState.choices, default=StockState.RESERVED)
    payment_method = models.CharField(max_length=16)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    tax = models.DecimalField(max_digits=12, decimal_places=2)
    shipping = models.DecimalField(max_digits=12, decimal_places=2)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    # set-once gateway correlation token
    payment_intent_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    tracking_number = models.CharField(max_length=64, blank=True, default="")
    shipping_address = models.JSONField(default=dict)
    billing_address = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    finalized_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]
        indexes = [models.Index(fields=["status", "payment_status", "created_at"])]

    @property
    def order_number(self) -> str | None:
        return None if self.internal_id is None else f"DN{self.internal_id:08d}"

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` only on creation, in the same
        # transaction as the insert so the counter row lock covers both
        with transaction.atomic():
            if self.internal_id is None:
                self.internal_id = OrderNumberCounter.next_value("orders")
            super().save(*args, **kwargs)


class OrderNumberCounter(models.Model):
    """Monotonic counter row behind order numbers.

    ``next_value`` increments with a single ``UPDATE`` so concurrent callers
    queue on the row lock and each reads back its own value.
    """

    name = models.CharField(max_length=32, primary_key=True)
    value = models.BigIntegerField(default=0)

    class Meta:
        db_table = "order_number_counters"

    @classmethod
    def next_value(cls, name: str) -> int:
        with transaction.atomic():
            cls.objects.get_or_create(name=name)
            cls.objects.filter(name=name).update(value=F("value") + 1)
            return cls.objects.values_list("value", flat=True).get(name=name)


class OrderLineModel(models.Model):
    """Line snapshot stored verbatim; never recomputed from the catalog."""

    order = models.ForeignKey(OrderModel, related_name="lines", on_delete=models.CASCADE)
    position = models.PositiveIntegerField()
    product_id = models.CharField(max_length=64)
    name = models.CharField(max_length=100)
    size = models.CharField(max_length=16, null=True, blank=True)
    sku = models.CharField(max_length=64, blank=True, default="")
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)

    class Meta:
        db_table = "order_lines"
        ordering = ["position"]
        constraints = [
            models.UniqueConstraint(fields=["order", "position"], name="ux_order_line_position"),
        ]


class OrderEventModel(models.Model):
    """Outbox of order state changes, consumed by fulfillment by polling."""

    seq = models.BigAutoField(primary_key=True)
    order = models.ForeignKey(OrderModel, related_name="events", on_delete=models.CASCADE)
    status = models.CharField(max_length=16)
    payment_status = models.CharField(max_length=16)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_events"
        ordering = ["seq"]


class IdempotencyKey(models.Model):
    """Stored response of an order-create request keyed by ``Idempotency-Key``."""

    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
