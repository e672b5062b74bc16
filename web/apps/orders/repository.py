"""Repository layer for persisting orders.

This module maps domain ``Order`` objects to the Django ORM so the domain
layer is not coupled to ORM details. The state-changing methods are
conditional single-statement updates (``UPDATE ... WHERE status = ...``):
the database decides which of several concurrent callers wins, and the
return value tells the caller whether it did.
"""

import uuid
from datetime import datetime
from typing import Iterable, List

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .domain import (
    NotFound,
    Order,
    OrderLine,
    OrderStatus,
    PaymentStatus,
    StockState,
    Totals,
)
from .events import record_event
from .models import OrderLineModel, OrderModel


def to_domain(obj: OrderModel) -> Order:
    """Build a domain ``Order`` from a model instance (lines included)."""
    return Order(
        id=obj.id,
        customer_id=obj.customer_id,
        lines=[
            OrderLine(
                product_id=line.product_id,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                size=line.size,
                sku=line.sku,
            )
            for line in obj.lines.all()
        ],
        totals=Totals(subtotal=obj.subtotal, tax=obj.tax, shipping=obj.shipping, total=obj.total),
        payment_method=obj.payment_method,
        shipping_address=obj.shipping_address,
        billing_address=obj.billing_address,
        status=OrderStatus(obj.status),
        payment_status=PaymentStatus(obj.payment_status),
        stock_state=StockState(obj.stock_state),
        payment_intent_id=obj.payment_intent_id,
        tracking_number=obj.tracking_number,
        currency=obj.currency,
        order_number=obj.order_number,
        created_at=obj.created_at,
    )


class OrderRepository:
    """Repository that persists Order domain objects using Django ORM."""

    def add(self, order: Order) -> Order:
        """Persist a new order and its line snapshots in one transaction.

        Args:
            order: Domain ``Order`` in ``pending``.

        Returns:
            Order: The stored order, with ``order_number`` and ``created_at``.
        """
        with transaction.atomic():
            obj = OrderModel.objects.create(
                id=order.id,
                customer_id=order.customer_id,
                status=order.status.value,
                payment_status=order.payment_status.value,
                stock_state=order.stock_state.value,
                payment_method=order.payment_method,
                subtotal=order.totals.subtotal,
                tax=order.totals.tax,
                shipping=order.totals.shipping,
                total=order.totals.total,
                currency=order.currency,
                shipping_address=order.shipping_address,
                billing_address=order.billing_address,
            )
            OrderLineModel.objects.bulk_create(
                [
                    OrderLineModel(
                        order=obj,
                        position=pos,
                        product_id=line.product_id,
                        name=line.name,
                        size=line.size,
                        sku=line.sku,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                    )
                    for pos, line in enumerate(order.lines)
                ]
            )
        return self.get(obj.id)

    def get(self, order_id: uuid.UUID) -> Order:
        """Load an order.

        Raises:
            NotFound: When no order has this id.
        """
        try:
            obj = OrderModel.objects.prefetch_related("lines").get(id=order_id)
        except (OrderModel.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFound(order_id=str(order_id))
        return to_domain(obj)

    def claim_finalization(
        self,
        order_id: uuid.UUID,
        payment_status: PaymentStatus,
        status: OrderStatus | None = None,
        payment_intent_id: str | None = None,
    ) -> bool:
        """Move the payment status out of ``pending`` if nobody else has.

        The update only matches while the order is ``pending`` with a
        ``pending`` payment. The intent id is written only if none is stored
        yet (first writer wins).

        Returns:
            bool: True for the single caller whose update matched.
        """
        now = timezone.now()
        with transaction.atomic():
            obj = OrderModel.objects.filter(
                id=order_id,
                status=OrderStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
            )
            values = {"payment_status": payment_status.value, "finalized_at": now, "updated_at": now}
            if status is not None:
                values["status"] = status.value
            updated = obj.update(**values)
            if updated != 1:
                return False
            if payment_intent_id:
                OrderModel.objects.filter(id=order_id, payment_intent_id__isnull=True).update(
                    payment_intent_id=payment_intent_id
                )
            record_event(order_id, (status or OrderStatus.PENDING).value, payment_status.value)
        return True

    def transition(
        self,
        order_id: uuid.UUID,
        from_status: OrderStatus,
        to_status: OrderStatus,
        payment_statuses: Iterable[PaymentStatus] | None = None,
        tracking_number: str | None = None,
    ) -> bool:
        """Change ``status`` only if it still equals ``from_status``.

        Args:
            payment_statuses: When given, the payment status must also be one
                of these values.
            tracking_number: Written together with the status when given.

        Returns:
            bool: Whether the update matched.
        """
        now = timezone.now()
        with transaction.atomic():
            qs = OrderModel.objects.filter(id=order_id, status=from_status.value)
            if payment_statuses is not None:
                qs = qs.filter(payment_status__in=[p.value for p in payment_statuses])
            values = {"status": to_status.value, "updated_at": now}
            if tracking_number:
                values["tracking_number"] = tracking_number
            if qs.update(**values) != 1:
                return False
            payment_status = OrderModel.objects.values_list("payment_status", flat=True).get(id=order_id)
            record_event(order_id, to_status.value, payment_status)
        return True

    def set_payment_intent(self, order_id: uuid.UUID, payment_intent_id: str) -> str:
        """Store the intent id if none is stored; return the stored one.

        Raises:
            NotFound: When no order has this id.
        """
        OrderModel.objects.filter(id=order_id, payment_intent_id__isnull=True).update(
            payment_intent_id=payment_intent_id, updated_at=timezone.now()
        )
        try:
            return OrderModel.objects.values_list("payment_intent_id", flat=True).get(id=order_id)
        except OrderModel.DoesNotExist:
            raise NotFound(order_id=str(order_id))

    def record_stock_state(self, order_id: uuid.UUID, state: StockState) -> None:
        OrderModel.objects.filter(id=order_id, stock_state=StockState.RESERVED.value).update(
            stock_state=state.value, updated_at=timezone.now()
        )

    def expired_pending(self, cutoff: datetime) -> List[uuid.UUID]:
        """Ids of pending, unpaid orders created before ``cutoff``."""
        return list(
            OrderModel.objects.filter(
                status=OrderStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                created_at__lt=cutoff,
            )
            .order_by("created_at")
            .values_list("id", flat=True)
        )

    def unsettled(self) -> List[Order]:
        """Orders that left ``pending`` but whose reservation was not settled."""
        qs = (
            OrderModel.objects.filter(stock_state=StockState.RESERVED.value)
            .filter(
                Q(payment_status__in=[PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value])
                | Q(status=OrderStatus.CANCELLED.value)
            )
            .prefetch_related("lines")
        )
        return [to_domain(obj) for obj in qs]
