"""Domain models, ports and the order state machine.

This module contains the dataclasses used as DTOs for orders, the error
taxonomy of the pipeline, protocol definitions (ports) for the collaborators
the state machine depends on (catalog, stock ledger, order repository), and
``OrderStateMachine`` which owns the order lifecycle.

The central rule is that an order leaves ``pending`` exactly once. Every
terminal operation goes through a conditional update in the repository (a
"claim") that only succeeds while the order is still ``pending``; whoever
wins the claim performs the stock ledger side effect, everyone else observes
the already-finalized order and does nothing.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol

from gateway.context import bind_order

logger = logging.getLogger("orders")


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle status of an order."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class StockState(str, Enum):
    """Where the order's reservation stands in the stock ledger."""

    RESERVED = "reserved"
    COMMITTED = "committed"
    RELEASED = "released"


TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

PAYMENT_METHODS = ("stripe", "paypal", "cod")
ADDRESS_REQUIRED_FIELDS = ("first_name", "last_name", "street", "city", "zip_code")


# ---- Errors ----
class OrderError(Exception):
    """Base class for pipeline errors.

    ``str(error)`` is a short upper-case code (for example
    ``INSUFFICIENT_STOCK``) that views map to HTTP responses. Extra keyword
    arguments are kept in ``context`` and returned to the caller.
    """

    code = "ORDER_ERROR"

    def __init__(self, code: str | None = None, **context):
        self.code = code or self.code
        self.context = context
        super().__init__(self.code)

    @property
    def line(self) -> int | None:
        return self.context.get("line")


class ValidationError(OrderError, ValueError):
    code = "INVALID_ORDER"


class StockError(OrderError, ValueError):
    code = "INSUFFICIENT_STOCK"


class NotFound(OrderError, LookupError):
    code = "NOT_FOUND"


class AlreadyFinalized(OrderError):
    code = "ALREADY_FINALIZED"


class InvalidTransition(OrderError, ValueError):
    code = "INVALID_TRANSITION"


class UpstreamUnavailable(OrderError, RuntimeError):
    """A downstream dependency (ledger service, payment gateway) is unreachable."""

    code = "UPSTREAM_UNAVAILABLE"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class StockKey:
    """One countable inventory pool: a product, optionally a size of it."""

    product_id: str
    size: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.product_id}:{self.size}" if self.size else self.product_id


@dataclass(frozen=True)
class StockLine:
    key: StockKey
    quantity: int


@dataclass(frozen=True)
class CatalogVariant:
    size: str
    sku: str = ""


@dataclass(frozen=True)
class CatalogProduct:
    """Read-only view of a product as supplied by the catalog.

    Attributes:
        id: Product identifier.
        name: Display name, copied into order lines.
        active: Inactive products cannot be ordered.
        price: Current unit price.
        sized: True when the product's category requires a size.
        variants: Size variants offered for the product. Their stock lives
            in the stock ledger.
    """

    id: str
    name: str
    active: bool
    price: Decimal
    sized: bool = False
    variants: tuple = ()

    def takes_size(self, size: str | None) -> bool:
        """Whether a line with this ``size`` is counted per size."""
        return self.sized or (size is not None and bool(self.variants))

    def variant(self, size: str | None) -> CatalogVariant | None:
        for v in self.variants:
            if v.size == size:
                return v
        return None


@dataclass(frozen=True)
class CartItem:
    """A line of the cart as submitted by the customer."""

    product_id: str
    quantity: int
    size: Optional[str] = None


@dataclass(frozen=True)
class OrderLine:
    """A line item frozen at order creation.

    Price, name and size are snapshots; later catalog changes never alter
    them.
    """

    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    size: Optional[str] = None
    sku: str = ""

    @property
    def key(self) -> StockKey:
        return StockKey(self.product_id, self.size)

    @property
    def stock_line(self) -> StockLine:
        return StockLine(self.key, self.quantity)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


@dataclass
class Order:
    """Aggregate root of the pipeline.

    Attributes:
        id: Identifier assigned at creation; also the stock reservation id.
        customer_id: Reference to the customer placing the order.
        lines: Frozen line snapshots.
        totals: Totals computed at creation.
        payment_method: One of ``PAYMENT_METHODS``.
        shipping_address: Address fields as submitted.
        billing_address: Defaults to the shipping address.
        status: Current ``OrderStatus``.
        payment_status: Current ``PaymentStatus``.
        stock_state: Ledger state of the order's reservation.
        payment_intent_id: Gateway intent id, set at most once.
        tracking_number: Carrier tracking number set by staff on shipment.
        currency: ISO currency code.
        order_number: Human-facing number assigned by persistence.
        created_at: Creation timestamp assigned by persistence.
    """

    id: uuid.UUID
    customer_id: str
    lines: List[OrderLine]
    totals: Totals
    payment_method: str
    shipping_address: dict = field(default_factory=dict)
    billing_address: dict = field(default_factory=dict)
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    stock_state: StockState = StockState.RESERVED
    payment_intent_id: Optional[str] = None
    tracking_number: str = ""
    currency: str = "USD"
    order_number: Optional[str] = None
    created_at: Optional[datetime] = None

    def stock_lines(self) -> List[StockLine]:
        return [line.stock_line for line in self.lines]


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Read-only product lookup."""

    def get_product(self, product_id: str) -> Optional[CatalogProduct]:
        """Return the product, or None when it does not exist."""
        raise NotImplementedError()


class StockLedgerPort(Protocol):
    """Port describing the stock ledger used by the state machine.

    Every call names the reservation it belongs to (the order id). Replaying
    a call for the same reservation has no further effect.
    """

    def reserve(self, reservation_id: str, lines: List[StockLine]) -> None:
        """Decrement every line atomically.

        Raises:
            StockError: With ``line`` set to the index of the first line that
                cannot be covered. Nothing is decremented in that case.
            UpstreamUnavailable: When the ledger cannot be reached.
        """
        raise NotImplementedError()

    def commit(self, reservation_id: str, lines: List[StockLine]) -> None:
        """Mark the reservation as sold (sales counter only)."""
        raise NotImplementedError()

    def release(self, reservation_id: str, lines: List[StockLine]) -> None:
        """Give the reserved units back to stock."""
        raise NotImplementedError()

    def set_available(self, key: StockKey, available: int) -> None:
        """Set the available count of a stock key (restock)."""
        raise NotImplementedError()

    def get_available(self, keys: List[StockKey]) -> Dict[StockKey, int]:
        """Current available count per key (0 for unknown keys)."""
        raise NotImplementedError()


class PricingPort(Protocol):
    def price(self, lines: Iterable[OrderLine]) -> Totals:
        raise NotImplementedError()


class OrderRepositoryPort(Protocol):
    """Persistence operations the state machine relies on.

    ``claim_finalization`` and ``transition`` must be conditional updates:
    they return False, without writing, when the order is no longer in the
    expected state.
    """

    def add(self, order: Order) -> Order: ...

    def get(self, order_id: uuid.UUID) -> Order: ...

    def claim_finalization(
        self,
        order_id: uuid.UUID,
        payment_status: PaymentStatus,
        status: OrderStatus | None = None,
        payment_intent_id: str | None = None,
    ) -> bool: ...

    def transition(
        self,
        order_id: uuid.UUID,
        from_status: OrderStatus,
        to_status: OrderStatus,
        payment_statuses: Iterable[PaymentStatus] | None = None,
        tracking_number: str | None = None,
    ) -> bool: ...

    def set_payment_intent(self, order_id: uuid.UUID, payment_intent_id: str) -> str: ...

    def record_stock_state(self, order_id: uuid.UUID, state: StockState) -> None: ...

    def expired_pending(self, cutoff: datetime) -> List[uuid.UUID]: ...

    def unsettled(self) -> List[Order]: ...


# ---- Domain service ----
class OrderStateMachine:
    """Owns the order lifecycle and its link to stock and payment state.

    The service does no I/O of its own: the catalog, the stock ledger, the
    pricing policy and the repository are injected.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        ledger: StockLedgerPort,
        repository: OrderRepositoryPort,
        pricing: PricingPort,
        abandonment_window: timedelta = timedelta(minutes=30),
        currency: str = "USD",
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.repository = repository
        self.pricing = pricing
        self.abandonment_window = abandonment_window
        self.currency = currency

    # -- creation --
    def create(
        self,
        customer_id: str,
        items: List[CartItem],
        shipping_address: dict,
        payment_method: str,
        billing_address: dict | None = None,
    ) -> Order:
        """Validate the cart, reserve its stock and persist a pending order.

        Raises:
            ValidationError: Empty cart, missing customer or address field,
                unsupported payment method, missing size for a sized product.
            NotFound: ``PRODUCT_NOT_FOUND`` for an unknown or inactive
                product, with ``line`` set.
            StockError: A line cannot be covered; nothing was reserved.
            UpstreamUnavailable: The ledger could not be reached. The
                reservation is released on a best-effort basis because the
                ledger may have applied it before the reply was lost.
        """
        if not items:
            raise ValidationError("EMPTY_ORDER")
        if not customer_id:
            raise ValidationError("CUSTOMER_REQUIRED")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError("INVALID_PAYMENT_METHOD", payment_method=payment_method)
        address = shipping_address or {}
        for name in ADDRESS_REQUIRED_FIELDS:
            if not str(address.get(name) or "").strip():
                raise ValidationError("MISSING_ADDRESS_FIELD", field=name)

        lines = [self._resolve(idx, item) for idx, item in enumerate(items)]
        order_id = uuid.uuid4()
        stock_lines = [line.stock_line for line in lines]

        with bind_order(order_id):
            try:
                self.ledger.reserve(str(order_id), stock_lines)
            except UpstreamUnavailable:
                self._release_orphan(order_id, stock_lines)
                raise
            order = Order(
                id=order_id,
                customer_id=str(customer_id),
                lines=lines,
                totals=self.pricing.price(lines),
                payment_method=payment_method,
                shipping_address=dict(address),
                billing_address=dict(billing_address or address),
                currency=self.currency,
            )
            try:
                saved = self.repository.add(order)
            except Exception:
                logger.exception("order persistence failed, releasing reservation")
                self.ledger.release(str(order_id), stock_lines)
                raise
            logger.info(
                "order created",
                extra={"total": str(saved.totals.total), "lines": len(lines)},
            )
            return saved

    def _resolve(self, idx: int, item: CartItem) -> OrderLine:
        """Turn a cart item into a frozen order line using the catalog."""
        if item.quantity <= 0:
            raise ValidationError("INVALID_QUANTITY", line=idx)
        product = self.catalog.get_product(item.product_id)
        if product is None or not product.active:
            raise NotFound("PRODUCT_NOT_FOUND", line=idx, product_id=item.product_id)

        size = (item.size or "").strip() or None
        sized = product.takes_size(size)
        if sized and size is None:
            raise ValidationError("SIZE_REQUIRED", line=idx, product_id=product.id)
        variant = product.variant(size) if sized else None
        return OrderLine(
            product_id=product.id,
            name=product.name,
            quantity=item.quantity,
            unit_price=product.price,
            size=size if sized else None,
            sku=variant.sku if variant else "",
        )

    def _release_orphan(self, order_id: uuid.UUID, stock_lines: List[StockLine]) -> None:
        """Undo a reservation whose outcome is unknown; no order refers to it.

        The ledger keeps a released marker even for an id it has not seen, so
        a reserve that reaches it later cannot take the units.
        """
        try:
            self.ledger.release(str(order_id), stock_lines)
        except UpstreamUnavailable:
            logger.error("reservation outcome unknown and release failed", extra={"lines": len(stock_lines)})
        else:
            logger.warning("reservation released after ledger failure")

    # -- reads --
    def get(self, order_id: uuid.UUID) -> Order:
        return self.repository.get(order_id)

    def attach_payment_intent(self, order_id: uuid.UUID, payment_intent_id: str) -> str:
        """Store the gateway intent id once; return whichever id is stored."""
        return self.repository.set_payment_intent(order_id, payment_intent_id)

    # -- finalization --
    def mark_paid(self, order_id: uuid.UUID, payment_intent_id: str | None = None) -> Order:
        """Record a successful payment exactly once.

        A repeated call for an order whose payment is already completed
        returns the order unchanged and does not touch the ledger.

        Raises:
            NotFound: Unknown order.
            AlreadyFinalized: The order left ``pending`` some other way
                (payment failed, order cancelled).
        """
        with bind_order(order_id):
            order = self.repository.get(order_id)
            if order.payment_status == PaymentStatus.COMPLETED:
                logger.info("duplicate payment confirmation ignored")
                return order
            claimed = self.repository.claim_finalization(
                order_id,
                payment_status=PaymentStatus.COMPLETED,
                status=OrderStatus.PROCESSING,
                payment_intent_id=payment_intent_id,
            )
            if not claimed:
                current = self.repository.get(order_id)
                if current.payment_status == PaymentStatus.COMPLETED:
                    logger.info("payment confirmed concurrently by another channel")
                    return current
                raise AlreadyFinalized(
                    status=current.status.value, payment_status=current.payment_status.value
                )
            logger.info("order paid")
            return self._settle(self.repository.get(order_id))

    def mark_failed(self, order_id: uuid.UUID) -> Order:
        """Record a failed payment exactly once and release the stock.

        The order status is left as is; only the payment status moves.

        Raises:
            NotFound: Unknown order.
            AlreadyFinalized: The order left ``pending`` some other way.
        """
        with bind_order(order_id):
            order = self.repository.get(order_id)
            if order.payment_status == PaymentStatus.FAILED:
                return order
            if not self.repository.claim_finalization(order_id, payment_status=PaymentStatus.FAILED):
                current = self.repository.get(order_id)
                if current.payment_status == PaymentStatus.FAILED:
                    return current
                raise AlreadyFinalized(
                    status=current.status.value, payment_status=current.payment_status.value
                )
            logger.info("order payment failed")
            return self._settle(self.repository.get(order_id))

    def cancel_expired_pending(self, now: datetime) -> List[uuid.UUID]:
        """Cancel pending orders older than the abandonment window.

        Each candidate is cancelled through a conditional update that
        re-checks ``pending``/``pending``; orders finalized between selection
        and cancellation are skipped.

        Returns:
            list[uuid.UUID]: Ids of the orders cancelled by this call.
        """
        cutoff = now - self.abandonment_window
        cancelled = []
        for order_id in self.repository.expired_pending(cutoff):
            with bind_order(order_id):
                if not self.repository.transition(
                    order_id,
                    OrderStatus.PENDING,
                    OrderStatus.CANCELLED,
                    payment_statuses=[PaymentStatus.PENDING],
                ):
                    logger.info("expired order finalized concurrently, skipped")
                    continue
                logger.info("abandoned order cancelled")
                self._settle(self.repository.get(order_id))
                cancelled.append(order_id)
        return cancelled

    def advance(self, order_id: uuid.UUID, target, tracking_number: str | None = None) -> Order:
        """Move an order along the transition table (staff action).

        ``pending -> processing`` only happens through ``mark_paid``;
        ``shipped`` and ``delivered`` require a completed payment. Cancelling
        a pending order releases its stock. A ``tracking_number`` is stored
        together with the new status.

        Raises:
            ValidationError: ``target`` is not a known status.
            InvalidTransition: The move is not allowed from the current state
                or the order changed concurrently.
        """
        try:
            target = OrderStatus(target)
        except ValueError:
            raise ValidationError("INVALID_STATUS", status=str(target))

        with bind_order(order_id):
            order = self.repository.get(order_id)
            if target not in TRANSITIONS[order.status]:
                raise InvalidTransition(from_status=order.status.value, to_status=target.value)
            if target == OrderStatus.PROCESSING or (
                target in (OrderStatus.SHIPPED, OrderStatus.DELIVERED)
                and order.payment_status != PaymentStatus.COMPLETED
            ):
                raise InvalidTransition("PAYMENT_NOT_COMPLETED", to_status=target.value)

            allowed_payments = None
            if order.status == OrderStatus.PENDING:
                allowed_payments = [PaymentStatus.PENDING, PaymentStatus.FAILED]
            if not self.repository.transition(
                order_id,
                order.status,
                target,
                payment_statuses=allowed_payments,
                tracking_number=(tracking_number or "").strip() or None,
            ):
                raise InvalidTransition("CONCURRENT_UPDATE", from_status=order.status.value, to_status=target.value)
            logger.info("order status changed", extra={"from": order.status.value, "to": target.value})
            updated = self.repository.get(order_id)
            if updated.status == OrderStatus.CANCELLED and order.status == OrderStatus.PENDING:
                updated = self._settle(updated)
            return updated

    def settle_unsettled(self) -> int:
        """Retry ledger commit/release for finalized orders whose call failed."""
        settled = 0
        for order in self.repository.unsettled():
            with bind_order(order.id):
                if self._settle(order).stock_state != StockState.RESERVED:
                    settled += 1
        return settled

    def _settle(self, order: Order) -> Order:
        """Apply the ledger effect matching the order's final state.

        Completed payments commit the reservation, anything else that left
        ``pending`` releases it. A ledger outage leaves the order finalized
        with ``stock_state == reserved`` for ``settle_unsettled``.
        """
        if order.stock_state != StockState.RESERVED:
            return order
        reservation_id = str(order.id)
        try:
            if order.payment_status == PaymentStatus.COMPLETED:
                self.ledger.commit(reservation_id, order.stock_lines())
                state = StockState.COMMITTED
            else:
                self.ledger.release(reservation_id, order.stock_lines())
                state = StockState.RELEASED
        except UpstreamUnavailable:
            logger.warning("stock settlement deferred, ledger unavailable")
            return order
        self.repository.record_stock_state(order.id, state)
        order.stock_state = state
        return order
