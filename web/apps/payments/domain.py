"""Payment Reconciler: mediates between the order state machine and the gateway.

The gateway may report the same payment twice (client confirmation and
webhook), out of order, or long after the fact. The reconciler does not
deduplicate events itself; it relies on ``mark_paid`` and ``mark_failed``
being idempotent terminal operations, so replays collapse to no-ops.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol

from gateway.context import bind_order

from apps.orders.domain import (
    AlreadyFinalized,
    NotFound,
    Order,
    OrderError,
    OrderStateMachine,
    OrderStatus,
    PaymentStatus,
    UpstreamUnavailable,
    ValidationError,
)
from apps.orders.pricing import to_minor_units

logger = logging.getLogger("payments")

SUCCEEDED = "succeeded"
EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"


# ---- Errors ----
class SignatureInvalid(OrderError):
    code = "INVALID_SIGNATURE"


class GatewayUnavailable(UpstreamUnavailable):
    code = "GATEWAY_UNAVAILABLE"


class AlreadyPaid(OrderError):
    code = "ALREADY_PAID"


# ---- DTOs ----
@dataclass(frozen=True)
class GatewayIntent:
    """Gateway handle for a charge attempt correlated to one order."""

    intent_id: str
    status: str
    client_secret: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[int] = None


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    intent_id: Optional[str] = None
    order_id: Optional[str] = None
    status: Optional[str] = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class ConfirmResult:
    order: Order
    gateway_status: str

    @property
    def paid(self) -> bool:
        return self.order.payment_status == PaymentStatus.COMPLETED


# ---- Port ----
class GatewayPort(Protocol):
    """Payment gateway adapter (Stripe in production, ``FakeGateway`` in tests)."""

    def create_intent(self, amount_minor: int, currency: str, metadata: dict, idempotency_key: str) -> GatewayIntent:
        """Create a payment intent.

        Raises:
            GatewayUnavailable: Transient provider failure.
        """
        raise NotImplementedError()

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        raise NotImplementedError()

    def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """Authenticate and parse a webhook delivery.

        Raises:
            SignatureInvalid: The signature does not match the payload.
        """
        raise NotImplementedError()


def event_from_payload(data: dict) -> WebhookEvent:
    """Build a ``WebhookEvent`` from a decoded Stripe-style event body."""
    obj = (data.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}
    return WebhookEvent(
        id=str(data.get("id", "")),
        type=str(data.get("type", "")),
        intent_id=obj.get("id"),
        order_id=metadata.get("order_id"),
        status=obj.get("status"),
        raw=data,
    )


# ---- Service ----
class PaymentReconciler:
    def __init__(self, orders: OrderStateMachine, gateway: GatewayPort):
        self.orders = orders
        self.gateway = gateway

    def initiate(self, order_id: uuid.UUID) -> GatewayIntent:
        """Create (or reuse) the gateway intent of a pending order.

        The intent id is stored set-once on the order, so a second call,
        even a concurrent one, returns the same intent.

        Raises:
            NotFound: Unknown order.
            AlreadyPaid: The payment is already completed.
            AlreadyFinalized: The order left ``pending`` otherwise.
            GatewayUnavailable: Provider unreachable; the order stays pending.
        """
        with bind_order(order_id):
            order = self.orders.get(order_id)
            if order.payment_status == PaymentStatus.COMPLETED:
                raise AlreadyPaid(order_id=str(order_id))
            if order.status != OrderStatus.PENDING or order.payment_status != PaymentStatus.PENDING:
                raise AlreadyFinalized(status=order.status.value, payment_status=order.payment_status.value)

            if order.payment_intent_id:
                return self.gateway.retrieve_intent(order.payment_intent_id)

            intent = self.gateway.create_intent(
                amount_minor=to_minor_units(order.totals.total),
                currency=order.currency.lower(),
                metadata={"order_id": str(order.id), "order_number": order.order_number or ""},
                idempotency_key=f"order-{order.id}",
            )
            stored = self.orders.attach_payment_intent(order.id, intent.intent_id)
            if stored != intent.intent_id:
                logger.info("intent created concurrently, reusing stored one")
                return self.gateway.retrieve_intent(stored)
            logger.info("payment intent created", extra={"intent_id": intent.intent_id})
            return intent

    def confirm_from_client(self, order_id: uuid.UUID, intent_id: str) -> ConfirmResult:
        """Check the intent with the gateway and finalize on success.

        Non-successful statuses are reported back without changing the order.

        Raises:
            ValidationError: ``INTENT_MISMATCH`` when the intent belongs to
                another order.
            NotFound: Unknown order.
            AlreadyFinalized: The order was cancelled or failed before the
                payment succeeded.
        """
        with bind_order(order_id):
            order = self.orders.get(order_id)
            if order.payment_intent_id and order.payment_intent_id != intent_id:
                raise ValidationError("INTENT_MISMATCH", intent_id=intent_id)
            intent = self.gateway.retrieve_intent(intent_id)
            if intent.order_id is not None and intent.order_id != str(order.id):
                raise ValidationError("INTENT_MISMATCH", intent_id=intent_id)
            if intent.status != SUCCEEDED:
                logger.info("client confirmation without success", extra={"gateway_status": intent.status})
                return ConfirmResult(order=order, gateway_status=intent.status)
            return ConfirmResult(order=self.orders.mark_paid(order.id, intent.intent_id), gateway_status=intent.status)

    def confirm_from_webhook(self, payload: bytes, signature: str) -> str:
        """Verify and apply a gateway webhook delivery.

        Returns a short outcome label for logging and the response body.
        Duplicates and late deliveries for finalized orders are successful
        no-ops.

        Raises:
            SignatureInvalid: Authentication failed; the delivery is dropped.
        """
        try:
            event = self.gateway.verify_webhook(payload, signature)
        except SignatureInvalid:
            logger.warning("webhook signature rejected")
            raise

        if event.type not in (EVENT_SUCCEEDED, EVENT_FAILED):
            logger.info("webhook event ignored", extra={"event_type": event.type, "event_id": event.id})
            return "ignored"
        try:
            order_id = uuid.UUID(str(event.order_id))
        except ValueError:
            logger.warning("webhook event without order id", extra={"event_id": event.id})
            return "ignored"

        with bind_order(order_id):
            try:
                if event.type == EVENT_SUCCEEDED:
                    self.orders.mark_paid(order_id, event.intent_id)
                    return "paid"
                self.orders.mark_failed(order_id)
                return "failed"
            except NotFound:
                logger.warning("webhook for unknown order", extra={"event_id": event.id})
                return "ignored"
            except AlreadyFinalized as e:
                logger.warning(
                    "webhook for finalized order",
                    extra={"event_type": event.type, "event_id": event.id, **e.context},
                )
                return "already_finalized"
