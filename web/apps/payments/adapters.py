"""Configurable fake payment gateway for development and testing.

This adapter simulates Stripe's intent API without any external calls. Intents
live in memory; tests move them between statuses with ``set_status`` and
produce signed webhook deliveries with ``sign``. Signatures use the same
``t=<timestamp>,v1=<hmac>`` header layout as Stripe, keyed by
``STRIPE_WEBHOOK_SECRET``.
"""

import hashlib
import hmac
import json
import threading
import time
from uuid import uuid4

from apps.orders.domain import ValidationError

from .domain import GatewayIntent, GatewayUnavailable, SignatureInvalid, WebhookEvent, event_from_payload


class FakeGateway:
    """In-memory gateway implementing ``GatewayPort``."""

    def __init__(self, webhook_secret: str = "whsec_dev") -> None:
        self.webhook_secret = webhook_secret
        self.available: bool = True
        self.calls: list[dict] = []
        self._intents: dict[str, GatewayIntent] = {}
        self._by_idempotency_key: dict[str, str] = {}
        self._lock = threading.Lock()

    def configure(self, available: bool = True) -> None:
        """Toggle availability; an unavailable gateway raises on every call."""
        self.available = available

    def _check(self):
        if not self.available:
            raise GatewayUnavailable(service="gateway")

    def create_intent(self, amount_minor: int, currency: str, metadata: dict, idempotency_key: str) -> GatewayIntent:
        self.calls.append({"method": "create_intent", "amount": amount_minor, "currency": currency, "idempotency_key": idempotency_key})
        self._check()
        with self._lock:
            existing = self._by_idempotency_key.get(idempotency_key)
            if existing:
                return self._intents[existing]
            intent_id = f"pi_fake_{uuid4().hex[:16]}"
            intent = GatewayIntent(
                intent_id=intent_id,
                status="requires_payment_method",
                client_secret=f"{intent_id}_secret_{uuid4().hex[:12]}",
                order_id=metadata.get("order_id"),
                amount=amount_minor,
            )
            self._intents[intent_id] = intent
            self._by_idempotency_key[idempotency_key] = intent_id
            return intent

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        self.calls.append({"method": "retrieve_intent", "intent_id": intent_id})
        self._check()
        with self._lock:
            if intent_id not in self._intents:
                # Stripe answers 404 (InvalidRequestError) for unknown intents
                raise ValidationError("INVALID_INTENT", intent_id=intent_id)
            return self._intents[intent_id]

    def set_status(self, intent_id: str, status: str) -> GatewayIntent:
        with self._lock:
            old = self._intents[intent_id]
            new = GatewayIntent(old.intent_id, status, old.client_secret, old.order_id, old.amount)
            self._intents[intent_id] = new
            return new

    # ---- webhooks ----
    def _digest(self, timestamp: str, payload: bytes) -> str:
        signed = timestamp.encode() + b"." + payload
        return hmac.new(self.webhook_secret.encode(), signed, hashlib.sha256).hexdigest()

    def sign(self, payload: bytes, timestamp: int | None = None) -> str:
        """Return a ``Stripe-Signature`` style header for ``payload``."""
        ts = str(timestamp if timestamp is not None else int(time.time()))
        return f"t={ts},v1={self._digest(ts, payload)}"

    def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        self.calls.append({"method": "verify_webhook"})
        parts = dict(p.split("=", 1) for p in (signature or "").split(",") if "=" in p)
        ts, v1 = parts.get("t"), parts.get("v1")
        if not ts or not v1 or not hmac.compare_digest(self._digest(ts, payload), v1):
            raise SignatureInvalid()
        try:
            data = json.loads(payload)
        except ValueError:
            raise SignatureInvalid("INVALID_PAYLOAD")
        return event_from_payload(data)


def webhook_payload(event_type: str, intent_id: str, order_id: str, status: str = "succeeded") -> bytes:
    """Serialize a minimal Stripe-style event body."""
    return json.dumps(
        {
            "id": f"evt_{uuid4().hex[:16]}",
            "type": event_type,
            "data": {"object": {"id": intent_id, "status": status, "metadata": {"order_id": order_id}}},
        }
    ).encode()
