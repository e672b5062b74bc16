"""Stripe implementation of ``GatewayPort`` using the stripe-python SDK."""

import json
import logging

import stripe

from apps.orders.domain import ValidationError

from .domain import GatewayIntent, GatewayUnavailable, SignatureInvalid, WebhookEvent, event_from_payload

logger = logging.getLogger("payments.stripe")


def _to_intent(pi) -> GatewayIntent:
    metadata = getattr(pi, "metadata", None)
    return GatewayIntent(
        intent_id=pi.id,
        status=pi.status,
        client_secret=getattr(pi, "client_secret", None),
        order_id=getattr(metadata, "order_id", None) if metadata is not None else None,
        amount=getattr(pi, "amount", None),
    )


class StripeGateway:
    """Payment intents and webhook verification against the Stripe API."""

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_intent(self, amount_minor: int, currency: str, metadata: dict, idempotency_key: str) -> GatewayIntent:
        try:
            pi = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.InvalidRequestError as e:
            logger.error("stripe rejected intent", extra={"stripe_code": getattr(e, "code", None)})
            raise ValidationError("INVALID_PAYMENT_REQUEST")
        except stripe.StripeError as e:
            logger.warning("stripe unavailable", extra={"error": str(e)})
            raise GatewayUnavailable(service="stripe") from e
        return _to_intent(pi)

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        try:
            pi = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.InvalidRequestError:
            raise ValidationError("INVALID_INTENT", intent_id=intent_id)
        except stripe.StripeError as e:
            logger.warning("stripe unavailable", extra={"error": str(e)})
            raise GatewayUnavailable(service="stripe") from e
        return _to_intent(pi)

    def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError:
            raise SignatureInvalid()
        except ValueError:
            raise SignatureInvalid("INVALID_PAYLOAD")
        # signature checked; parse the body ourselves to stay independent of StripeObject internals
        return event_from_payload(json.loads(payload))
