"""HTTP views for payments.

``intents/`` and ``confirm/`` are called by the storefront client;
``webhook/`` is called by the gateway with the raw event body and a
``Stripe-Signature`` header. The webhook answers 200 for every authentic
delivery, including duplicates and events for finalized orders, so the
gateway stops retrying them.
"""

import logging
import uuid

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.orders.domain import PAYMENT_METHODS, OrderError, UpstreamUnavailable
from apps.orders.schemas import OrderReadDTO
from apps.orders.views import error_response

from . import providers
from .domain import SignatureInvalid

logger = logging.getLogger("payments")

METHOD_LABELS = {
    "stripe": "Credit / debit card",
    "paypal": "PayPal",
    "cod": "Cash on delivery",
}


class IntentRequest(BaseModel):
    order_id: uuid.UUID


class ConfirmRequest(BaseModel):
    order_id: uuid.UUID
    payment_intent_id: str = Field(min_length=1, max_length=255)


def _invalid(e: PydanticValidationError) -> Response:
    return Response(
        {"detail": "INVALID_PAYLOAD", "errors": e.errors(include_url=False, include_context=False, include_input=False)},
        status=status.HTTP_400_BAD_REQUEST,
    )


class PaymentIntentView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request):
        try:
            dto = IntentRequest.model_validate(request.data)
        except PydanticValidationError as e:
            return _invalid(e)
        try:
            intent = providers.get_reconciler().initiate(dto.order_id)
        except OrderError as e:
            return error_response(e)
        return Response(
            {"order_id": str(dto.order_id), "payment_intent_id": intent.intent_id, "client_secret": intent.client_secret},
            status=status.HTTP_200_OK,
        )


class PaymentConfirmView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request):
        try:
            dto = ConfirmRequest.model_validate(request.data)
        except PydanticValidationError as e:
            return _invalid(e)
        try:
            result = providers.get_reconciler().confirm_from_client(dto.order_id, dto.payment_intent_id)
        except OrderError as e:
            return error_response(e)
        if not result.paid:
            return Response(
                {"detail": "PAYMENT_NOT_COMPLETED", "gateway_status": result.gateway_status},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return Response(OrderReadDTO.from_domain(result.order).to_json(), status=status.HTTP_200_OK)


@csrf_exempt
def stripe_webhook(request):
    """Plain Django view: the signature covers the exact raw body bytes."""
    if request.method != "POST":
        return JsonResponse({"detail": "METHOD_NOT_ALLOWED"}, status=405)
    signature = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    try:
        outcome = providers.get_reconciler().confirm_from_webhook(request.body, signature)
    except SignatureInvalid as e:
        return JsonResponse({"detail": e.code}, status=400)
    except UpstreamUnavailable as e:
        # the gateway retries non-2xx deliveries later
        logger.warning("webhook processing failed", extra={"error": e.code})
        return JsonResponse({"detail": e.code}, status=503)
    return JsonResponse({"received": True, "outcome": outcome})


@api_view(["GET"])
@authentication_classes([])
@permission_classes([])
def payment_methods(request):
    return Response({"methods": [{"id": m, "label": METHOD_LABELS[m]} for m in PAYMENT_METHODS]})
