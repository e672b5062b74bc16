"""HTTP views for the orders app.

Views are kept intentionally small: they validate requests (via Pydantic),
map them to domain DTOs, delegate to the ``OrderStateMachine`` obtained from
``providers.get_order_service()`` and render the result.

Idempotency: when an ``Idempotency-Key`` header is provided, the create
endpoint stores the response of the first request. Retries with the same
payload return the stored response with its original status and an
``Idempotent-Replay: true`` header. Reusing the key with a different payload
returns HTTP 409.
"""

import logging
import uuid

from django.core.paginator import Paginator
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import (
    CartItem,
    InvalidTransition,
    NotFound,
    OrderError,
    StockError,
    UpstreamUnavailable,
    ValidationError,
)
from .events import events_after
from .idempotency import IN_PROGRESS, discard, finalize, get_or_create_idempotent
from .models import OrderModel
from .repository import to_domain
from .schemas import CreateOrderDTO, OrderReadDTO, StatusUpdateDTO

logger = logging.getLogger("orders")

MAX_PAGE_SIZE = 100


def error_response(exc: OrderError) -> Response:
    """Map a domain error to an HTTP response.

    The body always carries ``detail`` (the error code) plus the error's
    context, e.g. ``line`` for per-line cart errors.
    """
    body = {"detail": exc.code, **{k: v for k, v in exc.context.items() if v is not None}}
    if isinstance(exc, StockError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, NotFound):
        code = status.HTTP_400_BAD_REQUEST if exc.line is not None else status.HTTP_404_NOT_FOUND
    elif isinstance(exc, UpstreamUnavailable):
        body = {"detail": "UPSTREAM_UNAVAILABLE", "service": exc.context.get("service", "ledger")}
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, InvalidTransition):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_409_CONFLICT
    return Response(body, status=code)


def parse_order_id(oid) -> uuid.UUID:
    if isinstance(oid, uuid.UUID):
        return oid
    try:
        return uuid.UUID(str(oid))
    except ValueError:
        raise NotFound(order_id=str(oid))


class OrdersCollectionView(APIView):
    """List orders (GET) and create an order (POST)."""

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        """Paginated order list, newest first.

        Query params: ``customer_id``, ``status``, ``page``, ``page_size``.
        """
        qs = OrderModel.objects.prefetch_related("lines").order_by("-created_at", "-internal_id")
        if request.GET.get("customer_id"):
            qs = qs.filter(customer_id=request.GET["customer_id"])
        if request.GET.get("status"):
            qs = qs.filter(status=request.GET["status"])
        try:
            page = int(request.GET.get("page", 1))
            page_size = min(max(int(request.GET.get("page_size", 20)), 1), MAX_PAGE_SIZE)
        except ValueError:
            return Response({"detail": "INVALID_PAGINATION"}, status=status.HTTP_400_BAD_REQUEST)
        p = Paginator(qs, page_size)
        page_obj = p.get_page(page)

        results = [OrderReadDTO.from_domain(to_domain(o)).to_json() for o in page_obj.object_list]
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": results,
            },
            status=200,
        )

    def post(self, request):
        """Create a new order.

        Returns:
            Response: One of the following responses.
            - 201 with the order when it is created (stock reserved).
            - Stored status/body when the same idempotency key and payload
              are retried.
            - 409 ``IDEMPOTENCY_CONFLICT`` when the key is reused with a
              different payload, ``IDEMPOTENCY_IN_PROGRESS`` while the first
              request is still running.
            - 400 for payload and cart validation errors (with ``line`` for
              per-line errors such as ``PRODUCT_NOT_FOUND``).
            - 422 ``INSUFFICIENT_STOCK`` with the failing ``line``.
            - 503 ``UPSTREAM_UNAVAILABLE`` when the stock ledger is down.
        """
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return Response(
                {"detail": "INVALID_PAYLOAD", "errors": e.errors(include_url=False, include_context=False, include_input=False)},
                status=status.HTTP_400_BAD_REQUEST,
            )

        # 2) Idempotency get-or-create
        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(idem_key, request.data)
            except ValueError:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if rec.response_status == IN_PROGRESS:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        service = providers.get_order_service()
        try:
            order = service.create(
                customer_id=dto.customer_id,
                items=[CartItem(product_id=i.product_id, quantity=i.quantity, size=i.size) for i in dto.items],
                shipping_address=dto.shipping_address.model_dump(),
                billing_address=dto.billing_address.model_dump() if dto.billing_address else None,
                payment_method=dto.payment_method,
            )
        except UpstreamUnavailable as e:
            # transient: let the client retry with the same key
            if rec:
                discard(rec)
            return error_response(e)
        except OrderError as e:
            resp = error_response(e)
            if rec:
                finalize(rec, resp.status_code, resp.data)
            return resp
        except Exception:
            if rec:
                discard(rec)
            raise

        # 4) Response
        body = OrderReadDTO.from_domain(order).to_json()
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        try:
            order = providers.get_order_service().get(parse_order_id(oid))
        except NotFound:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response(OrderReadDTO.from_domain(order).to_json(), status=200)


class OrderStatusView(APIView):
    """Staff-only status change along the transition table."""

    permission_classes = [IsAdminUser]

    def post(self, request, oid):
        try:
            dto = StatusUpdateDTO.model_validate(request.data)
        except PydanticValidationError:
            return Response({"detail": "INVALID_STATUS"}, status=status.HTTP_400_BAD_REQUEST)
        try:
            order = providers.get_order_service().advance(
                parse_order_id(oid), dto.status, tracking_number=dto.tracking_number
            )
        except OrderError as e:
            return error_response(e)
        return Response(OrderReadDTO.from_domain(order).to_json(), status=200)


class OrderEventsView(APIView):
    """Outbox feed of order state changes, polled by fulfillment.

    ``?after=<seq>`` returns events with a greater sequence number.
    """

    permission_classes = [IsAdminUser]

    def get(self, request):
        try:
            after = int(request.GET.get("after", 0))
            limit = min(max(int(request.GET.get("limit", 100)), 1), 500)
        except ValueError:
            return Response({"detail": "INVALID_CURSOR"}, status=status.HTTP_400_BAD_REQUEST)
        events = events_after(after, limit=limit)
        return Response({"results": events, "next": events[-1]["seq"] if events else after})
