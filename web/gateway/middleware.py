"""Request correlation and API payload limits.

``RequestIdMiddleware`` gives each request an id: the client's
``X-Request-Id`` header when present, a fresh UUIDv4 otherwise. The id is
stored on the request and in ``REQUEST_ID_CTX`` so the ledger client can
forward it and ``RequestIdFilter`` can stamp it on log records. The same id is
echoed back in the ``X-Request-ID`` response header.

gunicorn reuses worker threads across requests, so the bound order id is reset
to "-" whenever a request starts.
"""

import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from .context import ORDER_ID_CTX, REQUEST_ID_CTX

MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Bind a request id for the duration of a request and echo it back."""

    HEADER = "HTTP_X_REQUEST_ID"       # request.META key of the client header
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)
        ORDER_ID_CTX.set("-")

    def process_response(self, request, response):
        """Set ``X-Request-ID``, falling back to the context var."""
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Reject API bodies above ``API_MAX_BYTES`` before they are read.

    Carts and gateway webhook events are small; anything larger is refused
    with 413 without touching the pipeline.
    """

    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
