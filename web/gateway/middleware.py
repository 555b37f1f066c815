"""Middleware that assigns and propagates per-request context.

Every incoming HTTP request receives a request identifier (UUID), read from
the ``X-Request-Id`` header when the client provides one and generated
server-side otherwise. The identifier is stored on the ``request`` object and
in a context variable so downstream code (log filters, the outbound tax
client) can reach it without passing it explicitly. The ``Idempotency-Key``
header, when present, is exposed the same way so log lines emitted while an
idempotent stage runs can be correlated with the ledger record.

Behavior contract:
- A client supplied ``X-Request-Id`` is reused, otherwise a UUIDv4 is generated.
- The response carries the same id in the ``X-Request-ID`` header.
"""

import contextvars
import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
IDEMPOTENCY_KEY_CTX = contextvars.ContextVar("idempotency_key", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))
API_PREFIXES = ("/admin/", "/store/")


class RequestIdMiddleware(MiddlewareMixin):
    """Set and return a per-request identifier.

    Attributes:
        HEADER (str): Incoming request id header as found in ``request.META``.
        IDEMPOTENCY_HEADER (str): Incoming idempotency key header in
            ``request.META`` casing.
        RESPONSE_HEADER (str): Header name returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    IDEMPOTENCY_HEADER = "HTTP_IDEMPOTENCY_KEY"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        """Attach the request id to the request and the context variables.

        Args:
            request: Django HttpRequest instance.
        """
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)
        IDEMPOTENCY_KEY_CTX.set(request.META.get(self.IDEMPOTENCY_HEADER) or "-")

    def process_response(self, request, response):
        """Echo the request id on the response.

        Args:
            request: Django HttpRequest (may lack attributes in error paths).
            response: Django HttpResponse to modify.

        Returns:
            The same HttpResponse with the ``X-Request-ID`` header set.
        """
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Reject API request bodies above ``API_MAX_BYTES`` with HTTP 413."""

    def process_request(self, request):
        if request.path.startswith(API_PREFIXES):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
