"""DRF exception handler mapping domain errors to HTTP responses.

Domain services raise subclasses of ``apps.core.errors.CommerceError``. The
handler renders them as ``{"detail": <code>, "message": <text>}`` with the
status carried by the error class, and defers to DRF's default handler for
everything else (parse errors, method not allowed, ...).
"""

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.core.errors import CommerceError

logger = logging.getLogger("gateway.errors")


def commerce_exception_handler(exc, context):
    """Render ``CommerceError`` instances, fall back to DRF for the rest.

    Args:
        exc: The exception raised by the view.
        context: DRF handler context (view, request, args, kwargs).

    Returns:
        Response | None: A response, or None to let Django produce a 500.
    """
    if isinstance(exc, CommerceError):
        if exc.status_code >= 500:
            logger.error("request failed", extra={"detail": exc.code, "error": exc.message})
        else:
            logger.info("request rejected", extra={"detail": exc.code, "error": exc.message})
        return Response(exc.as_body(), status=exc.status_code)
    return exception_handler(exc, context)
