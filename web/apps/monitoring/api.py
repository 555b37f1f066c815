"""Liveness/health endpoint for the commerce API.

Reports whether the default database answers and the state of the tax
provider circuit breaker. An open circuit degrades tax calculation but the
API stays up, so only the database decides the status code.
"""

import logging

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import tax_circuit_state

logger = logging.getLogger("monitoring")


def _database_ok() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
    except DatabaseError as e:
        logger.error("health check: database unreachable", extra={"error": str(e)})
        return False
    return True


def health_view(_request):
    db_ok = _database_ok()
    circuit = tax_circuit_state()
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "tax_provider": {
                    "mode": "http" if getattr(settings, "USE_HTTP_TAX_PROVIDER", False) else "system",
                    "circuit": circuit,
                },
            },
        },
        status=200 if db_ok else 503,
    )
