"""HTTP tax provider with retries, a circuit breaker and context headers.

This module implements ``TaxProviderPort`` against the tax service
(``services/tax``) using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
  the gateway middleware.
- Idempotency: sends the ``Idempotency-Key`` carried by the calculation
  context, so a retried cart tax calculation reuses the tax service's
  stored answer. Only ledger-guarded callers put a key on the context.
- A circuit breaker in front of the tax service to avoid hammering it while
  unhealthy, with a HALF_OPEN trial call after a timeout.
- A retry policy with exponential backoff for transport errors and 5xx.

Every failure that survives the retries is raised as ``UpstreamUnavailable``
so the API layer renders it like any other commerce error.
"""

import logging
import threading
import time
import uuid
from decimal import Decimal
from typing import List, Optional

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from apps.core.errors import UpstreamUnavailable

from .domain import CalculationContext, TaxLineData, TaxProviderPort

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")

logger = logging.getLogger("orders.tax_http")


# ---------------- Circuit Breaker ---------------- #

class CircuitOpenError(RuntimeError):
    """Raised by ``CircuitBreaker.before_call`` when a call is not let through."""


class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful trial call; only one may be in
      flight; a failed one opens the circuit again.

    Thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_trial_in_flight = False

    @property
    def state(self) -> str:
        """Current state, applying the OPEN → HALF_OPEN timeout transition."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_trial_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check the breaker before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            CircuitOpenError: ``CIRCUIT_OPEN`` when open, ``CIRCUIT_HALF_OPEN_BUSY``
                when a HALF_OPEN trial call is already running.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpenError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_trial_in_flight:
                    raise CircuitOpenError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_trial_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            if self._state != "CLOSED":
                logger.info("circuit closed", extra={"circuit": self.name})
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_trial_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._failures >= self.fail_threshold and self._state != "OPEN":
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_trial_in_flight = False
                logger.warning("circuit opened", extra={"circuit": self.name, "failures": self._failures})

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_trial_in_flight = False


_tax_cb = CircuitBreaker(
    "tax",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


def tax_circuit_state() -> str:
    return _tax_cb.state


# ---------------- Helpers ---------------- #

def _request_headers(context: CalculationContext, extra: Optional[dict] = None) -> dict:
    """Build outgoing headers with X-Request-ID, the context's Idempotency-Key and extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if context.idempotency_key:
        headers["Idempotency-Key"] = context.idempotency_key
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _optional_uuid(value) -> Optional[uuid.UUID]:
    return uuid.UUID(str(value)) if value else None


# ---------------- Tax Adapter ---------------- #

class HttpTaxProviderClient(TaxProviderPort):
    """HTTP client for the tax service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.TAX_SERVICE_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _payload(self, items: List[object], context: CalculationContext) -> dict:
        return {
            "region_id": str(context.region.id),
            "items": [
                {
                    "item_id": str(it.id),
                    "unit_price": it.unit_price,
                    "quantity": it.quantity,
                    "discount": context.allocation_map.get(it.id, 0),
                }
                for it in items
            ],
            "shipping_methods": [
                {"shipping_method_id": str(sm.id), "price": sm.price}
                for sm in context.shipping_methods
            ],
        }

    def get_tax_lines(self, items: List[object], context: CalculationContext) -> List[TaxLineData]:
        """Fetch tax lines from the tax service.

        Business mappings:
        - 200 → the ``lines`` of the body
        - 404 → no rates configured for the region, no lines (not a circuit failure)

        Args:
            items: Saved line items to tax.
            context: Calculation context (region, shipping, allocations and
                the optional idempotency key).

        Returns:
            List[TaxLineData]: Lines for items and shipping methods.

        Raises:
            UpstreamUnavailable: For transport errors after retries,
                non-retriable non-2xx responses and an open circuit.
        """
        try:
            return self._fetch_tax_lines(items, context)
        except (httpx.HTTPError, CircuitOpenError) as e:
            logger.error("tax service unavailable", extra={"error": str(e)})
            raise UpstreamUnavailable(f"Tax service unavailable: {e}") from e

    def _fetch_tax_lines(self, items: List[object], context: CalculationContext) -> List[TaxLineData]:
        payload = self._payload(items, context)
        max_retries, backoff = _retry_policy()
        tries = 0

        state = _tax_cb.before_call()
        headers = _request_headers(context, {"X-Circuit-State": state, "X-Retry-Count": "0"})

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.post(f"{self.base_url}/tax-lines", json=payload, headers=headers or None)
                        if resp.status_code == 200:
                            _tax_cb.on_success()
                            return [
                                TaxLineData(
                                    rate=Decimal(str(line["rate"])),
                                    name=line.get("name", ""),
                                    code=line.get("code") or "",
                                    item_id=_optional_uuid(line.get("item_id")),
                                    shipping_method_id=_optional_uuid(line.get("shipping_method_id")),
                                )
                                for line in resp.json().get("lines", [])
                            ]
                        if resp.status_code == 404:
                            _tax_cb.on_success()
                            return []
                        if not _should_retry(resp, None):
                            resp.raise_for_status()
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)
                    logger.warning(
                        "tax service call failed",
                        extra={"tries": tries, "status": getattr(resp, "status_code", None)},
                    )

                    if tries >= max_retries or not _should_retry(resp, exc):
                        _tax_cb.on_failure()
                        if exc:
                            raise exc
                        resp.raise_for_status()

                    sleep_s = backoff * (2 ** (tries - 1))
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    time.sleep(min(sleep_s, cap))
        finally:
            _tax_cb.on_finish()
