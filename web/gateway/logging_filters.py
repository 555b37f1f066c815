"""Logging filters for enriching log records with request context.

The filter copies the current request id and idempotency key from the
context variables set by the gateway middleware onto every log record, so
the JSON formatter configured in ``config.settings.LOGGING`` can reference
``%(request_id)s`` and ``%(idempotency_key)s`` on any line.
"""

from logging import Filter, LogRecord

from .middleware import IDEMPOTENCY_KEY_CTX, REQUEST_ID_CTX


class RequestContextFilter(Filter):
    """Attach ``request_id`` and ``idempotency_key`` to log records.

    Values already present on the record (for example passed through
    ``extra=``) win over the context variables. A hyphen is used when no
    value is known so formatters can always reference both fields.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        if not getattr(record, "idempotency_key", None):
            record.idempotency_key = IDEMPOTENCY_KEY_CTX.get()
        return True
