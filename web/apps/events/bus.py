"""Event bus used by the domain services to announce lifecycle transitions.

Emitting stages a ``StagedEvent`` row inside the caller's transaction: if the
operation rolls back, the event disappears with it. Delivery to subscribers
(notifications, analytics) is handled elsewhere.
"""

import logging

from apps.core.context import TransactionScope

from .models import StagedEvent

logger = logging.getLogger("events")


class EventBusService:
    """Stage events for later delivery."""

    def emit(self, scope: TransactionScope, event_name: str, data: dict) -> StagedEvent:
        """Stage ``event_name`` with ``data`` in the scope's transaction.

        Args:
            scope: Transaction scope of the operation emitting the event.
            event_name: Dotted event name, e.g. ``order-edit.confirmed``.
            data: JSON-serializable payload, at minimum the entity id.

        Returns:
            StagedEvent: The staged row.
        """
        event = scope.objects(StagedEvent).create(event_name=event_name, data=data)
        logger.info("event staged", extra={"event_name": event_name, "event_data": data})
        return event
