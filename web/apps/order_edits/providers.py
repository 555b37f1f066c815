"""Wire ``OrderEditService`` with the pricing services it composes."""

from apps.events.bus import EventBusService
from apps.orders import providers as order_providers

from .item_changes import OrderItemChangeService
from .services import OrderEditService


def get_item_change_service() -> OrderItemChangeService:
    return OrderItemChangeService()


def get_order_edit_service() -> OrderEditService:
    """Return an ``OrderEditService`` using the configured tax provider."""
    return OrderEditService(
        line_items=order_providers.get_line_item_service(),
        totals=order_providers.get_totals_service(),
        adjustments=order_providers.get_adjustment_service(),
        tax_provider=order_providers.get_tax_provider_service(),
        item_changes=get_item_change_service(),
        event_bus=EventBusService(),
    )
