"""Service provider helpers wiring the pricing services with their ports.

Views call these factories instead of constructing services themselves, so
tests can monkeypatch a factory (or flip ``settings.USE_HTTP_TAX_PROVIDER``)
to swap implementations without touching view code.
"""

from django.conf import settings

from .adapters import SystemTaxProvider
from .adjustments import LineItemAdjustmentService
from .carts import CartService
from .domain import TaxProviderPort
from .http_adapters import HttpTaxProviderClient
from .line_items import LineItemService
from .tax import TaxProviderService
from .totals import TotalsService


def get_tax_provider() -> TaxProviderPort:
    """Return the HTTP tax client when enabled, the in-process provider otherwise."""
    if getattr(settings, "USE_HTTP_TAX_PROVIDER", False):
        return HttpTaxProviderClient()
    return SystemTaxProvider()


def get_tax_provider_service() -> TaxProviderService:
    return TaxProviderService(provider=get_tax_provider())


def get_totals_service() -> TotalsService:
    return TotalsService()


def get_line_item_service() -> LineItemService:
    return LineItemService()


def get_adjustment_service() -> LineItemAdjustmentService:
    return LineItemAdjustmentService()


def get_cart_service() -> CartService:
    return CartService(totals=get_totals_service(), tax_provider=get_tax_provider_service())
