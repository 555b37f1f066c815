"""Cart retrieval with computed totals."""

from typing import Optional

from django.core.exceptions import ValidationError

from apps.core.context import TransactionScope
from apps.core.errors import NotFound

from .models import Cart
from .schemas import serialize_line_item
from .tax import TaxProviderService
from .totals import TotalsService


class CartService:
    def __init__(self, totals: TotalsService, tax_provider: TaxProviderService):
        self.totals = totals
        self.tax_provider = tax_provider

    def retrieve(self, scope: TransactionScope, cart_id) -> Cart:
        try:
            return scope.objects(Cart).select_related("region").get(id=cart_id)
        except (Cart.DoesNotExist, ValueError, ValidationError):
            raise NotFound(f"Cart with id {cart_id} was not found")

    def refresh_tax_lines(self, scope: TransactionScope, cart_id, idempotency_key: Optional[str] = None) -> None:
        """Replace the tax lines of the cart's items and shipping methods.

        ``idempotency_key`` is handed to the tax provider so a retried
        request does not compute twice on the provider's side.
        """
        cart = self.retrieve(scope, cart_id)
        aggregate = self.totals.cart_aggregate(scope, cart)
        context = self.totals.get_calculation_context(aggregate, idempotency_key=idempotency_key)
        self.tax_provider.create_tax_lines(scope, aggregate.items, context)

    def retrieve_with_totals(self, scope: TransactionScope, cart_id) -> dict:
        """Return the cart as a dict with totals, items included."""
        cart = self.retrieve(scope, cart_id)
        aggregate = self.totals.cart_aggregate(scope, cart)
        return {
            "id": str(cart.id),
            "object": "cart",
            "region_id": str(cart.region_id),
            "customer_id": cart.customer_id,
            "items": [serialize_line_item(it, self.totals) for it in aggregate.items],
            **self.totals.get_totals(aggregate).as_dict(),
        }
