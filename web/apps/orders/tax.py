"""Persisting tax lines obtained from the configured tax provider."""

import logging
from typing import Iterable, List

from apps.core.context import TransactionScope

from .domain import CalculationContext, TaxProviderPort
from .models import LineItemTaxLine, ShippingMethodTaxLine

logger = logging.getLogger("orders.tax")


class TaxProviderService:
    """Replace the tax lines of items and shipping methods with fresh ones.

    The rate lookup is delegated to a ``TaxProviderPort``; this service only
    owns the persistence of the returned lines.
    """

    def __init__(self, provider: TaxProviderPort):
        self.provider = provider

    def clear_line_items_tax_lines(self, scope: TransactionScope, item_ids: Iterable) -> None:
        scope.objects(LineItemTaxLine).filter(item_id__in=list(item_ids)).delete()

    def clear_shipping_methods_tax_lines(self, scope: TransactionScope, method_ids: Iterable) -> None:
        scope.objects(ShippingMethodTaxLine).filter(shipping_method_id__in=list(method_ids)).delete()

    def create_tax_lines(self, scope: TransactionScope, items: List[object], context: CalculationContext):
        """Compute and store tax lines for ``items`` and the context's shipping methods.

        Existing lines of those items and shipping methods are removed first,
        so the call can be repeated safely.

        Args:
            scope: Transaction scope.
            items: Saved line items.
            context: Calculation context from ``TotalsService.get_calculation_context``.

        Returns:
            tuple[list[LineItemTaxLine], list[ShippingMethodTaxLine]]: The stored lines.
        """
        lines = self.provider.get_tax_lines(items, context)

        with scope.atomic():
            self.clear_line_items_tax_lines(scope, [it.id for it in items])
            self.clear_shipping_methods_tax_lines(scope, [sm.id for sm in context.shipping_methods])

            item_lines = scope.objects(LineItemTaxLine).bulk_create(
                [
                    LineItemTaxLine(item_id=line.item_id, rate=line.rate, name=line.name, code=line.code)
                    for line in lines
                    if line.item_id is not None
                ]
            )
            shipping_lines = scope.objects(ShippingMethodTaxLine).bulk_create(
                [
                    ShippingMethodTaxLine(
                        shipping_method_id=line.shipping_method_id,
                        rate=line.rate,
                        name=line.name,
                        code=line.code,
                    )
                    for line in lines
                    if line.shipping_method_id is not None
                ]
            )

        logger.info(
            "tax lines created",
            extra={"items": len(items), "item_lines": len(item_lines), "shipping_lines": len(shipping_lines)},
        )
        return item_lines, shipping_lines
