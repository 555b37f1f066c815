"""In-process tax provider.

``SystemTaxProvider`` implements ``TaxProviderPort`` without any network
call: every item and shipping method gets a single tax line carrying the
region's rate. It is the default provider and the one tests run against.
"""

from decimal import Decimal
from typing import List

from .domain import CalculationContext, TaxLineData, TaxProviderPort


class SystemTaxProvider(TaxProviderPort):
    """Tax everything at the region rate; a zero rate produces no lines."""

    name = "default"

    def get_tax_lines(self, items: List[object], context: CalculationContext) -> List[TaxLineData]:
        rate = Decimal(context.region.tax_rate)
        if rate <= 0:
            return []
        code = context.region.tax_code or ""
        lines = [TaxLineData(rate=rate, name=self.name, code=code, item_id=it.id) for it in items]
        lines.extend(
            TaxLineData(rate=rate, name=self.name, code=code, shipping_method_id=sm.id)
            for sm in context.shipping_methods
        )
        return lines
