"""Value objects and ports for pricing orders, carts and order edits.

This module contains the dataclasses passed between the totals pipeline,
the adjustment calculator and the tax provider, plus the protocol (port)
describing what a tax provider must implement. Concrete providers live in
``adapters`` (in-process) and ``http_adapters`` (tax service over HTTP).
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Protocol
import uuid


def round_half_up(value: Decimal) -> int:
    """Round a Decimal amount of minor units to an integer, halves away from zero."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ---- Value objects ----
@dataclass
class PricingAggregate:
    """Order- or cart-shaped view the totals pipeline runs against.

    Order edits build one from their parent order with the edit's items
    substituted for the order's, so the same calculation applies to live
    orders, carts and edits.

    Attributes:
        region: ``Region`` providing currency and tax rate.
        items: Saved ``LineItem`` instances; tax lines and adjustments are
            read through their related managers (prefetch them).
        discounts: ``Discount`` instances applied to the aggregate.
        gift_cards: ``GiftCard`` instances applied to the aggregate.
        shipping_methods: ``ShippingMethod`` instances.
        customer_id: Owner of the order or cart, if known.
    """

    region: object
    items: list
    discounts: list = field(default_factory=list)
    gift_cards: list = field(default_factory=list)
    shipping_methods: list = field(default_factory=list)
    customer_id: Optional[str] = None


@dataclass(frozen=True)
class CalculationContext:
    """Inputs a tax provider needs besides the items themselves.

    Attributes:
        region: Region of the order or cart.
        shipping_methods: Shipping methods to compute tax lines for; empty
            when the caller excludes shipping.
        allocation_map: Discount amount per line item id, so providers can
            tax the discounted amount.
        customer_id: Customer the calculation is made for.
        idempotency_key: Key a remote provider may use to deduplicate the
            call; only set by callers that are themselves idempotent.
    """

    region: object
    shipping_methods: tuple = ()
    allocation_map: dict = field(default_factory=dict)
    customer_id: Optional[str] = None
    idempotency_key: Optional[str] = None

    @property
    def tax_rate(self) -> Decimal:
        return Decimal(self.region.tax_rate)


@dataclass(frozen=True)
class TaxLineData:
    """A tax line returned by a provider for one item or shipping method."""

    rate: Decimal
    name: str
    code: str = ""
    item_id: Optional[uuid.UUID] = None
    shipping_method_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class GiftCardTotals:
    total: int
    tax_total: int


@dataclass(frozen=True)
class Totals:
    """Derived totals, all in integer minor units."""

    shipping_total: int
    gift_card_total: int
    gift_card_tax_total: int
    discount_total: int
    tax_total: int
    subtotal: int
    total: int

    def as_dict(self) -> dict:
        return {
            "shipping_total": self.shipping_total,
            "gift_card_total": self.gift_card_total,
            "gift_card_tax_total": self.gift_card_tax_total,
            "discount_total": self.discount_total,
            "tax_total": self.tax_total,
            "subtotal": self.subtotal,
            "total": self.total,
        }


# ---- Ports (DIP) ----
class TaxProviderPort(Protocol):
    """Port describing how tax lines are obtained for items and shipping."""

    def get_tax_lines(self, items: List[object], context: CalculationContext) -> List[TaxLineData]:
        """Compute tax lines.

        Args:
            items: Saved ``LineItem`` instances to tax.
            context: Region, shipping methods and discount allocation.

        Returns:
            Tax lines, each referencing either an item or a shipping method.
        """
        raise NotImplementedError()
