"""Totals pipeline shared by carts, orders and order edits.

Every figure is computed from a ``PricingAggregate`` so the exact same
rounding and rate rules apply whether the aggregate describes a live cart,
a placed order, or an order edit projected onto its parent order. Amounts
are integer minor units; rates are percentages.

Rules:
    line subtotal  = unit_price * quantity
    line discount  = sum of the item's adjustments
    line tax       = round_half_up((line subtotal - line discount) * rates / 100)
    shipping       = sum of method prices, 0 under a free shipping discount
    gift card      = min(balances, subtotal + shipping - discount)
    tax_total      = item tax + shipping tax - gift card tax
    total          = subtotal + shipping + tax_total - discount - gift card
"""

from decimal import Decimal
from typing import Optional

from django.core.exceptions import ValidationError

from apps.core.context import TransactionScope
from apps.core.errors import NotFound

from .domain import CalculationContext, GiftCardTotals, PricingAggregate, Totals, round_half_up
from .models import Cart, Discount, LineItem, Order, ShippingMethod

ITEM_PREFETCH = ("tax_lines", "adjustments")


def _rate_sum(tax_lines) -> Decimal:
    return sum((Decimal(line.rate) for line in tax_lines), Decimal(0))


class TotalsService:
    """Compute derived totals for order-, cart- or edit-shaped aggregates."""

    # ---- aggregate builders ----

    def load_items(self, scope: TransactionScope, **filters) -> list:
        return list(
            scope.objects(LineItem)
            .filter(**filters)
            .select_related("variant")
            .prefetch_related(*ITEM_PREFETCH)
            .order_by("created_at", "id")
        )

    def retrieve_order(self, scope: TransactionScope, order_id, for_update: bool = False) -> Order:
        qs = scope.objects(Order).select_related("region")
        if for_update:
            qs = qs.select_for_update(of=("self",))
        try:
            return qs.get(id=order_id)
        except (Order.DoesNotExist, ValueError, ValidationError):
            raise NotFound(f"Order with id {order_id} was not found")

    def order_aggregate(self, scope: TransactionScope, order: Order, items=None) -> PricingAggregate:
        """Build the order-shaped aggregate, optionally substituting ``items``.

        Args:
            scope: Transaction scope.
            order: The order providing region, discounts, gift cards, shipping.
            items: Line items to price instead of the order's own items.

        Returns:
            PricingAggregate
        """
        if items is None:
            items = self.load_items(scope, order_id=order.id)
        return PricingAggregate(
            region=order.region,
            items=list(items),
            discounts=list(order.discounts.all()),
            gift_cards=list(order.gift_cards.all()),
            shipping_methods=list(
                scope.objects(ShippingMethod).filter(order_id=order.id).prefetch_related("tax_lines")
            ),
            customer_id=order.customer_id,
        )

    def cart_aggregate(self, scope: TransactionScope, cart: Cart) -> PricingAggregate:
        return PricingAggregate(
            region=cart.region,
            items=self.load_items(scope, cart_id=cart.id),
            discounts=list(cart.discounts.all()),
            gift_cards=list(cart.gift_cards.all()),
            shipping_methods=list(
                scope.objects(ShippingMethod).filter(cart_id=cart.id).prefetch_related("tax_lines")
            ),
            customer_id=cart.customer_id,
        )

    # ---- line items ----

    def get_line_item_subtotal(self, item) -> int:
        return item.unit_price * item.quantity

    def get_line_item_discount(self, item) -> int:
        return sum(adj.amount for adj in item.adjustments.all())

    def get_line_item_tax(self, item) -> int:
        rate = _rate_sum(item.tax_lines.all())
        if not rate:
            return 0
        taxable = max(self.get_line_item_subtotal(item) - self.get_line_item_discount(item), 0)
        return round_half_up(Decimal(taxable) * rate / 100)

    def get_line_item_totals(self, item) -> dict:
        subtotal = self.get_line_item_subtotal(item)
        discount = self.get_line_item_discount(item)
        tax = self.get_line_item_tax(item)
        return {
            "subtotal": subtotal,
            "discount_total": discount,
            "tax_total": tax,
            "total": subtotal - discount + tax,
        }

    # ---- aggregate totals ----

    def get_calculation_context(
        self,
        aggregate: PricingAggregate,
        exclude_shipping: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> CalculationContext:
        return CalculationContext(
            region=aggregate.region,
            shipping_methods=() if exclude_shipping else tuple(aggregate.shipping_methods),
            allocation_map={it.id: self.get_line_item_discount(it) for it in aggregate.items},
            customer_id=aggregate.customer_id,
            idempotency_key=idempotency_key,
        )

    def get_subtotal(self, aggregate: PricingAggregate) -> int:
        return sum(self.get_line_item_subtotal(it) for it in aggregate.items)

    def has_free_shipping(self, aggregate: PricingAggregate) -> bool:
        return any(d.rule_type == Discount.RuleType.FREE_SHIPPING for d in aggregate.discounts)

    def get_shipping_method_price(self, aggregate: PricingAggregate, shipping_method) -> int:
        """Price charged for ``shipping_method``; a free shipping discount zeroes it."""
        if self.has_free_shipping(aggregate):
            return 0
        return shipping_method.price

    def get_shipping_total(self, aggregate: PricingAggregate) -> int:
        return sum(self.get_shipping_method_price(aggregate, sm) for sm in aggregate.shipping_methods)

    def get_discount_total(self, aggregate: PricingAggregate) -> int:
        discount = sum(self.get_line_item_discount(it) for it in aggregate.items)
        return min(discount, self.get_subtotal(aggregate))

    def get_gift_card_total(self, aggregate: PricingAggregate) -> GiftCardTotals:
        balance = sum(gc.balance for gc in aggregate.gift_cards)
        if not balance:
            return GiftCardTotals(total=0, tax_total=0)
        giftcardable = (
            self.get_subtotal(aggregate)
            + self.get_shipping_total(aggregate)
            - self.get_discount_total(aggregate)
        )
        total = max(min(balance, giftcardable), 0)
        tax_total = 0
        if aggregate.region.gift_cards_taxable:
            tax_total = round_half_up(Decimal(total) * Decimal(aggregate.region.tax_rate) / 100)
        return GiftCardTotals(total=total, tax_total=tax_total)

    def get_shipping_tax_total(self, aggregate: PricingAggregate) -> int:
        return sum(
            round_half_up(
                Decimal(self.get_shipping_method_price(aggregate, sm)) * _rate_sum(sm.tax_lines.all()) / 100
            )
            for sm in aggregate.shipping_methods
        )

    def get_tax_total(self, aggregate: PricingAggregate) -> int:
        item_tax = sum(self.get_line_item_tax(it) for it in aggregate.items)
        gift_card_tax = self.get_gift_card_total(aggregate).tax_total
        return max(item_tax + self.get_shipping_tax_total(aggregate) - gift_card_tax, 0)

    def get_total(self, aggregate: PricingAggregate) -> int:
        return (
            self.get_subtotal(aggregate)
            + self.get_shipping_total(aggregate)
            + self.get_tax_total(aggregate)
            - self.get_discount_total(aggregate)
            - self.get_gift_card_total(aggregate).total
        )

    def get_totals(self, aggregate: PricingAggregate) -> Totals:
        gift_cards = self.get_gift_card_total(aggregate)
        return Totals(
            shipping_total=self.get_shipping_total(aggregate),
            gift_card_total=gift_cards.total,
            gift_card_tax_total=gift_cards.tax_total,
            discount_total=self.get_discount_total(aggregate),
            tax_total=self.get_tax_total(aggregate),
            subtotal=self.get_subtotal(aggregate),
            total=self.get_total(aggregate),
        )
