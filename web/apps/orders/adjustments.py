"""Discount adjustments for line items.

Adjustments are always recomputed from scratch for a whole aggregate: some
discount rules (fixed amounts allocated across the total) depend on every
item at once, so patching a single item would leave the others stale.
"""

from decimal import Decimal
from typing import Iterable, List

from apps.core.context import TransactionScope

from .domain import PricingAggregate, round_half_up
from .models import Discount, LineItemAdjustment


class LineItemAdjustmentService:
    """Compute, store and delete line item adjustments."""

    def delete(self, scope: TransactionScope, adjustment_ids: Iterable) -> None:
        scope.objects(LineItemAdjustment).filter(id__in=list(adjustment_ids)).delete()

    def delete_for_items(self, scope: TransactionScope, item_ids: Iterable) -> None:
        scope.objects(LineItemAdjustment).filter(item_id__in=list(item_ids)).delete()

    def compute_amounts(self, discount: Discount, items: list) -> dict:
        """Return the adjustment amount per item id for one discount.

        Args:
            discount: Discount to allocate.
            items: Items of the aggregate, in a stable order.

        Returns:
            dict: ``{item_id: amount}`` with zero amounts omitted.
        """
        subtotals = {it.id: it.unit_price * it.quantity for it in items}
        amounts: dict = {}

        if discount.rule_type == Discount.RuleType.PERCENTAGE:
            for it in items:
                amounts[it.id] = round_half_up(Decimal(subtotals[it.id]) * discount.value / 100)

        elif discount.rule_type == Discount.RuleType.FIXED:
            if discount.allocation == Discount.Allocation.ITEM:
                for it in items:
                    amounts[it.id] = discount.value * it.quantity
            else:
                total = sum(subtotals.values())
                to_allocate = min(discount.value, total)
                remaining = to_allocate
                for idx, it in enumerate(items):
                    if not total:
                        break
                    if idx == len(items) - 1:
                        share = remaining
                    else:
                        share = round_half_up(Decimal(to_allocate) * subtotals[it.id] / total)
                    share = min(share, remaining)
                    amounts[it.id] = share
                    remaining -= share

        return {item_id: min(amount, subtotals[item_id]) for item_id, amount in amounts.items() if amount > 0}

    def create_adjustments(self, scope: TransactionScope, aggregate: PricingAggregate) -> List[LineItemAdjustment]:
        """Create adjustments for every discount of ``aggregate``.

        The caller is responsible for deleting stale adjustments first.
        An item never receives more discount than its subtotal.

        Args:
            scope: Transaction scope.
            aggregate: Cart- or order-shaped aggregate.

        Returns:
            list[LineItemAdjustment]: Created adjustments.
        """
        remaining = {it.id: it.unit_price * it.quantity for it in aggregate.items}
        to_create = []
        for discount in aggregate.discounts:
            for item_id, amount in self.compute_amounts(discount, aggregate.items).items():
                amount = min(amount, remaining[item_id])
                if amount <= 0:
                    continue
                remaining[item_id] -= amount
                to_create.append(
                    LineItemAdjustment(
                        item_id=item_id,
                        discount=discount,
                        description="discount",
                        amount=amount,
                    )
                )
        return scope.objects(LineItemAdjustment).bulk_create(to_create)
