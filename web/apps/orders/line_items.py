"""Line item persistence: generation, cloning, updates and reparenting."""

from typing import Iterable, List, Optional

from django.core.exceptions import ValidationError

from apps.core.context import TransactionScope
from apps.core.errors import InvalidData, NotFound

from .models import LineItem, LineItemAdjustment, LineItemTaxLine, ProductVariant, VariantPrice


class LineItemService:
    """Thin service over the ``LineItem`` table.

    Methods take plain values and return model instances so the order edit
    service can compose them inside one transaction.
    """

    def retrieve(self, scope: TransactionScope, item_id) -> LineItem:
        try:
            return (
                scope.objects(LineItem)
                .prefetch_related("tax_lines", "adjustments")
                .get(id=item_id)
            )
        except (LineItem.DoesNotExist, ValueError, ValidationError):
            raise NotFound(f"Line item with id {item_id} was not found")

    def list(self, scope: TransactionScope, **filters) -> List[LineItem]:
        return list(scope.objects(LineItem).filter(**filters).order_by("created_at", "id"))

    def generate(
        self,
        scope: TransactionScope,
        variant_id,
        region_id,
        quantity: int,
        metadata: Optional[dict] = None,
        order_edit_id=None,
    ) -> LineItem:
        """Build an unsaved line item priced for ``region_id``.

        Args:
            scope: Transaction scope.
            variant_id: Variant to sell.
            region_id: Region whose price applies.
            quantity: Units, must be positive.
            metadata: Free-form metadata copied onto the item.
            order_edit_id: Edit the item will belong to.

        Returns:
            LineItem: Unsaved instance.

        Raises:
            InvalidData: For a non-positive quantity or a variant without a
                price in the region.
            NotFound: For an unknown variant.
        """
        if quantity < 1:
            raise InvalidData("Quantity must be at least 1")
        try:
            variant = scope.objects(ProductVariant).get(id=variant_id)
        except (ProductVariant.DoesNotExist, ValueError, ValidationError):
            raise NotFound(f"Variant with id {variant_id} was not found")

        price = scope.objects(VariantPrice).filter(variant_id=variant.id, region_id=region_id).first()
        if price is None:
            raise InvalidData(f"Variant {variant.id} has no price in region {region_id}")

        return LineItem(
            variant=variant,
            title=variant.title,
            unit_price=price.amount,
            quantity=quantity,
            metadata=dict(metadata or {}),
            order_edit_id=order_edit_id,
        )

    def create(self, scope: TransactionScope, item: LineItem) -> LineItem:
        item.save(using=scope.using, force_insert=True)
        return item

    def clone_to(self, scope: TransactionScope, item_ids: Iterable, order_edit_id) -> List[LineItem]:
        """Clone items, with tax lines and adjustments, into an order edit.

        Clones belong only to the edit (no order, no cart) and reference the
        source through ``original_item``.

        Args:
            scope: Transaction scope.
            item_ids: Ids of the items to clone.
            order_edit_id: Edit receiving the clones.

        Returns:
            list[LineItem]: The clones, in source order.
        """
        sources = list(
            scope.objects(LineItem)
            .filter(id__in=list(item_ids))
            .prefetch_related("tax_lines", "adjustments")
            .order_by("created_at", "id")
        )
        clones = []
        with scope.atomic():
            for src in sources:
                clone = self.create(
                    scope,
                    LineItem(
                        order_edit_id=order_edit_id,
                        original_item_id=src.id,
                        variant_id=src.variant_id,
                        title=src.title,
                        unit_price=src.unit_price,
                        quantity=src.quantity,
                        metadata=dict(src.metadata or {}),
                    ),
                )
                scope.objects(LineItemTaxLine).bulk_create(
                    [
                        LineItemTaxLine(item=clone, rate=tl.rate, name=tl.name, code=tl.code)
                        for tl in src.tax_lines.all()
                    ]
                )
                scope.objects(LineItemAdjustment).bulk_create(
                    [
                        LineItemAdjustment(
                            item=clone, discount_id=adj.discount_id, description=adj.description, amount=adj.amount
                        )
                        for adj in src.adjustments.all()
                    ]
                )
                clones.append(clone)
        return clones

    def update(self, scope: TransactionScope, item_id, **values) -> LineItem:
        item = self.retrieve(scope, item_id)
        for key, value in values.items():
            setattr(item, key, value)
        item.save(using=scope.using, update_fields=list(values))
        return item

    def update_where(self, scope: TransactionScope, filters: dict, values: dict) -> int:
        """Bulk update every item matching ``filters``; returns the row count."""
        return scope.objects(LineItem).filter(**filters).update(**values)

    def delete(self, scope: TransactionScope, item_id) -> None:
        scope.objects(LineItem).filter(id=item_id).delete()
