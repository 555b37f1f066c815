"""Pydantic schemas for line items and carts.

These are response shapes: views build them from model instances and dump
them to JSON-ready dicts.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class TaxLineOut(BaseModel):
    id: UUID
    rate: Decimal
    name: str
    code: str = ""


class AdjustmentOut(BaseModel):
    id: UUID
    discount_id: Optional[UUID] = None
    description: str = ""
    amount: int


class LineItemOut(BaseModel):
    """A line item with its tax lines, adjustments and per-line totals.

    Attributes:
        original_item_id: For items cloned into an order edit, the order
            item they were copied from.
        subtotal: ``unit_price * quantity``.
        discount_total: Sum of the adjustments.
        tax_total: Tax on the discounted subtotal.
        total: ``subtotal - discount_total + tax_total``.
    """

    id: UUID
    title: str
    variant_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    order_edit_id: Optional[UUID] = None
    original_item_id: Optional[UUID] = None
    unit_price: int
    quantity: int
    metadata: dict = {}
    tax_lines: list[TaxLineOut] = []
    adjustments: list[AdjustmentOut] = []
    subtotal: int
    discount_total: int
    tax_total: int
    total: int


def serialize_line_item(item, totals) -> dict:
    """Dump ``item`` with per-line totals computed by ``totals``.

    Args:
        item: ``LineItem`` instance, ideally with tax lines and adjustments
            prefetched.
        totals: ``TotalsService`` instance.

    Returns:
        dict: JSON-ready representation.
    """
    dto = LineItemOut(
        id=item.id,
        title=item.title,
        variant_id=item.variant_id,
        order_id=item.order_id,
        order_edit_id=item.order_edit_id,
        original_item_id=item.original_item_id,
        unit_price=item.unit_price,
        quantity=item.quantity,
        metadata=item.metadata or {},
        tax_lines=[
            TaxLineOut(id=tl.id, rate=tl.rate, name=tl.name, code=tl.code) for tl in item.tax_lines.all()
        ],
        adjustments=[
            AdjustmentOut(id=a.id, discount_id=a.discount_id, description=a.description, amount=a.amount)
            for a in item.adjustments.all()
        ],
        **totals.get_line_item_totals(item),
    )
    return dto.model_dump(mode="json")
