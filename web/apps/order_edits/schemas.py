"""Pydantic schemas for the order edit API.

Request bodies are validated with the ``*In`` models; ``serialize_order_edit``
builds the response shape from a decorated ``OrderEdit``.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from apps.orders.schemas import serialize_line_item


class CreateOrderEditIn(BaseModel):
    """Body of ``POST /admin/order-edits/``.

    Attributes:
        order_id: Order to open the edit on.
        internal_note: Free text visible to staff only.
    """

    model_config = ConfigDict(extra="forbid")

    order_id: UUID
    internal_note: Optional[str] = None


class UpdateOrderEditIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    internal_note: Optional[str] = None


class AddLineItemIn(BaseModel):
    """Body of ``POST /admin/order-edits/<id>/items/``.

    Attributes:
        variant_id: Variant to add, priced for the order's region.
        quantity: Positive number of units.
        metadata: Copied onto the new line item.
    """

    variant_id: UUID
    quantity: int = Field(gt=0)
    metadata: dict = Field(default_factory=dict)


class UpdateLineItemIn(BaseModel):
    quantity: int = Field(gt=0)


class DeclineIn(BaseModel):
    declined_reason: Optional[str] = None


class ItemChangeOut(BaseModel):
    id: UUID
    type: str
    order_edit_id: UUID
    line_item_id: Optional[UUID] = None
    original_line_item_id: Optional[UUID] = None
    created_at: datetime


class OrderEditOut(BaseModel):
    """An order edit with its status, changes, items and decorated totals."""

    id: UUID
    object: str = "order_edit"
    order_id: UUID
    status: str
    internal_note: Optional[str] = None
    created_by: str
    created_at: datetime
    requested_by: Optional[str] = None
    requested_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    declined_by: Optional[str] = None
    declined_reason: Optional[str] = None
    declined_at: Optional[datetime] = None
    canceled_by: Optional[str] = None
    canceled_at: Optional[datetime] = None
    changes: list[ItemChangeOut] = []
    items: list[dict] = []
    shipping_total: Optional[int] = None
    discount_total: Optional[int] = None
    tax_total: Optional[int] = None
    subtotal: Optional[int] = None
    total: Optional[int] = None
    gift_card_total: Optional[int] = None
    gift_card_tax_total: Optional[int] = None
    difference_due: Optional[int] = None


def serialize_item_change(change) -> dict:
    return ItemChangeOut(
        id=change.id,
        type=change.type,
        order_edit_id=change.order_edit_id,
        line_item_id=change.line_item_id,
        original_line_item_id=change.original_line_item_id,
        created_at=change.created_at,
    ).model_dump(mode="json")


def serialize_order_edit(edit, changes, items, totals) -> dict:
    """Dump a decorated ``edit`` for API responses.

    Args:
        edit: ``OrderEdit`` already passed through ``decorate_totals``.
        changes: The edit's ``OrderItemChange`` rows.
        items: The edit's line items, tax lines and adjustments prefetched.
        totals: ``TotalsService`` computing per-line totals.

    Returns:
        dict: JSON-ready representation.
    """
    dto = OrderEditOut(
        id=edit.id,
        order_id=edit.order_id,
        status=edit.status.value,
        internal_note=edit.internal_note,
        created_by=edit.created_by,
        created_at=edit.created_at,
        requested_by=edit.requested_by,
        requested_at=edit.requested_at,
        confirmed_by=edit.confirmed_by,
        confirmed_at=edit.confirmed_at,
        declined_by=edit.declined_by,
        declined_reason=edit.declined_reason,
        declined_at=edit.declined_at,
        canceled_by=edit.canceled_by,
        canceled_at=edit.canceled_at,
        changes=[serialize_item_change(c) for c in changes],
        items=[serialize_line_item(it, totals) for it in items],
        shipping_total=edit.shipping_total,
        discount_total=edit.discount_total,
        tax_total=edit.tax_total,
        subtotal=edit.subtotal,
        total=edit.total,
        gift_card_total=edit.gift_card_total,
        gift_card_tax_total=edit.gift_card_tax_total,
        difference_due=edit.difference_due,
    )
    return dto.model_dump(mode="json")
