"""Ledger of line item changes recorded by order edits."""

from typing import List

from django.core.exceptions import ValidationError

from apps.core.context import TransactionScope
from apps.core.errors import NotFound

from .domain import OrderItemChangeType
from .models import OrderItemChange


class OrderItemChangeService:
    """Record, look up and remove ``OrderItemChange`` rows.

    Changes are append-only: a row is created by an edit mutation and later
    deleted, either on its own or together with its edit.
    """

    def retrieve(self, scope: TransactionScope, change_id) -> OrderItemChange:
        try:
            return scope.objects(OrderItemChange).get(id=change_id)
        except (OrderItemChange.DoesNotExist, ValueError, ValidationError):
            raise NotFound(f"Order item change with id {change_id} was not found")

    def list(self, scope: TransactionScope, **filters) -> List[OrderItemChange]:
        """Changes matching ``filters``, oldest first (the last one is the most recent)."""
        return list(scope.objects(OrderItemChange).filter(**filters).order_by("created_at", "id"))

    def create(
        self,
        scope: TransactionScope,
        type: OrderItemChangeType,
        order_edit_id,
        line_item_id=None,
        original_line_item_id=None,
    ) -> OrderItemChange:
        return scope.objects(OrderItemChange).create(
            type=OrderItemChangeType(type).value,
            order_edit_id=order_edit_id,
            line_item_id=line_item_id,
            original_line_item_id=original_line_item_id,
        )

    def delete(self, scope: TransactionScope, change_id) -> None:
        scope.objects(OrderItemChange).filter(id=change_id).delete()
