import uuid

from django.db import models
from django.db.models import Q

from apps.orders.models import LineItem, Order

from .domain import OrderEditStatus, OrderItemChangeType, derive_status


class OrderEdit(models.Model):
    """Draft change-set against a placed order.

    ``status`` is computed from the lifecycle timestamps (see
    ``domain.derive_status``). The totals attributes are not persisted; they
    are filled in by ``OrderEditService.decorate_totals``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="edits")
    internal_note = models.TextField(null=True, blank=True)
    created_by = models.CharField(max_length=64)
    requested_by = models.CharField(max_length=64, null=True, blank=True)
    requested_at = models.DateTimeField(null=True, blank=True)
    confirmed_by = models.CharField(max_length=64, null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    declined_by = models.CharField(max_length=64, null=True, blank=True)
    declined_reason = models.TextField(null=True, blank=True)
    declined_at = models.DateTimeField(null=True, blank=True)
    canceled_by = models.CharField(max_length=64, null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Computed by decorate_totals
    shipping_total = None
    discount_total = None
    tax_total = None
    subtotal = None
    total = None
    gift_card_total = None
    gift_card_tax_total = None
    difference_due = None

    class Meta:
        db_table = "order_edits"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=Q(confirmed_at__isnull=True, canceled_at__isnull=True, declined_at__isnull=True),
                name="uniq_active_order_edit",
            ),
        ]

    @property
    def status(self) -> OrderEditStatus:
        return derive_status(
            requested_at=self.requested_at,
            declined_at=self.declined_at,
            confirmed_at=self.confirmed_at,
            canceled_at=self.canceled_at,
        )

    def __str__(self):
        return f"OrderEdit({self.id}, {self.status.value})"


class OrderItemChange(models.Model):
    """One diff recorded by an order edit.

    ``line_item`` is the edit-local item (null for removals);
    ``original_line_item`` is the order item the change applies to (null for
    additions).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_edit = models.ForeignKey(OrderEdit, on_delete=models.CASCADE, related_name="changes")
    type = models.CharField(
        max_length=16, choices=[(t.value, t.name) for t in OrderItemChangeType]
    )
    line_item = models.ForeignKey(
        LineItem, null=True, blank=True, on_delete=models.CASCADE, related_name="+"
    )
    original_line_item = models.ForeignKey(
        LineItem, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_item_changes"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(fields=["order_edit", "line_item"], name="uniq_change_line_item"),
            models.UniqueConstraint(
                fields=["order_edit", "original_line_item"], name="uniq_change_original_line_item"
            ),
        ]

    def __str__(self):
        return f"OrderItemChange({self.type}, {self.line_item_id})"
