"""Order edit service: lifecycle state machine and edit-scoped recomputation.

The service owns the rules of the edit lifecycle (see ``domain``) and
composes the pricing services to keep an edit's cloned items, their
adjustments and tax lines consistent. Every public operation takes an
explicit ``TransactionScope`` and runs inside ``scope.atomic()``, so a
partial apply (a quantity changed without its adjustments refreshed) is
never committed.

One active edit per order is the only exclusion between concurrent edits.
``create`` checks for an active edit and the ``uniq_active_order_edit``
constraint backs the check: a racing creator that passed the check fails on
insert and gets ``InvalidData`` as well.

Status-changing operations emit one lifecycle event each through the event
bus; re-entering a state the edit is already in returns early without an
event.
"""

import logging
from typing import List, Optional

from django.core.exceptions import ValidationError
from django.db import IntegrityError
from django.utils import timezone

from apps.core.context import TransactionScope
from apps.core.errors import InvalidData, NotAllowed, NotFound
from apps.events.bus import EventBusService
from apps.orders.adjustments import LineItemAdjustmentService
from apps.orders.domain import Totals
from apps.orders.line_items import LineItemService
from apps.orders.tax import TaxProviderService
from apps.orders.totals import TotalsService

from .domain import Events, OrderEditStatus, OrderItemChangeType, is_active
from .item_changes import OrderItemChangeService
from .models import OrderEdit, OrderItemChange

logger = logging.getLogger("order_edits")


class OrderEditService:
    def __init__(
        self,
        line_items: LineItemService,
        totals: TotalsService,
        adjustments: LineItemAdjustmentService,
        tax_provider: TaxProviderService,
        item_changes: OrderItemChangeService,
        event_bus: EventBusService,
    ):
        self.line_items = line_items
        self.totals = totals
        self.adjustments = adjustments
        self.tax_provider = tax_provider
        self.item_changes = item_changes
        self.event_bus = event_bus

    # ---- queries ----

    def retrieve(self, scope: TransactionScope, edit_id) -> OrderEdit:
        try:
            return scope.objects(OrderEdit).select_related("order", "order__region").get(id=edit_id)
        except (OrderEdit.DoesNotExist, ValueError, ValidationError):
            raise NotFound(f"Order edit with id {edit_id} was not found")

    def retrieve_active(self, scope: TransactionScope, order_id) -> Optional[OrderEdit]:
        return (
            scope.objects(OrderEdit)
            .filter(
                order_id=order_id,
                confirmed_at__isnull=True,
                canceled_at__isnull=True,
                declined_at__isnull=True,
            )
            .first()
        )

    def list(self, scope: TransactionScope, order_id=None) -> List[OrderEdit]:
        qs = scope.objects(OrderEdit).select_related("order", "order__region")
        if order_id is not None:
            qs = qs.filter(order_id=order_id)
        return list(qs.order_by("-created_at"))

    # ---- totals ----

    def get_totals(self, scope: TransactionScope, edit_id) -> Totals:
        """Compute the edit's totals against its parent order's pricing context.

        The edit's items replace the order's items in an order-shaped
        aggregate, which then goes through the same pipeline as live orders.
        """
        edit = self.retrieve(scope, edit_id)
        items = self.totals.load_items(scope, order_edit_id=edit.id)
        aggregate = self.totals.order_aggregate(scope, edit.order, items=items)
        return self.totals.get_totals(aggregate)

    def decorate_totals(self, scope: TransactionScope, edit: OrderEdit) -> OrderEdit:
        """Set the computed totals and ``difference_due`` on ``edit``."""
        totals = self.get_totals(scope, edit.id)
        for name, value in totals.as_dict().items():
            setattr(edit, name, value)
        order_total = self.totals.get_total(self.totals.order_aggregate(scope, edit.order))
        edit.difference_due = totals.total - order_total
        return edit

    def refresh_adjustments(self, scope: TransactionScope, edit_id) -> None:
        """Recompute the adjustments of every item of the edit from scratch.

        Discount rules can depend on order-wide aggregates, so all existing
        adjustments of the edit's items are deleted and recomputed against a
        cart-shaped view of the order holding the edit's items.
        """
        with scope.atomic():
            edit = self.retrieve(scope, edit_id)
            items = self.totals.load_items(scope, order_edit_id=edit.id)
            self.adjustments.delete(scope, [adj.id for it in items for adj in it.adjustments.all()])
            aggregate = self.totals.order_aggregate(scope, edit.order, items=items)
            self.adjustments.create_adjustments(scope, aggregate)

    # ---- lifecycle ----

    def create(self, scope: TransactionScope, order_id, internal_note: Optional[str] = None) -> OrderEdit:
        """Open an edit on ``order_id`` and clone the order's items into it.

        Raises:
            NotFound: Unknown order.
            InvalidData: The order already has an active edit.
        """
        with scope.atomic():
            # the order row lock serializes concurrent opens of the same order
            order = self.totals.retrieve_order(scope, order_id, for_update=True)
            if self.retrieve_active(scope, order.id) is not None:
                raise InvalidData(f"An active order edit already exists for the order {order.id}")

            try:
                with scope.atomic():
                    edit = scope.objects(OrderEdit).create(
                        order=order,
                        internal_note=internal_note,
                        created_by=scope.actor_id or "",
                    )
            except IntegrityError:
                raise InvalidData(f"An active order edit already exists for the order {order.id}")

            item_ids = [it.id for it in self.line_items.list(scope, order_id=order.id)]
            self.line_items.clone_to(scope, item_ids, edit.id)

            self.event_bus.emit(scope, Events.CREATED, {"id": str(edit.id)})

        logger.info("order edit created", extra={"order_edit_id": str(edit.id), "order_id": str(order.id)})
        return edit

    def update(self, scope: TransactionScope, edit_id, internal_note: Optional[str] = None) -> OrderEdit:
        with scope.atomic():
            edit = self.retrieve(scope, edit_id)
            if internal_note is not None:
                edit.internal_note = internal_note
            edit.save(using=scope.using)
            self.event_bus.emit(scope, Events.UPDATED, {"id": str(edit.id)})
        return edit

    def delete(self, scope: TransactionScope, edit_id) -> None:
        """Hard-delete a CREATED edit with its cloned items; unknown ids are ignored.

        Raises:
            NotAllowed: The edit is past CREATED.
        """
        with scope.atomic():
            try:
                edit = self.retrieve(scope, edit_id)
            except NotFound:
                return

            if edit.status != OrderEditStatus.CREATED:
                raise NotAllowed(f"Cannot delete order edit with status {edit.status.value}")

            self.delete_cloned_items(scope, edit.id)
            edit.delete(using=scope.using)

        logger.info("order edit deleted", extra={"order_edit_id": str(edit_id)})

    def request_confirmation(self, scope: TransactionScope, edit_id) -> OrderEdit:
        """Submit the edit for confirmation; a no-op if already requested.

        Raises:
            InvalidData: The edit has no changes.
        """
        with scope.atomic():
            edit = self.retrieve(scope, edit_id)
            if not self.item_changes.list(scope, order_edit_id=edit.id):
                raise InvalidData("Cannot request a confirmation on an edit with no changes")

            if edit.requested_at:
                return edit

            edit.requested_at = timezone.now()
            edit.requested_by = scope.actor_id
            edit.save(using=scope.using)
            self.event_bus.emit(scope, Events.REQUESTED, {"id": str(edit.id)})

        logger.info("order edit requested", extra={"order_edit_id": str(edit.id)})
        return edit

    def decline(self, scope: TransactionScope, edit_id, declined_reason: Optional[str] = None) -> OrderEdit:
        """Decline a requested edit; a no-op if already declined.

        Raises:
            NotAllowed: The edit is not REQUESTED.
        """
        with scope.atomic():
            edit = self.retrieve(scope, edit_id)
            if edit.status == OrderEditStatus.DECLINED:
                return edit
            if edit.status != OrderEditStatus.REQUESTED:
                raise NotAllowed(f"Cannot decline an order edit with status {edit.status.value}.")

            edit.declined_at = timezone.now()
            edit.declined_by = scope.actor_id
            edit.declined_reason = declined_reason
            edit.save(using=scope.using)
            self.event_bus.emit(scope, Events.DECLINED, {"id": str(edit.id)})

        logger.info("order edit declined", extra={"order_edit_id": str(edit.id)})
        return edit

    def cancel(self, scope: TransactionScope, edit_id) -> OrderEdit:
        """Cancel the edit; a no-op if already canceled.

        Raises:
            NotAllowed: The edit is CONFIRMED or DECLINED.
        """
        with scope.atomic():
            edit = self.retrieve(scope, edit_id)
            if edit.status == OrderEditStatus.CANCELED:
                return edit
            if edit.status in (OrderEditStatus.CONFIRMED, OrderEditStatus.DECLINED):
                raise NotAllowed(f"Cannot cancel order edit with status {edit.status.value}")

            edit.canceled_at = timezone.now()
            edit.canceled_by = scope.actor_id
            edit.save(using=scope.using)
            self.event_bus.emit(scope, Events.CANCELED, {"id": str(edit.id)})

        logger.info("order edit canceled", extra={"order_edit_id": str(edit.id)})
        return edit

    def confirm(self, scope: TransactionScope, edit_id) -> OrderEdit:
        """Apply the edit to its order; a no-op if already confirmed.

        The order's live items are detached and the edit's items are
        reparented to the order in the same transaction.

        Raises:
            NotAllowed: The edit is CANCELED or DECLINED.
        """
        with scope.atomic():
            edit = self.retrieve(scope, edit_id)
            if edit.status in (OrderEditStatus.CANCELED, OrderEditStatus.DECLINED):
                raise NotAllowed(f"Cannot confirm an order edit with status {edit.status.value}")
            if edit.status == OrderEditStatus.CONFIRMED:
                return edit

            detached = self.line_items.update_where(scope, {"order_id": edit.order_id}, {"order_id": None})
            attached = self.line_items.update_where(
                scope, {"order_edit_id": edit.id}, {"order_id": edit.order_id}
            )

            edit.confirmed_at = timezone.now()
            edit.confirmed_by = scope.actor_id
            edit.save(using=scope.using)
            self.event_bus.emit(scope, Events.CONFIRMED, {"id": str(edit.id)})

        logger.info(
            "order edit confirmed",
            extra={"order_edit_id": str(edit.id), "detached": detached, "attached": attached},
        )
        return edit

    # ---- item changes ----

    def add_line_item(
        self,
        scope: TransactionScope,
        edit_id,
        variant_id,
        quantity: int,
        metadata: Optional[dict] = None,
    ) -> OrderItemChange:
        """Add a new item to the edit and record an ITEM_ADD change.

        The item is priced for the order's region; adjustments are refreshed
        for the whole edit and tax lines are computed for the new item only.

        Raises:
            NotAllowed: The edit is not active.
        """
        with scope.atomic():
            edit = self.retrieve(scope, edit_id)
            self._ensure_active(edit, "add an item to")
            order = edit.order

            item = self.line_items.generate(
                scope,
                variant_id,
                order.region_id,
                quantity,
                metadata=metadata,
                order_edit_id=edit.id,
            )
            item = self.line_items.create(scope, item)

            self.refresh_adjustments(scope, edit.id)

            change = self.item_changes.create(
                scope,
                type=OrderItemChangeType.ITEM_ADD,
                order_edit_id=edit.id,
                line_item_id=item.id,
            )

            item = self.line_items.retrieve(scope, item.id)
            local_cart = self.totals.order_aggregate(scope, order, items=[item])
            context = self.totals.get_calculation_context(local_cart, exclude_shipping=True)
            self.tax_provider.create_tax_lines(scope, [item], context)

        return change

    def update_line_item(self, scope: TransactionScope, edit_id, item_id, quantity: int) -> OrderItemChange:
        """Set the quantity of an edit item, creating or reusing its change record.

        The first update of an untouched clone records an ITEM_UPDATE change
        pointing at the original order item; later updates of the same item
        (or of an added item) reuse the change it already has.

        Raises:
            NotAllowed: The edit is not active.
            InvalidData: The item does not belong to the edit.
        """
        with scope.atomic():
            edit = self.retrieve(scope, edit_id)
            self._ensure_active(edit, "update an item on")
            item = self._retrieve_edit_item(scope, edit, item_id)

            changes = self.item_changes.list(scope, line_item_id=item.id)
            change = changes[-1] if changes else None
            if change is None:
                change = self.item_changes.create(
                    scope,
                    type=OrderItemChangeType.ITEM_UPDATE,
                    order_edit_id=edit.id,
                    original_line_item_id=item.original_item_id,
                    line_item_id=item.id,
                )

            self.line_items.update(scope, change.line_item_id, quantity=quantity)
            self.refresh_adjustments(scope, edit.id)

        return change

    def remove_line_item(self, scope: TransactionScope, edit_id, item_id) -> Optional[OrderItemChange]:
        """Remove an item from the edit.

        Removing a clone of an order item records an ITEM_REMOVE change (and
        drops any ITEM_UPDATE it had). Removing an item the edit added just
        drops its ITEM_ADD change; nothing is recorded then.

        Raises:
            NotAllowed: The edit is not active.
            InvalidData: The item does not belong to the edit.
        """
        with scope.atomic():
            edit = self.retrieve(scope, edit_id)
            self._ensure_active(edit, "remove an item from")
            item = self._retrieve_edit_item(scope, edit, item_id)

            for change in self.item_changes.list(scope, line_item_id=item.id):
                self.item_changes.delete(scope, change.id)
            self._delete_items(scope, [item.id])

            change = None
            if item.original_item_id:
                change = self.item_changes.create(
                    scope,
                    type=OrderItemChangeType.ITEM_REMOVE,
                    order_edit_id=edit.id,
                    original_line_item_id=item.original_item_id,
                )

            self.refresh_adjustments(scope, edit.id)
        return change

    def delete_item_change(self, scope: TransactionScope, edit_id, change_id) -> None:
        """Delete a change and revert the diff it recorded.

        ITEM_ADD removes the added item, ITEM_UPDATE restores the original
        quantity, ITEM_REMOVE clones the original item back into the edit.

        Raises:
            NotFound: Unknown change or edit.
            InvalidData: The change belongs to another edit.
            NotAllowed: The edit is confirmed or canceled.
        """
        with scope.atomic():
            change = self.item_changes.retrieve(scope, change_id)
            edit = self.retrieve(scope, edit_id)

            if change.order_edit_id != edit.id:
                raise InvalidData(
                    f"The item change you are trying to delete doesn't belong to the OrderEdit with id: {edit_id}."
                )
            if edit.confirmed_at is not None or edit.canceled_at is not None:
                raise NotAllowed(f"Cannot delete an item change from a {edit.status.value} order edit")

            self.item_changes.delete(scope, change.id)

            if change.type == OrderItemChangeType.ITEM_ADD.value and change.line_item_id:
                self._delete_items(scope, [change.line_item_id])
            elif change.type == OrderItemChangeType.ITEM_UPDATE.value and change.line_item_id:
                original = change.original_line_item
                if original is not None:
                    self.line_items.update(scope, change.line_item_id, quantity=original.quantity)
            elif change.type == OrderItemChangeType.ITEM_REMOVE.value and change.original_line_item_id:
                self.line_items.clone_to(scope, [change.original_line_item_id], edit.id)

            self.refresh_adjustments(scope, edit.id)

    def delete_cloned_items(self, scope: TransactionScope, edit_id) -> None:
        items = self.line_items.list(scope, order_edit_id=edit_id)
        self._delete_items(scope, [it.id for it in items])

    # ---- helpers ----

    def _delete_items(self, scope: TransactionScope, item_ids) -> None:
        self.tax_provider.clear_line_items_tax_lines(scope, item_ids)
        self.adjustments.delete_for_items(scope, item_ids)
        for item_id in item_ids:
            self.line_items.delete(scope, item_id)

    def _retrieve_edit_item(self, scope: TransactionScope, edit: OrderEdit, item_id):
        item = self.line_items.retrieve(scope, item_id)
        if item.order_edit_id != edit.id:
            raise InvalidData(
                f"Invalid line item id {item_id} it does not belong to the same order edit {edit.id}."
            )
        return item

    @staticmethod
    def _ensure_active(edit: OrderEdit, action: str) -> None:
        if not is_active(edit.status):
            raise NotAllowed(f"Can not {action} the order edit {edit.id} with the status {edit.status.value}")
