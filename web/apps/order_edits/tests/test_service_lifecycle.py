"""Tests for the order edit lifecycle: create, request, decline, cancel, confirm, delete.

The service runs against the in-process tax provider and the shared order
fixture (a 1000 x1 line and a 500 x2 line taxed at 10%).
"""

import threading
import time

import pytest
from django.db import connection

from apps.core.context import TransactionScope
from apps.core.errors import InvalidData, NotAllowed, NotFound
from apps.order_edits.domain import OrderEditStatus, OrderItemChangeType
from apps.order_edits.models import OrderEdit, OrderItemChange
from apps.order_edits.services import OrderEditService
from apps.orders.models import LineItem, LineItemTaxLine


def _request(edit_service, scope, edit, order_items):
    """Touch one item so the edit has a change, then request confirmation."""
    clone = LineItem.objects.get(order_edit=edit, original_item=order_items[0])
    edit_service.update_line_item(scope, edit.id, clone.id, 2)
    return edit_service.request_confirmation(scope, edit.id)


@pytest.mark.django_db
def test_create_clones_order_items(edit_service, scope, order, order_items, staged_events):
    edit = edit_service.create(scope, order.id, internal_note="customer called")

    assert edit.status == OrderEditStatus.CREATED
    assert edit.created_by == "admin_1"
    assert edit.internal_note == "customer called"

    clones = list(LineItem.objects.filter(order_edit=edit))
    assert len(clones) == 2
    assert {c.original_item_id for c in clones} == {it.id for it in order_items}
    assert all(c.order_id is None for c in clones)
    assert LineItemTaxLine.objects.filter(item__in=clones).count() == 2
    assert staged_events() == ["order-edit.created"]


@pytest.mark.django_db
def test_create_unknown_order(edit_service, scope):
    with pytest.raises(NotFound):
        edit_service.create(scope, "3f1a9f43-0000-4000-8000-000000000000")


@pytest.mark.django_db
def test_create_with_active_edit_fails(edit_service, scope, order):
    edit_service.create(scope, order.id)
    with pytest.raises(InvalidData):
        edit_service.create(scope, order.id)
    assert OrderEdit.objects.filter(order=order).count() == 1


@pytest.mark.django_db
def test_racing_create_loses_on_constraint(edit_service, scope, order, monkeypatch):
    """A creator that missed the active edit check still gets InvalidData."""
    edit_service.create(scope, order.id)
    monkeypatch.setattr(edit_service, "retrieve_active", lambda scope, order_id: None)

    with pytest.raises(InvalidData):
        edit_service.create(scope, order.id)
    assert OrderEdit.objects.filter(order=order).count() == 1


@pytest.mark.django_db(transaction=True)
def test_concurrent_creates_leave_one_winner(edit_service, order, monkeypatch):
    """Two connections opening an edit at once: one wins, the other gets InvalidData."""
    checked = OrderEditService.retrieve_active

    def slow_check(self, scope, order_id):
        found = checked(self, scope, order_id)
        time.sleep(0.2)
        return found

    monkeypatch.setattr(OrderEditService, "retrieve_active", slow_check)
    start = threading.Barrier(2)
    outcomes = []

    def open_edit():
        start.wait()
        try:
            edit_service.create(TransactionScope(actor_id="admin_1"), order.id)
            outcomes.append("created")
        except Exception as e:
            outcomes.append(type(e).__name__)
        finally:
            connection.close()

    threads = [threading.Thread(target=open_edit) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(outcomes) == ["InvalidData", "created"]
    assert OrderEdit.objects.filter(order=order).count() == 1


@pytest.mark.django_db
def test_create_after_cancel(edit_service, scope, order):
    first = edit_service.create(scope, order.id)
    edit_service.cancel(scope, first.id)

    second = edit_service.create(scope, order.id)
    assert second.id != first.id
    assert edit_service.retrieve_active(scope, order.id).id == second.id


@pytest.mark.django_db
def test_update_internal_note(edit_service, scope, order, staged_events):
    edit = edit_service.create(scope, order.id)
    edit_service.update(scope, edit.id, internal_note="ship faster")

    assert OrderEdit.objects.get(id=edit.id).internal_note == "ship faster"
    assert staged_events()[-1] == "order-edit.updated"


@pytest.mark.django_db
def test_list_filters_by_order(edit_service, scope, order):
    edit = edit_service.create(scope, order.id)
    assert [e.id for e in edit_service.list(scope, order_id=order.id)] == [edit.id]
    assert edit_service.list(scope, order_id="3f1a9f43-0000-4000-8000-000000000000") == []


@pytest.mark.django_db
def test_retrieve_unknown_or_malformed_id(edit_service, scope):
    with pytest.raises(NotFound):
        edit_service.retrieve(scope, "3f1a9f43-0000-4000-8000-000000000000")
    with pytest.raises(NotFound):
        edit_service.retrieve(scope, "not-a-uuid")


# ---- request confirmation ----

@pytest.mark.django_db
def test_request_without_changes_fails(edit_service, scope, order):
    edit = edit_service.create(scope, order.id)
    with pytest.raises(InvalidData):
        edit_service.request_confirmation(scope, edit.id)


@pytest.mark.django_db
def test_request_is_idempotent(edit_service, scope, order, order_items, staged_events):
    edit = edit_service.create(scope, order.id)
    first = _request(edit_service, scope, edit, order_items)
    again = edit_service.request_confirmation(scope, edit.id)

    assert first.status == OrderEditStatus.REQUESTED
    assert first.requested_by == "admin_1"
    assert again.requested_at == first.requested_at
    assert staged_events().count("order-edit.requested") == 1


# ---- decline ----

@pytest.mark.django_db
def test_decline_requires_requested(edit_service, scope, order):
    edit = edit_service.create(scope, order.id)
    with pytest.raises(NotAllowed):
        edit_service.decline(scope, edit.id)


@pytest.mark.django_db
def test_decline_records_reason_once(edit_service, scope, order, order_items, staged_events):
    edit = edit_service.create(scope, order.id)
    _request(edit_service, scope, edit, order_items)

    store_scope = scope.as_actor("cus_1")
    declined = edit_service.decline(store_scope, edit.id, declined_reason="too expensive")
    again = edit_service.decline(store_scope, edit.id, declined_reason="other")

    assert declined.status == OrderEditStatus.DECLINED
    assert declined.declined_by == "cus_1"
    assert again.declined_reason == "too expensive"
    assert staged_events().count("order-edit.declined") == 1
    assert edit_service.retrieve_active(scope, order.id) is None


# ---- cancel ----

@pytest.mark.django_db
def test_cancel_created_edit(edit_service, scope, order, staged_events):
    edit = edit_service.create(scope, order.id)
    canceled = edit_service.cancel(scope, edit.id)
    edit_service.cancel(scope, edit.id)

    assert canceled.status == OrderEditStatus.CANCELED
    assert canceled.canceled_by == "admin_1"
    assert staged_events().count("order-edit.canceled") == 1


@pytest.mark.django_db
def test_cancel_rejected_after_confirm_or_decline(edit_service, scope, order, order_items):
    edit = edit_service.create(scope, order.id)
    _request(edit_service, scope, edit, order_items)
    edit_service.decline(scope, edit.id)
    with pytest.raises(NotAllowed):
        edit_service.cancel(scope, edit.id)

    other = edit_service.create(scope, order.id)
    edit_service.confirm(scope, other.id)
    with pytest.raises(NotAllowed):
        edit_service.cancel(scope, other.id)


# ---- confirm ----

@pytest.mark.django_db
def test_confirm_hands_items_over_to_the_order(edit_service, scope, order, order_items, staged_events):
    edit = edit_service.create(scope, order.id)
    _request(edit_service, scope, edit, order_items)

    confirmed = edit_service.confirm(scope, edit.id)

    assert confirmed.status == OrderEditStatus.CONFIRMED
    assert confirmed.confirmed_by == "admin_1"
    edit_item_ids = set(LineItem.objects.filter(order_edit=edit).values_list("id", flat=True))
    assert set(order.items.values_list("id", flat=True)) == edit_item_ids
    for original in order_items:
        original.refresh_from_db()
        assert original.order_id is None
    assert staged_events()[-1] == "order-edit.confirmed"


@pytest.mark.django_db
def test_confirm_is_idempotent(edit_service, scope, order, staged_events):
    edit = edit_service.create(scope, order.id)
    first = edit_service.confirm(scope, edit.id)
    again = edit_service.confirm(scope, edit.id)

    assert again.confirmed_at == first.confirmed_at
    assert staged_events().count("order-edit.confirmed") == 1


@pytest.mark.django_db
def test_confirm_rejected_when_canceled(edit_service, scope, order):
    edit = edit_service.create(scope, order.id)
    edit_service.cancel(scope, edit.id)
    with pytest.raises(NotAllowed):
        edit_service.confirm(scope, edit.id)


# ---- delete ----

@pytest.mark.django_db
def test_delete_created_edit_removes_clones_and_changes(edit_service, scope, order, order_items, variant):
    edit = edit_service.create(scope, order.id)
    edit_service.add_line_item(scope, edit.id, variant.id, 1)

    edit_service.delete(scope, edit.id)

    assert not OrderEdit.objects.filter(id=edit.id).exists()
    assert not LineItem.objects.filter(order_edit_id=edit.id).exists()
    assert not OrderItemChange.objects.filter(order_edit_id=edit.id).exists()
    assert order.items.count() == len(order_items)


@pytest.mark.django_db
def test_delete_unknown_edit_is_a_noop(edit_service, scope):
    edit_service.delete(scope, "3f1a9f43-0000-4000-8000-000000000000")


@pytest.mark.django_db
def test_delete_requested_edit_not_allowed(edit_service, scope, order, order_items):
    edit = edit_service.create(scope, order.id)
    _request(edit_service, scope, edit, order_items)
    with pytest.raises(NotAllowed):
        edit_service.delete(scope, edit.id)
    assert OrderItemChange.objects.filter(
        order_edit=edit, type=OrderItemChangeType.ITEM_UPDATE.value
    ).exists()
