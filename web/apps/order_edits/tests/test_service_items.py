"""Tests for item mutations on an order edit and the totals they produce."""

import pytest

from apps.core.errors import InvalidData, NotAllowed, NotFound
from apps.order_edits.domain import OrderItemChangeType
from apps.order_edits.models import OrderItemChange
from apps.orders.models import Discount, LineItem, LineItemAdjustment, LineItemTaxLine, Order


def _clone_of(edit, original):
    return LineItem.objects.get(order_edit=edit, original_item=original)


@pytest.fixture
def edit(edit_service, scope, order):
    return edit_service.create(scope, order.id)


# ---- add ----

@pytest.mark.django_db
def test_add_line_item_totals_example(edit_service, scope, empty_order, variant):
    """One ITEM_ADD of 2 x 1000 at 10%: subtotal 2000, tax 200, total 2200."""
    edit = edit_service.create(scope, empty_order.id)

    change = edit_service.add_line_item(scope, edit.id, variant.id, 2)

    assert change.type == OrderItemChangeType.ITEM_ADD.value
    assert change.original_line_item_id is None
    totals = edit_service.get_totals(scope, edit.id)
    assert totals.subtotal == 2000
    assert totals.tax_total == 200
    assert totals.total == 2200
    assert totals.discount_total == 0
    assert totals.shipping_total == 0


@pytest.mark.django_db
def test_add_line_item_taxes_only_the_new_item(edit_service, scope, edit, variant, monkeypatch):
    from apps.orders.adapters import SystemTaxProvider

    seen = []
    original = SystemTaxProvider.get_tax_lines

    def spy(self, items, context):
        seen.append(([it.id for it in items], context.shipping_methods))
        return original(self, items, context)

    monkeypatch.setattr(SystemTaxProvider, "get_tax_lines", spy)

    change = edit_service.add_line_item(scope, edit.id, variant.id, 1, metadata={"gift": True})

    assert seen == [([change.line_item_id], ())]
    item = LineItem.objects.get(id=change.line_item_id)
    assert item.order_edit_id == edit.id
    assert item.order_id is None
    assert item.unit_price == 1000
    assert item.metadata == {"gift": True}
    assert LineItemTaxLine.objects.filter(item=item).count() == 1


@pytest.mark.django_db
def test_add_line_item_without_price(edit_service, scope, edit):
    from apps.orders.models import ProductVariant

    unpriced = ProductVariant.objects.create(title="Hat", sku="HAT")
    with pytest.raises(InvalidData):
        edit_service.add_line_item(scope, edit.id, unpriced.id, 1)
    assert not OrderItemChange.objects.filter(order_edit=edit).exists()


@pytest.mark.django_db
def test_add_line_item_to_canceled_edit(edit_service, scope, edit, variant):
    edit_service.cancel(scope, edit.id)
    with pytest.raises(NotAllowed):
        edit_service.add_line_item(scope, edit.id, variant.id, 1)


# ---- update ----

@pytest.mark.django_db
def test_update_twice_records_one_item_update(edit_service, scope, edit, order_items):
    clone = _clone_of(edit, order_items[0])

    first = edit_service.update_line_item(scope, edit.id, clone.id, 3)
    second = edit_service.update_line_item(scope, edit.id, clone.id, 5)

    changes = list(OrderItemChange.objects.filter(order_edit=edit))
    assert len(changes) == 1
    assert first.id == second.id
    assert changes[0].type == OrderItemChangeType.ITEM_UPDATE.value
    assert changes[0].original_line_item_id == order_items[0].id
    assert changes[0].line_item_id == clone.id

    clone.refresh_from_db()
    assert clone.quantity == 5
    totals = edit_service.get_totals(scope, edit.id)
    assert totals.subtotal == 6000
    assert totals.tax_total == 600


@pytest.mark.django_db
def test_update_added_item_reuses_item_add(edit_service, scope, edit, variant):
    added = edit_service.add_line_item(scope, edit.id, variant.id, 1)
    change = edit_service.update_line_item(scope, edit.id, added.line_item_id, 4)

    assert change.id == added.id
    assert OrderItemChange.objects.filter(order_edit=edit).count() == 1
    assert LineItem.objects.get(id=added.line_item_id).quantity == 4


@pytest.mark.django_db
def test_update_item_outside_the_edit(edit_service, scope, edit, order_items):
    with pytest.raises(InvalidData):
        edit_service.update_line_item(scope, edit.id, order_items[0].id, 2)


@pytest.mark.django_db
def test_update_refreshes_adjustments_for_the_whole_edit(edit_service, scope, order, edit, order_items):
    discount = Discount.objects.create(code="TEN", rule_type=Discount.RuleType.PERCENTAGE, value=10)
    order.discounts.add(discount)
    clone = _clone_of(edit, order_items[0])

    edit_service.update_line_item(scope, edit.id, clone.id, 2)

    amounts = {
        adj.item_id: adj.amount
        for adj in LineItemAdjustment.objects.filter(item__order_edit=edit)
    }
    assert amounts == {clone.id: 200, _clone_of(edit, order_items[1]).id: 100}

    totals = edit_service.get_totals(scope, edit.id)
    assert totals.subtotal == 3000
    assert totals.discount_total == 300
    assert totals.tax_total == 270
    assert totals.total == 2970


# ---- remove ----

@pytest.mark.django_db
def test_remove_cloned_item_records_item_remove(edit_service, scope, edit, order_items):
    clone = _clone_of(edit, order_items[0])
    edit_service.update_line_item(scope, edit.id, clone.id, 2)

    change = edit_service.remove_line_item(scope, edit.id, clone.id)

    assert change.type == OrderItemChangeType.ITEM_REMOVE.value
    assert change.original_line_item_id == order_items[0].id
    assert change.line_item_id is None
    assert list(OrderItemChange.objects.filter(order_edit=edit)) == [change]
    assert not LineItem.objects.filter(id=clone.id).exists()
    assert edit_service.get_totals(scope, edit.id).subtotal == 1000


@pytest.mark.django_db
def test_remove_added_item_drops_its_change(edit_service, scope, edit, variant):
    added = edit_service.add_line_item(scope, edit.id, variant.id, 1)

    assert edit_service.remove_line_item(scope, edit.id, added.line_item_id) is None
    assert not OrderItemChange.objects.filter(order_edit=edit).exists()
    assert not LineItem.objects.filter(id=added.line_item_id).exists()


# ---- delete item change ----

@pytest.mark.django_db
def test_delete_item_update_restores_quantity(edit_service, scope, edit, order_items):
    clone = _clone_of(edit, order_items[0])
    change = edit_service.update_line_item(scope, edit.id, clone.id, 7)

    edit_service.delete_item_change(scope, edit.id, change.id)

    clone.refresh_from_db()
    assert clone.quantity == order_items[0].quantity
    assert not OrderItemChange.objects.filter(id=change.id).exists()


@pytest.mark.django_db
def test_delete_item_add_removes_the_item(edit_service, scope, edit, variant):
    added = edit_service.add_line_item(scope, edit.id, variant.id, 1)

    edit_service.delete_item_change(scope, edit.id, added.id)

    assert not LineItem.objects.filter(id=added.line_item_id).exists()
    assert edit_service.get_totals(scope, edit.id).subtotal == 2000


@pytest.mark.django_db
def test_delete_item_remove_restores_a_clone(edit_service, scope, edit, order_items):
    change = edit_service.remove_line_item(scope, edit.id, _clone_of(edit, order_items[0]).id)

    edit_service.delete_item_change(scope, edit.id, change.id)

    restored = _clone_of(edit, order_items[0])
    assert restored.quantity == order_items[0].quantity
    assert edit_service.get_totals(scope, edit.id).subtotal == 2000


@pytest.mark.django_db
def test_delete_change_of_another_edit(edit_service, scope, edit, order_items, region, variant):
    other_order = Order.objects.create(region=region)
    other = edit_service.create(scope, other_order.id)
    change = edit_service.add_line_item(scope, other.id, variant.id, 1)

    with pytest.raises(InvalidData):
        edit_service.delete_item_change(scope, edit.id, change.id)


@pytest.mark.django_db
def test_delete_change_after_confirm(edit_service, scope, edit, variant):
    change = edit_service.add_line_item(scope, edit.id, variant.id, 1)
    edit_service.confirm(scope, edit.id)

    with pytest.raises(NotAllowed):
        edit_service.delete_item_change(scope, edit.id, change.id)


@pytest.mark.django_db
def test_delete_unknown_change(edit_service, scope, edit):
    with pytest.raises(NotFound):
        edit_service.delete_item_change(scope, edit.id, "3f1a9f43-0000-4000-8000-000000000000")


# ---- totals ----

@pytest.mark.django_db
def test_decorate_totals_sets_difference_due(edit_service, scope, edit, variant):
    edit_service.add_line_item(scope, edit.id, variant.id, 1)

    decorated = edit_service.decorate_totals(scope, edit_service.retrieve(scope, edit.id))

    assert decorated.subtotal == 3000
    assert decorated.tax_total == 300
    assert decorated.total == 3300
    assert decorated.difference_due == 1100
