"""Shared fixtures: a taxed region, priced variants, an order and a cart.

Amounts are minor units. The region taxes everything at 10%, so a 1000
item carries 100 of tax.
"""

from decimal import Decimal

import pytest

from apps.core.context import TransactionScope


@pytest.fixture(autouse=True)
def use_system_tax_provider(settings):
    settings.USE_HTTP_TAX_PROVIDER = False


@pytest.fixture
def scope():
    return TransactionScope(actor_id="admin_1")


@pytest.fixture
def region(db):
    from apps.orders.models import Region

    return Region.objects.create(name="EU", currency_code="EUR", tax_rate=Decimal("10.00"), tax_code="VAT")


def _variant(region, title, amount):
    from apps.orders.models import ProductVariant, VariantPrice

    variant = ProductVariant.objects.create(title=title, sku=title.upper().replace(" ", "-"))
    VariantPrice.objects.create(variant=variant, region=region, amount=amount)
    return variant


@pytest.fixture
def variant(region):
    """Variant priced 1000 in ``region``."""
    return _variant(region, "Shirt", 1000)


@pytest.fixture
def cheap_variant(region):
    """Variant priced 500 in ``region``."""
    return _variant(region, "Socks", 500)


def _add_item(owner_field, owner, variant, unit_price, quantity, rate=Decimal("10.00")):
    from apps.orders.models import LineItem, LineItemTaxLine

    item = LineItem.objects.create(
        variant=variant, title=variant.title, unit_price=unit_price, quantity=quantity, **{owner_field: owner}
    )
    if rate:
        LineItemTaxLine.objects.create(item=item, rate=rate, name="default", code="VAT")
    return item


@pytest.fixture
def empty_order(region):
    from apps.orders.models import Order

    return Order.objects.create(region=region, customer_id="cus_1", email="buyer@example.com")


@pytest.fixture
def order(empty_order, variant, cheap_variant):
    """Order with a 1000 x1 shirt and a 500 x2 socks line, both taxed at 10%.

    subtotal 2000, tax_total 200, total 2200.
    """
    _add_item("order", empty_order, variant, 1000, 1)
    _add_item("order", empty_order, cheap_variant, 500, 2)
    return empty_order


@pytest.fixture
def order_items(order):
    return list(order.items.order_by("created_at", "id"))


@pytest.fixture
def cart(region, variant):
    """Cart with a 1000 x2 shirt line and a 300 shipping method, no tax lines yet."""
    from apps.orders.models import Cart, ShippingMethod

    cart = Cart.objects.create(region=region, customer_id="cus_1")
    _add_item("cart", cart, variant, 1000, 2, rate=None)
    ShippingMethod.objects.create(cart=cart, name="Standard", price=300)
    return cart


@pytest.fixture
def edit_service(db):
    from apps.order_edits.providers import get_order_edit_service

    return get_order_edit_service()


@pytest.fixture
def staged_events(db):
    """Return a callable listing the names of staged events, oldest first."""
    from apps.events.models import StagedEvent

    def _names():
        return list(StagedEvent.objects.order_by("created_at").values_list("event_name", flat=True))

    return _names
