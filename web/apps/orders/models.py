import uuid
from decimal import Decimal

from django.db import models


class Region(models.Model):
    """Pricing and tax context shared by orders and carts.

    ``tax_rate`` is a percentage (``Decimal("10.00")`` means 10%).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=128)
    currency_code = models.CharField(max_length=3, default="EUR")
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0"))
    tax_code = models.CharField(max_length=64, blank=True, default="")
    gift_cards_taxable = models.BooleanField(default=True)

    class Meta:
        db_table = "regions"

    def __str__(self):
        return f"Region({self.name})"


class ProductVariant(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=255)
    sku = models.CharField(max_length=64, unique=True, null=True, blank=True)

    class Meta:
        db_table = "product_variants"


class VariantPrice(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    variant = models.ForeignKey(ProductVariant, on_delete=models.CASCADE, related_name="prices")
    region = models.ForeignKey(Region, on_delete=models.CASCADE, related_name="+")
    amount = models.PositiveIntegerField()

    class Meta:
        db_table = "variant_prices"
        constraints = [
            models.UniqueConstraint(fields=["variant", "region"], name="uniq_variant_region_price"),
        ]


class Discount(models.Model):
    class RuleType(models.TextChoices):
        PERCENTAGE = "percentage"
        FIXED = "fixed"
        FREE_SHIPPING = "free_shipping"

    class Allocation(models.TextChoices):
        TOTAL = "total"
        ITEM = "item"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=64, unique=True)
    rule_type = models.CharField(max_length=16, choices=RuleType.choices)
    # percent for PERCENTAGE, minor units for FIXED
    value = models.PositiveIntegerField(default=0)
    allocation = models.CharField(max_length=8, choices=Allocation.choices, default=Allocation.TOTAL)

    class Meta:
        db_table = "discounts"


class GiftCard(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=64, unique=True)
    balance = models.PositiveIntegerField(default=0)
    region = models.ForeignKey(Region, on_delete=models.PROTECT, related_name="+")

    class Meta:
        db_table = "gift_cards"


class Order(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    region = models.ForeignKey(Region, on_delete=models.PROTECT, related_name="orders")
    customer_id = models.CharField(max_length=64, null=True, blank=True)
    email = models.EmailField(blank=True, default="")
    discounts = models.ManyToManyField(Discount, blank=True, related_name="orders")
    gift_cards = models.ManyToManyField(GiftCard, blank=True, related_name="orders")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]

    def __str__(self):
        return f"Order({self.id})"


class Cart(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    region = models.ForeignKey(Region, on_delete=models.PROTECT, related_name="carts")
    customer_id = models.CharField(max_length=64, null=True, blank=True)
    email = models.EmailField(blank=True, default="")
    discounts = models.ManyToManyField(Discount, blank=True, related_name="carts")
    gift_cards = models.ManyToManyField(GiftCard, blank=True, related_name="carts")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "carts"


class ShippingMethod(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(
        Order, null=True, blank=True, on_delete=models.CASCADE, related_name="shipping_methods"
    )
    cart = models.ForeignKey(
        Cart, null=True, blank=True, on_delete=models.CASCADE, related_name="shipping_methods"
    )
    name = models.CharField(max_length=128)
    price = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "shipping_methods"


class LineItem(models.Model):
    """A priced quantity of a variant.

    An item belongs to a cart, an order, or an order edit that is reworking
    an order. Items cloned into an edit point back at the order item they
    were copied from through ``original_item``. After the edit is confirmed
    its items are reparented to the order and keep ``order_edit`` as
    provenance.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(
        Order, null=True, blank=True, on_delete=models.CASCADE, related_name="items"
    )
    cart = models.ForeignKey(
        Cart, null=True, blank=True, on_delete=models.CASCADE, related_name="items"
    )
    order_edit = models.ForeignKey(
        "order_edits.OrderEdit", null=True, blank=True, on_delete=models.CASCADE, related_name="items"
    )
    original_item = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.SET_NULL, related_name="clones"
    )
    variant = models.ForeignKey(
        ProductVariant, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    title = models.CharField(max_length=255)
    unit_price = models.PositiveIntegerField()
    quantity = models.PositiveIntegerField()
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "line_items"
        ordering = ["created_at"]

    def __str__(self):
        return f"LineItem({self.title} x{self.quantity})"


class LineItemTaxLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item = models.ForeignKey(LineItem, on_delete=models.CASCADE, related_name="tax_lines")
    rate = models.DecimalField(max_digits=5, decimal_places=2)
    name = models.CharField(max_length=128)
    code = models.CharField(max_length=64, blank=True, default="")

    class Meta:
        db_table = "line_item_tax_lines"


class ShippingMethodTaxLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    shipping_method = models.ForeignKey(
        ShippingMethod, on_delete=models.CASCADE, related_name="tax_lines"
    )
    rate = models.DecimalField(max_digits=5, decimal_places=2)
    name = models.CharField(max_length=128)
    code = models.CharField(max_length=64, blank=True, default="")

    class Meta:
        db_table = "shipping_method_tax_lines"


class LineItemAdjustment(models.Model):
    """Discount amount (minor units) applied to a line item."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item = models.ForeignKey(LineItem, on_delete=models.CASCADE, related_name="adjustments")
    discount = models.ForeignKey(
        Discount, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    description = models.CharField(max_length=255, blank=True, default="")
    amount = models.PositiveIntegerField()

    class Meta:
        db_table = "line_item_adjustments"
