from django.urls import path

from .views import CartTaxesView

app_name = "carts"

urlpatterns = [
    path("<uuid:cart_id>/taxes/", CartTaxesView.as_view(), name="cart-taxes"),
]
