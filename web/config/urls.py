from django.urls import include, path

from apps.monitoring.api import health_view

urlpatterns = [
    path("admin/order-edits/", include("apps.order_edits.urls")),
    path("store/order-edits/", include("apps.order_edits.store_urls")),
    path("store/carts/", include("apps.orders.urls")),
    path("health/", health_view, name="health"),
]
