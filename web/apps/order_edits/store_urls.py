from django.urls import path

from .views import StoreOrderEditDeclineView, StoreOrderEditView

app_name = "store_order_edits"

urlpatterns = [
    path("<uuid:edit_id>/", StoreOrderEditView.as_view(), name="detail"),
    path("<uuid:edit_id>/decline/", StoreOrderEditDeclineView.as_view(), name="decline"),
]
