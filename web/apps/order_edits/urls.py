from django.urls import path

from .views import (
    OrderEditCancelView,
    OrderEditChangeView,
    OrderEditCollectionView,
    OrderEditConfirmView,
    OrderEditDetailView,
    OrderEditItemsView,
    OrderEditItemView,
    OrderEditRequestView,
)

app_name = "order_edits"

urlpatterns = [
    path("", OrderEditCollectionView.as_view(), name="collection"),  # GET list / POST create
    path("<uuid:edit_id>/", OrderEditDetailView.as_view(), name="detail"),
    path("<uuid:edit_id>/items/", OrderEditItemsView.as_view(), name="items"),
    path("<uuid:edit_id>/items/<uuid:item_id>/", OrderEditItemView.as_view(), name="item"),
    path("<uuid:edit_id>/changes/<uuid:change_id>/", OrderEditChangeView.as_view(), name="change"),
    path("<uuid:edit_id>/request/", OrderEditRequestView.as_view(), name="request"),
    path("<uuid:edit_id>/cancel/", OrderEditCancelView.as_view(), name="cancel"),
    path("<uuid:edit_id>/confirm/", OrderEditConfirmView.as_view(), name="confirm"),
]
