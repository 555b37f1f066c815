"""HTTP views for order edits.

Views stay small: they validate the body with a pydantic schema, build a
``TransactionScope`` carrying the acting user (``X-Actor-Id`` header),
delegate to ``OrderEditService`` and render the edit with its totals.
Domain errors propagate to ``gateway.errors.commerce_exception_handler``,
which maps them to ``{"detail", "message"}`` bodies.

Admin routes live under ``/admin/order-edits/``; customers only get to read
an edit and decline it (``/store/order-edits/``).
"""

from pydantic import BaseModel, ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.context import TransactionScope
from apps.core.errors import InvalidData

from . import providers
from .schemas import (
    AddLineItemIn,
    CreateOrderEditIn,
    DeclineIn,
    UpdateLineItemIn,
    UpdateOrderEditIn,
    serialize_order_edit,
)

STORE_HIDDEN_FIELDS = ("internal_note", "created_by", "confirmed_by", "canceled_by")


def _validate(schema: type[BaseModel], data) -> BaseModel:
    try:
        return schema.model_validate(data or {})
    except ValidationError as e:
        raise InvalidData(str(e))


class OrderEditAPIView(APIView):
    """Base view holding the scope and rendering helpers."""

    hidden_fields: tuple = ()

    def get_scope(self, request) -> TransactionScope:
        return TransactionScope(actor_id=request.headers.get("X-Actor-Id") or None)

    def render_edit(self, scope, service, edit) -> dict:
        edit = service.decorate_totals(scope, edit)
        body = serialize_order_edit(
            edit,
            changes=service.item_changes.list(scope, order_edit_id=edit.id),
            items=service.totals.load_items(scope, order_edit_id=edit.id),
            totals=service.totals,
        )
        for name in self.hidden_fields:
            body.pop(name, None)
        return body

    def respond(self, scope, service, edit_id, status_code=status.HTTP_200_OK) -> Response:
        edit = service.retrieve(scope, edit_id)
        return Response({"order_edit": self.render_edit(scope, service, edit)}, status=status_code)


class OrderEditCollectionView(OrderEditAPIView):
    def get(self, request):
        """List edits, newest first, optionally filtered by ``?order_id=``.

        Returns:
            Response: 200 with {"order_edits": [...], "count": n}.
        """
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        order_id = request.query_params.get("order_id") or None
        if order_id is not None:
            service.totals.retrieve_order(scope, order_id)
        edits = service.list(scope, order_id=order_id)
        results = [self.render_edit(scope, service, edit) for edit in edits]
        return Response({"order_edits": results, "count": len(results)})

    def post(self, request):
        """Open an edit on an order.

        Args:
            request (Request): JSON body ``{order_id, internal_note?}``.

        Returns:
            Response: One of the following responses.
            - 201 with {"order_edit": {...}} when the edit is created.
            - 400 with {detail: "INVALID_DATA"} for an invalid body or when
              the order already has an active edit.
            - 404 with {detail: "NOT_FOUND"} for an unknown order.
        """
        dto = _validate(CreateOrderEditIn, request.data)
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        edit = service.create(scope, dto.order_id, internal_note=dto.internal_note)
        return self.respond(scope, service, edit.id, status_code=status.HTTP_201_CREATED)


class OrderEditDetailView(OrderEditAPIView):
    def get(self, request, edit_id):
        scope = self.get_scope(request)
        return self.respond(scope, providers.get_order_edit_service(), edit_id)

    def post(self, request, edit_id):
        dto = _validate(UpdateOrderEditIn, request.data)
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        service.update(scope, edit_id, internal_note=dto.internal_note)
        return self.respond(scope, service, edit_id)

    def delete(self, request, edit_id):
        """Delete an edit still in CREATED; 422 once it moved on."""
        scope = self.get_scope(request)
        providers.get_order_edit_service().delete(scope, edit_id)
        return Response({"id": str(edit_id), "object": "order_edit", "deleted": True})


class OrderEditItemsView(OrderEditAPIView):
    def post(self, request, edit_id):
        """Add a variant to the edit (records an ITEM_ADD change)."""
        dto = _validate(AddLineItemIn, request.data)
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        service.add_line_item(scope, edit_id, dto.variant_id, dto.quantity, metadata=dto.metadata)
        return self.respond(scope, service, edit_id)


class OrderEditItemView(OrderEditAPIView):
    def post(self, request, edit_id, item_id):
        """Set the quantity of one of the edit's items."""
        dto = _validate(UpdateLineItemIn, request.data)
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        service.update_line_item(scope, edit_id, item_id, dto.quantity)
        return self.respond(scope, service, edit_id)

    def delete(self, request, edit_id, item_id):
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        service.remove_line_item(scope, edit_id, item_id)
        return self.respond(scope, service, edit_id)


class OrderEditChangeView(OrderEditAPIView):
    def delete(self, request, edit_id, change_id):
        """Delete an item change and revert what it recorded."""
        scope = self.get_scope(request)
        providers.get_order_edit_service().delete_item_change(scope, edit_id, change_id)
        return Response({"id": str(change_id), "object": "item_change", "deleted": True})


class OrderEditRequestView(OrderEditAPIView):
    def post(self, request, edit_id):
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        service.request_confirmation(scope, edit_id)
        return self.respond(scope, service, edit_id)


class OrderEditCancelView(OrderEditAPIView):
    def post(self, request, edit_id):
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        service.cancel(scope, edit_id)
        return self.respond(scope, service, edit_id)


class OrderEditConfirmView(OrderEditAPIView):
    def post(self, request, edit_id):
        """Apply the edit to its order."""
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        service.confirm(scope, edit_id)
        return self.respond(scope, service, edit_id)


class StoreOrderEditView(OrderEditAPIView):
    """Customer-facing read of an edit, without staff-only fields."""

    hidden_fields = STORE_HIDDEN_FIELDS

    def get(self, request, edit_id):
        scope = self.get_scope(request)
        return self.respond(scope, providers.get_order_edit_service(), edit_id)


class StoreOrderEditDeclineView(OrderEditAPIView):
    hidden_fields = STORE_HIDDEN_FIELDS

    def post(self, request, edit_id):
        """Decline a requested edit, with an optional reason."""
        dto = _validate(DeclineIn, request.data)
        scope = self.get_scope(request)
        service = providers.get_order_edit_service()
        service.decline(scope, edit_id, declined_reason=dto.declined_reason)
        return self.respond(scope, service, edit_id)
