"""HTTP views for carts.

Tax calculation is the one cart endpoint with side effects worth guarding:
it may call a third-party tax provider and it rewrites the cart's tax
lines. It is therefore run through the idempotency ledger. The client may
send an ``Idempotency-Key`` header (one is generated otherwise and echoed
back); a retry with the same key resumes at the stage where the previous
attempt stopped and, once finished, replays the stored response without
calling the tax provider again.

Stages:
    started    → recompute and store tax lines for items and shipping
    tax_lines  → load the cart with totals, finish with 200 {"cart": ...}
"""

from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.context import TransactionScope
from apps.idempotency.runner import RecoveryPointRunner
from apps.idempotency.services import IdempotencyKeyService, StageResponse

from . import providers


class CartTaxesView(APIView):
    """``POST /store/carts/<id>/taxes``: idempotent tax calculation."""

    def post(self, request, cart_id):
        """Calculate taxes for a cart.

        Args:
            request (Request): DRF request with an optional ``Idempotency-Key`` header.
            cart_id (UUID): Cart to calculate taxes for.

        Returns:
            Response: The stored response of the idempotent request:
            - 200 with {"cart": {...}} when the calculation finished.
            - 500 with {detail, message} when a stage failed.
            - 409 when another worker is processing the same key.
        """
        scope = TransactionScope()
        ledger = IdempotencyKeyService()
        carts = providers.get_cart_service()

        with scope.atomic():
            record = ledger.initialize_request(
                scope,
                request.headers.get("Idempotency-Key", ""),
                request.method,
                {"id": str(cart_id)},
                request.path,
            )

        def tax_lines_stage(stage_scope):
            carts.refresh_tax_lines(stage_scope, cart_id, idempotency_key=record.idempotency_key)
            return "tax_lines"

        def totals_stage(stage_scope):
            cart = carts.retrieve_with_totals(stage_scope, cart_id)
            return StageResponse(response_code=200, response_body={"cart": cart})

        runner = RecoveryPointRunner(ledger, {"started": tax_lines_stage, "tax_lines": totals_stage})
        record = runner.run(scope, record)

        resp = Response(record.response_body, status=record.response_code)
        resp["Idempotency-Key"] = record.idempotency_key
        resp["Access-Control-Expose-Headers"] = "Idempotency-Key"
        return resp
