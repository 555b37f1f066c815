"""API tests for the admin and store order edit endpoints."""

import httpx
import pytest

from apps.order_edits.models import OrderEdit
from apps.orders.http_adapters import _tax_cb
from apps.orders.models import LineItem

ADMIN_URL = "/admin/order-edits/"
STORE_URL = "/store/order-edits/"
ADMIN = {"HTTP_X_ACTOR_ID": "admin_1"}


def _create(client, order):
    r = client.post(ADMIN_URL, data={"order_id": str(order.id)}, content_type="application/json", **ADMIN)
    assert r.status_code == 201, r.content
    return r.json()["order_edit"]


@pytest.mark.django_db
def test_create_returns_decorated_edit(client, order):
    body = _create(client, order)

    assert body["status"] == "created"
    assert body["created_by"] == "admin_1"
    assert body["object"] == "order_edit"
    assert len(body["items"]) == 2
    assert body["subtotal"] == 2000
    assert body["tax_total"] == 200
    assert body["total"] == 2200
    assert body["difference_due"] == 0
    assert body["changes"] == []


@pytest.mark.django_db
def test_create_twice_is_rejected(client, order):
    _create(client, order)
    r = client.post(ADMIN_URL, data={"order_id": str(order.id)}, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_DATA"


@pytest.mark.django_db
def test_create_validates_body(client):
    r = client.post(ADMIN_URL, data={"order_id": "nope"}, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_DATA"


@pytest.mark.django_db
def test_create_unknown_order(client):
    r = client.post(
        ADMIN_URL, data={"order_id": "3f1a9f43-0000-4000-8000-000000000000"}, content_type="application/json"
    )
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_list_by_order(client, order):
    created = _create(client, order)
    r = client.get(ADMIN_URL, {"order_id": str(order.id)})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 1
    assert body["order_edits"][0]["id"] == created["id"]


@pytest.mark.django_db
def test_add_update_and_remove_items(client, order, variant):
    edit = _create(client, order)
    base = f"{ADMIN_URL}{edit['id']}/items/"

    r = client.post(base, data={"variant_id": str(variant.id), "quantity": 2}, content_type="application/json")
    assert r.status_code == 200, r.content
    body = r.json()["order_edit"]
    assert body["subtotal"] == 4000
    assert [c["type"] for c in body["changes"]] == ["item_add"]

    added_id = body["changes"][0]["line_item_id"]
    r = client.post(f"{base}{added_id}/", data={"quantity": 1}, content_type="application/json")
    assert r.status_code == 200
    assert r.json()["order_edit"]["subtotal"] == 3000

    r = client.delete(f"{base}{added_id}/")
    assert r.status_code == 200
    assert r.json()["order_edit"]["changes"] == []


class _TaxResp:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)

    def json(self):
        return self._body


@pytest.fixture
def http_tax(settings, monkeypatch):
    """Route tax calculation through the HTTP client with fast, stubbed calls."""
    settings.HTTP_RETRY_MAX = 1
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)
    _tax_cb.on_success()
    sent = []

    def enable():
        settings.USE_HTTP_TAX_PROVIDER = True
        return sent

    yield enable
    _tax_cb.on_success()


@pytest.mark.django_db
def test_add_item_does_not_forward_the_client_key(client, order, variant, http_tax, monkeypatch):
    edit = _create(client, order)
    sent = http_tax()

    def fake_post(self, url, json=None, headers=None, **kw):
        sent.append(dict(headers or {}))
        if "Idempotency-Key" in (headers or {}):
            return _TaxResp(409, {"detail": "IDEMPOTENCY_CONFLICT"})
        return _TaxResp(200, {"lines": []})
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    url = f"{ADMIN_URL}{edit['id']}/items/"
    body = {"variant_id": str(variant.id), "quantity": 1}
    for _ in range(2):
        r = client.post(url, data=body, content_type="application/json", HTTP_IDEMPOTENCY_KEY="add-1")
        assert r.status_code == 200, r.content

    assert sent and all("Idempotency-Key" not in h for h in sent)


@pytest.mark.django_db
def test_tax_service_outage_is_503_and_rolls_back(client, order, variant, http_tax, monkeypatch):
    edit = _create(client, order)
    http_tax()

    def fake_post(self, url, json=None, headers=None, **kw):
        raise httpx.ConnectError("down")
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    r = client.post(
        f"{ADMIN_URL}{edit['id']}/items/",
        data={"variant_id": str(variant.id), "quantity": 1},
        content_type="application/json",
    )

    assert r.status_code == 503
    assert r.json()["detail"] == "UPSTREAM_UNAVAILABLE"
    assert LineItem.objects.filter(order_edit_id=edit["id"]).count() == 2


@pytest.mark.django_db
def test_update_item_rejects_zero_quantity(client, order):
    edit = _create(client, order)
    item_id = edit["items"][0]["id"]
    r = client.post(
        f"{ADMIN_URL}{edit['id']}/items/{item_id}/", data={"quantity": 0}, content_type="application/json"
    )
    assert r.status_code == 400


@pytest.mark.django_db
def test_delete_item_change(client, order, order_items):
    edit = _create(client, order)
    clone = LineItem.objects.get(order_edit_id=edit["id"], original_item=order_items[0])
    r = client.post(
        f"{ADMIN_URL}{edit['id']}/items/{clone.id}/", data={"quantity": 4}, content_type="application/json"
    )
    change_id = r.json()["order_edit"]["changes"][0]["id"]

    r = client.delete(f"{ADMIN_URL}{edit['id']}/changes/{change_id}/")

    assert r.status_code == 200
    assert r.json() == {"id": change_id, "object": "item_change", "deleted": True}
    clone.refresh_from_db()
    assert clone.quantity == 1


@pytest.mark.django_db
def test_request_decline_flow(client, order, order_items):
    edit = _create(client, order)
    clone = LineItem.objects.get(order_edit_id=edit["id"], original_item=order_items[1])
    client.post(f"{ADMIN_URL}{edit['id']}/items/{clone.id}/", data={"quantity": 3}, content_type="application/json")

    r = client.post(f"{ADMIN_URL}{edit['id']}/request/", **ADMIN)
    assert r.status_code == 200
    assert r.json()["order_edit"]["status"] == "requested"

    r = client.get(f"{STORE_URL}{edit['id']}/")
    assert r.status_code == 200
    body = r.json()["order_edit"]
    assert "internal_note" not in body
    assert body["difference_due"] == 550

    r = client.post(
        f"{STORE_URL}{edit['id']}/decline/",
        data={"declined_reason": "no thanks"},
        content_type="application/json",
        HTTP_X_ACTOR_ID="cus_1",
    )
    assert r.status_code == 200
    body = r.json()["order_edit"]
    assert body["status"] == "declined"
    assert body["declined_reason"] == "no thanks"
    assert body["declined_by"] == "cus_1"


@pytest.mark.django_db
def test_request_without_changes(client, order):
    edit = _create(client, order)
    r = client.post(f"{ADMIN_URL}{edit['id']}/request/")
    assert r.status_code == 400


@pytest.mark.django_db
def test_decline_created_edit_not_allowed(client, order):
    edit = _create(client, order)
    r = client.post(f"{STORE_URL}{edit['id']}/decline/", data={}, content_type="application/json")
    assert r.status_code == 422
    assert r.json()["detail"] == "NOT_ALLOWED"


@pytest.mark.django_db
def test_confirm_then_delete_is_rejected(client, order):
    edit = _create(client, order)

    r = client.post(f"{ADMIN_URL}{edit['id']}/confirm/", **ADMIN)
    assert r.status_code == 200
    assert r.json()["order_edit"]["status"] == "confirmed"
    assert order.items.count() == 2

    r = client.delete(f"{ADMIN_URL}{edit['id']}/")
    assert r.status_code == 422


@pytest.mark.django_db
def test_cancel_and_delete(client, order):
    edit = _create(client, order)
    r = client.post(f"{ADMIN_URL}{edit['id']}/cancel/")
    assert r.json()["order_edit"]["status"] == "canceled"

    fresh = _create(client, order)
    r = client.delete(f"{ADMIN_URL}{fresh['id']}/")
    assert r.status_code == 200
    assert r.json() == {"id": fresh["id"], "object": "order_edit", "deleted": True}
    assert not OrderEdit.objects.filter(id=fresh["id"]).exists()


@pytest.mark.django_db
def test_update_internal_note(client, order):
    edit = _create(client, order)
    r = client.post(f"{ADMIN_URL}{edit['id']}/", data={"internal_note": "vip"}, content_type="application/json")
    assert r.status_code == 200
    assert r.json()["order_edit"]["internal_note"] == "vip"


@pytest.mark.django_db
def test_get_unknown_edit(client):
    r = client.get(f"{ADMIN_URL}3f1a9f43-0000-4000-8000-000000000000/")
    assert r.status_code == 404
