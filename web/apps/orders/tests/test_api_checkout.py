"""Checkout, order reads, tracking and payment verification over HTTP."""

import copy
import uuid

import httpx
import pytest

from apps.orders import providers
from apps.orders.adapters import GatewayStub
from apps.orders.errors import CircuitOpenError, GatewayTimeoutError, PaymentInitiationError
from apps.orders.models import IdempotencyKey, OrderModel

from .factories import CHECKOUT_PAYLOAD

CREATE_URL = "/api/orders/"

pytestmark = pytest.mark.django_db


class FailingGateway(GatewayStub):
    def __init__(self, error):
        super().__init__()
        self.error = error

    def create_payment(self, request):
        raise self.error


def checkout(client, payload=None, **extra):
    return client.post(CREATE_URL, data=payload or CHECKOUT_PAYLOAD, content_type="application/json", **extra)


# ---- POST /api/orders/ ----

def test_card_checkout_returns_201_with_checkout_link(client, wired):
    gateway, _ = wired
    r = checkout(client)

    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "PENDING"
    assert body["total_amount"] == "20000.00"
    assert body["checkout_link"].startswith("https://")
    order = OrderModel.objects.get(id=body["id"])
    assert order.order_number == body["order_number"]
    assert gateway.charges[0].order_ref == body["id"]


def test_mobile_money_checkout(client, wired):
    gateway, _ = wired
    payload = dict(CHECKOUT_PAYLOAD, payment_method="MOBILE_MONEY",
                   mobile_money={"network": "MPESA", "phone": "+254 700 000 000"})
    r = checkout(client, payload)

    assert r.status_code == 201
    assert gateway.charges[0].instrument.phone == "+254700000000"


def test_mobile_money_requires_network_and_phone(client, wired):
    payload = dict(CHECKOUT_PAYLOAD, payment_method="MOBILE_MONEY")
    r = checkout(client, payload)
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


@pytest.mark.parametrize(
    "mutate",
    [
        lambda p: p.update(items=[]),
        lambda p: p.update(currency="XXX"),
        lambda p: p["items"][0].update(quantity=0),
        lambda p: p["customer"].update(email="not-an-email"),
    ],
)
def test_invalid_payloads_are_400(client, wired, mutate):
    payload = copy.deepcopy(CHECKOUT_PAYLOAD)
    mutate(payload)
    assert checkout(client, payload).status_code == 400
    assert OrderModel.objects.count() == 0


def test_amount_mismatch_is_400(client, wired):
    r = checkout(client, dict(CHECKOUT_PAYLOAD, amount="15000.00"))
    assert r.status_code == 400
    assert r.json()["detail"] == "AMOUNT_MISMATCH"
    assert OrderModel.objects.count() == 0


def test_ambiguous_gateway_failure_is_502_with_order_id(client, wired, monkeypatch):
    err = PaymentInitiationError("timed out", cause=GatewayTimeoutError(), ambiguous=True)
    monkeypatch.setattr(providers, "get_gateway", lambda: FailingGateway(err))

    r = checkout(client)

    assert r.status_code == 502
    body = r.json()
    assert body["detail"] == "PAYMENT_INITIATION_FAILED"
    assert body["ambiguous"] is True
    assert OrderModel.objects.get(id=body["order_id"]).status == "PENDING"


def test_open_gateway_circuit_is_503(client, wired, monkeypatch):
    err = PaymentInitiationError("open", cause=CircuitOpenError("gateway-card"))
    monkeypatch.setattr(providers, "get_gateway", lambda: FailingGateway(err))

    r = checkout(client)

    assert r.status_code == 503
    assert r.json()["ambiguous"] is False


def test_checkout_through_http_gateway_client(client, settings, monkeypatch):
    settings.USE_HTTP_ADAPTERS = True
    sent = {}

    class Resp:
        status_code = 200

        def json(self):
            return {"status": "success", "data": {"link": "https://checkout.test/pay/1"}}

    def fake_post(self, url, json=None, headers=None, **kw):
        sent.update(url=url, json=json)
        return Resp()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    r = checkout(client, HTTP_X_REQUEST_ID="rid-checkout")

    assert r.status_code == 201
    assert r.json()["checkout_link"] == "https://checkout.test/pay/1"
    assert sent["url"].endswith("/payments")
    assert sent["json"]["tx_ref"] == r.json()["id"]
    assert r["X-Request-ID"] == "rid-checkout"


def test_insufficient_stock_is_422_and_creates_nothing(client, wired):
    _, inventory = wired
    payload = copy.deepcopy(CHECKOUT_PAYLOAD)
    payload["items"][1]["quantity"] = 101
    payload["amount"] = "510000.00"

    r = checkout(client, payload)

    assert r.status_code == 422
    assert r.json()["detail"] == "INSUFFICIENT_STOCK"
    assert OrderModel.objects.count() == 0
    assert inventory.stock == {"SKU-A": 100, "SKU-B": 100}


# ---- idempotency ----

def test_idempotent_replay_returns_same_response(client, wired):
    key = "idem-same-1"
    r1 = checkout(client, HTTP_IDEMPOTENCY_KEY=key)
    r2 = checkout(client, HTTP_IDEMPOTENCY_KEY=key)

    assert r1.status_code == r2.status_code == 201
    assert r2.json() == r1.json()
    assert r2.headers.get("Idempotent-Replay") == "true"
    assert OrderModel.objects.count() == 1
    assert str(IdempotencyKey.objects.get(key=key).order_id) == r1.json()["id"]


def test_idempotency_conflict_on_different_payload(client, wired):
    key = "idem-conflict-1"
    checkout(client, HTTP_IDEMPOTENCY_KEY=key)
    other = copy.deepcopy(CHECKOUT_PAYLOAD)
    other["shipping_address"] = "elsewhere"

    r = checkout(client, other, HTTP_IDEMPOTENCY_KEY=key)

    assert r.status_code == 409
    assert r.json()["detail"] == "IDEMPOTENCY_CONFLICT"


def test_non_json_gateway_answer_is_ambiguous_and_replayable(client, settings, monkeypatch):
    settings.USE_HTTP_ADAPTERS = True

    class StockResp:
        status_code = 200

        def json(self):
            return {"quantity": 1}

    class ProxyPage:
        status_code = 200

        def json(self):
            raise ValueError("Expecting value: line 1 column 1 (char 0)")

    def fake_post(self, url, json=None, headers=None, **kw):
        return StockResp() if url.startswith("http://inventory.test") else ProxyPage()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    key = "idem-html"

    r1 = checkout(client, HTTP_IDEMPOTENCY_KEY=key)
    r2 = checkout(client, HTTP_IDEMPOTENCY_KEY=key)

    assert r1.status_code == 502
    assert r1.json()["ambiguous"] is True
    assert OrderModel.objects.get(id=r1.json()["order_id"]).status == "PENDING"
    assert r2.status_code == 502
    assert r2.json() == r1.json()
    assert r2.headers.get("Idempotent-Replay") == "true"


def test_unexpected_failure_finalizes_idempotency_key(client, wired, monkeypatch):
    class ExplodingLedger:
        def create_order(self, **kw):
            raise RuntimeError("boom")

    monkeypatch.setattr(providers, "get_order_ledger", lambda: ExplodingLedger())
    key = "idem-boom"

    r1 = checkout(client, HTTP_IDEMPOTENCY_KEY=key)
    r2 = checkout(client, HTTP_IDEMPOTENCY_KEY=key)

    assert r1.status_code == r2.status_code == 503
    assert r2.json() == {"detail": "UPSTREAM_UNAVAILABLE"}
    assert IdempotencyKey.objects.get(key=key).response_status == 503


def test_replay_preserves_failure_status(client, wired, monkeypatch):
    err = PaymentInitiationError("timed out", cause=GatewayTimeoutError(), ambiguous=True)
    monkeypatch.setattr(providers, "get_gateway", lambda: FailingGateway(err))
    key = "idem-502"

    r1 = checkout(client, HTTP_IDEMPOTENCY_KEY=key)
    r2 = checkout(client, HTTP_IDEMPOTENCY_KEY=key)

    assert r1.status_code == r2.status_code == 502
    assert r2.json() == r1.json()
    assert OrderModel.objects.count() == 1


# ---- reads ----

def test_list_orders_paginates(client, admin_client, wired):
    for _ in range(3):
        checkout(client)

    r = admin_client.get(CREATE_URL, {"page": 1, "page_size": 2})

    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 3
    assert len(body["results"]) == 2
    assert "items" not in body["results"][0]


def test_anonymous_cannot_list_orders(client, wired):
    checkout(client)

    r = client.get(CREATE_URL)

    assert r.status_code in (401, 403)
    assert "jane@example.com" not in r.content.decode()


def test_list_rejects_bad_paging(admin_client):
    assert admin_client.get(CREATE_URL, {"page": "x"}).status_code == 400


def test_order_detail_includes_items_payments_and_timeline(client, wired):
    oid = checkout(client).json()["id"]

    r = client.get(f"/api/orders/{oid}/")

    assert r.status_code == 200
    body = r.json()
    assert body["id"] == oid
    assert len(body["items"]) == 2
    assert body["payments"][0]["status"] == "PENDING"
    assert body["timeline"][0]["status"] == "PENDING"


def test_unknown_order_detail_is_404(client):
    r = client.get(f"/api/orders/{uuid.uuid4()}/")
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


def test_public_tracking_hides_customer_data(client, wired):
    number = checkout(client).json()["order_number"]

    r = client.get(f"/api/orders/track/{number}/")

    assert r.status_code == 200
    body = r.json()
    assert body["order_number"] == number
    assert "customer_email" not in body
    assert body["timeline"]


def test_tracking_unknown_number_is_404(client):
    assert client.get("/api/orders/track/ORD-0-NOPE/").status_code == 404


# ---- verification ----

def test_verify_endpoint_confirms_paid_order(client, wired):
    gateway, _ = wired
    oid = checkout(client).json()["id"]
    gateway.transactions["4242"] = {"id": 4242, "tx_ref": oid, "flw_ref": "FLW-4242",
                                    "amount": 20000, "currency": "KES", "status": "successful"}

    r = client.post(f"/api/orders/{oid}/verify/", data={"transaction_id": 4242}, content_type="application/json")

    assert r.status_code == 200
    assert r.json()["status"] == "CONFIRMED"
    assert r.json()["applied"] is True


def test_verify_unknown_transaction_is_400(client, wired):
    oid = checkout(client).json()["id"]
    r = client.post(f"/api/orders/{oid}/verify/", data={"transaction_id": "1"}, content_type="application/json")
    assert r.status_code == 400


def test_oversized_body_is_413(client, monkeypatch):
    monkeypatch.setattr("gateway.middleware.MAX_API_BYTES", 10)
    r = checkout(client)
    assert r.status_code == 413
