"""Gateway webhook endpoint: signature check, finalization and redelivery."""

import uuid

import pytest

from apps.orders.errors import InvalidSignatureError
from apps.orders.models import OrderModel, ProcessedWebhook
from apps.orders.webhooks import WebhookProcessor, verify_signature

from .factories import WEBHOOK_HASH, charge_completed

URL = "/api/webhooks/gateway/"

pytestmark = pytest.mark.django_db


def post_webhook(client, payload, signature=WEBHOOK_HASH):
    extra = {"HTTP_VERIF_HASH": signature} if signature is not None else {}
    return client.post(URL, data=payload, content_type="application/json", **extra)


@pytest.fixture()
def order(wired, make_order):
    return make_order()


# ---- signature ----

def test_verify_signature_accepts_exact_match():
    verify_signature("abc", "abc")


@pytest.mark.parametrize("header, secret", [(None, "abc"), ("", "abc"), ("abd", "abc"), ("abc", ""), ("abc", None)])
def test_verify_signature_rejects(header, secret):
    with pytest.raises(InvalidSignatureError):
        verify_signature(header, secret)


def test_wrong_signature_is_401_and_changes_nothing(client, order):
    r = post_webhook(client, charge_completed(order.order_id), signature="forged")

    assert r.status_code == 401
    assert r.json()["detail"] == "INVALID_SIGNATURE"
    assert OrderModel.objects.get(id=order.order_id).status == "PENDING"


def test_missing_signature_is_401(client, order):
    r = post_webhook(client, charge_completed(order.order_id), signature=None)
    assert r.status_code == 401


def test_unconfigured_secret_never_trusts(client, order, settings):
    settings.GATEWAY_WEBHOOK_HASH = ""
    r = post_webhook(client, charge_completed(order.order_id), signature="")
    assert r.status_code == 401


# ---- charge.completed ----

def test_successful_charge_confirms_order(client, order):
    r = post_webhook(client, charge_completed(order.order_id))

    assert r.status_code == 200
    assert r.json()["status"] == "processed"
    assert r.json()["applied"] is True
    o = OrderModel.objects.get(id=order.order_id)
    assert (o.status, o.payment_status) == ("CONFIRMED", "SUCCESSFUL")
    assert o.payments.get().gateway_tx_id == "9001"
    assert ProcessedWebhook.objects.filter(order_id=order.order_id).count() == 1


def test_redelivered_webhook_is_acknowledged_once(client, order):
    r1 = post_webhook(client, charge_completed(order.order_id))
    version = OrderModel.objects.get(id=order.order_id).version

    r2 = post_webhook(client, charge_completed(order.order_id))

    assert r1.status_code == r2.status_code == 200
    assert r2.json()["status"] == "duplicate"
    assert OrderModel.objects.get(id=order.order_id).version == version


def test_second_event_for_final_payment_is_a_noop(client, order):
    post_webhook(client, charge_completed(order.order_id, tx_id=1))
    r = post_webhook(client, charge_completed(order.order_id, tx_id=2, status="failed"))

    assert r.status_code == 200
    assert r.json()["applied"] is False
    assert OrderModel.objects.get(id=order.order_id).status == "CONFIRMED"


def test_amount_mismatch_is_rejected_without_recording(client, order):
    r = post_webhook(client, charge_completed(order.order_id, amount=100))

    assert r.status_code == 400
    assert r.json()["detail"] == "AMOUNT_MISMATCH"
    assert OrderModel.objects.get(id=order.order_id).payment_status == "PENDING"
    assert ProcessedWebhook.objects.count() == 0


def test_failed_charge_cancels_and_restores_stock(client, order, inventory):
    r = post_webhook(client, charge_completed(order.order_id, status="failed"))

    assert r.status_code == 200
    o = OrderModel.objects.get(id=order.order_id)
    assert (o.status, o.payment_status) == ("CANCELLED", "FAILED")
    assert inventory.stock == {"SKU-A": 100, "SKU-B": 100}


def test_pending_charge_is_acknowledged_and_ignored(client, order):
    r = post_webhook(client, charge_completed(order.order_id, status="pending"))

    assert r.status_code == 200
    assert r.json()["status"] == "ignored"
    assert OrderModel.objects.get(id=order.order_id).status == "PENDING"


def test_unknown_event_is_acknowledged_and_ignored(client, order):
    r = post_webhook(client, {"event": "transfer.completed", "data": {"id": 1}})

    assert r.status_code == 200
    assert r.json()["status"] == "ignored"


def test_unknown_order_is_404(client, wired):
    r = post_webhook(client, charge_completed(uuid.uuid4()))
    assert r.status_code == 404
    assert ProcessedWebhook.objects.count() == 0


def test_malformed_charge_data_is_400(client, order):
    r = post_webhook(client, {"event": "charge.completed", "data": {"id": 1, "status": "successful"}})
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


def test_processor_can_be_used_directly(ledger, make_order):
    result = make_order()
    ack = WebhookProcessor(ledger, secret="s3cret").handle_notification(
        "s3cret", charge_completed(result.order_id)
    )
    assert (ack.outcome, ack.applied) == ("processed", True)
