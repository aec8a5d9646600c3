"""Staff-only endpoints: status changes and refunds."""

import uuid

import pytest

from apps.orders.models import AuditLogEntry, OrderModel

pytestmark = pytest.mark.django_db


def status_url(oid):
    return f"/api/admin/orders/{oid}/status/"


def refund_url(oid):
    return f"/api/admin/orders/{oid}/refund/"


@pytest.fixture()
def order(wired, make_order):
    return make_order()


@pytest.fixture()
def confirmed(wired, paid_order):
    return paid_order


def test_anonymous_cannot_change_status(client, order):
    r = client.put(status_url(order.order_id), data={"status": "CANCELLED"}, content_type="application/json")
    assert r.status_code in (401, 403)
    assert OrderModel.objects.get(id=order.order_id).status == "PENDING"


def test_cancel_confirmed_order_restores_stock_once(admin_client, confirmed, inventory):
    for _ in range(2):
        r = admin_client.put(status_url(confirmed.order_id), data={"status": "CANCELLED", "note": "oos"},
                             content_type="application/json")
        assert r.status_code == 200
        assert r.json()["status"] == "CANCELLED"

    assert inventory.stock == {"SKU-A": 100, "SKU-B": 100}


def test_ship_with_tracking_sends_mail(admin_client, confirmed, mailoutbox, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        r = admin_client.put(status_url(confirmed.order_id),
                             data={"status": "SHIPPED", "tracking_number": "TRK-9"},
                             content_type="application/json")

    assert r.status_code == 200
    assert r.json()["tracking_number"] == "TRK-9"
    assert len(mailoutbox) == 1


def test_invalid_status_is_400(admin_client, order):
    r = admin_client.put(status_url(order.order_id), data={"status": "LOST"}, content_type="application/json")
    assert r.status_code == 400


def test_status_of_unknown_order_is_404(admin_client, wired):
    r = admin_client.put(status_url(uuid.uuid4()), data={"status": "CANCELLED"}, content_type="application/json")
    assert r.status_code == 404


def test_refund_endpoint(admin_client, confirmed, wired):
    gateway, inventory = wired
    r = admin_client.post(refund_url(confirmed.order_id), data={"reason": "damaged"},
                          content_type="application/json")

    assert r.status_code == 200
    assert r.json() == {"order_id": str(confirmed.order_id), "amount": "20000.00", "currency": "KES",
                        "status": "REFUNDED"}
    assert len(gateway.refunds) == 1
    assert inventory.stock == {"SKU-A": 100, "SKU-B": 100}
    assert AuditLogEntry.objects.get().actor == "admin"


def test_refund_of_pending_payment_is_409(admin_client, order):
    r = admin_client.post(refund_url(order.order_id), data={}, content_type="application/json")
    assert r.status_code == 409
    assert r.json()["detail"] == "REFUND_NOT_ALLOWED"


def test_refund_above_total_is_400(admin_client, confirmed):
    r = admin_client.post(refund_url(confirmed.order_id), data={"amount": "99999.00"},
                          content_type="application/json")
    assert r.status_code == 400


def test_anonymous_cannot_refund(client, confirmed, gateway):
    r = client.post(refund_url(confirmed.order_id), data={}, content_type="application/json")
    assert r.status_code in (401, 403)
    assert gateway.refunds == []


def note_url(oid):
    return f"/api/admin/orders/{oid}/notes/"


def test_staff_note_is_added_to_timeline_only(admin_client, client, confirmed):
    r = admin_client.post(note_url(confirmed.order_id), data={"note": "called customer"},
                          content_type="application/json")

    assert r.status_code == 201
    assert r.json()["status"] == "CONFIRMED"
    detail = client.get(f"/api/orders/{confirmed.order_id}/").json()
    last = detail["timeline"][-1]
    assert (last["status"], last["note"]) == ("NOTE", "called customer")

    number = OrderModel.objects.get(id=confirmed.order_id).order_number
    tracking = client.get(f"/api/orders/track/{number}/").json()
    assert all(e["status"] != "NOTE" for e in tracking["timeline"])


def test_blank_note_is_400(admin_client, confirmed):
    r = admin_client.post(note_url(confirmed.order_id), data={"note": "  "}, content_type="application/json")
    assert r.status_code == 400


def test_anonymous_cannot_add_note(client, confirmed):
    r = client.post(note_url(confirmed.order_id), data={"note": "hi"}, content_type="application/json")
    assert r.status_code in (401, 403)


def test_note_on_unknown_order_is_404(admin_client, wired):
    r = admin_client.post(note_url(uuid.uuid4()), data={"note": "hi"}, content_type="application/json")
    assert r.status_code == 404
