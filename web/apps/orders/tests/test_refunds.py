"""RefundCoordinator: gateway-first refunds with local bookkeeping and audit."""

from decimal import Decimal

import pytest

from apps.orders.adapters import GatewayStub
from apps.orders.errors import RefundError, RefundNotAllowedError, ValidationError
from apps.orders.models import AuditLogEntry, OrderModel
from apps.orders.notifications import DatabaseAuditLog
from apps.orders.refunds import RefundCoordinator

pytestmark = pytest.mark.django_db


class RefusingGateway(GatewayStub):
    def refund_transaction(self, transaction_id, amount=None, reason=None):
        raise RefundError("gateway refused")


class BrokenAuditLog:
    def record(self, **kw):
        raise RuntimeError("audit store down")


@pytest.fixture()
def coordinator(gateway, ledger):
    return RefundCoordinator(gateway=gateway, ledger=ledger, audit_log=DatabaseAuditLog())


def test_full_refund_of_successful_payment(coordinator, paid_order, gateway, inventory):
    result = coordinator.refund(paid_order.order_id, reason="damaged", actor="admin")

    assert result.amount == Decimal("20000.00")
    assert gateway.refunds == [("9001", Decimal("20000.00"), "damaged")]
    order = OrderModel.objects.get(id=paid_order.order_id)
    assert (order.status, order.payment_status) == ("REFUNDED", "REFUNDED")
    assert order.payments.get().status == "REFUNDED"
    assert inventory.stock == {"SKU-A": 100, "SKU-B": 100}
    assert order.timeline.last().status == "REFUNDED"

    entry = AuditLogEntry.objects.get()
    assert (entry.actor, entry.action, entry.entity_id) == ("admin", "REFUND", str(order.id))
    assert entry.metadata["amount"] == "20000.00"
    assert entry.metadata["reason"] == "damaged"


def test_partial_refund_amount_is_forwarded(coordinator, paid_order, gateway):
    coordinator.refund(paid_order.order_id, amount=Decimal("5000"))
    assert gateway.refunds[0][1] == Decimal("5000.00")


def test_pending_payment_cannot_be_refunded(coordinator, make_order, gateway):
    result = make_order()
    with pytest.raises(RefundNotAllowedError):
        coordinator.refund(result.order_id)
    assert gateway.refunds == []


def test_failed_payment_cannot_be_refunded(coordinator, ledger, make_order, gateway):
    result = make_order()
    ledger.mark_payment_result(result.order_id, "9001", "failed", 20000)
    with pytest.raises(RefundNotAllowedError):
        coordinator.refund(result.order_id)
    assert gateway.refunds == []


def test_second_refund_is_rejected(coordinator, paid_order, gateway):
    coordinator.refund(paid_order.order_id)
    with pytest.raises(RefundNotAllowedError):
        coordinator.refund(paid_order.order_id)
    assert len(gateway.refunds) == 1


def test_refund_above_total_is_rejected(coordinator, paid_order, gateway):
    with pytest.raises(ValidationError):
        coordinator.refund(paid_order.order_id, amount=Decimal("20000.01"))
    assert gateway.refunds == []


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
def test_non_positive_amount_is_rejected_before_the_gateway(coordinator, paid_order, gateway, inventory, amount):
    with pytest.raises(ValidationError):
        coordinator.refund(paid_order.order_id, amount=amount)

    assert gateway.refunds == []
    assert OrderModel.objects.get(id=paid_order.order_id).status == "CONFIRMED"
    assert inventory.stock == {"SKU-A": 99, "SKU-B": 97}


def test_gateway_refusal_leaves_books_untouched(ledger, paid_order, inventory):
    coordinator = RefundCoordinator(RefusingGateway(), ledger, DatabaseAuditLog())

    with pytest.raises(RefundError):
        coordinator.refund(paid_order.order_id)

    order = OrderModel.objects.get(id=paid_order.order_id)
    assert order.payment_status == "SUCCESSFUL"
    assert inventory.stock == {"SKU-A": 99, "SKU-B": 97}
    assert AuditLogEntry.objects.count() == 0


def test_audit_failure_does_not_fail_refund(gateway, ledger, paid_order, caplog):
    coordinator = RefundCoordinator(gateway, ledger, BrokenAuditLog())

    with caplog.at_level("ERROR", logger="orders.refunds"):
        coordinator.refund(paid_order.order_id)

    assert OrderModel.objects.get(id=paid_order.order_id).status == "REFUNDED"
    assert any(r.getMessage() == "audit log write failed" for r in caplog.records)


def test_refund_after_cancellation_does_not_restore_stock_again(coordinator, ledger, paid_order, inventory):
    ledger.update_status(paid_order.order_id, "CANCELLED")
    coordinator.refund(paid_order.order_id)

    assert inventory.stock == {"SKU-A": 100, "SKU-B": 100}
    assert OrderModel.objects.get(id=paid_order.order_id).status == "REFUNDED"
