from decimal import Decimal

import pytest

from apps.orders.domain import CardPayment, Customer, PaymentOutcome, ShippingInfo
from apps.orders.ledger import OrderLedger
from apps.orders.notifications import EmailShippingNotifier

from .factories import CART


@pytest.fixture()
def ledger(gateway, inventory):
    return OrderLedger(gateway=gateway, inventory=inventory, notifier=EmailShippingNotifier())


@pytest.fixture()
def make_order(ledger):
    """Create a PENDING order, by default for the 20,000 KES cart."""

    def _make(cart=None, amount=None, instrument=None):
        cart = CART if cart is None else cart
        return ledger.create_order(
            cart=cart,
            customer=Customer("Jane Doe", "jane@example.com"),
            submitted_amount=amount if amount is not None else sum(l.line_total for l in cart),
            currency="KES",
            shipping=ShippingInfo("1 Main St, Nairobi", discreet=True),
            instrument=instrument or CardPayment(),
        )

    return _make


@pytest.fixture()
def paid_order(ledger, make_order):
    """An order confirmed by the gateway with transaction id 9001."""
    result = make_order()
    ledger.mark_payment_result(result.order_id, "9001", PaymentOutcome.SUCCESSFUL, Decimal("20000"), "KES")
    return result
