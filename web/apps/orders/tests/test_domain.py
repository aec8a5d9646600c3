import re
from decimal import Decimal

import pytest

from apps.orders.domain import (
    CartLine,
    PaymentOutcome,
    amounts_match,
    cart_total,
    generate_order_number,
    outcome_from_gateway_status,
    to_money,
)


def test_order_number_format():
    assert re.fullmatch(r"ORD-\d{13}-[A-Z0-9]{9}", generate_order_number())


def test_cart_total_sums_line_totals():
    lines = [CartLine("A", 2, Decimal("10.10")), CartLine("B", 1, Decimal("0.05"))]
    assert cart_total(lines) == Decimal("20.25")


def test_amounts_match_at_cent_precision():
    assert amounts_match(Decimal("20000.00"), 20000)
    assert amounts_match("150.50", 150.5)
    assert not amounts_match(Decimal("20000.00"), Decimal("19999.99"))


def test_to_money_quantizes():
    assert to_money(1) == Decimal("1.00")
    assert str(to_money("2.5")) == "2.50"


@pytest.mark.parametrize(
    "status, expected",
    [
        ("successful", PaymentOutcome.SUCCESSFUL),
        ("SUCCESSFUL", PaymentOutcome.SUCCESSFUL),
        ("failed", PaymentOutcome.FAILED),
        ("cancelled", PaymentOutcome.FAILED),
        ("pending", None),
        (None, None),
    ],
)
def test_gateway_status_mapping(status, expected):
    assert outcome_from_gateway_status(status) == expected
