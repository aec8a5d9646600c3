"""Domain types, ports and pure helpers for orders and payments.

This module contains the enums describing the order and payment
lifecycles, small dataclasses used as DTOs between the HTTP layer, the
ledger and the gateway adapter, protocol definitions (ports) for the
collaborators the core calls into (gateway, inventory, notifications,
audit log), and a few pure functions (cart totals, order numbers,
amount comparison). Nothing here touches the database or the network.
"""

import secrets
import string
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional, Protocol, Union


# ---- Enums ----
class OrderStatus(str, Enum):
    """Fulfillment lifecycle of an order."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    """Payment lifecycle, a subset of the gateway's.

    PENDING moves to SUCCESSFUL or FAILED; SUCCESSFUL may move to
    REFUNDED. A failed payment is never revived: a retry creates a new
    payment record.
    """

    PENDING = "PENDING"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


FINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.SUCCESSFUL, PaymentStatus.FAILED, PaymentStatus.REFUNDED}
)


class PaymentMethod(str, Enum):
    CARD = "CARD"
    MOBILE_MONEY = "MOBILE_MONEY"


class MobileNetwork(str, Enum):
    MPESA = "MPESA"
    AIRTEL = "AIRTEL"
    MTN = "MTN"


class PaymentOutcome(str, Enum):
    """Final outcome reported by a webhook or a verification."""

    SUCCESSFUL = "successful"
    FAILED = "failed"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class CartLine:
    """A single line of the cart snapshot submitted at checkout.

    Attributes:
        product_id: Reference of the product in the catalog.
        quantity: Number of units ordered.
        unit_price: Unit price captured at checkout time.
        name: Product name snapshot, for receipts and tracking.
    """

    product_id: str
    quantity: int
    unit_price: Decimal
    name: str = ""

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Customer:
    name: str
    email: str


@dataclass(frozen=True)
class ShippingInfo:
    address: str = ""
    discreet: bool = True


@dataclass(frozen=True)
class CardPayment:
    """Card payment through the gateway's hosted checkout."""

    method = PaymentMethod.CARD


@dataclass(frozen=True)
class MobileMoneyPayment:
    """Mobile-money charge pushed to the customer's phone."""

    network: MobileNetwork
    phone: str

    method = PaymentMethod.MOBILE_MONEY


PaymentInstrument = Union[CardPayment, MobileMoneyPayment]


@dataclass(frozen=True)
class ChargeRequest:
    """Everything the gateway needs to start collecting a payment."""

    order_ref: str
    amount: Decimal
    currency: str
    customer: Customer
    instrument: PaymentInstrument
    redirect_url: str


@dataclass(frozen=True)
class PaymentInitiation:
    """Normalized gateway answer to a payment creation request.

    Attributes:
        status: Gateway status string (e.g. ``"success"``).
        external_ref: Gateway reference for the charge, when returned.
        checkout_link: Hosted checkout / authorization URL, when any.
    """

    status: str
    external_ref: Optional[str] = None
    checkout_link: Optional[str] = None


@dataclass(frozen=True)
class ShipmentNotice:
    order_id: str
    order_number: str
    customer_name: str
    customer_email: str
    tracking_number: Optional[str]
    discreet: bool


@dataclass
class CheckoutResult:
    order_id: Any
    order_number: str
    payment_id: Any
    total_amount: Decimal
    currency: str
    status: str
    checkout_link: Optional[str] = None


@dataclass
class PaymentUpdate:
    """Result of applying (or skipping) a payment outcome.

    ``applied`` is False when the payment was already final and the
    call was a no-op.
    """

    order_id: Any
    order_status: str
    payment_status: str
    applied: bool


@dataclass
class RefundResult:
    order_id: Any
    amount: Decimal
    currency: str
    gateway_response: dict = field(default_factory=dict)


# ---- Ports (DIP) ----
class GatewayPort(Protocol):
    """Operations offered by the external payment gateway."""

    def create_payment(self, request: ChargeRequest) -> PaymentInitiation:
        raise NotImplementedError()

    def verify_transaction(self, transaction_id: str) -> dict:
        raise NotImplementedError()

    def refund_transaction(
        self, transaction_id: str, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> dict:
        raise NotImplementedError()


class InventoryPort(Protocol):
    """Stock adjustments owned by the inventory service.

    ``idempotency_key`` lets the caller retry an adjustment without
    applying it twice. ``decrement`` raises ``InsufficientStockError``
    rather than going below zero.
    """

    def increment(self, product_id: str, quantity: int, idempotency_key: Optional[str] = None) -> None:
        raise NotImplementedError()

    def decrement(self, product_id: str, quantity: int, idempotency_key: Optional[str] = None) -> None:
        raise NotImplementedError()


class NotificationPort(Protocol):
    def notify_shipped(self, notice: ShipmentNotice) -> None:
        raise NotImplementedError()


class AuditLogPort(Protocol):
    def record(self, actor: str, action: str, entity_type: str, entity_id: str, metadata: dict) -> None:
        raise NotImplementedError()


# ---- Pure helpers ----
CENT = Decimal("0.01")
AMOUNT_TOLERANCE = Decimal("0.01")
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def to_money(value) -> Decimal:
    """Coerce ints, floats, strings and Decimals to a 2 dp Decimal."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT)


def cart_total(lines: List[CartLine]) -> Decimal:
    return to_money(sum((line.line_total for line in lines), Decimal("0")))


def amounts_match(stored, notified) -> bool:
    """Exact comparison at cent precision."""
    return to_money(stored) == to_money(notified)


def generate_order_number() -> str:
    """Return a human-legible order number like ``ORD-1718000000000-7KQ2M9XZA``."""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def outcome_from_gateway_status(status: Optional[str]) -> Optional[PaymentOutcome]:
    """Map a gateway charge status to a final outcome.

    Returns None for statuses that are not final yet (``pending`` and
    friends), which callers acknowledge without touching state.
    """
    if not status:
        return None
    status = status.lower()
    if status == "successful":
        return PaymentOutcome.SUCCESSFUL
    if status in ("failed", "cancelled", "error"):
        return PaymentOutcome.FAILED
    return None
