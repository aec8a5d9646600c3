"""Pydantic schemas for orders.

Request schemas validate and normalize incoming payloads (checkout,
admin actions, payment verification, gateway webhooks) and convert them
to domain types. Read schemas shape the JSON returned by the API.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from .domain import (
    CardPayment,
    CartLine,
    Customer,
    MobileMoneyPayment,
    MobileNetwork,
    OrderStatus,
    PaymentInstrument,
    PaymentMethod,
    ShippingInfo,
)

PRODUCT_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[0-9]{9,15}$")
CURRENCIES = {"KES", "UGX", "TZS", "RWF", "NGN", "GHS", "ZAR", "USD", "EUR", "GBP"}


# ---------------- Checkout ---------------- #

class CartItemIn(BaseModel):
    """Input schema for a single cart line.

    Attributes:
        product_id: Catalog reference (letters, digits, ``_`` and ``-``).
        name: Product name snapshot shown on receipts.
        quantity: Positive number of units.
        unit_price: Unit price at checkout time.
    """

    product_id: str
    name: str = Field(default="", max_length=200)
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)

    @field_validator("product_id")
    @classmethod
    def validate_product_id(cls, v: str) -> str:
        if not PRODUCT_RE.match(v):
            raise ValueError("Invalid product id")
        return v


class CustomerIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(max_length=254)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v2 = v.strip().lower()
        if not EMAIL_RE.match(v2):
            raise ValueError("Invalid email address")
        return v2


class MobileMoneyIn(BaseModel):
    network: MobileNetwork
    phone: str

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        v2 = v.replace(" ", "")
        if not PHONE_RE.match(v2):
            raise ValueError("Invalid phone number")
        return v2


class CheckoutDTO(BaseModel):
    """Schema for a checkout submission.

    Attributes:
        items: Cart snapshot, at least one line.
        amount: Total the client computed; checked against the cart.
        currency: 3-letter ISO currency code, normalized to uppercase and
            validated against the supported set.
        payment_method: ``CARD`` or ``MOBILE_MONEY``.
        mobile_money: Network and phone, required for mobile money.
        customer: Name and e-mail of the buyer.
        shipping_address: Free-text delivery address.
        discreet: Ship in unbranded packaging (default True).
    """

    items: List[CartItemIn] = Field(min_length=1)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: str = Field(min_length=3, max_length=3)
    payment_method: PaymentMethod
    mobile_money: Optional[MobileMoneyIn] = None
    customer: CustomerIn
    shipping_address: str = Field(default="", max_length=1000)
    discreet: bool = True

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        v2 = v.upper()
        if v2 not in CURRENCIES:
            raise ValueError("Unsupported currency")
        return v2

    @model_validator(mode="after")
    def check_instrument(self):
        if self.payment_method == PaymentMethod.MOBILE_MONEY and self.mobile_money is None:
            raise ValueError("mobile_money is required for MOBILE_MONEY payments")
        return self

    def to_cart(self) -> List[CartLine]:
        return [CartLine(i.product_id, i.quantity, i.unit_price, i.name) for i in self.items]

    def to_customer(self) -> Customer:
        return Customer(name=self.customer.name, email=self.customer.email)

    def to_shipping(self) -> ShippingInfo:
        return ShippingInfo(address=self.shipping_address, discreet=self.discreet)

    def to_instrument(self) -> PaymentInstrument:
        if self.payment_method == PaymentMethod.MOBILE_MONEY:
            return MobileMoneyPayment(network=self.mobile_money.network, phone=self.mobile_money.phone)
        return CardPayment()


# ---------------- Admin / verification ---------------- #

class StatusUpdateDTO(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(default=None, max_length=1000)
    tracking_number: Optional[str] = Field(default=None, max_length=64)


class NoteDTO(BaseModel):
    note: str = Field(min_length=1, max_length=1000)

    @field_validator("note")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("note is blank")
        return v


class RefundDTO(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    reason: Optional[str] = Field(default=None, max_length=500)


class VerifyPaymentDTO(BaseModel):
    transaction_id: str = Field(min_length=1, max_length=64)

    @field_validator("transaction_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        # The gateway redirect carries a numeric id
        return str(v) if isinstance(v, int) else v


# ---------------- Webhooks ---------------- #

class WebhookEventDTO(BaseModel):
    event: str
    data: dict = Field(default_factory=dict)


class ChargeDataDTO(BaseModel):
    """``data`` block of a ``charge.completed`` event."""

    id: str
    tx_ref: str
    flw_ref: Optional[str] = None
    amount: Decimal
    currency: str = Field(min_length=3, max_length=3)
    status: str

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if isinstance(v, int) else v

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


# ---------------- Read models ---------------- #

class OrderItemOut(BaseModel):
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal


class PaymentOut(BaseModel):
    id: UUID
    method: str
    network: Optional[str] = None
    status: str
    amount: Decimal
    currency: str
    gateway_ref: Optional[str] = None
    created_at: datetime


class TimelineEntryOut(BaseModel):
    status: str
    note: str
    created_at: datetime


def _timeline(o, include_notes: bool = True) -> List[TimelineEntryOut]:
    return [
        TimelineEntryOut(status=e.status, note=e.note, created_at=e.created_at)
        for e in o.timeline.all()
        if include_notes or e.status != "NOTE"
    ]


class OrderReadDTO(BaseModel):
    """Order as returned by the list and detail endpoints.

    ``items``, ``payments`` and ``timeline`` are only filled for the
    detail view.
    """

    id: UUID
    order_number: str
    status: str
    payment_status: str
    total_amount: Decimal
    currency: str
    customer_name: str
    customer_email: str
    discreet: bool
    shipping_address: Optional[str] = None
    tracking_number: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: Optional[List[OrderItemOut]] = None
    payments: Optional[List[PaymentOut]] = None
    timeline: Optional[List[TimelineEntryOut]] = None

    @classmethod
    def from_model(cls, o, detail: bool = False) -> "OrderReadDTO":
        dto = cls(
            id=o.id,
            order_number=o.order_number,
            status=o.status,
            payment_status=o.payment_status,
            total_amount=o.total_amount,
            currency=o.currency,
            customer_name=o.customer_name,
            customer_email=o.customer_email,
            discreet=o.discreet,
            tracking_number=o.tracking_number,
            created_at=o.created_at,
            updated_at=o.updated_at,
        )
        if detail:
            dto.shipping_address = o.shipping_address
            dto.items = [
                OrderItemOut(product_id=i.product_id, name=i.product_name, quantity=i.quantity,
                             unit_price=i.unit_price)
                for i in o.items.all()
            ]
            dto.payments = [
                PaymentOut(id=p.id, method=p.method, network=p.network, status=p.status, amount=p.amount,
                           currency=p.currency, gateway_ref=p.gateway_ref, created_at=p.created_at)
                for p in o.payments.all()
            ]
            dto.timeline = _timeline(o)
        return dto


class TrackingDTO(BaseModel):
    """Public view of an order looked up by its number; no customer data
    and no staff notes."""

    order_number: str
    status: str
    payment_status: str
    tracking_number: Optional[str] = None
    created_at: datetime
    timeline: List[TimelineEntryOut]

    @classmethod
    def from_model(cls, o) -> "TrackingDTO":
        return cls(
            order_number=o.order_number,
            status=o.status,
            payment_status=o.payment_status,
            tracking_number=o.tracking_number,
            created_at=o.created_at,
            timeline=_timeline(o, include_notes=False),
        )
