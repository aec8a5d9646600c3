"""In-process stub adapters for the orders domain ports.

These stubs implement ``GatewayPort`` and ``InventoryPort`` without any
network calls. They are intended for unit tests and local development
where deterministic behavior is useful and external services are not
required.
"""

import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional

from .domain import ChargeRequest, GatewayPort, InventoryPort, PaymentInitiation
from .errors import InsufficientStockError


class GatewayStub(GatewayPort):
    """Stub implementation of ``GatewayPort``.

    Every charge is accepted and recorded. ``verify_transaction`` answers
    from ``transactions``, which tests fill with whatever the gateway
    should report for a transaction id.

    Attributes:
        charges: Charge requests received, in order.
        transactions: Verification payloads keyed by transaction id.
        refunds: ``(transaction_id, amount, reason)`` for each refund.
    """

    def __init__(self):
        self.charges: List[ChargeRequest] = []
        self.transactions: Dict[str, dict] = {}
        self.refunds: List[tuple] = []

    def create_payment(self, request: ChargeRequest) -> PaymentInitiation:
        self.charges.append(request)
        ref = f"FLW-STUB-{uuid.uuid4().hex[:12]}"
        return PaymentInitiation(
            status="success",
            external_ref=ref,
            checkout_link=f"https://checkout.invalid/pay/{ref}",
        )

    def verify_transaction(self, transaction_id: str) -> dict:
        data = self.transactions.get(str(transaction_id))
        if data is None:
            return {"status": "error", "message": "No transaction was found for this id", "data": None}
        return {"status": "success", "message": "Transaction fetched successfully", "data": data}

    def refund_transaction(self, transaction_id: str, amount: Optional[Decimal] = None,
                           reason: Optional[str] = None) -> dict:
        self.refunds.append((transaction_id, amount, reason))
        return {
            "status": "success",
            "message": "Transaction refund initiated",
            "data": {"id": len(self.refunds), "tx_id": transaction_id, "status": "completed"},
        }


class InventoryStub(InventoryPort):
    """Stub implementation of ``InventoryPort`` backed by a dict.

    Without initial ``stock`` levels the stub only records movements and
    stock may go negative. Once seeded, unknown products have no stock and
    decrements below zero raise ``InsufficientStockError``. Adjustments
    with an already seen ``idempotency_key`` are ignored.
    """

    def __init__(self, stock: Optional[Dict[str, int]] = None):
        self.enforce_levels = stock is not None
        self.stock: Dict[str, int] = defaultdict(int, stock or {})
        self.applied_keys: set = set()

    def _apply(self, product_id: str, delta: int, idempotency_key: Optional[str]) -> None:
        if idempotency_key:
            if idempotency_key in self.applied_keys:
                return
            self.applied_keys.add(idempotency_key)
        self.stock[product_id] += delta

    def increment(self, product_id: str, quantity: int, idempotency_key: Optional[str] = None) -> None:
        self._apply(product_id, quantity, idempotency_key)

    def decrement(self, product_id: str, quantity: int, idempotency_key: Optional[str] = None) -> None:
        if idempotency_key in self.applied_keys:
            return
        if self.enforce_levels and self.stock.get(product_id, 0) < quantity:
            raise InsufficientStockError(product_id, quantity)
        self._apply(product_id, -quantity, idempotency_key)
