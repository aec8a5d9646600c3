"""Admin-initiated refunds.

The gateway is asked to refund first and the local books are updated
only once it has confirmed. If the process dies between the two, the
gateway has refunded while the order still reads SUCCESSFUL; the
``refund booked`` / ``refund executed`` log pair makes that gap visible.
"""

import logging
from decimal import Decimal
from typing import Optional

from .domain import AuditLogPort, GatewayPort, PaymentStatus, RefundResult, to_money
from .errors import RefundNotAllowedError, ValidationError
from .ledger import OrderLedger

logger = logging.getLogger("orders.refunds")


class RefundCoordinator:
    def __init__(self, gateway: GatewayPort, ledger: OrderLedger, audit_log: AuditLogPort):
        self.gateway = gateway
        self.ledger = ledger
        self.audit_log = audit_log

    def refund(self, order_id, amount: Optional[Decimal] = None, reason: Optional[str] = None,
               actor: str = "system") -> RefundResult:
        """Refund a paid order through the gateway and book it locally.

        Args:
            order_id: Order to refund.
            amount: Amount to refund; defaults to the order total.
            reason: Free text forwarded to the gateway and the timeline.
            actor: Who asked for the refund, for the audit log.

        Returns:
            RefundResult: Refunded amount and the gateway confirmation.

        Raises:
            OrderNotFoundError: Unknown order.
            RefundNotAllowedError: No successful, settled payment.
            ValidationError: Amount not positive or above the order total.
            RefundError: The gateway refused or could not be reached.
        """
        order = self.ledger.repo.get(order_id)
        payment = self.ledger.repo.latest_payment(order)
        if payment is None or payment.status != PaymentStatus.SUCCESSFUL.value:
            raise RefundNotAllowedError("only successful payments can be refunded")
        if not payment.gateway_tx_id:
            raise RefundNotAllowedError("payment has no gateway transaction id")

        amount = to_money(amount) if amount is not None else order.total_amount
        if amount <= 0:
            raise ValidationError(f"refund amount {amount} must be positive")
        if amount > order.total_amount:
            raise ValidationError(f"refund amount {amount} exceeds order total {order.total_amount}")

        response = self.gateway.refund_transaction(payment.gateway_tx_id, amount=amount, reason=reason)
        logger.info("refund executed",
                    extra={"order_id": str(order.id), "transaction_id": payment.gateway_tx_id, "amount": str(amount)})

        self.ledger.record_refund(order.id, amount, reason)
        logger.info("refund booked", extra={"order_id": str(order.id)})

        try:
            self.audit_log.record(
                actor=actor,
                action="REFUND",
                entity_type="order",
                entity_id=str(order.id),
                metadata={"amount": str(amount), "currency": order.currency, "reason": reason or "",
                          "gateway_response": response},
            )
        except Exception:
            logger.exception("audit log write failed", extra={"order_id": str(order.id)})

        return RefundResult(order_id=order.id, amount=amount, currency=order.currency, gateway_response=response)
