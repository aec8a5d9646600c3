"""Order ledger: the only writer of order, payment and timeline state.

``OrderLedger`` creates orders at checkout and takes their stock, applies
admin status changes and notes, finalizes payments from webhooks or
verifications, books refunds and releases orders whose payment never
arrived.
Each mutation happens inside ``transaction.atomic()`` on a row locked
with ``select_for_update()``, and every decision is taken on the locked,
stored state. That is what makes repeated webhooks and repeated cancel
requests harmless:

- A payment that is already final is never re-finalized.
- Stock is returned to inventory at most once per order, tracked by
  ``OrderModel.stock_restored``.

The gateway is only called outside of database transactions.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .domain import (
    AMOUNT_TOLERANCE,
    FINAL_PAYMENT_STATUSES,
    CartLine,
    CheckoutResult,
    Customer,
    GatewayPort,
    InventoryPort,
    NotificationPort,
    OrderStatus,
    PaymentInstrument,
    PaymentOutcome,
    PaymentStatus,
    PaymentUpdate,
    ShipmentNotice,
    ShippingInfo,
    amounts_match,
    cart_total,
    generate_order_number,
    outcome_from_gateway_status,
    to_money,
)
from .errors import AmountMismatchError, PaymentInitiationError, RefundNotAllowedError, ValidationError
from .models import OrderModel
from .repository import OrderRepository, charge_request_for

logger = logging.getLogger("orders.ledger")


class OrderLedger:
    """Owns order and payment state transitions.

    Args:
        gateway: Payment gateway port used to initiate and verify payments.
        inventory: Inventory port used to take and return stock.
        notifier: Notification port for shipped orders.
        repository: Persistence helper; a default one is created if omitted.
    """

    def __init__(self, gateway: GatewayPort, inventory: InventoryPort, notifier: NotificationPort,
                 repository: Optional[OrderRepository] = None):
        self.gateway = gateway
        self.inventory = inventory
        self.notifier = notifier
        self.repo = repository or OrderRepository()

    # ---- Checkout ----

    def create_order(
        self,
        cart: List[CartLine],
        customer: Customer,
        submitted_amount,
        currency: str,
        shipping: ShippingInfo,
        instrument: PaymentInstrument,
    ) -> CheckoutResult:
        """Persist a new order and start collecting its payment.

        The total is recomputed from the cart; the submitted amount only
        has to agree with it within one cent. Stock is taken for every
        line, then order, items and a PENDING payment are committed
        together before the gateway is called.

        Returns:
            CheckoutResult: Created order with the gateway checkout link.

        Raises:
            ValidationError: Empty cart or non-positive quantities.
            InsufficientStockError: Inventory cannot cover a line; nothing
                is persisted and stock already taken is given back.
            AmountMismatchError: Submitted amount differs from the cart total.
            PaymentInitiationError: The gateway could not start the payment.
                ``order_id`` and ``order_number`` are set; the order stays
                PENDING.
        """
        if not cart:
            raise ValidationError("cart is empty")
        if any(line.quantity <= 0 for line in cart):
            raise ValidationError("quantities must be positive")

        total = cart_total(cart)
        submitted = to_money(submitted_amount)
        if abs(total - submitted) > AMOUNT_TOLERANCE:
            raise AmountMismatchError(expected=total, received=submitted)

        order_number = generate_order_number()
        taken = self._take_stock(order_number, cart)
        try:
            order, payment = self.repo.create_with_payment(
                order_number=order_number,
                lines=cart,
                total=total,
                currency=currency,
                customer=customer,
                shipping=shipping,
                instrument=instrument,
            )
        except Exception:
            self._release_stock(order_number, cart, taken)
            raise
        logger.info("order created", extra={"order_id": str(order.id), "order_number": order.order_number,
                                            "amount": str(total), "currency": currency,
                                            "method": instrument.method.value})

        redirect_url = settings.CHECKOUT_REDIRECT_URL.format(order_id=order.id)
        try:
            initiation = self.gateway.create_payment(charge_request_for(order, instrument, redirect_url))
        except PaymentInitiationError as e:
            e.order_id = order.id
            e.order_number = order.order_number
            logger.warning("payment initiation failed",
                           extra={"order_id": str(order.id), "ambiguous": e.ambiguous, "error": str(e)})
            raise
        except Exception as e:
            # Outcome unknown: the request may have reached the gateway
            logger.exception("payment initiation crashed", extra={"order_id": str(order.id)})
            err = PaymentInitiationError(str(e) or type(e).__name__, cause=e, ambiguous=True)
            err.order_id = order.id
            err.order_number = order.order_number
            raise err from e

        if initiation.external_ref:
            self.repo.attach_gateway_ref(payment.id, initiation.external_ref)

        return CheckoutResult(
            order_id=order.id,
            order_number=order.order_number,
            payment_id=payment.id,
            total_amount=total,
            currency=currency,
            status=order.status,
            checkout_link=initiation.checkout_link,
        )

    # ---- Admin transitions ----

    def update_status(self, order_id, new_status, note: Optional[str] = None,
                      tracking_number: Optional[str] = None) -> OrderModel:
        """Change an order's fulfillment status and log it on the timeline.

        Entering CANCELLED returns stock to inventory once. Entering
        SHIPPED notifies the customer after commit; notification errors
        are logged and never undo the status change.
        """
        try:
            new_status = OrderStatus(new_status)
        except ValueError:
            raise ValidationError(f"unknown status {new_status}")

        with transaction.atomic():
            order = self.repo.lock(order_id)
            previous = order.status
            order.status = new_status.value
            fields = ["status"]
            if tracking_number:
                order.tracking_number = tracking_number
                fields.append("tracking_number")

            if new_status == OrderStatus.CANCELLED and previous != OrderStatus.CANCELLED.value:
                if self._restore_stock(order):
                    fields.append("stock_restored")

            self.repo.save(order, fields)
            self.repo.append_event(order, new_status.value, note or f"Status changed from {previous} to {new_status.value}")

            if new_status == OrderStatus.SHIPPED and previous != OrderStatus.SHIPPED.value:
                notice = ShipmentNotice(
                    order_id=str(order.id),
                    order_number=order.order_number,
                    customer_name=order.customer_name,
                    customer_email=order.customer_email,
                    tracking_number=order.tracking_number,
                    discreet=order.discreet,
                )
                transaction.on_commit(lambda: self._notify_shipped(notice))

        logger.info("order status updated",
                    extra={"order_id": str(order.id), "from": previous, "to": new_status.value})
        return order

    # ---- Payment finalization ----

    def mark_payment_result(self, order_id, external_ref: Optional[str], outcome, notified_amount,
                            currency: Optional[str] = None, gateway_ref: Optional[str] = None) -> PaymentUpdate:
        """Apply a final payment outcome reported by the gateway.

        A payment that is already SUCCESSFUL, FAILED or REFUNDED is left
        untouched and ``applied`` is False, so redelivered notifications
        are no-ops.

        Args:
            order_id: Local order id (the ``tx_ref`` sent to the gateway).
            external_ref: Gateway transaction id.
            outcome: ``PaymentOutcome`` or its string value.
            notified_amount: Amount the gateway says was charged.
            currency: Currency the gateway says was charged, when known.
            gateway_ref: Gateway charge reference, stored if still missing.

        Raises:
            OrderNotFoundError: Unknown order.
            AmountMismatchError: Amount or currency disagree with the order.
        """
        outcome = PaymentOutcome(outcome)
        with transaction.atomic():
            order = self.repo.lock(order_id)
            payment = self.repo.latest_payment(order, lock=True)
            if payment is None:
                raise ValidationError(f"order {order.id} has no payment")

            if payment.status in FINAL_PAYMENT_STATUSES:
                logger.info("payment already final, ignoring result",
                            extra={"order_id": str(order.id), "payment_status": payment.status,
                                   "outcome": outcome.value})
                return PaymentUpdate(order.id, order.status, payment.status, applied=False)

            if notified_amount is None or not amounts_match(order.total_amount, notified_amount):
                raise AmountMismatchError(expected=order.total_amount, received=notified_amount)
            if currency and currency.upper() != order.currency:
                raise AmountMismatchError(expected=f"{order.total_amount} {order.currency}",
                                          received=f"{notified_amount} {currency}")

            if external_ref:
                payment.gateway_tx_id = str(external_ref)
            if gateway_ref and not payment.gateway_ref:
                payment.gateway_ref = gateway_ref

            fields = ["status", "payment_status"]
            if outcome == PaymentOutcome.SUCCESSFUL:
                payment.status = PaymentStatus.SUCCESSFUL.value
                order.status = OrderStatus.CONFIRMED.value
                note = "Payment confirmed"
            else:
                payment.status = PaymentStatus.FAILED.value
                order.status = OrderStatus.CANCELLED.value
                if self._restore_stock(order):
                    fields.append("stock_restored")
                note = "Payment failed, order cancelled"
            order.payment_status = payment.status

            payment.save(update_fields=["status", "gateway_tx_id", "gateway_ref", "updated_at"])
            self.repo.save(order, fields)
            self.repo.append_event(order, order.status, note)

        logger.info("payment result applied",
                    extra={"order_id": str(order.id), "payment_status": payment.status, "order_status": order.status})
        return PaymentUpdate(order.id, order.status, payment.status, applied=True)

    def reconcile_payment(self, order_id, transaction_id: str) -> PaymentUpdate:
        """Verify a transaction with the gateway and apply its outcome.

        Used when the customer comes back from the hosted checkout, before
        (or instead of) the webhook. Pending transactions change nothing.

        Raises:
            ValidationError: The gateway does not know the transaction, or
                it belongs to another order.
            UpstreamError: The gateway could not be reached.
        """
        order = self.repo.get(order_id)
        body = self.gateway.verify_transaction(str(transaction_id))
        data = body.get("data") or {}
        if body.get("status") != "success" or not data:
            raise ValidationError(body.get("message") or "transaction could not be verified")
        if str(data.get("tx_ref")) != str(order.id):
            raise ValidationError("transaction does not belong to this order")

        outcome = outcome_from_gateway_status(data.get("status"))
        if outcome is None:
            return PaymentUpdate(order.id, order.status, order.payment_status, applied=False)
        return self.mark_payment_result(
            order.id,
            str(data.get("id") or transaction_id),
            outcome,
            data.get("amount"),
            currency=data.get("currency"),
            gateway_ref=data.get("flw_ref"),
        )

    # ---- Refund bookkeeping ----

    def record_refund(self, order_id, amount: Decimal, reason: Optional[str] = None) -> OrderModel:
        """Book a refund the gateway has already executed.

        Raises:
            RefundNotAllowedError: The payment is no longer SUCCESSFUL
                (e.g. a concurrent refund won the race).
        """
        with transaction.atomic():
            order = self.repo.lock(order_id)
            payment = self.repo.latest_payment(order, lock=True)
            if payment is None or payment.status != PaymentStatus.SUCCESSFUL.value:
                raise RefundNotAllowedError("payment is not refundable")

            payment.status = PaymentStatus.REFUNDED.value
            payment.save(update_fields=["status", "updated_at"])

            order.status = OrderStatus.REFUNDED.value
            order.payment_status = PaymentStatus.REFUNDED.value
            fields = ["status", "payment_status"]
            if self._restore_stock(order):
                fields.append("stock_restored")
            self.repo.save(order, fields)

            note = f"Refunded {to_money(amount)} {order.currency}"
            if reason:
                note = f"{note}: {reason}"
            self.repo.append_event(order, OrderStatus.REFUNDED.value, note)
        return order

    # ---- Notes and expiry ----

    def add_note(self, order_id, note: str) -> OrderModel:
        """Append a free-text NOTE entry to the timeline without changing status."""
        note = (note or "").strip()
        if not note:
            raise ValidationError("note is empty")
        with transaction.atomic():
            order = self.repo.lock(order_id)
            self.repo.append_event(order, "NOTE", note)
        return order

    def expire_pending(self, older_than: timedelta) -> List:
        """Cancel orders whose payment is still PENDING after ``older_than``.

        Each order is re-checked under its row lock, so one that a webhook
        finalized meanwhile is left alone. Stock goes back through the same
        restore-once path as a cancellation. A payment notified after
        expiry finds a FAILED payment and is acknowledged without effect.

        Returns:
            list: Ids of the orders that were cancelled.
        """
        cutoff = timezone.now() - older_than
        candidates = list(
            OrderModel.objects.filter(
                status=OrderStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                created_at__lt=cutoff,
            ).values_list("id", flat=True)
        )

        expired = []
        for order_id in candidates:
            with transaction.atomic():
                order = self.repo.lock(order_id)
                if (order.status != OrderStatus.PENDING.value
                        or order.payment_status != PaymentStatus.PENDING.value):
                    continue
                payment = self.repo.latest_payment(order, lock=True)
                if payment is not None and payment.status == PaymentStatus.PENDING.value:
                    payment.status = PaymentStatus.FAILED.value
                    payment.save(update_fields=["status", "updated_at"])

                order.status = OrderStatus.CANCELLED.value
                order.payment_status = PaymentStatus.FAILED.value
                fields = ["status", "payment_status"]
                if self._restore_stock(order):
                    fields.append("stock_restored")
                self.repo.save(order, fields)
                self.repo.append_event(order, order.status, "Payment window expired, order cancelled")
            expired.append(order.id)

        if expired:
            logger.info("expired pending orders released", extra={"count": len(expired), "cutoff": cutoff.isoformat()})
        return expired

    # ---- Internals ----

    def _take_stock(self, order_number: str, cart: List[CartLine]) -> List[int]:
        """Decrement stock for every cart line, all or nothing.

        Returns:
            list: Indexes of the lines taken (all of them).
        """
        taken: List[int] = []
        try:
            for idx, line in enumerate(cart):
                self.inventory.decrement(line.product_id, line.quantity,
                                         idempotency_key=f"take:{order_number}:{idx}")
                taken.append(idx)
        except Exception:
            self._release_stock(order_number, cart, taken)
            raise
        return taken

    def _release_stock(self, order_number: str, cart: List[CartLine], taken: List[int]) -> None:
        """Give back stock taken for an order that was never persisted."""
        for idx in taken:
            line = cart[idx]
            try:
                self.inventory.increment(line.product_id, line.quantity,
                                         idempotency_key=f"release:{order_number}:{idx}")
            except Exception:
                logger.exception("stock release failed",
                                 extra={"order_number": order_number, "product_id": line.product_id})


    def _restore_stock(self, order: OrderModel) -> bool:
        """Return every item's quantity to inventory unless already done."""
        if order.stock_restored:
            return False
        for item in order.items.all():
            self.inventory.increment(item.product_id, item.quantity,
                                     idempotency_key=f"restore:{order.id}:{item.id}")
        order.stock_restored = True
        logger.info("stock restored", extra={"order_id": str(order.id)})
        return True

    def _notify_shipped(self, notice: ShipmentNotice) -> None:
        try:
            self.notifier.notify_shipped(notice)
        except Exception:
            logger.exception("shipped notification failed", extra={"order_id": notice.order_id})
