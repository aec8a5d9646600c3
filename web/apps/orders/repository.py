"""Repository layer for persisting orders, payments and their timeline.

This module keeps Django ORM details out of the ledger. All writes that
touch an order go through ``save``, which bumps the ``version`` counter,
and status changes are always made on a row obtained from ``lock``
(``SELECT ... FOR UPDATE``) inside the caller's transaction.
"""

import uuid
from typing import List, Optional

from django.db import transaction

from .domain import CartLine, ChargeRequest, Customer, OrderStatus, PaymentInstrument, PaymentStatus, ShippingInfo
from .errors import OrderNotFoundError
from .models import OrderEventModel, OrderItemModel, OrderModel, PaymentModel


def parse_order_id(order_id) -> uuid.UUID:
    if isinstance(order_id, uuid.UUID):
        return order_id
    try:
        return uuid.UUID(str(order_id))
    except (TypeError, ValueError):
        raise OrderNotFoundError(f"order {order_id} not found")


class OrderRepository:
    """Repository that persists orders using the Django ORM."""

    @transaction.atomic
    def create_with_payment(
        self,
        order_number: str,
        lines: List[CartLine],
        total,
        currency: str,
        customer: Customer,
        shipping: ShippingInfo,
        instrument: PaymentInstrument,
    ) -> tuple[OrderModel, PaymentModel]:
        """Persist a PENDING order, its items and a PENDING payment.

        Returns:
            tuple[OrderModel, PaymentModel]: The created rows.
        """
        order = OrderModel.objects.create(
            order_number=order_number,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            total_amount=total,
            currency=currency,
            customer_name=customer.name,
            customer_email=customer.email,
            shipping_address=shipping.address,
            discreet=shipping.discreet,
        )
        OrderItemModel.objects.bulk_create(
            [
                OrderItemModel(
                    order=order,
                    product_id=line.product_id,
                    product_name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in lines
            ]
        )
        payment = PaymentModel.objects.create(
            order=order,
            method=instrument.method.value,
            network=getattr(getattr(instrument, "network", None), "value", None),
            status=PaymentStatus.PENDING.value,
            amount=total,
            currency=currency,
        )
        self.append_event(order, OrderStatus.PENDING.value, "Order placed")
        return order, payment

    def get(self, order_id) -> OrderModel:
        try:
            return OrderModel.objects.get(id=parse_order_id(order_id))
        except OrderModel.DoesNotExist:
            raise OrderNotFoundError(f"order {order_id} not found")

    def get_by_number(self, order_number: str) -> OrderModel:
        try:
            return OrderModel.objects.get(order_number=order_number)
        except OrderModel.DoesNotExist:
            raise OrderNotFoundError(f"order {order_number} not found")

    def lock(self, order_id) -> OrderModel:
        """Fetch an order with a row lock. Must be called inside ``atomic``.

        Raises:
            OrderNotFoundError: If the id is malformed or unknown.
        """
        try:
            return OrderModel.objects.select_for_update().get(id=parse_order_id(order_id))
        except OrderModel.DoesNotExist:
            raise OrderNotFoundError(f"order {order_id} not found")

    def latest_payment(self, order: OrderModel, lock: bool = False) -> Optional[PaymentModel]:
        qs = PaymentModel.objects.filter(order=order)
        if lock:
            qs = qs.select_for_update()
        return qs.order_by("-created_at").first()

    def append_event(self, order: OrderModel, status: str, note: str = "") -> OrderEventModel:
        return OrderEventModel.objects.create(order=order, status=status, note=note or "")

    def save(self, order: OrderModel, fields: List[str]) -> None:
        order.version += 1
        order.save(update_fields=list(fields) + ["version", "updated_at"])

    def attach_gateway_ref(self, payment_id, external_ref: str) -> bool:
        """Record the gateway reference once; later calls are ignored.

        Returns:
            bool: True if the reference was stored by this call.
        """
        updated = PaymentModel.objects.filter(id=payment_id, gateway_ref__isnull=True).update(
            gateway_ref=external_ref
        )
        return updated == 1


def charge_request_for(order: OrderModel, instrument: PaymentInstrument, redirect_url: str) -> ChargeRequest:
    return ChargeRequest(
        order_ref=str(order.id),
        amount=order.total_amount,
        currency=order.currency,
        customer=Customer(name=order.customer_name, email=order.customer_email),
        instrument=instrument,
        redirect_url=redirect_url,
    )
