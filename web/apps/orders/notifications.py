"""Outbound collaborators: shipping e-mails and the audit log."""

import logging

from django.conf import settings
from django.core.mail import send_mail

from .domain import AuditLogPort, NotificationPort, ShipmentNotice
from .models import AuditLogEntry

logger = logging.getLogger("orders.notifications")


class EmailShippingNotifier(NotificationPort):
    """Sends the "your order has shipped" e-mail through Django's mail backend.

    Discreet orders get a neutral subject line that does not name the store.
    """

    def notify_shipped(self, notice: ShipmentNotice) -> None:
        store = getattr(settings, "STORE_NAME", "Store")
        subject = f"Order {notice.order_number} is on its way"
        if not notice.discreet:
            subject = f"{store}: {subject}"

        lines = [f"Hi {notice.customer_name},", "", f"Your order {notice.order_number} has shipped."]
        if notice.tracking_number:
            lines.append(f"Tracking number: {notice.tracking_number}")
        send_mail(
            subject,
            "\n".join(lines),
            getattr(settings, "DEFAULT_FROM_EMAIL", None),
            [notice.customer_email],
        )
        logger.info("shipped notification sent", extra={"order_id": notice.order_id})


class DatabaseAuditLog(AuditLogPort):
    def record(self, actor: str, action: str, entity_type: str, entity_id: str, metadata: dict) -> None:
        AuditLogEntry.objects.create(
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            metadata=metadata or {},
        )
