"""Gateway webhook handling.

The gateway signs each notification by echoing a shared secret in the
``verif-hash`` header. ``WebhookProcessor`` checks it in constant time,
validates ``charge.completed`` payloads and hands the final outcome to
``OrderLedger.mark_payment_result``. Deliveries are at-least-once: the
event is claimed in ``processed_webhooks`` in the same transaction that
applies it, and the ledger ignores payments that are already final.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

import pydantic
from django.conf import settings
from django.db import transaction

from .domain import outcome_from_gateway_status
from .errors import InvalidSignatureError, ValidationError
from .idempotency import claim_webhook
from .ledger import OrderLedger
from .repository import parse_order_id
from .schemas import ChargeDataDTO, WebhookEventDTO

logger = logging.getLogger("orders.webhooks")

CHARGE_COMPLETED = "charge.completed"


@dataclass
class WebhookAck:
    """What the processor did with a notification.

    ``outcome`` is one of ``processed``, ``duplicate`` or ``ignored``.
    """

    outcome: str
    event: str
    order_id: Optional[str] = None
    applied: bool = False


def verify_signature(signature_header: Optional[str], secret: Optional[str]) -> None:
    """Constant-time check of the ``verif-hash`` header.

    Raises:
        InvalidSignatureError: Missing secret, missing header or mismatch.
    """
    if not secret:
        logger.error("webhook secret is not configured")
        raise InvalidSignatureError("webhook secret is not configured")
    if not signature_header:
        raise InvalidSignatureError("missing signature")
    if not hmac.compare_digest(signature_header.encode("utf-8"), secret.encode("utf-8")):
        raise InvalidSignatureError("signature mismatch")


class WebhookProcessor:
    def __init__(self, ledger: OrderLedger, secret: Optional[str] = None):
        self.ledger = ledger
        self.secret = secret if secret is not None else getattr(settings, "GATEWAY_WEBHOOK_HASH", "")

    def handle_notification(self, signature_header: Optional[str], payload) -> WebhookAck:
        """Verify and apply one gateway notification.

        Args:
            signature_header: Raw ``verif-hash`` header value.
            payload: Decoded JSON body.

        Returns:
            WebhookAck: Acknowledgement to report back with HTTP 200.

        Raises:
            InvalidSignatureError: Signature check failed.
            ValidationError: Malformed payload.
            OrderNotFoundError: ``tx_ref`` does not name a known order.
            AmountMismatchError: Notified amount/currency disagree with
                the order; nothing is recorded.
        """
        verify_signature(signature_header, self.secret)

        try:
            event = WebhookEventDTO.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(f"malformed webhook: {e.error_count()} error(s)") from e

        if event.event != CHARGE_COMPLETED:
            logger.info("webhook event ignored", extra={"event": event.event})
            return WebhookAck("ignored", event.event)

        try:
            charge = ChargeDataDTO.model_validate(event.data)
        except pydantic.ValidationError as e:
            raise ValidationError(f"malformed charge data: {e.error_count()} error(s)") from e

        outcome = outcome_from_gateway_status(charge.status)
        if outcome is None:
            logger.info("charge not final yet", extra={"order_id": charge.tx_ref, "charge_status": charge.status})
            return WebhookAck("ignored", event.event, order_id=charge.tx_ref)

        order_id = parse_order_id(charge.tx_ref)
        webhook_id = f"{event.event}:{charge.id}"
        with transaction.atomic():
            if not claim_webhook(webhook_id, event.event, order_id=order_id):
                logger.info("duplicate webhook", extra={"webhook_id": webhook_id, "order_id": charge.tx_ref})
                return WebhookAck("duplicate", event.event, order_id=charge.tx_ref)

            update = self.ledger.mark_payment_result(
                order_id,
                charge.id,
                outcome,
                charge.amount,
                currency=charge.currency,
                gateway_ref=charge.flw_ref,
            )

        logger.info("webhook processed",
                    extra={"webhook_id": webhook_id, "order_id": str(update.order_id), "applied": update.applied})
        return WebhookAck("processed", event.event, order_id=str(update.order_id), applied=update.applied)
