"""Idempotency utilities for checkout requests and gateway webhooks.

Checkout: a client may send an ``Idempotency-Key`` header. The first
request with a key stores a hash of the payload and, once processed,
its response; retries with the same payload replay that response, and
reuse of the key with another payload is a conflict.

Webhooks: every applied gateway event is claimed in
``ProcessedWebhook`` so a redelivery is recognized before the ledger
is touched. The ledger's final-status check stays the primary guard.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey, ProcessedWebhook


class IdempotencyConflict(Exception):
    """Key reused with a different payload."""


def _hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict):
    """Get-or-create an idempotency record for the given key and payload.

    The create path runs in a nested savepoint so an ``IntegrityError``
    only rolls back that block; the existing-record path takes a row
    lock (``SELECT ... FOR UPDATE``) before comparing hashes.

    Args:
        key: Client-provided idempotency key.
        payload: Request payload used to compute the request hash.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)`` where ``existing``
        is True when the record was already there.

    Raises:
        IdempotencyConflict: If the key exists with a different payload hash.
    """
    h = _hash(payload)

    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=key, request_hash=h, response_status=0, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict(key)
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Persist the final response for an idempotent request.

    Args:
        rec: The idempotency record to update.
        status_code: HTTP status code to store for the response.
        body: JSON-serializable response body to persist.
        order_id: Optional order identifier to link to the record.
    """
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])


def claim_webhook(webhook_id: str, event_type: str, order_id=None, provider: str = "flutterwave") -> bool:
    """Record a webhook event as processed.

    Must run inside the transaction that applies the event, so a
    rejected event leaves no claim behind.

    Returns:
        bool: False if the event had already been claimed.
    """
    try:
        with transaction.atomic():
            ProcessedWebhook.objects.create(
                webhook_id=webhook_id, provider=provider, event_type=event_type, order_id=order_id
            )
    except IntegrityError:
        return False
    return True
