"""Service provider helpers for wiring the orders core with its ports.

When ``settings.USE_HTTP_ADAPTERS`` is truthy the gateway and inventory
ports are the HTTP clients; otherwise fast in-process stubs are used,
which is what tests and local development run with. Views resolve their
collaborators through these functions on every request, so tests can
monkeypatch them.
"""

from django.conf import settings

from .adapters import GatewayStub, InventoryStub
from .domain import AuditLogPort, GatewayPort, InventoryPort, NotificationPort
from .http_adapters import HttpGatewayClient, HttpInventoryClient
from .ledger import OrderLedger
from .notifications import DatabaseAuditLog, EmailShippingNotifier
from .refunds import RefundCoordinator
from .webhooks import WebhookProcessor


def _use_http() -> bool:
    return bool(getattr(settings, "USE_HTTP_ADAPTERS", True))


def get_gateway() -> GatewayPort:
    return HttpGatewayClient() if _use_http() else GatewayStub()


def get_inventory() -> InventoryPort:
    return HttpInventoryClient() if _use_http() else InventoryStub()


def get_notifier() -> NotificationPort:
    return EmailShippingNotifier()


def get_audit_log() -> AuditLogPort:
    return DatabaseAuditLog()


def get_order_ledger(gateway: GatewayPort | None = None) -> OrderLedger:
    """Return an ``OrderLedger`` wired with the configured ports."""
    return OrderLedger(
        gateway=gateway or get_gateway(),
        inventory=get_inventory(),
        notifier=get_notifier(),
    )


def get_webhook_processor() -> WebhookProcessor:
    return WebhookProcessor(get_order_ledger())


def get_refund_coordinator() -> RefundCoordinator:
    gateway = get_gateway()
    return RefundCoordinator(gateway=gateway, ledger=get_order_ledger(gateway), audit_log=get_audit_log())
