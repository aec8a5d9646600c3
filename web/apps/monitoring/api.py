import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.resilience import CircuitBreaker, get_registry

logger = logging.getLogger("monitoring.health")


def health_view(_request):
    """Liveness/readiness check: database round-trip plus circuit states.

    Open circuits are reported but do not fail the check; the service
    still answers reads and webhooks while the gateway is down.
    """
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        logger.exception("database health check failed")

    circuits = get_registry().snapshot()
    degraded = sorted(k for k, c in circuits.items() if c["state"] != CircuitBreaker.CLOSED)

    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "degraded": degraded,
            "components": {"db": {"ok": db_ok}, "circuits": circuits},
        },
        status=code,
    )


def live_view(_request):
    # Process is up; no dependency checks
    return JsonResponse({"ok": True})
