"""Request-scoped middleware: correlation ids and API body size limits.

``RequestIdMiddleware`` gives every request an identifier. The id comes
from the incoming ``X-Request-ID`` header (so the gateway's webhook
retries and upstream proxies can be correlated) or is generated as a
UUID4. It is stored on ``request.request_id``, in the ``REQUEST_ID_CTX``
ContextVar (read by ``RequestIdFilter`` for log records and by the HTTP
adapters, which forward it to the gateway and the inventory service),
and echoed on the response.

``ApiSizeLimitMiddleware`` rejects oversized ``/api/`` bodies before
they reach checkout or webhook parsing.
"""

import logging
import os
import time
import uuid
import contextvars

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))

logger = logging.getLogger("gateway.requests")


class RequestIdMiddleware(MiddlewareMixin):
    """Assign a request id, expose it to logging and return it to the caller.

    Attributes:
        HEADER (str): Incoming header as found in ``request.META``.
        RESPONSE_HEADER (str): Header set on every response.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        request._started_at = time.monotonic()
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        started = getattr(request, "_started_at", None)
        logger.info(
            "request handled",
            extra={
                "path": request.path,
                "method": request.method,
                "status": response.status_code,
                "duration_ms": round((time.monotonic() - started) * 1000, 1) if started else None,
            },
        )
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
