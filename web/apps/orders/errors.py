"""Error taxonomy for the payments and fulfillment core.

Every error carries a short, stable ``code`` (the same upper-case codes
the HTTP views return in ``{"detail": CODE}`` bodies). Upstream errors
are split into retryable and non-retryable families so the retry
predicate in ``resilience`` can decide without looking at raw HTTP
responses.
"""

from typing import Optional


class PaymentsError(Exception):
    """Base class for every error raised by the orders core."""

    code = "PAYMENTS_ERROR"

    def __init__(self, message: Optional[str] = None, *, cause: Optional[BaseException] = None):
        super().__init__(message or self.code)
        self.cause = cause


# ---- Upstream (gateway / collaborator) ----

class UpstreamError(PaymentsError):
    """A call to an external dependency did not produce a usable answer."""

    code = "UPSTREAM_ERROR"
    retryable = False


class NetworkError(UpstreamError):
    code = "UPSTREAM_NETWORK_ERROR"
    retryable = True


class GatewayTimeoutError(NetworkError):
    """The dependency did not answer in time; the request may have landed."""

    code = "UPSTREAM_TIMEOUT"


class ServerError(UpstreamError):
    code = "UPSTREAM_SERVER_ERROR"
    retryable = True

    def __init__(self, status_code: int, message: Optional[str] = None, **kw):
        super().__init__(message or f"upstream responded {status_code}", **kw)
        self.status_code = status_code


class RateLimitedError(UpstreamError):
    code = "UPSTREAM_RATE_LIMITED"
    retryable = True
    status_code = 429


class ClientError(UpstreamError):
    """4xx other than 429: the request itself was rejected."""

    code = "UPSTREAM_REJECTED"

    def __init__(self, status_code: int, message: Optional[str] = None, **kw):
        super().__init__(message or f"upstream rejected request with {status_code}", **kw)
        self.status_code = status_code


class MalformedResponseError(UpstreamError):
    """The dependency answered 2xx with a body that is not JSON."""

    code = "UPSTREAM_BAD_RESPONSE"


class CircuitOpenError(UpstreamError):
    code = "CIRCUIT_OPEN"

    def __init__(self, key: str, message: Optional[str] = None):
        super().__init__(message or f"circuit open for {key}")
        self.key = key


# ---- Domain rejections ----

class ValidationError(PaymentsError):
    code = "VALIDATION_ERROR"


class InsufficientStockError(ValidationError):
    """Inventory cannot cover the requested quantity."""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: Optional[int] = None, message: Optional[str] = None):
        super().__init__(message or f"insufficient stock for {product_id}")
        self.product_id = product_id
        self.requested = requested


class AmountMismatchError(PaymentsError):
    code = "AMOUNT_MISMATCH"

    def __init__(self, expected=None, received=None, message: Optional[str] = None):
        super().__init__(message or f"expected {expected}, received {received}")
        self.expected = expected
        self.received = received


class InvalidSignatureError(PaymentsError):
    code = "INVALID_SIGNATURE"


class RefundNotAllowedError(PaymentsError):
    code = "REFUND_NOT_ALLOWED"


class OrderNotFoundError(PaymentsError):
    code = "NOT_FOUND"


# ---- Operation failures ----

class PaymentInitiationError(PaymentsError):
    """Payment could not be initiated with the gateway.

    Attributes:
        ambiguous: True when the gateway may have received and processed
            the request (timeouts, transport errors, exhausted 5xx/429).
            Such orders must be settled by the webhook or a verification,
            never assumed failed.
        order_id: Local order the attempt belonged to, once known.
        order_number: Human readable order number, once known.
    """

    code = "PAYMENT_INITIATION_FAILED"

    def __init__(self, message: Optional[str] = None, *, cause: Optional[BaseException] = None, ambiguous: bool = False):
        super().__init__(message, cause=cause)
        self.ambiguous = ambiguous
        self.order_id = None
        self.order_number = None


class RefundError(PaymentsError):
    code = "REFUND_FAILED"
