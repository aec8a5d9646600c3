"""HTTP adapter clients for the payment gateway and the inventory service.

This module implements the ``GatewayPort`` and ``InventoryPort`` ports
using ``httpx``. Every call goes through ``ResilientInvoker``:

- Circuit breaker per dependency key (``gateway-card``,
  ``gateway-mobile-money``, ``gateway-verify``, ``gateway-refund``,
  ``inventory``) so an unhealthy dependency is not hammered.
- Exponential backoff retries for transport errors, timeouts, 5xx and
  429, performed inside one breaker-guarded call.
- Request correlation: ``X-Request-ID`` is propagated from the ContextVar
  set by the gateway middleware.

HTTP statuses are translated into the ``errors`` taxonomy here, so the
rest of the core never inspects raw responses.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Type

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import (
    CardPayment,
    ChargeRequest,
    GatewayPort,
    InventoryPort,
    MobileMoneyPayment,
    MobileNetwork,
    PaymentInitiation,
)
from .errors import (
    CircuitOpenError,
    ClientError,
    GatewayTimeoutError,
    InsufficientStockError,
    MalformedResponseError,
    NetworkError,
    PaymentInitiationError,
    RateLimitedError,
    RefundError,
    ServerError,
    UpstreamError,
)
from .resilience import ResilientInvoker, RetryPolicy, gateway_retry_policy

logger = logging.getLogger("orders.http")


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build outgoing headers: ``X-Request-ID`` when known, plus extras."""
    headers: Dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def raise_for_upstream_status(resp) -> None:
    """Translate a non-2xx response into the upstream error taxonomy."""
    code = resp.status_code
    if code < 400:
        return
    if code == 429:
        raise RateLimitedError("upstream rate limited the request")
    if code >= 500:
        raise ServerError(code)
    raise ClientError(code)


def _round_trip(send: Callable[[httpx.Client], httpx.Response], timeout: float) -> dict:
    """Perform one HTTP exchange and return the decoded JSON body.

    Raises:
        GatewayTimeoutError: When the upstream does not answer in time.
        NetworkError: For other transport failures (refused, reset...).
        RateLimitedError, ServerError, ClientError: For non-2xx answers.
        MalformedResponseError: For a 2xx answer that is not JSON.
    """
    try:
        with httpx.Client(timeout=timeout) as client:
            resp = send(client)
    except httpx.TimeoutException as e:
        raise GatewayTimeoutError(str(e) or "upstream timed out", cause=e) from e
    except httpx.TransportError as e:
        raise NetworkError(str(e) or "upstream unreachable", cause=e) from e
    raise_for_upstream_status(resp)
    try:
        return resp.json()
    except ValueError as e:
        raise MalformedResponseError(f"upstream answered {resp.status_code} with a non-JSON body", cause=e) from e


def _as_number(amount: Decimal):
    """JSON-friendly amount: integral values as int, others as float."""
    amount = Decimal(amount)
    return int(amount) if amount == amount.to_integral_value() else float(amount)


# ---------------- Gateway routes ---------------- #

@dataclass(frozen=True)
class GatewayRoute:
    """Endpoint, body and circuit key for one payment instrument."""

    path: str
    payload: dict
    circuit_key: str


MOBILE_MONEY_ENDPOINTS: Dict[MobileNetwork, str] = {
    MobileNetwork.MPESA: "/charges?type=mpesa",
    MobileNetwork.AIRTEL: "/charges?type=mobilemoneyug",
    MobileNetwork.MTN: "/charges?type=mobilemoneyug",
}


def _card_route(req: ChargeRequest) -> GatewayRoute:
    return GatewayRoute(
        path="/payments",
        payload={
            "tx_ref": req.order_ref,
            "amount": _as_number(req.amount),
            "currency": req.currency,
            "redirect_url": req.redirect_url,
            "customer": {"email": req.customer.email, "name": req.customer.name},
            "customizations": {
                "title": getattr(settings, "STORE_NAME", "Store"),
                "description": "Order Payment",
            },
            "payment_options": "card",
        },
        circuit_key="gateway-card",
    )


def _mobile_money_route(req: ChargeRequest) -> GatewayRoute:
    instrument = req.instrument
    return GatewayRoute(
        path=MOBILE_MONEY_ENDPOINTS[instrument.network],
        payload={
            "tx_ref": req.order_ref,
            "amount": _as_number(req.amount),
            "currency": req.currency,
            "email": req.customer.email,
            "phone_number": instrument.phone,
            "fullname": req.customer.name,
            "redirect_url": req.redirect_url,
        },
        circuit_key="gateway-mobile-money",
    )


PAYMENT_ROUTES: Dict[Type, Callable[[ChargeRequest], GatewayRoute]] = {
    CardPayment: _card_route,
    MobileMoneyPayment: _mobile_money_route,
}


def _normalize_initiation(body: dict) -> PaymentInitiation:
    data = body.get("data") or {}
    authorization = (data.get("meta") or {}).get("authorization") or {}
    return PaymentInitiation(
        status=body.get("status", ""),
        external_ref=data.get("flw_ref") or data.get("tx_ref"),
        checkout_link=data.get("link") or authorization.get("redirect"),
    )


# ---------------- Gateway Adapter ---------------- #

class HttpGatewayClient(GatewayPort):
    """HTTP client for the external payment gateway.

    Args:
        base_url: Gateway API root, e.g. ``https://api.flutterwave.com/v3``.
        secret_key: Bearer secret used on every call.
        invoker: Retry/circuit runner; defaults to the process-wide one.
        policy: Retry policy; defaults to ``gateway_retry_policy()``.
    """

    def __init__(self, base_url: str | None = None, secret_key: str | None = None,
                 invoker: ResilientInvoker | None = None, policy: RetryPolicy | None = None):
        self.base_url = (base_url or settings.GATEWAY_BASE_URL).rstrip("/")
        self.secret_key = secret_key if secret_key is not None else getattr(settings, "GATEWAY_SECRET_KEY", "")
        self.invoker = invoker or ResilientInvoker()
        self.policy = policy or gateway_retry_policy()
        self.create_timeout = getattr(settings, "GATEWAY_CREATE_TIMEOUT_SECS", 30.0)
        self.verify_timeout = getattr(settings, "GATEWAY_VERIFY_TIMEOUT_SECS", 15.0)
        self.refund_timeout = getattr(settings, "GATEWAY_REFUND_TIMEOUT_SECS", 30.0)

    def _headers(self) -> dict:
        return _request_headers({"Authorization": f"Bearer {self.secret_key}"})

    def create_payment(self, request: ChargeRequest) -> PaymentInitiation:
        """Start collecting a payment for an order.

        The instrument type selects the route (hosted card checkout or a
        network-specific mobile-money charge) from ``PAYMENT_ROUTES``.

        Args:
            request: Order reference, amount, customer, instrument and
                redirect URL.

        Returns:
            PaymentInitiation: Normalized status, gateway reference and
            checkout link.

        Raises:
            PaymentInitiationError: When the gateway could not be used.
                ``ambiguous`` is True when the charge may nevertheless
                exist on the gateway side.
        """
        route = PAYMENT_ROUTES[type(request.instrument)](request)
        url = f"{self.base_url}{route.path}"
        headers = self._headers()

        def call() -> dict:
            return _round_trip(lambda c: c.post(url, json=route.payload, headers=headers), self.create_timeout)

        try:
            body = self.invoker.execute(call, policy=self.policy, circuit_key=route.circuit_key)
        except (CircuitOpenError, ClientError) as e:
            logger.error("payment initiation refused",
                         extra={"order_ref": request.order_ref, "circuit": route.circuit_key, "error": e.code})
            raise PaymentInitiationError(str(e), cause=e, ambiguous=False) from e
        except UpstreamError as e:
            logger.error("payment initiation outcome unknown",
                         extra={"order_ref": request.order_ref, "circuit": route.circuit_key, "error": e.code})
            raise PaymentInitiationError(str(e), cause=e, ambiguous=True) from e

        if body.get("status") != "success":
            raise PaymentInitiationError(body.get("message") or "gateway declined payment initiation", ambiguous=False)
        return _normalize_initiation(body)

    def verify_transaction(self, transaction_id: str) -> dict:
        """Fetch the gateway's view of a transaction (raw payload)."""
        url = f"{self.base_url}/transactions/{transaction_id}/verify"
        headers = self._headers()

        def call() -> dict:
            return _round_trip(lambda c: c.get(url, headers=headers), self.verify_timeout)

        return self.invoker.execute(call, policy=self.policy, circuit_key="gateway-verify")

    def refund_transaction(self, transaction_id: str, amount: Optional[Decimal] = None,
                           reason: Optional[str] = None) -> dict:
        """Ask the gateway to refund a settled transaction.

        Raises:
            RefundError: When the gateway refused or could not be reached.
        """
        url = f"{self.base_url}/transactions/{transaction_id}/refund"
        payload: dict = {}
        if amount is not None:
            payload["amount"] = _as_number(amount)
        if reason:
            payload["comments"] = reason
        headers = self._headers()

        def call() -> dict:
            return _round_trip(lambda c: c.post(url, json=payload, headers=headers), self.refund_timeout)

        try:
            body = self.invoker.execute(call, policy=self.policy, circuit_key="gateway-refund")
        except UpstreamError as e:
            logger.error("refund failed", extra={"transaction_id": transaction_id, "error": e.code})
            raise RefundError(str(e), cause=e) from e
        if body.get("status") != "success":
            raise RefundError(body.get("message") or "gateway declined refund")
        return body


# ---------------- Inventory Adapter ---------------- #

class HttpInventoryClient(InventoryPort):
    """HTTP client for the inventory service with retry and circuit breaker.

    Adjustments carry an ``Idempotency-Key`` so a retry after a timeout
    cannot move stock twice.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None,
                 invoker: ResilientInvoker | None = None):
        self.base_url = (base_url or settings.INVENTORY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS
        self.invoker = invoker or ResilientInvoker()
        self.policy = RetryPolicy(
            max_retries=getattr(settings, "HTTP_RETRY_MAX", 3),
            base_delay=getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
            max_delay=getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
        )

    def _adjust(self, product_id: str, quantity: int, direction: str, idempotency_key: Optional[str]) -> Optional[dict]:
        url = f"{self.base_url}/stock/{product_id}/{direction}"
        extra = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        headers = _request_headers(extra)

        def call() -> Optional[dict]:
            try:
                return _round_trip(lambda c: c.post(url, json={"quantity": quantity}, headers=headers), self.timeout)
            except ClientError as e:
                # 422 is the service refusing to go below zero, not a fault
                if e.status_code == 422:
                    return None
                raise

        return self.invoker.execute(call, policy=self.policy, circuit_key="inventory")

    def increment(self, product_id: str, quantity: int, idempotency_key: Optional[str] = None) -> None:
        self._adjust(product_id, quantity, "increment", idempotency_key)

    def decrement(self, product_id: str, quantity: int, idempotency_key: Optional[str] = None) -> None:
        """Take stock.

        Raises:
            InsufficientStockError: The service has less than ``quantity``.
        """
        if self._adjust(product_id, quantity, "decrement", idempotency_key) is None:
            raise InsufficientStockError(product_id, quantity)
