"""HTTP views for the orders app.

Views are kept intentionally small: they validate requests (via
Pydantic), delegate to the ledger, webhook processor or refund
coordinator obtained from ``providers``, and translate domain errors to
HTTP statuses with a ``{"detail": CODE}`` body.

Idempotency: when an ``Idempotency-Key`` header is provided, checkout
stores its response. Retries with the same payload replay it with an
``Idempotent-Replay: true`` header; reusing the key with a different
payload returns HTTP 409.
"""

import json
import logging

import pydantic
from django.core.paginator import EmptyPage, Paginator
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .errors import CircuitOpenError, PaymentInitiationError, PaymentsError, UpstreamError
from .idempotency import IdempotencyConflict, finalize, get_or_create_idempotent
from .models import OrderModel
from .repository import OrderRepository
from .schemas import (
    CheckoutDTO,
    NoteDTO,
    OrderReadDTO,
    RefundDTO,
    StatusUpdateDTO,
    TrackingDTO,
    VerifyPaymentDTO,
)

logger = logging.getLogger("orders.views")

ERROR_STATUS = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "AMOUNT_MISMATCH": status.HTTP_400_BAD_REQUEST,
    "INVALID_SIGNATURE": status.HTTP_401_UNAUTHORIZED,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INSUFFICIENT_STOCK": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "REFUND_NOT_ALLOWED": status.HTTP_409_CONFLICT,
    "REFUND_FAILED": status.HTTP_502_BAD_GATEWAY,
    "CIRCUIT_OPEN": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_status(exc: PaymentsError) -> int:
    if exc.code in ERROR_STATUS:
        return ERROR_STATUS[exc.code]
    if isinstance(exc, UpstreamError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_400_BAD_REQUEST


def error_response(exc: PaymentsError) -> Response:
    return Response({"detail": exc.code, "message": str(exc)}, status=error_status(exc))


def invalid_payload(exc: pydantic.ValidationError) -> Response:
    errors = json.loads(exc.json(include_url=False))
    return Response({"detail": "VALIDATION_ERROR", "errors": errors}, status=status.HTTP_400_BAD_REQUEST)


class OrdersCollectionView(APIView):
    """List orders (staff only) or check out a new one (open)."""

    throttle_classes = [ScopedRateThrottle]

    def get_permissions(self):
        # Listing exposes customer details
        if self.request.method == "GET":
            return [IsAdminUser()]
        return [AllowAny()]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        try:
            page = int(request.GET.get("page", 1))
            page_size = min(int(request.GET.get("page_size", 20)), 100)
        except ValueError:
            return Response({"detail": "VALIDATION_ERROR"}, status=status.HTTP_400_BAD_REQUEST)
        if page_size < 1:
            return Response({"detail": "VALIDATION_ERROR"}, status=status.HTTP_400_BAD_REQUEST)

        qs = OrderModel.objects.order_by("-created_at")
        if request.GET.get("status"):
            qs = qs.filter(status=request.GET["status"].upper())
        p = Paginator(qs, page_size)
        try:
            page_obj = p.page(page)
        except EmptyPage:
            page_obj = p.page(p.num_pages)

        results = [
            OrderReadDTO.from_model(o).model_dump(mode="json", exclude_none=True) for o in page_obj.object_list
        ]
        return Response(
            {"count": p.count, "page": page_obj.number, "page_size": page_size, "results": results},
            status=status.HTTP_200_OK,
        )

    def post(self, request):
        """Create an order and initiate its payment.

        Returns:
            Response: One of the following responses.
            - 201 with the order id, number and checkout link.
            - the stored status/body when the same idempotency key and
              payload are retried (``Idempotent-Replay: true``).
            - 409 ``IDEMPOTENCY_CONFLICT`` when the key is reused with a
              different payload.
            - 400 for validation errors and amount mismatches.
            - 422 ``INSUFFICIENT_STOCK`` when inventory cannot cover a line.
            - 502 ``PAYMENT_INITIATION_FAILED`` (503 when the gateway
              circuit is open) with ``order_id`` and ``ambiguous``.
            - 503 ``UPSTREAM_UNAVAILABLE`` for anything unexpected; the
              idempotency record is finalized with it.
        """
        idem_key = request.headers.get("Idempotency-Key")

        try:
            dto = CheckoutDTO.model_validate(request.data)
        except pydantic.ValidationError as e:
            return invalid_payload(e)

        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(idem_key, request.data)
            except IdempotencyConflict:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        ledger = providers.get_order_ledger()
        order_id = None
        try:
            result = ledger.create_order(
                cart=dto.to_cart(),
                customer=dto.to_customer(),
                submitted_amount=dto.amount,
                currency=dto.currency,
                shipping=dto.to_shipping(),
                instrument=dto.to_instrument(),
            )
        except PaymentInitiationError as e:
            status_code = (
                status.HTTP_503_SERVICE_UNAVAILABLE
                if isinstance(e.cause, CircuitOpenError)
                else status.HTTP_502_BAD_GATEWAY
            )
            order_id = e.order_id
            body = {
                "detail": e.code,
                "order_id": str(e.order_id) if e.order_id else None,
                "order_number": e.order_number,
                "ambiguous": e.ambiguous,
            }
        except PaymentsError as e:
            status_code = error_status(e)
            body = {"detail": e.code, "message": str(e)}
        except Exception:
            logger.exception("checkout failed")
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            body = {"detail": "UPSTREAM_UNAVAILABLE"}
        else:
            status_code = status.HTTP_201_CREATED
            order_id = result.order_id
            body = {
                "id": str(result.order_id),
                "order_number": result.order_number,
                "status": result.status,
                "payment_id": str(result.payment_id),
                "total_amount": str(result.total_amount),
                "currency": result.currency,
                "checkout_link": result.checkout_link,
            }

        if rec:
            finalize(rec, status_code, body, order_id=order_id)
        return Response(body, status=status_code)


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        o = (
            OrderModel.objects.prefetch_related("items", "payments", "timeline")
            .filter(id=oid)
            .first()
        )
        if o is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        dto = OrderReadDTO.from_model(o, detail=True)
        return Response(dto.model_dump(mode="json"), status=status.HTTP_200_OK)


class VerifyPaymentView(APIView):
    """Reconcile an order with the gateway after the checkout redirect."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def post(self, request, oid):
        try:
            dto = VerifyPaymentDTO.model_validate(request.data)
        except pydantic.ValidationError as e:
            return invalid_payload(e)

        try:
            update = providers.get_order_ledger().reconcile_payment(oid, dto.transaction_id)
        except PaymentsError as e:
            return error_response(e)
        return Response(
            {
                "order_id": str(update.order_id),
                "status": update.order_status,
                "payment_status": update.payment_status,
                "applied": update.applied,
            },
            status=status.HTTP_200_OK,
        )


class TrackOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, order_number: str):
        try:
            o = OrderRepository().get_by_number(order_number.upper())
        except PaymentsError as e:
            return error_response(e)
        return Response(TrackingDTO.from_model(o).model_dump(mode="json"), status=status.HTTP_200_OK)


class AdminOrderStatusView(APIView):
    permission_classes = [IsAdminUser]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_admin"

    def put(self, request, oid):
        try:
            dto = StatusUpdateDTO.model_validate(request.data)
        except pydantic.ValidationError as e:
            return invalid_payload(e)

        try:
            order = providers.get_order_ledger().update_status(
                oid, dto.status, note=dto.note, tracking_number=dto.tracking_number
            )
        except PaymentsError as e:
            return error_response(e)
        return Response(
            {
                "id": str(order.id),
                "status": order.status,
                "payment_status": order.payment_status,
                "tracking_number": order.tracking_number,
            },
            status=status.HTTP_200_OK,
        )


class AdminOrderNoteView(APIView):
    permission_classes = [IsAdminUser]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_admin"

    def post(self, request, oid):
        try:
            dto = NoteDTO.model_validate(request.data)
        except pydantic.ValidationError as e:
            return invalid_payload(e)

        try:
            order = providers.get_order_ledger().add_note(oid, dto.note)
        except PaymentsError as e:
            return error_response(e)
        return Response({"id": str(order.id), "status": order.status, "note": dto.note},
                        status=status.HTTP_201_CREATED)


class AdminOrderRefundView(APIView):
    permission_classes = [IsAdminUser]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_admin"

    def post(self, request, oid):
        try:
            dto = RefundDTO.model_validate(request.data or {})
        except pydantic.ValidationError as e:
            return invalid_payload(e)

        try:
            result = providers.get_refund_coordinator().refund(
                oid, amount=dto.amount, reason=dto.reason, actor=request.user.get_username()
            )
        except PaymentsError as e:
            return error_response(e)
        return Response(
            {"order_id": str(result.order_id), "amount": str(result.amount), "currency": result.currency,
             "status": "REFUNDED"},
            status=status.HTTP_200_OK,
        )


class GatewayWebhookView(APIView):
    """Receives gateway notifications; authenticated by the ``verif-hash`` header only."""

    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "webhooks"

    def post(self, request):
        try:
            ack = providers.get_webhook_processor().handle_notification(
                request.headers.get("verif-hash"), request.data
            )
        except PaymentsError as e:
            logger.warning("webhook rejected", extra={"error": e.code})
            return error_response(e)
        return Response(
            {"status": ack.outcome, "event": ack.event, "order_id": ack.order_id, "applied": ack.applied},
            status=status.HTTP_200_OK,
        )
