import uuid

from django.db import models

from .domain import MobileNetwork, OrderStatus, PaymentMethod, PaymentStatus


def _choices(enum):
    return [(m.value, m.value) for m in enum]


class OrderModel(models.Model):
    # UUID PK exposed by the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=32, unique=True)

    status = models.CharField(max_length=16, choices=_choices(OrderStatus), default=OrderStatus.PENDING.value)
    payment_status = models.CharField(
        max_length=16, choices=_choices(PaymentStatus), default=PaymentStatus.PENDING.value
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="KES")

    customer_name = models.CharField(max_length=200)
    customer_email = models.EmailField()
    shipping_address = models.TextField(blank=True, default="")
    discreet = models.BooleanField(default=True)
    tracking_number = models.CharField(max_length=64, null=True, blank=True)

    # Set once reserved stock has been returned to inventory
    stock_restored = models.BooleanField(default=False)
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]

    def __str__(self):
        return self.order_number


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    product_id = models.CharField(max_length=64)
    product_name = models.CharField(max_length=200, blank=True, default="")
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = "order_items"

    def save(self, *args, **kwargs):
        # Items are a snapshot of the cart at checkout
        if not self._state.adding:
            raise RuntimeError("order items are immutable once persisted")
        super().save(*args, **kwargs)


class PaymentModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="payments")
    method = models.CharField(max_length=16, choices=_choices(PaymentMethod))
    network = models.CharField(max_length=16, choices=_choices(MobileNetwork), null=True, blank=True)
    status = models.CharField(max_length=16, choices=_choices(PaymentStatus), default=PaymentStatus.PENDING.value)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3)
    gateway_ref = models.CharField(max_length=128, null=True, blank=True)
    gateway_tx_id = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "payments"
        ordering = ["-created_at"]


class OrderEventModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="timeline")
    status = models.CharField(max_length=32)
    note = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_events"
        ordering = ["created_at", "id"]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise RuntimeError("order events are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise RuntimeError("order events are append-only")


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=128, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"


class ProcessedWebhook(models.Model):
    webhook_id = models.CharField(max_length=128, primary_key=True)
    provider = models.CharField(max_length=32, default="flutterwave")
    event_type = models.CharField(max_length=64)
    order_id = models.UUIDField(null=True, blank=True)
    processed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "processed_webhooks"


class AuditLogEntry(models.Model):
    actor = models.CharField(max_length=150)
    action = models.CharField(max_length=64)
    entity_type = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64)
    metadata = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "audit_log"
        ordering = ["-created_at"]
