import uuid

import django.db.models.deletion
from django.db import migrations, models

ORDER_STATUS = [
    ("PENDING", "PENDING"),
    ("CONFIRMED", "CONFIRMED"),
    ("PROCESSING", "PROCESSING"),
    ("SHIPPED", "SHIPPED"),
    ("DELIVERED", "DELIVERED"),
    ("CANCELLED", "CANCELLED"),
    ("REFUNDED", "REFUNDED"),
]
PAYMENT_STATUS = [
    ("PENDING", "PENDING"),
    ("SUCCESSFUL", "SUCCESSFUL"),
    ("FAILED", "FAILED"),
    ("REFUNDED", "REFUNDED"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(max_length=32, unique=True)),
                ("status", models.CharField(choices=ORDER_STATUS, default="PENDING", max_length=16)),
                ("payment_status", models.CharField(choices=PAYMENT_STATUS, default="PENDING", max_length=16)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(default="KES", max_length=3)),
                ("customer_name", models.CharField(max_length=200)),
                ("customer_email", models.EmailField(max_length=254)),
                ("shipping_address", models.TextField(blank=True, default="")),
                ("discreet", models.BooleanField(default=True)),
                ("tracking_number", models.CharField(blank=True, max_length=64, null=True)),
                ("stock_restored", models.BooleanField(default=False)),
                ("version", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"db_table": "orders", "ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="OrderItemModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("product_id", models.CharField(max_length=64)),
                ("product_name", models.CharField(blank=True, default="", max_length=200)),
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="items", to="orders.ordermodel"
                    ),
                ),
            ],
            options={"db_table": "order_items"},
        ),
        migrations.CreateModel(
            name="PaymentModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("method", models.CharField(choices=[("CARD", "CARD"), ("MOBILE_MONEY", "MOBILE_MONEY")], max_length=16)),
                (
                    "network",
                    models.CharField(
                        blank=True,
                        choices=[("MPESA", "MPESA"), ("AIRTEL", "AIRTEL"), ("MTN", "MTN")],
                        max_length=16,
                        null=True,
                    ),
                ),
                ("status", models.CharField(choices=PAYMENT_STATUS, default="PENDING", max_length=16)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("currency", models.CharField(max_length=3)),
                ("gateway_ref", models.CharField(blank=True, max_length=128, null=True)),
                ("gateway_tx_id", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="payments", to="orders.ordermodel"
                    ),
                ),
            ],
            options={"db_table": "payments", "ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="OrderEventModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("status", models.CharField(max_length=32)),
                ("note", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="timeline", to="orders.ordermodel"
                    ),
                ),
            ],
            options={"db_table": "order_events", "ordering": ["created_at", "id"]},
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("key", models.CharField(max_length=128, primary_key=True, serialize=False)),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveSmallIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("order_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={"db_table": "idempotency_keys"},
        ),
        migrations.CreateModel(
            name="ProcessedWebhook",
            fields=[
                ("webhook_id", models.CharField(max_length=128, primary_key=True, serialize=False)),
                ("provider", models.CharField(default="flutterwave", max_length=32)),
                ("event_type", models.CharField(max_length=64)),
                ("order_id", models.UUIDField(blank=True, null=True)),
                ("processed_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={"db_table": "processed_webhooks"},
        ),
        migrations.CreateModel(
            name="AuditLogEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("actor", models.CharField(max_length=150)),
                ("action", models.CharField(max_length=64)),
                ("entity_type", models.CharField(max_length=64)),
                ("entity_id", models.CharField(max_length=64)),
                ("metadata", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={"db_table": "audit_log", "ordering": ["-created_at"]},
        ),
    ]
