import uuid

import django.db.models.deletion
from django.db import migrations, models


STATUS_CHOICES = [
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("handover_to_carrier", "Handover To Carrier"),
    ("shipping", "Shipping"),
    ("delivered", "Delivered"),
    ("received", "Received"),
    ("cancelled", "Cancelled"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=32, unique=True)),
                ("user_id", models.CharField(db_index=True, max_length=64)),
                ("status", models.CharField(choices=STATUS_CHOICES, db_index=True, default="pending", max_length=32)),
                (
                    "payment_method",
                    models.CharField(
                        choices=[
                            ("cod", "Cod"),
                            ("bank_transfer", "Bank Transfer"),
                            ("payoo", "Payoo"),
                            ("momo", "Momo"),
                            ("zalopay", "Zalopay"),
                        ],
                        default="cod",
                        max_length=16,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[("unpaid", "Unpaid"), ("paid", "Paid"), ("refunded", "Refunded")],
                        default="unpaid",
                        max_length=16,
                    ),
                ),
                ("payment_ref", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("shipping_info", models.JSONField(default=dict)),
                ("sub_total", models.DecimalField(decimal_places=2, max_digits=14)),
                ("total", models.DecimalField(decimal_places=2, max_digits=14)),
                ("savings", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("shipping_fee", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("discount", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("grand_total", models.DecimalField(decimal_places=2, max_digits=14)),
                ("applied_coupon_id", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"db_table": "orders", "ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="OrderItemModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("position", models.PositiveIntegerField(default=0)),
                ("product_id", models.CharField(max_length=64)),
                ("name", models.CharField(max_length=255)),
                ("image", models.CharField(blank=True, default="", max_length=500)),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=14)),
                ("pre_sale_price", models.DecimalField(decimal_places=2, max_digits=14)),
                ("quantity", models.PositiveIntegerField()),
                ("selected_variant", models.CharField(blank=True, default="", max_length=100)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="items", to="orders.ordermodel"
                    ),
                ),
            ],
            options={"db_table": "order_items", "ordering": ["position"]},
        ),
        migrations.CreateModel(
            name="OrderStatusEntryModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("status", models.CharField(choices=STATUS_CHOICES, max_length=32)),
                ("note", models.CharField(blank=True, default="", max_length=500)),
                ("updated_by", models.CharField(blank=True, max_length=64, null=True)),
                ("updated_at", models.DateTimeField()),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="history", to="orders.ordermodel"
                    ),
                ),
            ],
            options={"db_table": "order_status_history", "ordering": ["id"]},
        ),
        migrations.CreateModel(
            name="OrderCodeCounter",
            fields=[
                ("name", models.CharField(max_length=32, primary_key=True, serialize=False)),
                ("seq", models.BigIntegerField(default=0)),
            ],
            options={"db_table": "order_code_counters"},
        ),
        migrations.CreateModel(
            name="CartItemModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_id", models.CharField(db_index=True, max_length=64)),
                ("product_id", models.CharField(max_length=64)),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("selected_variant", models.CharField(blank=True, default="", max_length=100)),
                ("added_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={"db_table": "cart_items", "ordering": ["id"]},
        ),
        migrations.CreateModel(
            name="CouponModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=50, unique=True)),
                ("type", models.CharField(choices=[("fixed", "Fixed"), ("percent", "Percent")], max_length=10)),
                ("value", models.DecimalField(decimal_places=2, max_digits=14)),
                ("max_uses", models.PositiveIntegerField(blank=True, null=True)),
                ("used_count", models.PositiveIntegerField(default=0)),
                ("valid_from", models.DateTimeField()),
                ("valid_to", models.DateTimeField()),
                ("min_order_value", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={"db_table": "coupons"},
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("key", models.CharField(max_length=300, primary_key=True, serialize=False)),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to="orders.ordermodel",
                    ),
                ),
            ],
            options={"db_table": "idempotency_keys"},
        ),
    ]
