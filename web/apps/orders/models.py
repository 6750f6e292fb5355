import uuid
from django.db import models


class OrderModel(models.Model):
    # UUID PK exposed by the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Human-facing code, unique; collisions are retried by the writer
    code = models.CharField(max_length=32, unique=True)
    user_id = models.CharField(max_length=64, db_index=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        HANDOVER_TO_CARRIER = "handover_to_carrier"
        SHIPPING = "shipping"
        DELIVERED = "delivered"
        RECEIVED = "received"
        CANCELLED = "cancelled"

    class PaymentMethod(models.TextChoices):
        COD = "cod"
        BANK_TRANSFER = "bank_transfer"
        PAYOO = "payoo"
        MOMO = "momo"
        ZALOPAY = "zalopay"

    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid"
        PAID = "paid"
        REFUNDED = "refunded"

    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING, db_index=True)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.COD)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID)
    # provider transaction id (MoMo transId); one order per payment
    payment_ref = models.CharField(max_length=64, unique=True, null=True, blank=True)
    shipping_info = models.JSONField(default=dict)

    sub_total = models.DecimalField(max_digits=14, decimal_places=2)
    total = models.DecimalField(max_digits=14, decimal_places=2)
    savings = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    shipping_fee = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    grand_total = models.DecimalField(max_digits=14, decimal_places=2)

    applied_coupon_id = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, related_name="items", on_delete=models.CASCADE)
    position = models.PositiveIntegerField(default=0)
    product_id = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    image = models.CharField(max_length=500, blank=True, default="")
    unit_price = models.DecimalField(max_digits=14, decimal_places=2)
    pre_sale_price = models.DecimalField(max_digits=14, decimal_places=2)
    quantity = models.PositiveIntegerField()
    selected_variant = models.CharField(max_length=100, blank=True, default="")

    class Meta:
        db_table = "order_items"
        ordering = ["position"]


class OrderStatusEntryModel(models.Model):
    # append-only audit trail
    order = models.ForeignKey(OrderModel, related_name="history", on_delete=models.CASCADE)
    status = models.CharField(max_length=32, choices=OrderModel.Status.choices)
    note = models.CharField(max_length=500, blank=True, default="")
    updated_by = models.CharField(max_length=64, null=True, blank=True)
    updated_at = models.DateTimeField()

    class Meta:
        db_table = "order_status_history"
        ordering = ["id"]


class OrderCodeCounter(models.Model):
    name = models.CharField(max_length=32, primary_key=True)
    seq = models.BigIntegerField(default=0)

    class Meta:
        db_table = "order_code_counters"


class CartItemModel(models.Model):
    user_id = models.CharField(max_length=64, db_index=True)
    product_id = models.CharField(max_length=64)
    quantity = models.PositiveIntegerField(default=1)
    selected_variant = models.CharField(max_length=100, blank=True, default="")
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "cart_items"
        ordering = ["id"]


class CouponModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=50, unique=True)

    class Type(models.TextChoices):
        FIXED = "fixed"
        PERCENT = "percent"

    type = models.CharField(max_length=10, choices=Type.choices)
    value = models.DecimalField(max_digits=14, decimal_places=2)
    max_uses = models.PositiveIntegerField(null=True, blank=True)
    used_count = models.PositiveIntegerField(default=0)
    valid_from = models.DateTimeField()
    valid_to = models.DateTimeField()
    min_order_value = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "coupons"

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)


class IdempotencyKey(models.Model):
    # caller-scoped key: "<user_id>:<Idempotency-Key header>"
    key = models.CharField(max_length=300, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
