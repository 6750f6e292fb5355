"""Repository layer persisting carts, coupons and orders with the Django ORM.

The classes here implement the ``CartStore``, ``CouponStore`` and
``OrderStore`` ports so the domain services are not coupled to ORM types.
Counter updates go through ``F()`` expressions so the database applies them
atomically; compare-and-set on the order status is a filtered ``update()``.
"""

import logging
import random
import time
from dataclasses import asdict
from typing import List, Optional

from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from .domain import (
    CartItem,
    CodeConflict,
    Coupon,
    CouponType,
    Order,
    OrderLine,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingInfo,
    StatusEntry,
    Totals,
)
from .models import (
    CartItemModel,
    CouponModel,
    OrderCodeCounter,
    OrderItemModel,
    OrderModel,
    OrderStatusEntryModel,
)

logger = logging.getLogger(__name__)


# ---- mapping ----
def order_from_model(obj: OrderModel) -> Order:
    """Map an ``OrderModel`` (with items and history) to a domain ``Order``."""
    info = obj.shipping_info or {}
    return Order(
        id=str(obj.id),
        code=obj.code,
        user_id=obj.user_id,
        items=[
            OrderLine(
                product_id=i.product_id,
                name=i.name,
                image=i.image,
                unit_price=i.unit_price,
                pre_sale_price=i.pre_sale_price,
                quantity=i.quantity,
                selected_variant=i.selected_variant,
            )
            for i in obj.items.all()
        ],
        shipping_info=ShippingInfo(**{k: info.get(k, "") for k in ShippingInfo.__dataclass_fields__}),
        totals=Totals(
            sub_total=obj.sub_total,
            total=obj.total,
            savings=obj.savings,
            shipping_fee=obj.shipping_fee,
            discount=obj.discount,
            grand_total=obj.grand_total,
        ),
        payment_method=PaymentMethod(obj.payment_method),
        payment_status=PaymentStatus(obj.payment_status),
        status=OrderStatus(obj.status),
        status_history=[
            StatusEntry(
                status=OrderStatus(h.status),
                note=h.note,
                updated_by=h.updated_by or "",
                updated_at=h.updated_at,
            )
            for h in obj.history.all()
        ],
        applied_coupon_id=obj.applied_coupon_id,
        payment_ref=obj.payment_ref,
        created_at=obj.created_at,
    )


def _entry_model(order_id, entry: StatusEntry) -> OrderStatusEntryModel:
    return OrderStatusEntryModel(
        order_id=order_id,
        status=entry.status.value,
        note=entry.note,
        updated_by=entry.updated_by,
        updated_at=entry.updated_at,
    )


# ---- stores ----
class OrderRepository:
    """Order store persisting ``Order`` domain objects using Django ORM.

    ``insert`` returns either the stored Order or a ``CodeConflict`` when
    the unique ``code`` is already taken; other integrity errors propagate.
    """

    def _query(self):
        return OrderModel.objects.prefetch_related("items", "history")

    def insert(self, order: Order):
        """Persist a new order with its lines and its first history entry.

        Args:
            order: Domain order with ``id`` unset.

        Returns:
            The stored Order, or CodeConflict if ``order.code`` is taken.
        """
        t = order.totals
        try:
            with transaction.atomic():
                obj = OrderModel.objects.create(
                    code=order.code,
                    user_id=order.user_id,
                    status=order.status.value,
                    payment_method=order.payment_method.value,
                    payment_status=order.payment_status.value,
                    payment_ref=order.payment_ref,
                    shipping_info=asdict(order.shipping_info),
                    sub_total=t.sub_total,
                    total=t.total,
                    savings=t.savings,
                    shipping_fee=t.shipping_fee,
                    discount=t.discount,
                    grand_total=t.grand_total,
                    applied_coupon_id=order.applied_coupon_id,
                )
                OrderItemModel.objects.bulk_create(
                    [
                        OrderItemModel(
                            order=obj,
                            position=pos,
                            product_id=line.product_id,
                            name=line.name,
                            image=line.image,
                            unit_price=line.unit_price,
                            pre_sale_price=line.pre_sale_price,
                            quantity=line.quantity,
                            selected_variant=line.selected_variant,
                        )
                        for pos, line in enumerate(order.items)
                    ]
                )
                OrderStatusEntryModel.objects.bulk_create([_entry_model(obj.id, e) for e in order.status_history])
        except IntegrityError:
            if OrderModel.objects.filter(code=order.code).exists():
                return CodeConflict(order.code)
            raise
        return self.get(obj.id)

    def get(self, order_id) -> Optional[Order]:
        try:
            return order_from_model(self._query().get(id=order_id))
        except (OrderModel.DoesNotExist, ValidationError, ValueError):
            # malformed ids never match a UUID primary key
            return None

    def find_by_code(self, code: str) -> Optional[Order]:
        obj = self._query().filter(code=code).first()
        return order_from_model(obj) if obj else None

    def find_by_payment_ref(self, payment_ref: str) -> Optional[Order]:
        obj = self._query().filter(payment_ref=payment_ref).first()
        return order_from_model(obj) if obj else None

    def list_orders(self, user_id: Optional[str] = None, status: Optional[OrderStatus] = None) -> List[Order]:
        qs = self._query().order_by("-created_at")
        if user_id is not None:
            qs = qs.filter(user_id=user_id)
        if status is not None:
            qs = qs.filter(status=status.value)
        return [order_from_model(o) for o in qs]

    def save_transition(self, order: Order, expected_status: OrderStatus) -> bool:
        with transaction.atomic():
            updated = OrderModel.objects.filter(id=order.id, status=expected_status.value).update(
                status=order.status.value,
                payment_status=order.payment_status.value,
                updated_at=timezone.now(),
            )
            if not updated:
                return False
            _entry_model(order.id, order.status_history[-1]).save()
        return True

    def mark_paid(self, order_id: str, payment_ref: Optional[str], entry: StatusEntry) -> bool:
        with transaction.atomic():
            updated = (
                OrderModel.objects.filter(id=order_id)
                .exclude(payment_status=PaymentStatus.PAID.value)
                .update(payment_status=PaymentStatus.PAID.value, updated_at=timezone.now())
            )
            if not updated:
                return False
            if payment_ref:
                OrderModel.objects.filter(id=order_id, payment_ref__isnull=True).update(payment_ref=payment_ref)
            _entry_model(order_id, entry).save()
        return True


class CartRepository:
    def get(self, user_id: str) -> List[CartItem]:
        return [
            CartItem(product_id=c.product_id, quantity=c.quantity, selected_variant=c.selected_variant)
            for c in CartItemModel.objects.filter(user_id=user_id)
        ]

    def clear(self, user_id: str) -> None:
        CartItemModel.objects.filter(user_id=user_id).delete()


class CouponRepository:
    def find_by_code(self, code: str) -> Optional[Coupon]:
        obj = CouponModel.objects.filter(code=code).first()
        if obj is None:
            return None
        return Coupon(
            id=str(obj.id),
            code=obj.code,
            type=CouponType(obj.type),
            value=obj.value,
            valid_from=obj.valid_from,
            valid_to=obj.valid_to,
            max_uses=obj.max_uses,
            used_count=obj.used_count,
            min_order_value=obj.min_order_value,
            is_active=obj.is_active,
        )

    def increment_usage(self, coupon_id: str) -> None:
        CouponModel.objects.filter(id=coupon_id).update(used_count=F("used_count") + 1)


def next_order_code(prefix: str = "MS") -> str:
    """Return the next sequential order code (``MS000042``).

    The sequence lives in a counter row bumped with an ``F()`` update. If the
    counter cannot be used, a timestamp-based code is returned instead; the
    writer's collision retry covers the rare clash.
    """
    try:
        with transaction.atomic():
            OrderCodeCounter.objects.get_or_create(name="order")
            OrderCodeCounter.objects.filter(name="order").update(seq=F("seq") + 1)
            seq = OrderCodeCounter.objects.values_list("seq", flat=True).get(name="order")
        return f"{prefix}{seq:06d}"
    except DatabaseError:
        logger.warning("order code counter unavailable, using timestamp code")
        return f"{prefix}{str(int(time.time() * 1000))[-8:]}{random.randint(0, 999):03d}"
