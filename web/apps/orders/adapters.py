"""In-process adapters for the orders domain ports.

These stores implement ``CatalogStore``, ``CartStore``, ``CouponStore`` and
``OrderStore`` without any network or database access. They are intended
for unit tests and local development where deterministic behaviour is
useful and the catalog service is not running.

Each store guards its own state with a lock, which gives every single call
the atomicity a real store provides for one field or one document; a
sequence of calls is not atomic, same as against the real stores.
"""

import copy
import itertools
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .domain import (
    CartItem,
    CatalogStore,
    CartStore,
    CodeConflict,
    Coupon,
    CouponStore,
    FieldNotFound,
    Order,
    OrderStatus,
    OrderStore,
    Product,
    StatusEntry,
    PaymentStatus,
)


class InMemoryCatalog(CatalogStore):
    """Catalog store backed by a dict of ``Product`` records."""

    UPDATABLE = {"in_stock", "is_active", "name", "image", "price", "old_price"}

    def __init__(self, products: Optional[List[Product]] = None):
        self._lock = threading.Lock()
        self._products: Dict[str, Product] = {}
        for p in products or []:
            self.put(p)

    def put(self, product: Product) -> None:
        with self._lock:
            self._products[product.id] = replace(product, variants=tuple(product.variants))

    def remove(self, product_id: str) -> None:
        with self._lock:
            self._products.pop(product_id, None)

    def get(self, product_id: str) -> Optional[Product]:
        with self._lock:
            return self._products.get(product_id)

    def update_fields(self, product_id: str, fields: dict) -> None:
        unknown = set(fields) - self.UPDATABLE
        if unknown:
            raise FieldNotFound(", ".join(sorted(unknown)))
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                raise FieldNotFound(product_id)
            self._products[product_id] = replace(product, **fields)

    def increment_field(self, product_id: str, field_path: str, delta: int) -> int:
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                raise FieldNotFound(product_id)
            if field_path == "stock":
                updated = replace(product, stock=product.stock + delta)
                self._products[product_id] = updated
                return updated.stock

            idx = _variant_index_from_path(field_path)
            if idx is None or idx >= len(product.variants):
                raise FieldNotFound(field_path)
            variants = list(product.variants)
            variants[idx] = replace(variants[idx], stock=variants[idx].stock + delta)
            self._products[product_id] = replace(product, variants=tuple(variants))
            return variants[idx].stock

    def decrement_if_available(self, product_id: str, variant: str, quantity: int) -> bool:
        with self._lock:
            product = self._products.get(product_id)
            if product is None or not product.is_active or product.stock < quantity:
                return False
            variants = list(product.variants)
            idx = product.variant_index(variant) if variants else None
            if variants and variant and idx is None:
                return False
            if idx is not None:
                if variants[idx].stock < quantity:
                    return False
                variants[idx] = replace(variants[idx], stock=variants[idx].stock - quantity)
            self._products[product_id] = replace(
                product, stock=product.stock - quantity, variants=tuple(variants)
            )
            return True


def _variant_index_from_path(field_path: str) -> Optional[int]:
    parts = field_path.split(".")
    if len(parts) != 3 or parts[0] != "color_stocks" or parts[2] != "stock":
        return None
    try:
        return int(parts[1])
    except ValueError:
        return None


class InMemoryCarts(CartStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._carts: Dict[str, List[CartItem]] = {}

    def add(self, user_id: str, item: CartItem) -> None:
        with self._lock:
            self._carts.setdefault(user_id, []).append(item)

    def get(self, user_id: str) -> List[CartItem]:
        with self._lock:
            return list(self._carts.get(user_id, []))

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._carts[user_id] = []


class InMemoryCoupons(CouponStore):
    def __init__(self, coupons: Optional[List[Coupon]] = None):
        self._lock = threading.Lock()
        self._coupons: Dict[str, Coupon] = {c.id: c for c in coupons or []}

    def put(self, coupon: Coupon) -> None:
        with self._lock:
            self._coupons[coupon.id] = coupon

    def find_by_code(self, code: str) -> Optional[Coupon]:
        with self._lock:
            return next((c for c in self._coupons.values() if c.code == code), None)

    def get(self, coupon_id: str) -> Optional[Coupon]:
        with self._lock:
            return self._coupons.get(coupon_id)

    def increment_usage(self, coupon_id: str) -> None:
        with self._lock:
            coupon = self._coupons[coupon_id]
            self._coupons[coupon_id] = replace(coupon, used_count=coupon.used_count + 1)


class InMemoryOrders(OrderStore):
    """Order store enforcing unique ``code`` and ``payment_ref`` like the ORM table."""

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}

    def insert(self, order: Order):
        with self._lock:
            if any(o.code == order.code for o in self._orders.values()):
                return CodeConflict(order.code)
            if order.payment_ref and any(o.payment_ref == order.payment_ref for o in self._orders.values()):
                raise ValueError("DUPLICATE_PAYMENT_REF")
            stored = copy.deepcopy(order)
            stored.id = str(uuid.uuid4())
            stored.created_at = datetime.now(timezone.utc)
            self._orders[stored.id] = stored
            return copy.deepcopy(stored)

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(str(order_id))
            return copy.deepcopy(order) if order else None

    def find_by_code(self, code: str) -> Optional[Order]:
        with self._lock:
            order = next((o for o in self._orders.values() if o.code == code), None)
            return copy.deepcopy(order) if order else None

    def find_by_payment_ref(self, payment_ref: str) -> Optional[Order]:
        with self._lock:
            order = next((o for o in self._orders.values() if o.payment_ref == payment_ref), None)
            return copy.deepcopy(order) if order else None

    def list_orders(self, user_id: Optional[str] = None, status: Optional[OrderStatus] = None) -> List[Order]:
        with self._lock:
            found = [
                copy.deepcopy(o)
                for o in self._orders.values()
                if (user_id is None or o.user_id == user_id) and (status is None or o.status == status)
            ]
        return sorted(found, key=lambda o: o.created_at, reverse=True)

    def save_transition(self, order: Order, expected_status: OrderStatus) -> bool:
        with self._lock:
            stored = self._orders.get(order.id)
            if stored is None or stored.status != expected_status:
                return False
            stored.status = order.status
            stored.payment_status = order.payment_status
            stored.status_history.append(order.status_history[-1])
            return True

    def mark_paid(self, order_id: str, payment_ref: Optional[str], entry: StatusEntry) -> bool:
        with self._lock:
            stored = self._orders.get(order_id)
            if stored is None or stored.payment_status == PaymentStatus.PAID:
                return False
            stored.payment_status = PaymentStatus.PAID
            if payment_ref and not stored.payment_ref:
                stored.payment_ref = payment_ref
            stored.status_history.append(entry)
            return True


def sequential_codes(prefix: str = "MS", start: int = 1):
    """Return an order-code generator yielding ``MS000001``, ``MS000002``..."""
    counter = itertools.count(start)
    lock = threading.Lock()

    def next_code() -> str:
        with lock:
            return f"{prefix}{next(counter):06d}"

    return next_code
