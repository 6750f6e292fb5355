"""Domain models, ports and errors for order placement.

This module contains the dataclasses used as DTOs for products, carts,
coupons and orders, the protocol definitions (ports) for the external
stores the order core talks to (catalog, cart, coupon, order), and the
exception hierarchy raised by the domain services.

Nothing here performs I/O. Concrete stores live in ``adapters`` (in-process),
``http_adapters`` (catalog service over HTTP) and ``repository`` (Django ORM).
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, List, Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle statuses of an order, in canonical forward order."""

    PENDING = "pending"
    PROCESSING = "processing"
    HANDOVER_TO_CARRIER = "handover_to_carrier"
    SHIPPING = "shipping"
    DELIVERED = "delivered"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    COD = "cod"
    BANK_TRANSFER = "bank_transfer"
    PAYOO = "payoo"
    MOMO = "momo"
    ZALOPAY = "zalopay"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PaymentMethod":
        """Return the matching method, falling back to cash on delivery.

        Unknown or empty values never fail a checkout.
        """
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.COD


class CouponType(str, Enum):
    FIXED = "fixed"
    PERCENT = "percent"


class Availability(str, Enum):
    """Outcome of a stock availability check for one cart line."""

    OK = "ok"
    INSUFFICIENT_STOCK = "insufficient_stock"
    UNKNOWN_VARIANT = "unknown_variant"
    PRODUCT_INACTIVE = "product_inactive"
    PRODUCT_MISSING = "product_missing"


class CouponOutcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    USAGE_EXCEEDED = "usage_exceeded"
    BELOW_MINIMUM = "below_minimum"


STATUS_LABELS = {
    OrderStatus.PENDING: "Awaiting confirmation",
    OrderStatus.PROCESSING: "Processing",
    OrderStatus.HANDOVER_TO_CARRIER: "Handed over to carrier",
    OrderStatus.SHIPPING: "Out for delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.RECEIVED: "Received by customer",
    OrderStatus.CANCELLED: "Cancelled",
}

WHOLE_UNIT = Decimal("1")


def to_money(value) -> Decimal:
    """Coerce a number or numeric string into a ``Decimal``.

    Empty and unparsable values become zero, mirroring how the catalog
    treats missing prices.
    """
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return Decimal("0")


def round_whole(amount: Decimal) -> Decimal:
    """Round to whole currency units (no minor-unit subdivision)."""
    return amount.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class VariantStock:
    """Per-variant (per-color) stock counter of a product."""

    name: str
    stock: int


@dataclass(frozen=True)
class Product:
    """Catalog view of a product as read by the order core.

    Attributes:
        id: Catalog identifier.
        name: Display name copied into order snapshots.
        price: Current selling price (after any sale).
        old_price: Price before the sale, or None when not on sale.
        image: Main image URL copied into order snapshots.
        in_stock: Derived availability flag, recomputed after every
            stock mutation.
        stock: Aggregate stock across all variants.
        is_active: False for soft-deleted products.
        variants: Ordered per-variant stock counters. Empty when the
            product has no variants and the aggregate is authoritative.
    """

    id: str
    name: str
    price: Decimal
    old_price: Optional[Decimal] = None
    image: str = ""
    in_stock: bool = True
    stock: int = 0
    is_active: bool = True
    variants: tuple = ()

    @property
    def pre_sale_price(self) -> Decimal:
        if self.old_price is not None and self.old_price > self.price > 0:
            return self.old_price
        return self.price

    def variant_index(self, name: str) -> Optional[int]:
        for idx, variant in enumerate(self.variants):
            if variant.name == name:
                return idx
        return None


@dataclass(frozen=True)
class CartItem:
    product_id: str
    quantity: int
    selected_variant: str = ""


@dataclass(frozen=True)
class ShippingInfo:
    full_name: str
    phone: str
    address: str
    email: str = ""
    city: str = ""
    district: str = ""
    ward: str = ""
    note: str = ""

    def missing_fields(self) -> List[str]:
        return [
            name
            for name in ("full_name", "phone", "address")
            if not (getattr(self, name) or "").strip()
        ]


@dataclass(frozen=True)
class OrderLine:
    """Immutable snapshot of a cart line taken when the order is created.

    Prices are copied from the catalog at creation time and never re-read
    afterwards, so later catalog changes do not alter historical orders.
    """

    product_id: str
    name: str
    image: str
    unit_price: Decimal
    pre_sale_price: Decimal
    quantity: int
    selected_variant: str = ""


@dataclass(frozen=True)
class Totals:
    sub_total: Decimal
    total: Decimal
    savings: Decimal
    shipping_fee: Decimal
    discount: Decimal
    grand_total: Decimal


@dataclass(frozen=True)
class StatusEntry:
    status: OrderStatus
    note: str
    updated_by: str
    updated_at: datetime


@dataclass(frozen=True)
class Coupon:
    id: str
    code: str
    type: CouponType
    value: Decimal
    valid_from: datetime
    valid_to: datetime
    max_uses: Optional[int] = None
    used_count: int = 0
    min_order_value: Decimal = Decimal("0")
    is_active: bool = True


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation (user id and role)."""

    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class AvailabilityCheck:
    status: Availability
    available: int = 0

    @property
    def ok(self) -> bool:
        return self.status is Availability.OK


@dataclass(frozen=True)
class CouponCheck:
    outcome: CouponOutcome
    discount: Decimal = Decimal("0")
    coupon: Optional[Coupon] = None

    @property
    def ok(self) -> bool:
        return self.outcome is CouponOutcome.OK


@dataclass(frozen=True)
class AssembledOrder:
    """Output of the assembler: everything needed to persist an order."""

    user_id: str
    items: tuple
    shipping_info: ShippingInfo
    payment_method: PaymentMethod
    totals: Totals
    applied_coupon_id: Optional[str] = None


@dataclass
class Order:
    """Container for persisted order data.

    Attributes:
        id: Persistent identifier, or None before the first insert.
        code: Unique human-facing code (e.g. ``MS000042``).
        user_id: Owner of the order.
        items: Snapshot lines captured at creation.
        shipping_info: Delivery details.
        totals: Amounts computed once at creation and stored as-is.
        payment_method: How the customer pays.
        payment_status: ``unpaid`` until settled.
        status: Current lifecycle status.
        status_history: Append-only audit trail, seeded with ``pending``.
        applied_coupon_id: Coupon used for the discount, if any.
        payment_ref: Payment provider transaction id, unique when set.
        created_at: Creation timestamp assigned by the store.
    """

    id: Optional[str]
    code: str
    user_id: str
    items: List[OrderLine]
    shipping_info: ShippingInfo
    totals: Totals
    payment_method: PaymentMethod = PaymentMethod.COD
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    status: OrderStatus = OrderStatus.PENDING
    status_history: List[StatusEntry] = field(default_factory=list)
    applied_coupon_id: Optional[str] = None
    payment_ref: Optional[str] = None
    created_at: Optional[datetime] = None

    def visited(self) -> set:
        return {entry.status for entry in self.status_history}


@dataclass(frozen=True)
class CodeConflict:
    """Result returned by ``OrderStore.insert`` when the order code is taken."""

    code: str


# ---- Errors ----
class OrderError(ValueError):
    """Base class for order-core failures.

    ``code`` is a stable identifier used as the API ``detail``; the
    message is meant for humans.
    """

    code = "ORDER_ERROR"

    def __init__(self, message: Optional[str] = None, **context):
        super().__init__(message or self.code)
        self.context = context


class InvalidShippingInfo(OrderError):
    code = "INVALID_SHIPPING_INFO"


class EmptyCart(OrderError):
    code = "EMPTY_CART"


class NoValidItems(EmptyCart):
    code = "NO_VALID_ITEMS"


class ProductMissing(OrderError):
    code = "PRODUCT_MISSING"


class InsufficientStock(OrderError):
    code = "INSUFFICIENT_STOCK"


class UnknownVariant(OrderError):
    code = "UNKNOWN_VARIANT"


class ProductInactive(OrderError):
    code = "PRODUCT_INACTIVE"


class OrderCodeGenerationFailed(OrderError):
    code = "ORDER_CODE_GENERATION_FAILED"


class OrderNotFound(OrderError):
    code = "NOT_FOUND"


class InvalidStatus(OrderError):
    code = "INVALID_STATUS"


class TerminalStatus(OrderError):
    code = "TERMINAL_STATUS"


class IllegalTransition(OrderError):
    code = "ILLEGAL_TRANSITION"


class NotOrderOwner(OrderError):
    code = "FORBIDDEN"


class StaleOrder(OrderError):
    code = "STALE_ORDER"


class PaymentGatewayError(OrderError):
    code = "PAYMENT_GATEWAY_ERROR"


class FieldNotFound(LookupError):
    """Raised by catalog stores for an unknown product or field path."""


# ---- Ports (DIP) ----
class CatalogStore(Protocol):
    """Port describing the catalog operations used by the stock ledger.

    Field paths are ``"stock"`` for the aggregate counter and
    ``"color_stocks.<index>.stock"`` for a variant counter.
    """

    def get(self, product_id: str) -> Optional[Product]:
        raise NotImplementedError()

    def update_fields(self, product_id: str, fields: dict) -> None:
        raise NotImplementedError()

    def increment_field(self, product_id: str, field_path: str, delta: int) -> int:
        """Atomically add ``delta`` to a single numeric field.

        Returns:
            The new value of the field.

        Raises:
            FieldNotFound: If the product or the field path does not exist.
        """
        raise NotImplementedError()

    def decrement_if_available(self, product_id: str, variant: str, quantity: int) -> bool:
        """Check and decrement aggregate and variant stock in one atomic step.

        Returns:
            True when the stock was taken, False when it was not enough.
        """
        raise NotImplementedError()


class CartStore(Protocol):
    def get(self, user_id: str) -> List[CartItem]:
        raise NotImplementedError()

    def clear(self, user_id: str) -> None:
        raise NotImplementedError()


class CouponStore(Protocol):
    def find_by_code(self, code: str) -> Optional[Coupon]:
        raise NotImplementedError()

    def increment_usage(self, coupon_id: str) -> None:
        raise NotImplementedError()


class OrderStore(Protocol):
    """Port describing order persistence.

    ``insert`` reports a code collision as a ``CodeConflict`` value instead
    of raising, so callers can retry on it explicitly. Any other failure
    raises.
    """

    def insert(self, order: Order):
        raise NotImplementedError()

    def get(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError()

    def find_by_code(self, code: str) -> Optional[Order]:
        raise NotImplementedError()

    def find_by_payment_ref(self, payment_ref: str) -> Optional[Order]:
        raise NotImplementedError()

    def list_orders(self, user_id: Optional[str] = None, status: Optional[OrderStatus] = None) -> List[Order]:
        raise NotImplementedError()

    def save_transition(self, order: Order, expected_status: OrderStatus) -> bool:
        """Persist status, payment status and the last history entry.

        The write only happens while the stored status still equals
        ``expected_status``.

        Returns:
            True when the row was updated, False when another writer won.
        """
        raise NotImplementedError()

    def mark_paid(self, order_id: str, payment_ref: Optional[str], entry: StatusEntry) -> bool:
        raise NotImplementedError()


OrderCodeGenerator = Callable[[], str]
