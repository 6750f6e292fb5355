"""Pydantic schemas for the orders API.

Input schemas validate request bodies before they reach the domain services;
output schemas shape domain objects into JSON. Money is serialized as a
decimal string so no precision is lost on the way out.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .domain import STATUS_LABELS, Order, ShippingInfo


# ---- input ----
class ShippingInfoIn(BaseModel):
    """Delivery details as typed by the customer.

    Required fields are checked by the assembler, which reports every blank
    field at once; here values are only normalized.
    """

    full_name: str = Field(default="", max_length=200)
    phone: str = Field(default="", max_length=30)
    address: str = Field(default="", max_length=500)
    email: str = Field(default="", max_length=254)
    city: str = Field(default="", max_length=100)
    district: str = Field(default="", max_length=100)
    ward: str = Field(default="", max_length=100)
    note: str = Field(default="", max_length=500)

    @field_validator("*", mode="before")
    @classmethod
    def strip(cls, v):
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    def to_domain(self) -> ShippingInfo:
        return ShippingInfo(**self.model_dump())


class CheckoutDTO(BaseModel):
    """Schema for placing an order from the caller's cart.

    Attributes:
        shipping_info: Delivery details.
        payment_method: ``cod``, ``bank_transfer``, ``payoo``, ``momo`` or
            ``zalopay``. Unknown values fall back to ``cod``.
        coupon_code: Optional coupon, applied only when valid.
        shipping_fee: Non-negative fee added to the payable total.
    """

    shipping_info: ShippingInfoIn
    payment_method: str = "cod"
    coupon_code: Optional[str] = Field(default=None, max_length=50)
    shipping_fee: Decimal = Field(default=Decimal("0"), ge=0, max_digits=14, decimal_places=2)


class StatusUpdateDTO(BaseModel):
    status: str = Field(min_length=1, max_length=32)
    note: Optional[str] = Field(default=None, max_length=500)


class CouponValidateDTO(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    order_total: Decimal = Field(ge=0, max_digits=14, decimal_places=2)


class MomoCreateDTO(CheckoutDTO):
    """Request for a MoMo pay URL.

    With ``order_code`` the payment settles an order that already exists;
    without it the cart is priced now and the order is only created once
    MoMo confirms the payment.
    """

    shipping_info: Optional[ShippingInfoIn] = None
    order_code: Optional[str] = Field(default=None, max_length=32)
    payment_method: str = "momo"


class MomoIpnDTO(BaseModel):
    """Instant payment notification posted by MoMo (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    partner_code: str
    order_id: str
    request_id: str
    amount: int
    order_info: str = ""
    order_type: str = ""
    trans_id: int
    result_code: int
    message: str = ""
    pay_type: str = ""
    response_time: int
    extra_data: str = ""
    signature: str


# ---- output ----
class OrderLineOut(BaseModel):
    product_id: str
    name: str
    image: str
    unit_price: Decimal
    pre_sale_price: Decimal
    quantity: int
    selected_variant: str


class StatusEntryOut(BaseModel):
    status: str
    note: str
    updated_by: str
    updated_at: datetime


class OrderOut(BaseModel):
    id: str
    code: str
    user_id: str
    status: str
    status_label: str
    payment_method: str
    payment_status: str
    payment_ref: Optional[str] = None
    shipping_info: dict
    items: list[OrderLineOut]
    sub_total: Decimal
    total: Decimal
    savings: Decimal
    shipping_fee: Decimal
    discount: Decimal
    grand_total: Decimal
    applied_coupon_id: Optional[str] = None
    status_history: list[StatusEntryOut]
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderOut":
        t = order.totals
        return cls(
            id=str(order.id),
            code=order.code,
            user_id=order.user_id,
            status=order.status.value,
            status_label=STATUS_LABELS[order.status],
            payment_method=order.payment_method.value,
            payment_status=order.payment_status.value,
            payment_ref=order.payment_ref,
            shipping_info=ShippingInfoIn.model_validate(vars(order.shipping_info)).model_dump(),
            items=[OrderLineOut.model_validate(vars(line)) for line in order.items],
            sub_total=t.sub_total,
            total=t.total,
            savings=t.savings,
            shipping_fee=t.shipping_fee,
            discount=t.discount,
            grand_total=t.grand_total,
            applied_coupon_id=order.applied_coupon_id,
            status_history=[
                StatusEntryOut(status=e.status.value, note=e.note, updated_by=e.updated_by, updated_at=e.updated_at)
                for e in order.status_history
            ],
            created_at=order.created_at,
        )


class OrderSummaryOut(BaseModel):
    id: str
    code: str
    status: str
    payment_status: str
    grand_total: Decimal
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderSummaryOut":
        return cls(
            id=str(order.id),
            code=order.code,
            status=order.status.value,
            payment_status=order.payment_status.value,
            grand_total=order.totals.grand_total,
            created_at=order.created_at,
        )
