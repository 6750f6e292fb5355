"""Checkout use case: cart -> assembled order -> persisted order."""

from typing import Optional

from .assembler import OrderAssembler
from .domain import AssembledOrder, Order, PaymentStatus, ShippingInfo
from .writer import OrderWriter


class CheckoutService:
    """Domain service responsible for placing orders.

    It runs the assembler (read-only validation and pricing) and hands the
    result to the writer (persistence and side effects). It does not know
    about HTTP or the ORM.
    """

    def __init__(self, assembler: OrderAssembler, writer: OrderWriter):
        self.assembler = assembler
        self.writer = writer

    def quote(
        self,
        user_id: str,
        shipping_info: ShippingInfo,
        payment_method: Optional[str] = None,
        coupon_code: Optional[str] = None,
        shipping_fee=0,
    ) -> AssembledOrder:
        """Validate and price the cart without writing anything.

        Used before redirecting to an online payment, so the amount charged
        is the one the order will be created with.
        """
        return self.assembler.assemble(
            user_id,
            shipping_info,
            payment_method=payment_method,
            coupon_code=coupon_code,
            shipping_fee=shipping_fee,
        )

    def place_order(
        self,
        user_id: str,
        shipping_info: ShippingInfo,
        payment_method: Optional[str] = None,
        coupon_code: Optional[str] = None,
        shipping_fee=0,
        payment_status: PaymentStatus = PaymentStatus.UNPAID,
        payment_ref: Optional[str] = None,
    ) -> Order:
        """Place an order from the user's cart.

        Raises:
            OrderError: Any validation, stock or code-generation failure
                from the assembler or writer. Nothing is written when the
                assembler fails.
        """
        assembled = self.assembler.assemble(
            user_id,
            shipping_info,
            payment_method=payment_method,
            coupon_code=coupon_code,
            shipping_fee=shipping_fee,
        )
        return self.place_quoted(assembled, payment_status=payment_status, payment_ref=payment_ref)

    def place_quoted(
        self,
        assembled: AssembledOrder,
        payment_status: PaymentStatus = PaymentStatus.UNPAID,
        payment_ref: Optional[str] = None,
    ) -> Order:
        """Persist an order already priced by ``quote``.

        Lets a caller check the quoted totals (e.g. against an amount a
        payment provider collected) before anything is written.
        """
        return self.writer.create(assembled, payment_status=payment_status, payment_ref=payment_ref)
