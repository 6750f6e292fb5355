"""Order assembler: turns a user's cart into a priced, validated order draft.

The assembler only reads. It snapshots cart lines against the catalog,
validates stock for every line, prices the order and applies an optional
coupon. Any validation or stock failure aborts before a single write
happens, so a failed checkout never leaves a partial order behind.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from .coupons import CouponValidator
from .domain import (
    AssembledOrder,
    Availability,
    CartStore,
    CatalogStore,
    EmptyCart,
    InsufficientStock,
    InvalidShippingInfo,
    NoValidItems,
    OrderLine,
    PaymentMethod,
    ProductInactive,
    ProductMissing,
    ShippingInfo,
    Totals,
    UnknownVariant,
    to_money,
)
from .stock import StockLedger

logger = logging.getLogger(__name__)


class OrderAssembler:
    """Builds ``AssembledOrder`` drafts from carts.

    Args:
        catalog: Catalog store used to snapshot product data.
        carts: Cart store holding pending lines per user.
        ledger: Stock ledger used for availability checks.
        coupons: Coupon validator; coupons are applied leniently.
    """

    def __init__(self, catalog: CatalogStore, carts: CartStore, ledger: StockLedger, coupons: CouponValidator):
        self.catalog = catalog
        self.carts = carts
        self.ledger = ledger
        self.coupons = coupons

    def assemble(
        self,
        user_id: str,
        shipping_info: ShippingInfo,
        payment_method: Optional[str] = None,
        coupon_code: Optional[str] = None,
        shipping_fee=0,
    ) -> AssembledOrder:
        """Assemble an order draft for ``user_id``.

        Args:
            user_id: Owner of the cart.
            shipping_info: Delivery details; name, phone and address are required.
            payment_method: One of ``PaymentMethod``; anything else means COD.
            coupon_code: Optional coupon. Invalid, expired or exhausted
                coupons are ignored and the checkout goes on without discount.
            shipping_fee: Shipping fee added to the payable total.

        Returns:
            AssembledOrder with snapshot lines and stored totals.

        Raises:
            InvalidShippingInfo: Required shipping fields are blank.
            EmptyCart: The cart has no lines.
            NoValidItems: No cart line references an existing product.
            InsufficientStock, UnknownVariant, ProductInactive,
            ProductMissing: The first line that cannot be fulfilled.
        """
        missing = shipping_info.missing_fields()
        if missing:
            raise InvalidShippingInfo(
                "Shipping information is incomplete: " + ", ".join(missing), fields=missing
            )

        cart = self.carts.get(user_id)
        if not cart:
            raise EmptyCart("Cart is empty, an order cannot be created.")

        lines = self._snapshot(cart)
        if not lines:
            raise NoValidItems("No product in the cart is available any more.")

        for line in lines:
            self._ensure_available(line)

        totals, coupon_id = self._price(lines, to_money(shipping_fee), coupon_code)
        return AssembledOrder(
            user_id=user_id,
            items=tuple(lines),
            shipping_info=shipping_info,
            payment_method=PaymentMethod.parse(payment_method),
            totals=totals,
            applied_coupon_id=coupon_id,
        )

    def _snapshot(self, cart) -> List[OrderLine]:
        lines = []
        for item in cart:
            product = self.catalog.get(item.product_id)
            if product is None:
                logger.info("cart line dropped, product missing", extra={"product_id": item.product_id})
                continue
            lines.append(
                OrderLine(
                    product_id=product.id,
                    name=product.name,
                    image=product.image or "",
                    unit_price=product.price,
                    pre_sale_price=product.pre_sale_price,
                    quantity=item.quantity,
                    selected_variant=item.selected_variant or "",
                )
            )
        return lines

    def _ensure_available(self, line: OrderLine) -> None:
        check = self.ledger.validate_availability(line.product_id, line.selected_variant, line.quantity)
        if check.ok:
            return
        variant = line.selected_variant or "none"
        context = {"product_id": line.product_id, "product": line.name, "variant": line.selected_variant}
        if check.status is Availability.INSUFFICIENT_STOCK:
            raise InsufficientStock(
                f'Product "{line.name}" (variant: {variant}) has not enough stock. '
                f"Remaining: {check.available}",
                available=check.available,
                **context,
            )
        if check.status is Availability.UNKNOWN_VARIANT:
            raise UnknownVariant(f'Variant "{line.selected_variant}" does not exist for product "{line.name}".', **context)
        if check.status is Availability.PRODUCT_INACTIVE:
            raise ProductInactive(f'Product "{line.name}" is no longer sold.', **context)
        raise ProductMissing(f'Product "{line.name}" does not exist.', **context)

    def _price(self, lines: List[OrderLine], shipping_fee: Decimal, coupon_code: Optional[str]):
        sub_total = sum((l.pre_sale_price * l.quantity for l in lines), Decimal("0"))
        total = sum((l.unit_price * l.quantity for l in lines), Decimal("0"))

        discount = Decimal("0")
        coupon_id = None
        if coupon_code:
            check = self.coupons.validate(coupon_code, total)
            if check.ok:
                discount = check.discount
                coupon_id = check.coupon.id
            else:
                logger.info("coupon ignored", extra={"coupon": coupon_code, "outcome": check.outcome.value})

        totals = Totals(
            sub_total=sub_total,
            total=total,
            savings=sub_total - total,
            shipping_fee=shipping_fee,
            discount=discount,
            grand_total=max(total + shipping_fee - discount, Decimal("0")),
        )
        return totals, coupon_id
