"""Coupon validation and usage bookkeeping."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from .domain import (
    Coupon,
    CouponCheck,
    CouponOutcome,
    CouponStore,
    CouponType,
    round_whole,
    to_money,
)

logger = logging.getLogger(__name__)


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CouponValidator:
    """Checks coupon codes against an order total and computes the discount.

    A coupon is usable when it is active, ``now`` falls inside
    ``[valid_from, valid_to]``, its usage cap is not reached and the order
    total meets ``min_order_value``.
    """

    def __init__(self, coupons: CouponStore, clock: Callable[[], datetime] = _utcnow):
        self.coupons = coupons
        self.clock = clock

    def validate(self, code: Optional[str], order_total) -> CouponCheck:
        """Validate ``code`` for an order worth ``order_total``.

        Args:
            code: Coupon code as typed by the customer (case-insensitive).
            order_total: Payable amount before shipping and discount.

        Returns:
            CouponCheck carrying the outcome, the discount (zero unless the
            outcome is OK) and the coupon record when one was found.
        """
        normalized = normalize_code(code)
        if not normalized:
            return CouponCheck(CouponOutcome.NOT_FOUND)

        coupon = self.coupons.find_by_code(normalized)
        if coupon is None:
            return CouponCheck(CouponOutcome.NOT_FOUND)

        outcome = self._check(coupon, to_money(order_total))
        if outcome is not CouponOutcome.OK:
            return CouponCheck(outcome, coupon=coupon)
        return CouponCheck(CouponOutcome.OK, discount=self.discount_for(coupon, order_total), coupon=coupon)

    def _check(self, coupon: Coupon, order_total: Decimal) -> CouponOutcome:
        if not coupon.is_active:
            return CouponOutcome.INACTIVE
        now = self.clock()
        if not (coupon.valid_from <= now <= coupon.valid_to):
            return CouponOutcome.EXPIRED
        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            return CouponOutcome.USAGE_EXCEEDED
        if order_total < coupon.min_order_value:
            return CouponOutcome.BELOW_MINIMUM
        return CouponOutcome.OK

    @staticmethod
    def discount_for(coupon: Coupon, order_total) -> Decimal:
        """Discount granted by ``coupon`` on ``order_total``, never above it."""
        total = to_money(order_total)
        if total <= 0:
            return Decimal("0")
        if coupon.type is CouponType.FIXED:
            return min(coupon.value, total)
        return min(round_whole(total * coupon.value / Decimal(100)), total)

    def commit_usage(self, coupon_id: str) -> None:
        """Increment the coupon's usage counter, best-effort.

        The order is already persisted when this runs; a failing counter
        update is logged and never propagated.
        """
        try:
            self.coupons.increment_usage(coupon_id)
        except Exception:
            logger.exception("coupon usage increment failed", extra={"coupon_id": coupon_id})
