"""Order writer: persists assembled orders and applies their side effects.

Order codes are unique in the store. ``insert`` reports a collision as a
``CodeConflict`` value; the writer then regenerates the code and retries a
bounded number of times. Any other persistence error aborts at once.

Once the order row exists the purchase is committed. Stock decrements,
coupon usage and cart clearing run afterwards as best-effort side effects:
their failures are logged and never undo the order.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .coupons import CouponValidator
from .domain import (
    AssembledOrder,
    CartStore,
    CodeConflict,
    InsufficientStock,
    Order,
    OrderCodeGenerationFailed,
    OrderCodeGenerator,
    OrderLine,
    OrderStatus,
    OrderStore,
    PaymentStatus,
    StatusEntry,
)
from .stock import StockLedger

logger = logging.getLogger(__name__)

LEGACY = "legacy"
ATOMIC = "atomic"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderWriter:
    """Persists orders with a retry loop for order-code collisions.

    Args:
        orders: Order store.
        carts: Cart store, cleared after a successful write.
        ledger: Stock ledger for decrements (legacy) or reservations (atomic).
        coupons: Coupon validator used to record coupon usage.
        next_code: Order code generator.
        max_attempts: Insert attempts before giving up on code collisions.
        backoff: Fixed pause in seconds between attempts.
        reservation_mode: ``"legacy"`` decrements after the insert;
            ``"atomic"`` reserves stock with check-and-decrement before it.
    """

    def __init__(
        self,
        orders: OrderStore,
        carts: CartStore,
        ledger: StockLedger,
        coupons: CouponValidator,
        next_code: OrderCodeGenerator,
        max_attempts: int = 3,
        backoff: float = 0.2,
        reservation_mode: str = LEGACY,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.orders = orders
        self.carts = carts
        self.ledger = ledger
        self.coupons = coupons
        self.next_code = next_code
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.reservation_mode = reservation_mode
        self.sleep = sleep
        self.clock = clock

    def create(
        self,
        assembled: AssembledOrder,
        payment_status: PaymentStatus = PaymentStatus.UNPAID,
        payment_ref: Optional[str] = None,
    ) -> Order:
        """Persist ``assembled`` and run the post-commit side effects.

        Args:
            assembled: Draft produced by ``OrderAssembler``.
            payment_status: Initial payment status (``paid`` for orders
                created from a confirmed online payment).
            payment_ref: Provider transaction id tagging the order.

        Returns:
            The persisted Order.

        Raises:
            InsufficientStock: Atomic mode only, when a line cannot be reserved.
            OrderCodeGenerationFailed: Every attempt hit a code collision.
        """
        atomic = self.reservation_mode == ATOMIC
        reserved: List[OrderLine] = []
        if atomic:
            reserved = self._reserve_all(assembled.items)

        try:
            order = self._insert_with_retry(assembled, payment_status, payment_ref)
        except Exception:
            if reserved:
                self._release(reserved, reason="insert failed")
            raise

        logger.info("order created", extra={"order_id": order.id, "code": order.code, "user_id": order.user_id})

        if not atomic:
            for line in order.items:
                try:
                    self.ledger.decrement(line.product_id, line.selected_variant, line.quantity, order_id=order.id)
                except Exception:
                    logger.exception(
                        "stock decrement failed",
                        extra={"order_id": order.id, "product_id": line.product_id},
                    )

        if order.applied_coupon_id:
            self.coupons.commit_usage(order.applied_coupon_id)

        try:
            self.carts.clear(order.user_id)
        except Exception:
            logger.exception("cart clear failed", extra={"order_id": order.id, "user_id": order.user_id})

        return order

    def _new_order(self, assembled: AssembledOrder, payment_status, payment_ref, code: str) -> Order:
        return Order(
            id=None,
            code=code,
            user_id=assembled.user_id,
            items=list(assembled.items),
            shipping_info=assembled.shipping_info,
            totals=assembled.totals,
            payment_method=assembled.payment_method,
            payment_status=payment_status,
            status=OrderStatus.PENDING,
            status_history=[
                StatusEntry(
                    status=OrderStatus.PENDING,
                    note="Order placed successfully",
                    updated_by=assembled.user_id,
                    updated_at=self.clock(),
                )
            ],
            applied_coupon_id=assembled.applied_coupon_id,
            payment_ref=payment_ref,
        )

    def _insert_with_retry(self, assembled, payment_status, payment_ref) -> Order:
        for attempt in range(1, self.max_attempts + 1):
            result = self.orders.insert(self._new_order(assembled, payment_status, payment_ref, self.next_code()))
            if not isinstance(result, CodeConflict):
                return result
            logger.warning("order code collision", extra={"code": result.code, "attempt": attempt})
            if attempt < self.max_attempts:
                self.sleep(self.backoff)
        raise OrderCodeGenerationFailed("Could not generate a unique order code. Please try again.")

    def _reserve_all(self, lines) -> List[OrderLine]:
        taken: List[OrderLine] = []
        for line in lines:
            if not self.ledger.reserve(line.product_id, line.selected_variant, line.quantity):
                self._release(taken, reason="reservation failed")
                variant = line.selected_variant or "none"
                raise InsufficientStock(
                    f'Product "{line.name}" (variant: {variant}) has not enough stock.',
                    product_id=line.product_id,
                    product=line.name,
                    variant=line.selected_variant,
                )
            taken.append(line)
        return taken

    def _release(self, lines: List[OrderLine], reason: str) -> None:
        for line in lines:
            try:
                self.ledger.restore(line.product_id, line.selected_variant, line.quantity)
            except Exception:
                logger.exception("stock release failed", extra={"product_id": line.product_id, "reason": reason})
