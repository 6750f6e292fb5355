"""Order status machine.

Legal moves are kept in an explicit table. Forward moves go one stage at a
time along the canonical sequence; any non-terminal order can be cancelled.
A status already present in the order's history can never be entered again,
and ``cancelled`` / ``received`` accept no further transition.

Cancelling restores the stock taken at creation. The restore runs after the
new status is committed and is best-effort: if it fails part way, the order
stays cancelled and the failure is logged.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Optional

from .domain import (
    Actor,
    IllegalTransition,
    InvalidStatus,
    NotOrderOwner,
    Order,
    OrderNotFound,
    OrderStatus,
    OrderStore,
    PaymentStatus,
    STATUS_LABELS,
    StaleOrder,
    StatusEntry,
    TerminalStatus,
)
from .stock import StockLedger

logger = logging.getLogger(__name__)

S = OrderStatus

TERMINAL_STATES: FrozenSet[OrderStatus] = frozenset([S.CANCELLED, S.RECEIVED])

VALID_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.PENDING: frozenset([S.PROCESSING, S.CANCELLED]),
    S.PROCESSING: frozenset([S.HANDOVER_TO_CARRIER, S.CANCELLED]),
    S.HANDOVER_TO_CARRIER: frozenset([S.SHIPPING, S.CANCELLED]),
    S.SHIPPING: frozenset([S.DELIVERED, S.CANCELLED]),
    S.DELIVERED: frozenset([S.RECEIVED, S.CANCELLED]),
    S.RECEIVED: frozenset(),
    S.CANCELLED: frozenset(),
}

# customers may confirm receipt once the parcel is out for delivery
RECEIPT_SOURCES: FrozenSet[OrderStatus] = frozenset([S.SHIPPING, S.DELIVERED])

SETTLED_ON: FrozenSet[OrderStatus] = frozenset([S.DELIVERED, S.RECEIVED])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(f"Unknown order status: {value!r}", status=value) from None


class OrderStatusMachine:
    """Applies status transitions to persisted orders."""

    def __init__(self, orders: OrderStore, ledger: StockLedger, clock: Callable[[], datetime] = _utcnow):
        self.orders = orders
        self.ledger = ledger
        self.clock = clock

    def list_legal_next_statuses(self, order: Order) -> List[OrderStatus]:
        if order.status in TERMINAL_STATES:
            return []
        visited = order.visited()
        allowed = VALID_TRANSITIONS[order.status]
        return [s for s in OrderStatus if s in allowed and s not in visited]

    def transition(self, order_id: str, target, actor: Actor, note: Optional[str] = None) -> Order:
        """Move an order to ``target`` on behalf of ``actor``.

        Args:
            order_id: Order to change.
            target: Target status (enum member or its string value).
            actor: Who asks for the change; recorded in the history.
            note: Free-text note; defaults to the status label.

        Returns:
            The updated Order.

        Raises:
            InvalidStatus: ``target`` is not an order status.
            OrderNotFound: No such order.
            TerminalStatus: The order is cancelled or received.
            IllegalTransition: ``target`` is not a legal next status or
                was already visited.
            StaleOrder: The order changed concurrently.
        """
        status = parse_status(target)
        order = self._load(order_id)
        self._check_move(order, status)
        return self._apply(order, status, actor, note)

    def cancel_by_owner(self, order_id: str, actor: Actor, note: Optional[str] = None) -> Order:
        """Customer-initiated cancellation, allowed only while ``pending``."""
        order = self._load(order_id)
        self._check_owner(order, actor)
        if order.status is not S.PENDING:
            raise IllegalTransition(
                "An order can only be cancelled while it is awaiting confirmation.",
                current=order.status.value,
            )
        return self._apply(order, S.CANCELLED, actor, note or "Cancelled by customer")

    def confirm_received(self, order_id: str, actor: Actor) -> Order:
        order = self._load(order_id)
        self._check_owner(order, actor)
        if order.status not in RECEIPT_SOURCES:
            raise IllegalTransition(
                "Receipt can only be confirmed once the order is out for delivery.",
                current=order.status.value,
            )
        return self._apply(order, S.RECEIVED, actor, "Customer confirmed receipt")

    # ---- internals ----
    def _load(self, order_id: str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFound("Order not found.", order_id=order_id)
        return order

    @staticmethod
    def _check_owner(order: Order, actor: Actor) -> None:
        if order.user_id != actor.id:
            raise NotOrderOwner("You are not allowed to change this order.", order_id=order.id)

    def _check_move(self, order: Order, target: OrderStatus) -> None:
        if order.status in TERMINAL_STATES:
            raise TerminalStatus(
                f"Order is already {order.status.value}; no further changes are accepted.",
                current=order.status.value,
            )
        if target in order.visited():
            raise IllegalTransition(f"Order has already been {target.value}.", target=target.value)
        if target not in VALID_TRANSITIONS[order.status]:
            raise IllegalTransition(
                f"Cannot move an order from {order.status.value} to {target.value}.",
                current=order.status.value,
                target=target.value,
            )

    def _apply(self, order: Order, target: OrderStatus, actor: Actor, note: Optional[str]) -> Order:
        previous = order.status
        order.status = target
        order.status_history.append(
            StatusEntry(
                status=target,
                note=note or STATUS_LABELS[target],
                updated_by=actor.id,
                updated_at=self.clock(),
            )
        )
        if target in SETTLED_ON:
            order.payment_status = PaymentStatus.PAID

        if not self.orders.save_transition(order, previous):
            raise StaleOrder("Order was modified concurrently, reload and retry.", order_id=order.id)

        logger.info(
            "order status changed",
            extra={"order_id": order.id, "from": previous.value, "to": target.value, "actor": actor.id},
        )
        if target is S.CANCELLED and previous not in TERMINAL_STATES:
            self._restore_stock(order)
        return order

    def _restore_stock(self, order: Order) -> None:
        for line in order.items:
            try:
                self.ledger.restore(line.product_id, line.selected_variant, line.quantity)
            except Exception:
                logger.exception(
                    "stock restore failed",
                    extra={"order_id": order.id, "product_id": line.product_id},
                )
