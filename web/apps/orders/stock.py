"""Stock ledger: availability checks and stock mutations against the catalog.

Aggregate stock and variant stock are two independent counters on the
catalog record. Every mutation here is issued as a single-field atomic
increment through the ``CatalogStore`` port; the read-modify-write sequence
as a whole is not atomic. In particular:

- ``validate_availability`` and ``decrement`` are separate calls, so two
  concurrent checkouts can both pass validation before either decrements.
- The aggregate and variant decrements are two writes; a crash between them
  leaves the counters out of step. Only "both are >= 0" is relied upon.
- Because of the first race, ``decrement`` may find less stock than the
  line needs. It then takes only what is left and logs the shortfall
  against the order, while ``restore`` on cancel gives back the full line
  quantity. Cancelling such an order therefore adds the logged shortfall
  to the counters; reconcile from the ``stock decrement clamped`` log.

``reserve`` is the check-and-decrement alternative built on the store's
``decrement_if_available`` primitive.
"""

import logging
from typing import Optional

from .domain import (
    Availability,
    AvailabilityCheck,
    CatalogStore,
    FieldNotFound,
    Product,
)

logger = logging.getLogger(__name__)

AGGREGATE_FIELD = "stock"


def variant_field(index: int) -> str:
    return f"color_stocks.{index}.stock"


class StockLedger:
    """Per-product stock primitives used by the order writer and status machine."""

    def __init__(self, catalog: CatalogStore):
        self.catalog = catalog

    # ---- reads ----
    def validate_availability(self, product_id: str, variant: str, quantity: int) -> AvailabilityCheck:
        """Check whether ``quantity`` units of a product (variant) can be sold.

        When the product defines variants, a non-empty ``variant`` must match a
        variant name exactly and that variant's counter is compared. With no
        variant selected, or no variants defined, the aggregate counter is
        authoritative.

        Args:
            product_id: Catalog identifier.
            variant: Selected variant name, or an empty string.
            quantity: Units requested.

        Returns:
            AvailabilityCheck with the outcome and the units available.
        """
        product = self.catalog.get(product_id)
        if product is None:
            return AvailabilityCheck(Availability.PRODUCT_MISSING)
        if not product.is_active:
            return AvailabilityCheck(Availability.PRODUCT_INACTIVE)

        available = self._available_units(product, variant or "")
        if available is None:
            return AvailabilityCheck(Availability.UNKNOWN_VARIANT)
        if not product.in_stock or available < quantity:
            return AvailabilityCheck(Availability.INSUFFICIENT_STOCK, available=max(available, 0))
        return AvailabilityCheck(Availability.OK, available=available)

    @staticmethod
    def _available_units(product: Product, variant: str) -> Optional[int]:
        if product.variants:
            idx = product.variant_index(variant)
            if idx is not None:
                return product.variants[idx].stock
            if variant:
                return None
        return product.stock

    # ---- writes ----
    def decrement(self, product_id: str, variant: str, quantity: int, order_id: Optional[str] = None) -> int:
        """Take ``quantity`` units off the aggregate and the matching variant.

        Each counter is lowered by at most its value as last read, so the
        ledger on its own never drives a counter below zero. A variant that
        disappeared since validation is skipped; the aggregate adjustment
        still applies. ``in_stock`` is re-derived afterwards.

        Returns:
            Units actually taken off the aggregate. Anything less than
            ``quantity`` is logged as ``stock decrement clamped`` with the
            order id so the shortfall can be reconciled.
        """
        product = self.catalog.get(product_id)
        if product is None:
            logger.warning(
                "stock decrement skipped, product missing",
                extra={"product_id": product_id, "order_id": order_id},
            )
            return 0

        taken = min(quantity, max(product.stock, 0))
        self._adjust(product_id, AGGREGATE_FIELD, -taken)
        if taken < quantity:
            self._log_clamped(order_id, product_id, AGGREGATE_FIELD, quantity, taken)

        idx = product.variant_index(variant or "") if product.variants else None
        if idx is not None:
            variant_taken = min(quantity, max(product.variants[idx].stock, 0))
            self._adjust(product_id, variant_field(idx), -variant_taken)
            if variant_taken < quantity:
                self._log_clamped(order_id, product_id, variant_field(idx), quantity, variant_taken)

        self.refresh_in_stock(product_id)
        return taken

    @staticmethod
    def _log_clamped(order_id, product_id: str, field_path: str, quantity: int, taken: int) -> None:
        logger.warning(
            "stock decrement clamped",
            extra={
                "order_id": order_id,
                "product_id": product_id,
                "field": field_path,
                "quantity": quantity,
                "taken": taken,
                "shortfall": quantity - taken,
            },
        )

    def restore(self, product_id: str, variant: str, quantity: int) -> None:
        """Give ``quantity`` units back, then re-derive ``in_stock``.

        The full line quantity is returned even if ``decrement`` was clamped
        for that line; see the module notes.
        """
        product = self.catalog.get(product_id)
        if product is None:
            logger.warning("stock restore skipped, product missing", extra={"product_id": product_id})
            return

        self._adjust(product_id, AGGREGATE_FIELD, quantity)
        idx = product.variant_index(variant or "") if product.variants else None
        if idx is not None:
            self._adjust(product_id, variant_field(idx), quantity)

        self.refresh_in_stock(product_id, variants_count=False)

    def reserve(self, product_id: str, variant: str, quantity: int) -> bool:
        """Atomically take stock only if enough is available.

        Returns:
            True when both counters were decremented, False when not enough
            stock was available (nothing changed in that case).
        """
        taken = self.catalog.decrement_if_available(product_id, variant or "", quantity)
        if taken:
            self.refresh_in_stock(product_id)
        return taken

    def refresh_in_stock(self, product_id: str, variants_count: bool = True) -> None:
        """Recompute ``in_stock`` from the counters as they are now.

        After a decrement the product is out of stock when the aggregate is
        exhausted or every variant is; after a restore only the aggregate
        is consulted.
        """
        product = self.catalog.get(product_id)
        if product is None:
            return
        out_of_stock = product.stock <= 0 or (
            variants_count
            and bool(product.variants)
            and all(v.stock <= 0 for v in product.variants)
        )
        self.catalog.update_fields(product_id, {"in_stock": not out_of_stock})

    def _adjust(self, product_id: str, field_path: str, delta: int) -> None:
        if delta == 0:
            return
        try:
            self.catalog.increment_field(product_id, field_path, delta)
        except FieldNotFound:
            # counter vanished between the read and the write
            logger.warning(
                "stock field missing, adjustment skipped",
                extra={"product_id": product_id, "field": field_path, "delta": delta},
            )
