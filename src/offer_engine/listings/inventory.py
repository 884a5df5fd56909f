"""Stock subtraction and release through the ``market_listing_orders`` ledger.

Every order gets one ledger row per committed listing.  The row records
whether stock was actually subtracted and, once given back, when.  Release
only touches rows that were subtracted and not yet released, so repeating a
cancellation gives nothing back twice.

Both operations write and must run inside the caller's transaction while
the seller lock is held.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from offer_engine.audit.logger import AuditLogger
from offer_engine.domain.errors import InvalidListingError, InvalidQuantityError
from offer_engine.domain.models import ListingItem, SellerKey
from offer_engine.domain.types import StockSubtractionTiming
from offer_engine.state.serializers import utc_now
from offer_engine.state.store import MarketStore

logger = structlog.get_logger()


class InventoryLedger:
    """Apply and reverse an order's listing commitments.

    Args:
        store: Engine store.
        audit: Audit logger sharing the store's connection.
        default_timing: Timing used for sellers without a stored setting.
    """

    def __init__(
        self,
        store: MarketStore,
        audit: AuditLogger,
        default_timing: StockSubtractionTiming = StockSubtractionTiming.ON_ACCEPTED,
    ) -> None:
        self._store = store
        self._audit = audit
        self._default_timing = default_timing

    def timing_for(self, seller: SellerKey) -> StockSubtractionTiming:
        """Return the seller's stock subtraction timing, or the default."""
        return self._store.get_stock_timing(seller) or self._default_timing

    def subtract(
        self,
        order_id: str,
        items: Sequence[ListingItem],
        *,
        actor_id: str,
        timing: StockSubtractionTiming,
    ) -> list[ListingItem]:
        """Write ledger rows for *items* and decrement stock if *timing* says so.

        Quantities are re-read here; a shortfall raises instead of clamping.

        Returns:
            The items whose stock was decremented (empty for ``dont_subtract``).

        Raises:
            InvalidListingError: A committed listing no longer exists.
            InvalidQuantityError: Not enough stock remains.
        """
        subtract = timing == StockSubtractionTiming.ON_ACCEPTED
        subtracted: list[ListingItem] = []

        for item in items:
            if subtract:
                listing = self._store.get_listing(item.listing_id)
                if listing is None:
                    raise InvalidListingError(f"Invalid listing {item.listing_id}")
                old_quantity = listing.quantity_available
                new_quantity = old_quantity - item.quantity
                if new_quantity < 0:
                    raise InvalidQuantityError(
                        f"Invalid quantity {item.quantity} for listing {item.listing_id} "
                        f"({old_quantity} available)"
                    )
                self._store.update_listing_quantity(item.listing_id, new_quantity)
                self._audit.log_stock_change(
                    actor_id, item.listing_id, order_id, old_quantity, new_quantity
                )
                subtracted.append(item)
                logger.info(
                    "stock_subtracted",
                    order_id=order_id,
                    listing_id=item.listing_id,
                    quantity=item.quantity,
                    old_quantity=old_quantity,
                    new_quantity=new_quantity,
                )
            self._store.insert_listing_order(
                order_id, item.listing_id, item.quantity, subtracted=subtract
            )

        if not subtract and items:
            logger.info("stock_subtraction_skipped", order_id=order_id, timing=timing.value)
        return subtracted

    def release(self, order_id: str, *, actor_id: str) -> list[ListingItem]:
        """Give back every subtracted, unreleased commitment of *order_id*.

        Returns:
            The items whose stock was restored.  Empty on a repeat call.
        """
        released: list[ListingItem] = []
        released_at = utc_now()

        for item in self._store.get_releasable_listing_orders(order_id):
            listing = self._store.get_listing(item.listing_id)
            if listing is None:
                logger.warning(
                    "stock_release_listing_missing",
                    order_id=order_id,
                    listing_id=item.listing_id,
                )
                continue
            old_quantity = listing.quantity_available
            new_quantity = old_quantity + item.quantity
            self._store.update_listing_quantity(item.listing_id, new_quantity)
            self._store.mark_listing_order_released(order_id, item.listing_id, released_at)
            self._audit.log_stock_change(
                actor_id, item.listing_id, order_id, old_quantity, new_quantity
            )
            released.append(item)
            logger.info(
                "stock_restored",
                order_id=order_id,
                listing_id=item.listing_id,
                quantity=item.quantity,
                old_quantity=old_quantity,
                new_quantity=new_quantity,
            )

        return released
