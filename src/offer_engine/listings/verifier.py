"""Validate proposed ``(listing, quantity)`` commitments against inventory.

The verifier only reads.  Callers that go on to mutate quantity must hold
the seller lock for the returned seller *before* calling :meth:`verify`, or
a concurrent purchase can invalidate the check in between.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import structlog

from offer_engine.domain.errors import (
    InvalidListingError,
    InvalidQuantityError,
    MixedSellersError,
    SelfTradeError,
    SellerArchivedError,
)
from offer_engine.domain.models import (
    ListingItem,
    MarketListing,
    SellerKey,
    VerifiedItem,
    VerifiedItems,
)
from offer_engine.domain.types import ListingStatus
from offer_engine.state.store import MarketStore

logger = structlog.get_logger()


def same_seller(listings: Iterable[MarketListing]) -> bool:
    """Return True if every listing resolves to one seller identity.

    An empty iterable trivially satisfies the rule.
    """
    return len({listing.seller for listing in listings}) <= 1


def aggregate_items(items: Sequence[ListingItem]) -> list[ListingItem]:
    """Collapse repeated listing ids by summing their quantities.

    First-seen order is preserved so error messages point at the first
    offending entry.
    """
    totals: dict[str, int] = {}
    for item in items:
        totals[item.listing_id] = totals.get(item.listing_id, 0) + item.quantity
    return [ListingItem(listing_id=lid, quantity=qty) for lid, qty in totals.items()]


class ListingVerifier:
    """Check listing commitments for existence, stock, ownership, and seller.

    Args:
        store: Store used to fetch listings and organizations.
    """

    def __init__(self, store: MarketStore) -> None:
        self._store = store

    def verify(self, buyer_id: str, items: Sequence[ListingItem]) -> VerifiedItems:
        """Verify *items* on behalf of *buyer_id*.

        Per item, in order: the listing must exist and be active, the
        quantity must be positive and not exceed what is available, the
        buyer must not be the seller, and an organizational seller must not
        be archived.  Across items, all listings must share one seller.

        Args:
            buyer_id: The party that would receive the items.
            items: Requested commitments.  Repeated listing ids are summed.

        Returns:
            The listing snapshots bound to their quantities, plus the seller.
            An empty request yields an empty result with no seller.

        Raises:
            InvalidListingError: A listing is missing or not active.
            InvalidQuantityError: A quantity is non-positive or too large.
            SelfTradeError: The buyer owns a listing.
            SellerArchivedError: A listing's organization has been archived.
            MixedSellersError: Listings belong to more than one seller.
        """
        verified: list[VerifiedItem] = []
        buyer = SellerKey.user(buyer_id)
        archived_checked: dict[str, bool] = {}

        for item in aggregate_items(items):
            listing = self._store.get_listing(item.listing_id)
            if listing is None or listing.status != ListingStatus.ACTIVE:
                raise InvalidListingError(f"Invalid listing {item.listing_id}")

            if item.quantity < 1 or item.quantity > listing.quantity_available:
                raise InvalidQuantityError(
                    f"Invalid quantity {item.quantity} for listing {item.listing_id} "
                    f"({listing.quantity_available} available)"
                )

            if listing.seller == buyer:
                raise SelfTradeError()

            org_id = listing.org_seller_id
            if org_id is not None:
                if org_id not in archived_checked:
                    org = self._store.get_organization(org_id)
                    archived_checked[org_id] = org is not None and org.archived
                if archived_checked[org_id]:
                    raise SellerArchivedError()

            verified.append(VerifiedItem(listing=listing, quantity=item.quantity))

        if not same_seller(v.listing for v in verified):
            logger.info(
                "listing_verification_mixed_sellers",
                buyer_id=buyer_id,
                sellers=sorted({str(v.listing.seller) for v in verified}),
            )
            raise MixedSellersError()

        seller = verified[0].listing.seller if verified else None
        return VerifiedItems(items=verified, seller=seller)
