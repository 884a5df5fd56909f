"""Listing verification and the stock ledger."""

from offer_engine.listings.inventory import InventoryLedger
from offer_engine.listings.verifier import ListingVerifier, aggregate_items, same_seller

__all__ = ["InventoryLedger", "ListingVerifier", "aggregate_items", "same_seller"]
