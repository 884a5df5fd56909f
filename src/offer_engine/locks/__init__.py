"""Seller-scoped locking that serializes inventory reads and writes."""

from offer_engine.locks.seller_lock import DEFAULT_ACQUIRE_TIMEOUT, SellerLockManager

__all__ = ["DEFAULT_ACQUIRE_TIMEOUT", "SellerLockManager"]
