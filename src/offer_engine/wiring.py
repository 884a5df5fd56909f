"""Construct the engines and their shared collaborators around one connection.

All engines share a single :class:`SellerLockManager`; a lock taken by the
merge engine must exclude a concurrent acceptance in the offer engine.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from offer_engine.audit.logger import AuditLogger
from offer_engine.audit.store import init_audit_table
from offer_engine.domain.types import StockSubtractionTiming
from offer_engine.listings.inventory import InventoryLedger
from offer_engine.listings.verifier import ListingVerifier
from offer_engine.locks.seller_lock import DEFAULT_ACQUIRE_TIMEOUT, SellerLockManager
from offer_engine.notifications.dispatcher import NotificationDispatcher, Notifier
from offer_engine.notifications.threads import NullThreadBridge, ThreadBridge
from offer_engine.notifications.webhook import LoggingNotifier
from offer_engine.offers.engine import OfferSessionEngine
from offer_engine.offers.merge import OfferMergeEngine
from offer_engine.orders.engine import OrderFulfillmentEngine
from offer_engine.permissions import PermissionResolver, StorePermissionResolver
from offer_engine.state.schema import init_engine_tables
from offer_engine.state.store import MarketStore


@dataclass
class Engines:
    """The engine services plus the collaborators they were built with."""

    store: MarketStore
    audit: AuditLogger
    locks: SellerLockManager
    verifier: ListingVerifier
    offers: OfferSessionEngine
    merges: OfferMergeEngine
    orders: OrderFulfillmentEngine


def build_engines(
    conn: sqlite3.Connection,
    *,
    lock_timeout: float | None = DEFAULT_ACQUIRE_TIMEOUT,
    default_timing: StockSubtractionTiming = StockSubtractionTiming.ON_ACCEPTED,
    notifier: Notifier | None = None,
    threads: ThreadBridge | None = None,
    permissions: PermissionResolver | None = None,
) -> Engines:
    """Create tables if needed and wire every engine onto *conn*.

    Args:
        conn: Connection from :func:`offer_engine.state.schema.connect`.
        lock_timeout: Seller lock acquisition bound in seconds.
        default_timing: Stock timing for sellers without a stored setting.
        notifier: Notification transport; logs events when omitted.
        threads: Discussion-thread bridge; disabled when omitted.
        permissions: Permission collaborator; the store's membership table
            when omitted.

    Returns:
        The wired :class:`Engines`.
    """
    init_engine_tables(conn)
    init_audit_table(conn)

    store = MarketStore(conn)
    audit = AuditLogger(conn)
    locks = SellerLockManager(acquire_timeout=lock_timeout)
    verifier = ListingVerifier(store)
    inventory = InventoryLedger(store, audit, default_timing=default_timing)
    resolver = permissions or StorePermissionResolver(store)
    dispatcher = NotificationDispatcher(notifier or LoggingNotifier())
    bridge = threads or NullThreadBridge()

    orders = OrderFulfillmentEngine(
        store, locks, inventory, audit, resolver, dispatcher, bridge
    )
    offers = OfferSessionEngine(
        store, locks, verifier, orders, audit, resolver, dispatcher, bridge
    )
    merges = OfferMergeEngine(store, locks, verifier, audit, resolver, dispatcher, bridge)

    return Engines(
        store=store,
        audit=audit,
        locks=locks,
        verifier=verifier,
        offers=offers,
        merges=merges,
        orders=orders,
    )
