"""Tests for stock subtraction and exactly-once release."""

from __future__ import annotations

import sqlite3

import pytest

from offer_engine.audit.logger import AuditLogger
from offer_engine.audit.store import query_audit_trail
from offer_engine.domain.errors import InvalidQuantityError
from offer_engine.domain.models import ListingItem, Order, SellerKey
from offer_engine.domain.types import StockSubtractionTiming
from offer_engine.listings.inventory import InventoryLedger
from offer_engine.state.store import MarketStore

ON_ACCEPTED = StockSubtractionTiming.ON_ACCEPTED
DONT_SUBTRACT = StockSubtractionTiming.DONT_SUBTRACT


@pytest.fixture
def ledger(conn: sqlite3.Connection, store: MarketStore) -> InventoryLedger:
    return InventoryLedger(store, AuditLogger(conn))


@pytest.fixture
def order(store: MarketStore) -> Order:
    order = Order(
        order_id="order-1",
        customer_id="buyer",
        assigned_id="seller",
        title="Haul",
        cost=10,
        created_at="2026-01-01T00:00:00Z",
    )
    store.insert_order(order)
    return order


def _quantity(store: MarketStore, listing_id: str) -> int:
    listing = store.get_listing(listing_id)
    assert listing is not None
    return listing.quantity_available


class TestTiming:
    def test_default_then_stored(self, store: MarketStore, ledger: InventoryLedger) -> None:
        seller = SellerKey.user("seller")
        assert ledger.timing_for(seller) == ON_ACCEPTED
        store.set_stock_timing(seller, DONT_SUBTRACT)
        assert ledger.timing_for(seller) == DONT_SUBTRACT

    def test_configured_default(self, conn: sqlite3.Connection, store: MarketStore) -> None:
        ledger = InventoryLedger(store, AuditLogger(conn), default_timing=DONT_SUBTRACT)
        assert ledger.timing_for(SellerKey.user("anyone")) == DONT_SUBTRACT


class TestSubtract:
    def test_decrements_and_audits(
        self, conn, seed, store: MarketStore, ledger: InventoryLedger, order: Order
    ) -> None:
        seed.listing("l1", 5, user="seller")
        subtracted = ledger.subtract(
            order.order_id, [ListingItem(listing_id="l1", quantity=3)],
            actor_id="seller", timing=ON_ACCEPTED,
        )
        assert subtracted == [ListingItem(listing_id="l1", quantity=3)]
        assert _quantity(store, "l1") == 2
        entry = query_audit_trail(conn, action="stock.subtracted")[0]
        assert entry["metadata"] == {"order_id": "order-1", "old_quantity": 5, "new_quantity": 2}

    def test_shortfall_raises(
        self, seed, store: MarketStore, ledger: InventoryLedger, order: Order
    ) -> None:
        seed.listing("l1", 2, user="seller")
        with pytest.raises(InvalidQuantityError), store.transaction():
            ledger.subtract(
                order.order_id, [ListingItem(listing_id="l1", quantity=3)],
                actor_id="seller", timing=ON_ACCEPTED,
            )
        assert _quantity(store, "l1") == 2
        assert store.get_releasable_listing_orders(order.order_id) == []

    def test_dont_subtract_records_ledger_only(
        self, seed, store: MarketStore, ledger: InventoryLedger, order: Order
    ) -> None:
        seed.listing("l1", 5, user="seller")
        subtracted = ledger.subtract(
            order.order_id, [ListingItem(listing_id="l1", quantity=3)],
            actor_id="seller", timing=DONT_SUBTRACT,
        )
        assert subtracted == []
        assert _quantity(store, "l1") == 5
        assert ledger.release(order.order_id, actor_id="buyer") == []
        assert _quantity(store, "l1") == 5


class TestRelease:
    def test_release_exactly_once(
        self, conn, seed, store: MarketStore, ledger: InventoryLedger, order: Order
    ) -> None:
        seed.listing("l1", 5, user="seller")
        seed.listing("l2", 4, user="seller")
        ledger.subtract(
            order.order_id,
            [ListingItem(listing_id="l1", quantity=3), ListingItem(listing_id="l2", quantity=4)],
            actor_id="seller",
            timing=ON_ACCEPTED,
        )
        assert (_quantity(store, "l1"), _quantity(store, "l2")) == (2, 0)

        released = ledger.release(order.order_id, actor_id="buyer")
        assert {item.listing_id for item in released} == {"l1", "l2"}
        assert (_quantity(store, "l1"), _quantity(store, "l2")) == (5, 4)

        assert ledger.release(order.order_id, actor_id="buyer") == []
        assert (_quantity(store, "l1"), _quantity(store, "l2")) == (5, 4)
        assert len(query_audit_trail(conn, action="stock.restored")) == 2

    def test_release_adds_to_current_quantity(
        self, seed, store: MarketStore, ledger: InventoryLedger, order: Order
    ) -> None:
        seed.listing("l1", 5, user="seller")
        ledger.subtract(
            order.order_id, [ListingItem(listing_id="l1", quantity=3)],
            actor_id="seller", timing=ON_ACCEPTED,
        )
        store.update_listing_quantity("l1", 10)  # seller restocked meanwhile
        ledger.release(order.order_id, actor_id="buyer")
        assert _quantity(store, "l1") == 13
