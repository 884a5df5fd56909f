"""Tests for OrderFulfillmentEngine: status changes, cancellation, and archiving."""

from __future__ import annotations

import sqlite3

import pytest

from offer_engine.audit.store import query_audit_trail
from offer_engine.domain.errors import (
    AlreadyClosedError,
    InvalidStatusError,
    NotFoundError,
    SellerArchivedError,
    UnauthorizedError,
)
from offer_engine.domain.models import ListingItem, OfferTerms, Order, SellerKey
from offer_engine.domain.types import ListingStatus, OfferStatus, OrderStatus, SessionStatus
from offer_engine.orders.engine import archived_label
from offer_engine.wiring import Engines

SELLER = SellerKey.user("seller")
ORG = SellerKey.organization("org-1")


async def _order(
    engines: Engines,
    *,
    seller: SellerKey = SELLER,
    responder: str = "seller",
    items: list[ListingItem] | None = None,
    customer: str = "buyer",
) -> Order:
    terms = OfferTerms(title="Haul cargo", cost=100)
    session, _ = await engines.offers.open_session(customer, seller, terms, items or [])
    result = await engines.offers.resolve_offer(session.session_id, responder, "accept")
    assert result.order_id is not None
    order = engines.store.get_order(result.order_id)
    assert order is not None
    return order


def _quantity(engines: Engines, listing_id: str) -> int:
    listing = engines.store.get_listing(listing_id)
    assert listing is not None
    return listing.quantity_available


def _status(engines: Engines, order_id: str) -> OrderStatus:
    order = engines.store.get_order(order_id)
    assert order is not None
    return order.status


# ---------------------------------------------------------------------------
# Status updates
# ---------------------------------------------------------------------------


class TestUpdateStatus:
    @pytest.mark.anyio()
    async def test_seller_walks_order_to_fulfilled(
        self, conn: sqlite3.Connection, engines: Engines, notifier
    ) -> None:
        order = await _order(engines)

        started = await engines.orders.update_status(order.order_id, "in-progress", "seller")
        assert started.status == OrderStatus.IN_PROGRESS
        done = await engines.orders.update_status(
            order.order_id, OrderStatus.FULFILLED, "seller"
        )
        assert done.status == OrderStatus.FULFILLED

        entries = query_audit_trail(
            conn, subject_id=order.order_id, action="order.status_changed"
        )
        assert [e["metadata"]["to_status"] for e in entries] == ["fulfilled", "in-progress"]
        assert notifier.types[-1] == "order.status_changed"

    @pytest.mark.anyio()
    async def test_in_progress_records_assignee(self, engines: Engines, seed) -> None:
        seed.org("org-1", managers=("manager", "other-manager"))
        order = await _order(engines, seller=ORG, responder="manager")

        updated = await engines.orders.update_status(
            order.order_id, "in-progress", "other-manager"
        )

        assert updated.assigned_id == "other-manager"
        assert updated.org_id == "org-1"
        assert updated.seller == ORG

    @pytest.mark.anyio()
    async def test_customer_cannot_progress(self, engines: Engines) -> None:
        order = await _order(engines)
        with pytest.raises(UnauthorizedError):
            await engines.orders.update_status(order.order_id, "in-progress", "buyer")
        with pytest.raises(UnauthorizedError):
            await engines.orders.update_status(order.order_id, "fulfilled", "stranger")

    @pytest.mark.anyio()
    async def test_backwards_transition(self, engines: Engines) -> None:
        order = await _order(engines)
        await engines.orders.update_status(order.order_id, "in-progress", "seller")
        with pytest.raises(InvalidStatusError):
            await engines.orders.update_status(order.order_id, "not-started", "seller")

    @pytest.mark.anyio()
    async def test_closed_order(self, engines: Engines) -> None:
        order = await _order(engines)
        await engines.orders.update_status(order.order_id, "fulfilled", "seller")
        with pytest.raises(AlreadyClosedError):
            await engines.orders.update_status(order.order_id, "in-progress", "seller")

    @pytest.mark.anyio()
    async def test_cancel_status_delegates(self, engines: Engines, seed) -> None:
        seed.listing("l1", 5, user="seller")
        order = await _order(engines, items=[ListingItem(listing_id="l1", quantity=2)])
        cancelled = await engines.orders.update_status(order.order_id, "cancelled", "buyer")
        assert cancelled.status == OrderStatus.CANCELLED
        assert _quantity(engines, "l1") == 5

    @pytest.mark.anyio()
    async def test_unknown_order(self, engines: Engines) -> None:
        with pytest.raises(NotFoundError):
            await engines.orders.update_status("ghost", "in-progress", "seller")

    @pytest.mark.anyio()
    async def test_unknown_status(self, engines: Engines) -> None:
        order = await _order(engines)
        with pytest.raises(InvalidStatusError) as exc_info:
            await engines.orders.update_status(order.order_id, "shipped", "seller")
        assert exc_info.value.to_dict()["error"] == "InvalidStatus"
        assert _status(engines, order.order_id) == OrderStatus.NOT_STARTED


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancelOrder:
    @pytest.mark.anyio()
    async def test_cancel_releases_stock_once(
        self, conn: sqlite3.Connection, engines: Engines, seed
    ) -> None:
        seed.listing("l1", 5, user="seller")
        order = await _order(engines, items=[ListingItem(listing_id="l1", quantity=3)])
        assert _quantity(engines, "l1") == 2

        first = await engines.orders.cancel_order(order.order_id, "buyer")
        assert first.order.status == OrderStatus.CANCELLED
        assert not first.already_cancelled
        assert first.released == [ListingItem(listing_id="l1", quantity=3)]
        assert _quantity(engines, "l1") == 5

        second = await engines.orders.cancel_order(order.order_id, "seller")
        assert second.already_cancelled
        assert second.released == []
        assert _quantity(engines, "l1") == 5
        assert len(query_audit_trail(conn, action="order.cancelled")) == 1

    @pytest.mark.anyio()
    async def test_either_party_may_cancel(self, engines: Engines) -> None:
        by_buyer = await _order(engines)
        by_seller = await _order(engines)
        assert (await engines.orders.cancel_order(by_buyer.order_id, "buyer")).order.status == (
            OrderStatus.CANCELLED
        )
        assert (await engines.orders.cancel_order(by_seller.order_id, "seller")).order.status == (
            OrderStatus.CANCELLED
        )

    @pytest.mark.anyio()
    async def test_stranger_cannot_cancel(self, engines: Engines) -> None:
        order = await _order(engines)
        with pytest.raises(UnauthorizedError):
            await engines.orders.cancel_order(order.order_id, "stranger")

    @pytest.mark.anyio()
    async def test_fulfilled_requires_force(self, engines: Engines, seed) -> None:
        seed.listing("l1", 5, user="seller")
        order = await _order(engines, items=[ListingItem(listing_id="l1", quantity=1)])
        await engines.orders.update_status(order.order_id, "fulfilled", "seller")

        with pytest.raises(AlreadyClosedError):
            await engines.orders.cancel_order(order.order_id, "seller")
        assert _quantity(engines, "l1") == 4

        forced = await engines.orders.cancel_order(
            order.order_id, "admin", force=True, reason="chargeback"
        )
        assert forced.order.status == OrderStatus.CANCELLED
        assert _quantity(engines, "l1") == 5

    @pytest.mark.anyio()
    async def test_cancel_audits_release(
        self, conn: sqlite3.Connection, engines: Engines, seed
    ) -> None:
        seed.listing("l1", 5, user="seller")
        order = await _order(engines, items=[ListingItem(listing_id="l1", quantity=2)])
        await engines.orders.cancel_order(order.order_id, "buyer", reason="changed my mind")

        entry = query_audit_trail(conn, action="order.cancelled")[0]
        assert entry["metadata"]["from_status"] == "not-started"
        assert entry["metadata"]["released"] == [{"listing_id": "l1", "quantity": 2}]
        assert entry["metadata"]["reason"] == "changed my mind"
        assert len(query_audit_trail(conn, action="stock.restored")) == 1


# ---------------------------------------------------------------------------
# Archiving
# ---------------------------------------------------------------------------


class TestArchiveOrganization:
    @pytest.mark.anyio()
    async def test_archive_sweeps_open_work(
        self, conn: sqlite3.Connection, engines: Engines, seed
    ) -> None:
        seed.org("org-1")
        seed.listing("l1", 5, org="org-1")
        seed.listing("l2", 5, org="org-1", status=ListingStatus.INACTIVE)
        open_order = await _order(
            engines,
            seller=ORG,
            responder="manager",
            items=[ListingItem(listing_id="l1", quantity=2)],
        )
        done_order = await _order(engines, seller=ORG, responder="manager")
        await engines.orders.update_status(done_order.order_id, "fulfilled", "manager")
        pending, _ = await engines.offers.open_session(
            "buyer", ORG, OfferTerms(title="Pending job", cost=10)
        )

        result = await engines.orders.archive_organization("org-1", "owner", reason="closing")

        assert not result.already_archived
        assert result.listings_archived == 2
        assert result.sessions_rejected == 1
        assert result.orders_cancelled == 1
        assert result.archived_label == archived_label("Acme Hauling", result.archived_at)

        org = engines.store.get_organization("org-1")
        assert org is not None
        assert org.archived
        for listing_id in ("l1", "l2"):
            listing = engines.store.get_listing(listing_id)
            assert listing is not None
            assert listing.status == ListingStatus.ARCHIVED
        assert _quantity(engines, "l1") == 5

        session = engines.store.get_session(pending.session_id)
        assert session is not None
        assert session.status == SessionStatus.CLOSED
        offer = engines.store.get_most_recent_offer(pending.session_id)
        assert offer is not None
        assert offer.status == OfferStatus.REJECTED

        assert _status(engines, open_order.order_id) == OrderStatus.CANCELLED
        assert _status(engines, done_order.order_id) == OrderStatus.FULFILLED

        entry = query_audit_trail(conn, action="org.archived")[0]
        assert entry["subject_id"] == "org-1"
        assert entry["metadata"]["reason"] == "closing"

    @pytest.mark.anyio()
    async def test_archive_is_idempotent(self, engines: Engines, seed) -> None:
        seed.org("org-1")
        await engines.orders.archive_organization("org-1", "owner")
        again = await engines.orders.archive_organization("org-1", "owner")
        assert again.already_archived
        assert again.listings_archived == 0

    @pytest.mark.anyio()
    async def test_archived_org_cannot_trade(self, engines: Engines, seed) -> None:
        seed.org("org-1")
        await engines.orders.archive_organization("org-1", "owner")
        with pytest.raises(SellerArchivedError):
            await engines.offers.open_session("buyer", ORG, OfferTerms(title="Job", cost=1))

    @pytest.mark.anyio()
    async def test_requires_manage_org(self, engines: Engines, seed) -> None:
        seed.org("org-1")
        with pytest.raises(UnauthorizedError):
            await engines.orders.archive_organization("org-1", "manager")
        with pytest.raises(NotFoundError):
            await engines.orders.archive_organization("ghost", "owner")

    @pytest.mark.anyio()
    async def test_failed_cancel_does_not_stop_sweep(
        self, engines: Engines, seed, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        seed.org("org-1")
        first = await _order(engines, seller=ORG, responder="manager")
        second = await _order(engines, seller=ORG, responder="manager", customer="buyer-2")
        original = engines.orders.cancel_order

        async def flaky(order_id: str, actor_id: str, **kwargs):
            if order_id == first.order_id:
                raise AlreadyClosedError()
            return await original(order_id, actor_id, **kwargs)

        monkeypatch.setattr(engines.orders, "cancel_order", flaky)
        result = await engines.orders.archive_organization("org-1", "owner")

        assert result.orders_cancelled == 1
        assert _status(engines, first.order_id) == OrderStatus.NOT_STARTED
        assert _status(engines, second.order_id) == OrderStatus.CANCELLED


class TestArchivedLabel:
    def test_format(self) -> None:
        assert archived_label("Acme", "2026-03-04T05:06:07.000000Z") == (
            "[ARCHIVED 2026-03-04] Acme"
        )
