"""Tests for OfferMergeEngine."""

from __future__ import annotations

import sqlite3

import pytest

from offer_engine.audit.store import query_audit_trail
from offer_engine.domain.errors import (
    InvalidQuantityError,
    InvalidSessionStateError,
    MixedSellersError,
    TooFewSessionsError,
    UnauthorizedError,
)
from offer_engine.domain.models import ListingItem, Offer, OfferSession, OfferTerms, SellerKey
from offer_engine.domain.types import OfferStatus, PaymentType, SessionStatus
from offer_engine.offers.merge import merged_terms
from offer_engine.wiring import Engines

SELLER = SellerKey.user("seller")


async def _open(
    engines: Engines,
    cost: int,
    *,
    customer: str = "buyer",
    seller: SellerKey = SELLER,
    items: list[ListingItem] | None = None,
    **fields,
) -> OfferSession:
    terms = OfferTerms(title=f"Job worth {cost}", cost=cost, **fields)
    session, _ = await engines.offers.open_session(customer, seller, terms, items or [])
    return session


def _latest(engines: Engines, session_id: str) -> Offer:
    offer = engines.store.get_most_recent_offer(session_id)
    assert offer is not None
    return offer


def _assert_untouched(engines: Engines, *sessions: OfferSession) -> None:
    for session in sessions:
        stored = engines.store.get_session(session.session_id)
        assert stored is not None
        assert stored.status == SessionStatus.ACTIVE
        assert _latest(engines, session.session_id).status == OfferStatus.ACTIVE
    assert engines.store.get_merge_id_for_source(sessions[0].session_id) is None


class TestMerge:
    @pytest.mark.anyio()
    async def test_merges_two_sessions(
        self, conn: sqlite3.Connection, engines: Engines, notifier
    ) -> None:
        a = await _open(engines, 100)
        b = await _open(engines, 50)

        result = await engines.merges.merge([a.session_id, b.session_id], "buyer")

        assert result.combined_cost == 150
        assert result.offer.cost == 150
        assert result.offer.actor_id == "buyer"
        assert result.session.customer_id == "buyer"
        assert result.session.seller == SELLER
        assert result.source_session_ids == [a.session_id, b.session_id]
        assert result.message == "Successfully merged 2 offer sessions into new merged offer"

        for source in (a, b):
            stored = engines.store.get_session(source.session_id)
            assert stored is not None
            assert stored.status == SessionStatus.CLOSED
            assert _latest(engines, source.session_id).status == OfferStatus.MERGED
            assert engines.store.get_merge_id_for_source(source.session_id) == result.merge_id

        merged = engines.store.get_session(result.session.session_id)
        assert merged is not None
        assert merged.is_active

        entry = query_audit_trail(conn, action="offer.merged")[0]
        assert entry["subject_id"] == result.session.session_id
        assert entry["metadata"]["source_session_ids"] == [a.session_id, b.session_id]
        assert entry["metadata"]["combined_cost"] == 150
        assert notifier.types[-1] == "offer.merged"

    @pytest.mark.anyio()
    async def test_seller_can_accept_merged_offer(self, engines: Engines) -> None:
        a = await _open(engines, 100)
        b = await _open(engines, 50)
        result = await engines.merges.merge([a.session_id, b.session_id], "buyer")

        resolved = await engines.offers.resolve_offer(
            result.session.session_id, "seller", "accept"
        )
        order = engines.store.get_order(resolved.order_id)  # type: ignore[arg-type]
        assert order is not None
        assert order.cost == 150

    @pytest.mark.anyio()
    async def test_listings_are_unioned(self, engines: Engines, seed) -> None:
        seed.listing("l1", 5, user="seller")
        seed.listing("l2", 5, user="seller")
        a = await _open(engines, 10, items=[ListingItem(listing_id="l1", quantity=2)])
        b = await _open(
            engines,
            20,
            items=[
                ListingItem(listing_id="l1", quantity=3),
                ListingItem(listing_id="l2", quantity=1),
            ],
        )

        result = await engines.merges.merge([a.session_id, b.session_id], "seller")

        assert result.offer.market_listings == [
            ListingItem(listing_id="l1", quantity=5),
            ListingItem(listing_id="l2", quantity=1),
        ]
        assert result.offer.actor_id == "seller"

    @pytest.mark.anyio()
    async def test_union_exceeding_stock_rolls_back(self, engines: Engines, seed) -> None:
        seed.listing("l1", 4, user="seller")
        a = await _open(engines, 10, items=[ListingItem(listing_id="l1", quantity=2)])
        b = await _open(engines, 20, items=[ListingItem(listing_id="l1", quantity=3)])

        with pytest.raises(InvalidQuantityError):
            await engines.merges.merge([a.session_id, b.session_id], "buyer")
        _assert_untouched(engines, a, b)

    @pytest.mark.anyio()
    async def test_failure_mid_write_rolls_back(
        self, engines: Engines, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        a = await _open(engines, 100)
        b = await _open(engines, 50)

        def broken_insert_merge(**kwargs):
            raise RuntimeError("merge record write failed")

        monkeypatch.setattr(engines.store, "insert_merge", broken_insert_merge)
        with pytest.raises(RuntimeError):
            await engines.merges.merge([a.session_id, b.session_id], "buyer")

        _assert_untouched(engines, a, b)
        sessions = engines.store.list_sessions_for_seller(SELLER)
        assert {s.session_id for s in sessions} == {a.session_id, b.session_id}


class TestMergeValidation:
    @pytest.mark.anyio()
    async def test_too_few_sessions(self, engines: Engines) -> None:
        a = await _open(engines, 100)
        with pytest.raises(TooFewSessionsError):
            await engines.merges.merge([a.session_id], "buyer")
        with pytest.raises(TooFewSessionsError):
            await engines.merges.merge([a.session_id, a.session_id], "buyer")

    @pytest.mark.anyio()
    async def test_mixed_sellers(self, engines: Engines) -> None:
        a = await _open(engines, 100)
        b = await _open(engines, 50, seller=SellerKey.user("other-seller"))

        with pytest.raises(MixedSellersError):
            await engines.merges.merge([a.session_id, b.session_id], "buyer")
        _assert_untouched(engines, a, b)

    @pytest.mark.anyio()
    async def test_different_customers(self, engines: Engines) -> None:
        a = await _open(engines, 100)
        b = await _open(engines, 50, customer="another-buyer")
        with pytest.raises(InvalidSessionStateError):
            await engines.merges.merge([a.session_id, b.session_id], "seller")

    @pytest.mark.anyio()
    async def test_unknown_session(self, engines: Engines) -> None:
        a = await _open(engines, 100)
        with pytest.raises(InvalidSessionStateError):
            await engines.merges.merge([a.session_id, "ghost"], "buyer")

    @pytest.mark.anyio()
    async def test_closed_session(self, engines: Engines) -> None:
        a = await _open(engines, 100)
        b = await _open(engines, 50)
        await engines.offers.resolve_offer(b.session_id, "seller", "reject")

        with pytest.raises(InvalidSessionStateError):
            await engines.merges.merge([a.session_id, b.session_id], "buyer")
        _assert_untouched(engines, a)

    @pytest.mark.anyio()
    async def test_source_merges_only_once(self, engines: Engines) -> None:
        a = await _open(engines, 100)
        b = await _open(engines, 50)
        c = await _open(engines, 25)
        await engines.merges.merge([a.session_id, b.session_id], "buyer")

        with pytest.raises(InvalidSessionStateError):
            await engines.merges.merge([a.session_id, c.session_id], "buyer")
        _assert_untouched(engines, c)

    @pytest.mark.anyio()
    async def test_payment_types_must_match(self, engines: Engines) -> None:
        a = await _open(engines, 100)
        b = await _open(engines, 50, payment_type=PaymentType.HOURLY)
        with pytest.raises(InvalidSessionStateError):
            await engines.merges.merge([a.session_id, b.session_id], "buyer")

    @pytest.mark.anyio()
    async def test_service_offers_cannot_merge(self, engines: Engines, seed) -> None:
        seed.service("svc", user="seller")
        a = await _open(engines, 100)
        b = await _open(engines, 50, service_id="svc")
        with pytest.raises(InvalidSessionStateError):
            await engines.merges.merge([a.session_id, b.session_id], "buyer")

    @pytest.mark.anyio()
    async def test_requester_must_be_related(self, engines: Engines) -> None:
        a = await _open(engines, 100)
        b = await _open(engines, 50)
        with pytest.raises(UnauthorizedError):
            await engines.merges.merge([a.session_id, b.session_id], "stranger")
        _assert_untouched(engines, a, b)

    @pytest.mark.anyio()
    async def test_org_manager_may_merge(self, engines: Engines, seed) -> None:
        seed.org("org-1")
        org = SellerKey.organization("org-1")
        a = await _open(engines, 100, seller=org)
        b = await _open(engines, 50, seller=org)

        result = await engines.merges.merge([a.session_id, b.session_id], "manager")
        assert result.session.seller == org


class TestMergedTerms:
    def _offer(self, title: str, cost: int, **fields) -> Offer:
        return Offer(
            offer_id=title,
            session_id="s",
            actor_id="buyer",
            title=title,
            cost=cost,
            created_at="2026-01-01T00:00:00Z",
            **fields,
        )

    def test_sums_cost_and_collateral(self) -> None:
        terms = merged_terms([
            self._offer("A", 100, collateral=10, description="first"),
            self._offer("B", 50, collateral=5),
        ])
        assert terms.title == "Merged Offer (2 offers)"
        assert terms.cost == 150
        assert terms.collateral == 15
        assert "- A (100)" in terms.description
        assert terms.description.endswith("first")

    def test_kind_kept_only_when_shared(self) -> None:
        same = merged_terms([
            self._offer("A", 1, kind="Delivery"),
            self._offer("B", 1, kind="Delivery"),
        ])
        assert same.kind == "Delivery"
        mixed = merged_terms([
            self._offer("A", 1, kind="Delivery"),
            self._offer("B", 1, kind="Escort"),
        ])
        assert mixed.kind is None

    def test_no_collateral(self) -> None:
        terms = merged_terms([self._offer("A", 1), self._offer("B", 2)])
        assert terms.collateral is None
