"""Tests for domain enumerations and the caller-action alias table."""

import pytest

from offer_engine.domain.types import (
    ACTION_STATUS,
    OPEN_ORDER_STATUSES,
    OfferAction,
    OfferStatus,
    OrderStatus,
    SellerKind,
    StockSubtractionTiming,
)
from offer_engine.state_machine.transitions import OFFER_TRANSITIONS, OfferEvent


class TestOfferStatusEnum:
    """Tests for the OfferStatus enum."""

    def test_members(self):
        assert OfferStatus.ACTIVE == "active"
        assert OfferStatus.ACCEPTED == "accepted"
        assert OfferStatus.REJECTED == "rejected"
        assert OfferStatus.COUNTEROFFERED == "counteroffered"
        assert OfferStatus.MERGED == "merged"

    def test_cancel_is_not_a_status(self):
        with pytest.raises(ValueError):
            OfferStatus("cancelled")


class TestOrderStatusEnum:
    def test_hyphenated_values(self):
        assert OrderStatus.NOT_STARTED == "not-started"
        assert OrderStatus.IN_PROGRESS == "in-progress"

    def test_open_statuses(self):
        assert OPEN_ORDER_STATUSES == {OrderStatus.NOT_STARTED, OrderStatus.IN_PROGRESS}


class TestActionStatus:
    """Caller intents map onto offer statuses through one explicit table."""

    def test_cancel_resolves_like_reject(self):
        assert ACTION_STATUS[OfferAction.CANCEL] == OfferStatus.REJECTED
        assert ACTION_STATUS[OfferAction.REJECT] == OfferStatus.REJECTED

    def test_every_action_is_mapped(self):
        assert set(ACTION_STATUS) == set(OfferAction)

    def test_transition_table_follows_aliases(self):
        for action, status in ACTION_STATUS.items():
            assert OFFER_TRANSITIONS[(OfferStatus.ACTIVE, OfferEvent(action))] == status


class TestMiscEnums:
    def test_seller_kinds(self):
        assert [k.value for k in SellerKind] == ["user", "organization"]

    def test_stock_timings(self):
        assert StockSubtractionTiming("on_accepted") == StockSubtractionTiming.ON_ACCEPTED
        assert StockSubtractionTiming("dont_subtract") == StockSubtractionTiming.DONT_SUBTRACT
