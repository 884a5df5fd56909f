"""Transition maps for offers and orders."""

from enum import StrEnum

from offer_engine.domain.types import ACTION_STATUS, OfferStatus, OrderStatus


class OfferEvent(StrEnum):
    """Events that can move an offer out of ``active``."""

    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    COUNTEROFFER = "counteroffer"
    MERGE = "merge"


# All valid (current_status, event) -> next_status mappings for offers.
# Only the active offer of a session ever moves. Caller actions take their
# targets from ACTION_STATUS; merging is internal to the engine.
OFFER_TRANSITIONS: dict[tuple[OfferStatus, str], OfferStatus] = {
    **{
        (OfferStatus.ACTIVE, OfferEvent(action)): status
        for action, status in ACTION_STATUS.items()
    },
    (OfferStatus.ACTIVE, OfferEvent.MERGE): OfferStatus.MERGED,
}

OFFER_TERMINAL_STATES: frozenset[OfferStatus] = frozenset(
    {
        OfferStatus.ACCEPTED,
        OfferStatus.REJECTED,
        OfferStatus.COUNTEROFFERED,
        OfferStatus.MERGED,
    }
)

# Events after which the whole session is closed.
SESSION_CLOSING_EVENTS: frozenset[str] = frozenset(
    {OfferEvent.ACCEPT, OfferEvent.REJECT, OfferEvent.CANCEL, OfferEvent.MERGE}
)

# Orders advance forward only; cancellation is reachable from any open state.
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.NOT_STARTED: frozenset(
        {OrderStatus.IN_PROGRESS, OrderStatus.FULFILLED, OrderStatus.CANCELLED}
    ),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.FULFILLED, OrderStatus.CANCELLED}),
    OrderStatus.FULFILLED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ORDER_TERMINAL_STATES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.FULFILLED, OrderStatus.CANCELLED}
)
