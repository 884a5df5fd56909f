"""Offer and order state machines with transition validation."""

from offer_engine.state_machine.machine import OfferStateMachine, OrderStateMachine
from offer_engine.state_machine.transitions import (
    OFFER_TERMINAL_STATES,
    OFFER_TRANSITIONS,
    ORDER_TERMINAL_STATES,
    ORDER_TRANSITIONS,
    SESSION_CLOSING_EVENTS,
    OfferEvent,
)

__all__ = [
    "OFFER_TERMINAL_STATES",
    "OFFER_TRANSITIONS",
    "ORDER_TERMINAL_STATES",
    "ORDER_TRANSITIONS",
    "SESSION_CLOSING_EVENTS",
    "OfferEvent",
    "OfferStateMachine",
    "OrderStateMachine",
]
