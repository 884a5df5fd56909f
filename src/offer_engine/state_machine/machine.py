"""Offer and order state machines with trigger, history, and valid_events."""

from __future__ import annotations

from offer_engine.domain.errors import (
    AlreadyClosedError,
    InvalidSessionStateError,
    InvalidStatusError,
)
from offer_engine.domain.types import OfferStatus, OrderStatus
from offer_engine.state_machine.transitions import (
    OFFER_TERMINAL_STATES,
    OFFER_TRANSITIONS,
    ORDER_TERMINAL_STATES,
    ORDER_TRANSITIONS,
)


class OfferStateMachine:
    """Finite state machine governing a single offer.

    Tracks the offer's status, validates events against the transition map,
    and records every change so it can be written to the audit trail.

    Usage::

        sm = OfferStateMachine()
        sm.trigger("counteroffer")   # -> COUNTEROFFERED (terminal)
    """

    def __init__(self, initial_status: OfferStatus = OfferStatus.ACTIVE) -> None:
        self._status: OfferStatus = initial_status
        self._history: list[tuple[OfferStatus, str, OfferStatus]] = []

    @property
    def status(self) -> OfferStatus:
        return self._status

    @property
    def is_terminal(self) -> bool:
        """Return True once the offer has been resolved or superseded."""
        return self._status in OFFER_TERMINAL_STATES

    @property
    def history(self) -> list[tuple[OfferStatus, str, OfferStatus]]:
        """Return a copy of the ``(from, event, to)`` transition history."""
        return list(self._history)

    def trigger(self, event: str) -> OfferStatus:
        """Apply an event and transition.

        Args:
            event: The event string (e.g. ``"accept"``).

        Returns:
            The new status.

        Raises:
            AlreadyClosedError: If the offer is already in a terminal status.
            InvalidSessionStateError: If the event is unknown for the status.
        """
        if self.is_terminal:
            raise AlreadyClosedError(
                f"Cannot apply '{event}' to an offer that is already '{self._status}'"
            )

        key = (self._status, event)
        if key not in OFFER_TRANSITIONS:
            raise InvalidSessionStateError(
                f"Cannot apply event '{event}' in status '{self._status}'"
            )

        old_status = self._status
        new_status = OFFER_TRANSITIONS[key]
        self._history.append((old_status, event, new_status))
        self._status = new_status
        return new_status

    def get_valid_events(self) -> list[str]:
        """Return a sorted list of events valid from the current status."""
        if self.is_terminal:
            return []
        return sorted(event for status, event in OFFER_TRANSITIONS if status == self._status)


class OrderStateMachine:
    """Forward-only order lifecycle.

    ``advance`` to the current status is rejected except for ``cancelled``,
    which callers treat as an idempotent no-op before reaching the machine.
    """

    def __init__(self, initial_status: OrderStatus = OrderStatus.NOT_STARTED) -> None:
        self._status = initial_status
        self._history: list[tuple[OrderStatus, OrderStatus]] = []

    @property
    def status(self) -> OrderStatus:
        return self._status

    @property
    def is_terminal(self) -> bool:
        return self._status in ORDER_TERMINAL_STATES

    @property
    def history(self) -> list[tuple[OrderStatus, OrderStatus]]:
        return list(self._history)

    def can_advance(self, target: OrderStatus) -> bool:
        return target in ORDER_TRANSITIONS[self._status]

    def advance(self, target: OrderStatus, *, force: bool = False) -> OrderStatus:
        """Move the order to *target*.

        Args:
            target: The requested status.
            force: Allow cancelling a fulfilled order (administrative override).

        Returns:
            The new status.

        Raises:
            AlreadyClosedError: If the order is closed and *force* does not apply.
            InvalidStatusError: If *target* is not reachable from the current status.
        """
        forced_cancel = (
            force
            and self._status == OrderStatus.FULFILLED
            and target == OrderStatus.CANCELLED
        )
        if self.is_terminal and not forced_cancel:
            raise AlreadyClosedError(
                f"Cannot change status for closed order ('{self._status}')"
            )
        if not forced_cancel and not self.can_advance(target):
            raise InvalidStatusError(self._status.value, OrderStatus(target).value)

        old_status = self._status
        self._status = OrderStatus(target)
        self._history.append((old_status, self._status))
        return self._status
