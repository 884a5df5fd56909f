"""Best-effort notification dispatch for offer and order transitions.

The engines call the dispatcher only after their transaction has committed
and the seller lock has been released.  A failing notifier is logged and
ignored: the state change it describes stands regardless.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from offer_engine.domain.models import Offer, OfferSession, Order
from offer_engine.domain.types import ACTION_DISPLAY_NAMES, OfferAction
from offer_engine.notifications.models import NotificationEvent, NotificationType

logger = structlog.get_logger()

_RESOLUTION_TYPES: dict[OfferAction, NotificationType] = {
    OfferAction.ACCEPT: NotificationType.OFFER_ACCEPTED,
    OfferAction.REJECT: NotificationType.OFFER_REJECTED,
    OfferAction.CANCEL: NotificationType.OFFER_REJECTED,
}


class Notifier(Protocol):
    async def send(self, event: NotificationEvent) -> None: ...


def session_parties(session: OfferSession | Order) -> list[str]:
    """Return the customer and the seller side as recipient keys."""
    return [session.customer_id, str(session.seller)]


class NotificationDispatcher:
    """Build notification events and hand them to a :class:`Notifier`.

    Args:
        notifier: Transport that delivers events.
    """

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier

    async def dispatch(self, event: NotificationEvent) -> bool:
        """Send *event*, swallowing and logging any failure.

        Returns:
            True if the notifier accepted the event.
        """
        try:
            await self._notifier.send(event)
        except Exception:
            logger.error(
                "notification_dispatch_failed",
                event_type=event.type.value,
                session_id=event.session_id,
                order_id=event.order_id,
                exc_info=True,
            )
            return False
        logger.debug("notification_dispatched", event_type=event.type.value)
        return True

    # ------------------------------------------------------------------
    # Offer events
    # ------------------------------------------------------------------

    async def offer_created(self, session: OfferSession, offer: Offer) -> bool:
        return await self.dispatch(
            NotificationEvent(
                type=NotificationType.OFFER_CREATED,
                actor_id=offer.actor_id,
                recipients=session_parties(session),
                message=f"New offer: {offer.title}",
                session_id=session.session_id,
                payload={"offer_id": offer.offer_id, "cost": offer.cost},
            )
        )

    async def offer_counteroffered(self, session: OfferSession, offer: Offer) -> bool:
        """Tell the party that did not propose *offer* about it."""
        counterparty = (
            str(session.seller) if offer.actor_id == session.customer_id else session.customer_id
        )
        return await self.dispatch(
            NotificationEvent(
                type=NotificationType.OFFER_COUNTEROFFERED,
                actor_id=offer.actor_id,
                recipients=[counterparty],
                message=f"Offer {ACTION_DISPLAY_NAMES[OfferAction.COUNTEROFFER]}: {offer.title}",
                session_id=session.session_id,
                payload={"offer_id": offer.offer_id, "cost": offer.cost},
            )
        )

    async def offer_resolved(
        self,
        session: OfferSession,
        offer: Offer,
        action: OfferAction,
        actor_id: str,
        order_id: str | None = None,
    ) -> bool:
        return await self.dispatch(
            NotificationEvent(
                type=_RESOLUTION_TYPES[action],
                actor_id=actor_id,
                recipients=session_parties(session),
                message=f"Offer {ACTION_DISPLAY_NAMES[action]}: {offer.title}",
                session_id=session.session_id,
                order_id=order_id,
                payload={"offer_id": offer.offer_id, "action": action.value},
            )
        )

    async def offers_merged(
        self, session: OfferSession, offer: Offer, source_session_ids: list[str]
    ) -> bool:
        return await self.dispatch(
            NotificationEvent(
                type=NotificationType.OFFER_MERGED,
                actor_id=offer.actor_id,
                recipients=session_parties(session),
                message=(
                    f"{len(source_session_ids)} offers were merged into one: {offer.title}"
                ),
                session_id=session.session_id,
                payload={
                    "offer_id": offer.offer_id,
                    "source_session_ids": list(source_session_ids),
                    "cost": offer.cost,
                },
            )
        )

    # ------------------------------------------------------------------
    # Order events
    # ------------------------------------------------------------------

    async def order_created(self, order: Order) -> bool:
        return await self.dispatch(
            NotificationEvent(
                type=NotificationType.ORDER_CREATED,
                actor_id=order.customer_id,
                recipients=session_parties(order),
                message=f"Order created: {order.title}",
                session_id=order.offer_session_id,
                order_id=order.order_id,
                payload={"cost": order.cost},
            )
        )

    async def order_status_changed(self, order: Order, actor_id: str, previous: str) -> bool:
        event_type = (
            NotificationType.ORDER_CANCELLED
            if order.status.value == "cancelled"
            else NotificationType.ORDER_STATUS_CHANGED
        )
        return await self.dispatch(
            NotificationEvent(
                type=event_type,
                actor_id=actor_id,
                recipients=session_parties(order),
                message=f"Order {order.title} is now {order.status.value}",
                session_id=order.offer_session_id,
                order_id=order.order_id,
                payload={"from_status": previous, "to_status": order.status.value},
            )
        )
