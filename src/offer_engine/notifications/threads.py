"""External discussion-thread collaborator.

A bridge creates a thread when a session opens and renames it once the
session turns into an order.  Failures are logged by the engines and never
undo the transition.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from offer_engine.domain.models import OfferSession, Order

logger = structlog.get_logger()


class ThreadBridge(Protocol):
    async def create_thread(self, session: OfferSession) -> str | None: ...

    async def rename_thread(self, session: OfferSession, order: Order) -> None: ...


class NullThreadBridge:
    """Bridge used when no chat integration is configured."""

    async def create_thread(self, session: OfferSession) -> str | None:
        logger.debug("thread_bridge_disabled", session_id=session.session_id)
        return None

    async def rename_thread(self, session: OfferSession, order: Order) -> None:
        return None

