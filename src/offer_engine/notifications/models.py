"""Notification event models."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from offer_engine.state.serializers import utc_now


class NotificationType(StrEnum):
    """Events the engine announces to its notification collaborator."""

    OFFER_CREATED = "offer.created"
    OFFER_COUNTEROFFERED = "offer.counteroffered"
    OFFER_ACCEPTED = "offer.accepted"
    OFFER_REJECTED = "offer.rejected"
    OFFER_MERGED = "offer.merged"
    ORDER_CREATED = "order.created"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_CANCELLED = "order.cancelled"


class NotificationEvent(BaseModel):
    """A single fire-and-forget notification.

    ``recipients`` holds user ids and/or ``organization:<id>`` keys.
    """

    type: NotificationType
    actor_id: str
    recipients: list[str] = Field(default_factory=list)
    message: str
    session_id: str | None = None
    order_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(default_factory=utc_now)
