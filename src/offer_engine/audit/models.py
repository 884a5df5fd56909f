"""Audit trail models for tracking negotiation and fulfillment events.

Each entry follows the ``record(action, actor, subject_type, subject_id,
metadata)`` contract: who did what, to which entity, with arbitrary
JSON-serialisable context.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class AuditAction(StrEnum):
    """Actions tracked in the audit trail."""

    SESSION_OPENED = "offer.session_opened"
    OFFER_COUNTEROFFERED = "offer.counteroffered"
    OFFER_ACCEPTED = "offer.accepted"
    OFFER_REJECTED = "offer.rejected"
    OFFER_CANCELLED = "offer.cancelled"
    OFFERS_MERGED = "offer.merged"
    ORDER_CREATED = "order.created"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_CANCELLED = "order.cancelled"
    STOCK_SUBTRACTED = "stock.subtracted"
    STOCK_RESTORED = "stock.restored"
    ORG_ARCHIVED = "org.archived"


class SubjectType(StrEnum):
    """Entity kinds an audit entry can point at."""

    OFFER_SESSION = "offer_session"
    ORDER = "order"
    LISTING = "market_listing"
    ORGANIZATION = "organization"


class AuditEntry(BaseModel):
    """A single audit trail entry.

    ``metadata`` is optional so simple status flips stay compact.
    """

    action: AuditAction
    actor_id: str
    subject_type: SubjectType
    subject_id: str
    metadata: dict[str, Any] | None = None
