"""Convenience class for inserting audit trail entries.

Each method creates a properly structured :class:`AuditEntry` and inserts it
via :func:`insert_audit_entry`.  Called inside the engine's transactions so
the audit row and the state change commit together.
"""

from __future__ import annotations

import sqlite3
from typing import Any

from offer_engine.audit.models import AuditAction, AuditEntry, SubjectType
from offer_engine.audit.store import insert_audit_entry
from offer_engine.domain.types import OfferAction

_RESOLUTION_ACTIONS: dict[OfferAction, AuditAction] = {
    OfferAction.ACCEPT: AuditAction.OFFER_ACCEPTED,
    OfferAction.REJECT: AuditAction.OFFER_REJECTED,
    OfferAction.CANCEL: AuditAction.OFFER_CANCELLED,
}


class AuditLogger:
    """Typed convenience API for inserting audit entries.

    Args:
        conn: An open SQLite connection to the engine database.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def record(
        self,
        action: AuditAction,
        actor_id: str,
        subject_type: SubjectType,
        subject_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Insert a generic audit entry.

        Returns:
            The row ID of the inserted audit entry.
        """
        entry = AuditEntry(
            action=action,
            actor_id=actor_id,
            subject_type=subject_type,
            subject_id=subject_id,
            metadata=metadata,
        )
        return insert_audit_entry(self._conn, entry)

    def log_session_opened(
        self, actor_id: str, session_id: str, offer_id: str, cost: int, seller: str
    ) -> int:
        return self.record(
            AuditAction.SESSION_OPENED,
            actor_id,
            SubjectType.OFFER_SESSION,
            session_id,
            {"offer_id": offer_id, "cost": cost, "seller": seller},
        )

    def log_counteroffer(
        self, actor_id: str, session_id: str, previous_offer_id: str, offer_id: str, cost: int
    ) -> int:
        return self.record(
            AuditAction.OFFER_COUNTEROFFERED,
            actor_id,
            SubjectType.OFFER_SESSION,
            session_id,
            {"previous_offer_id": previous_offer_id, "offer_id": offer_id, "cost": cost},
        )

    def log_offer_resolved(
        self,
        actor_id: str,
        session_id: str,
        offer_id: str,
        action: OfferAction,
        resulting_status: str,
        reason: str | None = None,
    ) -> int:
        """Log an accept/reject/cancel, keeping the caller's original intent.

        A ``cancel`` is stored as ``offer.cancelled`` even though the offer's
        status becomes ``rejected``.
        """
        metadata: dict[str, Any] = {
            "offer_id": offer_id,
            "requested_action": action.value,
            "resulting_status": resulting_status,
        }
        if reason is not None:
            metadata["reason"] = reason
        return self.record(
            _RESOLUTION_ACTIONS[action],
            actor_id,
            SubjectType.OFFER_SESSION,
            session_id,
            metadata,
        )

    def log_merge(
        self,
        actor_id: str,
        merged_session_id: str,
        merged_offer_id: str,
        source_session_ids: list[str],
        combined_cost: int,
    ) -> int:
        """Log a merge with everything needed to reconstruct it later."""
        return self.record(
            AuditAction.OFFERS_MERGED,
            actor_id,
            SubjectType.OFFER_SESSION,
            merged_session_id,
            {
                "merged_session_id": merged_session_id,
                "merged_offer_id": merged_offer_id,
                "source_session_ids": list(source_session_ids),
                "combined_cost": combined_cost,
            },
        )

    def log_order_created(self, actor_id: str, order_id: str, session_id: str, cost: int) -> int:
        return self.record(
            AuditAction.ORDER_CREATED,
            actor_id,
            SubjectType.ORDER,
            order_id,
            {"offer_session_id": session_id, "cost": cost},
        )

    def log_order_status(
        self, actor_id: str, order_id: str, from_status: str, to_status: str
    ) -> int:
        return self.record(
            AuditAction.ORDER_STATUS_CHANGED,
            actor_id,
            SubjectType.ORDER,
            order_id,
            {"from_status": from_status, "to_status": to_status},
        )

    def log_order_cancelled(
        self,
        actor_id: str,
        order_id: str,
        from_status: str,
        *,
        released: list[dict[str, Any]],
        forced: bool = False,
        reason: str | None = None,
    ) -> int:
        """Log a cancellation together with the stock it gave back."""
        return self.record(
            AuditAction.ORDER_CANCELLED,
            actor_id,
            SubjectType.ORDER,
            order_id,
            {
                "from_status": from_status,
                "to_status": "cancelled",
                "released": released,
                "forced": forced,
                "reason": reason,
            },
        )

    def log_stock_change(
        self,
        actor_id: str,
        listing_id: str,
        order_id: str,
        old_quantity: int,
        new_quantity: int,
    ) -> int:
        """Log a stock decrement or release for one listing."""
        action = AuditAction.STOCK_SUBTRACTED
        if new_quantity > old_quantity:
            action = AuditAction.STOCK_RESTORED
        return self.record(
            action,
            actor_id,
            SubjectType.LISTING,
            listing_id,
            {"order_id": order_id, "old_quantity": old_quantity, "new_quantity": new_quantity},
        )

    def log_org_archived(
        self,
        actor_id: str,
        org_id: str,
        archived_at: str,
        archived_label: str,
        reason: str | None,
    ) -> int:
        return self.record(
            AuditAction.ORG_ARCHIVED,
            actor_id,
            SubjectType.ORGANIZATION,
            org_id,
            {"archived_at": archived_at, "archived_label": archived_label, "reason": reason},
        )
