"""Fold several active sessions of one buyer into a single merged session.

The whole merge happens under the common seller's lock and inside one
transaction: the merged session and offer are written, every source offer
is marked ``merged``, every source session is closed, and the merge record
claims each source.  Any failure rolls all of it back.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from offer_engine.audit.logger import AuditLogger
from offer_engine.domain.errors import (
    InvalidSessionStateError,
    MixedSellersError,
    TooFewSessionsError,
    UnauthorizedError,
)
from offer_engine.domain.models import (
    ListingItem,
    MergeResult,
    Offer,
    OfferSession,
    OfferTerms,
)
from offer_engine.domain.types import OfferStatus, SessionStatus
from offer_engine.listings.verifier import ListingVerifier, aggregate_items
from offer_engine.locks.seller_lock import SellerLockManager
from offer_engine.notifications.dispatcher import NotificationDispatcher
from offer_engine.notifications.threads import ThreadBridge
from offer_engine.observability.metrics import OFFERS_CREATED, OPEN_SESSIONS, SESSIONS_MERGED
from offer_engine.offers.engine import build_offer
from offer_engine.permissions import PermissionResolver, is_related
from offer_engine.state.serializers import new_id, utc_now
from offer_engine.state.store import MarketStore
from offer_engine.state_machine.machine import OfferStateMachine
from offer_engine.state_machine.transitions import OfferEvent

logger = structlog.get_logger()

MIN_SESSIONS = 2


def merged_terms(offers: Sequence[Offer]) -> OfferTerms:
    """Combine the current offers of the source sessions into one set of terms."""
    lines = [f"Merged from {len(offers)} offers:"]
    for offer in offers:
        lines.append(f"- {offer.title} ({offer.cost:,})")
    descriptions = [offer.description for offer in offers if offer.description]
    if descriptions:
        lines.append("")
        lines.extend(descriptions)
    kinds = {offer.kind for offer in offers}
    return OfferTerms(
        title=f"Merged Offer ({len(offers)} offers)",
        description="\n".join(lines)[:2000],
        kind=kinds.pop() if len(kinds) == 1 else None,
        cost=sum(offer.cost for offer in offers),
        payment_type=offers[0].payment_type,
        collateral=sum(offer.collateral or 0 for offer in offers) or None,
    )


class OfferMergeEngine:
    """Atomically merge active sessions that share a customer and a seller.

    Args:
        store: Engine store.
        locks: Seller lock manager shared with the other engines.
        verifier: Listing verifier, applied to the unioned commitments.
        audit: Audit logger on the store's connection.
        permissions: Identity/permission collaborator.
        notifications: Best-effort notification dispatcher.
        threads: Discussion-thread bridge.
    """

    def __init__(
        self,
        store: MarketStore,
        locks: SellerLockManager,
        verifier: ListingVerifier,
        audit: AuditLogger,
        permissions: PermissionResolver,
        notifications: NotificationDispatcher,
        threads: ThreadBridge,
    ) -> None:
        self._store = store
        self._locks = locks
        self._verifier = verifier
        self._audit = audit
        self._permissions = permissions
        self._notifications = notifications
        self._threads = threads

    def _load_sessions(self, session_ids: Sequence[str]) -> list[OfferSession]:
        sessions: list[OfferSession] = []
        for session_id in session_ids:
            session = self._store.get_session(session_id)
            if session is None:
                raise InvalidSessionStateError(f"Offer session {session_id} not found")
            sessions.append(session)
        return sessions

    def _current_offers(self, sessions: Sequence[OfferSession]) -> list[Offer]:
        offers: list[Offer] = []
        for session in sessions:
            if not session.is_active:
                raise InvalidSessionStateError("All offer sessions must be active")
            if self._store.get_merge_id_for_source(session.session_id) is not None:
                raise InvalidSessionStateError(
                    f"Offer session {session.session_id} has already been merged"
                )
            offer = self._store.get_most_recent_offer(session.session_id)
            if offer is None or offer.status != OfferStatus.ACTIVE:
                raise InvalidSessionStateError("All offer sessions must be active")
            offers.append(offer)
        return offers

    @staticmethod
    def _check_terms(offers: Sequence[Offer]) -> None:
        if len({offer.payment_type for offer in offers}) > 1:
            raise InvalidSessionStateError("All offers must have the same payment type")
        if any(offer.service_id is not None for offer in offers):
            raise InvalidSessionStateError("Offers linked to a service cannot be merged")

    async def merge(self, session_ids: Sequence[str], requester_id: str) -> MergeResult:
        """Merge *session_ids* into one new session proposed by *requester_id*.

        Repeated ids count once.  The merged offer costs the sum of the
        source offers and carries the union of their listing commitments.

        Args:
            session_ids: Sessions to merge (at least two distinct ids).
            requester_id: Must be related to every source session.

        Returns:
            The merged session and offer, the source ids, and the combined cost.

        Raises:
            TooFewSessionsError: Fewer than two distinct sessions.
            InvalidSessionStateError: A session is missing, closed, already
                merged, for another customer, on different payment terms,
                or linked to a service.
            MixedSellersError: The sessions have different sellers.
            UnauthorizedError: The requester is unrelated to a source.
            InvalidListingError, InvalidQuantityError, SellerArchivedError:
                The unioned commitments failed verification.
        """
        ids = list(dict.fromkeys(session_ids))
        if len(ids) < MIN_SESSIONS:
            raise TooFewSessionsError()

        sessions = self._load_sessions(ids)
        if len({s.customer_id for s in sessions}) > 1:
            raise InvalidSessionStateError("All offer sessions must have the same customer")
        sellers = {s.seller for s in sessions}
        if len(sellers) > 1:
            raise MixedSellersError("All offer sessions must have the same seller")
        for session in sessions:
            if not is_related(self._permissions, requester_id, session):
                raise UnauthorizedError("You do not have permission to merge these offers")

        seller = sellers.pop()
        async with self._locks.hold(seller):
            sessions = self._load_sessions(ids)
            offers = self._current_offers(sessions)
            self._check_terms(offers)

            union: list[ListingItem] = aggregate_items(
                [item for offer in offers for item in offer.market_listings]
            )
            customer_id = sessions[0].customer_id
            verified = self._verifier.verify(customer_id, union)
            if verified.seller is not None and verified.seller != seller:
                raise MixedSellersError()

            terms = merged_terms(offers)
            merged_session = OfferSession(
                session_id=new_id(),
                customer_id=customer_id,
                assigned_id=sessions[0].assigned_id,
                org_id=sessions[0].org_id,
                status=SessionStatus.ACTIVE,
                created_at=utc_now(),
            )
            merged_offer = build_offer(
                merged_session.session_id, requester_id, terms, verified.as_listing_items()
            )
            merge_id = new_id()

            with self._store.transaction():
                self._store.insert_session(merged_session)
                self._store.insert_offer(merged_offer)
                for session, offer in zip(sessions, offers, strict=True):
                    superseded = OfferStateMachine(offer.status).trigger(OfferEvent.MERGE)
                    self._store.update_offer_status(offer.offer_id, superseded)
                    self._store.update_session_status(session.session_id, SessionStatus.CLOSED)
                self._store.insert_merge(
                    merge_id=merge_id,
                    merged_session_id=merged_session.session_id,
                    merged_offer_id=merged_offer.offer_id,
                    source_session_ids=ids,
                    combined_cost=merged_offer.cost,
                    requester_id=requester_id,
                    created_at=merged_offer.created_at,
                )
                self._audit.log_merge(
                    requester_id,
                    merged_session.session_id,
                    merged_offer.offer_id,
                    ids,
                    merged_offer.cost,
                )

        SESSIONS_MERGED.inc()
        OFFERS_CREATED.labels(origin="merge").inc()
        # Sources closed, one merged session opened.
        OPEN_SESSIONS.dec(len(ids) - 1)
        logger.info(
            "offer_sessions_merged",
            merge_id=merge_id,
            merged_session_id=merged_session.session_id,
            source_session_ids=ids,
            combined_cost=merged_offer.cost,
            requester_id=requester_id,
        )

        try:
            thread_id = await self._threads.create_thread(merged_session)
        except Exception:
            logger.error(
                "thread_create_failed", session_id=merged_session.session_id, exc_info=True
            )
            thread_id = None
        if thread_id:
            with self._store.transaction():
                self._store.update_session_thread(merged_session.session_id, thread_id)
            merged_session = merged_session.model_copy(update={"thread_id": thread_id})

        await self._notifications.offers_merged(merged_session, merged_offer, ids)
        return MergeResult(
            merge_id=merge_id,
            session=merged_session,
            offer=merged_offer,
            source_session_ids=ids,
            combined_cost=merged_offer.cost,
        )
