"""Offer session engine: open, counter, accept, reject, and cancel negotiations.

Every mutation of an existing session runs under the seller lock of that
session and writes its rows in a single transaction, so two responders can
never both resolve the same offer and acceptance can never oversell stock.
Notifications and thread-bridge calls happen after the lock is released.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from offer_engine.audit.logger import AuditLogger
from offer_engine.domain.errors import (
    AlreadyClosedError,
    BlockedError,
    InvalidListingError,
    InvalidServiceError,
    InvalidSessionStateError,
    MixedSellersError,
    NotFoundError,
    SelfTradeError,
    SellerArchivedError,
    UnauthorizedError,
)
from offer_engine.domain.models import (
    ListingItem,
    Offer,
    OfferSession,
    OfferTerms,
    ResolveResult,
    SellerKey,
    VerifiedItems,
)
from offer_engine.domain.types import (
    OfferAction,
    OfferStatus,
    Permission,
    SellerKind,
    SessionStatus,
)
from offer_engine.listings.verifier import ListingVerifier
from offer_engine.locks.seller_lock import SellerLockManager
from offer_engine.notifications.dispatcher import NotificationDispatcher
from offer_engine.notifications.threads import ThreadBridge
from offer_engine.observability.metrics import OFFERS_CREATED, OPEN_SESSIONS
from offer_engine.orders.engine import OrderFulfillmentEngine
from offer_engine.permissions import PermissionResolver, is_related, is_seller_side
from offer_engine.state.serializers import new_id, utc_now
from offer_engine.state.store import MarketStore
from offer_engine.state_machine.machine import OfferStateMachine
from offer_engine.state_machine.transitions import SESSION_CLOSING_EVENTS

logger = structlog.get_logger()

PURCHASE_KIND = "Delivery"


def build_offer(
    session_id: str,
    actor_id: str,
    terms: OfferTerms,
    items: Sequence[ListingItem] = (),
) -> Offer:
    """Create a new active offer from *terms*."""
    return Offer(
        offer_id=new_id(),
        session_id=session_id,
        actor_id=actor_id,
        title=terms.title,
        description=terms.description,
        kind=terms.kind,
        cost=terms.cost,
        payment_type=terms.payment_type,
        collateral=terms.collateral,
        service_id=terms.service_id,
        status=OfferStatus.ACTIVE,
        created_at=utc_now(),
        market_listings=list(items),
    )


def purchase_description(buyer_id: str, verified: VerifiedItems, offer_cost: int, note: str) -> str:
    """Itemised description used for direct listing purchases."""
    lines = [f"Complete the delivery of sold items to {buyer_id}"]
    for item in verified.items:
        lines.append(
            f"- {item.listing.title or item.listing_id} "
            f"({item.listing.price:,} x{item.quantity:,})"
        )
    lines.append(f"- Total: {verified.total_price:,}")
    lines.append(f"- User Offer: {offer_cost:,}")
    if note:
        lines.append("")
        lines.append("Note from buyer:")
        lines.append(f"> {note}")
    return "\n".join(lines)


class OfferSessionEngine:
    """Negotiation state machine over offer sessions.

    Args:
        store: Engine store.
        locks: Seller lock manager shared with the merge and order engines.
        verifier: Listing verifier.
        orders: Order engine invoked on acceptance.
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
        orders: OrderFulfillmentEngine,
        audit: AuditLogger,
        permissions: PermissionResolver,
        notifications: NotificationDispatcher,
        threads: ThreadBridge,
    ) -> None:
        self._store = store
        self._locks = locks
        self._verifier = verifier
        self._orders = orders
        self._audit = audit
        self._permissions = permissions
        self._notifications = notifications
        self._threads = threads

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _get_session(self, session_id: str) -> OfferSession:
        session = self._store.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Offer session {session_id} not found")
        return session

    def _current_offer(self, session: OfferSession) -> Offer:
        if not session.is_active:
            raise AlreadyClosedError()
        offer = self._store.get_most_recent_offer(session.session_id)
        if offer is None or offer.status != OfferStatus.ACTIVE:
            raise AlreadyClosedError()
        return offer

    def _check_seller(self, seller: SellerKey) -> None:
        if seller.kind != SellerKind.ORGANIZATION:
            return
        org = self._store.get_organization(seller.id)
        if org is None:
            raise NotFoundError(f"Organization {seller.id} not found")
        if org.archived:
            raise SellerArchivedError()

    def _check_service(self, service_id: str | None, seller: SellerKey) -> None:
        """A linked service must belong to the session's seller."""
        if service_id is None:
            return
        service = self._store.get_service(service_id)
        if service is None:
            raise InvalidServiceError()
        owner = SellerKey.from_ids(service.user_id, service.org_id)
        if owner != seller:
            raise InvalidServiceError()

    def _verify_items(
        self, customer_id: str, seller: SellerKey, items: Sequence[ListingItem]
    ) -> list[ListingItem]:
        verified = self._verifier.verify(customer_id, items)
        if verified.seller is not None and verified.seller != seller:
            raise MixedSellersError("Listings must belong to the seller of this offer")
        return verified.as_listing_items()

    def can_respond(self, session: OfferSession, offer: Offer, actor_id: str) -> bool:
        """Return True if *actor_id* may accept, reject, or counter *offer*.

        Only the party that did not propose the current offer may respond.
        """
        if not session.is_active:
            return False
        if offer.actor_id == session.customer_id:
            return is_seller_side(self._permissions, actor_id, session)
        return actor_id == session.customer_id

    # ------------------------------------------------------------------
    # Opening sessions
    # ------------------------------------------------------------------

    async def open_session(
        self,
        customer_id: str,
        seller: SellerKey,
        terms: OfferTerms,
        items: Sequence[ListingItem] = (),
        *,
        actor_id: str | None = None,
        contract_id: str | None = None,
    ) -> tuple[OfferSession, Offer]:
        """Open a negotiation between *customer_id* and *seller*.

        Args:
            customer_id: The buyer.
            seller: The individual or organization selling.
            terms: Terms of the initial offer.
            items: Listing commitments attached to the initial offer.
            actor_id: Proposer of the initial offer; defaults to the customer.
            contract_id: Public contract this session applies to, if any.

        Returns:
            The new session and its initial active offer.

        Raises:
            SelfTradeError: The customer is the seller.
            SellerArchivedError: The seller organization is archived.
            BlockedError: The seller blocked the customer.
            InvalidServiceError: The linked service is not the seller's.
            InvalidListingError, InvalidQuantityError, MixedSellersError:
                The attached listings failed verification.
        """
        if seller == SellerKey.user(customer_id):
            raise SelfTradeError("You cannot open an offer with yourself")
        self._check_seller(seller)
        if self._store.is_blocked(seller, customer_id):
            raise BlockedError()
        self._check_service(terms.service_id, seller)
        listing_items = self._verify_items(customer_id, seller, items)

        session = OfferSession(
            session_id=new_id(),
            customer_id=customer_id,
            assigned_id=seller.id if seller.kind == SellerKind.USER else None,
            org_id=seller.id if seller.kind == SellerKind.ORGANIZATION else None,
            status=SessionStatus.ACTIVE,
            contract_id=contract_id,
            created_at=utc_now(),
        )
        offer = build_offer(session.session_id, actor_id or customer_id, terms, listing_items)

        with self._store.transaction():
            self._store.insert_session(session)
            self._store.insert_offer(offer)
            if contract_id is not None:
                self._store.link_contract_offer(contract_id, session.session_id)
            self._audit.log_session_opened(
                offer.actor_id, session.session_id, offer.offer_id, offer.cost, str(seller)
            )

        OPEN_SESSIONS.inc()
        OFFERS_CREATED.labels(origin="contract" if contract_id else "open").inc()
        logger.info(
            "offer_session_opened",
            session_id=session.session_id,
            customer_id=customer_id,
            seller=str(seller),
            cost=offer.cost,
            listings=len(listing_items),
        )

        session = await self._attach_thread(session)
        await self._notifications.offer_created(session, offer)
        return session, offer

    async def _attach_thread(self, session: OfferSession) -> OfferSession:
        try:
            thread_id = await self._threads.create_thread(session)
        except Exception:
            logger.error("thread_create_failed", session_id=session.session_id, exc_info=True)
            return session
        if not thread_id:
            return session
        with self._store.transaction():
            self._store.update_session_thread(session.session_id, thread_id)
        return session.model_copy(update={"thread_id": thread_id})

    async def apply_to_contract(
        self,
        contract_id: str,
        applicant_id: str,
        terms: OfferTerms,
        *,
        org_id: str | None = None,
    ) -> tuple[OfferSession, Offer]:
        """Apply to a public contract, opening a session with its owner.

        The contract owner becomes the customer and the applicant (or an
        organization the applicant manages) the seller.  The applicant
        proposes the initial offer, so the owner responds first.

        Raises:
            NotFoundError: Unknown contract.
            InvalidSessionStateError: The contract is no longer open.
            UnauthorizedError: The applicant does not manage *org_id*.
        """
        contract = self._store.get_contract(contract_id)
        if contract is None:
            raise NotFoundError(f"Contract {contract_id} not found")
        if contract.status != "active":
            raise InvalidSessionStateError("This contract is no longer accepting applications")

        if org_id is not None:
            if not self._permissions.has_org_permission(
                applicant_id, org_id, Permission.MANAGE_ORDERS
            ):
                raise UnauthorizedError("You cannot apply on behalf of this organization")
            seller = SellerKey.organization(org_id)
        else:
            seller = SellerKey.user(applicant_id)

        return await self.open_session(
            contract.customer_id,
            seller,
            terms,
            actor_id=applicant_id,
            contract_id=contract_id,
        )

    async def purchase_listings(
        self,
        buyer_id: str,
        items: Sequence[ListingItem],
        *,
        offer_cost: int | None = None,
        note: str = "",
    ) -> tuple[OfferSession, Offer]:
        """Open a session that buys *items* from their (single) seller.

        The cost defaults to the sum of listing prices; a buyer may propose
        a different amount with *offer_cost*.

        Raises:
            InvalidListingError: No items were given.
        """
        if not items:
            raise InvalidListingError("At least one listing is required")
        verified = self._verifier.verify(buyer_id, items)
        if verified.seller is None:
            raise InvalidListingError("At least one listing is required")
        cost = offer_cost if offer_cost is not None else verified.total_price
        terms = OfferTerms(
            title=f"Items Sold to {buyer_id}"[:100],
            description=purchase_description(buyer_id, verified, cost, note)[:2000],
            kind=PURCHASE_KIND,
            cost=cost,
        )
        return await self.open_session(
            buyer_id, verified.seller, terms, verified.as_listing_items()
        )

    # ------------------------------------------------------------------
    # Responding
    # ------------------------------------------------------------------

    async def submit_counteroffer(
        self,
        session_id: str,
        actor_id: str,
        terms: OfferTerms,
        items: Sequence[ListingItem] = (),
    ) -> Offer:
        """Replace the current offer with a new one proposed by *actor_id*.

        Identical terms are allowed; they simply advance the chain.

        Returns:
            The new active offer.

        Raises:
            NotFoundError: Unknown session.
            AlreadyClosedError: The session is closed.
            UnauthorizedError: *actor_id* proposed the current offer or is unrelated.
            InvalidServiceError: The linked service is not the seller's.
            InvalidListingError, InvalidQuantityError, SelfTradeError,
            SellerArchivedError, MixedSellersError: Listing verification failed.
        """
        session = self._get_session(session_id)
        async with self._locks.hold(session.seller):
            session = self._get_session(session_id)
            current = self._current_offer(session)
            if not self.can_respond(session, current, actor_id):
                raise UnauthorizedError("Only the other party may respond to this offer")

            self._check_service(terms.service_id, session.seller)
            listing_items = self._verify_items(session.customer_id, session.seller, items)

            machine = OfferStateMachine(current.status)
            superseded = machine.trigger(OfferAction.COUNTEROFFER)
            offer = build_offer(session_id, actor_id, terms, listing_items)

            with self._store.transaction():
                self._store.update_offer_status(current.offer_id, superseded)
                self._store.insert_offer(offer)
                self._audit.log_counteroffer(
                    actor_id, session_id, current.offer_id, offer.offer_id, offer.cost
                )

        OFFERS_CREATED.labels(origin="counteroffer").inc()
        logger.info(
            "offer_counteroffered",
            session_id=session_id,
            actor_id=actor_id,
            previous_offer_id=current.offer_id,
            offer_id=offer.offer_id,
            cost=offer.cost,
        )
        await self._notifications.offer_counteroffered(session, offer)
        return offer

    async def resolve_offer(
        self, session_id: str, actor_id: str, action: OfferAction | str
    ) -> ResolveResult:
        """Accept, reject, or cancel the current offer of a session.

        ``cancel`` resolves exactly like ``reject`` but may be issued by
        either party; ``accept`` and ``reject`` only by the party that did
        not propose the current offer.  Accepting re-verifies the attached
        listings under the seller lock and creates the order in the same
        transaction that closes the session.

        Returns:
            The resolved offer's new status and, on acceptance, the order id.

        Raises:
            NotFoundError: Unknown session.
            AlreadyClosedError: The session is closed.
            UnauthorizedError: *actor_id* may not resolve this offer.
            InvalidSessionStateError: *action* is ``counteroffer`` or unknown.
            InvalidListingError, InvalidQuantityError, SellerArchivedError:
                Acceptance re-verification failed; the offer stays active.
        """
        try:
            action = OfferAction(action)
        except ValueError:
            raise InvalidSessionStateError(f"Unknown offer action '{action}'") from None
        if action == OfferAction.COUNTEROFFER:
            raise InvalidSessionStateError("Counteroffers must carry new terms")

        session = self._get_session(session_id)
        async with self._locks.hold(session.seller):
            session = self._get_session(session_id)
            current = self._current_offer(session)
            if action == OfferAction.CANCEL:
                allowed = is_related(self._permissions, actor_id, session)
            else:
                allowed = self.can_respond(session, current, actor_id)
            if not allowed:
                raise UnauthorizedError()

            machine = OfferStateMachine(current.status)
            new_status = machine.trigger(action)

            if action == OfferAction.ACCEPT and current.market_listings:
                self._verify_items(session.customer_id, session.seller, current.market_listings)

            order = None
            with self._store.transaction():
                self._store.update_offer_status(current.offer_id, new_status)
                if action in SESSION_CLOSING_EVENTS:
                    self._store.update_session_status(session_id, SessionStatus.CLOSED)
                self._audit.log_offer_resolved(
                    actor_id, session_id, current.offer_id, action, new_status.value
                )
                if action == OfferAction.ACCEPT:
                    order = self._orders.create_from_session(session, current, actor_id)

        OPEN_SESSIONS.dec()
        logger.info(
            "offer_resolved",
            session_id=session_id,
            offer_id=current.offer_id,
            actor_id=actor_id,
            action=action.value,
            status=new_status.value,
            order_id=order.order_id if order else None,
        )
        await self._notifications.offer_resolved(
            session, current, action, actor_id, order.order_id if order else None
        )
        if order is not None:
            await self._orders.announce_created(session, order)

        return ResolveResult(
            session_id=session_id,
            offer_id=current.offer_id,
            action=action,
            status=new_status,
            order_id=order.order_id if order else None,
        )
