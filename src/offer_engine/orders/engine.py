"""Order fulfillment: creation on acceptance, status changes, cancellation, archiving.

Cancellation is the only order transition with an inventory side effect:
stock recorded in the ledger for the order is given back exactly once.
Archiving an organization reuses the same cancellation path for each of
its open orders.
"""

from __future__ import annotations

import structlog

from offer_engine.audit.logger import AuditLogger
from offer_engine.domain.errors import (
    InvalidStatusError,
    NotFoundError,
    OfferEngineError,
    UnauthorizedError,
)
from offer_engine.domain.models import (
    ArchiveResult,
    CancelResult,
    Offer,
    OfferSession,
    Order,
    SellerKey,
)
from offer_engine.domain.types import (
    ListingStatus,
    OfferAction,
    OfferStatus,
    OrderStatus,
    Permission,
    SessionStatus,
)
from offer_engine.listings.inventory import InventoryLedger
from offer_engine.locks.seller_lock import SellerLockManager
from offer_engine.notifications.dispatcher import NotificationDispatcher
from offer_engine.notifications.threads import ThreadBridge
from offer_engine.observability.metrics import OPEN_SESSIONS, ORDERS_CANCELLED, ORDERS_CREATED
from offer_engine.permissions import PermissionResolver, is_related, is_seller_side
from offer_engine.state.serializers import new_id, utc_now
from offer_engine.state.store import MarketStore
from offer_engine.state_machine.machine import OfferStateMachine, OrderStateMachine

logger = structlog.get_logger()

ARCHIVE_REASON = "Organization archived"


def archived_label(name: str, archived_at: str) -> str:
    """Return the display name given to an archived organization."""
    return f"[ARCHIVED {archived_at[:10]}] {name}"


class OrderFulfillmentEngine:
    """Own the post-acceptance order lifecycle.

    Args:
        store: Engine store.
        locks: Seller lock manager shared with the offer engines.
        inventory: Stock ledger used to subtract and release commitments.
        audit: Audit logger on the store's connection.
        permissions: Identity/permission collaborator.
        notifications: Best-effort notification dispatcher.
        threads: Discussion-thread bridge.
    """

    def __init__(
        self,
        store: MarketStore,
        locks: SellerLockManager,
        inventory: InventoryLedger,
        audit: AuditLogger,
        permissions: PermissionResolver,
        notifications: NotificationDispatcher,
        threads: ThreadBridge,
    ) -> None:
        self._store = store
        self._locks = locks
        self._inventory = inventory
        self._audit = audit
        self._permissions = permissions
        self._notifications = notifications
        self._threads = threads

    def _get_order(self, order_id: str) -> Order:
        order = self._store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_from_session(self, session: OfferSession, offer: Offer, actor_id: str) -> Order:
        """Materialize the order for an accepted offer.

        Runs inside the accepting transaction with the session's seller lock
        held.  Writes the order, its stock ledger rows, and audit entries;
        side effects outside the database happen in :meth:`announce_created`.

        Raises:
            InvalidQuantityError: Stock no longer covers the commitments.
            sqlite3.IntegrityError: An order already exists for the session.
        """
        order = Order(
            order_id=new_id(),
            offer_session_id=session.session_id,
            customer_id=session.customer_id,
            assigned_id=session.assigned_id,
            org_id=session.org_id,
            title=offer.title,
            description=offer.description,
            kind=offer.kind,
            cost=offer.cost,
            payment_type=offer.payment_type,
            collateral=offer.collateral,
            service_id=offer.service_id,
            status=OrderStatus.NOT_STARTED,
            thread_id=session.thread_id,
            created_at=utc_now(),
        )
        self._store.insert_order(order)
        timing = self._inventory.timing_for(session.seller)
        self._inventory.subtract(
            order.order_id, offer.market_listings, actor_id=actor_id, timing=timing
        )
        self._audit.log_order_created(actor_id, order.order_id, session.session_id, order.cost)
        return order

    async def announce_created(self, session: OfferSession, order: Order) -> None:
        """Post-commit side effects of a new order: metrics, thread, notification."""
        ORDERS_CREATED.inc()
        logger.info(
            "order_created",
            order_id=order.order_id,
            session_id=session.session_id,
            seller=str(order.seller),
            cost=order.cost,
        )
        try:
            await self._threads.rename_thread(session, order)
        except Exception:
            logger.error("thread_rename_failed", order_id=order.order_id, exc_info=True)
        await self._notifications.order_created(order)

    # ------------------------------------------------------------------
    # Status updates
    # ------------------------------------------------------------------

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus | str,
        actor_id: str,
        *,
        force: bool = False,
    ) -> Order:
        """Move an order to *status* on behalf of *actor_id*.

        Cancelling is delegated to :meth:`cancel_order`.  Any other status
        may only be set by the seller side; ``in-progress`` records the
        actor as assignee.

        Args:
            order_id: The order to update.
            status: Target status.
            actor_id: The acting user.
            force: Administrative override for closed orders and permissions.

        Returns:
            The updated order.

        Raises:
            NotFoundError: Unknown order.
            UnauthorizedError: The actor may not set this status.
            AlreadyClosedError: The order is fulfilled or cancelled.
            InvalidStatusError: The status is unknown or the transition is not allowed.
        """
        try:
            target = OrderStatus(status)
        except ValueError:
            order = self._get_order(order_id)
            raise InvalidStatusError(order.status.value, str(status)) from None
        if target == OrderStatus.CANCELLED:
            result = await self.cancel_order(order_id, actor_id, force=force)
            return result.order

        order = self._get_order(order_id)
        async with self._locks.hold(order.seller):
            order = self._get_order(order_id)
            if not force and not is_seller_side(self._permissions, actor_id, order):
                raise UnauthorizedError(
                    f"Only the seller may set the status of this order to {target.value}"
                )

            machine = OrderStateMachine(order.status)
            previous = order.status
            machine.advance(target, force=force)
            assignee = actor_id if target == OrderStatus.IN_PROGRESS else None

            with self._store.transaction():
                self._store.update_order(order_id, target, assigned_id=assignee)
                self._audit.log_order_status(actor_id, order_id, previous.value, target.value)

            updated = self._get_order(order_id)

        logger.info(
            "order_status_changed",
            order_id=order_id,
            from_status=previous.value,
            to_status=target.value,
            actor_id=actor_id,
        )
        await self._notifications.order_status_changed(updated, actor_id, previous.value)
        return updated

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_order(
        self,
        order_id: str,
        actor_id: str,
        *,
        force: bool = False,
        reason: str | None = None,
    ) -> CancelResult:
        """Cancel an order and release its stock exactly once.

        Cancelling an already-cancelled order succeeds without releasing
        anything.  A fulfilled order can only be cancelled with *force*.

        Args:
            order_id: The order to cancel.
            actor_id: The acting user; must be related to the order unless
                *force* is set.
            force: Administrative override (archive sweeps, site admins).
            reason: Optional note stored with the audit entry.

        Returns:
            The cancelled order, whether it already was, and what was released.

        Raises:
            NotFoundError: Unknown order.
            UnauthorizedError: The actor is not related to the order.
            AlreadyClosedError: The order is fulfilled and *force* is not set.
        """
        order = self._get_order(order_id)
        async with self._locks.hold(order.seller):
            order = self._get_order(order_id)
            if not force and not is_related(self._permissions, actor_id, order):
                raise UnauthorizedError()

            if order.status == OrderStatus.CANCELLED:
                logger.info("order_already_cancelled", order_id=order_id, actor_id=actor_id)
                return CancelResult(order=order, already_cancelled=True)

            machine = OrderStateMachine(order.status)
            previous = order.status
            machine.advance(OrderStatus.CANCELLED, force=force)

            with self._store.transaction():
                self._store.update_order(order_id, OrderStatus.CANCELLED)
                released = self._inventory.release(order_id, actor_id=actor_id)
                self._audit.log_order_cancelled(
                    actor_id,
                    order_id,
                    previous.value,
                    released=[item.model_dump() for item in released],
                    forced=force,
                    reason=reason,
                )

            cancelled = self._get_order(order_id)

        ORDERS_CANCELLED.inc()
        logger.info(
            "order_cancelled",
            order_id=order_id,
            actor_id=actor_id,
            from_status=previous.value,
            released=len(released),
            forced=force,
        )
        await self._notifications.order_status_changed(cancelled, actor_id, previous.value)
        return CancelResult(order=cancelled, released=released)

    # ------------------------------------------------------------------
    # Archiving
    # ------------------------------------------------------------------

    async def archive_organization(
        self, org_id: str, actor_id: str, reason: str | None = None
    ) -> ArchiveResult:
        """Archive an organization and sweep its open work.

        Under the organization's seller lock and in one transaction the
        organization is relabelled, its listings are archived and its active
        sessions are force-rejected.  Its open orders are then cancelled one
        by one through :meth:`cancel_order`; a failure on one order is logged
        and the sweep continues.

        Args:
            org_id: The organization to archive.
            actor_id: Must hold ``manage_org`` on the organization.
            reason: Optional free-text reason kept on the organization.

        Returns:
            Counts of what was archived, rejected, and cancelled.  A repeat
            call returns ``already_archived=True`` and touches nothing.

        Raises:
            NotFoundError: Unknown organization.
            UnauthorizedError: The actor lacks ``manage_org``.
        """
        org = self._store.get_organization(org_id)
        if org is None:
            raise NotFoundError(f"Organization {org_id} not found")
        if not self._permissions.has_org_permission(actor_id, org_id, Permission.MANAGE_ORG):
            raise UnauthorizedError("Only organization managers may archive it")
        if org.archived:
            return ArchiveResult(already_archived=True)

        seller = SellerKey.organization(org_id)
        archived_at = utc_now()
        label = archived_label(org.name, archived_at)

        async with self._locks.hold(seller):
            org = self._store.get_organization(org_id)
            if org is None or org.archived:
                return ArchiveResult(already_archived=True)

            with self._store.transaction():
                self._store.mark_organization_archived(
                    org_id,
                    archived_at=archived_at,
                    archived_by=actor_id,
                    archived_label=label,
                    reason=reason,
                )
                listings = self._store.list_listings_for_seller(
                    seller, exclude_status=ListingStatus.ARCHIVED
                )
                for listing in listings:
                    self._store.update_listing_status(listing.listing_id, ListingStatus.ARCHIVED)

                sessions = self._store.list_sessions_for_seller(
                    seller, status=SessionStatus.ACTIVE
                )
                for session in sessions:
                    self._force_reject(session, actor_id)

        OPEN_SESSIONS.dec(len(sessions))
        logger.info(
            "organization_archived",
            org_id=org_id,
            actor_id=actor_id,
            listings_archived=len(listings),
            sessions_rejected=len(sessions),
        )

        cancelled = 0
        for order in self._store.list_open_orders_for_org(org_id):
            try:
                await self.cancel_order(
                    order.order_id, actor_id, force=True, reason=ARCHIVE_REASON
                )
            except OfferEngineError:
                logger.error(
                    "archive_order_cancel_failed",
                    org_id=org_id,
                    order_id=order.order_id,
                    exc_info=True,
                )
                continue
            cancelled += 1

        self._audit.log_org_archived(actor_id, org_id, archived_at, label, reason)
        return ArchiveResult(
            already_archived=False,
            archived_at=archived_at,
            archived_label=label,
            listings_archived=len(listings),
            sessions_rejected=len(sessions),
            orders_cancelled=cancelled,
        )

    def _force_reject(self, session: OfferSession, actor_id: str) -> None:
        offer = self._store.get_most_recent_offer(session.session_id)
        if offer is not None and offer.status == OfferStatus.ACTIVE:
            rejected = OfferStateMachine(offer.status).trigger(OfferAction.REJECT)
            self._store.update_offer_status(offer.offer_id, rejected)
            self._audit.log_offer_resolved(
                actor_id,
                session.session_id,
                offer.offer_id,
                OfferAction.REJECT,
                rejected.value,
                reason=ARCHIVE_REASON,
            )
        self._store.update_session_status(session.session_id, SessionStatus.CLOSED)
