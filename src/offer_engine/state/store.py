"""SQLite-backed persistence for listings, sessions, offers, and orders.

Mirrors the AuditLogger pattern: accepts a sqlite3.Connection and uses
parameterized queries exclusively.  Write methods never commit on their own;
callers group them inside :func:`transaction` so multi-row changes (accept ->
order, merge) land atomically or not at all.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager

from offer_engine.domain.models import (
    ListingItem,
    MarketListing,
    Offer,
    OfferSession,
    Order,
    Organization,
    PublicContract,
    SellerKey,
    Service,
)
from offer_engine.domain.types import (
    ListingStatus,
    OfferStatus,
    OrderStatus,
    SellerKind,
    SessionStatus,
    StockSubtractionTiming,
)
from offer_engine.state.serializers import (
    deserialize_ids,
    row_to_contract,
    row_to_listing,
    row_to_offer,
    row_to_order,
    row_to_organization,
    row_to_service,
    row_to_session,
    serialize_ids,
)


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed writes as one SQLite transaction.

    Nested use joins the outer transaction.  Never ``await`` inside the
    block: the connection is shared by every coroutine in the process.

    Args:
        conn: A connection opened with ``isolation_level=None``.

    Yields:
        The same connection.
    """
    if conn.in_transaction:
        yield conn
        return

    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


class MarketStore:
    """Persist and retrieve offer engine entities in SQLite."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize with an open database connection.

        Args:
            conn: A connection from :func:`offer_engine.state.schema.connect`
                  whose tables exist (see ``init_engine_tables``).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def transaction(self) -> AbstractContextManager[sqlite3.Connection]:
        """Shorthand for :func:`transaction` on this store's connection."""
        return transaction(self._conn)

    def _one(self, query: str, params: tuple[object, ...]) -> sqlite3.Row | None:
        row: sqlite3.Row | None = self._conn.execute(query, params).fetchone()
        return row

    def _all(self, query: str, params: tuple[object, ...] = ()) -> list[sqlite3.Row]:
        return list(self._conn.execute(query, params).fetchall())

    # ------------------------------------------------------------------
    # Organizations and permissions
    # ------------------------------------------------------------------

    def insert_organization(self, org: Organization) -> None:
        self._conn.execute(
            "INSERT INTO organizations (org_id, name, archived) VALUES (?, ?, ?)",
            (org.org_id, org.name, int(org.archived)),
        )

    def get_organization(self, org_id: str) -> Organization | None:
        row = self._one("SELECT * FROM organizations WHERE org_id = ?", (org_id,))
        return row_to_organization(row) if row else None

    def mark_organization_archived(
        self,
        org_id: str,
        *,
        archived_at: str,
        archived_by: str,
        archived_label: str,
        reason: str | None,
    ) -> None:
        self._conn.execute(
            """
            UPDATE organizations
            SET archived = 1, name = ?, archived_at = ?, archived_by = ?,
                archived_label = ?, archive_reason = ?
            WHERE org_id = ?
            """,
            (archived_label, archived_at, archived_by, archived_label, reason, org_id),
        )

    def add_member(self, org_id: str, user_id: str, permission: str) -> None:
        self._conn.execute(
            "INSERT OR IGNORE INTO organization_members (org_id, user_id, permission) "
            "VALUES (?, ?, ?)",
            (org_id, user_id, permission),
        )

    def has_member_permission(self, org_id: str, user_id: str, permission: str) -> bool:
        row = self._one(
            "SELECT 1 FROM organization_members "
            "WHERE org_id = ? AND user_id = ? AND permission = ?",
            (org_id, user_id, permission),
        )
        return row is not None

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def insert_listing(self, listing: MarketListing) -> None:
        self._conn.execute(
            """
            INSERT INTO market_listings (
                listing_id, title, price, quantity_available, status,
                user_seller_id, org_seller_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                listing.listing_id,
                listing.title,
                listing.price,
                listing.quantity_available,
                listing.status.value,
                listing.user_seller_id,
                listing.org_seller_id,
            ),
        )

    def get_listing(self, listing_id: str) -> MarketListing | None:
        row = self._one("SELECT * FROM market_listings WHERE listing_id = ?", (listing_id,))
        return row_to_listing(row) if row else None

    def update_listing_quantity(self, listing_id: str, quantity_available: int) -> None:
        if quantity_available < 0:
            raise ValueError(f"quantity_available for {listing_id} would go negative")
        self._conn.execute(
            "UPDATE market_listings SET quantity_available = ? WHERE listing_id = ?",
            (quantity_available, listing_id),
        )

    def update_listing_status(self, listing_id: str, status: ListingStatus) -> None:
        self._conn.execute(
            "UPDATE market_listings SET status = ? WHERE listing_id = ?",
            (status.value, listing_id),
        )

    def list_listings_for_seller(
        self, seller: SellerKey, *, exclude_status: ListingStatus | None = None
    ) -> list[MarketListing]:
        column = "org_seller_id" if seller.kind == SellerKind.ORGANIZATION else "user_seller_id"
        query = f"SELECT * FROM market_listings WHERE {column} = ?"
        params: tuple[object, ...] = (seller.id,)
        if exclude_status is not None:
            query += " AND status != ?"
            params = (seller.id, exclude_status.value)
        return [row_to_listing(r) for r in self._all(query + " ORDER BY listing_id", params)]

    # ------------------------------------------------------------------
    # Services, contracts, blocks, seller settings
    # ------------------------------------------------------------------

    def insert_service(self, service: Service) -> None:
        self._conn.execute(
            "INSERT INTO services (service_id, user_id, org_id, status) VALUES (?, ?, ?, ?)",
            (service.service_id, service.user_id, service.org_id, service.status),
        )

    def get_service(self, service_id: str) -> Service | None:
        row = self._one("SELECT * FROM services WHERE service_id = ?", (service_id,))
        return row_to_service(row) if row else None

    def insert_contract(self, contract: PublicContract) -> None:
        self._conn.execute(
            "INSERT INTO public_contracts (contract_id, customer_id, title, status) "
            "VALUES (?, ?, ?, ?)",
            (contract.contract_id, contract.customer_id, contract.title, contract.status),
        )

    def get_contract(self, contract_id: str) -> PublicContract | None:
        row = self._one("SELECT * FROM public_contracts WHERE contract_id = ?", (contract_id,))
        return row_to_contract(row) if row else None

    def link_contract_offer(self, contract_id: str, session_id: str) -> None:
        self._conn.execute(
            "INSERT INTO contract_offers (contract_id, session_id) VALUES (?, ?)",
            (contract_id, session_id),
        )

    def block_user(self, seller: SellerKey, user_id: str) -> None:
        self._conn.execute(
            "INSERT OR IGNORE INTO blocked_users (seller_kind, seller_id, blocked_user_id) "
            "VALUES (?, ?, ?)",
            (seller.kind.value, seller.id, user_id),
        )

    def is_blocked(self, seller: SellerKey, user_id: str) -> bool:
        row = self._one(
            "SELECT 1 FROM blocked_users "
            "WHERE seller_kind = ? AND seller_id = ? AND blocked_user_id = ?",
            (seller.kind.value, seller.id, user_id),
        )
        return row is not None

    def set_stock_timing(self, seller: SellerKey, timing: StockSubtractionTiming) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO seller_settings "
            "(seller_kind, seller_id, stock_subtraction_timing) VALUES (?, ?, ?)",
            (seller.kind.value, seller.id, timing.value),
        )

    def get_stock_timing(self, seller: SellerKey) -> StockSubtractionTiming | None:
        row = self._one(
            "SELECT stock_subtraction_timing FROM seller_settings "
            "WHERE seller_kind = ? AND seller_id = ?",
            (seller.kind.value, seller.id),
        )
        return StockSubtractionTiming(row[0]) if row else None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, session: OfferSession) -> None:
        self._conn.execute(
            """
            INSERT INTO offer_sessions (
                session_id, customer_id, assigned_id, org_id, status,
                thread_id, contract_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session.session_id,
                session.customer_id,
                session.assigned_id,
                session.org_id,
                session.status.value,
                session.thread_id,
                session.contract_id,
                session.created_at,
            ),
        )

    def get_session(self, session_id: str) -> OfferSession | None:
        row = self._one("SELECT * FROM offer_sessions WHERE session_id = ?", (session_id,))
        return row_to_session(row) if row else None

    def update_session_status(self, session_id: str, status: SessionStatus) -> None:
        self._conn.execute(
            "UPDATE offer_sessions SET status = ? WHERE session_id = ?",
            (status.value, session_id),
        )

    def update_session_thread(self, session_id: str, thread_id: str) -> None:
        self._conn.execute(
            "UPDATE offer_sessions SET thread_id = ? WHERE session_id = ?",
            (thread_id, session_id),
        )

    def list_sessions_for_seller(
        self, seller: SellerKey, *, status: SessionStatus | None = None
    ) -> list[OfferSession]:
        column = "org_id" if seller.kind == SellerKind.ORGANIZATION else "assigned_id"
        query = f"SELECT * FROM offer_sessions WHERE {column} = ?"
        params: tuple[object, ...] = (seller.id,)
        if status is not None:
            query += " AND status = ?"
            params = (seller.id, status.value)
        return [row_to_session(r) for r in self._all(query + " ORDER BY created_at", params)]

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def insert_offer(self, offer: Offer) -> None:
        """Insert an offer row together with its listing commitments."""
        self._conn.execute(
            """
            INSERT INTO offers (
                offer_id, session_id, actor_id, title, description, kind, cost,
                payment_type, collateral, service_id, status, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                offer.offer_id,
                offer.session_id,
                offer.actor_id,
                offer.title,
                offer.description,
                offer.kind,
                offer.cost,
                offer.payment_type.value,
                offer.collateral,
                offer.service_id,
                offer.status.value,
                offer.created_at,
            ),
        )
        self._conn.executemany(
            "INSERT INTO offer_market_listings (offer_id, listing_id, quantity) VALUES (?, ?, ?)",
            [(offer.offer_id, item.listing_id, item.quantity) for item in offer.market_listings],
        )

    def get_offer_listings(self, offer_id: str) -> list[ListingItem]:
        rows = self._all(
            "SELECT listing_id, quantity FROM offer_market_listings "
            "WHERE offer_id = ? ORDER BY listing_id",
            (offer_id,),
        )
        return [ListingItem(listing_id=r["listing_id"], quantity=r["quantity"]) for r in rows]

    def get_offer(self, offer_id: str) -> Offer | None:
        row = self._one("SELECT * FROM offers WHERE offer_id = ?", (offer_id,))
        return row_to_offer(row, self.get_offer_listings(offer_id)) if row else None

    def get_most_recent_offer(self, session_id: str) -> Offer | None:
        row = self._one(
            "SELECT * FROM offers WHERE session_id = ? ORDER BY rowid DESC LIMIT 1",
            (session_id,),
        )
        return row_to_offer(row, self.get_offer_listings(row["offer_id"])) if row else None

    def list_offers(self, session_id: str) -> list[Offer]:
        """Return a session's offers oldest first."""
        rows = self._all(
            "SELECT * FROM offers WHERE session_id = ? ORDER BY rowid",
            (session_id,),
        )
        return [row_to_offer(r, self.get_offer_listings(r["offer_id"])) for r in rows]

    def update_offer_status(self, offer_id: str, status: OfferStatus) -> None:
        self._conn.execute(
            "UPDATE offers SET status = ? WHERE offer_id = ?",
            (status.value, offer_id),
        )

    # ------------------------------------------------------------------
    # Orders and the stock ledger
    # ------------------------------------------------------------------

    def insert_order(self, order: Order) -> None:
        self._conn.execute(
            """
            INSERT INTO orders (
                order_id, offer_session_id, customer_id, assigned_id, org_id,
                title, description, kind, cost, payment_type, collateral,
                service_id, status, thread_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order.order_id,
                order.offer_session_id,
                order.customer_id,
                order.assigned_id,
                order.org_id,
                order.title,
                order.description,
                order.kind,
                order.cost,
                order.payment_type.value,
                order.collateral,
                order.service_id,
                order.status.value,
                order.thread_id,
                order.created_at,
            ),
        )

    def get_order(self, order_id: str) -> Order | None:
        row = self._one("SELECT * FROM orders WHERE order_id = ?", (order_id,))
        return row_to_order(row) if row else None

    def get_order_for_session(self, session_id: str) -> Order | None:
        row = self._one("SELECT * FROM orders WHERE offer_session_id = ?", (session_id,))
        return row_to_order(row) if row else None

    def update_order(
        self, order_id: str, status: OrderStatus, *, assigned_id: str | None = None
    ) -> None:
        if assigned_id is None:
            self._conn.execute(
                "UPDATE orders SET status = ? WHERE order_id = ?",
                (status.value, order_id),
            )
        else:
            self._conn.execute(
                "UPDATE orders SET status = ?, assigned_id = ? WHERE order_id = ?",
                (status.value, assigned_id, order_id),
            )

    def list_open_orders_for_org(self, org_id: str) -> list[Order]:
        rows = self._all(
            "SELECT * FROM orders WHERE org_id = ? AND status IN (?, ?) ORDER BY created_at",
            (org_id, OrderStatus.NOT_STARTED.value, OrderStatus.IN_PROGRESS.value),
        )
        return [row_to_order(r) for r in rows]

    def insert_listing_order(
        self, order_id: str, listing_id: str, quantity: int, *, subtracted: bool
    ) -> None:
        self._conn.execute(
            "INSERT INTO market_listing_orders (order_id, listing_id, quantity, subtracted) "
            "VALUES (?, ?, ?, ?)",
            (order_id, listing_id, quantity, int(subtracted)),
        )

    def get_releasable_listing_orders(self, order_id: str) -> list[ListingItem]:
        """Ledger rows whose stock was subtracted and has not been given back."""
        rows = self._all(
            "SELECT listing_id, quantity FROM market_listing_orders "
            "WHERE order_id = ? AND subtracted = 1 AND released_at IS NULL "
            "ORDER BY listing_id",
            (order_id,),
        )
        return [ListingItem(listing_id=r["listing_id"], quantity=r["quantity"]) for r in rows]

    def mark_listing_order_released(self, order_id: str, listing_id: str, released_at: str) -> None:
        self._conn.execute(
            "UPDATE market_listing_orders SET released_at = ? "
            "WHERE order_id = ? AND listing_id = ?",
            (released_at, order_id, listing_id),
        )

    # ------------------------------------------------------------------
    # Merges
    # ------------------------------------------------------------------

    def insert_merge(
        self,
        *,
        merge_id: str,
        merged_session_id: str,
        merged_offer_id: str,
        source_session_ids: list[str],
        combined_cost: int,
        requester_id: str,
        created_at: str,
    ) -> None:
        """Record a merge and claim each source session for it.

        The ``offer_merge_sources`` primary key makes a second merge of the
        same source fail with ``sqlite3.IntegrityError``.
        """
        self._conn.execute(
            """
            INSERT INTO offer_merges (
                merge_id, merged_session_id, merged_offer_id, source_session_ids,
                combined_cost, requester_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                merge_id,
                merged_session_id,
                merged_offer_id,
                serialize_ids(source_session_ids),
                combined_cost,
                requester_id,
                created_at,
            ),
        )
        self._conn.executemany(
            "INSERT INTO offer_merge_sources (session_id, merge_id) VALUES (?, ?)",
            [(sid, merge_id) for sid in source_session_ids],
        )

    def get_merge(self, merge_id: str) -> dict[str, object] | None:
        row = self._one("SELECT * FROM offer_merges WHERE merge_id = ?", (merge_id,))
        if row is None:
            return None
        record = dict(row)
        record["source_session_ids"] = deserialize_ids(row["source_session_ids"])
        return record

    def get_merge_id_for_source(self, session_id: str) -> str | None:
        row = self._one(
            "SELECT merge_id FROM offer_merge_sources WHERE session_id = ?", (session_id,)
        )
        return row[0] if row else None
