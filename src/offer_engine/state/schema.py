"""SQLite schema for the offer engine.

Follows the same pattern as ``init_audit_db()`` in ``offer_engine.audit.store``:
``CREATE TABLE IF NOT EXISTS`` DDL plus indexes, safe to run on every start.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS organizations (
        org_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        archived INTEGER NOT NULL DEFAULT 0,
        archived_at TEXT,
        archived_by TEXT,
        archived_label TEXT,
        archive_reason TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS organization_members (
        org_id TEXT NOT NULL REFERENCES organizations (org_id),
        user_id TEXT NOT NULL,
        permission TEXT NOT NULL,
        PRIMARY KEY (org_id, user_id, permission)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS market_listings (
        listing_id TEXT PRIMARY KEY,
        title TEXT NOT NULL DEFAULT '',
        price INTEGER NOT NULL DEFAULT 0 CHECK (price >= 0),
        quantity_available INTEGER NOT NULL CHECK (quantity_available >= 0),
        status TEXT NOT NULL DEFAULT 'active',
        user_seller_id TEXT,
        org_seller_id TEXT REFERENCES organizations (org_id),
        CHECK ((user_seller_id IS NULL) != (org_seller_id IS NULL))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS services (
        service_id TEXT PRIMARY KEY,
        user_id TEXT,
        org_id TEXT,
        status TEXT NOT NULL DEFAULT 'active'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public_contracts (
        contract_id TEXT PRIMARY KEY,
        customer_id TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'active'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS offer_sessions (
        session_id TEXT PRIMARY KEY,
        customer_id TEXT NOT NULL,
        assigned_id TEXT,
        org_id TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        thread_id TEXT,
        contract_id TEXT REFERENCES public_contracts (contract_id),
        created_at TEXT NOT NULL,
        CHECK ((assigned_id IS NULL) != (org_id IS NULL))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS offers (
        offer_id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL REFERENCES offer_sessions (session_id),
        actor_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        kind TEXT,
        cost INTEGER NOT NULL CHECK (cost >= 0),
        payment_type TEXT NOT NULL,
        collateral INTEGER,
        service_id TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS offer_market_listings (
        offer_id TEXT NOT NULL REFERENCES offers (offer_id),
        listing_id TEXT NOT NULL REFERENCES market_listings (listing_id),
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        PRIMARY KEY (offer_id, listing_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        order_id TEXT PRIMARY KEY,
        offer_session_id TEXT UNIQUE REFERENCES offer_sessions (session_id),
        customer_id TEXT NOT NULL,
        assigned_id TEXT,
        org_id TEXT,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        kind TEXT,
        cost INTEGER NOT NULL CHECK (cost >= 0),
        payment_type TEXT NOT NULL,
        collateral INTEGER,
        service_id TEXT,
        status TEXT NOT NULL DEFAULT 'not-started',
        thread_id TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS market_listing_orders (
        order_id TEXT NOT NULL REFERENCES orders (order_id),
        listing_id TEXT NOT NULL REFERENCES market_listings (listing_id),
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        subtracted INTEGER NOT NULL DEFAULT 1,
        released_at TEXT,
        PRIMARY KEY (order_id, listing_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS contract_offers (
        contract_id TEXT NOT NULL REFERENCES public_contracts (contract_id),
        session_id TEXT NOT NULL REFERENCES offer_sessions (session_id),
        PRIMARY KEY (contract_id, session_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS offer_merges (
        merge_id TEXT PRIMARY KEY,
        merged_session_id TEXT NOT NULL REFERENCES offer_sessions (session_id),
        merged_offer_id TEXT NOT NULL REFERENCES offers (offer_id),
        source_session_ids TEXT NOT NULL,
        combined_cost INTEGER NOT NULL,
        requester_id TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS offer_merge_sources (
        session_id TEXT PRIMARY KEY REFERENCES offer_sessions (session_id),
        merge_id TEXT NOT NULL REFERENCES offer_merges (merge_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS seller_settings (
        seller_kind TEXT NOT NULL,
        seller_id TEXT NOT NULL,
        stock_subtraction_timing TEXT NOT NULL,
        PRIMARY KEY (seller_kind, seller_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS blocked_users (
        seller_kind TEXT NOT NULL,
        seller_id TEXT NOT NULL,
        blocked_user_id TEXT NOT NULL,
        PRIMARY KEY (seller_kind, seller_id, blocked_user_id)
    )
    """,
)

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_offers_session ON offers (session_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_customer ON offer_sessions (customer_id)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_org ON offer_sessions (org_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_orders_org ON orders (org_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_listings_org ON market_listings (org_seller_id, status)",
)


def connect(db_path: Path | str) -> sqlite3.Connection:
    """Open a connection configured for explicit transaction control.

    ``isolation_level=None`` disables the sqlite3 module's implicit
    transactions; :func:`offer_engine.state.store.transaction` issues
    ``BEGIN``/``COMMIT`` itself.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An open sqlite3.Connection with WAL mode, foreign keys, and
        ``sqlite3.Row`` rows.
    """
    conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_engine_tables(conn: sqlite3.Connection) -> None:
    """Create all offer engine tables and indexes if they do not exist.

    Args:
        conn: An open connection from :func:`connect`.
    """
    for ddl in _TABLES:
        conn.execute(ddl)
    for ddl in _INDEXES:
        conn.execute(ddl)
