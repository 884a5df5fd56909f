"""SQLite-backed audit trail store with indexed queries.

The audit table lives in the engine database so entries commit in the same
transaction as the state change they describe.  Uses parameterized queries
exclusively (never string concatenation of values).
"""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from offer_engine.audit.models import AuditEntry
from offer_engine.state.schema import connect
from offer_engine.state.store import transaction


def init_audit_table(conn: sqlite3.Connection) -> None:
    """Create the ``audit_log`` table and its indexes if missing.

    Args:
        conn: An open connection from :func:`offer_engine.state.schema.connect`.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            action TEXT NOT NULL,
            actor_id TEXT NOT NULL,
            subject_type TEXT NOT NULL,
            subject_id TEXT NOT NULL,
            metadata TEXT
        )
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_audit_subject ON audit_log (subject_type, subject_id)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_log (actor_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp)")


def init_audit_db(db_path: Path) -> sqlite3.Connection:
    """Open *db_path* and make sure the audit table exists.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        An open sqlite3.Connection with WAL mode enabled.
    """
    conn = connect(db_path)
    init_audit_table(conn)
    return conn


def insert_audit_entry(conn: sqlite3.Connection, entry: AuditEntry) -> int:
    """Insert an audit entry.

    Joins the caller's transaction when one is open, otherwise commits on
    its own.  Serializes metadata to JSON if present.

    Args:
        conn: An open database connection.
        entry: The audit entry to insert.

    Returns:
        The row ID of the inserted entry.
    """
    metadata_json: str | None = None
    if entry.metadata is not None:
        metadata_json = json.dumps(entry.metadata, sort_keys=True)

    timestamp = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")

    with transaction(conn):
        cursor = conn.execute(
            """
            INSERT INTO audit_log (
                timestamp, action, actor_id, subject_type, subject_id, metadata
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                timestamp,
                entry.action.value,
                entry.actor_id,
                entry.subject_type.value,
                entry.subject_id,
                metadata_json,
            ),
        )
    return cursor.lastrowid or 0


def query_audit_trail(
    conn: sqlite3.Connection,
    *,
    action: str | None = None,
    actor_id: str | None = None,
    subject_type: str | None = None,
    subject_id: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Query the audit trail with flexible filtering.

    All filters are optional.  Results are ordered newest first.

    Args:
        conn: An open database connection.
        action: Filter by action (exact match).
        actor_id: Filter by actor (exact match).
        subject_type: Filter by subject type (exact match).
        subject_id: Filter by subject ID (exact match).
        from_date: Filter entries on or after this ISO 8601 date.
        to_date: Filter entries on or before this ISO 8601 date.
        limit: Maximum number of results to return (default 50).

    Returns:
        A list of dicts, one per matching audit entry, newest first.
    """
    conn.row_factory = sqlite3.Row

    conditions: list[str] = []
    params: list[str | int] = []

    filters = (
        ("action = ?", action),
        ("actor_id = ?", actor_id),
        ("subject_type = ?", subject_type),
        ("subject_id = ?", subject_id),
        ("timestamp >= ?", from_date),
        ("timestamp <= ?", to_date),
    )
    for condition, value in filters:
        if value is not None:
            conditions.append(condition)
            params.append(value)

    where_clause = ""
    if conditions:
        where_clause = "WHERE " + " AND ".join(conditions)

    query = f"SELECT * FROM audit_log {where_clause} ORDER BY timestamp DESC, id DESC LIMIT ?"
    params.append(limit)

    rows = conn.execute(query, params).fetchall()

    results: list[dict[str, Any]] = []
    for row in rows:
        row_dict = dict(row)
        if row_dict.get("metadata") is not None:
            row_dict["metadata"] = json.loads(row_dict["metadata"])
        results.append(row_dict)

    return results


def close_audit_db(conn: sqlite3.Connection) -> None:
    """Close the audit database connection.

    Args:
        conn: The database connection to close.
    """
    conn.close()
