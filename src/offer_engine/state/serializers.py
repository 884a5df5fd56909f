"""Row <-> model helpers for the SQLite store.

Rows come back as ``sqlite3.Row``; these helpers turn them into the domain
models and handle the JSON-encoded id lists stored for merges.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import UTC, datetime

from offer_engine.domain.models import (
    ListingItem,
    MarketListing,
    Offer,
    OfferSession,
    Order,
    Organization,
    PublicContract,
    Service,
)


def utc_now() -> str:
    """Return the current UTC time as an ISO 8601 string with microseconds.

    Microsecond precision keeps offers within a session strictly ordered.
    """
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def new_id() -> str:
    return str(uuid.uuid4())


def serialize_ids(ids: list[str]) -> str:
    return json.dumps(ids)


def deserialize_ids(json_str: str) -> list[str]:
    result: list[str] = json.loads(json_str)
    return result


def row_to_listing(row: sqlite3.Row) -> MarketListing:
    return MarketListing(**dict(row))


def row_to_organization(row: sqlite3.Row) -> Organization:
    return Organization(org_id=row["org_id"], name=row["name"], archived=bool(row["archived"]))


def row_to_service(row: sqlite3.Row) -> Service:
    return Service(**dict(row))


def row_to_contract(row: sqlite3.Row) -> PublicContract:
    return PublicContract(**dict(row))


def row_to_session(row: sqlite3.Row) -> OfferSession:
    return OfferSession(**dict(row))


def row_to_offer(row: sqlite3.Row, listings: list[ListingItem] | None = None) -> Offer:
    """Build an :class:`Offer`, attaching its listing commitments if given."""
    return Offer(**dict(row), market_listings=listings or [])


def row_to_order(row: sqlite3.Row) -> Order:
    return Order(**dict(row))
