"""Tests for build_engines wiring."""

from __future__ import annotations

from pathlib import Path

import pytest

from offer_engine.domain.errors import LockTimeoutError
from offer_engine.domain.models import OfferTerms, SellerKey
from offer_engine.locks.seller_lock import DEFAULT_ACQUIRE_TIMEOUT
from offer_engine.state.schema import connect
from offer_engine.wiring import build_engines


def test_creates_tables_on_fresh_database(tmp_path: Path) -> None:
    conn = connect(tmp_path / "fresh.db")
    try:
        engines = build_engines(conn)
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {"offer_sessions", "offers", "orders", "audit_log"} <= tables
        assert engines.locks.acquire_timeout == DEFAULT_ACQUIRE_TIMEOUT
    finally:
        conn.close()


@pytest.mark.anyio()
async def test_engines_share_one_lock_table(tmp_path: Path, terms: OfferTerms) -> None:
    conn = connect(tmp_path / "shared.db")
    try:
        engines = build_engines(conn, lock_timeout=0.05)
        seller = SellerKey.user("seller")
        session, _ = await engines.offers.open_session("buyer", seller, terms)
        other, _ = await engines.offers.open_session("buyer", seller, terms)

        async with engines.locks.hold(seller):
            with pytest.raises(LockTimeoutError):
                await engines.merges.merge([session.session_id, other.session_id], "buyer")
    finally:
        conn.close()
