"""Offer engine persistence package.

Provides the SQLite schema, the :class:`MarketStore` repository, and the
``transaction`` helper that makes multi-row changes atomic.
"""

from offer_engine.state.schema import connect, init_engine_tables
from offer_engine.state.serializers import new_id, utc_now
from offer_engine.state.store import MarketStore, transaction

__all__ = [
    "MarketStore",
    "connect",
    "init_engine_tables",
    "new_id",
    "transaction",
    "utc_now",
]
