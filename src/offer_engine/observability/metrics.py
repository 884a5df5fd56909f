"""Prometheus metrics instrumentation for the offer engine.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus custom business metrics.
- ``OPEN_SESSIONS``: Gauge tracking offer sessions opened and not yet closed.
- ``OFFERS_CREATED`` / ``ORDERS_CREATED`` / ``ORDERS_CANCELLED`` / ``SESSIONS_MERGED``:
  Counters for engine transitions.
- ``LOCK_WAIT_SECONDS``: Histogram of time spent waiting for a seller lock.

Business metrics are updated at state transitions (not by polling the database).
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

OPEN_SESSIONS: Gauge = Gauge(
    "offer_engine_open_sessions",
    "Number of offer sessions opened by this process and not yet closed",
)

OFFERS_CREATED: Counter = Counter(
    "offer_engine_offers_created_total",
    "Total number of offers created, by origin",
    ["origin"],
)

ORDERS_CREATED: Counter = Counter(
    "offer_engine_orders_created_total",
    "Total number of orders created from accepted offers",
)

ORDERS_CANCELLED: Counter = Counter(
    "offer_engine_orders_cancelled_total",
    "Total number of orders moved to cancelled",
)

SESSIONS_MERGED: Counter = Counter(
    "offer_engine_merges_total",
    "Total number of successful offer session merges",
)

LOCK_WAIT_SECONDS: Histogram = Histogram(
    "offer_engine_seller_lock_wait_seconds",
    "Time spent waiting to acquire a seller lock",
    ["kind"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
