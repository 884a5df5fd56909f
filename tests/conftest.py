"""Shared pytest fixtures for the offer engine test suite."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator

import pytest

from offer_engine.audit.store import init_audit_table
from offer_engine.domain.models import (
    MarketListing,
    OfferTerms,
    Organization,
    PublicContract,
    Service,
)
from offer_engine.domain.types import ListingStatus, Permission
from offer_engine.notifications.models import NotificationEvent
from offer_engine.state.schema import connect, init_engine_tables
from offer_engine.state.store import MarketStore
from offer_engine.wiring import Engines, build_engines


class RecordingNotifier:
    """Notifier that keeps every event it is sent."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    async def send(self, event: NotificationEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type.value for event in self.events]


class Seeder:
    """Insert marketplace fixtures directly through the store."""

    def __init__(self, store: MarketStore) -> None:
        self.store = store

    def org(
        self,
        org_id: str = "org-1",
        name: str = "Acme Hauling",
        *,
        managers: tuple[str, ...] = ("manager",),
        owners: tuple[str, ...] = ("owner",),
    ) -> Organization:
        org = Organization(org_id=org_id, name=name)
        self.store.insert_organization(org)
        for user_id in managers:
            self.store.add_member(org_id, user_id, Permission.MANAGE_ORDERS.value)
        for user_id in owners:
            self.store.add_member(org_id, user_id, Permission.MANAGE_ORDERS.value)
            self.store.add_member(org_id, user_id, Permission.MANAGE_ORG.value)
        return org

    def listing(
        self,
        listing_id: str,
        quantity: int,
        *,
        price: int = 10,
        user: str | None = None,
        org: str | None = None,
        status: ListingStatus = ListingStatus.ACTIVE,
    ) -> MarketListing:
        listing = MarketListing(
            listing_id=listing_id,
            title=f"Listing {listing_id}",
            price=price,
            quantity_available=quantity,
            status=status,
            user_seller_id=user,
            org_seller_id=org,
        )
        self.store.insert_listing(listing)
        return listing

    def service(self, service_id: str, *, user: str | None = None, org: str | None = None) -> None:
        self.store.insert_service(Service(service_id=service_id, user_id=user, org_id=org))

    def contract(self, contract_id: str, customer_id: str, *, status: str = "active") -> None:
        self.store.insert_contract(
            PublicContract(
                contract_id=contract_id,
                customer_id=customer_id,
                title="Escort run",
                status=status,
            )
        )


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def conn(tmp_path) -> Iterator[sqlite3.Connection]:
    """File-backed engine database with every table created."""
    connection = connect(tmp_path / "engine.db")
    init_engine_tables(connection)
    init_audit_table(connection)
    yield connection
    connection.close()


@pytest.fixture
def store(conn: sqlite3.Connection) -> MarketStore:
    return MarketStore(conn)


@pytest.fixture
def seed(store: MarketStore) -> Seeder:
    return Seeder(store)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engines(conn: sqlite3.Connection, notifier: RecordingNotifier) -> Engines:
    """All engines wired onto the test database with a short lock timeout."""
    return build_engines(conn, lock_timeout=5.0, notifier=notifier)


@pytest.fixture
def terms() -> OfferTerms:
    """Plain terms for a hauling job."""
    return OfferTerms(title="Haul cargo to Area18", description="Two runs", cost=100)
