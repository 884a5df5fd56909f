"""Identity/permission collaborator used by the engines.

The engines only ask one question: does an actor hold a given permission
over an organization?  :class:`StorePermissionResolver` answers it from the
``organization_members`` table; anything else implementing
:class:`PermissionResolver` can be injected instead.
"""

from __future__ import annotations

from typing import Protocol

from offer_engine.domain.models import OfferSession, Order
from offer_engine.domain.types import Permission
from offer_engine.state.store import MarketStore


class PermissionResolver(Protocol):
    def has_org_permission(self, actor_id: str, org_id: str, permission: Permission) -> bool: ...


class StorePermissionResolver:
    """Resolve organization permissions from the engine database."""

    def __init__(self, store: MarketStore) -> None:
        self._store = store

    def has_org_permission(self, actor_id: str, org_id: str, permission: Permission) -> bool:
        return self._store.has_member_permission(org_id, actor_id, permission.value)


def is_seller_side(
    resolver: PermissionResolver, actor_id: str, party: OfferSession | Order
) -> bool:
    """Return True if *actor_id* may act for the seller of *party*.

    That is the assigned individual, or a member holding ``manage_orders``
    on the seller organization.
    """
    if party.assigned_id is not None and party.assigned_id == actor_id:
        return True
    if party.org_id is not None:
        return resolver.has_org_permission(actor_id, party.org_id, Permission.MANAGE_ORDERS)
    return False


def is_related(resolver: PermissionResolver, actor_id: str, party: OfferSession | Order) -> bool:
    """Return True if *actor_id* is the customer or acts for the seller."""
    return party.customer_id == actor_id or is_seller_side(resolver, actor_id, party)
