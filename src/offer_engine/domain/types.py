"""Domain enumerations and status alias tables for the offer engine."""

from enum import StrEnum


class SellerKind(StrEnum):
    """The two seller namespaces. Ids never collide across kinds."""

    USER = "user"
    ORGANIZATION = "organization"


class SessionStatus(StrEnum):
    """Lifecycle of an offer session (negotiation thread)."""

    ACTIVE = "active"
    CLOSED = "closed"


class OfferStatus(StrEnum):
    """Status of a single proposal inside a session."""

    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTEROFFERED = "counteroffered"
    # Superseded by a merge; neither party rejected it.
    MERGED = "merged"


class OrderStatus(StrEnum):
    """Fulfillment lifecycle of an order."""

    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class ListingStatus(StrEnum):
    """Availability of a market listing."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class PaymentType(StrEnum):
    """How an offer's cost is charged."""

    ONE_TIME = "one-time"
    HOURLY = "hourly"
    DAILY = "daily"
    UNIT = "unit"
    BOX = "box"
    SCU = "scu"
    CSCU = "cscu"
    MSCU = "mscu"


class OfferAction(StrEnum):
    """Caller intents accepted by ``ResolveOffer`` / ``SubmitCounteroffer``."""

    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    COUNTEROFFER = "counteroffer"


class StockSubtractionTiming(StrEnum):
    """When a seller's inventory is decremented for an order."""

    ON_ACCEPTED = "on_accepted"
    DONT_SUBTRACT = "dont_subtract"


class Permission(StrEnum):
    """Organization permissions consulted by the engine."""

    MANAGE_ORDERS = "manage_orders"
    MANAGE_ORG = "manage_org"


# Explicit alias table: caller action -> resulting offer status.
# ``cancel`` resolves like ``reject`` but audit entries keep the original action.
ACTION_STATUS: dict[OfferAction, OfferStatus] = {
    OfferAction.ACCEPT: OfferStatus.ACCEPTED,
    OfferAction.REJECT: OfferStatus.REJECTED,
    OfferAction.CANCEL: OfferStatus.REJECTED,
    OfferAction.COUNTEROFFER: OfferStatus.COUNTEROFFERED,
}

# Human-readable names used in notification text.
ACTION_DISPLAY_NAMES: dict[OfferAction, str] = {
    OfferAction.ACCEPT: "Accepted",
    OfferAction.REJECT: "Rejected",
    OfferAction.CANCEL: "Rejected",
    OfferAction.COUNTEROFFER: "Counter-Offered",
}

OPEN_ORDER_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.NOT_STARTED, OrderStatus.IN_PROGRESS}
)
