"""Domain-specific exception classes for the offer engine.

Every rejected operation raises a subclass of :class:`OfferEngineError`
carrying a stable :class:`ErrorKind` and a human-readable message.  Errors
are raised before any write, so a caught error implies no partial mutation.
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Stable error kinds surfaced to callers."""

    INVALID_LISTING = "InvalidListing"
    INVALID_QUANTITY = "InvalidQuantity"
    SELF_TRADE = "SelfTrade"
    MIXED_SELLERS = "MixedSellers"
    SELLER_ARCHIVED = "SellerArchived"
    INVALID_SERVICE = "InvalidService"
    INVALID_SESSION_STATE = "InvalidSessionState"
    TOO_FEW_SESSIONS = "TooFewSessions"
    ALREADY_CLOSED = "AlreadyClosed"
    UNAUTHORIZED = "Unauthorized"
    NOT_FOUND = "NotFound"
    INVALID_STATUS = "InvalidStatus"
    LOCK_TIMEOUT = "LockTimeout"
    BLOCKED = "Blocked"


class OfferEngineError(Exception):
    """Base class for all domain errors in the offer engine.

    Attributes:
        kind: The stable error kind.
        message: Human-readable explanation.
    """

    kind: ErrorKind = ErrorKind.INVALID_SESSION_STATE
    default_message = "Operation rejected"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        """Return the error as a ``{"error": kind, "message": ...}`` payload."""
        return {"error": self.kind.value, "message": self.message}


class InvalidListingError(OfferEngineError):
    """A listing is missing or not active."""

    kind = ErrorKind.INVALID_LISTING
    default_message = "Invalid listing"


class InvalidQuantityError(OfferEngineError):
    """A requested quantity is non-positive or exceeds availability."""

    kind = ErrorKind.INVALID_QUANTITY
    default_message = "Invalid quantity"


class SelfTradeError(OfferEngineError):
    kind = ErrorKind.SELF_TRADE
    default_message = "You cannot buy your own item!"


class MixedSellersError(OfferEngineError):
    kind = ErrorKind.MIXED_SELLERS
    default_message = "All items must be from same seller"


class SellerArchivedError(OfferEngineError):
    kind = ErrorKind.SELLER_ARCHIVED
    default_message = "Seller organization has been archived"


class InvalidServiceError(OfferEngineError):
    kind = ErrorKind.INVALID_SERVICE
    default_message = "Invalid service"


class InvalidSessionStateError(OfferEngineError):
    kind = ErrorKind.INVALID_SESSION_STATE
    default_message = "Offer session is not in a valid state for this operation"


class TooFewSessionsError(OfferEngineError):
    kind = ErrorKind.TOO_FEW_SESSIONS
    default_message = "At least two offer sessions are required to merge"


class AlreadyClosedError(OfferEngineError):
    kind = ErrorKind.ALREADY_CLOSED
    default_message = "This offer session or order is already closed"


class UnauthorizedError(OfferEngineError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Not authorized"


class NotFoundError(OfferEngineError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class InvalidStatusError(OfferEngineError):
    """Raised when an order status transition is not allowed.

    Attributes:
        current_status: The status the order was in.
        requested: The status that was requested.
    """

    kind = ErrorKind.INVALID_STATUS

    def __init__(self, current_status: str, requested: str) -> None:
        self.current_status = current_status
        self.requested = requested
        super().__init__(f"Cannot move order from '{current_status}' to '{requested}'")


class LockTimeoutError(OfferEngineError):
    """Raised when a seller lock cannot be acquired within the configured bound."""

    kind = ErrorKind.LOCK_TIMEOUT

    def __init__(self, key: object, timeout: float) -> None:
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for seller lock {key}")


class BlockedError(OfferEngineError):
    kind = ErrorKind.BLOCKED
    default_message = "You are blocked from creating offers with this seller"
