"""Domain types, models, and errors for the offer engine."""

from offer_engine.domain.errors import (
    AlreadyClosedError,
    BlockedError,
    ErrorKind,
    InvalidListingError,
    InvalidQuantityError,
    InvalidServiceError,
    InvalidSessionStateError,
    InvalidStatusError,
    LockTimeoutError,
    MixedSellersError,
    NotFoundError,
    OfferEngineError,
    SellerArchivedError,
    SelfTradeError,
    TooFewSessionsError,
    UnauthorizedError,
)
from offer_engine.domain.models import (
    ArchiveResult,
    CancelResult,
    ListingItem,
    MarketListing,
    MergeResult,
    Offer,
    OfferSession,
    OfferTerms,
    Order,
    Organization,
    PublicContract,
    ResolveResult,
    SellerKey,
    Service,
    VerifiedItem,
    VerifiedItems,
)
from offer_engine.domain.types import (
    ACTION_STATUS,
    ListingStatus,
    OfferAction,
    OfferStatus,
    OrderStatus,
    PaymentType,
    Permission,
    SellerKind,
    SessionStatus,
    StockSubtractionTiming,
)

__all__ = [
    "ACTION_STATUS",
    "AlreadyClosedError",
    "ArchiveResult",
    "BlockedError",
    "CancelResult",
    "ErrorKind",
    "InvalidListingError",
    "InvalidQuantityError",
    "InvalidServiceError",
    "InvalidSessionStateError",
    "InvalidStatusError",
    "ListingItem",
    "ListingStatus",
    "LockTimeoutError",
    "MarketListing",
    "MergeResult",
    "MixedSellersError",
    "NotFoundError",
    "Offer",
    "OfferAction",
    "OfferEngineError",
    "OfferSession",
    "OfferStatus",
    "OfferTerms",
    "Order",
    "OrderStatus",
    "Organization",
    "PaymentType",
    "Permission",
    "PublicContract",
    "ResolveResult",
    "SellerArchivedError",
    "SellerKey",
    "SellerKind",
    "SelfTradeError",
    "Service",
    "SessionStatus",
    "StockSubtractionTiming",
    "TooFewSessionsError",
    "UnauthorizedError",
    "VerifiedItem",
    "VerifiedItems",
]
