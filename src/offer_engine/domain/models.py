"""Pydantic v2 models for the offer engine's entities and value objects."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from offer_engine.domain.types import (
    ListingStatus,
    OfferAction,
    OfferStatus,
    OrderStatus,
    PaymentType,
    SellerKind,
    SessionStatus,
)


def _exactly_one_seller(user_id: str | None, org_id: str | None) -> None:
    if (user_id is None) == (org_id is None):
        raise ValueError("exactly one of an individual seller or an organization is required")


class SellerKey(BaseModel):
    """Identity of a seller: an individual user or an organization.

    Hashable, so it can key the seller lock table directly.
    """

    model_config = ConfigDict(frozen=True)

    kind: SellerKind
    id: str

    @classmethod
    def user(cls, user_id: str) -> SellerKey:
        return cls(kind=SellerKind.USER, id=user_id)

    @classmethod
    def organization(cls, org_id: str) -> SellerKey:
        return cls(kind=SellerKind.ORGANIZATION, id=org_id)

    @classmethod
    def from_ids(cls, user_id: str | None, org_id: str | None) -> SellerKey:
        """Build a key from the nullable ``(user, organization)`` column pair."""
        _exactly_one_seller(user_id, org_id)
        if org_id is not None:
            return cls.organization(org_id)
        return cls.user(user_id)  # type: ignore[arg-type]

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class MarketListing(BaseModel):
    """A unit of finite, sellable inventory."""

    listing_id: str
    title: str = ""
    price: int = 0
    quantity_available: int
    status: ListingStatus = ListingStatus.ACTIVE
    user_seller_id: str | None = None
    org_seller_id: str | None = None

    @field_validator("quantity_available", "price")
    @classmethod
    def must_not_be_negative(cls, v: int) -> int:
        """Quantity and price are non-negative integers."""
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @model_validator(mode="after")
    def one_seller(self) -> MarketListing:
        _exactly_one_seller(self.user_seller_id, self.org_seller_id)
        return self

    @property
    def seller(self) -> SellerKey:
        return SellerKey.from_ids(self.user_seller_id, self.org_seller_id)


class ListingItem(BaseModel):
    """A requested ``(listing, quantity)`` commitment.

    Quantity is deliberately unvalidated here; the listing verifier owns that
    rule so callers get ``InvalidQuantity`` rather than a validation error.
    """

    model_config = ConfigDict(frozen=True)

    listing_id: str
    quantity: int


class VerifiedItem(BaseModel):
    """A listing snapshot bound to the quantity requested from it."""

    model_config = ConfigDict(frozen=True)

    listing: MarketListing
    quantity: int

    @property
    def listing_id(self) -> str:
        return self.listing.listing_id

    @property
    def subtotal(self) -> int:
        return self.listing.price * self.quantity


class VerifiedItems(BaseModel):
    """Result of a successful verification: items plus their single seller."""

    model_config = ConfigDict(frozen=True)

    items: list[VerifiedItem] = Field(default_factory=list)
    seller: SellerKey | None = None

    @property
    def total_price(self) -> int:
        return sum(item.subtotal for item in self.items)

    def as_listing_items(self) -> list[ListingItem]:
        return [ListingItem(listing_id=i.listing_id, quantity=i.quantity) for i in self.items]


class OfferTerms(BaseModel):
    """Commercial terms carried by an offer."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: str = ""
    kind: str | None = None
    cost: int
    payment_type: PaymentType = PaymentType.ONE_TIME
    collateral: int | None = None
    service_id: str | None = None

    @field_validator("title")
    @classmethod
    def title_length(cls, v: str) -> str:
        """Titles are 1-100 characters."""
        if not v.strip() or len(v) > 100:
            raise ValueError("title must be between 1 and 100 characters")
        return v

    @field_validator("description")
    @classmethod
    def description_length(cls, v: str) -> str:
        if len(v) > 2000:
            raise ValueError("description must be at most 2000 characters")
        return v

    @field_validator("cost")
    @classmethod
    def cost_not_negative(cls, v: int) -> int:
        """Cost is a non-negative amount in currency minor units."""
        if v < 0:
            raise ValueError("cost must not be negative")
        return v

    @field_validator("collateral")
    @classmethod
    def collateral_not_negative(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError("collateral must not be negative")
        return v


class OfferSession(BaseModel):
    """A negotiation thread between one buyer and one seller."""

    session_id: str
    customer_id: str
    assigned_id: str | None = None
    org_id: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    thread_id: str | None = None
    contract_id: str | None = None
    created_at: str

    @model_validator(mode="after")
    def one_seller(self) -> OfferSession:
        _exactly_one_seller(self.assigned_id, self.org_id)
        return self

    @property
    def seller(self) -> SellerKey:
        return SellerKey.from_ids(self.assigned_id, self.org_id)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE


class Offer(BaseModel):
    """One versioned proposal inside a session."""

    offer_id: str
    session_id: str
    actor_id: str
    title: str
    description: str = ""
    kind: str | None = None
    cost: int
    payment_type: PaymentType = PaymentType.ONE_TIME
    collateral: int | None = None
    service_id: str | None = None
    status: OfferStatus = OfferStatus.ACTIVE
    created_at: str
    market_listings: list[ListingItem] = Field(default_factory=list)

    @property
    def terms(self) -> OfferTerms:
        return OfferTerms(
            title=self.title,
            description=self.description,
            kind=self.kind,
            cost=self.cost,
            payment_type=self.payment_type,
            collateral=self.collateral,
            service_id=self.service_id,
        )


class Order(BaseModel):
    """The fulfillment object created when an offer is accepted."""

    order_id: str
    offer_session_id: str | None = None
    customer_id: str
    assigned_id: str | None = None
    org_id: str | None = None
    title: str
    description: str = ""
    kind: str | None = None
    cost: int
    payment_type: PaymentType = PaymentType.ONE_TIME
    collateral: int | None = None
    service_id: str | None = None
    status: OrderStatus = OrderStatus.NOT_STARTED
    thread_id: str | None = None
    created_at: str

    @property
    def seller(self) -> SellerKey:
        # Assigned users may be set on org orders, so the org wins.
        if self.org_id is not None:
            return SellerKey.organization(self.org_id)
        if self.assigned_id is None:
            raise ValueError(f"order {self.order_id} has no seller")
        return SellerKey.user(self.assigned_id)


class Organization(BaseModel):
    org_id: str
    name: str
    archived: bool = False


class Service(BaseModel):
    service_id: str
    user_id: str | None = None
    org_id: str | None = None
    status: str = "active"


class PublicContract(BaseModel):
    contract_id: str
    customer_id: str
    title: str = ""
    status: str = "active"


class ResolveResult(BaseModel):
    """Outcome of accepting, rejecting or cancelling the current offer."""

    session_id: str
    offer_id: str
    action: OfferAction
    status: OfferStatus
    order_id: str | None = None


class MergeResult(BaseModel):
    """Outcome of folding several sessions into one."""

    merge_id: str
    session: OfferSession
    offer: Offer
    source_session_ids: list[str]
    combined_cost: int

    @property
    def message(self) -> str:
        return (
            f"Successfully merged {len(self.source_session_ids)} offer sessions "
            "into new merged offer"
        )


class CancelResult(BaseModel):
    """Outcome of cancelling an order."""

    order: Order
    already_cancelled: bool = False
    released: list[ListingItem] = Field(default_factory=list)


class ArchiveResult(BaseModel):
    """Outcome of archiving an organization."""

    already_archived: bool
    archived_at: str | None = None
    archived_label: str | None = None
    listings_archived: int = 0
    sessions_rejected: int = 0
    orders_cancelled: int = 0
