"""Offer sessions: negotiation and merging."""

from offer_engine.offers.engine import OfferSessionEngine, build_offer
from offer_engine.offers.merge import OfferMergeEngine, merged_terms

__all__ = ["OfferMergeEngine", "OfferSessionEngine", "build_offer", "merged_terms"]
