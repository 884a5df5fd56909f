"""Resilience infrastructure for outbound calls with retry and failure logging."""

from offer_engine.resilience.retry import resilient_api_call

__all__ = [
    "resilient_api_call",
]
