"""Admission control - per-tenant, per-sender rate limiting."""

from src.services.ratelimit.limiter import (
    INBOUND_MESSAGE_POLICY,
    SEARCH_POLICY,
    RateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    get_rate_limiter,
)

__all__ = [
    "INBOUND_MESSAGE_POLICY",
    "SEARCH_POLICY",
    "RateLimiter",
    "RateLimitPolicy",
    "RateLimitResult",
    "get_rate_limiter",
]
