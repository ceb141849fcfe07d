"""Resilience patterns - rate limiting."""

from specflow.infrastructure.resilience.rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitDecision,
)

__all__ = ["FixedWindowRateLimiter", "RateLimitDecision"]
