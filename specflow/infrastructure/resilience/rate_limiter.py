"""Rate limiter - fixed-window request counting per client key.

One instance per endpoint, owned by the DI container (no module-level state).
Counting and expiry are done by the `limits` fixed-window strategy over its
own storage:
- The first request of a client opens a window of window_seconds.
- Requests past max_requests inside the window are rejected until it ends.
- Expired windows are dropped by the storage; reset() clears all of them.
"""

import logging
import time
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter as _FixedWindowStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate-limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds when the window ends
    retry_after: float = 0.0  # seconds, set when rejected


class FixedWindowRateLimiter:
    """Fixed-window limiter.

    Usage:
        limiter = FixedWindowRateLimiter(max_requests=60, window_seconds=60)
        decision = limiter.check(client_ip)
        if not decision.allowed:
            ...  # 429 with Retry-After: decision.retry_after
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int = 60,
        storage: Storage | None = None,
        namespace: str = "specflow",
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        self.max_requests = max_requests
        self.window_seconds = int(window_seconds)
        self._item = RateLimitItemPerSecond(max_requests, self.window_seconds, namespace=namespace)
        self._storage = storage or MemoryStorage()
        self._strategy = _FixedWindowStrategy(self._storage)
        self._rejected = 0

    def check(self, key: str) -> RateLimitDecision:
        """Count one request for key and decide whether it may proceed."""
        allowed = self._strategy.hit(self._item, key)
        stats = self._strategy.get_window_stats(self._item, key)
        if allowed:
            return RateLimitDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=stats.remaining,
                reset_at=stats.reset_time,
            )
        self._rejected += 1
        logger.debug("Rate limit exceeded for %s", key)
        return RateLimitDecision(
            allowed=False,
            limit=self.max_requests,
            remaining=0,
            reset_at=stats.reset_time,
            retry_after=max(stats.reset_time - time.time(), 0.0),
        )

    def reset(self) -> None:
        """Forget all windows (for tests and admin resets)."""
        self._storage.reset()
        self._rejected = 0

    def get_stats(self) -> dict:
        return {
            "limit": self.max_requests,
            "window_seconds": self.window_seconds,
            "rejected": self._rejected,
        }
