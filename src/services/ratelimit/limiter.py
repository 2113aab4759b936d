"""Sliding-window admission control keyed by tenant and sender."""

import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from src.core.config import settings
from src.core.locks import KeyedLock

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitPolicy:
    """Maximum requests per window for one channel class."""

    name: str
    max_requests: int
    window_seconds: int


@dataclass
class RateLimitResult:
    """Outcome of an admission check."""

    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int
    checked_at: datetime

    @property
    def retry_after(self) -> int:
        """Whole seconds until the oldest request leaves the window (at least 1)."""
        seconds = (self.reset_at - self.checked_at).total_seconds()
        return max(1, math.ceil(seconds))


INBOUND_MESSAGE_POLICY = RateLimitPolicy(
    name="inbound_message",
    max_requests=settings.inbound_rate_limit_requests,
    window_seconds=settings.inbound_rate_limit_window,
)

SEARCH_POLICY = RateLimitPolicy(
    name="search",
    max_requests=settings.search_rate_limit_requests,
    window_seconds=settings.search_rate_limit_window,
)


class RateLimiter:
    """In-process sliding-window log limiter.

    Each key holds the timestamps of admitted requests inside the current
    window. Reading the log and appending to it happen under a per-key lock,
    so concurrent turns from the same sender cannot both take the last slot.
    Rejected requests are not recorded.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._windows: dict[str, deque[float]] = {}
        self._locks = KeyedLock()

    @staticmethod
    def _key(tenant_id: str, identifier: str, policy: RateLimitPolicy) -> str:
        return f"{policy.name}:{tenant_id}:{identifier}"

    async def check(
        self,
        tenant_id: str,
        identifier: str,
        policy: RateLimitPolicy = INBOUND_MESSAGE_POLICY,
    ) -> RateLimitResult:
        """Admit or reject one request and record it when admitted.

        Args:
            tenant_id: Tenant the sender belongs to
            identifier: Sender identity within the tenant (phone number)
            policy: Window length and request budget

        Returns:
            RateLimitResult with the remaining budget and window reset time
        """
        key = self._key(tenant_id, identifier, policy)

        async with self._locks.hold(key):
            now = self._clock()
            window_start = now - policy.window_seconds
            log = self._windows.setdefault(key, deque())
            while log and log[0] <= window_start:
                log.popleft()

            allowed = len(log) < policy.max_requests
            if allowed:
                log.append(now)

            oldest = log[0] if log else now
            reset_at = oldest + policy.window_seconds
            remaining = max(0, policy.max_requests - len(log))

        result = RateLimitResult(
            allowed=allowed,
            remaining=remaining,
            reset_at=datetime.fromtimestamp(reset_at, tz=timezone.utc),
            limit=policy.max_requests,
            checked_at=datetime.fromtimestamp(now, tz=timezone.utc),
        )

        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                tenant_id=tenant_id,
                policy=policy.name,
                retry_after=result.retry_after,
            )

        return result

    def reset(self, tenant_id: str | None = None) -> None:
        """Drop recorded windows, for one tenant or all of them."""
        if tenant_id is None:
            self._windows.clear()
            return
        for key in [k for k in self._windows if k.split(":", 2)[1] == tenant_id]:
            del self._windows[key]


# Singleton instance
_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the rate limiter singleton."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Reset the rate limiter singleton (for testing)."""
    global _rate_limiter
    _rate_limiter = None
