"""
Rate Limiter

Sliding-window rate limiting per provider across minute, hour and day
windows. A call that would exceed any window is rejected immediately
rather than queued, so no network request is made.
"""
import asyncio
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Callable, Optional
from loguru import logger

from venue_aggregator.data_providers.adapters.base import RateLimitError


WINDOWS = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting (0 or None = unlimited)."""
    requests_per_minute: Optional[int] = None
    requests_per_hour: Optional[int] = None
    requests_per_day: Optional[int] = None

    def limits(self) -> dict[str, int]:
        values = {
            "minute": self.requests_per_minute,
            "hour": self.requests_per_hour,
            "day": self.requests_per_day,
        }
        return {window: limit for window, limit in values.items() if limit}


@dataclass
class WindowCounter:
    """Sliding window counter for rate limiting."""
    limit: int
    window_seconds: int
    requests: deque = field(default_factory=deque)

    def can_proceed(self, now: float) -> bool:
        """Check if we can make a request within the limit."""
        self._cleanup(now)
        return len(self.requests) < self.limit

    def record_request(self, now: float) -> None:
        """Record a new request."""
        self._cleanup(now)
        self.requests.append(now)

    def _cleanup(self, now: float) -> None:
        """Remove expired requests from the window."""
        cutoff = now - self.window_seconds
        while self.requests and self.requests[0] <= cutoff:
            self.requests.popleft()

    def time_until_available(self, now: float) -> float:
        """Calculate seconds until a slot is available."""
        self._cleanup(now)
        if len(self.requests) < self.limit:
            return 0.0
        return max(0.0, self.requests[0] + self.window_seconds - now)

    def remaining(self, now: float) -> int:
        """Get remaining requests in current window."""
        self._cleanup(now)
        return max(0, self.limit - len(self.requests))


class RateLimiter:
    """
    Rate limiter with independent minute/hour/day windows per provider.

    Features:
    - Reject-without-call when any window is full
    - Per-provider locks so concurrent tasks cannot overshoot a window
    - Remaining quota and wait time introspection
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._counters: dict[str, dict[str, WindowCounter]] = {}
        self._configs: dict[str, RateLimitConfig] = {}
        self._rejections: dict[str, int] = defaultdict(int)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def configure(self, provider: str, config: RateLimitConfig) -> None:
        """Configure rate limits for a provider, keeping history of windows that survive."""
        previous = self._counters.get(provider, {})
        counters = {}
        for window, limit in config.limits().items():
            counter = WindowCounter(limit=limit, window_seconds=WINDOWS[window])
            if window in previous:
                counter.requests = previous[window].requests
            counters[window] = counter

        self._configs[provider] = config
        self._counters[provider] = counters
        logger.info(f"Rate limiter configured for {provider}: {config.limits() or 'unlimited'}")

    async def try_acquire(self, provider: str) -> None:
        """
        Record one request for the provider.

        Raises:
            RateLimitError: A window is full; nothing was recorded
        """
        async with self._locks[provider]:
            now = self._clock()
            counters = self._counters.get(provider, {})

            blocked = [c for c in counters.values() if not c.can_proceed(now)]
            if blocked:
                wait = max(c.time_until_available(now) for c in blocked)
                self._rejections[provider] += 1
                logger.debug(f"Rate limit reached for {provider}, retry in {wait:.1f}s")
                raise RateLimitError(provider, retry_after=round(wait, 3), local=True)

            for counter in counters.values():
                counter.record_request(now)

    def can_proceed(self, provider: str) -> bool:
        """Check if a request can be made without blocking."""
        now = self._clock()
        return all(c.can_proceed(now) for c in self._counters.get(provider, {}).values())

    def time_until_available(self, provider: str) -> float:
        now = self._clock()
        return max(
            (c.time_until_available(now) for c in self._counters.get(provider, {}).values()),
            default=0.0,
        )

    def get_remaining(self, provider: str) -> dict[str, Optional[int]]:
        """Get remaining requests for each window (None = unlimited)."""
        now = self._clock()
        counters = self._counters.get(provider, {})
        return {
            window: counters[window].remaining(now) if window in counters else None
            for window in WINDOWS
        }

    def get_stats(self, provider: str) -> dict:
        """Get rate limiting statistics for a provider."""
        config = self._configs.get(provider)
        if not config:
            return {"configured": False}

        return {
            "configured": True,
            "limits": config.limits(),
            "remaining": self.get_remaining(provider),
            "rejections": self._rejections[provider],
            "can_proceed": self.can_proceed(provider),
        }

    def reset(self, provider: Optional[str] = None) -> None:
        """Clear recorded requests for one or all providers."""
        providers = [provider] if provider else list(self._counters)
        for name in providers:
            for counter in self._counters.get(name, {}).values():
                counter.requests.clear()
            self._rejections[name] = 0
