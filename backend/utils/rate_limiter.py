import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from utils.logger import get_logger

logger = get_logger("rate_limiter")


@dataclass
class RateLimitConfig:
    """Requests allowed per window for one upstream endpoint family."""

    requests_per_window: int
    window_seconds: float = 10.0
    burst_limit: Optional[int] = None


@dataclass
class TokenBucket:
    capacity: float
    tokens: float
    refill_rate: float  # tokens per second
    last_refill: float = field(default_factory=time.monotonic)

    def refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.last_refill) * self.refill_rate)
        self.last_refill = now

    def wait_time(self, tokens: int = 1) -> float:
        self.refill()
        if self.tokens >= tokens:
            return 0.0
        return (tokens - self.tokens) / self.refill_rate


class RateLimiter:
    """Token-bucket limiter shared by every tenant of the process.

    Tenants never call the upstream directly; the market feed client acquires
    a token here before each request, so the upstream load of a tick is bounded
    by these limits whatever the tenant count.
    """

    # Published Polymarket limits (docs.polymarket.com)
    LIMITS = {
        "gamma_markets": RateLimitConfig(requests_per_window=300, window_seconds=10),
        "gamma_general": RateLimitConfig(requests_per_window=4000, window_seconds=10),
        "clob_book": RateLimitConfig(requests_per_window=1500, window_seconds=10),
        "clob_trades": RateLimitConfig(requests_per_window=200, window_seconds=10),
        "clob_general": RateLimitConfig(requests_per_window=9000, window_seconds=10),
    }

    def __init__(self, limits: Optional[Dict[str, RateLimitConfig]] = None):
        self._limits = dict(limits or self.LIMITS)
        self._buckets: Dict[str, TokenBucket] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_bucket(self, endpoint: str) -> TokenBucket:
        bucket = self._buckets.get(endpoint)
        if bucket is None:
            config = self._limits.get(endpoint, RateLimitConfig(1000, 10))
            capacity = float(config.burst_limit or config.requests_per_window)
            bucket = TokenBucket(
                capacity=capacity,
                tokens=capacity,
                refill_rate=config.requests_per_window / config.window_seconds,
            )
            self._buckets[endpoint] = bucket
        return bucket

    def _get_lock(self, endpoint: str) -> asyncio.Lock:
        if endpoint not in self._locks:
            self._locks[endpoint] = asyncio.Lock()
        return self._locks[endpoint]

    async def acquire(self, endpoint: str, tokens: int = 1) -> float:
        """Block until ``tokens`` are available; returns the time waited."""
        async with self._get_lock(endpoint):
            bucket = self._get_bucket(endpoint)
            wait_time = bucket.wait_time(tokens)
            if wait_time > 0:
                logger.debug("Rate limit wait", endpoint=endpoint, wait_seconds=wait_time)
                await asyncio.sleep(wait_time)
                bucket.refill()
            bucket.tokens = max(0.0, bucket.tokens - tokens)
            return wait_time

    def get_status(self) -> Dict[str, dict]:
        status = {}
        for endpoint, bucket in self._buckets.items():
            bucket.refill()
            status[endpoint] = {
                "available_tokens": bucket.tokens,
                "capacity": bucket.capacity,
                "refill_rate": bucket.refill_rate,
            }
        return status


rate_limiter = RateLimiter()


def endpoint_for_url(url: str) -> str:
    """Map an upstream URL to its rate limit family."""
    if "gamma-api" in url:
        if "/markets" in url:
            return "gamma_markets"
        return "gamma_general"
    if "clob" in url:
        if "/book" in url:
            return "clob_book"
        if "/trades" in url:
            return "clob_trades"
        return "clob_general"
    return "default"
