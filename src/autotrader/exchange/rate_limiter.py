"""Token-bucket rate limiting per logical endpoint class.

Each bucket refills continuously at ``rate`` tokens per second up to
``burst``. ``acquire`` waits for a token at most ``max_wait`` seconds and
then raises RateLimitExceeded so callers see backpressure instead of
queueing indefinitely.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum

from autotrader.exceptions import RateLimitExceeded
from autotrader.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_WAIT = 0.1  # seconds


class EndpointClass(str, Enum):
    """Logical endpoint families with distinct venue limits."""

    PUBLIC = "public"
    PRIVATE = "private"
    TRADING = "trading"


@dataclass(frozen=True)
class BucketSpec:
    rate: float  # tokens per second
    burst: int


OKX_BUCKETS: dict[EndpointClass, BucketSpec] = {
    EndpointClass.PUBLIC: BucketSpec(rate=10, burst=20),
    EndpointClass.PRIVATE: BucketSpec(rate=5, burst=10),
    EndpointClass.TRADING: BucketSpec(rate=2, burst=5),
}


class TokenBucket:
    """Async token bucket with a bounded wait.

    Args:
        rate: Refill rate in tokens per second.
        burst: Bucket capacity; the bucket starts full.
        max_wait: Longest time acquire() blocks before giving up.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        max_wait: float = DEFAULT_MAX_WAIT,
        clock=time.monotonic,
    ) -> None:
        self._rate = rate
        self._burst = burst
        self._max_wait = max_wait
        self._clock = clock
        self._tokens = float(burst)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self._burst, self._tokens + elapsed * self._rate)
            self._last_refill = now

    async def acquire(self) -> None:
        """Take one token, waiting up to max_wait for a refill."""
        async with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return

            wait = (1 - self._tokens) / self._rate
            if wait > self._max_wait:
                raise RateLimitExceeded("rate limit exceeded")

            await asyncio.sleep(wait)
            self._refill()
            if self._tokens < 1:
                raise RateLimitExceeded("rate limit exceeded")
            self._tokens -= 1


class RateLimiter:
    """One TokenBucket per endpoint class."""

    def __init__(
        self,
        buckets: dict[EndpointClass, BucketSpec] | None = None,
        max_wait: float = DEFAULT_MAX_WAIT,
    ) -> None:
        specs = buckets or OKX_BUCKETS
        self._buckets = {
            endpoint_class: TokenBucket(spec.rate, spec.burst, max_wait=max_wait)
            for endpoint_class, spec in specs.items()
        }

    async def acquire(self, endpoint_class: EndpointClass) -> None:
        try:
            await self._buckets[endpoint_class].acquire()
        except RateLimitExceeded:
            logger.warning("rate_limit_wait_exhausted", endpoint_class=endpoint_class.value)
            raise
