"""Exponential-backoff retry for venue requests.

Transient venue codes and network-class failures are retried up to
``max_retries`` times with delays of base, 2*base, 4*base ... capped at
``max_delay``. Anything else propagates on the first failure.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

from autotrader.config import TransactionSettings
from autotrader.exceptions import ExchangeError, RetryableExchangeError
from autotrader.exchange.okx_errors import is_network_error
from autotrader.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: TransactionSettings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_interval_seconds,
            max_delay=settings.max_backoff_seconds,
        )

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        if attempt <= 0:
            return 0.0
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def is_retryable(error: Exception, idempotent: bool = True) -> bool:
    """True for curated transient venue codes and, on reads, network-class failures.

    A write that failed in transport may already have executed, so only the
    curated venue codes are retried for non-idempotent calls.
    """
    if isinstance(error, RetryableExchangeError):
        return True
    if not idempotent:
        return False
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, ExchangeError) and error.code:
        return False
    return is_network_error(error)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    idempotent: bool = True,
    description: str = "",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation``, retrying transient failures per ``policy``.

    Raises:
        The last exception once retries are exhausted, or the first
        non-retryable exception.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e, idempotent) or attempt >= policy.max_retries:
                raise
            attempt += 1
            delay = policy.delay(attempt)
            logger.warning(
                "venue_request_retry",
                operation=description,
                attempt=attempt,
                max_retries=policy.max_retries,
                delay=delay,
                error=str(e),
            )
            await sleep(delay)
