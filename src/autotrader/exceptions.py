"""Custom exceptions for the AI trading orchestrator.

Venue, AI-client and configuration exceptions live here to avoid circular
imports between the exchange, ai and orchestrator packages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from autotrader.models import AIResult


class TraderError(Exception):
    """Base exception for all trader errors."""


class TraderConfigError(TraderError):
    """Raised when a trader record fails validation at construction time."""


class ExchangeError(TraderError):
    """Raised when a venue rejects a request or cannot be reached.

    Args:
        message: Human-readable description.
        code: Venue error code, empty for transport failures.
    """

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class ExchangeAuthError(ExchangeError):
    """Raised when the venue rejects credentials, signature or source IP."""


class RetryableExchangeError(ExchangeError):
    """Raised for transient venue conditions (rate limit, too many orders, network)."""


class RateLimitExceeded(ExchangeError):
    """Raised when no rate-limiter token became available before the deadline."""


class TimestampOutOfRange(ExchangeError):
    """Raised locally when a request timestamp drifts more than 30s from server time."""


class ContractSizeError(ExchangeError):
    """Raised when a base quantity converts to far less than the minimum contract size."""


class PositionNotFoundError(ExchangeError):
    """Raised when closing a position that does not exist on the venue."""


class InsufficientMarginError(TraderError):
    """Raised when the margin guard cannot fit the minimum position value."""


class OrderRejectedError(TraderError):
    """Raised when the orchestrator refuses an open intent before reaching the venue."""


class ContextBuildError(TraderError):
    """Raised when the per-cycle context snapshot cannot be assembled."""


class StatsError(TraderError):
    """Raised by the Kelly engine for non-positive entry or mark prices."""


class AIClientError(TraderError):
    """Base for AI decision failures.

    Carries the partial ``AIResult`` (prompts, raw reply, any parsed
    decisions) so the caller can log what was produced before the failure.
    """

    def __init__(self, message: str, result: AIResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class AITransportError(AIClientError):
    """Raised when the AI endpoint is unreachable or returns a non-2xx status."""


class AIParseError(AIClientError):
    """Raised when the AI reply has no decodable decision block."""


class AIEmptyDecisionsError(AIClientError):
    """Raised when the AI reply parses but contains no valid decisions."""
