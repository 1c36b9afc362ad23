"""OKX error-code classification.

Maps venue codes onto the exception hierarchy: a curated set of transient
codes is retryable, authentication codes are permanent, everything else
surfaces as a plain ExchangeError for the single intent that caused it.
"""

from autotrader.exceptions import (
    ExchangeAuthError,
    ExchangeError,
    RetryableExchangeError,
)

OKX_ERROR_MESSAGES: dict[str, str] = {
    "50001": "Request header OK-ACCESS-KEY cannot be blank",
    "50002": "Request header OK-ACCESS-SIGN cannot be blank",
    "50003": "Request header OK-ACCESS-TIMESTAMP cannot be blank",
    "50004": "Request header OK-ACCESS-PASSPHRASE cannot be blank",
    "50005": "Invalid OK-ACCESS-KEY",
    "50006": "Invalid OK-ACCESS-SIGN",
    "50007": "Invalid timestamp",
    "50008": "Invalid passphrase",
    "50011": "Rate limit exceeded",
    "50013": "Invalid IP",
    "50029": "API key blocked",
    "50035": "Invalid instrument ID",
    "50044": "Insufficient balance",
    "50050": "Position not found",
    "50061": "Too many orders",
    "50062": "Invalid leverage",
    "50063": "Invalid margin mode",
    "50064": "Invalid position mode",
    "50100": "Invalid API key",
    "51010": "Insufficient balance",
    "58101": "Position not found",
    "58106": "Position margin is insufficient",
    "58110": "Leverage too high",
    "58200": "Cancel order failed",
    "58207": "Order size too small",
}

RETRYABLE_CODES = frozenset({"50011", "50061", "58200"})

AUTH_CODES = frozenset(
    {"50001", "50002", "50003", "50004", "50005", "50006", "50007", "50008", "50013", "50029", "50100"}
)

NETWORK_ERROR_PATTERNS: tuple[str, ...] = (
    "connection reset",
    "connection refused",
    "timeout",
    "timed out",
    "eof",
    "broken pipe",
    "temporary failure",
    "try again",
)


def error_message(code: str) -> str:
    """Human-readable message for an OKX code."""
    return OKX_ERROR_MESSAGES.get(code, f"Unknown error: {code}")


def error_for_code(code: str, message: str = "") -> ExchangeError:
    """Build the exception instance matching an OKX error code."""
    message = message or error_message(code)
    if code in RETRYABLE_CODES:
        return RetryableExchangeError(message, code=code)
    if code in AUTH_CODES:
        return ExchangeAuthError(message, code=code)
    return ExchangeError(message, code=code)


def is_network_error(error: Exception) -> bool:
    """True when an error's text matches a transient network condition."""
    text = str(error).lower()
    return any(pattern in text for pattern in NETWORK_ERROR_PATTERNS)
