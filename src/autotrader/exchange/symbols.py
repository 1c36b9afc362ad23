"""Symbol conversion between canonical (BTCUSDT) and OKX (BTC-USDT-SWAP) ids."""

from autotrader.logging import get_logger

logger = get_logger(__name__)

# Longest bases first so 1000PEPE is matched before PEPE
KNOWN_BASES: tuple[str, ...] = (
    "1000PEPE", "1000SATS", "1000SHIB", "1000BONK", "1000FLOKI", "1000RATS",
    "DOGE", "SHIB", "PEPE", "FLOKI", "BONK", "SATS", "RATS", "WIF", "MEW",
    "HYPE", "MATIC", "AVAX", "LINK", "ATOM", "NEAR", "APT", "ARB", "OP",
    "SUI", "SEI", "TIA", "INJ", "FTM",
    "DOT", "ADA", "XRP", "LTC", "BCH", "ETC", "FIL", "AAVE", "UNI", "MKR",
    "SNX", "CRV", "COMP",
    "BTC", "ETH", "SOL", "BNB",
)

QUOTES: tuple[str, ...] = ("USDT", "USDC", "USD", "BUSD")


def to_okx_symbol(symbol: str) -> str:
    """Convert ``BTCUSDT`` to ``BTC-USDT-SWAP``.

    Ids already containing a dash pass through. Known bases are matched
    exactly; otherwise a trailing quote currency is split off. Anything else
    only gets the ``-SWAP`` suffix.
    """
    if "-" in symbol:
        return symbol

    symbol = symbol.strip().upper()

    for base in KNOWN_BASES:
        for quote in QUOTES:
            if symbol == base + quote:
                return f"{base}-{quote}-SWAP"

    for quote in QUOTES:
        if symbol.endswith(quote):
            base = symbol[: -len(quote)]
            if base:
                return f"{base}-{quote}-SWAP"

    logger.warning("unrecognized_symbol_format", symbol=symbol)
    return f"{symbol}-SWAP"


def from_okx_symbol(okx_symbol: str) -> str:
    """Convert ``BTC-USDT-SWAP`` back to ``BTCUSDT``."""
    symbol = okx_symbol.removesuffix("-SWAP")
    return symbol.replace("-", "")


def normalize_symbol(symbol: str) -> str:
    """Upper-case a user-supplied coin and ensure the ``USDT`` quote suffix."""
    symbol = symbol.strip().upper()
    if not symbol.endswith("USDT"):
        symbol = symbol + "USDT"
    return symbol


def base_asset(symbol: str) -> str:
    """Base asset of a canonical symbol (``BTCUSDT`` -> ``BTC``)."""
    for quote in QUOTES:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)]
    return symbol


def to_ccxt_symbol(symbol: str) -> str:
    """Convert ``BTCUSDT`` to the ccxt linear-swap id ``BTC/USDT:USDT``."""
    if "/" in symbol:
        return symbol
    symbol = symbol.strip().upper()
    for quote in QUOTES:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return f"{symbol[: -len(quote)]}/{quote}:{quote}"
    return f"{symbol}/USDT:USDT"


def from_ccxt_symbol(ccxt_symbol: str) -> str:
    """Convert ``BTC/USDT:USDT`` back to ``BTCUSDT``."""
    pair = ccxt_symbol.split(":", 1)[0]
    return pair.replace("/", "")
