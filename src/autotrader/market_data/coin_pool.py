"""Candidate coin pool service client.

Fetches the AI-score pool and the open-interest top list over HTTP and
merges them into one ordered symbol list with provenance tags.
"""

from dataclasses import dataclass, field

import httpx

from autotrader.config import PoolSettings
from autotrader.exchange.symbols import normalize_symbol
from autotrader.logging import get_logger

logger = get_logger(__name__)

AI500_SOURCE = "ai500"
OI_TOP_SOURCE = "oi_top"


@dataclass
class MergedCoinPool:
    """Union of both pools in first-seen order."""

    symbols: list[str] = field(default_factory=list)
    sources: dict[str, list[str]] = field(default_factory=dict)

    def add(self, symbol: str, source: str) -> None:
        if symbol not in self.sources:
            self.symbols.append(symbol)
            self.sources[symbol] = []
        if source not in self.sources[symbol]:
            self.sources[symbol].append(source)


def _entries(payload: dict, *keys: str) -> list[dict]:
    """Locate the list of entries in a pool response."""
    data = payload.get("data", payload)
    if isinstance(data, list):
        return data
    for key in keys:
        value = data.get(key) if isinstance(data, dict) else None
        if isinstance(value, list):
            return value
    return []


class CoinPoolClient:
    """HTTP client for the ai500 and oi_top symbol services."""

    def __init__(self, settings: PoolSettings, http_client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = http_client

    async def _get_json(self, url: str) -> dict:
        if self._client is not None:
            response = await self._client.get(url)
            response.raise_for_status()
            return response.json()
        async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

    async def fetch_ai500(self, limit: int | None = None) -> list[str]:
        """Top-scored symbols, highest score first."""
        if not self._settings.coin_pool_api_url:
            return []
        limit = limit or self._settings.ai500_limit
        payload = await self._get_json(self._settings.coin_pool_api_url)
        coins = _entries(payload, "coins")
        coins = sorted(coins, key=lambda c: float(c.get("score") or 0), reverse=True)
        return [normalize_symbol(c.get("pair") or c.get("symbol")) for c in coins[:limit] if c.get("pair") or c.get("symbol")]

    async def fetch_oi_top(self, limit: int | None = None) -> list[str]:
        """Symbols ranked by open-interest growth."""
        if not self._settings.oi_top_api_url:
            return []
        limit = limit or self._settings.oi_top_limit
        payload = await self._get_json(self._settings.oi_top_api_url)
        entries = _entries(payload, "positions", "coins")
        return [normalize_symbol(e.get("symbol") or e.get("pair")) for e in entries[:limit] if e.get("symbol") or e.get("pair")]

    async def get_merged_pool(self, ai500_limit: int | None = None) -> MergedCoinPool:
        """Merge both pools; a failing source is skipped unless both fail.

        Raises:
            httpx.HTTPError: When every configured source fails.
        """
        merged = MergedCoinPool()
        errors: list[Exception] = []

        try:
            for symbol in await self.fetch_ai500(ai500_limit):
                merged.add(symbol, AI500_SOURCE)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("ai500_pool_fetch_failed", error=str(e))
            errors.append(e)

        try:
            for symbol in await self.fetch_oi_top():
                merged.add(symbol, OI_TOP_SOURCE)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("oi_top_pool_fetch_failed", error=str(e))
            errors.append(e)

        if not merged.symbols and errors:
            raise errors[0]

        logger.info("coin_pool_merged", total=len(merged.symbols))
        return merged
