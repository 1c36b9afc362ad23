"""Market data layer -- candidate coin pool service client."""

from autotrader.market_data.coin_pool import CoinPoolClient, MergedCoinPool

__all__ = ["CoinPoolClient", "MergedCoinPool"]
