"""Kelly statistics engine -- trade history, weighted stats and protective prices."""

from autotrader.stats.kelly import KellyParameters, KellyStopManager
from autotrader.stats.models import HistoricalStats, TradeRecord

__all__ = ["HistoricalStats", "KellyParameters", "KellyStopManager", "TradeRecord"]
