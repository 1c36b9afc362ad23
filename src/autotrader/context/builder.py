"""Per-cycle context snapshot assembly.

Samples balance and positions from the adapter, normalizes them into
AccountSnapshot/PositionSnapshot values, resolves the candidate coin list
and attaches the recent-performance digest from the decision log.
"""

import asyncio
import time
from datetime import datetime

import httpx

from autotrader.config import TraderConfig
from autotrader.decision_log.logger import DecisionLogger
from autotrader.exceptions import ContextBuildError, ExchangeError
from autotrader.exchange.client import ExchangeAdapter
from autotrader.exchange.symbols import normalize_symbol
from autotrader.logging import get_logger
from autotrader.market_data.coin_pool import CoinPoolClient
from autotrader.models import (
    AccountSnapshot,
    CandidateCoin,
    Context,
    PerformanceSummary,
    PositionSide,
    PositionSnapshot,
)

logger = get_logger(__name__)

DEFAULT_LEVERAGE = 10
DEFAULT_PERFORMANCE_WINDOW = 100


def position_key(symbol: str, side: PositionSide | str) -> str:
    return f"{symbol}_{PositionSide(side).value}"


class ContextBuilder:
    """Builds the immutable Context handed to the AI client.

    Owns the first-seen map for (symbol, side) pairs; entries are created the
    first time a pair is observed (or opened) and pruned once the pair
    disappears from the venue snapshot.
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        config: TraderConfig,
        *,
        coin_pool: CoinPoolClient | None = None,
        decision_logger: DecisionLogger | None = None,
        performance_window: int = DEFAULT_PERFORMANCE_WINDOW,
        clock=time.time,
    ) -> None:
        self._adapter = adapter
        self._config = config
        self._coin_pool = coin_pool
        self._decision_logger = decision_logger
        self._performance_window = performance_window
        self._clock = clock
        self._first_seen: dict[str, int] = {}

    @property
    def first_seen(self) -> dict[str, int]:
        return dict(self._first_seen)

    def mark_opened(self, symbol: str, side: PositionSide | str) -> None:
        """Record that a position was opened now."""
        self._first_seen[position_key(symbol, side)] = int(self._clock() * 1000)

    def first_seen_ms(self, symbol: str, side: PositionSide | str) -> int | None:
        return self._first_seen.get(position_key(symbol, side))

    async def build(self, call_count: int, start_time: float) -> Context:
        """Sample live state and return a Context.

        Raises:
            ContextBuildError: If balance, positions or the candidate pool
                cannot be fetched.
        """
        try:
            balance = await self._adapter.get_balance()
            raw_positions = await self._adapter.get_positions()
        except ExchangeError as e:
            raise ContextBuildError(f"failed to read account state: {e}") from e

        if balance.total == 0 and balance.free == 0:
            logger.warning("balance_fields_empty", total=balance.total, free=balance.free)
        total_equity = balance.total + balance.unrealized_pnl

        now_ms = int(self._clock() * 1000)
        positions: list[PositionSnapshot] = []
        seen_keys: set[str] = set()
        total_margin = 0.0

        for raw in raw_positions:
            if not raw.symbol or raw.mark_price == 0:
                continue
            side = PositionSide(getattr(raw.side, "value", raw.side).lower())
            quantity = abs(raw.quantity)
            leverage = raw.leverage or DEFAULT_LEVERAGE
            margin = raw.margin_used if raw.margin_used else quantity * raw.mark_price / leverage
            total_margin += margin

            pnl_pct = 0.0
            if raw.entry_price > 0:
                direction = 1 if side is PositionSide.LONG else -1
                pnl_pct = direction * (raw.mark_price - raw.entry_price) / raw.entry_price * 100

            key = position_key(raw.symbol, side)
            seen_keys.add(key)
            first_seen = self._first_seen.setdefault(key, now_ms)

            positions.append(
                PositionSnapshot(
                    symbol=raw.symbol,
                    side=side,
                    entry_price=raw.entry_price,
                    mark_price=raw.mark_price,
                    quantity=quantity,
                    leverage=leverage,
                    unrealized_pnl=raw.unrealized_pnl,
                    unrealized_pnl_pct=pnl_pct,
                    liquidation_price=raw.liquidation_price,
                    margin_used=margin,
                    update_time=first_seen,
                )
            )

        for key in list(self._first_seen):
            if key not in seen_keys:
                del self._first_seen[key]

        candidates = await self.candidate_coins()

        initial_balance = self._config.initial_balance
        total_pnl = total_equity - initial_balance
        account = AccountSnapshot(
            total_equity=total_equity,
            available_balance=balance.free,
            used=balance.used,
            unrealized_pnl=sum(p.unrealized_pnl for p in positions),
            total_pnl=total_pnl,
            total_pnl_pct=total_pnl / initial_balance * 100 if initial_balance > 0 else 0.0,
            margin_used=total_margin,
            margin_used_pct=total_margin / total_equity * 100 if total_equity > 0 else 0.0,
            position_count=len(positions),
        )

        now = self._clock()
        return Context(
            current_time=datetime.fromtimestamp(now).strftime("%Y-%m-%d %H:%M:%S"),
            timestamp=now,
            runtime_minutes=int((now - start_time) / 60),
            call_count=call_count,
            account=account,
            positions=tuple(positions),
            candidate_coins=tuple(candidates),
            performance=await self._performance(),
            btc_eth_leverage=self._config.btc_eth_leverage,
            altcoin_leverage=self._config.altcoin_leverage,
        )

    async def candidate_coins(self) -> list[CandidateCoin]:
        """Resolve candidates: explicit list, then defaults, then the merged pool."""
        if self._config.trading_coins:
            return [CandidateCoin(normalize_symbol(c), ("custom",)) for c in self._config.trading_coins]

        if self._config.default_coins:
            return [CandidateCoin(normalize_symbol(c), ("default",)) for c in self._config.default_coins]

        if self._coin_pool is None:
            raise ContextBuildError("no candidate coins configured and no coin pool available")
        try:
            pool = await self._coin_pool.get_merged_pool()
        except (httpx.HTTPError, ValueError) as e:
            raise ContextBuildError(f"failed to fetch candidate pool: {e}") from e

        logger.info("candidate_pool_resolved", count=len(pool.symbols))
        return [CandidateCoin(symbol, tuple(pool.sources[symbol])) for symbol in pool.symbols]

    async def _performance(self) -> PerformanceSummary | None:
        if self._decision_logger is None:
            return None
        try:
            return await asyncio.to_thread(
                self._decision_logger.analyze_performance, self._performance_window
            )
        except Exception as e:
            logger.warning("performance_analysis_failed", error=str(e))
            return None
