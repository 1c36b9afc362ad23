"""Kelly-criterion statistics engine for trailing protective orders.

Turns a trader's realized-trade history into a dynamic take-profit and a
trailing stop-loss per open position:

- Trade outcomes are time-weighted with ``exp(-lambda * age_days)`` (floor 0.01)
- Kelly fraction ``(b*p - q) / b`` from weighted win rate and win/loss ratio,
  scaled by ``kelly_ratio_adjustment`` and a volatility factor
- Per-position profit peaks detect retracements and shave the target
- Stops lock in a share of open profit that grows with the profit band

Stats are persisted as one JSON document per trader and saved at most once
per ``save_interval_seconds`` on update, plus once on shutdown.
"""

from __future__ import annotations

import json
import math
import threading
import time
from dataclasses import dataclass, fields, replace
from pathlib import Path

from autotrader.config import KellyRuntimeConfig, KellySettings
from autotrader.exceptions import StatsError
from autotrader.logging import get_logger
from autotrader.models import PositionSide
from autotrader.stats.models import DEFAULT_VOLATILITY, HistoricalStats, SymbolDigest, TradeRecord

logger = get_logger(__name__)

SECONDS_PER_DAY = 24 * 3600
MIN_TIME_WEIGHT = 0.01
DEFAULT_AVG_LOSS = 0.08
LOSS_TARGET_PCT = 0.18
MIN_TRADES_FOR_OPTIMIZATION = 10


@dataclass(frozen=True)
class KellyParameters:
    """Tunable engine parameters."""

    kelly_ratio_adjustment: float = 0.5
    max_take_profit_multiplier: float = 3.0
    time_decay_lambda: float = 0.01
    min_trades_for_kelly: int = 5
    volatility_window: int = 20
    save_interval_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: KellySettings) -> KellyParameters:
        return cls(**{f.name: getattr(settings, f.name) for f in fields(cls)})

    def with_overrides(self, runtime: KellyRuntimeConfig) -> KellyParameters:
        """Return a copy with every non-None runtime field applied."""
        changes = {
            f.name: getattr(runtime, f.name)
            for f in fields(self)
            if getattr(runtime, f.name, None) is not None
        }
        return replace(self, **changes) if changes else self


def _profit_fraction(entry_price: float, current_price: float, side: PositionSide) -> float:
    if side is PositionSide.LONG:
        return (current_price - entry_price) / entry_price
    return (entry_price - current_price) / entry_price


class KellyStopManager:
    """Per-trader statistics engine.

    Args:
        trader_id: Owner; names the persistence file.
        settings: Initial parameters and data directory.
        data_path: Explicit stats file path (defaults to
            ``<data_dir>/kelly_stats_<trader_id>.json``).
        clock: Wall-clock source in unix seconds.
    """

    def __init__(
        self,
        trader_id: str,
        settings: KellySettings | None = None,
        *,
        data_path: str | Path | None = None,
        clock=time.time,
    ) -> None:
        settings = settings or KellySettings()
        self._trader_id = trader_id
        self._params = KellyParameters.from_settings(settings)
        self._clock = clock
        self._data_path = Path(data_path) if data_path else Path(settings.data_dir) / f"kelly_stats_{trader_id}.json"

        self._stats: dict[str, HistoricalStats] = {}
        self._stats_lock = threading.RLock()
        self._peaks: dict[str, float] = {}
        self._peaks_lock = threading.Lock()
        self._last_save_time = clock()

        self.load()

    @property
    def data_path(self) -> Path:
        return self._data_path

    @property
    def config(self) -> KellyParameters:
        with self._stats_lock:
            return self._params

    def update_config(self, params: KellyParameters) -> None:
        with self._stats_lock:
            self._params = params
        logger.info(
            "kelly_config_updated",
            kelly_ratio_adjustment=params.kelly_ratio_adjustment,
            max_take_profit_multiplier=params.max_take_profit_multiplier,
            time_decay_lambda=params.time_decay_lambda,
        )

    def apply_runtime_config(self, runtime: KellyRuntimeConfig) -> None:
        updated = self.config.with_overrides(runtime)
        if updated != self.config:
            self.update_config(updated)

    # ──────────────────────────────────────────────
    # Trade recording
    # ──────────────────────────────────────────────

    def time_weight(self, trade_time: float, now: float | None = None) -> float:
        """Exponential decay weight for a trade of the given age, floored at 0.01."""
        now = self._clock() if now is None else now
        age_days = (now - trade_time) / SECONDS_PER_DAY
        weight = math.exp(-self._params.time_decay_lambda * age_days)
        return max(weight, MIN_TIME_WEIGHT)

    def record_trade(self, symbol: str, is_win: bool, profit_pct: float, holding_time: int = 0) -> None:
        """Record a realized trade and refresh the symbol's weighted statistics."""
        now = self._clock()
        with self._stats_lock:
            stats = self._stats.get(symbol)
            if stats is None:
                stats = HistoricalStats(symbol=symbol, time_decay_factor=self._params.time_decay_lambda)
                self._stats[symbol] = stats

            stats.total_trades += 1
            stats.updated_at = int(now)
            stats.trade_history.append(
                TradeRecord(
                    timestamp=int(now),
                    profit_pct=profit_pct,
                    is_win=is_win,
                    weight=self.time_weight(now, now),
                    holding_time=int(holding_time),
                )
            )
            limit = self._params.volatility_window * 2
            if len(stats.trade_history) > limit:
                del stats.trade_history[: len(stats.trade_history) - limit]

            if is_win:
                stats.profitable_trades += 1
                stats.total_profit_pct += profit_pct
                stats.max_profit_pct = max(stats.max_profit_pct, profit_pct)
            else:
                stats.total_loss_pct += abs(profit_pct)
                stats.max_drawdown_pct = max(stats.max_drawdown_pct, abs(profit_pct))

            self._recalculate(stats, now)

            logger.info(
                "kelly_trade_recorded",
                symbol=symbol,
                is_win=is_win,
                profit_pct=profit_pct,
                total_trades=stats.total_trades,
                profitable_trades=stats.profitable_trades,
                weighted_win_rate=round(stats.weighted_win_rate, 4),
                volatility=round(stats.volatility, 4),
            )

        self.auto_save()

    def _recalculate(self, stats: HistoricalStats, now: float) -> None:
        history = stats.trade_history
        if not history:
            return

        total_weight = 0.0
        win_weight = 0.0
        weighted_wins = 0.0
        weighted_losses = 0.0
        win_count = 0
        loss_count = 0
        for trade in history:
            weight = trade.weight * self.time_weight(trade.timestamp, now)
            total_weight += weight
            if trade.is_win:
                weighted_wins += weight * trade.profit_pct
                win_weight += weight
                win_count += 1
            else:
                weighted_losses += weight * abs(trade.profit_pct)
                loss_count += 1

        if total_weight <= 0:
            # all weights collapsed; use plain averages
            wins = [t.profit_pct for t in history if t.is_win]
            losses = [abs(t.profit_pct) for t in history if not t.is_win]
            stats.avg_win_pct = sum(wins) / len(wins) if wins else 0.0
            stats.avg_loss_pct = sum(losses) / len(losses) if losses else 0.0
            stats.weighted_win_rate = win_count / len(history)
        else:
            stats.avg_win_pct = weighted_wins / win_count if win_count else 0.0
            stats.avg_loss_pct = weighted_losses / loss_count if loss_count else 0.0
            stats.weighted_win_rate = win_weight / total_weight if win_count else 0.0

        stats.win_rate = win_count / (win_count + loss_count)
        stats.volatility = self._volatility(history)

    def _volatility(self, history: list[TradeRecord]) -> float:
        """Population stdev of profit_pct over the most recent window."""
        if len(history) < 2:
            return DEFAULT_VOLATILITY

        window = history[-self._params.volatility_window:]
        n = len(window)
        mean = sum(t.profit_pct for t in window) / n
        variance = sum(t.profit_pct * t.profit_pct for t in window) / n - mean * mean
        if variance <= 0:
            return DEFAULT_VOLATILITY
        return math.sqrt(variance)

    def get_stats(self, symbol: str) -> HistoricalStats | None:
        with self._stats_lock:
            return self._stats.get(symbol)

    def set_stats(self, stats: HistoricalStats) -> None:
        """Replace one symbol's statistics wholesale."""
        with self._stats_lock:
            self._stats[stats.symbol] = stats

    def symbols(self) -> list[str]:
        with self._stats_lock:
            return sorted(self._stats)

    # ──────────────────────────────────────────────
    # Position peaks
    # ──────────────────────────────────────────────

    def update_position_peak(self, symbol: str, profit_fraction: float) -> None:
        if profit_fraction <= 0:
            return
        with self._peaks_lock:
            if profit_fraction > self._peaks.get(symbol, 0.0):
                self._peaks[symbol] = profit_fraction

    def get_position_peak(self, symbol: str) -> float:
        with self._peaks_lock:
            return self._peaks.get(symbol, 0.0)

    def clear_position_peak(self, symbol: str) -> None:
        with self._peaks_lock:
            self._peaks.pop(symbol, None)

    # ──────────────────────────────────────────────
    # Protective prices
    # ──────────────────────────────────────────────

    def calculate_take_profit(
        self, symbol: str, entry_price: float, current_price: float, side: PositionSide | str
    ) -> float:
        """Dynamic take-profit price for an open position.

        Raises:
            StatsError: If either price is not positive.
        """
        if entry_price <= 0 or current_price <= 0:
            raise StatsError(f"invalid prices: entry={entry_price}, current={current_price}")
        side = PositionSide(side)
        direction = 1 if side is PositionSide.LONG else -1

        current_profit = _profit_fraction(entry_price, current_price, side)
        self.update_position_peak(symbol, current_profit)

        if current_profit <= 0:
            return entry_price * (1 + direction * LOSS_TARGET_PCT)

        params = self.config
        stats = self.get_stats(symbol)
        if stats is None or stats.total_trades < params.min_trades_for_kelly:
            return self._default_take_profit(current_price, side, current_profit, stats)

        win_rate = stats.weighted_win_rate
        avg_loss = stats.avg_loss_pct if stats.avg_loss_pct > 0 else DEFAULT_AVG_LOSS

        vol_factor = 1.0
        if stats.volatility > 0.15:
            vol_factor = 0.8
        elif stats.volatility < 0.05:
            vol_factor = 1.2

        b = stats.avg_win_pct / avg_loss
        q = 1 - win_rate
        kelly = (b * win_rate - q) / b if b > 0 else -1.0
        kelly_adj = kelly * params.kelly_ratio_adjustment * vol_factor

        if kelly_adj <= 0:
            logger.debug("kelly_negative_conservative_target", symbol=symbol, kelly_adj=round(kelly_adj, 4))
            return self._conservative_take_profit(current_price, side, win_rate, stats)

        dynamic_multiplier = params.max_take_profit_multiplier
        if stats.volatility > 0.2:
            dynamic_multiplier = 2.0
        elif stats.volatility < 0.08:
            dynamic_multiplier = 4.0

        peak = self.get_position_peak(symbol)
        peak_adjustment = 0.9 if peak > current_profit > 0 else 1.0

        target = current_profit * (1 + 2 * kelly_adj) * peak_adjustment
        target = min(target, current_profit * dynamic_multiplier)

        price = entry_price * (1 + direction * target)
        logger.debug(
            "kelly_take_profit",
            symbol=symbol,
            win_rate=round(win_rate, 4),
            odds=round(b, 4),
            kelly_adj=round(kelly_adj, 4),
            current_profit=round(current_profit, 4),
            target_profit=round(target, 4),
            price=price,
        )
        return price

    @staticmethod
    def _default_take_profit(
        current_price: float, side: PositionSide, current_profit: float, stats: HistoricalStats | None
    ) -> float:
        base = 0.15
        if stats is not None and stats.volatility > 0:
            if stats.volatility > 0.2:
                base = 0.12
            elif stats.volatility < 0.08:
                base = 0.18

        if current_profit < 0.05:
            multiplier = 1 + base
        elif current_profit < 0.15:
            multiplier = 1 + base * 0.8
        else:
            multiplier = 1 + base * 0.6

        if side is PositionSide.LONG:
            return current_price * multiplier
        return current_price / multiplier

    @staticmethod
    def _conservative_take_profit(
        current_price: float, side: PositionSide, win_rate: float, stats: HistoricalStats
    ) -> float:
        if win_rate >= 0.6:
            multiplier = 1.15
        elif win_rate >= 0.4:
            multiplier = 1.10
        else:
            multiplier = 1.05
        if stats.volatility > 0.15:
            multiplier *= 0.9

        if side is PositionSide.LONG:
            return current_price * multiplier
        return current_price / multiplier

    def calculate_stop_loss(
        self,
        symbol: str,
        entry_price: float,
        current_price: float,
        side: PositionSide | str = PositionSide.LONG,
    ) -> float:
        """Trailing stop price that protects a growing share of open profit.

        For a profitable position the stop lies between entry and the
        current price.

        Raises:
            StatsError: If either price is not positive.
        """
        if entry_price <= 0 or current_price <= 0:
            raise StatsError(f"invalid prices: entry={entry_price}, current={current_price}")
        side = PositionSide(side)
        direction = 1 if side is PositionSide.LONG else -1

        current_profit = _profit_fraction(entry_price, current_price, side)
        stats = self.get_stats(symbol)

        if current_profit <= 0:
            stop_pct = 0.08
            if stats is not None and stats.volatility > 0:
                stop_pct = min(0.12, stats.volatility * 1.5)
            return entry_price * (1 - direction * stop_pct)

        if current_profit < 0.05:
            protection = 1.0
        elif current_profit < 0.10:
            protection = 0.7
        elif current_profit < 0.20:
            protection = 0.8
        else:
            protection = 0.85

        if stats is not None and stats.volatility > 0:
            if stats.volatility > 0.2:
                protection *= 0.9
            elif stats.volatility < 0.08:
                protection *= 1.1
        protection = max(0.5, min(1.0, protection))

        stop_profit = current_profit - current_profit * protection
        stop = entry_price * (1 + direction * stop_profit) if stop_profit >= 0 else entry_price

        if (
            stats is not None
            and stats.total_trades >= self.config.min_trades_for_kelly
            and stats.avg_loss_pct > 0
        ):
            max_loss = stats.avg_loss_pct * 2
            giveback = direction * (current_price - stop) / entry_price
            if giveback > max_loss:
                tightened = current_price * (1 - direction * max_loss)
                # only ever move the stop toward the current price
                if direction * (tightened - stop) > 0:
                    logger.debug("kelly_stop_tightened", symbol=symbol, stop=stop, tightened=tightened)
                    stop = tightened

        logger.debug(
            "kelly_stop_loss",
            symbol=symbol,
            side=side.value,
            current_profit=round(current_profit, 4),
            protection=round(protection, 4),
            stop=stop,
        )
        return stop

    # ──────────────────────────────────────────────
    # Persistence
    # ──────────────────────────────────────────────

    def save(self) -> bool:
        """Write all stats to the JSON file. Returns False on I/O failure."""
        with self._stats_lock:
            document = {symbol: stats.to_dict() for symbol, stats in self._stats.items()}
        try:
            self._data_path.parent.mkdir(parents=True, exist_ok=True)
            self._data_path.write_text(json.dumps(document, indent=2))
        except OSError as e:
            logger.warning("kelly_stats_save_failed", path=str(self._data_path), error=str(e))
            return False
        self._last_save_time = self._clock()
        logger.info("kelly_stats_saved", path=str(self._data_path), symbols=len(document))
        return True

    def load(self) -> None:
        """Load stats from disk. Missing or unreadable files leave empty state."""
        if not self._data_path.exists():
            logger.info("kelly_stats_file_missing", path=str(self._data_path))
            return
        try:
            document = json.loads(self._data_path.read_text())
            loaded = {symbol: HistoricalStats.from_dict(data) for symbol, data in document.items()}
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("kelly_stats_load_failed", path=str(self._data_path), error=str(e))
            return
        with self._stats_lock:
            self._stats = loaded
        logger.info("kelly_stats_loaded", path=str(self._data_path), symbols=len(loaded))

    def auto_save(self) -> bool:
        """Save if the save interval has elapsed since the last save."""
        if self._clock() - self._last_save_time >= self.config.save_interval_seconds:
            return self.save()
        return False

    def force_save(self) -> bool:
        return self.save()

    def shutdown(self) -> bool:
        logger.info("kelly_engine_shutdown", trader_id=self._trader_id)
        return self.save()

    # ──────────────────────────────────────────────
    # Reporting and tuning
    # ──────────────────────────────────────────────

    def summarize(self) -> list[SymbolDigest]:
        """Per-symbol digest of all symbols with at least one trade."""
        with self._stats_lock:
            digests = [
                SymbolDigest(
                    symbol=s.symbol,
                    total_trades=s.total_trades,
                    profitable_trades=s.profitable_trades,
                    win_rate=s.win_rate,
                    weighted_win_rate=s.weighted_win_rate,
                    avg_win_pct=s.avg_win_pct,
                    avg_loss_pct=s.avg_loss_pct,
                    max_profit_pct=s.max_profit_pct,
                    max_drawdown_pct=s.max_drawdown_pct,
                    volatility=s.volatility,
                )
                for s in sorted(self._stats.values(), key=lambda s: s.symbol)
                if s.total_trades > 0
            ]

        for digest in digests:
            logger.info(
                "kelly_symbol_report",
                symbol=digest.symbol,
                total_trades=digest.total_trades,
                weighted_win_rate=round(digest.weighted_win_rate, 4),
                avg_win_pct=round(digest.avg_win_pct, 4),
                avg_loss_pct=round(digest.avg_loss_pct, 4),
                volatility=round(digest.volatility, 4),
            )
        return digests

    def optimize_parameters(self) -> KellyParameters:
        """Retune the Kelly scaling from the average weighted win rate.

        Only symbols with at least 10 trades count. An average above 0.6
        selects the aggressive preset, below 0.4 the conservative one.
        """
        with self._stats_lock:
            rates = [
                s.weighted_win_rate
                for s in self._stats.values()
                if s.total_trades >= MIN_TRADES_FOR_OPTIMIZATION
            ]
        params = self.config
        if not rates:
            logger.info("kelly_optimize_skipped", reason="insufficient_trades")
            return params

        avg_rate = sum(rates) / len(rates)
        if avg_rate > 0.6:
            params = replace(params, kelly_ratio_adjustment=0.6, max_take_profit_multiplier=3.5)
        elif avg_rate < 0.4:
            params = replace(params, kelly_ratio_adjustment=0.3, max_take_profit_multiplier=2.0)

        logger.info("kelly_parameters_optimized", avg_win_rate=round(avg_rate, 4), symbols=len(rates))
        self.update_config(params)
        return params
