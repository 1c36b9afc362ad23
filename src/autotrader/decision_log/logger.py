"""Append-only per-trader decision log on the filesystem.

One JSON file per cycle under ``<log_dir>/<trader_id>/``. Recent records are
replayed to reconstruct closed trades for the performance digest the AI sees.
"""

import json
import re
from datetime import datetime
from pathlib import Path

from autotrader.decision_log.models import DecisionRecord
from autotrader.logging import get_logger
from autotrader.models import PerformanceSummary, SymbolPerformance, TradeOutcome

logger = get_logger(__name__)

RECENT_TRADES_LIMIT = 10
PROFIT_FACTOR_CAP = 999.0

_FILE_PATTERN = re.compile(r"decision_(\d{8}_\d{6})_cycle(\d+)\.json")


def _file_order(path: Path) -> tuple[str, int]:
    match = _FILE_PATTERN.fullmatch(path.name)
    if match is None:
        return (path.name, 0)
    return (match.group(1), int(match.group(2)))


class DecisionLogger:
    """Writes and reads DecisionRecords for one trader."""

    def __init__(self, log_dir: str | Path, trader_id: str) -> None:
        self._dir = Path(log_dir) / trader_id
        self._cycle_number = 0
        if self._dir.exists():
            # continue numbering after a restart
            self._cycle_number = max((_file_order(p)[1] for p in self._dir.glob("decision_*.json")), default=0)

    @property
    def directory(self) -> Path:
        return self._dir

    def log_decision(self, record: DecisionRecord) -> Path:
        """Persist a record, stamping its time and cycle number.

        Raises:
            OSError: If the file cannot be written.
        """
        self._cycle_number += 1
        now = datetime.now()
        if not record.timestamp:
            record.timestamp = now.isoformat()
        record.cycle_number = self._cycle_number

        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._dir / f"decision_{now.strftime('%Y%m%d_%H%M%S')}_cycle{record.cycle_number}.json"
        path.write_text(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
        logger.debug("decision_record_written", path=str(path), success=record.success)
        return path

    def latest_records(self, n: int) -> list[DecisionRecord]:
        """The ``n`` most recent records, oldest first. Unreadable files are skipped."""
        if n <= 0 or not self._dir.exists():
            return []

        files = sorted(self._dir.glob("decision_*.json"), key=_file_order)
        records = []
        for path in files[-n:]:
            try:
                records.append(DecisionRecord.from_dict(json.loads(path.read_text())))
            except (OSError, ValueError, TypeError) as e:
                logger.warning("decision_record_unreadable", path=str(path), error=str(e))
        return records

    def analyze_performance(self, n: int) -> PerformanceSummary:
        """Pair successful opens and closes across the last ``n`` records.

        ``win_rate`` is a percentage. ``avg_loss`` is the mean pnl of losing
        trades and is negative. Trade pnl is in quote currency; ``pnl_pct``
        is return on margin.
        """
        open_positions: dict[str, dict] = {}
        trades: list[TradeOutcome] = []

        for record in self.latest_records(n):
            for action in record.decisions:
                if not action.success:
                    continue
                if action.action in ("open_long", "open_short"):
                    side = action.action.removeprefix("open_")
                    open_positions[f"{action.symbol}_{side}"] = {
                        "side": side,
                        "price": action.price,
                        "quantity": action.quantity,
                        "leverage": action.leverage or 1,
                        "time": action.timestamp or record.timestamp,
                    }
                elif action.action in ("close_long", "close_short"):
                    side = action.action.removeprefix("close_")
                    opened = open_positions.pop(f"{action.symbol}_{side}", None)
                    if opened is None or opened["price"] <= 0:
                        continue
                    trades.append(_closed_trade(action.symbol, opened, action.price, action.timestamp or record.timestamp))

        return _summarize(trades)


def _closed_trade(symbol: str, opened: dict, close_price: float, close_time: str) -> TradeOutcome:
    direction = 1 if opened["side"] == "long" else -1
    quantity = opened["quantity"]
    pnl = direction * quantity * (close_price - opened["price"])
    margin = quantity * opened["price"] / opened["leverage"]
    return TradeOutcome(
        symbol=symbol,
        side=opened["side"],
        quantity=quantity,
        leverage=opened["leverage"],
        open_price=opened["price"],
        close_price=close_price,
        pnl=pnl,
        pnl_pct=pnl / margin * 100 if margin > 0 else 0.0,
        duration_seconds=_seconds_between(opened["time"], close_time),
        open_time=opened["time"],
        close_time=close_time,
    )


def _seconds_between(start: str, end: str) -> float:
    try:
        return (datetime.fromisoformat(end) - datetime.fromisoformat(start)).total_seconds()
    except (TypeError, ValueError):
        return 0.0


def _summarize(trades: list[TradeOutcome]) -> PerformanceSummary:
    if not trades:
        return PerformanceSummary()

    wins = [t.pnl for t in trades if t.pnl > 0]
    losses = [t.pnl for t in trades if t.pnl < 0]
    total_win = sum(wins)
    total_loss = abs(sum(losses))
    if total_loss > 0:
        profit_factor = total_win / total_loss
    else:
        profit_factor = PROFIT_FACTOR_CAP if total_win > 0 else 0.0

    by_symbol: dict[str, list[TradeOutcome]] = {}
    for trade in trades:
        by_symbol.setdefault(trade.symbol, []).append(trade)

    symbol_stats = {}
    for symbol, symbol_trades in by_symbol.items():
        winning = sum(1 for t in symbol_trades if t.pnl > 0)
        total_pnl = sum(t.pnl for t in symbol_trades)
        symbol_stats[symbol] = SymbolPerformance(
            symbol=symbol,
            total_trades=len(symbol_trades),
            winning_trades=winning,
            losing_trades=sum(1 for t in symbol_trades if t.pnl < 0),
            win_rate=winning / len(symbol_trades) * 100,
            total_pnl=total_pnl,
            avg_pnl=total_pnl / len(symbol_trades),
        )

    ranked = sorted(symbol_stats.values(), key=lambda s: s.total_pnl)
    return PerformanceSummary(
        total_trades=len(trades),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / len(trades) * 100,
        avg_win=total_win / len(wins) if wins else 0.0,
        avg_loss=sum(losses) / len(losses) if losses else 0.0,
        profit_factor=profit_factor,
        symbol_stats=symbol_stats,
        recent_trades=tuple(reversed(trades[-RECENT_TRADES_LIMIT:])),
        best_symbol=ranked[-1].symbol,
        worst_symbol=ranked[0].symbol,
    )
