"""Per-symbol trade statistics owned by the Kelly engine.

Field names match the persisted JSON document so ``to_dict``/``from_dict``
are a straight mapping.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

DEFAULT_VOLATILITY = 0.08


@dataclass
class TradeRecord:
    """One realized trade outcome."""

    timestamp: int  # unix seconds
    profit_pct: float
    is_win: bool
    weight: float = 1.0  # time-decay coefficient at recording time
    holding_time: int = 0  # seconds

    @classmethod
    def from_dict(cls, data: dict) -> TradeRecord:
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            profit_pct=float(data.get("profit_pct", 0.0)),
            is_win=bool(data.get("is_win", False)),
            weight=float(data.get("weight", 1.0)),
            holding_time=int(data.get("holding_time", 0)),
        )


@dataclass
class HistoricalStats:
    """Mutable statistics for one symbol.

    ``avg_win_pct`` and ``avg_loss_pct`` are time-weighted and both
    non-negative; ``max_drawdown_pct`` is the magnitude of the worst single
    losing trade, not an equity drawdown.
    """

    symbol: str
    total_trades: int = 0
    profitable_trades: int = 0
    total_profit_pct: float = 0.0
    total_loss_pct: float = 0.0
    win_rate: float = 0.0
    avg_win_pct: float = 0.0
    avg_loss_pct: float = 0.0
    max_profit_pct: float = 0.0
    max_drawdown_pct: float = 0.0
    updated_at: int = 0
    trade_history: list[TradeRecord] = field(default_factory=list)
    weighted_win_rate: float = 0.0
    volatility: float = DEFAULT_VOLATILITY
    time_decay_factor: float = 0.0

    @property
    def losing_trades(self) -> int:
        return self.total_trades - self.profitable_trades

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> HistoricalStats:
        history = [TradeRecord.from_dict(t) for t in data.get("trade_history") or []]
        return cls(
            symbol=data.get("symbol", ""),
            total_trades=int(data.get("total_trades", 0)),
            profitable_trades=int(data.get("profitable_trades", 0)),
            total_profit_pct=float(data.get("total_profit_pct", 0.0)),
            total_loss_pct=float(data.get("total_loss_pct", 0.0)),
            win_rate=float(data.get("win_rate", 0.0)),
            avg_win_pct=float(data.get("avg_win_pct", 0.0)),
            avg_loss_pct=float(data.get("avg_loss_pct", 0.0)),
            max_profit_pct=float(data.get("max_profit_pct", 0.0)),
            max_drawdown_pct=float(data.get("max_drawdown_pct", 0.0)),
            updated_at=int(data.get("updated_at", 0)),
            trade_history=history,
            weighted_win_rate=float(data.get("weighted_win_rate", 0.0)),
            volatility=float(data.get("volatility", DEFAULT_VOLATILITY)),
            time_decay_factor=float(data.get("time_decay_factor", 0.0)),
        )


@dataclass(frozen=True)
class SymbolDigest:
    """Read-only per-symbol summary for reporting."""

    symbol: str
    total_trades: int
    profitable_trades: int
    win_rate: float
    weighted_win_rate: float
    avg_win_pct: float
    avg_loss_pct: float
    max_profit_pct: float
    max_drawdown_pct: float
    volatility: float
