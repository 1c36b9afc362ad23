"""Shared data models for the AI trading orchestrator.

Context snapshots and decisions are frozen dataclasses handed by value between
the context builder, the AI client and the orchestrator. Prices and sizes are
floats: every value originates from venue JSON or model output and flows into
the Kelly math, which is float arithmetic.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum


class PositionSide(str, Enum):
    """Position direction."""

    LONG = "long"
    SHORT = "short"


class DecisionAction(str, Enum):
    """The six intents an AI reply may carry."""

    OPEN_LONG = "open_long"
    OPEN_SHORT = "open_short"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"
    HOLD = "hold"
    WAIT = "wait"

    @property
    def is_open(self) -> bool:
        return self in (DecisionAction.OPEN_LONG, DecisionAction.OPEN_SHORT)

    @property
    def is_close(self) -> bool:
        return self in (DecisionAction.CLOSE_LONG, DecisionAction.CLOSE_SHORT)

    @property
    def side(self) -> PositionSide | None:
        """Position side an open/close action targets, None for hold/wait."""
        if self in (DecisionAction.OPEN_LONG, DecisionAction.CLOSE_LONG):
            return PositionSide.LONG
        if self in (DecisionAction.OPEN_SHORT, DecisionAction.CLOSE_SHORT):
            return PositionSide.SHORT
        return None

    @property
    def priority(self) -> int:
        """Execution order: closes first, then opens, then hold/wait."""
        if self.is_close:
            return 1
        if self.is_open:
            return 2
        return 3


@dataclass(frozen=True, kw_only=True)
class Decision:
    """One typed intent from the AI reply.

    Use the subclasses: ``OpenDecision`` carries the sizing and protective
    prices, ``CloseDecision`` and ``PassiveDecision`` carry only the symbol
    and reasoning.
    """

    action: DecisionAction
    symbol: str
    reasoning: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["action"] = self.action.value
        return data


@dataclass(frozen=True, kw_only=True)
class OpenDecision(Decision):
    """open_long / open_short with leverage, quote-currency size and SL/TP."""

    leverage: int
    position_size_usd: float
    stop_loss: float
    take_profit: float

    def __post_init__(self) -> None:
        if not self.action.is_open:
            raise ValueError(f"OpenDecision cannot carry action {self.action.value}")
        if self.leverage < 1:
            raise ValueError(f"leverage must be >= 1, got {self.leverage}")
        if self.position_size_usd <= 0:
            raise ValueError(f"position_size_usd must be > 0, got {self.position_size_usd}")
        if self.stop_loss <= 0 or self.take_profit <= 0:
            raise ValueError("stop_loss and take_profit must be > 0")

    @property
    def side(self) -> PositionSide:
        return self.action.side  # type: ignore[return-value]


@dataclass(frozen=True, kw_only=True)
class CloseDecision(Decision):
    """close_long / close_short: venue closes the whole position."""

    def __post_init__(self) -> None:
        if not self.action.is_close:
            raise ValueError(f"CloseDecision cannot carry action {self.action.value}")

    @property
    def side(self) -> PositionSide:
        return self.action.side  # type: ignore[return-value]


@dataclass(frozen=True, kw_only=True)
class PassiveDecision(Decision):
    """hold / wait: logged only."""

    def __post_init__(self) -> None:
        if self.action not in (DecisionAction.HOLD, DecisionAction.WAIT):
            raise ValueError(f"PassiveDecision cannot carry action {self.action.value}")


def sort_decisions(decisions: list[Decision]) -> list[Decision]:
    """Stable-sort intents so closes run before opens and opens before hold/wait."""
    return sorted(decisions, key=lambda d: d.action.priority)


@dataclass(frozen=True)
class AccountSnapshot:
    """Account totals in quote currency at context build time."""

    total_equity: float
    available_balance: float
    used: float = 0.0
    unrealized_pnl: float = 0.0
    total_pnl: float = 0.0
    total_pnl_pct: float = 0.0
    margin_used: float = 0.0
    margin_used_pct: float = 0.0
    position_count: int = 0


@dataclass(frozen=True)
class PositionSnapshot:
    """Normalized open position as shown to the AI."""

    symbol: str
    side: PositionSide
    entry_price: float
    mark_price: float
    quantity: float
    leverage: int
    unrealized_pnl: float
    unrealized_pnl_pct: float
    liquidation_price: float
    margin_used: float
    update_time: int  # first-seen, unix ms


@dataclass(frozen=True)
class CandidateCoin:
    """Symbol the AI may trade, with provenance tags (custom, default, ai500, oi_top)."""

    symbol: str
    sources: tuple[str, ...] = ()


@dataclass(frozen=True)
class TradeOutcome:
    """A closed trade reconstructed from paired open/close decision records."""

    symbol: str
    side: str
    quantity: float
    leverage: int
    open_price: float
    close_price: float
    pnl: float
    pnl_pct: float
    duration_seconds: float
    open_time: str
    close_time: str


@dataclass(frozen=True)
class SymbolPerformance:
    symbol: str
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0


@dataclass(frozen=True)
class PerformanceSummary:
    """Recent-performance digest over the last N decision records."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    symbol_stats: dict[str, SymbolPerformance] = field(default_factory=dict)
    recent_trades: tuple[TradeOutcome, ...] = ()
    best_symbol: str = ""
    worst_symbol: str = ""


@dataclass(frozen=True)
class Context:
    """Immutable per-cycle snapshot handed to the AI client."""

    current_time: str
    timestamp: float
    runtime_minutes: int
    call_count: int
    account: AccountSnapshot
    positions: tuple[PositionSnapshot, ...] = ()
    candidate_coins: tuple[CandidateCoin, ...] = ()
    performance: PerformanceSummary | None = None
    btc_eth_leverage: int = 5
    altcoin_leverage: int = 5


@dataclass
class AIResult:
    """Artifacts of one AI call. Populated incrementally so failures keep partial output."""

    system_prompt: str = ""
    user_prompt: str = ""
    raw_response: str = ""
    cot_trace: str = ""
    decisions: list[Decision] = field(default_factory=list)
