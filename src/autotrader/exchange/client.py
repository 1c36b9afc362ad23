"""Abstract exchange adapter interface.

Defines the capability set the orchestrator and context builder depend on.
Each venue implements it; venue-specific auth, symbol formats, quantity
semantics and position-mode controls stay inside the concrete adapter.
"""

from abc import ABC, abstractmethod

from autotrader.exchange.types import Balance, ExchangePosition, OrderAck
from autotrader.models import PositionSide


class ExchangeAdapter(ABC):
    """Abstract base class for venue adapters.

    Symbols are canonical (``BTCUSDT``); quantities are base-asset units.
    """

    name: str = ""

    @abstractmethod
    async def connect(self) -> None:
        """Open HTTP sessions and load instrument metadata."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release HTTP sessions."""
        ...

    @abstractmethod
    async def get_balance(self) -> Balance:
        """Account totals; values up to 15s stale may be returned."""
        ...

    @abstractmethod
    async def get_positions(self) -> list[ExchangePosition]:
        """All open positions; values up to 15s stale may be returned."""
        ...

    @abstractmethod
    async def open_long(self, symbol: str, quantity: float, leverage: int) -> OrderAck:
        """Market-buy into a long position."""
        ...

    @abstractmethod
    async def open_short(self, symbol: str, quantity: float, leverage: int) -> OrderAck:
        """Market-sell into a short position."""
        ...

    @abstractmethod
    async def close_long(self, symbol: str, quantity: float = 0.0) -> OrderAck:
        """Close a long position. ``quantity == 0`` closes all of it."""
        ...

    @abstractmethod
    async def close_short(self, symbol: str, quantity: float = 0.0) -> OrderAck:
        """Close a short position. ``quantity == 0`` closes all of it."""
        ...

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> None:
        """Set leverage in [1, 125]. Idempotent."""
        ...

    @abstractmethod
    async def set_margin_mode(self, symbol: str, is_cross: bool) -> None:
        """Switch between cross and isolated margin. Idempotent."""
        ...

    @abstractmethod
    async def set_stop_loss(
        self, symbol: str, side: PositionSide, quantity: float, trigger_price: float
    ) -> None:
        """Install a stop-loss, replacing any existing one for (symbol, side)."""
        ...

    @abstractmethod
    async def set_take_profit(
        self, symbol: str, side: PositionSide, quantity: float, trigger_price: float
    ) -> None:
        """Install a take-profit, replacing any existing one for (symbol, side)."""
        ...

    @abstractmethod
    async def cancel_all_orders(self, symbol: str) -> None:
        """Cancel every open order for the symbol."""
        ...

    @abstractmethod
    async def get_market_price(self, symbol: str) -> float:
        """Last trade price (> 0)."""
        ...


def validate_leverage(leverage: int) -> None:
    """Raise ValueError unless leverage lies in the venue-supported [1, 125] range."""
    if leverage < 1 or leverage > 125:
        raise ValueError(f"leverage must be between 1 and 125, got {leverage}")
