"""Venue-neutral exchange types and contract-size utilities.

Adapters translate venue payloads into these dataclasses so no venue-specific
shape leaks into the context builder or orchestrator. Contract arithmetic uses
Decimal so lot-size flooring is exact.
"""

from dataclasses import dataclass
from decimal import Decimal

from autotrader.models import PositionSide


@dataclass(frozen=True)
class Balance:
    """Account balance in quote currency."""

    total: float
    free: float
    used: float
    unrealized_pnl: float = 0.0


@dataclass(frozen=True)
class ExchangePosition:
    """Open position as reported by a venue. Quantity is in base-asset units."""

    symbol: str  # canonical, e.g. BTCUSDT
    side: PositionSide
    entry_price: float
    mark_price: float
    quantity: float
    leverage: int | None = None
    unrealized_pnl: float = 0.0
    liquidation_price: float = 0.0
    margin_used: float | None = None


@dataclass(frozen=True)
class OrderAck:
    """Venue acknowledgement of a placed order."""

    order_id: str
    symbol: str
    side: str
    quantity: float
    price: float | None = None


@dataclass(frozen=True)
class ContractSpec:
    """Instrument sizing constraints for contract-denominated venues.

    ``contract_value`` is base units per contract; orders are placed in
    multiples of ``lot_size`` and never below ``min_size`` contracts.
    """

    contract_value: Decimal
    min_size: Decimal
    lot_size: Decimal


def round_to_step(value: Decimal, step: Decimal) -> Decimal:
    """Round a value down to the nearest step increment.

    Uses integer division to ensure we always round DOWN (never up),
    which prevents exceeding available balance or position limits.
    """
    if step <= 0:
        return value
    return (value // step) * step


def format_contract_size(size: Decimal, lot_size: Decimal) -> str:
    """Render a contract count with the precision implied by ``lot_size``.

    lot_size >= 1 gives an integer, >= 0.1 one decimal, otherwise two.
    """
    if lot_size >= 1:
        return f"{size:.0f}"
    if lot_size >= Decimal("0.1"):
        return f"{size:.1f}"
    return f"{size:.2f}"
