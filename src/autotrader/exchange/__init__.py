"""Exchange adapters: the venue-neutral contract and its OKX and ccxt implementations."""

from autotrader.exchange.client import ExchangeAdapter
from autotrader.exchange.factory import create_adapter
from autotrader.exchange.types import Balance, ContractSpec, ExchangePosition, OrderAck

__all__ = [
    "Balance",
    "ContractSpec",
    "ExchangeAdapter",
    "ExchangePosition",
    "OrderAck",
    "create_adapter",
]
