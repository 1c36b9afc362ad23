"""Adapter construction keyed by the trader's exchange selector."""

from autotrader.config import TraderConfig, TransactionSettings
from autotrader.exceptions import TraderConfigError
from autotrader.exchange.ccxt_client import CcxtFuturesAdapter
from autotrader.exchange.client import ExchangeAdapter
from autotrader.exchange.okx_client import OKXAdapter


def create_adapter(config: TraderConfig, transaction: TransactionSettings | None = None) -> ExchangeAdapter:
    """Build the ExchangeAdapter for ``config.exchange``.

    Raises:
        TraderConfigError: If the credentials are incomplete for the venue.
    """
    try:
        if config.exchange == "okx":
            return OKXAdapter(config.credentials, transaction)
        return CcxtFuturesAdapter(config.exchange, config.credentials, transaction)
    except ValueError as e:
        raise TraderConfigError(f"trader {config.id}: {e}") from e
