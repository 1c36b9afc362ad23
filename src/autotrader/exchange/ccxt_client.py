"""Binance/Bybit USDT perpetual adapter via ccxt async.

Wraps ccxt.async_support with market loading, hedge-mode preflight,
base-quantity precision handling and reduce-only protective orders placed
through ccxt's unified ``stopLossPrice``/``takeProfitPrice`` params.
"""

import time

import ccxt
import ccxt.async_support as ccxt_async

from autotrader.config import ExchangeCredentials, TransactionSettings
from autotrader.exceptions import (
    ContractSizeError,
    ExchangeAuthError,
    ExchangeError,
    PositionNotFoundError,
    RetryableExchangeError,
)
from autotrader.exchange.client import ExchangeAdapter, validate_leverage
from autotrader.exchange.retry import RetryPolicy, call_with_retry
from autotrader.exchange.symbols import from_ccxt_symbol, to_ccxt_symbol
from autotrader.exchange.types import Balance, ExchangePosition, OrderAck
from autotrader.logging import get_logger
from autotrader.models import PositionSide

logger = get_logger(__name__)

CACHE_TTL_SECONDS = 15.0
QUOTE_CURRENCY = "USDT"

_DEFAULT_TYPES = {"binance": "future", "bybit": "swap"}


def translate_ccxt_error(error: ccxt.BaseError, idempotent: bool = True) -> ExchangeError:
    """Map a ccxt exception onto the venue-neutral hierarchy."""
    message = str(error)
    if isinstance(error, ccxt.AuthenticationError | ccxt.PermissionDenied):
        return ExchangeAuthError(message)
    if isinstance(error, ccxt.RateLimitExceeded | ccxt.DDoSProtection):
        return RetryableExchangeError(message)
    if isinstance(error, ccxt.NetworkError) and idempotent:
        return RetryableExchangeError(message)
    return ExchangeError(message)


class CcxtFuturesAdapter(ExchangeAdapter):
    """ExchangeAdapter over a ccxt unified futures exchange.

    Args:
        exchange_id: ``binance`` or ``bybit``.
        credentials: API key and secret; ``testnet`` enables sandbox mode.
        transaction: Retry count, backoff base and HTTP timeout.
        exchange: Optional pre-built ccxt exchange (tests inject a mock).
    """

    def __init__(
        self,
        exchange_id: str,
        credentials: ExchangeCredentials,
        transaction: TransactionSettings | None = None,
        *,
        exchange=None,
        clock=time.time,
    ) -> None:
        if exchange_id not in _DEFAULT_TYPES:
            raise ValueError(f"unsupported ccxt exchange: {exchange_id}")

        transaction = transaction or TransactionSettings()
        self.name = exchange_id
        self._testnet = credentials.testnet
        self._retry_policy = RetryPolicy.from_settings(transaction)
        self._clock = clock

        if exchange is None:
            config: dict = {
                "apiKey": credentials.api_key.get_secret_value(),
                "secret": credentials.secret_key.get_secret_value(),
                "enableRateLimit": True,
                "timeout": int(transaction.timeout_seconds * 1000),
                "options": {
                    "defaultType": _DEFAULT_TYPES[exchange_id],
                },
            }
            exchange = getattr(ccxt_async, exchange_id)(config)
            if credentials.testnet:
                exchange.set_sandbox_mode(True)
        self._exchange = exchange

        self._markets: dict = {}
        self._hedge_mode_ready = False
        self._balance_cache: tuple[float, Balance] | None = None
        self._positions_cache: tuple[float, list[ExchangePosition]] | None = None
        # (symbol, side, kind) -> (order_id, amount, trigger)
        self._protective_orders: dict[tuple[str, str, str], tuple[str, float, float]] = {}

    @property
    def exchange(self):
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        logger.info("connecting_to_exchange", exchange=self.name, testnet=self._testnet)
        self._markets = await self._call("load_markets", self._exchange.load_markets)
        logger.info("exchange_connected", exchange=self.name, market_count=len(self._markets))

    async def close(self) -> None:
        """Clean up ccxt async resources."""
        await self._exchange.close()
        logger.info("exchange_connection_closed", exchange=self.name)

    async def _call(self, description: str, method, *args, idempotent: bool = True, **kwargs):
        async def _operation():
            try:
                return await method(*args, **kwargs)
            except ccxt.BaseError as e:
                raise translate_ccxt_error(e, idempotent) from e

        return await call_with_retry(
            _operation,
            self._retry_policy,
            idempotent=idempotent,
            description=f"{self.name} {description}",
        )

    def _position_params(self, side: PositionSide, closing: bool = False) -> dict:
        """Hedge-mode routing params for the venue."""
        if self.name == "binance":
            return {"positionSide": side.value.upper()}
        params: dict = {"positionIdx": 1 if side is PositionSide.LONG else 2}
        if closing:
            params["reduceOnly"] = True
        return params

    async def _ensure_hedge_mode(self, symbol: str) -> None:
        if self._hedge_mode_ready:
            return
        try:
            await self._call("set_position_mode", self._exchange.set_position_mode, True, symbol, idempotent=False)
        except ExchangeError as e:
            text = str(e).lower()
            if "not modified" not in text and "no need" not in text and "already" not in text:
                raise
        self._hedge_mode_ready = True

    def _amount(self, ccxt_symbol: str, quantity: float) -> float:
        """Round a base quantity down to venue precision, enforcing the minimum."""
        amount = float(self._exchange.amount_to_precision(ccxt_symbol, quantity))
        market = self._markets.get(ccxt_symbol) or {}
        minimum = ((market.get("limits") or {}).get("amount") or {}).get("min") or 0
        if amount <= 0 or amount < minimum:
            raise ContractSizeError(
                f"order quantity too small for {ccxt_symbol}: need at least {minimum}, got {quantity}"
            )
        return amount

    # ──────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────

    async def get_balance(self) -> Balance:
        if self._balance_cache and self._clock() - self._balance_cache[0] < CACHE_TTL_SECONDS:
            return self._balance_cache[1]

        raw = await self._call("fetch_balance", self._exchange.fetch_balance)
        balance = Balance(
            total=float((raw.get("total") or {}).get(QUOTE_CURRENCY) or 0),
            free=float((raw.get("free") or {}).get(QUOTE_CURRENCY) or 0),
            used=float((raw.get("used") or {}).get(QUOTE_CURRENCY) or 0),
        )
        self._balance_cache = (self._clock(), balance)
        return balance

    async def get_positions(self) -> list[ExchangePosition]:
        if self._positions_cache and self._clock() - self._positions_cache[0] < CACHE_TTL_SECONDS:
            return list(self._positions_cache[1])

        raw_positions = await self._call("fetch_positions", self._exchange.fetch_positions)
        positions = []
        for raw in raw_positions:
            contracts = abs(float(raw.get("contracts") or 0))
            side = (raw.get("side") or "").lower()
            if contracts == 0 or side not in ("long", "short"):
                continue
            contract_size = float(raw.get("contractSize") or 1)
            leverage = raw.get("leverage")
            margin = raw.get("initialMargin")
            positions.append(
                ExchangePosition(
                    symbol=from_ccxt_symbol(raw.get("symbol", "")),
                    side=PositionSide(side),
                    entry_price=float(raw.get("entryPrice") or 0),
                    mark_price=float(raw.get("markPrice") or 0),
                    quantity=contracts * contract_size,
                    leverage=int(float(leverage)) if leverage else None,
                    unrealized_pnl=float(raw.get("unrealizedPnl") or 0),
                    liquidation_price=float(raw.get("liquidationPrice") or 0),
                    margin_used=float(margin) if margin else None,
                )
            )

        self._positions_cache = (self._clock(), positions)
        return list(positions)

    async def get_market_price(self, symbol: str) -> float:
        ticker = await self._call("fetch_ticker", self._exchange.fetch_ticker, to_ccxt_symbol(symbol))
        price = float(ticker.get("last") or 0)
        if price <= 0:
            raise ExchangeError(f"no market price for {symbol}")
        return price

    # ──────────────────────────────────────────────
    # Account configuration
    # ──────────────────────────────────────────────

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        validate_leverage(leverage)
        await self._call(
            "set_leverage", self._exchange.set_leverage, leverage, to_ccxt_symbol(symbol), idempotent=False
        )
        logger.info("leverage_set", exchange=self.name, symbol=symbol, leverage=leverage)

    async def set_margin_mode(self, symbol: str, is_cross: bool) -> None:
        mode = "cross" if is_cross else "isolated"
        try:
            await self._call(
                "set_margin_mode", self._exchange.set_margin_mode, mode, to_ccxt_symbol(symbol), idempotent=False
            )
        except ExchangeError as e:
            text = str(e).lower()
            if "no need" not in text and "not modified" not in text and "already" not in text:
                raise
        logger.info("margin_mode_set", exchange=self.name, symbol=symbol, mode=mode)

    # ──────────────────────────────────────────────
    # Orders
    # ──────────────────────────────────────────────

    async def open_long(self, symbol: str, quantity: float, leverage: int) -> OrderAck:
        return await self._open(symbol, PositionSide.LONG, quantity, leverage)

    async def open_short(self, symbol: str, quantity: float, leverage: int) -> OrderAck:
        return await self._open(symbol, PositionSide.SHORT, quantity, leverage)

    async def _open(self, symbol: str, side: PositionSide, quantity: float, leverage: int) -> OrderAck:
        if quantity <= 0:
            raise ValueError("open quantity must be > 0")
        ccxt_symbol = to_ccxt_symbol(symbol)

        try:
            await self._ensure_hedge_mode(ccxt_symbol)
        except ExchangeError as e:
            logger.warning("hedge_mode_preflight_failed", exchange=self.name, error=str(e))
        try:
            await self.set_leverage(symbol, leverage)
        except (ExchangeError, ValueError) as e:
            logger.warning("leverage_preflight_failed", exchange=self.name, symbol=symbol, error=str(e))

        amount = self._amount(ccxt_symbol, quantity)
        order_side = "buy" if side is PositionSide.LONG else "sell"
        logger.info("creating_order", exchange=self.name, symbol=symbol, side=order_side, amount=amount)
        order = await self._call(
            "create_order",
            self._exchange.create_order,
            ccxt_symbol,
            "market",
            order_side,
            amount,
            None,
            params=self._position_params(side),
            idempotent=False,
        )
        self._invalidate_caches()
        return OrderAck(
            order_id=str(order.get("id", "")),
            symbol=symbol,
            side=order_side,
            quantity=amount,
            price=order.get("average") or order.get("price"),
        )

    def _invalidate_caches(self) -> None:
        self._balance_cache = None
        self._positions_cache = None

    async def close_long(self, symbol: str, quantity: float = 0.0) -> OrderAck:
        return await self._close(symbol, PositionSide.LONG, quantity)

    async def close_short(self, symbol: str, quantity: float = 0.0) -> OrderAck:
        return await self._close(symbol, PositionSide.SHORT, quantity)

    async def _close(self, symbol: str, side: PositionSide, quantity: float) -> OrderAck:
        ccxt_symbol = to_ccxt_symbol(symbol)
        raw_positions = await self._call(
            "fetch_positions", self._exchange.fetch_positions, [ccxt_symbol]
        )
        held = 0.0
        for raw in raw_positions:
            if raw.get("symbol") == ccxt_symbol and (raw.get("side") or "").lower() == side.value:
                held = abs(float(raw.get("contracts") or 0))
                break
        if held <= 0:
            raise PositionNotFoundError(f"no {side.value} position for {symbol}")

        amount = held if quantity <= 0 else min(self._amount(ccxt_symbol, quantity), held)
        order_side = "sell" if side is PositionSide.LONG else "buy"
        logger.info("closing_position", exchange=self.name, symbol=symbol, side=side.value, amount=amount)
        order = await self._call(
            "create_order",
            self._exchange.create_order,
            ccxt_symbol,
            "market",
            order_side,
            amount,
            None,
            params=self._position_params(side, closing=True),
            idempotent=False,
        )
        self._invalidate_caches()
        return OrderAck(
            order_id=str(order.get("id", "")),
            symbol=symbol,
            side=order_side,
            quantity=amount,
            price=order.get("average") or order.get("price"),
        )

    # ──────────────────────────────────────────────
    # Protective orders
    # ──────────────────────────────────────────────

    async def set_stop_loss(
        self, symbol: str, side: PositionSide, quantity: float, trigger_price: float
    ) -> None:
        await self._set_protective(symbol, side, quantity, trigger_price, "stopLossPrice")

    async def set_take_profit(
        self, symbol: str, side: PositionSide, quantity: float, trigger_price: float
    ) -> None:
        await self._set_protective(symbol, side, quantity, trigger_price, "takeProfitPrice")

    async def _set_protective(
        self, symbol: str, side: PositionSide, quantity: float, trigger_price: float, kind: str
    ) -> None:
        """Place a reduce-only trigger order, cancelling the one it replaces."""
        if trigger_price <= 0:
            raise ValueError(f"trigger price must be > 0, got {trigger_price}")
        ccxt_symbol = to_ccxt_symbol(symbol)
        amount = self._amount(ccxt_symbol, quantity)
        trigger = float(self._exchange.price_to_precision(ccxt_symbol, trigger_price))
        key = (symbol, side.value, kind)

        existing = self._protective_orders.get(key)
        if existing and existing[1] == amount and existing[2] == trigger:
            return
        if existing:
            try:
                await self._call(
                    "cancel_order", self._exchange.cancel_order, existing[0], ccxt_symbol, idempotent=False
                )
            except ExchangeError as e:
                logger.warning("protective_order_cancel_failed", symbol=symbol, order_id=existing[0], error=str(e))

        params = self._position_params(side, closing=True)
        params[kind] = trigger
        order = await self._call(
            "create_order",
            self._exchange.create_order,
            ccxt_symbol,
            "market",
            "sell" if side is PositionSide.LONG else "buy",
            amount,
            None,
            params=params,
            idempotent=False,
        )
        self._protective_orders[key] = (str(order.get("id", "")), amount, trigger)
        logger.info("protective_order_set", exchange=self.name, symbol=symbol, kind=kind, trigger=trigger)

    async def cancel_all_orders(self, symbol: str) -> None:
        await self._call(
            "cancel_all_orders", self._exchange.cancel_all_orders, to_ccxt_symbol(symbol), idempotent=False
        )
        for key in [k for k in self._protective_orders if k[0] == symbol]:
            del self._protective_orders[key]
        logger.info("orders_cancelled", exchange=self.name, symbol=symbol)
