"""OKX perpetual swap adapter over signed REST (httpx async).

Implements the ExchangeAdapter contract for OKX USDT-margined swaps:
canonical/OKX symbol conversion, base-quantity to contract-count translation,
HMAC-SHA256 request signing with a local clock-skew check, per-endpoint-class
token buckets, curated retries, 15s balance/position caches, long/short
position-mode preflight and replace-on-write protective orders.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import urlencode

import httpx

from autotrader.config import ExchangeCredentials, TransactionSettings
from autotrader.exceptions import (
    ContractSizeError,
    ExchangeError,
    PositionNotFoundError,
    TimestampOutOfRange,
)
from autotrader.exchange.client import ExchangeAdapter, validate_leverage
from autotrader.exchange.okx_errors import error_for_code
from autotrader.exchange.rate_limiter import EndpointClass, RateLimiter
from autotrader.exchange.retry import RetryPolicy, call_with_retry
from autotrader.exchange.symbols import from_okx_symbol, to_okx_symbol
from autotrader.exchange.types import (
    Balance,
    ContractSpec,
    ExchangePosition,
    OrderAck,
    format_contract_size,
    round_to_step,
)
from autotrader.logging import get_logger
from autotrader.models import PositionSide

logger = get_logger(__name__)

OKX_BASE_URL = "https://www.okx.com"
CACHE_TTL_SECONDS = 15.0
MAX_CLOCK_SKEW_SECONDS = 30.0
LONG_SHORT_MODE = "long_short_mode"

# ctVal (base units per contract), minSz, lotSz
DEFAULT_CONTRACT_SPECS: dict[str, ContractSpec] = {
    "BTC-USDT-SWAP": ContractSpec(Decimal("0.01"), Decimal("0.01"), Decimal("0.01")),
    "ETH-USDT-SWAP": ContractSpec(Decimal("0.1"), Decimal("0.01"), Decimal("0.01")),
    "SOL-USDT-SWAP": ContractSpec(Decimal("1"), Decimal("0.01"), Decimal("0.01")),
    "DOGE-USDT-SWAP": ContractSpec(Decimal("1000"), Decimal("0.01"), Decimal("0.01")),
    "XRP-USDT-SWAP": ContractSpec(Decimal("100"), Decimal("0.01"), Decimal("0.01")),
    "BNB-USDT-SWAP": ContractSpec(Decimal("0.01"), Decimal("1"), Decimal("1")),
    "ADA-USDT-SWAP": ContractSpec(Decimal("100"), Decimal("0.1"), Decimal("0.1")),
    "HYPE-USDT-SWAP": ContractSpec(Decimal("1"), Decimal("0.01"), Decimal("0.01")),
}
UNKNOWN_CONTRACT_SPEC = ContractSpec(Decimal("1"), Decimal("1"), Decimal("1"))


def okx_timestamp(now: float | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-01-01T00:00:00.000Z."""
    moment = datetime.fromtimestamp(time.time() if now is None else now, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def sign_request(secret: str, timestamp: str, method: str, request_path: str, body: str = "") -> str:
    """base64(HMAC-SHA256(secret, timestamp + METHOD + path?query + body))."""
    message = timestamp + method.upper() + request_path + body
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def check_clock_skew(local_time: float, server_time: float) -> None:
    """Fail before transport when the local clock drifts beyond +/-30s of the venue's."""
    skew = local_time - server_time
    if abs(skew) > MAX_CLOCK_SKEW_SECONDS:
        raise TimestampOutOfRange(
            f"request timestamp is {skew:+.1f}s from server time (limit {MAX_CLOCK_SKEW_SECONDS:.0f}s)"
        )


def quantity_to_contracts(spec: ContractSpec, quantity: float, inst_id: str = "") -> str:
    """Convert a base-asset quantity into an OKX contract count string.

    The raw count ``quantity / contract_value`` is floored to ``lot_size``.
    A floored count below ``min_size`` is rounded up to ``min_size`` when the
    raw count is at least half of it; smaller requests raise ContractSizeError.
    """
    raw = Decimal(str(quantity)) / spec.contract_value
    size = round_to_step(raw, spec.lot_size)

    if size < spec.min_size:
        if raw < spec.min_size * Decimal("0.5"):
            min_quantity = spec.min_size * spec.contract_value
            raise ContractSizeError(
                f"order quantity too small for {inst_id}: need at least {min_quantity} "
                f"({spec.min_size} contracts), got {quantity}"
            )
        logger.warning(
            "contract_size_rounded_up_to_minimum",
            inst_id=inst_id,
            floored=str(size),
            min_size=str(spec.min_size),
        )
        size = spec.min_size

    return format_contract_size(size, spec.lot_size)


def _to_float(value, default: float = 0.0) -> float:
    """Parse an OKX numeric string; empty or missing values become ``default``."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class _CacheEntry:
    value: object
    stored_at: float


class OKXAdapter(ExchangeAdapter):
    """Concrete OKX adapter.

    Args:
        credentials: API key, secret and passphrase; ``testnet`` enables
            demo trading via the x-simulated-trading header.
        transaction: Retry count, backoff base and HTTP timeout.
        base_url: REST host.
        http_client: Optional pre-built client (tests inject a MockTransport).
        rate_limiter: Optional limiter; defaults to the OKX bucket table.
        clock: Wall-clock source used for timestamps and cache ages.
    """

    name = "okx"

    def __init__(
        self,
        credentials: ExchangeCredentials,
        transaction: TransactionSettings | None = None,
        *,
        base_url: str = OKX_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        clock=time.time,
    ) -> None:
        api_key = credentials.api_key.get_secret_value()
        secret = credentials.secret_key.get_secret_value()
        passphrase = credentials.passphrase.get_secret_value()
        if not api_key or not secret or not passphrase:
            raise ValueError("OKX requires api_key, secret_key and passphrase")

        transaction = transaction or TransactionSettings()
        self._api_key = api_key
        self._secret = secret
        self._passphrase = passphrase
        self._demo = credentials.testnet
        self._base_url = base_url
        self._timeout = transaction.timeout_seconds
        self._retry_policy = RetryPolicy.from_settings(transaction)
        self._client = http_client
        self._owns_client = http_client is None
        self._rate_limiter = rate_limiter or RateLimiter()
        self._clock = clock

        self._server_offset = 0.0  # server_time - local_time
        self._contract_specs: dict[str, ContractSpec] = {}
        self._margin_modes: dict[str, str] = {}
        self._position_mode_ready = False
        self._balance_cache: _CacheEntry | None = None
        self._positions_cache: _CacheEntry | None = None

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the HTTP client and measure the offset to OKX server time."""
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
            self._owns_client = True
        logger.info("connecting_to_okx", demo=self._demo)
        await self.sync_server_time()
        logger.info("okx_connected", demo=self._demo, server_offset=round(self._server_offset, 3))

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info("okx_connection_closed")

    async def sync_server_time(self) -> None:
        """Record the offset between the local clock and OKX server time."""
        data = await self._request(
            "GET", "/api/v5/public/time", endpoint_class=EndpointClass.PUBLIC, signed=False
        )
        if data:
            server_time = _to_float(data[0].get("ts")) / 1000
            if server_time > 0:
                self._server_offset = server_time - self._clock()

    # ──────────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────────

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
            self._owns_client = True
        return self._client

    def _auth_headers(self, method: str, request_path: str, body: str) -> dict[str, str]:
        local_now = self._clock()
        check_clock_skew(local_now, local_now + self._server_offset)
        timestamp = okx_timestamp(local_now)
        headers = {
            "OK-ACCESS-KEY": self._api_key,
            "OK-ACCESS-SIGN": sign_request(self._secret, timestamp, method, request_path, body),
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self._passphrase,
        }
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | list | None = None,
        *,
        endpoint_class: EndpointClass = EndpointClass.PRIVATE,
        signed: bool = True,
    ) -> list[dict]:
        """Send one REST call with rate limiting and retries; return the ``data`` array."""
        idempotent = method.upper() == "GET"

        async def _send() -> list[dict]:
            return await self._send(method, path, params, endpoint_class=endpoint_class, signed=signed)

        try:
            return await call_with_retry(
                _send,
                self._retry_policy,
                idempotent=idempotent,
                description=f"{method} {path}",
            )
        except httpx.HTTPError as e:
            logger.error("okx_transport_error", method=method, path=path, error=repr(e))
            raise ExchangeError(f"OKX {method} {path} transport failure: {e!r}") from e

    async def _send(
        self,
        method: str,
        path: str,
        params: dict | list | None,
        *,
        endpoint_class: EndpointClass,
        signed: bool,
    ) -> list[dict]:
        await self._rate_limiter.acquire(endpoint_class)

        method = method.upper()
        request_path = path
        body = ""
        if method == "GET" and params:
            request_path = f"{path}?{urlencode(params)}"
        elif method == "POST" and params is not None:
            body = json.dumps(params, separators=(",", ":"))

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if signed:
            headers.update(self._auth_headers(method, request_path, body))
        if self._demo:
            headers["x-simulated-trading"] = "1"

        response = await self._http().request(
            method, request_path, content=body or None, headers=headers
        )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExchangeError(
                f"invalid JSON from OKX (HTTP {response.status_code}): {response.text[:200]}"
            ) from e

        code = str(payload.get("code", "0"))
        data = payload.get("data") or []
        if code != "0":
            message = payload.get("msg", "")
            if data and isinstance(data[0], dict) and data[0].get("sCode") not in (None, "", "0"):
                code = str(data[0]["sCode"])
                message = data[0].get("sMsg", message)
            logger.error("okx_api_error", path=path, code=code, msg=message)
            raise error_for_code(code, message)

        for item in data:
            if isinstance(item, dict) and item.get("sCode") not in (None, "", "0"):
                raise error_for_code(str(item["sCode"]), item.get("sMsg", ""))

        return data

    def _cached(self, entry: _CacheEntry | None):
        if entry is not None and self._clock() - entry.stored_at < CACHE_TTL_SECONDS:
            return entry.value
        return None

    # ──────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────

    async def get_balance(self) -> Balance:
        """Account totals: totalEq -> total, adjEq -> free, isoEq -> used."""
        cached = self._cached(self._balance_cache)
        if cached is not None:
            return cached

        data = await self._request("GET", "/api/v5/account/balance")
        balance = Balance(total=0.0, free=0.0, used=0.0)
        if data:
            account = data[0]
            balance = Balance(
                total=_to_float(account.get("totalEq")),
                free=_to_float(account.get("adjEq")),
                used=_to_float(account.get("isoEq")),
            )

        self._balance_cache = _CacheEntry(balance, self._clock())
        logger.debug("okx_balance_fetched", total=balance.total, free=balance.free, used=balance.used)
        return balance

    async def get_positions(self) -> list[ExchangePosition]:
        cached = self._cached(self._positions_cache)
        if cached is not None:
            return list(cached)

        raw_positions = await self._fetch_raw_positions()
        positions: list[ExchangePosition] = []
        for raw in raw_positions:
            position = await self._parse_position(raw)
            if position is not None:
                positions.append(position)

        self._positions_cache = _CacheEntry(positions, self._clock())
        logger.debug("okx_positions_fetched", count=len(positions))
        return list(positions)

    async def _fetch_raw_positions(self, inst_id: str | None = None) -> list[dict]:
        params = {"instType": "SWAP"}
        if inst_id:
            params["instId"] = inst_id
        return await self._request("GET", "/api/v5/account/positions", params)

    @staticmethod
    def _position_side(raw: dict) -> PositionSide | None:
        contracts = _to_float(raw.get("pos"))
        pos_side = (raw.get("posSide") or "").lower()
        if pos_side == "long":
            return PositionSide.LONG
        if pos_side == "short":
            return PositionSide.SHORT
        # net mode: sign carries the direction
        if contracts > 0:
            return PositionSide.LONG
        if contracts < 0:
            return PositionSide.SHORT
        return None

    async def _parse_position(self, raw: dict) -> ExchangePosition | None:
        contracts = abs(_to_float(raw.get("pos")))
        side = self._position_side(raw)
        inst_id = raw.get("instId", "")
        if contracts == 0 or side is None or not inst_id:
            return None

        spec = await self.get_contract_spec(inst_id)
        mark = _to_float(raw.get("markPx")) or _to_float(raw.get("last"))
        leverage = int(_to_float(raw.get("lever"))) or None
        margin = _to_float(raw.get("imr")) or _to_float(raw.get("margin")) or None

        return ExchangePosition(
            symbol=from_okx_symbol(inst_id),
            side=side,
            entry_price=_to_float(raw.get("avgPx")),
            mark_price=mark,
            quantity=float(Decimal(str(contracts)) * spec.contract_value),
            leverage=leverage,
            unrealized_pnl=_to_float(raw.get("upl")),
            liquidation_price=_to_float(raw.get("liqPx")),
            margin_used=margin,
        )

    async def get_contract_spec(self, inst_id: str) -> ContractSpec:
        """Instrument ctVal/minSz/lotSz, falling back to the built-in table."""
        if inst_id in self._contract_specs:
            return self._contract_specs[inst_id]

        try:
            data = await self._request(
                "GET",
                "/api/v5/public/instruments",
                {"instType": "SWAP", "instId": inst_id},
                endpoint_class=EndpointClass.PUBLIC,
                signed=False,
            )
        except ExchangeError as e:
            logger.warning("contract_spec_fetch_failed", inst_id=inst_id, error=str(e))
            data = []

        if data:
            inst = data[0]
            spec = ContractSpec(
                contract_value=Decimal(inst.get("ctVal") or "1"),
                min_size=Decimal(inst.get("minSz") or "1"),
                lot_size=Decimal(inst.get("lotSz") or "1"),
            )
        else:
            spec = DEFAULT_CONTRACT_SPECS.get(inst_id, UNKNOWN_CONTRACT_SPEC)
            logger.warning("contract_spec_default_used", inst_id=inst_id, spec=str(spec))

        self._contract_specs[inst_id] = spec
        return spec

    async def get_market_price(self, symbol: str) -> float:
        inst_id = to_okx_symbol(symbol)
        data = await self._request(
            "GET",
            "/api/v5/market/ticker",
            {"instId": inst_id},
            endpoint_class=EndpointClass.PUBLIC,
            signed=False,
        )
        price = _to_float(data[0].get("last")) if data else 0.0
        if price <= 0:
            raise ExchangeError(f"no market price for {symbol}")
        return price

    async def get_fills(self, symbol: str, limit: int = 20) -> list[dict]:
        """Recent fills for a symbol, newest first."""
        if limit <= 0 or limit > 100:
            limit = 20
        inst_id = to_okx_symbol(symbol)
        data = await self._request(
            "GET", "/api/v5/trade/fills", {"instId": inst_id, "limit": str(limit)}
        )
        return [
            {
                "symbol": symbol,
                "order_id": fill.get("ordId", ""),
                "fill_id": fill.get("tradeId", ""),
                "side": (fill.get("side") or "").lower(),
                "quantity": _to_float(fill.get("fillSz") or fill.get("sz")),
                "price": _to_float(fill.get("fillPx") or fill.get("px")),
                "fee": _to_float(fill.get("fee")),
                "fee_currency": fill.get("feeCcy", ""),
                "timestamp": int(_to_float(fill.get("ts"))),
            }
            for fill in data
        ]

    # ──────────────────────────────────────────────
    # Account configuration
    # ──────────────────────────────────────────────

    async def ensure_long_short_mode(self) -> None:
        """Switch the account to hedge (long/short) mode if it is not already."""
        if self._position_mode_ready:
            return

        pos_mode = ""
        try:
            data = await self._request("GET", "/api/v5/account/config")
            pos_mode = data[0].get("posMode", "") if data else ""
        except ExchangeError as e:
            logger.warning("okx_account_config_failed", error=str(e))

        if pos_mode != LONG_SHORT_MODE:
            logger.info("okx_switching_position_mode", current=pos_mode or "unknown")
            try:
                await self._request(
                    "POST", "/api/v5/account/set-position-mode", {"posMode": LONG_SHORT_MODE}
                )
            except ExchangeError as e:
                if "already" not in str(e).lower():
                    raise
                logger.info("okx_position_mode_already_set", mode=LONG_SHORT_MODE)

        self._position_mode_ready = True

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        """Set leverage for both the long and short side of the instrument."""
        validate_leverage(leverage)
        inst_id = to_okx_symbol(symbol)
        mgn_mode = self._margin_modes.get(inst_id, "cross")

        failures: list[str] = []
        for pos_side in ("long", "short"):
            try:
                await self._request(
                    "POST",
                    "/api/v5/account/set-leverage",
                    {"instId": inst_id, "lever": str(leverage), "mgnMode": mgn_mode, "posSide": pos_side},
                )
            except ExchangeError as e:
                logger.warning("okx_set_leverage_side_failed", inst_id=inst_id, pos_side=pos_side, error=str(e))
                failures.append(str(e))

        if len(failures) == 2:
            raise ExchangeError(f"set leverage failed for {inst_id}: {failures[0]}")
        logger.info("okx_leverage_set", inst_id=inst_id, leverage=leverage, mgn_mode=mgn_mode)

    async def set_margin_mode(self, symbol: str, is_cross: bool) -> None:
        """Select cross or isolated margin for subsequent orders on the symbol.

        OKX applies margin mode per order through ``tdMode``; the choice is
        recorded here and used by every order and leverage call for the symbol.
        """
        inst_id = to_okx_symbol(symbol)
        mode = "cross" if is_cross else "isolated"
        self._margin_modes[inst_id] = mode
        logger.info("okx_margin_mode_set", inst_id=inst_id, mode=mode)

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
        inst_id = to_okx_symbol(symbol)
        logger.info("okx_open", symbol=symbol, inst_id=inst_id, side=side.value, quantity=quantity, leverage=leverage)

        try:
            await self.ensure_long_short_mode()
        except ExchangeError as e:
            logger.warning("okx_position_mode_preflight_failed", error=str(e))

        try:
            await self.set_leverage(symbol, leverage)
        except (ExchangeError, ValueError) as e:
            logger.warning("okx_leverage_preflight_failed", inst_id=inst_id, error=str(e))

        spec = await self.get_contract_spec(inst_id)
        size = quantity_to_contracts(spec, quantity, inst_id)

        order = {
            "instId": inst_id,
            "tdMode": self._margin_modes.get(inst_id, "cross"),
            "side": "buy" if side is PositionSide.LONG else "sell",
            "posSide": side.value,
            "ordType": "market",
            "sz": size,
        }
        return await self._place_order(symbol, order, quantity)

    async def close_long(self, symbol: str, quantity: float = 0.0) -> OrderAck:
        return await self._close(symbol, PositionSide.LONG, quantity)

    async def close_short(self, symbol: str, quantity: float = 0.0) -> OrderAck:
        return await self._close(symbol, PositionSide.SHORT, quantity)

    async def _close(self, symbol: str, side: PositionSide, quantity: float) -> OrderAck:
        inst_id = to_okx_symbol(symbol)
        raw_positions = await self._fetch_raw_positions(inst_id)

        held = Decimal("0")
        for raw in raw_positions:
            if raw.get("instId") == inst_id and self._position_side(raw) is side:
                held = abs(Decimal(raw.get("pos") or "0"))
                break
        if held <= 0:
            raise PositionNotFoundError(f"no {side.value} position for {symbol}")

        spec = await self.get_contract_spec(inst_id)
        size = held
        if quantity > 0:
            requested = Decimal(quantity_to_contracts(spec, quantity, inst_id))
            size = min(requested, held)

        order = {
            "instId": inst_id,
            "tdMode": self._margin_modes.get(inst_id, "cross"),
            "side": "sell" if side is PositionSide.LONG else "buy",
            "posSide": side.value,
            "ordType": "market",
            "sz": format_contract_size(size, spec.lot_size) if quantity > 0 else str(size),
        }
        logger.info("okx_close", symbol=symbol, side=side.value, contracts=order["sz"])
        return await self._place_order(symbol, order, float(size * spec.contract_value))

    def _invalidate_caches(self) -> None:
        self._balance_cache = None
        self._positions_cache = None

    async def _place_order(self, symbol: str, order: dict, quantity: float) -> OrderAck:
        data = await self._request(
            "POST", "/api/v5/trade/order", order, endpoint_class=EndpointClass.TRADING
        )
        order_id = data[0].get("ordId", "") if data else ""
        self._invalidate_caches()
        logger.info("okx_order_placed", order_id=order_id, inst_id=order["instId"], side=order["side"], sz=order["sz"])
        return OrderAck(order_id=order_id, symbol=symbol, side=order["side"], quantity=quantity)

    # ──────────────────────────────────────────────
    # Protective orders
    # ──────────────────────────────────────────────

    async def set_stop_loss(
        self, symbol: str, side: PositionSide, quantity: float, trigger_price: float
    ) -> None:
        await self._set_protective(symbol, side, quantity, trigger_price, kind="sl")

    async def set_take_profit(
        self, symbol: str, side: PositionSide, quantity: float, trigger_price: float
    ) -> None:
        await self._set_protective(symbol, side, quantity, trigger_price, kind="tp")

    async def _pending_algos(self, inst_id: str) -> list[dict]:
        return await self._request(
            "GET",
            "/api/v5/trade/orders-algo-pending",
            {"ordType": "conditional", "instType": "SWAP", "instId": inst_id},
        )

    async def _set_protective(
        self, symbol: str, side: PositionSide, quantity: float, trigger_price: float, kind: str
    ) -> None:
        """Place a conditional market-exit order, replacing any of the same kind.

        An existing order with identical size and trigger is left untouched,
        so repeating a call is a no-op.
        """
        if trigger_price <= 0:
            raise ValueError(f"trigger price must be > 0, got {trigger_price}")
        inst_id = to_okx_symbol(symbol)
        spec = await self.get_contract_spec(inst_id)
        size = quantity_to_contracts(spec, quantity, inst_id)
        trigger = f"{trigger_price:.10g}"
        trigger_field = f"{kind}TriggerPx"

        existing = [
            algo
            for algo in await self._pending_algos(inst_id)
            if algo.get("posSide") == side.value and algo.get(trigger_field)
        ]
        if (
            len(existing) == 1
            and _to_float(existing[0].get(trigger_field)) == float(trigger)
            and _to_float(existing[0].get("sz")) == float(size)
        ):
            logger.debug("okx_protective_order_unchanged", inst_id=inst_id, kind=kind, trigger=trigger)
            return

        if existing:
            await self._request(
                "POST",
                "/api/v5/trade/cancel-algos",
                [{"algoId": algo["algoId"], "instId": inst_id} for algo in existing],
                endpoint_class=EndpointClass.TRADING,
            )

        order = {
            "instId": inst_id,
            "tdMode": self._margin_modes.get(inst_id, "cross"),
            "side": "sell" if side is PositionSide.LONG else "buy",
            "posSide": side.value,
            "ordType": "conditional",
            "sz": size,
            trigger_field: trigger,
            f"{kind}OrdPx": "-1",
        }
        await self._request(
            "POST", "/api/v5/trade/order-algo", order, endpoint_class=EndpointClass.TRADING
        )
        logger.info(
            "okx_protective_order_set",
            inst_id=inst_id,
            kind="stop_loss" if kind == "sl" else "take_profit",
            pos_side=side.value,
            trigger=trigger,
            replaced=len(existing),
        )

    async def cancel_all_orders(self, symbol: str) -> None:
        """Cancel every pending regular and conditional order for the symbol."""
        inst_id = to_okx_symbol(symbol)

        pending = await self._request(
            "GET", "/api/v5/trade/orders-pending", {"instType": "SWAP", "instId": inst_id}
        )
        if pending:
            await self._request(
                "POST",
                "/api/v5/trade/cancel-batch-orders",
                [{"instId": inst_id, "ordId": order["ordId"]} for order in pending],
                endpoint_class=EndpointClass.TRADING,
            )

        algos = await self._pending_algos(inst_id)
        if algos:
            await self._request(
                "POST",
                "/api/v5/trade/cancel-algos",
                [{"algoId": algo["algoId"], "instId": inst_id} for algo in algos],
                endpoint_class=EndpointClass.TRADING,
            )

        logger.info("okx_orders_cancelled", inst_id=inst_id, orders=len(pending), algos=len(algos))
