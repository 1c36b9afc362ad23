"""Tests for symbol conversion, retry policy and token-bucket rate limiting."""

from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from autotrader.exceptions import (
    ExchangeAuthError,
    ExchangeError,
    RateLimitExceeded,
    RetryableExchangeError,
)
from autotrader.exchange.okx_errors import error_for_code, is_network_error
from autotrader.exchange.rate_limiter import TokenBucket
from autotrader.exchange.retry import RetryPolicy, call_with_retry, is_retryable
from autotrader.exchange.symbols import (
    base_asset,
    from_ccxt_symbol,
    from_okx_symbol,
    normalize_symbol,
    to_ccxt_symbol,
    to_okx_symbol,
)
from autotrader.exchange.types import format_contract_size, round_to_step


class TestSymbols:
    """Canonical <-> venue symbol conversion."""

    @pytest.mark.parametrize(
        "canonical,okx",
        [
            ("BTCUSDT", "BTC-USDT-SWAP"),
            ("ETHUSDT", "ETH-USDT-SWAP"),
            ("1000PEPEUSDT", "1000PEPE-USDT-SWAP"),
            ("HYPEUSDT", "HYPE-USDT-SWAP"),
            ("NEWCOINUSDT", "NEWCOIN-USDT-SWAP"),
        ],
    )
    def test_okx_round_trip(self, canonical, okx):
        assert to_okx_symbol(canonical) == okx
        assert from_okx_symbol(okx) == canonical

    def test_okx_id_passes_through(self):
        assert to_okx_symbol("SOL-USDT-SWAP") == "SOL-USDT-SWAP"

    def test_unrecognized_gets_swap_suffix(self):
        assert to_okx_symbol("FOO") == "FOO-SWAP"

    def test_ccxt(self):
        assert to_ccxt_symbol("BTCUSDT") == "BTC/USDT:USDT"
        assert from_ccxt_symbol("BTC/USDT:USDT") == "BTCUSDT"

    def test_normalize(self):
        assert normalize_symbol(" sol ") == "SOLUSDT"
        assert normalize_symbol("btcusdt") == "BTCUSDT"

    def test_base_asset(self):
        assert base_asset("BTCUSDT") == "BTC"
        assert base_asset("BTC") == "BTC"


class TestRoundToStep:
    """Lot-size flooring and formatting."""

    def test_rounds_down(self):
        assert round_to_step(Decimal("1.239"), Decimal("0.01")) == Decimal("1.23")

    def test_zero_step_passthrough(self):
        assert round_to_step(Decimal("1.239"), Decimal("0")) == Decimal("1.239")

    @pytest.mark.parametrize(
        "lot,expected",
        [(Decimal("1"), "3"), (Decimal("0.1"), "3.0"), (Decimal("0.01"), "3.00")],
    )
    def test_format_precision(self, lot, expected):
        assert format_contract_size(Decimal("3"), lot) == expected


class TestErrorCodes:
    """OKX code classification."""

    def test_retryable(self):
        assert isinstance(error_for_code("50011"), RetryableExchangeError)

    def test_auth(self):
        error = error_for_code("50006")
        assert isinstance(error, ExchangeAuthError)
        assert error.message == "Invalid OK-ACCESS-SIGN"

    def test_unknown(self):
        error = error_for_code("99999")
        assert type(error) is ExchangeError
        assert str(error) == "[99999] Unknown error: 99999"

    def test_network_patterns(self):
        assert is_network_error(Exception("Connection reset by peer"))
        assert not is_network_error(Exception("invalid instrument"))


class TestRetry:
    """Backoff schedule and retry classification."""

    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(max_retries=5, base_delay=1.0, max_delay=3.0)
        assert [policy.delay(n) for n in range(1, 5)] == [1.0, 2.0, 3.0, 3.0]

    def test_transport_errors_retryable_only_for_reads(self):
        error = httpx.ConnectError("refused")
        assert is_retryable(error, idempotent=True)
        assert not is_retryable(error, idempotent=False)

    def test_coded_venue_errors_not_retryable(self):
        assert not is_retryable(ExchangeError("timeout", code="51000"))

    def test_rate_limit_exhaustion_not_retryable(self):
        assert not is_retryable(RateLimitExceeded("rate limit exceeded"))

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        operation = AsyncMock(side_effect=[RetryableExchangeError("busy", code="50011"), "ok"])
        sleep = AsyncMock()

        result = await call_with_retry(operation, RetryPolicy(max_retries=3, base_delay=0.5), sleep=sleep)

        assert result == "ok"
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        operation = AsyncMock(side_effect=RetryableExchangeError("busy", code="50011"))
        sleep = AsyncMock()

        with pytest.raises(RetryableExchangeError):
            await call_with_retry(operation, RetryPolicy(max_retries=2, base_delay=0.1), sleep=sleep)

        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        operation = AsyncMock(side_effect=ExchangeAuthError("bad key", code="50005"))
        sleep = AsyncMock()

        with pytest.raises(ExchangeAuthError):
            await call_with_retry(operation, RetryPolicy(), sleep=sleep)

        assert operation.await_count == 1
        sleep.assert_not_awaited()


class TestTokenBucket:
    """Bounded-wait token bucket."""

    @pytest.mark.asyncio
    async def test_burst_then_exhausted(self):
        now = [0.0]
        bucket = TokenBucket(rate=1, burst=2, max_wait=0.1, clock=lambda: now[0])

        await bucket.acquire()
        await bucket.acquire()
        with pytest.raises(RateLimitExceeded):
            await bucket.acquire()

    @pytest.mark.asyncio
    async def test_refills_over_time(self):
        now = [0.0]
        bucket = TokenBucket(rate=2, burst=2, clock=lambda: now[0])

        await bucket.acquire()
        await bucket.acquire()
        now[0] += 1.0

        assert bucket.tokens == pytest.approx(2.0)
        await bucket.acquire()

    @pytest.mark.asyncio
    async def test_never_exceeds_burst(self):
        now = [0.0]
        bucket = TokenBucket(rate=10, burst=3, clock=lambda: now[0])
        now[0] += 100.0

        assert bucket.tokens == 3
