"""Tests for the per-trader cycle orchestrator.

Tests verify:
- Cooldown skips the AI call but still writes a failed record
- Decisions execute closes first, then opens, then hold/wait
- Open size is clamped to available margin, refused below the minimum
- Duplicate opens and closes without a position fail as single intents
- Closing records the trade in the Kelly engine
- AI failures keep the partial prompts in the record
- Venue and transport failures fail one intent; the cycle record is always written
- Protective orders are reconciled for every open position
- The run loop starts immediately and stops after the current cycle
"""

import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from autotrader.ai.client import AIClient, AIProvider
from autotrader.config import KellyRuntimeConfig
from autotrader.context.builder import ContextBuilder
from autotrader.decision_log.logger import DecisionLogger
from autotrader.exceptions import AIParseError, ExchangeError, StatsError
from autotrader.exchange.client import ExchangeAdapter
from autotrader.exchange.types import Balance, ExchangePosition, OrderAck
from autotrader.models import (
    AIResult,
    CloseDecision,
    DecisionAction,
    OpenDecision,
    PassiveDecision,
    PositionSide,
)
from autotrader.orchestrator import DAILY_RESET_SECONDS, TraderOrchestrator
from autotrader.stats.kelly import KellyStopManager

NOW = 1_700_000_000.0


class Clock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def open_long(symbol="BTCUSDT", size=1000.0, leverage=10) -> OpenDecision:
    return OpenDecision(
        action=DecisionAction.OPEN_LONG,
        symbol=symbol,
        leverage=leverage,
        position_size_usd=size,
        stop_loss=95000.0,
        take_profit=110000.0,
    )


def btc_long(**overrides) -> ExchangePosition:
    values = dict(
        symbol="BTCUSDT",
        side=PositionSide.LONG,
        entry_price=100000.0,
        mark_price=102000.0,
        quantity=0.01,
        leverage=10,
        unrealized_pnl=20.0,
        margin_used=102.0,
    )
    values.update(overrides)
    return ExchangePosition(**values)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def mock_adapter() -> AsyncMock:
    """Mock ExchangeAdapter with an empty account of 50 free USDT."""
    adapter = AsyncMock(spec=ExchangeAdapter)
    adapter.get_balance.return_value = Balance(total=1000.0, free=50.0, used=0.0)
    adapter.get_positions.return_value = []
    adapter.get_market_price.return_value = 100000.0
    adapter.open_long.return_value = OrderAck("ord-1", "BTCUSDT", "buy", 0.004)
    adapter.open_short.return_value = OrderAck("ord-2", "ETHUSDT", "sell", 0.1)
    adapter.close_long.return_value = OrderAck("ord-3", "BTCUSDT", "sell", 0.01)
    adapter.close_short.return_value = OrderAck("ord-4", "ETHUSDT", "buy", 0.1)
    return adapter


@pytest.fixture
def mock_stats() -> MagicMock:
    """Mock Kelly engine returning fixed protective prices."""
    stats = MagicMock(spec=KellyStopManager)
    stats.calculate_stop_loss.return_value = 98000.0
    stats.calculate_take_profit.return_value = 108000.0
    return stats


@pytest.fixture
def mock_ai() -> AsyncMock:
    ai = AsyncMock(spec=AIClient)
    ai.provider = AIProvider(name="deepseek", url="https://api.deepseek.com/v1/chat/completions", model="deepseek-chat", api_key="sk")
    ai.decide.return_value = AIResult(
        system_prompt="system",
        user_prompt="user",
        cot_trace="reasoning",
        decisions=[PassiveDecision(action=DecisionAction.WAIT, symbol="BTCUSDT")],
    )
    return ai


@pytest.fixture
def context_builder(mock_adapter, trader_config, clock) -> ContextBuilder:
    """Real ContextBuilder over the mocked adapter."""
    return ContextBuilder(mock_adapter, trader_config, clock=clock)


@pytest.fixture
def decision_logger(orchestrator_settings, trader_config) -> DecisionLogger:
    return DecisionLogger(orchestrator_settings.decision_log_dir, trader_config.id)


@pytest.fixture
def mock_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def orchestrator(
    trader_config,
    mock_adapter,
    mock_stats,
    mock_ai,
    context_builder,
    decision_logger,
    orchestrator_settings,
    mock_sleep,
    clock,
) -> TraderOrchestrator:
    """Orchestrator with mocked venue, engine and AI."""
    return TraderOrchestrator(
        trader_config,
        mock_adapter,
        mock_stats,
        mock_ai,
        context_builder,
        decision_logger,
        orchestrator_settings,
        sleep=mock_sleep,
        clock=clock,
    )


def decide(mock_ai, *decisions) -> None:
    mock_ai.decide.return_value = AIResult(system_prompt="system", user_prompt="user", decisions=list(decisions))


# ---------------------------------------------------------------------------
# Cycle gating
# ---------------------------------------------------------------------------


class TestCycleGating:
    """Cooldown, context failures and the daily reset."""

    @pytest.mark.asyncio
    async def test_cooldown_skips_ai_and_writes_record(self, orchestrator, mock_ai, mock_adapter, decision_logger):
        orchestrator.pause_until(NOW + 600)

        record = await orchestrator.run_cycle()

        assert record.success is False
        assert "10 minutes remaining" in record.error_message
        assert orchestrator.call_count == 1
        mock_ai.decide.assert_not_awaited()
        mock_adapter.get_balance.assert_not_awaited()
        (written,) = decision_logger.latest_records(5)
        assert written.error_message == record.error_message

    @pytest.mark.asyncio
    async def test_cooldown_expires(self, orchestrator, mock_ai, clock):
        orchestrator.pause_until(NOW + 60)
        clock.now += 61

        record = await orchestrator.run_cycle()

        assert record.success is True
        mock_ai.decide.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_failure_fails_cycle(self, orchestrator, mock_adapter, mock_ai):
        mock_adapter.get_balance.side_effect = ExchangeError("venue down")

        record = await orchestrator.run_cycle()

        assert record.success is False
        assert record.error_message.startswith("failed to build trading context")
        mock_ai.decide.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_daily_pnl_reset_after_24h(self, orchestrator, mock_adapter, mock_ai, clock):
        mock_adapter.get_positions.return_value = [btc_long()]
        decide(mock_ai, CloseDecision(action=DecisionAction.CLOSE_LONG, symbol="BTCUSDT"))
        await orchestrator.run_cycle()
        assert orchestrator.daily_pnl == 20.0

        decide(mock_ai, PassiveDecision(action=DecisionAction.HOLD, symbol="BTCUSDT"))
        clock.now += DAILY_RESET_SECONDS
        await orchestrator.run_cycle()

        assert orchestrator.daily_pnl == 0.0

    @pytest.mark.asyncio
    async def test_runtime_kelly_config_applied_once(self, orchestrator, mock_stats):
        runtime = KellyRuntimeConfig(kelly_ratio_adjustment=0.25)
        orchestrator.set_kelly_runtime_config(runtime)

        await orchestrator.run_cycle()
        await orchestrator.run_cycle()

        mock_stats.apply_runtime_config.assert_called_once_with(runtime)


# ---------------------------------------------------------------------------
# AI results
# ---------------------------------------------------------------------------


class TestAIResult:
    """Prompt and reply artifacts in the decision record."""

    @pytest.mark.asyncio
    async def test_prompt_settings_passed(self, orchestrator, mock_ai, trader_config):
        orchestrator.set_custom_prompt("Only BTC")
        orchestrator.set_override_base_prompt(True)
        orchestrator.set_system_prompt_template("aggressive")

        await orchestrator.run_cycle()

        _, kwargs = mock_ai.decide.call_args
        assert kwargs == {"template_name": "aggressive", "custom_prompt": "Only BTC", "override_base": True}

    @pytest.mark.asyncio
    async def test_success_record(self, orchestrator):
        record = await orchestrator.run_cycle()

        assert record.success is True
        assert record.system_prompt == "system"
        assert record.input_prompt == "user"
        assert record.cot_trace == "reasoning"
        assert '"action": "wait"' in record.decision_json
        assert record.candidate_coins == ["BTCUSDT", "ETHUSDT"]
        assert set(record.account_state) == {
            "total_balance",
            "available_balance",
            "total_unrealized_profit",
            "position_count",
            "margin_used_pct",
        }
        assert record.decisions[0].action == "wait"
        assert record.decisions[0].success is True

    @pytest.mark.asyncio
    async def test_ai_failure_keeps_partial_artifacts(self, orchestrator, mock_ai, mock_adapter):
        partial = AIResult(system_prompt="sys", user_prompt="usr", raw_response="garbage", cot_trace="garbage")
        mock_ai.decide.side_effect = AIParseError("no JSON decision array in reply", partial)

        record = await orchestrator.run_cycle()

        assert record.success is False
        assert record.error_message.startswith("failed to get AI decision")
        assert record.system_prompt == "sys"
        assert record.input_prompt == "usr"
        assert record.cot_trace == "garbage"
        assert record.decisions == []
        mock_adapter.open_long.assert_not_awaited()


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class TestExecution:
    """Intent ordering, sizing and failure isolation."""

    @pytest.mark.asyncio
    async def test_closes_run_before_opens(self, orchestrator, mock_ai, mock_adapter):
        mock_adapter.get_positions.return_value = [btc_long()]
        mock_adapter.get_balance.return_value = Balance(total=1000.0, free=1000.0, used=0.0)
        decide(
            mock_ai,
            PassiveDecision(action=DecisionAction.WAIT, symbol="SOLUSDT"),
            open_long("ETHUSDT", size=100.0, leverage=5),
            CloseDecision(action=DecisionAction.CLOSE_LONG, symbol="BTCUSDT"),
        )

        record = await orchestrator.run_cycle()

        assert [a.action for a in record.decisions] == ["close_long", "open_long", "wait"]
        assert all(a.success for a in record.decisions)
        writes = [c[0] for c in mock_adapter.mock_calls if c[0] in ("close_long", "open_long")]
        assert writes == ["close_long", "open_long"]
        assert record.execution_log[:3] == [
            "BTCUSDT close_long succeeded",
            "ETHUSDT open_long succeeded",
            "SOLUSDT wait succeeded",
        ]

    @pytest.mark.asyncio
    async def test_open_clamped_to_available_margin(self, orchestrator, mock_ai, mock_adapter, context_builder):
        decide(mock_ai, open_long(size=1000.0, leverage=10))

        record = await orchestrator.run_cycle()

        action = record.decisions[0]
        assert action.success is True
        assert action.quantity == pytest.approx(0.004)
        assert action.price == 100000.0
        assert action.order_id == "ord-1"
        args = mock_adapter.open_long.call_args.args
        assert args[0] == "BTCUSDT"
        assert args[1] == pytest.approx(0.004)
        assert args[2] == 10
        mock_adapter.set_margin_mode.assert_awaited_once_with("BTCUSDT", True)
        mock_adapter.set_stop_loss.assert_any_await("BTCUSDT", PositionSide.LONG, pytest.approx(0.004), 95000.0)
        mock_adapter.set_take_profit.assert_any_await("BTCUSDT", PositionSide.LONG, pytest.approx(0.004), 110000.0)
        assert context_builder.first_seen_ms("BTCUSDT", PositionSide.LONG) == int(NOW * 1000)

    @pytest.mark.asyncio
    async def test_open_refused_without_margin(self, orchestrator, mock_ai, mock_adapter):
        mock_adapter.get_balance.return_value = Balance(total=1000.0, free=1.0, used=0.0)
        decide(mock_ai, open_long(size=1000.0, leverage=10))

        record = await orchestrator.run_cycle()

        action = record.decisions[0]
        assert action.success is False
        assert "insufficient margin" in action.error
        mock_adapter.open_long.assert_not_awaited()
        assert record.success is True

    @pytest.mark.asyncio
    async def test_open_below_minimum_refused(self, orchestrator, mock_ai, mock_adapter):
        decide(mock_ai, open_long(size=5.0))

        record = await orchestrator.run_cycle()

        assert record.decisions[0].success is False
        assert "below minimum" in record.decisions[0].error
        mock_adapter.open_long.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_open_refused(self, orchestrator, mock_ai, mock_adapter):
        mock_adapter.get_positions.return_value = [btc_long()]
        decide(mock_ai, open_long())

        record = await orchestrator.run_cycle()

        assert record.decisions[0].success is False
        assert "already has a long position" in record.decisions[0].error
        mock_adapter.open_long.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_open_short_uses_short_side(self, orchestrator, mock_ai, mock_adapter):
        mock_adapter.get_market_price.return_value = 2000.0
        decide(
            mock_ai,
            OpenDecision(
                action=DecisionAction.OPEN_SHORT,
                symbol="ETHUSDT",
                leverage=5,
                position_size_usd=100.0,
                stop_loss=2100.0,
                take_profit=1800.0,
            ),
        )

        record = await orchestrator.run_cycle()

        assert record.decisions[0].success is True
        args = mock_adapter.open_short.call_args.args
        assert args[1] == pytest.approx(0.05)
        mock_adapter.set_stop_loss.assert_any_await("ETHUSDT", PositionSide.SHORT, pytest.approx(0.05), 2100.0)

    @pytest.mark.asyncio
    async def test_failed_open_does_not_stop_later_intents(self, orchestrator, mock_ai, mock_adapter):
        mock_adapter.open_long.side_effect = ExchangeError("order rejected", code="51010")
        decide(mock_ai, open_long(size=100.0), PassiveDecision(action=DecisionAction.HOLD, symbol="ETHUSDT"))

        record = await orchestrator.run_cycle()

        assert [a.success for a in record.decisions] == [False, True]
        assert record.execution_log[0] == "BTCUSDT open_long failed: [51010] order rejected"

    @pytest.mark.asyncio
    async def test_open_refused_when_margin_unreadable(self, orchestrator, mock_ai, mock_adapter, decision_logger):
        mock_adapter.get_balance.side_effect = [
            Balance(total=1000.0, free=50.0, used=0.0),
            ExchangeError("venue down"),
        ]
        decide(mock_ai, open_long(size=800.0, leverage=10))

        record = await orchestrator.run_cycle()

        action = record.decisions[0]
        assert action.success is False
        assert "cannot verify free margin" in action.error
        mock_adapter.open_long.assert_not_awaited()
        assert len(decision_logger.latest_records(10)) == 1

    @pytest.mark.asyncio
    async def test_transport_error_fails_only_its_intent(self, orchestrator, mock_ai, mock_adapter, decision_logger):
        mock_adapter.get_balance.return_value = Balance(total=1000.0, free=1000.0, used=0.0)
        mock_adapter.open_long.side_effect = httpx.ConnectError("connection reset by peer")
        decide(mock_ai, open_long(size=100.0), PassiveDecision(action=DecisionAction.HOLD, symbol="ETHUSDT"))

        record = await orchestrator.run_cycle()

        assert [a.success for a in record.decisions] == [False, True]
        assert "connection reset by peer" in record.decisions[0].error
        assert record.execution_log[-1].startswith("protective orders updated")
        (written,) = decision_logger.latest_records(10)
        assert [a.action for a in written.decisions] == ["open_long", "hold"]

    @pytest.mark.asyncio
    async def test_write_pause_after_venue_write(self, orchestrator, mock_ai, mock_sleep, orchestrator_settings):
        decide(mock_ai, open_long(size=100.0))

        await orchestrator.run_cycle()

        mock_sleep.assert_any_await(orchestrator_settings.write_pause_seconds)

    @pytest.mark.asyncio
    async def test_no_pause_for_passive(self, orchestrator, mock_sleep):
        await orchestrator.run_cycle()

        mock_sleep.assert_not_awaited()


class TestClose:
    """Closing positions and feeding the Kelly engine."""

    @pytest.mark.asyncio
    async def test_close_records_trade(self, orchestrator, mock_ai, mock_adapter, mock_stats, context_builder, clock):
        context_builder.mark_opened("BTCUSDT", PositionSide.LONG)
        mock_adapter.get_positions.return_value = [btc_long()]
        mock_adapter.get_market_price.return_value = 102000.0
        decide(mock_ai, CloseDecision(action=DecisionAction.CLOSE_LONG, symbol="BTCUSDT"))
        clock.now = NOW + 3600

        record = await orchestrator.run_cycle()

        action = record.decisions[0]
        assert action.success is True
        assert action.price == 102000.0
        assert action.quantity == 0.01
        mock_adapter.close_long.assert_awaited_once_with("BTCUSDT", 0)
        mock_stats.record_trade.assert_called_once()
        symbol, is_win, profit_pct, holding = mock_stats.record_trade.call_args.args
        assert (symbol, is_win, holding) == ("BTCUSDT", True, 3600)
        assert profit_pct == pytest.approx(2.0)
        mock_stats.clear_position_peak.assert_called_once_with("BTCUSDT")
        assert orchestrator.daily_pnl == 20.0

    @pytest.mark.asyncio
    async def test_trade_recorded_off_the_event_loop_thread(self, orchestrator, mock_ai, mock_adapter, mock_stats):
        threads = []
        mock_stats.record_trade.side_effect = lambda *args: threads.append(threading.get_ident())
        mock_adapter.get_positions.return_value = [btc_long()]
        decide(mock_ai, CloseDecision(action=DecisionAction.CLOSE_LONG, symbol="BTCUSDT"))

        await orchestrator.run_cycle()

        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_losing_short_close(self, orchestrator, mock_ai, mock_adapter, mock_stats):
        mock_adapter.get_positions.return_value = [
            btc_long(symbol="ETHUSDT", side=PositionSide.SHORT, entry_price=2000.0, mark_price=2100.0, unrealized_pnl=-10.0)
        ]
        decide(mock_ai, CloseDecision(action=DecisionAction.CLOSE_SHORT, symbol="ETHUSDT"))

        await orchestrator.run_cycle()

        symbol, is_win, profit_pct, _ = mock_stats.record_trade.call_args.args
        assert symbol == "ETHUSDT"
        assert is_win is False
        assert profit_pct == pytest.approx(-5.0)
        mock_adapter.close_short.assert_awaited_once_with("ETHUSDT", 0)

    @pytest.mark.asyncio
    async def test_close_without_position(self, orchestrator, mock_ai, mock_adapter, mock_stats):
        decide(mock_ai, CloseDecision(action=DecisionAction.CLOSE_SHORT, symbol="BTCUSDT"))

        record = await orchestrator.run_cycle()

        assert record.decisions[0].success is False
        assert "no open short position" in record.decisions[0].error
        mock_adapter.close_short.assert_not_awaited()
        mock_stats.record_trade.assert_not_called()


# ---------------------------------------------------------------------------
# Protective orders
# ---------------------------------------------------------------------------


class TestProtectiveOrders:
    """Per-cycle Kelly stop-loss / take-profit reconciliation."""

    @pytest.mark.asyncio
    async def test_every_position_updated(self, orchestrator, mock_adapter, mock_stats, mock_sleep, orchestrator_settings):
        eth_short = btc_long(symbol="ETHUSDT", side=PositionSide.SHORT, entry_price=2000.0, mark_price=1950.0, quantity=0.5)
        mock_adapter.get_positions.return_value = [btc_long(), eth_short]

        updated = await orchestrator.update_protective_orders()

        assert updated == 2
        mock_stats.calculate_stop_loss.assert_any_call("BTCUSDT", 100000.0, 102000.0, PositionSide.LONG)
        mock_stats.calculate_take_profit.assert_any_call("ETHUSDT", 2000.0, 1950.0, PositionSide.SHORT)
        mock_adapter.set_stop_loss.assert_any_await("BTCUSDT", PositionSide.LONG, 0.01, 98000.0)
        mock_adapter.set_take_profit.assert_any_await("ETHUSDT", PositionSide.SHORT, 0.5, 108000.0)
        mock_sleep.assert_awaited_once_with(orchestrator_settings.protective_pause_seconds)

    @pytest.mark.asyncio
    async def test_stats_error_skips_position(self, orchestrator, mock_adapter, mock_stats):
        mock_adapter.get_positions.return_value = [btc_long()]
        mock_stats.calculate_stop_loss.side_effect = StatsError("bad prices")

        assert await orchestrator.update_protective_orders() == 0
        mock_adapter.set_stop_loss.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_venue_failure_is_logged_not_raised(self, orchestrator, mock_adapter):
        mock_adapter.get_positions.return_value = [btc_long()]
        mock_adapter.set_stop_loss.side_effect = ExchangeError("algo rejected")

        assert await orchestrator.update_protective_orders() == 1
        mock_adapter.set_take_profit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_update_error_still_writes_record(self, orchestrator, mock_adapter, decision_logger):
        mock_adapter.get_positions.side_effect = [[], httpx.ReadTimeout("read timed out")]

        record = await orchestrator.run_cycle()

        assert record.execution_log[-1].startswith("protective order update failed")
        assert len(decision_logger.latest_records(10)) == 1

    @pytest.mark.asyncio
    async def test_cycle_logs_update_count(self, orchestrator, mock_adapter):
        mock_adapter.get_positions.return_value = [btc_long()]

        record = await orchestrator.run_cycle()

        assert record.execution_log[-1] == "protective orders updated for 1 positions"


# ---------------------------------------------------------------------------
# Lifecycle and reporting
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Run loop, stop and shutdown."""

    @pytest.mark.asyncio
    async def test_first_cycle_immediate_and_stop(self, orchestrator):
        task = orchestrator.start()
        for _ in range(100):
            if orchestrator.call_count:
                break
            await asyncio.sleep(0)

        assert orchestrator.is_running is True
        assert orchestrator.call_count == 1

        await orchestrator.stop()

        assert task.done()
        assert orchestrator.is_running is False

    @pytest.mark.asyncio
    async def test_cycle_exception_does_not_kill_loop(self, orchestrator, mock_ai):
        mock_ai.decide.side_effect = RuntimeError("boom")
        orchestrator.start()
        for _ in range(100):
            if orchestrator.call_count:
                break
            await asyncio.sleep(0)

        assert orchestrator.is_running is True
        await orchestrator.stop()

    @pytest.mark.asyncio
    async def test_shutdown_saves_and_closes(self, orchestrator, mock_stats, mock_adapter):
        await orchestrator.shutdown()

        mock_stats.shutdown.assert_called_once()
        mock_adapter.close.assert_awaited_once()

    def test_scan_interval_has_floor(self, orchestrator, trader_config):
        assert trader_config.scan_interval_seconds == 180
        assert orchestrator.scan_interval == 180


class TestReporting:
    """Status, account and position views."""

    def test_status(self, orchestrator):
        status = orchestrator.get_status()

        assert status["trader_id"] == "trader-1"
        assert status["trader_name"] == "Test Trader"
        assert status["ai_provider"] == "deepseek"
        assert status["exchange"] == "okx"
        assert status["is_running"] is False
        assert status["call_count"] == 0
        assert status["stop_until"] == ""
        assert status["system_prompt_template"] == "default"

    @pytest.mark.asyncio
    async def test_account_info(self, orchestrator, mock_adapter):
        mock_adapter.get_balance.return_value = Balance(total=1100.0, free=900.0, used=102.0)
        mock_adapter.get_positions.return_value = [btc_long()]

        info = await orchestrator.get_account_info()

        assert info["total_equity"] == 1100.0
        assert info["total_pnl"] == pytest.approx(100.0)
        assert info["total_pnl_pct"] == pytest.approx(10.0)
        assert info["total_unrealized_pnl"] == 20.0
        assert info["margin_used"] == 102.0
        assert info["position_count"] == 1

    @pytest.mark.asyncio
    async def test_positions_return_on_margin(self, orchestrator, mock_adapter):
        mock_adapter.get_positions.return_value = [btc_long(), btc_long(symbol="ETHUSDT", mark_price=0.0)]

        positions = await orchestrator.get_positions()

        assert len(positions) == 1
        assert positions[0]["side"] == "long"
        assert positions[0]["margin_used"] == pytest.approx(102.0)
        assert positions[0]["unrealized_pnl_pct"] == pytest.approx(20.0 / 102.0 * 100)
