"""Per-trader cycle orchestrator -- drives the decide-execute loop.

Each cycle:
  1. GATE: Skip (and record a failure) while a cooldown is armed
  2. RESET: Zero the daily PnL marker every 24h
  3. CONTEXT: Snapshot account, positions, candidates and performance
  4. DECIDE: Ask the AI client for typed decisions
  5. EXECUTE: Closes first, then opens, then hold/wait, one at a time
  6. PROTECT: Recompute Kelly stop-loss/take-profit for every open position
  7. LOG: Write one DecisionRecord

A cycle never overlaps its successor; the first cycle runs immediately.
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime

from autotrader.ai.client import AIClient
from autotrader.config import KellyRuntimeConfig, OrchestratorSettings, TraderConfig
from autotrader.context.builder import DEFAULT_LEVERAGE, ContextBuilder
from autotrader.decision_log.logger import DecisionLogger
from autotrader.decision_log.models import ActionRecord, DecisionRecord
from autotrader.exceptions import (
    AIClientError,
    ContextBuildError,
    ExchangeError,
    InsufficientMarginError,
    OrderRejectedError,
    PositionNotFoundError,
    StatsError,
    TraderError,
)
from autotrader.exchange.client import ExchangeAdapter
from autotrader.exchange.types import ExchangePosition
from autotrader.logging import bind_trader, get_logger, unbind_trader
from autotrader.models import (
    CloseDecision,
    Context,
    Decision,
    OpenDecision,
    PositionSide,
    sort_decisions,
)
from autotrader.stats.kelly import KellyStopManager

logger = get_logger(__name__)

DAILY_RESET_SECONDS = 24 * 3600


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts).isoformat() if ts else ""


def _side(position: ExchangePosition) -> PositionSide:
    return PositionSide(getattr(position.side, "value", position.side).lower())


class TraderOrchestrator:
    """Runs one trader's decision cycles against its own adapter and engine.

    Args:
        config: Validated trader record.
        adapter: Venue adapter owned by this trader.
        stats: Kelly statistics engine owned by this trader.
        ai_client: Decision client bound to the trader's provider.
        context_builder: Per-cycle snapshot builder (owns the first-seen map).
        decision_logger: Per-trader decision record sink.
        settings: Cadence and pacing.
        sleep: Awaitable pause, replaced in tests.
        clock: Wall-clock source in unix seconds.
    """

    def __init__(
        self,
        config: TraderConfig,
        adapter: ExchangeAdapter,
        stats: KellyStopManager,
        ai_client: AIClient,
        context_builder: ContextBuilder,
        decision_logger: DecisionLogger,
        settings: OrchestratorSettings | None = None,
        *,
        sleep=asyncio.sleep,
        clock=time.time,
    ) -> None:
        self._config = config
        self._adapter = adapter
        self._stats = stats
        self._ai = ai_client
        self._context_builder = context_builder
        self._decision_logger = decision_logger
        self._settings = settings or OrchestratorSettings()
        self._sleep = sleep
        self._clock = clock

        self._running = False
        self._task: asyncio.Task | None = None
        self._wakeup = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

        self._call_count = 0
        self._start_time = clock()
        self._stop_until = 0.0
        self._last_reset_time = clock()
        self._daily_pnl = 0.0

        self._custom_prompt = config.custom_prompt
        self._override_base_prompt = config.override_base_prompt
        self._system_prompt_template = config.system_prompt_template
        self._kelly_runtime_config: KellyRuntimeConfig | None = None

    # ──────────────────────────────────────────────
    # Identity and runtime knobs
    # ──────────────────────────────────────────────

    @property
    def trader_id(self) -> str:
        return self._config.id

    @property
    def config(self) -> TraderConfig:
        return self._config

    @property
    def stats(self) -> KellyStopManager:
        return self._stats

    @property
    def decision_logger(self) -> DecisionLogger:
        return self._decision_logger

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def call_count(self) -> int:
        return self._call_count

    @property
    def daily_pnl(self) -> float:
        return self._daily_pnl

    @property
    def scan_interval(self) -> int:
        """Configured interval, raised to the process-wide minimum."""
        return max(self._config.scan_interval_seconds, self._settings.min_scan_interval_seconds)

    @property
    def system_prompt_template(self) -> str:
        return self._system_prompt_template

    def set_custom_prompt(self, prompt: str) -> None:
        self._custom_prompt = prompt

    def set_override_base_prompt(self, override: bool) -> None:
        self._override_base_prompt = override

    def set_system_prompt_template(self, name: str) -> None:
        self._system_prompt_template = name or "default"

    def set_kelly_runtime_config(self, runtime: KellyRuntimeConfig) -> None:
        """Stage engine overrides; they take effect at the start of the next cycle."""
        self._kelly_runtime_config = runtime

    def pause_until(self, until: float) -> None:
        """Arm the cooldown: cycles before ``until`` record a failure and place nothing."""
        self._stop_until = until
        logger.warning("trading_paused", trader_id=self.trader_id, until=_iso(until))

    # ──────────────────────────────────────────────
    # Run loop
    # ──────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the adapter's venue sessions."""
        await self._adapter.connect()

    async def run(self) -> None:
        """Run cycles until stop() is called. The first cycle fires immediately."""
        bind_trader(self.trader_id)
        self._running = True
        self._wakeup.clear()
        self._start_time = self._clock()
        logger.info(
            "trader_starting",
            trader_name=self._config.name,
            exchange=self._config.exchange,
            ai_model=self._config.ai_model,
            initial_balance=self._config.initial_balance,
            scan_interval=self.scan_interval,
        )
        try:
            await self._run_loop()
        finally:
            self._running = False
            logger.info("trader_stopped", cycles=self._call_count)
            unbind_trader()

    async def _run_loop(self) -> None:
        while self._running:
            try:
                async with self._cycle_lock:
                    await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("trader_cycle_error", error=str(e), exc_info=True)

            if not self._running:
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.scan_interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> asyncio.Task:
        """Schedule run() as a background task on the current loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"trader-{self.trader_id}")
        return self._task

    async def stop(self) -> None:
        """Stop ticking. An in-flight cycle finishes before this returns."""
        if not self._running and self._task is None:
            return
        logger.info("trader_stopping", trader_id=self.trader_id)
        self._running = False
        self._wakeup.set()
        if self._task is not None:
            task, self._task = self._task, None
            await task

    async def shutdown(self) -> None:
        """Stop the loop, save engine state once and release venue sessions."""
        await self.stop()
        await asyncio.to_thread(self._stats.shutdown)
        try:
            await self._adapter.close()
        except ExchangeError as e:
            logger.warning("adapter_close_failed", trader_id=self.trader_id, error=str(e))

    # ──────────────────────────────────────────────
    # Cycle
    # ──────────────────────────────────────────────

    async def run_cycle(self) -> DecisionRecord:
        """Execute one decision cycle and return the record it wrote."""
        self._call_count += 1
        record = DecisionRecord()
        logger.info("cycle_started", cycle=self._call_count)

        if self._kelly_runtime_config is not None:
            self._stats.apply_runtime_config(self._kelly_runtime_config)
            self._kelly_runtime_config = None

        now = self._clock()
        if now < self._stop_until:
            remaining = (self._stop_until - now) / 60
            logger.info("cycle_skipped_cooldown", remaining_minutes=round(remaining))
            record.fail(f"trading paused by risk control, {remaining:.0f} minutes remaining")
            return self._write_record(record)

        if now - self._last_reset_time >= DAILY_RESET_SECONDS:
            self._daily_pnl = 0.0
            self._last_reset_time = now
            logger.info("daily_pnl_reset")

        try:
            context = await self._context_builder.build(self._call_count, self._start_time)
        except ContextBuildError as e:
            logger.error("context_build_failed", error=str(e))
            record.fail(f"failed to build trading context: {e}")
            return self._write_record(record)

        self._snapshot(record, context)
        logger.info(
            "context_built",
            equity=round(context.account.total_equity, 2),
            available=round(context.account.available_balance, 2),
            positions=context.account.position_count,
            candidates=len(context.candidate_coins),
        )

        try:
            result = await self._ai.decide(
                context,
                template_name=self._system_prompt_template,
                custom_prompt=self._custom_prompt,
                override_base=self._override_base_prompt,
            )
        except AIClientError as e:
            partial = e.result
            if partial is not None:
                record.system_prompt = partial.system_prompt
                record.input_prompt = partial.user_prompt
                record.cot_trace = partial.cot_trace
                record.decision_json = _decisions_json(partial.decisions)
            logger.error("ai_decision_failed", template=self._system_prompt_template, error=str(e))
            record.fail(f"failed to get AI decision: {e}")
            return self._write_record(record)

        record.system_prompt = result.system_prompt
        record.input_prompt = result.user_prompt
        record.cot_trace = result.cot_trace
        record.decision_json = _decisions_json(result.decisions)

        ordered = sort_decisions(result.decisions)
        logger.info("execution_order", decisions=[f"{d.symbol} {d.action.value}" for d in ordered])

        for decision in ordered:
            action = ActionRecord(
                action=decision.action.value,
                symbol=decision.symbol,
                leverage=getattr(decision, "leverage", 0),
                timestamp=_iso(self._clock()),
            )
            try:
                wrote = await self._execute(decision, action)
            except (TraderError, ValueError) as e:
                action.error = str(e)
                record.execution_log.append(f"{decision.symbol} {decision.action.value} failed: {e}")
                logger.warning(
                    "decision_execution_failed",
                    symbol=decision.symbol,
                    action=decision.action.value,
                    error=str(e),
                )
            except Exception as e:
                action.error = f"unexpected error: {e!r}"
                record.execution_log.append(f"{decision.symbol} {decision.action.value} failed: {e!r}")
                logger.error(
                    "decision_execution_crashed",
                    symbol=decision.symbol,
                    action=decision.action.value,
                    error=repr(e),
                    exc_info=True,
                )
            else:
                action.success = True
                record.execution_log.append(f"{decision.symbol} {decision.action.value} succeeded")
                if wrote:
                    await self._sleep(self._settings.write_pause_seconds)
            record.decisions.append(action)

        try:
            updated = await self.update_protective_orders()
        except ExchangeError as e:
            logger.warning("protective_update_failed", error=str(e))
            record.execution_log.append(f"protective order update failed: {e}")
        except Exception as e:
            logger.error("protective_update_crashed", error=repr(e), exc_info=True)
            record.execution_log.append(f"protective order update failed: {e!r}")
        else:
            record.execution_log.append(f"protective orders updated for {updated} positions")

        return self._write_record(record)

    def _snapshot(self, record: DecisionRecord, context: Context) -> None:
        account = context.account
        record.account_state = {
            "total_balance": account.total_equity,
            "available_balance": account.available_balance,
            "total_unrealized_profit": account.total_pnl,
            "position_count": account.position_count,
            "margin_used_pct": account.margin_used_pct,
        }
        record.positions = [
            {
                "symbol": p.symbol,
                "side": p.side.value,
                "position_amt": p.quantity,
                "entry_price": p.entry_price,
                "mark_price": p.mark_price,
                "unrealized_profit": p.unrealized_pnl,
                "leverage": p.leverage,
                "liquidation_price": p.liquidation_price,
            }
            for p in context.positions
        ]
        record.candidate_coins = [c.symbol for c in context.candidate_coins]

    def _write_record(self, record: DecisionRecord) -> DecisionRecord:
        try:
            self._decision_logger.log_decision(record)
        except OSError as e:
            logger.error("decision_record_write_failed", error=str(e))
        return record

    # ──────────────────────────────────────────────
    # Intent execution
    # ──────────────────────────────────────────────

    async def _execute(self, decision: Decision, action: ActionRecord) -> bool:
        """Carry out one intent. Returns True when a venue write happened."""
        if isinstance(decision, OpenDecision):
            await self._open(decision, action)
            return True
        if isinstance(decision, CloseDecision):
            await self._close(decision, action)
            return True
        logger.info("decision_passive", symbol=decision.symbol, action=decision.action.value, reasoning=decision.reasoning)
        return False

    async def _find_position(self, symbol: str, side: PositionSide) -> ExchangePosition | None:
        for position in await self._adapter.get_positions():
            if position.symbol == symbol and _side(position) is side:
                return position
        return None

    async def _open(self, decision: OpenDecision, action: ActionRecord) -> None:
        symbol, side, leverage = decision.symbol, decision.side, decision.leverage

        if await self._find_position(symbol, side) is not None:
            raise OrderRejectedError(
                f"{symbol} already has a {side.value} position; close it before opening another"
            )

        price = await self._adapter.get_market_price(symbol)
        if price <= 0:
            raise OrderRejectedError(f"invalid market price for {symbol}: {price}")

        size_usd = decision.position_size_usd
        try:
            balance = await self._adapter.get_balance()
        except ExchangeError as e:
            raise InsufficientMarginError(f"cannot verify free margin for {symbol}: {e}") from e

        max_value = balance.free * self._settings.margin_usage_ratio * leverage
        if size_usd > max_value:
            if max_value < self._settings.min_position_value_usd:
                raise InsufficientMarginError(
                    f"insufficient margin: available {balance.free:.2f}, "
                    f"max position {max_value:.2f} at {leverage}x"
                )
            logger.warning(
                "position_size_clamped",
                symbol=symbol,
                requested=round(size_usd, 2),
                clamped=round(max_value, 2),
                available=round(balance.free, 2),
                leverage=leverage,
            )
            size_usd = max_value

        if size_usd < self._settings.min_position_value_usd:
            raise OrderRejectedError(
                f"position size {size_usd:.2f} below minimum {self._settings.min_position_value_usd:.2f}"
            )

        quantity = size_usd / price
        action.quantity = quantity
        action.price = price

        try:
            await self._adapter.set_margin_mode(symbol, self._config.is_cross_margin)
        except ExchangeError as e:
            logger.warning("set_margin_mode_failed", symbol=symbol, error=str(e))

        if side is PositionSide.LONG:
            ack = await self._adapter.open_long(symbol, quantity, leverage)
        else:
            ack = await self._adapter.open_short(symbol, quantity, leverage)
        action.order_id = ack.order_id
        self._context_builder.mark_opened(symbol, side)
        logger.info(
            "position_opened",
            symbol=symbol,
            side=side.value,
            order_id=ack.order_id,
            quantity=quantity,
            size_usd=round(size_usd, 2),
            leverage=leverage,
        )

        try:
            await self._adapter.set_stop_loss(symbol, side, quantity, decision.stop_loss)
        except ExchangeError as e:
            logger.warning("initial_stop_loss_failed", symbol=symbol, error=str(e))
        try:
            await self._adapter.set_take_profit(symbol, side, quantity, decision.take_profit)
        except ExchangeError as e:
            logger.warning("initial_take_profit_failed", symbol=symbol, error=str(e))

    async def _close(self, decision: CloseDecision, action: ActionRecord) -> None:
        symbol, side = decision.symbol, decision.side

        position = await self._find_position(symbol, side)
        if position is None:
            raise PositionNotFoundError(f"no open {side.value} position for {symbol}")

        profit = 0.0
        if position.entry_price > 0:
            direction = 1 if side is PositionSide.LONG else -1
            profit = direction * (position.mark_price - position.entry_price) / position.entry_price

        action.price = await self._adapter.get_market_price(symbol)
        action.quantity = abs(position.quantity)

        if side is PositionSide.LONG:
            ack = await self._adapter.close_long(symbol, 0)
        else:
            ack = await self._adapter.close_short(symbol, 0)
        action.order_id = ack.order_id

        first_seen = self._context_builder.first_seen_ms(symbol, side)
        holding_seconds = int(self._clock() - first_seen / 1000) if first_seen else 0
        await asyncio.to_thread(self._stats.record_trade, symbol, profit >= 0, profit * 100, max(holding_seconds, 0))
        self._stats.clear_position_peak(symbol)
        self._daily_pnl += position.unrealized_pnl
        logger.info(
            "position_closed",
            symbol=symbol,
            side=side.value,
            order_id=ack.order_id,
            profit_pct=round(profit * 100, 2),
            unrealized_pnl=position.unrealized_pnl,
        )

    # ──────────────────────────────────────────────
    # Protective orders
    # ──────────────────────────────────────────────

    async def update_protective_orders(self) -> int:
        """Recompute and install Kelly stop-loss/take-profit for every position.

        Returns:
            Number of positions whose targets were computed.

        Raises:
            ExchangeError: If positions cannot be read.
        """
        positions = [p for p in await self._adapter.get_positions() if p.symbol]
        if not positions:
            logger.debug("protective_update_no_positions")
            return 0

        updated = 0
        for index, position in enumerate(positions):
            if index:
                await self._sleep(self._settings.protective_pause_seconds)

            symbol, side = position.symbol, _side(position)
            entry, mark = position.entry_price, position.mark_price
            try:
                stop = self._stats.calculate_stop_loss(symbol, entry, mark, side)
                target = self._stats.calculate_take_profit(symbol, entry, mark, side)
            except StatsError as e:
                logger.warning("protective_targets_skipped", symbol=symbol, side=side.value, error=str(e))
                continue

            quantity = abs(position.quantity)
            try:
                await self._adapter.set_stop_loss(symbol, side, quantity, stop)
            except ExchangeError as e:
                logger.warning("stop_loss_update_failed", symbol=symbol, side=side.value, price=stop, error=str(e))
            try:
                await self._adapter.set_take_profit(symbol, side, quantity, target)
            except ExchangeError as e:
                logger.warning("take_profit_update_failed", symbol=symbol, side=side.value, price=target, error=str(e))

            updated += 1
            logger.info("protective_orders_updated", symbol=symbol, side=side.value, stop_loss=stop, take_profit=target)
        return updated

    # ──────────────────────────────────────────────
    # Reporting
    # ──────────────────────────────────────────────

    def get_status(self) -> dict:
        now = self._clock()
        return {
            "trader_id": self._config.id,
            "trader_name": self._config.name,
            "ai_model": self._config.ai_model,
            "exchange": self._config.exchange,
            "is_running": self._running,
            "start_time": _iso(self._start_time),
            "runtime_minutes": int((now - self._start_time) / 60),
            "call_count": self._call_count,
            "initial_balance": self._config.initial_balance,
            "scan_interval": self.scan_interval,
            "stop_until": _iso(self._stop_until),
            "last_reset_time": _iso(self._last_reset_time),
            "ai_provider": self._ai.provider.name,
            "system_prompt_template": self._system_prompt_template,
        }

    async def get_account_info(self) -> dict:
        """Equity, pnl against the initial balance and margin usage."""
        balance = await self._adapter.get_balance()
        positions = await self._adapter.get_positions()

        total_equity = balance.total + balance.unrealized_pnl
        unrealized = sum(p.unrealized_pnl for p in positions)
        margin_used = sum(
            p.margin_used if p.margin_used else abs(p.quantity) * p.mark_price / (p.leverage or DEFAULT_LEVERAGE)
            for p in positions
        )
        initial = self._config.initial_balance
        total_pnl = total_equity - initial
        return {
            "total_equity": total_equity,
            "wallet_balance": balance.total,
            "unrealized_profit": unrealized,
            "available_balance": balance.free,
            "total_pnl": total_pnl,
            "total_pnl_pct": total_pnl / initial * 100 if initial > 0 else 0.0,
            "total_unrealized_pnl": unrealized,
            "initial_balance": initial,
            "daily_pnl": self._daily_pnl,
            "position_count": len(positions),
            "margin_used": margin_used,
            "margin_used_pct": margin_used / total_equity * 100 if total_equity > 0 else 0.0,
        }

    async def get_positions(self) -> list[dict]:
        """Open positions with return-on-margin pnl percentages."""
        result = []
        for p in await self._adapter.get_positions():
            if not p.symbol or p.mark_price == 0:
                continue
            quantity = abs(p.quantity)
            leverage = p.leverage or DEFAULT_LEVERAGE
            margin = quantity * p.mark_price / leverage
            result.append(
                {
                    "symbol": p.symbol,
                    "side": _side(p).value,
                    "entry_price": p.entry_price,
                    "mark_price": p.mark_price,
                    "quantity": quantity,
                    "leverage": leverage,
                    "unrealized_pnl": p.unrealized_pnl,
                    "unrealized_pnl_pct": p.unrealized_pnl / margin * 100 if margin > 0 else 0.0,
                    "liquidation_price": p.liquidation_price,
                    "margin_used": margin,
                }
            )
        return result


def _decisions_json(decisions: list[Decision]) -> str:
    if not decisions:
        return ""
    return json.dumps([d.to_dict() for d in decisions], indent=2, ensure_ascii=False)
