"""Tests for the multi-trader registry and its lifecycle audit trail."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from autotrader.config import AISettings, AppSettings, ExchangeCredentials
from autotrader.exceptions import ExchangeError, TraderConfigError
from autotrader.manager import TraderManager
from autotrader.market_data.coin_pool import CoinPoolClient
from autotrader.orchestrator import TraderOrchestrator
from autotrader.store.store import TraderStore


@pytest.fixture
def app_settings(kelly_settings, ai_settings, orchestrator_settings) -> AppSettings:
    return AppSettings(kelly=kelly_settings, ai=ai_settings, orchestrator=orchestrator_settings)


@pytest.fixture
def store() -> AsyncMock:
    store = AsyncMock(spec=TraderStore)
    store.get_default_coins.return_value = []
    store.list_traders.return_value = []
    return store


@pytest.fixture
def manager(app_settings, store) -> TraderManager:
    return TraderManager(app_settings, store, coin_pool=MagicMock(spec=CoinPoolClient))


def fake_trader(trader_id: str = "trader-1", running: bool = False) -> MagicMock:
    trader = MagicMock(spec=TraderOrchestrator)
    trader.trader_id = trader_id
    trader.is_running = running
    trader.get_status.return_value = {"trader_id": trader_id, "is_running": running}
    return trader


class TestRegistration:
    """Building and registering traders."""

    def test_build_wires_own_collaborators(self, manager, trader_config):
        trader = manager.build_trader(trader_config)

        assert isinstance(trader, TraderOrchestrator)
        assert trader.trader_id == "trader-1"
        assert trader.stats.data_path.name == "kelly_stats_trader-1.json"
        assert trader.is_running is False

    def test_traders_do_not_share_engines(self, manager, trader_config):
        first = manager.add_trader(trader_config)
        second = manager.add_trader(trader_config.model_copy(update={"id": "trader-2"}))

        assert first.stats is not second.stats
        assert first.decision_logger is not second.decision_logger
        assert manager.trader_ids == ["trader-1", "trader-2"]

    def test_duplicate_id_rejected(self, manager, trader_config):
        manager.add_trader(trader_config)

        with pytest.raises(TraderConfigError, match="already registered"):
            manager.add_trader(trader_config)

    def test_incomplete_credentials_rejected(self, manager, trader_config):
        broken = trader_config.model_copy(update={"credentials": ExchangeCredentials(api_key="k")})  # type: ignore[arg-type]

        with pytest.raises(TraderConfigError):
            manager.add_trader(broken)
        assert manager.trader_ids == []

    def test_missing_ai_key_rejected(self, kelly_settings, orchestrator_settings, trader_config):
        settings = AppSettings(
            kelly=kelly_settings,
            ai=AISettings(deepseek_api_key=""),  # type: ignore[arg-type]
            orchestrator=orchestrator_settings,
        )
        manager = TraderManager(settings, coin_pool=MagicMock(spec=CoinPoolClient))

        with pytest.raises(TraderConfigError, match="no API key"):
            manager.add_trader(trader_config)

    def test_get_and_statuses(self, manager, trader_config):
        manager.add_trader(trader_config)

        assert manager.get("trader-1") is not None
        assert manager.get("nope") is None
        assert manager.statuses()[0]["trader_id"] == "trader-1"


class TestLoadTraders:
    """Registering traders from the configuration store."""

    @pytest.mark.asyncio
    async def test_without_store(self, app_settings):
        manager = TraderManager(app_settings, coin_pool=MagicMock(spec=CoinPoolClient))

        assert await manager.load_traders() == 0

    @pytest.mark.asyncio
    async def test_applies_default_coins(self, manager, store, trader_config):
        bare = trader_config.model_copy(update={"default_coins": []})
        pinned = trader_config.model_copy(update={"id": "trader-2", "default_coins": ["XRPUSDT"]})
        store.list_traders.return_value = [bare, pinned]
        store.get_default_coins.return_value = ["BTCUSDT", "SOLUSDT"]

        assert await manager.load_traders() == 2
        assert manager.get("trader-1").config.default_coins == ["BTCUSDT", "SOLUSDT"]
        assert manager.get("trader-2").config.default_coins == ["XRPUSDT"]

    @pytest.mark.asyncio
    async def test_skips_unusable_configs(self, manager, store, trader_config):
        broken = trader_config.model_copy(
            update={"id": "broken", "credentials": ExchangeCredentials(api_key="k")}  # type: ignore[arg-type]
        )
        store.list_traders.return_value = [broken, trader_config]

        assert await manager.load_traders() == 1
        assert manager.trader_ids == ["trader-1"]


class TestLifecycle:
    """Start/stop delegation and audit entries."""

    @pytest.fixture
    def trader(self, manager, trader_config) -> MagicMock:
        trader = fake_trader()
        with patch.object(TraderManager, "build_trader", return_value=trader):
            manager.add_trader(trader_config)
        return trader

    @pytest.mark.asyncio
    async def test_start_connects_then_schedules(self, manager, store, trader):
        await manager.start("trader-1")

        trader.connect.assert_awaited_once()
        trader.start.assert_called_once()
        store.record_audit.assert_awaited_once_with("trader-1", "started", "")

    @pytest.mark.asyncio
    async def test_start_when_running_is_noop(self, manager, store, trader):
        trader.is_running = True

        await manager.start("trader-1")

        trader.connect.assert_not_awaited()
        store.record_audit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_unknown_raises(self, manager):
        with pytest.raises(KeyError):
            await manager.start("nope")

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self, manager, store, trader):
        trader.connect.side_effect = ExchangeError("auth failed")

        with pytest.raises(ExchangeError):
            await manager.start("trader-1")
        trader.start.assert_not_called()
        store.record_audit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop(self, manager, store, trader):
        await manager.stop("trader-1")

        trader.stop.assert_awaited_once()
        store.record_audit.assert_awaited_once_with("trader-1", "stopped", "")

    @pytest.mark.asyncio
    async def test_start_all_continues_past_failures(self, manager, store, trader, trader_config):
        healthy = fake_trader("trader-2")
        with patch.object(TraderManager, "build_trader", return_value=healthy):
            manager.add_trader(trader_config.model_copy(update={"id": "trader-2"}))
        trader.connect.side_effect = ExchangeError("venue down")

        await manager.start_all()

        healthy.start.assert_called_once()
        store.record_audit.assert_awaited_once_with("trader-2", "started", "")

    @pytest.mark.asyncio
    async def test_stop_all_shuts_down_every_trader(self, manager, store, trader):
        await manager.stop_all()

        trader.shutdown.assert_awaited_once()
        store.record_audit.assert_awaited_once_with("trader-1", "stopped", "shutdown")
