"""Multi-trader manager -- builds, starts and stops one orchestrator per trader.

Each trader owns its adapter, Kelly engine, AI client, context builder and
decision logger. The only process-wide collaborators are the settings, the
candidate coin pool client and the configuration store.
"""

from autotrader.ai.client import AIClient, resolve_provider
from autotrader.config import AppSettings, TraderConfig
from autotrader.context.builder import ContextBuilder
from autotrader.decision_log.logger import DecisionLogger
from autotrader.exceptions import ExchangeError, TraderConfigError
from autotrader.exchange.factory import create_adapter
from autotrader.logging import get_logger
from autotrader.market_data.coin_pool import CoinPoolClient
from autotrader.orchestrator import TraderOrchestrator
from autotrader.stats.kelly import KellyStopManager
from autotrader.store.store import TraderStore

logger = get_logger(__name__)


class TraderManager:
    """Registry of running and stopped traders.

    Args:
        settings: Application-wide settings.
        store: Configuration store; optional when traders are added directly.
        coin_pool: Shared candidate pool client.
    """

    def __init__(
        self,
        settings: AppSettings,
        store: TraderStore | None = None,
        coin_pool: CoinPoolClient | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._coin_pool = coin_pool or CoinPoolClient(settings.pool)
        self._traders: dict[str, TraderOrchestrator] = {}

    @property
    def trader_ids(self) -> list[str]:
        return list(self._traders)

    def build_trader(self, config: TraderConfig) -> TraderOrchestrator:
        """Wire one orchestrator with its own collaborators.

        Raises:
            TraderConfigError: If credentials or the AI provider are unusable.
        """
        settings = self._settings
        adapter = create_adapter(config, settings.transaction)
        stats = KellyStopManager(config.id, settings.kelly)
        ai_client = AIClient(resolve_provider(config, settings.ai), settings.ai)
        decision_logger = DecisionLogger(settings.orchestrator.decision_log_dir, config.id)
        context_builder = ContextBuilder(
            adapter,
            config,
            coin_pool=self._coin_pool,
            decision_logger=decision_logger,
            performance_window=settings.orchestrator.performance_window,
        )
        return TraderOrchestrator(
            config,
            adapter,
            stats,
            ai_client,
            context_builder,
            decision_logger,
            settings.orchestrator,
        )

    def add_trader(self, config: TraderConfig) -> TraderOrchestrator:
        """Register a trader built from ``config``.

        Raises:
            TraderConfigError: On duplicate id or unusable configuration.
        """
        if config.id in self._traders:
            raise TraderConfigError(f"trader {config.id} already registered")
        orchestrator = self.build_trader(config)
        self._traders[config.id] = orchestrator
        logger.info("trader_registered", trader_id=config.id, exchange=config.exchange, ai_model=config.ai_model)
        return orchestrator

    async def load_traders(self) -> int:
        """Register every enabled trader from the store. Returns the count added."""
        if self._store is None:
            return 0

        default_coins = await self._store.get_default_coins()
        added = 0
        for config in await self._store.list_traders():
            if not config.default_coins and default_coins:
                config = config.model_copy(update={"default_coins": default_coins})
            try:
                self.add_trader(config)
            except TraderConfigError as e:
                logger.error("trader_load_failed", trader_id=config.id, error=str(e))
                continue
            added += 1
        logger.info("traders_loaded", count=added)
        return added

    def get(self, trader_id: str) -> TraderOrchestrator | None:
        return self._traders.get(trader_id)

    def statuses(self) -> list[dict]:
        return [trader.get_status() for trader in self._traders.values()]

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self, trader_id: str) -> None:
        """Connect the trader's adapter and schedule its loop.

        Raises:
            KeyError: If the trader is unknown.
            ExchangeError: If the venue connection fails.
        """
        trader = self._traders[trader_id]
        if trader.is_running:
            return
        await trader.connect()
        trader.start()
        await self._audit(trader_id, "started")

    async def stop(self, trader_id: str) -> None:
        """Stop the trader's loop after its current cycle.

        Raises:
            KeyError: If the trader is unknown.
        """
        await self._traders[trader_id].stop()
        await self._audit(trader_id, "stopped")

    async def start_all(self) -> None:
        for trader_id in list(self._traders):
            try:
                await self.start(trader_id)
            except ExchangeError as e:
                logger.error("trader_start_failed", trader_id=trader_id, error=str(e))

    async def stop_all(self) -> None:
        """Stop every trader, save each engine's stats once and close adapters."""
        for trader_id, trader in self._traders.items():
            await trader.shutdown()
            await self._audit(trader_id, "stopped", "shutdown")
        logger.info("all_traders_stopped", count=len(self._traders))

    async def _audit(self, trader_id: str, event: str, detail: str = "") -> None:
        if self._store is not None:
            await self._store.record_audit(trader_id, event, detail)
