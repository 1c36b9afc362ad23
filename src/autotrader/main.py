"""Process entry point: open the config store, start every enabled trader.

With the control API enabled (the default) uvicorn owns the event loop and
the FastAPI lifespan starts and stops the traders. Headless, the traders run
until SIGINT/SIGTERM. Either way, shutdown lets each trader finish its
current cycle, save its Kelly stats and close its venue sessions.
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from dataclasses import dataclass

import uvicorn
from fastapi import FastAPI

from autotrader.config import AppSettings
from autotrader.logging import get_logger, setup_logging
from autotrader.manager import TraderManager
from autotrader.store.database import ConfigDatabase
from autotrader.store.store import TraderStore

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Process-wide objects shared by the traders and the control API."""

    settings: AppSettings
    database: ConfigDatabase
    manager: TraderManager

    @classmethod
    async def open(cls, settings: AppSettings) -> "Runtime":
        """Connect the store and register traders. Adapters connect on start."""
        database = ConfigDatabase(settings.database.sqlite_path)
        await database.connect()
        manager = TraderManager(settings, TraderStore(database))
        await manager.load_traders()
        return cls(settings, database, manager)

    async def close(self) -> None:
        await self.manager.stop_all()
        await self.database.close()
        logger.info("autotrader_stopped")


def _install_stop_signals(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _on_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime: Runtime = app.state.runtime
    app.state.manager = runtime.manager
    app.state.performance_window = runtime.settings.orchestrator.performance_window

    await runtime.manager.start_all()
    logger.info("api_traders_started", traders=len(runtime.manager.trader_ids))
    try:
        yield
    finally:
        await runtime.close()


async def serve_api(runtime: Runtime) -> None:
    from autotrader.api.app import create_api_app

    api = runtime.settings.api
    app = create_api_app(lifespan=lifespan)
    app.state.runtime = runtime
    logger.info("api_serving", host=api.host, port=api.port)
    await uvicorn.Server(uvicorn.Config(app, host=api.host, port=api.port, log_level="warning")).serve()


async def run_headless(runtime: Runtime) -> None:
    stop_event = asyncio.Event()
    _install_stop_signals(stop_event)
    logger.info("headless_traders_starting", traders=len(runtime.manager.trader_ids))
    try:
        await runtime.manager.start_all()
        await stop_event.wait()
    finally:
        await runtime.close()


async def run(settings: AppSettings | None = None) -> None:
    settings = settings or AppSettings()
    setup_logging(settings.log_level)
    runtime = await Runtime.open(settings)
    if settings.api.enabled:
        await serve_api(runtime)
    else:
        await run_headless(runtime)


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
