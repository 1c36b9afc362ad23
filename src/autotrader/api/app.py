"""FastAPI control application factory."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from autotrader.api import routes


def create_api_app(lifespan: Any = None) -> FastAPI:
    """Create the control API application.

    Args:
        lifespan: Optional async context manager for application lifespan
                  events. main.py uses it to start and stop the traders.

    Returns:
        FastAPI app; route handlers read the TraderManager from
        ``app.state.manager``.
    """
    app = FastAPI(title="AI Trader Orchestrator", lifespan=lifespan)
    app.state.manager = None
    app.include_router(routes.router, prefix="/api")
    return app
