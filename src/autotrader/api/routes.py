"""JSON endpoints for trader control, account views and Kelly tuning."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, fields

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from autotrader.config import KellyRuntimeConfig
from autotrader.context.builder import DEFAULT_PERFORMANCE_WINDOW
from autotrader.exceptions import ExchangeError
from autotrader.logging import get_logger
from autotrader.orchestrator import TraderOrchestrator

log = get_logger(__name__)

router = APIRouter()

DEFAULT_DECISION_LIMIT = 10
MAX_DECISION_LIMIT = 200
_INTEGER_FIELDS = ("min_trades_for_kelly", "volatility_window", "save_interval_seconds")


def _trader(request: Request, trader_id: str) -> TraderOrchestrator | None:
    return request.app.state.manager.get(trader_id)


def _not_found(trader_id: str) -> JSONResponse:
    return JSONResponse(content={"error": f"Trader {trader_id} not found"}, status_code=404)


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    manager = request.app.state.manager
    return JSONResponse(content={"status": "ok", "traders": len(manager.trader_ids)})


@router.get("/traders")
async def list_traders(request: Request) -> JSONResponse:
    """Status of every registered trader."""
    return JSONResponse(content=request.app.state.manager.statuses())


@router.get("/traders/{trader_id}/status")
async def trader_status(request: Request, trader_id: str) -> JSONResponse:
    trader = _trader(request, trader_id)
    if trader is None:
        return _not_found(trader_id)
    return JSONResponse(content=trader.get_status())


@router.get("/traders/{trader_id}/account")
async def trader_account(request: Request, trader_id: str) -> JSONResponse:
    """Equity, pnl and margin usage read live from the venue."""
    trader = _trader(request, trader_id)
    if trader is None:
        return _not_found(trader_id)
    try:
        return JSONResponse(content=await trader.get_account_info())
    except ExchangeError as e:
        log.warning("account_info_failed", trader_id=trader_id, error=str(e))
        return JSONResponse(content={"error": str(e)}, status_code=502)


@router.get("/traders/{trader_id}/positions")
async def trader_positions(request: Request, trader_id: str) -> JSONResponse:
    trader = _trader(request, trader_id)
    if trader is None:
        return _not_found(trader_id)
    try:
        return JSONResponse(content=await trader.get_positions())
    except ExchangeError as e:
        log.warning("positions_failed", trader_id=trader_id, error=str(e))
        return JSONResponse(content={"error": str(e)}, status_code=502)


@router.get("/traders/{trader_id}/decisions")
async def trader_decisions(request: Request, trader_id: str, limit: int = DEFAULT_DECISION_LIMIT) -> JSONResponse:
    """Most recent decision records, newest first."""
    trader = _trader(request, trader_id)
    if trader is None:
        return _not_found(trader_id)
    limit = max(1, min(limit, MAX_DECISION_LIMIT))
    records = await asyncio.to_thread(trader.decision_logger.latest_records, limit)
    return JSONResponse(content=[r.to_dict() for r in reversed(records)])


@router.get("/traders/{trader_id}/performance")
async def trader_performance(request: Request, trader_id: str) -> JSONResponse:
    trader = _trader(request, trader_id)
    if trader is None:
        return _not_found(trader_id)
    window = getattr(request.app.state, "performance_window", DEFAULT_PERFORMANCE_WINDOW)
    summary = await asyncio.to_thread(trader.decision_logger.analyze_performance, window)
    return JSONResponse(content=asdict(summary))


@router.get("/traders/{trader_id}/kelly-stats")
async def trader_kelly_stats(request: Request, trader_id: str) -> JSONResponse:
    """Current engine parameters and the per-symbol digest."""
    trader = _trader(request, trader_id)
    if trader is None:
        return _not_found(trader_id)
    return JSONResponse(
        content={
            "config": asdict(trader.stats.config),
            "symbols": [asdict(d) for d in trader.stats.summarize()],
        }
    )


@router.post("/traders/{trader_id}/start")
async def start_trader(request: Request, trader_id: str) -> JSONResponse:
    manager = request.app.state.manager
    if manager.get(trader_id) is None:
        return _not_found(trader_id)
    try:
        await manager.start(trader_id)
    except ExchangeError as e:
        log.error("trader_start_via_api_failed", trader_id=trader_id, error=str(e))
        return JSONResponse(content={"error": str(e)}, status_code=502)
    log.info("trader_started_via_api", trader_id=trader_id)
    return JSONResponse(content={"trader_id": trader_id, "is_running": True})


@router.post("/traders/{trader_id}/stop")
async def stop_trader(request: Request, trader_id: str) -> JSONResponse:
    manager = request.app.state.manager
    if manager.get(trader_id) is None:
        return _not_found(trader_id)
    await manager.stop(trader_id)
    log.info("trader_stopped_via_api", trader_id=trader_id)
    return JSONResponse(content={"trader_id": trader_id, "is_running": False})


@router.post("/traders/{trader_id}/kelly-config")
async def update_kelly_config(request: Request, trader_id: str) -> JSONResponse:
    """Stage Kelly parameter overrides for the trader's next cycle.

    Accepts any subset of the engine parameters; values must be positive.
    """
    trader = _trader(request, trader_id)
    if trader is None:
        return _not_found(trader_id)
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(content={"error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse(content={"error": "Expected a JSON object"}, status_code=400)

    known = {f.name for f in fields(KellyRuntimeConfig)}
    unknown = sorted(set(body) - known)
    if unknown:
        return JSONResponse(content={"error": f"Unknown fields: {', '.join(unknown)}"}, status_code=400)

    overrides = {}
    for name, value in body.items():
        if value is None:
            continue
        try:
            number = int(value) if name in _INTEGER_FIELDS else float(value)
        except (TypeError, ValueError):
            return JSONResponse(content={"error": f"Invalid value for {name}"}, status_code=400)
        if number <= 0:
            return JSONResponse(content={"error": f"{name} must be positive"}, status_code=400)
        overrides[name] = number

    runtime = KellyRuntimeConfig(**overrides)
    trader.set_kelly_runtime_config(runtime)
    log.info("kelly_config_staged", trader_id=trader_id, **overrides)
    return JSONResponse(content={"trader_id": trader_id, "pending": asdict(runtime)})
