"""Shared fixtures for prompt and AI client tests."""

import pytest

from autotrader.models import (
    AccountSnapshot,
    CandidateCoin,
    Context,
    PositionSide,
    PositionSnapshot,
)

NOW = 1_700_000_000.0


@pytest.fixture
def context() -> Context:
    """A cycle snapshot with one open long and two candidates."""
    return Context(
        current_time="2023-11-14 22:13:20",
        timestamp=NOW,
        runtime_minutes=42,
        call_count=7,
        account=AccountSnapshot(
            total_equity=1050.0,
            available_balance=800.0,
            total_pnl=50.0,
            total_pnl_pct=5.0,
            margin_used=250.0,
            margin_used_pct=23.8,
            position_count=1,
        ),
        positions=(
            PositionSnapshot(
                symbol="BTCUSDT",
                side=PositionSide.LONG,
                entry_price=100000.0,
                mark_price=101000.0,
                quantity=0.025,
                leverage=10,
                unrealized_pnl=25.0,
                unrealized_pnl_pct=10.0,
                liquidation_price=91000.0,
                margin_used=250.0,
                update_time=int((NOW - 1800) * 1000),
            ),
        ),
        candidate_coins=(
            CandidateCoin("BTCUSDT", ("default",)),
            CandidateCoin("SOLUSDT", ("ai500", "oi_top")),
        ),
        btc_eth_leverage=10,
        altcoin_leverage=5,
    )
