"""Shared test fixtures for the AI trader orchestrator."""

import pytest

from autotrader.config import (
    AISettings,
    ExchangeCredentials,
    KellySettings,
    OrchestratorSettings,
    TraderConfig,
)


@pytest.fixture
def trader_config() -> TraderConfig:
    """A valid OKX trader with dummy credentials and a fixed coin list."""
    return TraderConfig(
        id="trader-1",
        name="Test Trader",
        ai_model="deepseek",
        exchange="okx",
        credentials=ExchangeCredentials(
            api_key="test-key",  # type: ignore[arg-type]
            secret_key="test-secret",  # type: ignore[arg-type]
            passphrase="test-pass",  # type: ignore[arg-type]
            testnet=True,
        ),
        initial_balance=1000.0,
        btc_eth_leverage=10,
        altcoin_leverage=5,
        trading_coins=["BTCUSDT", "ETHUSDT"],
    )


@pytest.fixture
def kelly_settings(tmp_path) -> KellySettings:
    """Kelly settings writing into the test's temporary directory."""
    return KellySettings(data_dir=str(tmp_path / "data"))


@pytest.fixture
def ai_settings() -> AISettings:
    return AISettings(deepseek_api_key="sk-test")  # type: ignore[arg-type]


@pytest.fixture
def orchestrator_settings(tmp_path) -> OrchestratorSettings:
    return OrchestratorSettings(decision_log_dir=str(tmp_path / "decision_logs"))
