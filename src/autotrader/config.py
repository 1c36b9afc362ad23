"""Configuration system using pydantic-settings with environment variable loading.

Process-wide settings (Kelly tuning, transaction retry policy, AI provider keys,
candidate pool endpoints) come from the environment. Per-trader records are
``TraderConfig`` models loaded from the configuration store.
"""

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from autotrader.exceptions import TraderConfigError


class KellySettings(BaseSettings):
    """Kelly statistics engine parameters."""

    model_config = SettingsConfigDict(env_prefix="KELLY_")

    kelly_ratio_adjustment: float = 0.5  # half-Kelly
    max_take_profit_multiplier: float = 3.0
    time_decay_lambda: float = 0.01  # per day
    min_trades_for_kelly: int = 5
    volatility_window: int = 20
    save_interval_seconds: int = 300
    data_dir: str = "data"


class TransactionSettings(BaseSettings):
    """Retry and timeout policy for venue calls.

    Read from TRANSACTION_TIMEOUT_SECONDS, TRANSACTION_MAX_RETRIES and
    TRANSACTION_RETRY_INTERVAL_SECONDS.
    """

    model_config = SettingsConfigDict(env_prefix="TRANSACTION_")

    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_interval_seconds: float = 0.1  # first backoff step, doubles per attempt
    max_backoff_seconds: float = 30.0


class AISettings(BaseSettings):
    """Credentials and sampling parameters for the built-in AI providers."""

    model_config = SettingsConfigDict(env_prefix="AI_")

    deepseek_api_key: SecretStr = SecretStr("")
    qwen_api_key: SecretStr = SecretStr("")
    temperature: float = 0.5
    max_tokens: int = 2000
    timeout_seconds: float = 120.0


class PoolSettings(BaseSettings):
    """Candidate coin pool service endpoints."""

    model_config = SettingsConfigDict(env_prefix="POOL_")

    coin_pool_api_url: str = ""
    oi_top_api_url: str = ""
    ai500_limit: int = 20
    oi_top_limit: int = 20
    timeout_seconds: float = 30.0


class OrchestratorSettings(BaseSettings):
    """Cycle cadence and pacing shared by all traders."""

    model_config = SettingsConfigDict(env_prefix="ORCHESTRATOR_")

    min_scan_interval_seconds: int = 180
    write_pause_seconds: float = 1.0  # after each successful venue write
    protective_pause_seconds: float = 0.5  # between per-position SL/TP updates
    performance_window: int = 100  # decision records analysed per cycle
    decision_log_dir: str = "decision_logs"
    min_position_value_usd: float = 10.0
    margin_usage_ratio: float = 0.8


class ApiSettings(BaseSettings):
    """Control API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 8080
    enabled: bool = True


class DatabaseSettings(BaseSettings):
    """Configuration store location, read from DATABASE_URL."""

    model_config = SettingsConfigDict(env_prefix="")

    database_url: str = "sqlite:///data/config.db"

    @property
    def sqlite_path(self) -> str:
        """Filesystem path of the sqlite database behind ``database_url``."""
        url = self.database_url
        for prefix in ("sqlite+aiosqlite:///", "sqlite:///"):
            if url.startswith(prefix):
                return url[len(prefix):]
        return url


class ExchangeCredentials(BaseModel):
    """Opaque per-venue credentials. Only the fields a venue needs are set."""

    api_key: SecretStr = SecretStr("")
    secret_key: SecretStr = SecretStr("")
    passphrase: SecretStr = SecretStr("")
    testnet: bool = False


class TraderConfig(BaseModel):
    """Static identity and policy for one trader.

    Validated once at trader construction; invalid records fail fast with
    ``TraderConfigError`` via ``TraderConfig.parse``.
    """

    id: str = Field(min_length=1)
    name: str = ""
    ai_model: Literal["deepseek", "qwen", "custom"] = "deepseek"
    exchange: Literal["okx", "binance", "bybit"] = "okx"
    credentials: ExchangeCredentials = Field(default_factory=ExchangeCredentials)
    custom_api_url: str = ""
    custom_api_key: SecretStr = SecretStr("")
    custom_model_name: str = ""
    scan_interval_seconds: int = Field(default=180, ge=1)
    initial_balance: float = Field(gt=0)
    btc_eth_leverage: int = Field(default=5, ge=1, le=125)
    altcoin_leverage: int = Field(default=5, ge=1, le=125)
    is_cross_margin: bool = True
    default_coins: list[str] = Field(default_factory=list)
    trading_coins: list[str] = Field(default_factory=list)
    custom_prompt: str = ""
    override_base_prompt: bool = False
    system_prompt_template: str = "default"

    @model_validator(mode="after")
    def _check_custom_model(self) -> "TraderConfig":
        if self.ai_model == "custom" and not (self.custom_api_url and self.custom_model_name):
            raise ValueError("custom ai_model requires custom_api_url and custom_model_name")
        if not self.name:
            self.name = self.id
        if not self.system_prompt_template:
            self.system_prompt_template = "default"
        return self

    @classmethod
    def parse(cls, data: dict) -> "TraderConfig":
        """Validate a raw trader record, raising TraderConfigError on failure."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise TraderConfigError(f"invalid trader config: {e}") from e


@dataclass
class KellyRuntimeConfig:
    """Mutable runtime overlay for the Kelly engine. Non-None fields override.

    Set through the control API; applied at the start of the next cycle.
    """

    kelly_ratio_adjustment: float | None = None
    max_take_profit_multiplier: float | None = None
    time_decay_lambda: float | None = None
    min_trades_for_kelly: int | None = None
    volatility_window: int | None = None
    save_interval_seconds: int | None = None


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    kelly: KellySettings = KellySettings()
    transaction: TransactionSettings = TransactionSettings()
    ai: AISettings = AISettings()
    pool: PoolSettings = PoolSettings()
    orchestrator: OrchestratorSettings = OrchestratorSettings()
    api: ApiSettings = ApiSettings()
    database: DatabaseSettings = DatabaseSettings()
