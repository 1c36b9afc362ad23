"""Typed read/write access to trader records, system settings and the audit log.

Trader records are stored as the full TraderConfig JSON with secrets in
clear text; the database file is the credential vault and must be protected
like one.
"""

import json
import time

from autotrader.config import TraderConfig
from autotrader.exceptions import TraderConfigError
from autotrader.logging import get_logger
from autotrader.store.database import ConfigDatabase

logger = get_logger(__name__)

DEFAULT_COINS_KEY = "default_coins"


def _to_record(config: TraderConfig) -> str:
    data = config.model_dump(mode="json")
    data["custom_api_key"] = config.custom_api_key.get_secret_value()
    creds = config.credentials
    data["credentials"] = {
        "api_key": creds.api_key.get_secret_value(),
        "secret_key": creds.secret_key.get_secret_value(),
        "passphrase": creds.passphrase.get_secret_value(),
        "testnet": creds.testnet,
    }
    return json.dumps(data)


class TraderStore:
    """Async store over a ConfigDatabase.

    Usage:
        async with ConfigDatabase("data/config.db") as database:
            store = TraderStore(database)
            configs = await store.list_traders()
    """

    def __init__(self, database: ConfigDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Traders
    # ──────────────────────────────────────────────

    async def save_trader(self, config: TraderConfig, enabled: bool = True) -> None:
        """Insert or replace a trader record."""
        now = int(time.time())
        await self._database.db.execute(
            "INSERT INTO traders (id, name, exchange, ai_model, enabled, config, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name=excluded.name, exchange=excluded.exchange, "
            "ai_model=excluded.ai_model, enabled=excluded.enabled, config=excluded.config, "
            "updated_at=excluded.updated_at",
            (config.id, config.name, config.exchange, config.ai_model, int(enabled), _to_record(config), now, now),
        )
        await self._database.db.commit()
        logger.info("trader_saved", trader_id=config.id, exchange=config.exchange, ai_model=config.ai_model)

    async def get_trader(self, trader_id: str) -> TraderConfig | None:
        """Load one trader record.

        Raises:
            TraderConfigError: If the stored record no longer validates.
        """
        cursor = await self._database.db.execute("SELECT config FROM traders WHERE id = ?", (trader_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return TraderConfig.parse(json.loads(row["config"]))

    async def list_traders(self, enabled_only: bool = True) -> list[TraderConfig]:
        """All valid trader records. Invalid ones are logged and skipped."""
        query = "SELECT id, config FROM traders"
        if enabled_only:
            query += " WHERE enabled = 1"
        cursor = await self._database.db.execute(query + " ORDER BY created_at, id")
        rows = await cursor.fetchall()

        configs = []
        for row in rows:
            try:
                configs.append(TraderConfig.parse(json.loads(row["config"])))
            except (TraderConfigError, ValueError) as e:
                logger.error("trader_record_invalid", trader_id=row["id"], error=str(e))
        return configs

    async def set_enabled(self, trader_id: str, enabled: bool) -> bool:
        cursor = await self._database.db.execute(
            "UPDATE traders SET enabled = ?, updated_at = ? WHERE id = ?",
            (int(enabled), int(time.time()), trader_id),
        )
        await self._database.db.commit()
        return cursor.rowcount > 0

    async def delete_trader(self, trader_id: str) -> bool:
        cursor = await self._database.db.execute("DELETE FROM traders WHERE id = ?", (trader_id,))
        await self._database.db.commit()
        return cursor.rowcount > 0

    # ──────────────────────────────────────────────
    # System config
    # ──────────────────────────────────────────────

    async def get_system_config(self, key: str, default: str = "") -> str:
        cursor = await self._database.db.execute("SELECT value FROM system_config WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row["value"] if row is not None else default

    async def set_system_config(self, key: str, value: str) -> None:
        await self._database.db.execute(
            "INSERT INTO system_config (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
            (key, value, int(time.time())),
        )
        await self._database.db.commit()

    async def get_default_coins(self) -> list[str]:
        """Process-wide fallback coin list, stored as a JSON array."""
        raw = await self.get_system_config(DEFAULT_COINS_KEY)
        if not raw:
            return []
        try:
            coins = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("default_coins_invalid", value=raw)
            return []
        return [str(c) for c in coins] if isinstance(coins, list) else []

    async def set_default_coins(self, coins: list[str]) -> None:
        await self.set_system_config(DEFAULT_COINS_KEY, json.dumps(coins))

    # ──────────────────────────────────────────────
    # Audit log
    # ──────────────────────────────────────────────

    async def record_audit(self, trader_id: str, event: str, detail: str = "") -> None:
        await self._database.db.execute(
            "INSERT INTO audit_log (trader_id, event, detail, created_at) VALUES (?, ?, ?, ?)",
            (trader_id, event, detail, int(time.time())),
        )
        await self._database.db.commit()

    async def recent_audit(self, trader_id: str | None = None, limit: int = 50) -> list[dict]:
        """Newest audit entries first."""
        if trader_id is None:
            cursor = await self._database.db.execute(
                "SELECT trader_id, event, detail, created_at FROM audit_log ORDER BY id DESC LIMIT ?",
                (limit,),
            )
        else:
            cursor = await self._database.db.execute(
                "SELECT trader_id, event, detail, created_at FROM audit_log "
                "WHERE trader_id = ? ORDER BY id DESC LIMIT ?",
                (trader_id, limit),
            )
        return [dict(row) for row in await cursor.fetchall()]
