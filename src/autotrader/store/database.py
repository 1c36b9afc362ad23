"""SQLite file holding trader records, system settings and the audit trail.

The schema is versioned with ``PRAGMA user_version``; each entry in
``MIGRATIONS`` upgrades the file by one version on connect. WAL mode lets
the control API read while traders append audit entries.
"""

from pathlib import Path
from typing import Self

import aiosqlite

from autotrader.logging import get_logger

logger = get_logger(__name__)

MEMORY = ":memory:"

MIGRATIONS: tuple[str, ...] = (
    # 1: trader records and key/value settings
    """
    CREATE TABLE traders (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        exchange TEXT NOT NULL,
        ai_model TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1,
        config TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    );
    CREATE TABLE system_config (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at INTEGER NOT NULL
    );
    """,
    # 2: lifecycle audit trail
    """
    CREATE TABLE audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        trader_id TEXT NOT NULL,
        event TEXT NOT NULL,
        detail TEXT NOT NULL DEFAULT '',
        created_at INTEGER NOT NULL
    );
    CREATE INDEX idx_audit_trader_ts ON audit_log(trader_id, created_at);
    """,
)

SCHEMA_VERSION = len(MIGRATIONS)


class ConfigDatabase:
    """One aiosqlite connection to the configuration file.

    Usage:
        async with ConfigDatabase("data/config.db") as db:
            store = TraderStore(db)
    """

    def __init__(self, db_path: str = "data/config.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """The open connection. Raises RuntimeError before connect()."""
        if self._connection is None:
            raise RuntimeError("Config database is not connected")
        return self._connection

    async def connect(self) -> None:
        if self._db_path != MEMORY:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        connection = await aiosqlite.connect(self._db_path)
        connection.row_factory = aiosqlite.Row
        await connection.execute("PRAGMA journal_mode=WAL")
        await connection.execute("PRAGMA busy_timeout=5000")
        self._connection = connection

        version = await self.schema_version()
        for target, script in enumerate(MIGRATIONS[version:], start=version + 1):
            await connection.executescript(script)
            await connection.execute(f"PRAGMA user_version={target}")
            await connection.commit()
            logger.info("config_db_migrated", db_path=self._db_path, version=target)
        logger.info("config_db_connected", db_path=self._db_path, version=max(version, SCHEMA_VERSION))

    async def schema_version(self) -> int:
        cursor = await self.db.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def close(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        logger.info("config_db_closed", db_path=self._db_path)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
