"""Configuration store -- trader records, system settings and audit trail in SQLite."""

from autotrader.store.database import ConfigDatabase
from autotrader.store.store import TraderStore

__all__ = ["ConfigDatabase", "TraderStore"]
