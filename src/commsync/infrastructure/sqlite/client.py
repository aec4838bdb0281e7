"""SQLite client for accounts, subscriptions, the client cache, the SMS inbox and local message state."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from loguru import logger

SCHEMA = """
    PRAGMA journal_mode=WAL;

    CREATE TABLE IF NOT EXISTS client_cache (
        user_id TEXT NOT NULL,
        key TEXT NOT NULL,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, key)
    );

    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        provider_type TEXT NOT NULL,
        label TEXT NOT NULL DEFAULT '',
        credentials TEXT NOT NULL DEFAULT '',
        own_addresses TEXT NOT NULL DEFAULT '[]',
        last_sync TEXT,
        linked INTEGER NOT NULL DEFAULT 1
    );

    CREATE INDEX IF NOT EXISTS idx_accounts_user
        ON accounts(user_id, linked);

    CREATE TABLE IF NOT EXISTS organizations (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        owner_id TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS organization_members (
        organization_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        PRIMARY KEY (organization_id, user_id)
    );

    CREATE TABLE IF NOT EXISTS subscriptions (
        id TEXT PRIMARY KEY,
        organization_id TEXT NOT NULL UNIQUE,
        billing_subscription_id TEXT NOT NULL UNIQUE,
        status TEXT NOT NULL,
        plan_type TEXT NOT NULL,
        max_users INTEGER NOT NULL,
        total_storage INTEGER NOT NULL,
        total_connections INTEGER NOT NULL,
        total_ai_credits INTEGER NOT NULL,
        used_storage INTEGER NOT NULL DEFAULT 0,
        used_connections INTEGER NOT NULL DEFAULT 0,
        used_ai_credits INTEGER NOT NULL DEFAULT 0,
        current_period_start TEXT,
        current_period_end TEXT,
        trial_ends_at TEXT,
        updated_at TEXT
    );

    CREATE TABLE IF NOT EXISTS sms_inbox (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        provider TEXT NOT NULL,
        direction TEXT NOT NULL CHECK(direction IN ('inbound','outbound')),
        from_number TEXT NOT NULL,
        to_number TEXT NOT NULL,
        text TEXT NOT NULL DEFAULT '',
        media_urls TEXT NOT NULL DEFAULT '[]',
        provider_ref TEXT,
        status TEXT NOT NULL DEFAULT 'received',
        ts TEXT NOT NULL,
        read INTEGER NOT NULL DEFAULT 0,
        deleted INTEGER NOT NULL DEFAULT 0
    );

    CREATE INDEX IF NOT EXISTS idx_sms_inbox_account_ts
        ON sms_inbox(account_id, ts);

    CREATE TABLE IF NOT EXISTS message_state (
        account_id TEXT NOT NULL,
        message_id TEXT NOT NULL,
        read INTEGER NOT NULL DEFAULT 0,
        deleted INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (account_id, message_id)
    );
"""


class SQLiteClient:
    """Thin sqlite3 wrapper: schema bootstrap plus a committing connection context."""

    def __init__(self, db_path: str | Path = "/app/data/commsync.db"):
        self.db_path = Path(db_path)
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.connection() as conn:
            conn.executescript(SCHEMA)
            logger.info(f"SQLite database initialized at {self.db_path}")

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


# Singleton instance
_client: SQLiteClient | None = None


def get_sqlite_client() -> SQLiteClient:
    """Get or create SQLite client singleton."""
    global _client
    if _client is None:
        from commsync.infrastructure.settings import get_settings

        _client = SQLiteClient(get_settings().sqlite_path)
    return _client
