"""SQLite-backed implementations of the cache, account and subscription ports."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Iterable, Optional

from loguru import logger

from commsync.domain.entities.account import Account
from commsync.domain.entities.subscription import Organization, Subscription, SubscriptionStatus
from commsync.domain.models import ProviderType
from commsync.infrastructure.sqlite.client import SQLiteClient


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteCacheStore:
    """Per-user key/value rows. Storage usage is measured over these rows."""

    def __init__(self, client: SQLiteClient):
        self.client = client

    def get(self, user_id: str, key: str) -> Optional[str]:
        with self.client.connection() as conn:
            row = conn.execute(
                "SELECT value FROM client_cache WHERE user_id = ? AND key = ?",
                (user_id, key),
            ).fetchone()
        return row["value"] if row else None

    def set(self, user_id: str, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self.client.connection() as conn:
            conn.execute(
                """INSERT INTO client_cache (user_id, key, value, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(user_id, key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                (user_id, key, value, now),
            )

    def delete(self, user_id: str, key: str) -> None:
        with self.client.connection() as conn:
            conn.execute(
                "DELETE FROM client_cache WHERE user_id = ? AND key = ?",
                (user_id, key),
            )

    def total_size(self, user_ids: Iterable[str]) -> int:
        """One aggregate query; never pulls rows into memory."""
        ids = list(user_ids)
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        with self.client.connection() as conn:
            row = conn.execute(
                f"SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) AS size "
                f"FROM client_cache WHERE user_id IN ({placeholders})",
                ids,
            ).fetchone()
        return int(row["size"])


class SQLiteAccountRepository:
    def __init__(self, client: SQLiteClient):
        self.client = client

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            user_id=row["user_id"],
            provider_type=ProviderType(row["provider_type"]),
            label=row["label"],
            credentials=row["credentials"],
            last_sync=_parse(row["last_sync"]),
            linked=bool(row["linked"]),
            own_addresses=tuple(json.loads(row["own_addresses"] or "[]")),
        )

    def get(self, account_id: str) -> Optional[Account]:
        with self.client.connection() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        return self._row_to_account(row) if row else None

    def save(self, account: Account) -> None:
        with self.client.connection() as conn:
            conn.execute(
                """INSERT INTO accounts
                   (id, user_id, provider_type, label, credentials, own_addresses, last_sync, linked)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       user_id = excluded.user_id,
                       provider_type = excluded.provider_type,
                       label = excluded.label,
                       credentials = excluded.credentials,
                       own_addresses = excluded.own_addresses,
                       last_sync = excluded.last_sync,
                       linked = excluded.linked""",
                (
                    account.id,
                    account.user_id,
                    account.provider_type.value,
                    account.label,
                    account.credentials,
                    json.dumps(list(account.own_addresses)),
                    _iso(account.last_sync),
                    int(account.linked),
                ),
            )
        logger.debug(f"Saved account {account.id} ({account.provider_type.value})")

    def list_linked(self, user_id: Optional[str] = None) -> list[Account]:
        query = "SELECT * FROM accounts WHERE linked = 1"
        params: tuple = ()
        if user_id is not None:
            query += " AND user_id = ?"
            params = (user_id,)
        with self.client.connection() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        return [self._row_to_account(r) for r in rows]

    def count_linked(self, user_id: str) -> int:
        with self.client.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM accounts WHERE user_id = ? AND linked = 1",
                (user_id,),
            ).fetchone()
        return int(row["n"])

    def update_last_sync(self, account_id: str, when: datetime) -> None:
        with self.client.connection() as conn:
            conn.execute(
                "UPDATE accounts SET last_sync = ? WHERE id = ?",
                (_iso(when), account_id),
            )

    def set_linked(self, account_id: str, linked: bool) -> None:
        with self.client.connection() as conn:
            conn.execute(
                "UPDATE accounts SET linked = ? WHERE id = ?",
                (int(linked), account_id),
            )


class SQLiteSubscriptionRepository:
    def __init__(self, client: SQLiteClient):
        self.client = client

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            organization_id=row["organization_id"],
            billing_subscription_id=row["billing_subscription_id"],
            status=SubscriptionStatus(row["status"]),
            plan_type=row["plan_type"],
            max_users=row["max_users"],
            total_storage=row["total_storage"],
            total_connections=row["total_connections"],
            total_ai_credits=row["total_ai_credits"],
            used_storage=row["used_storage"],
            used_connections=row["used_connections"],
            used_ai_credits=row["used_ai_credits"],
            current_period_start=_parse(row["current_period_start"]),
            current_period_end=_parse(row["current_period_end"]),
            trial_ends_at=_parse(row["trial_ends_at"]),
            updated_at=_parse(row["updated_at"]),
        )

    def _one(self, query: str, params: tuple) -> Optional[Subscription]:
        with self.client.connection() as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_subscription(row) if row else None

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self._one("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,))

    def get_by_billing_id(self, billing_subscription_id: str) -> Optional[Subscription]:
        return self._one(
            "SELECT * FROM subscriptions WHERE billing_subscription_id = ?",
            (billing_subscription_id,),
        )

    def get_by_organization(self, organization_id: str) -> Optional[Subscription]:
        return self._one(
            "SELECT * FROM subscriptions WHERE organization_id = ?", (organization_id,)
        )

    def get_for_user(self, user_id: str) -> Optional[Subscription]:
        return self._one(
            """SELECT s.* FROM subscriptions s
               JOIN organization_members m ON m.organization_id = s.organization_id
               WHERE m.user_id = ?
               ORDER BY s.updated_at DESC
               LIMIT 1""",
            (user_id,),
        )

    def save(self, subscription: Subscription) -> None:
        s = subscription
        with self.client.connection() as conn:
            conn.execute(
                """INSERT INTO subscriptions
                   (id, organization_id, billing_subscription_id, status, plan_type,
                    max_users, total_storage, total_connections, total_ai_credits,
                    used_storage, used_connections, used_ai_credits,
                    current_period_start, current_period_end, trial_ends_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       organization_id = excluded.organization_id,
                       billing_subscription_id = excluded.billing_subscription_id,
                       status = excluded.status,
                       plan_type = excluded.plan_type,
                       max_users = excluded.max_users,
                       total_storage = excluded.total_storage,
                       total_connections = excluded.total_connections,
                       total_ai_credits = excluded.total_ai_credits,
                       used_storage = excluded.used_storage,
                       used_connections = excluded.used_connections,
                       used_ai_credits = excluded.used_ai_credits,
                       current_period_start = excluded.current_period_start,
                       current_period_end = excluded.current_period_end,
                       trial_ends_at = excluded.trial_ends_at,
                       updated_at = excluded.updated_at""",
                (
                    s.id,
                    s.organization_id,
                    s.billing_subscription_id,
                    s.status.value,
                    s.plan_type,
                    s.max_users,
                    s.total_storage,
                    s.total_connections,
                    s.total_ai_credits,
                    s.used_storage,
                    s.used_connections,
                    s.used_ai_credits,
                    _iso(s.current_period_start),
                    _iso(s.current_period_end),
                    _iso(s.trial_ends_at),
                    _iso(s.updated_at),
                ),
            )

    def delete(self, subscription_id: str) -> None:
        with self.client.connection() as conn:
            conn.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))

    def members(self, organization_id: str) -> list[str]:
        with self.client.connection() as conn:
            rows = conn.execute(
                "SELECT user_id FROM organization_members WHERE organization_id = ? ORDER BY user_id",
                (organization_id,),
            ).fetchall()
        return [r["user_id"] for r in rows]

    def add_member(self, organization_id: str, user_id: str) -> None:
        with self.client.connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO organization_members (organization_id, user_id) VALUES (?, ?)",
                (organization_id, user_id),
            )

    def remove_member(self, organization_id: str, user_id: str) -> bool:
        with self.client.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM organization_members WHERE organization_id = ? AND user_id = ?",
                (organization_id, user_id),
            )
        return cursor.rowcount > 0

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        with self.client.connection() as conn:
            row = conn.execute(
                "SELECT * FROM organizations WHERE id = ?", (organization_id,)
            ).fetchone()
        if row is None:
            return None
        return Organization(
            id=row["id"],
            name=row["name"],
            owner_id=row["owner_id"],
            created_at=_parse(row["created_at"]),
        )

    def save_organization(self, organization: Organization) -> None:
        created_at = organization.created_at or datetime.now(timezone.utc)
        with self.client.connection() as conn:
            conn.execute(
                """INSERT INTO organizations (id, name, owner_id, created_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       name = excluded.name,
                       owner_id = excluded.owner_id""",
                (organization.id, organization.name, organization.owner_id, _iso(created_at)),
            )
