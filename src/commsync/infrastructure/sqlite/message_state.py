"""Read and delete state for providers that keep none of their own.

Carrier text history and chat bridges hand back the same records on every
pass, so acknowledgements and tombstones live here and are overlaid on
each fetched page.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Sequence

from loguru import logger

from commsync.domain.models import Message
from commsync.infrastructure.sqlite.client import SQLiteClient

# Stays under SQLite's bound-parameter limit
LOOKUP_CHUNK = 500


class LocalMessageState:
    def __init__(self, client: SQLiteClient):
        self.client = client

    def acknowledge(self, account_id: str, ids: Iterable[str]) -> int:
        return self._flag(account_id, ids, "read")

    def tombstone(self, account_id: str, ids: Iterable[str]) -> int:
        return self._flag(account_id, ids, "deleted")

    def _flag(self, account_id: str, ids: Iterable[str], column: str) -> int:
        ids = list(dict.fromkeys(ids))
        if not ids:
            return 0
        now = datetime.now(timezone.utc).isoformat()
        with self.client.connection() as conn:
            conn.executemany(
                f"""INSERT INTO message_state (account_id, message_id, {column}, updated_at)
                    VALUES (?, ?, 1, ?)
                    ON CONFLICT(account_id, message_id) DO UPDATE SET
                        {column} = 1,
                        updated_at = excluded.updated_at""",
                [(account_id, message_id, now) for message_id in ids],
            )
        return len(ids)

    def lookup(self, account_id: str, ids: Sequence[str]) -> tuple[set[str], set[str]]:
        """(acknowledged, tombstoned) ids among `ids`."""
        read: set[str] = set()
        deleted: set[str] = set()
        with self.client.connection() as conn:
            for start in range(0, len(ids), LOOKUP_CHUNK):
                chunk = ids[start:start + LOOKUP_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"""SELECT message_id, read, deleted FROM message_state
                        WHERE account_id = ? AND message_id IN ({placeholders})""",
                    [account_id, *chunk],
                ).fetchall()
                read.update(r["message_id"] for r in rows if r["read"])
                deleted.update(r["message_id"] for r in rows if r["deleted"])
        return read, deleted

    def overlay(self, account_id: str, messages: Sequence[Message]) -> list[Message]:
        """Drop tombstoned messages and mark acknowledged ones read."""
        read, deleted = self.lookup(account_id, list(dict.fromkeys(m.id for m in messages)))
        if deleted:
            logger.debug(f"{account_id}: hiding {len(deleted)} locally deleted message(s)")
        return [
            m.model_copy(update={"read": True}) if m.id in read and not m.read else m
            for m in messages
            if m.id not in deleted
        ]
