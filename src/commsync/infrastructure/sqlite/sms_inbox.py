"""Webhook-fed SMS inbox for carriers without a retrieval API."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Literal, Optional

from loguru import logger

from commsync.domain.models import coerce_datetime
from commsync.infrastructure.sqlite.client import SQLiteClient


@dataclass
class SmsRecord:
    """A single SMS held in the inbox."""

    id: str
    account_id: str
    provider: str
    direction: Literal["inbound", "outbound"]
    from_number: str
    to_number: str
    text: str
    ts: str
    media_urls: list[str] = field(default_factory=list)
    provider_ref: str | None = None
    status: str = "received"
    read: bool = False


def utc_timestamp(value: object = None) -> str:
    """Canonical UTC ISO-8601 text so `ts` range filters compare correctly as strings."""
    if value is None or value == "":
        return datetime.now(timezone.utc).isoformat()
    return coerce_datetime(value).astimezone(timezone.utc).isoformat()


class SmsInbox:
    def __init__(self, client: SQLiteClient):
        self.client = client

    @staticmethod
    def _row_to_record(row) -> SmsRecord:
        return SmsRecord(
            id=row["id"],
            account_id=row["account_id"],
            provider=row["provider"],
            direction=row["direction"],
            from_number=row["from_number"],
            to_number=row["to_number"],
            text=row["text"],
            ts=row["ts"],
            media_urls=json.loads(row["media_urls"] or "[]"),
            provider_ref=row["provider_ref"],
            status=row["status"],
            read=bool(row["read"]),
        )

    def add(
        self,
        account_id: str,
        provider: str,
        direction: Literal["inbound", "outbound"],
        from_number: str,
        to_number: str,
        text: str,
        message_id: str | None = None,
        ts: str | None = None,
        media_urls: Iterable[str] = (),
        provider_ref: str | None = None,
        status: str = "received",
    ) -> SmsRecord:
        """Store a message. Redelivered webhooks with the same id are ignored."""
        record = SmsRecord(
            id=message_id or str(uuid.uuid4()),
            account_id=account_id,
            provider=provider,
            direction=direction,
            from_number=from_number,
            to_number=to_number,
            text=text,
            ts=utc_timestamp(ts),
            media_urls=list(media_urls),
            provider_ref=provider_ref,
            status=status,
        )
        with self.client.connection() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO sms_inbox
                   (id, account_id, provider, direction, from_number, to_number, text,
                    media_urls, provider_ref, status, ts)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.account_id,
                    record.provider,
                    record.direction,
                    record.from_number,
                    record.to_number,
                    record.text,
                    json.dumps(record.media_urls),
                    record.provider_ref,
                    record.status,
                    record.ts,
                ),
            )
            if cursor.rowcount == 0:
                logger.debug(f"SMS {record.id} already in inbox")
        return record

    def page(
        self,
        account_id: str,
        offset: int,
        limit: int,
        since: Optional[str] = None,
        newest_first: bool = True,
    ) -> tuple[list[SmsRecord], int]:
        """One page of non-deleted records plus the total count."""
        where = "account_id = ? AND deleted = 0"
        params: list = [account_id]
        if since:
            where += " AND ts >= ?"
            params.append(utc_timestamp(since))
        order = "DESC" if newest_first else "ASC"

        with self.client.connection() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) AS n FROM sms_inbox WHERE {where}", params
            ).fetchone()["n"]
            rows = conn.execute(
                f"SELECT * FROM sms_inbox WHERE {where} ORDER BY ts {order}, id {order} LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
        return [self._row_to_record(r) for r in rows], int(total)

    def mark_read(self, account_id: str, ids: Iterable[str]) -> int:
        return self._flag(account_id, ids, "read")

    def delete(self, account_id: str, ids: Iterable[str]) -> int:
        return self._flag(account_id, ids, "deleted")

    def _flag(self, account_id: str, ids: Iterable[str], column: str) -> int:
        ids = list(ids)
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        with self.client.connection() as conn:
            cursor = conn.execute(
                f"UPDATE sms_inbox SET {column} = 1 WHERE account_id = ? AND id IN ({placeholders})",
                [account_id, *ids],
            )
            return cursor.rowcount
