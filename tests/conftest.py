"""Shared fixtures and in-memory fakes."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Sequence

import pytest

from commsync.application.ports.provider_adapter import (
    FetchRequest,
    FetchResult,
    OutgoingMessage,
    ProviderAdapter,
)
from commsync.domain.entities.account import Account
from commsync.domain.models import Message, Participant, ProviderType
from commsync.infrastructure.settings import Settings

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_message(
    id: str,
    account_id: str = "acct-a",
    minutes: int = 0,
    body: str = "hello there",
    provider_type: ProviderType = ProviderType.IMAP,
    **kwargs,
) -> Message:
    kwargs.setdefault("sender", Participant(name="Alice Smith", address="alice@example.com"))
    kwargs.setdefault("to", [Participant(address="me@example.com")])
    kwargs.setdefault("date", BASE_TIME + timedelta(minutes=minutes))
    return Message(
        id=id,
        account_id=account_id,
        provider_type=provider_type,
        body=body,
        **kwargs,
    )


class FakeAccounts:
    """AccountRepository kept in a dict."""

    def __init__(self, accounts: Sequence[Account] = ()):
        self.items = {a.id: a for a in accounts}
        self.last_syncs: dict[str, datetime] = {}

    def get(self, account_id):
        return self.items.get(account_id)

    def save(self, account):
        self.items[account.id] = account

    def list_linked(self, user_id=None):
        return [
            a for a in self.items.values() if a.linked and (user_id is None or a.user_id == user_id)
        ]

    def count_linked(self, user_id):
        return len(self.list_linked(user_id))

    def update_last_sync(self, account_id, when):
        self.last_syncs[account_id] = when
        self.items[account_id] = replace(self.items[account_id], last_sync=when)

    def set_linked(self, account_id, linked):
        self.items[account_id] = replace(self.items[account_id], linked=linked)


class FakeCache:
    """CacheStore kept in a dict; sizes are the UTF-8 length of the value."""

    def __init__(self):
        self.values: dict[tuple[str, str], str] = {}
        self.sizes: dict[str, int] = {}

    def get(self, user_id, key):
        return self.values.get((user_id, key))

    def set(self, user_id, key, value):
        self.values[(user_id, key)] = value

    def delete(self, user_id, key):
        self.values.pop((user_id, key), None)

    def total_size(self, user_ids):
        ids = set(user_ids)
        stored = sum(len(v.encode()) for (u, _), v in self.values.items() if u in ids)
        return stored + sum(size for u, size in self.sizes.items() if u in ids)


class FakeAdapter(ProviderAdapter):
    """Serves a fixed message list with offset paging."""

    def __init__(
        self,
        messages: Sequence[Message] = (),
        provider_type: ProviderType = ProviderType.IMAP,
        error: Exception | None = None,
        delay: float = 0.0,
        bodies: dict[str, str] | None = None,
    ):
        self.provider_type = provider_type
        self.messages = list(messages)
        self.error = error
        self.delay = delay
        self.bodies = bodies or {}
        self.fetch_calls: list[FetchRequest] = []
        self.body_calls: list[str] = []
        self.read_ids: list[str] = []
        self.deleted_ids: list[str] = []
        self.sent: list[OutgoingMessage] = []
        self.connection_ok = True

    async def test_connection(self, account):
        return self.connection_ok

    async def fetch(self, account, request):
        self.fetch_calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        mine = [m for m in self.messages if m.account_id == account.id and request.filter.matches(m)]
        page = mine[request.offset : request.offset + request.page_size]
        return FetchResult.from_offset(page, len(mine), request)

    async def fetch_body(self, account, message):
        self.body_calls.append(message.id)
        body = self.bodies.get(message.id)
        if body is None:
            return message
        return message.model_copy(update={"body": body})

    async def send(self, account, message):
        self.sent.append(message)
        return Message(
            id=f"sent-{len(self.sent)}",
            account_id=account.id,
            provider_type=self.provider_type,
            to=[Participant(address=a) for a in message.to],
            body=message.body,
            placeholder=True,
            provider_ref=f"ref-{len(self.sent)}",
        )

    async def mark_read(self, account, ids):
        self.read_ids.extend(ids)

    async def delete(self, account, ids):
        self.deleted_ids.extend(ids)


def make_account(id: str, provider_type: ProviderType = ProviderType.IMAP, **kwargs) -> Account:
    kwargs.setdefault("user_id", "user-1")
    kwargs.setdefault("credentials", "sealed")
    return Account(id=id, provider_type=provider_type, **kwargs)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        user_id="user-1",
        page_size=50,
        bulk_page_size=10,
        bulk_max_pages=200,
        fetch_timeout=5.0,
        provider_fetch_timeouts={},
        sync_overlap_seconds=300.0,
    )
