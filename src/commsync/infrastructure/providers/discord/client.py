"""Discord adapter over the REST API with a bot token."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Sequence

from loguru import logger

from commsync.application.ports.credential_vault import CredentialVault
from commsync.application.ports.provider_adapter import FetchRequest, FetchResult, OutgoingMessage
from commsync.domain.entities.account import Account
from commsync.domain.errors import ProviderConnectionError
from commsync.domain.models import Attachment, Message, Participant, ProviderType
from commsync.infrastructure.providers.http_base import HttpProviderAdapter
from commsync.infrastructure.sqlite.message_state import LocalMessageState

MAX_PAGE = 100


def message_id_for(channel_id: str, discord_id: str) -> str:
    return f"discord-{channel_id}-{discord_id}"


def split_id(message_id: str) -> tuple[str, str] | None:
    parts = message_id.split("-")
    if len(parts) != 3 or parts[0] != "discord":
        return None
    return parts[1], parts[2]


def _participant(user: dict[str, Any]) -> Participant:
    username = user.get("username", "")
    return Participant(name=user.get("global_name") or username, address=f"@{username}" if username else "")


def to_message(account_id: str, channel_id: str, data: dict[str, Any], read: bool = False) -> Message:
    return Message(
        id=message_id_for(channel_id, data["id"]),
        thread_id=channel_id,
        sender=_participant(data.get("author") or {}),
        to=[_participant(u) for u in data.get("mentions") or []],
        body=data.get("content") or "",
        date=data.get("timestamp"),
        attachments=[
            Attachment(
                id=a["id"],
                filename=a.get("filename", "attachment.bin"),
                mime_type=a.get("content_type") or "application/octet-stream",
                size=int(a.get("size") or 0),
            )
            for a in data.get("attachments") or []
        ],
        labels=["DISCORD"],
        read=read,
        provider_type=ProviderType.DISCORD,
        account_id=account_id,
        provider_ref=str(data["nonce"]) if data.get("nonce") else None,
    )


class DiscordAdapter(HttpProviderAdapter):
    """DMs and configured channels. Discord has no remote read state and a
    bot can only delete its own messages, so reads and deletes are also
    recorded in the local message state."""

    provider_type = ProviderType.DISCORD
    name = "discord"

    def __init__(self, vault: CredentialVault, base_url: str, state: LocalMessageState, **kwargs: Any):
        super().__init__(vault, base_url, **kwargs)
        self.state = state

    def _auth_headers(self, credentials: dict[str, Any]) -> dict[str, str]:
        return {"Authorization": f"Bot {credentials.get('bot_token', '')}"}

    async def _check_connection(self, account: Account) -> bool:
        async with self._client(self.credentials(account)) as client:
            me = await self.request(client, "GET", "/users/@me")
        return bool(me and me.get("id"))

    async def _channels(self, client, credentials: dict[str, Any]) -> list[str]:
        configured = credentials.get("channel_ids")
        if configured:
            return [str(c) for c in configured]
        channels = await self.request(client, "GET", "/users/@me/channels") or []
        return [str(c["id"]) for c in channels]

    async def fetch(self, account: Account, request: FetchRequest) -> FetchResult:
        creds = self.credentials(account)
        # Cursor is a JSON map of channel id -> oldest message id seen so far
        befores: dict[str, str | None] = json.loads(request.cursor) if request.cursor else {}
        limit = min(request.page_size, MAX_PAGE)
        messages: list[Message] = []
        next_cursor: dict[str, str] = {}

        async with self._client(creds) as client:
            channels = list(befores) if befores else await self._channels(client, creds)
            for channel_id in channels:
                params: dict[str, Any] = {"limit": limit}
                if befores.get(channel_id):
                    params["before"] = befores[channel_id]
                batch = await self.request(
                    client, "GET", f"/channels/{channel_id}/messages", params=params, missing_ok=True
                ) or []
                messages.extend(to_message(account.id, channel_id, data) for data in batch)
                if len(batch) == limit:
                    next_cursor[channel_id] = batch[-1]["id"]

        messages = await asyncio.to_thread(self.state.overlay, account.id, messages)
        messages = [m for m in messages if request.filter.matches(m)]
        messages.sort(key=lambda m: m.date, reverse=request.sort_direction == "desc")
        logger.info(f"Discord {account.id}: {len(messages)} message(s) from {len(channels)} channel(s)")
        return FetchResult(messages=messages, cursor=json.dumps(next_cursor) if next_cursor else None)

    async def send(self, account: Account, message: OutgoingMessage) -> Message:
        channel_id = message.thread_id or (message.to[0] if message.to else None)
        if not channel_id:
            raise ProviderConnectionError("Discord send needs a channel id")
        async with self._client(self.credentials(account)) as client:
            data = await self.request(
                client, "POST", f"/channels/{channel_id}/messages", json={"content": message.body}
            )
        return to_message(account.id, str(channel_id), data, read=True)

    async def mark_read(self, account: Account, ids: Sequence[str]) -> None:
        await asyncio.to_thread(self.state.acknowledge, account.id, ids)

    async def delete(self, account: Account, ids: Sequence[str]) -> None:
        # Messages from other authors stay on Discord; the tombstone hides them
        await asyncio.to_thread(self.state.tombstone, account.id, ids)
        async with self._client(self.credentials(account)) as client:
            for message_id in ids:
                parts = split_id(message_id)
                if parts is None:
                    continue
                channel_id, discord_id = parts
                await self.request(
                    client,
                    "DELETE",
                    f"/channels/{channel_id}/messages/{discord_id}",
                    missing_ok=True,
                    forbidden_ok=True,
                )
