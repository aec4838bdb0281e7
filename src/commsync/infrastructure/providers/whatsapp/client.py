"""WhatsApp via the Unipile messaging bridge."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Sequence

from loguru import logger

from commsync.application.ports.credential_vault import CredentialVault
from commsync.application.ports.provider_adapter import FetchRequest, FetchResult, OutgoingMessage
from commsync.domain.entities.account import Account
from commsync.domain.errors import AuthError, ProviderConnectionError
from commsync.domain.models import Attachment, Message, Participant, ProviderType
from commsync.infrastructure.providers.http_base import HttpProviderAdapter
from commsync.infrastructure.sqlite.message_state import LocalMessageState

CHATS_PER_PAGE = 20
CHAT_CONCURRENCY = 3


def message_id_for(chat_id: str, bridge_id: str) -> str:
    return f"{chat_id}:{bridge_id}"


def _handle(value: str | None) -> str:
    # Bridge attendee ids look like "15551234567@s.whatsapp.net"
    return (value or "").split("@", 1)[0]


def to_message(account_id: str, own_number: str, chat: dict[str, Any], data: dict[str, Any]) -> Message:
    chat_id = data.get("chat_id") or chat.get("id", "")
    counterpart = Participant(
        name=chat.get("name") or "",
        address=_handle(chat.get("provider_id") or chat.get("attendee_provider_id")),
    )
    me = Participant(address=own_number)
    outgoing = bool(data.get("is_sender"))
    return Message(
        id=message_id_for(chat_id, data["id"]),
        thread_id=chat_id,
        sender=me if outgoing else Participant(
            name=data.get("sender_name") or counterpart.name,
            address=_handle(data.get("sender_id")) or counterpart.address,
        ),
        to=[counterpart] if outgoing else [me],
        body=data.get("text") or "",
        date=data.get("timestamp"),
        attachments=[
            Attachment(
                id=a.get("id", f"{data['id']}-{i}"),
                filename=a.get("file_name") or "attachment.bin",
                mime_type=a.get("mimetype") or "application/octet-stream",
                size=int(a.get("file_size") or 0),
            )
            for i, a in enumerate(data.get("attachments") or [])
        ],
        labels=["UNIPILE", "PROVIDER_WHATSAPP"],
        read=outgoing or bool(data.get("seen")),
        provider_type=ProviderType.WHATSAPP,
        account_id=account_id,
    )


class WhatsAppBridgeAdapter(HttpProviderAdapter):
    """Chats are paged by the bridge cursor; each page's chats are read
    a few at a time. The bridge cannot delete messages, so deletes are
    local tombstones."""

    provider_type = ProviderType.WHATSAPP
    name = "whatsapp"

    def __init__(
        self,
        vault: CredentialVault,
        base_url: str,
        access_token: str,
        state: LocalMessageState,
        **kwargs: Any,
    ):
        super().__init__(vault, base_url, **kwargs)
        self.access_token = access_token
        self.state = state

    def _auth_headers(self, credentials: dict[str, Any]) -> dict[str, str]:
        return {"X-API-KEY": self.access_token, "accept": "application/json"}

    def _bridge_account(self, credentials: dict[str, Any]) -> str:
        bridge_account = credentials.get("unipile_account_id")
        if not bridge_account:
            raise AuthError("WhatsApp account is missing its bridge account id")
        return bridge_account

    async def _check_connection(self, account: Account) -> bool:
        creds = self.credentials(account)
        async with self._client(creds) as client:
            data = await self.request(client, "GET", f"/accounts/{self._bridge_account(creds)}")
        return bool(data)

    async def fetch(self, account: Account, request: FetchRequest) -> FetchResult:
        creds = self.credentials(account)
        own_number = creds.get("phone", "")
        params: dict[str, Any] = {"account_id": self._bridge_account(creds), "limit": CHATS_PER_PAGE}
        if request.cursor:
            params["cursor"] = request.cursor

        async with self._client(creds) as client:
            listing = await self.request(client, "GET", "/chats", params=params) or {}
            chats = [c for c in listing.get("items") or [] if c.get("id")]
            semaphore = asyncio.Semaphore(CHAT_CONCURRENCY)

            async def read_chat(chat: dict[str, Any]) -> list[Message]:
                async with semaphore:
                    try:
                        page = await self.request(
                            client,
                            "GET",
                            f"/chats/{chat['id']}/messages",
                            params={"limit": request.page_size},
                        ) or {}
                    except ProviderConnectionError as e:
                        logger.warning(f"WhatsApp chat {chat['id']} skipped: {e}")
                        return []
                return [to_message(account.id, own_number, chat, m) for m in page.get("items") or []]

            per_chat = await asyncio.gather(*(read_chat(c) for c in chats))

        messages = [m for batch in per_chat for m in batch]
        messages = await asyncio.to_thread(self.state.overlay, account.id, messages)
        messages = [m for m in messages if request.filter.matches(m)]
        messages.sort(key=lambda m: m.date, reverse=request.sort_direction == "desc")
        logger.info(f"WhatsApp {account.id}: {len(messages)} message(s) from {len(chats)} chat(s)")
        return FetchResult(messages=messages, cursor=listing.get("cursor") or None)

    async def send(self, account: Account, message: OutgoingMessage) -> Message:
        creds = self.credentials(account)
        own_number = creds.get("phone", "")
        async with self._client(creds) as client:
            if message.thread_id:
                chat = {"id": message.thread_id}
                data = await self.request(
                    client, "POST", f"/chats/{message.thread_id}/messages", data={"text": message.body}
                ) or {}
            elif message.to:
                data = await self.request(
                    client,
                    "POST",
                    "/chats",
                    data={
                        "account_id": self._bridge_account(creds),
                        "attendees_ids": list(message.to),
                        "text": message.body,
                    },
                ) or {}
                chat = {"id": data.get("chat_id", ""), "provider_id": message.to[0]}
            else:
                raise ProviderConnectionError("WhatsApp send needs a chat or recipients")

        sent = {
            "id": data.get("message_id") or data.get("id") or "pending",
            "chat_id": chat["id"],
            "text": message.body,
            "is_sender": True,
        }
        return to_message(account.id, own_number, chat, sent)

    async def mark_read(self, account: Account, ids: Sequence[str]) -> None:
        # The bridge marks whole chats; the per-message acknowledgement is ours
        await asyncio.to_thread(self.state.acknowledge, account.id, ids)
        chats: dict[str, list[str]] = defaultdict(list)
        for message_id in ids:
            chat_id, _, bridge_id = message_id.partition(":")
            if bridge_id:
                chats[chat_id].append(bridge_id)
        if not chats:
            return
        async with self._client(self.credentials(account)) as client:
            for chat_id in chats:
                await self.request(
                    client,
                    "PATCH",
                    f"/chats/{chat_id}",
                    json={"action": "setReadStatus", "value": True},
                    missing_ok=True,
                )

    async def delete(self, account: Account, ids: Sequence[str]) -> None:
        removed = await asyncio.to_thread(self.state.tombstone, account.id, ids)
        logger.debug(f"WhatsApp {account.id}: {removed} message(s) removed locally")
