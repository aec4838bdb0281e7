"""SMS carrier A: JustCall texts API."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import httpx
from loguru import logger

from commsync.application.ports.credential_vault import CredentialVault
from commsync.application.ports.provider_adapter import FetchRequest, FetchResult, OutgoingMessage
from commsync.domain.entities.account import Account
from commsync.domain.errors import ProviderConnectionError
from commsync.domain.models import Attachment, Message, Participant, ProviderType
from commsync.infrastructure.providers.http_base import HttpProviderAdapter, placeholder_id
from commsync.infrastructure.providers.sms.numbers import conversation_id, to_e164
from commsync.infrastructure.sqlite.message_state import LocalMessageState

INBOUND_DIRECTIONS = {"1", "incoming", "inbound"}


def is_inbound(direction: Any) -> bool:
    return str(direction).strip().lower() in INBOUND_DIRECTIONS


def to_message(account_id: str, own_number: str, data: dict[str, Any], read: bool = False) -> Message:
    contact = to_e164(data.get("contact_number") or data.get("client_number") or "")
    ours = to_e164(data.get("justcall_number") or own_number)
    inbound = is_inbound(data.get("direction"))
    them = Participant(name=data.get("contact_name") or "", address=contact)
    me = Participant(address=ours)
    return Message(
        id=f"justcall-{data['id']}",
        thread_id=conversation_id(contact, ours),
        sender=them if inbound else me,
        to=[me] if inbound else [them],
        body=data.get("body") or "",
        date=data.get("datetime") or data.get("created_at"),
        attachments=[
            Attachment(id=f"justcall-{data['id']}-{i}", filename=url.rsplit("/", 1)[-1] or "media")
            for i, url in enumerate(data.get("mms") or [])
            if isinstance(url, str)
        ],
        labels=["SMS", "JUSTCALL"],
        read=read or not inbound,
        provider_type=ProviderType.SMS_A,
        account_id=account_id,
        provider_ref=str(data["id"]),
    )


class JustCallAdapter(HttpProviderAdapter):
    """Page-numbered text history. JustCall keeps no read state and its
    history cannot be edited, so reads and deletes are recorded in the
    local message state and overlaid on every page."""

    provider_type = ProviderType.SMS_A
    name = "justcall"

    def __init__(self, vault: CredentialVault, base_url: str, state: LocalMessageState, **kwargs: Any):
        super().__init__(vault, base_url, **kwargs)
        self.state = state

    def _auth(self, credentials: dict[str, Any]) -> httpx.Auth | None:
        return httpx.BasicAuth(credentials.get("api_key", ""), credentials.get("api_secret", ""))

    async def _check_connection(self, account: Account) -> bool:
        async with self._client(self.credentials(account)) as client:
            await self.request(client, "GET", "/texts", params={"per_page": 1})
        return True

    async def fetch(self, account: Account, request: FetchRequest) -> FetchResult:
        creds = self.credentials(account)
        page = request.resolved_page()
        params: dict[str, Any] = {
            "per_page": request.page_size,
            "page": page - 1,
            "order": request.sort_direction,
        }
        if request.filter.since is not None:
            params["from_datetime"] = request.filter.since.strftime("%Y-%m-%d %H:%M:%S")
        if request.filter.before is not None:
            params["to_datetime"] = request.filter.before.strftime("%Y-%m-%d %H:%M:%S")
        if request.filter.sender:
            params["contact_number"] = request.filter.sender

        async with self._client(creds) as client:
            data = await self.request(client, "GET", "/texts", params=params) or {}

        rows = data.get("data") or []
        if not isinstance(rows, list):
            logger.error(f"JustCall returned unexpected payload for {account.id}")
            rows = []

        messages = [
            to_message(account.id, creds.get("number", ""), row)
            for row in rows
            if row and row.get("id") is not None
        ]
        messages = await asyncio.to_thread(self.state.overlay, account.id, messages)
        messages = [m for m in messages if request.filter.matches(m)]
        logger.info(f"JustCall {account.id}: {len(messages)} text(s) on page {page}")
        more = len(rows) >= request.page_size
        return FetchResult(messages=messages, cursor=str(page + 1) if more else None)

    async def send(self, account: Account, message: OutgoingMessage) -> Message:
        if not message.to:
            raise ProviderConnectionError("JustCall send needs a recipient")
        creds = self.credentials(account)
        payload: dict[str, Any] = {"to": to_e164(message.to[0]), "body": message.body}
        if creds.get("number"):
            payload["justcall_number"] = to_e164(creds["number"])

        async with self._client(creds) as client:
            data = await self.request(client, "POST", "/texts/send", json=payload) or {}

        sent = data.get("data") or data
        if isinstance(sent, list):
            sent = sent[0] if sent else {}
        sent.setdefault("id", placeholder_id("sent"))
        sent.setdefault("contact_number", payload["to"])
        sent.setdefault("body", message.body)
        sent.setdefault("direction", "outgoing")
        logger.info(f"JustCall sent {sent.get('id')} from {account.id}")
        return to_message(account.id, creds.get("number", ""), sent, read=True)

    async def mark_read(self, account: Account, ids: Sequence[str]) -> None:
        await asyncio.to_thread(self.state.acknowledge, account.id, ids)

    async def delete(self, account: Account, ids: Sequence[str]) -> None:
        # Carrier history is immutable; removal is a local tombstone
        removed = await asyncio.to_thread(self.state.tombstone, account.id, ids)
        logger.debug(f"JustCall {account.id}: {removed} text(s) removed locally")
