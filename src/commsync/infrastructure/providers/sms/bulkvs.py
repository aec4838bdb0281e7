"""SMS carrier B: BulkVS. Send-only API; inbound arrives via webhook into the SMS inbox."""

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
from commsync.infrastructure.sqlite.sms_inbox import SmsInbox, SmsRecord

PROVIDER = "bulkvs"


def outbound_record_id(ref_id: str, to_number: str) -> str:
    """One inbox row per recipient of a send; webhook echoes land on the same row."""
    return f"out-{ref_id}-{to_e164(to_number).lstrip('+')}"


def record_to_message(record: SmsRecord) -> Message:
    inbound = record.direction == "inbound"
    sender = Participant(address=to_e164(record.from_number))
    recipient = Participant(address=to_e164(record.to_number))
    return Message(
        id=f"bulkvs-{record.id}",
        thread_id=conversation_id(record.from_number, record.to_number),
        sender=sender,
        to=[recipient],
        body=record.text,
        date=record.ts,
        attachments=[
            Attachment(id=f"bulkvs-{record.id}-{i}", filename=url.rsplit("/", 1)[-1] or "media")
            for i, url in enumerate(record.media_urls)
        ],
        labels=["SMS", "BULKVS"],
        read=record.read or not inbound,
        provider_type=ProviderType.SMS_B,
        account_id=record.account_id,
        provider_ref=record.provider_ref,
    )


class BulkVSAdapter(HttpProviderAdapter):
    """Fetch reads the webhook-fed inbox with offset paging.

    Sends are fire-and-forget: the adapter returns a placeholder carrying
    the carrier RefId and records one outbound copy per recipient in the
    inbox under the same reference. The next pass replaces the placeholder
    with one copy and adds the others to their own conversations.
    """

    provider_type = ProviderType.SMS_B
    name = "bulkvs"

    def __init__(self, vault: CredentialVault, base_url: str, inbox: SmsInbox, **kwargs: Any):
        super().__init__(vault, base_url, **kwargs)
        self.inbox = inbox

    def _auth(self, credentials: dict[str, Any]) -> httpx.Auth | None:
        if credentials.get("api_username"):
            return httpx.BasicAuth(credentials["api_username"], credentials.get("api_key", ""))
        return None

    def _auth_headers(self, credentials: dict[str, Any]) -> dict[str, str]:
        if credentials.get("api_username"):
            return {}
        return {"X-API-KEY": credentials.get("api_key", "")}

    async def _check_connection(self, account: Account) -> bool:
        async with self._client(self.credentials(account)) as client:
            await self.request(client, "GET", "/webhooks")
        return True

    async def fetch(self, account: Account, request: FetchRequest) -> FetchResult:
        since = request.filter.since.isoformat() if request.filter.since else None
        records, total = await asyncio.to_thread(
            self.inbox.page,
            account.id,
            request.offset,
            request.page_size,
            since,
            request.sort_direction == "desc",
        )
        messages = [m for m in (record_to_message(r) for r in records) if request.filter.matches(m)]
        return FetchResult.from_offset(messages, total, request)

    async def send(self, account: Account, message: OutgoingMessage) -> Message:
        if not message.to:
            raise ProviderConnectionError("BulkVS send needs a recipient")
        creds = self.credentials(account)
        own_number = to_e164(creds.get("number", ""))
        recipients = [to_e164(n) for n in message.to]
        payload = {
            "From": own_number.lstrip("+"),
            "To": recipients,
            "Message": message.body,
            "MediaURLs": [],
        }

        async with self._client(creds) as client:
            data = await self.request(client, "POST", "/messageSend", json=payload) or {}

        ref_id = data.get("RefId") or placeholder_id(PROVIDER)
        results = data.get("Results") or []
        status = results[0].get("Status", "UNKNOWN") if results else "UNKNOWN"
        logger.info(f"BulkVS send {ref_id} from {account.id}: {status}")

        for recipient in dict.fromkeys(recipients):
            await asyncio.to_thread(
                self.inbox.add,
                account.id,
                PROVIDER,
                "outbound",
                own_number,
                recipient,
                message.body,
                message_id=outbound_record_id(ref_id, recipient),
                provider_ref=ref_id,
                status=status.lower(),
            )

        return Message(
            id=placeholder_id("sent"),
            thread_id=conversation_id(own_number, recipients[0]),
            sender=Participant(address=own_number),
            to=[Participant(address=r) for r in recipients],
            body=message.body,
            labels=["SMS", "BULKVS"],
            read=True,
            provider_type=ProviderType.SMS_B,
            account_id=account.id,
            placeholder=True,
            provider_ref=ref_id,
        )

    async def mark_read(self, account: Account, ids: Sequence[str]) -> None:
        await asyncio.to_thread(self.inbox.mark_read, account.id, self._record_ids(ids))

    async def delete(self, account: Account, ids: Sequence[str]) -> None:
        await asyncio.to_thread(self.inbox.delete, account.id, self._record_ids(ids))

    @staticmethod
    def _record_ids(ids: Sequence[str]) -> list[str]:
        return [i.removeprefix("bulkvs-") for i in ids if i.startswith("bulkvs-")]
