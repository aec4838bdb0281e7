"""Gmail adapter over the Gmail REST API with a bearer token."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

from loguru import logger

from commsync.application.ports.provider_adapter import (
    FetchFilter,
    FetchRequest,
    FetchResult,
    OutgoingMessage,
)
from commsync.domain.entities.account import Account
from commsync.domain.models import Message, ProviderType
from commsync.infrastructure.providers.gmail.mapper import encode_base64url, parse_gmail_message
from commsync.infrastructure.providers.http_base import HttpProviderAdapter
from commsync.infrastructure.providers.imap.rfc822 import build_mime

METADATA_HEADERS = ("From", "To", "Cc", "Subject", "Date", "Message-ID")


def build_query(fetch_filter: FetchFilter) -> str:
    """Gmail search syntax for a fetch filter."""
    terms: list[str] = []
    if fetch_filter.since is not None:
        terms.append(f"after:{int(fetch_filter.since.timestamp())}")
    if fetch_filter.before is not None:
        terms.append(f"before:{int(fetch_filter.before.timestamp())}")
    if fetch_filter.sender:
        terms.append(f"from:{fetch_filter.sender}")
    if fetch_filter.recipient:
        terms.append(f"to:{fetch_filter.recipient}")
    if fetch_filter.subject:
        terms.append(f'subject:"{fetch_filter.subject}"')
    if fetch_filter.seen is not None:
        terms.append("is:read" if fetch_filter.seen else "is:unread")
    if fetch_filter.flagged is not None:
        terms.append("is:starred" if fetch_filter.flagged else "-is:starred")
    return " ".join(terms)


class GmailAdapter(HttpProviderAdapter):
    """Cursor-paged Gmail listing; bodies completed with format=full."""

    provider_type = ProviderType.GMAIL
    name = "gmail"
    detail_concurrency = 10

    def _auth_headers(self, credentials: dict[str, Any]) -> dict[str, str]:
        return {"Authorization": f"Bearer {credentials.get('access_token', '')}"}

    async def _check_connection(self, account: Account) -> bool:
        async with self._client(self.credentials(account)) as client:
            profile = await self.request(client, "GET", "/users/me/profile")
        return bool(profile and profile.get("emailAddress"))

    async def fetch(self, account: Account, request: FetchRequest) -> FetchResult:
        params: dict[str, Any] = {"maxResults": min(request.page_size, 500)}
        query = build_query(request.filter)
        if query:
            params["q"] = query
        if request.cursor:
            params["pageToken"] = request.cursor

        async with self._client(self.credentials(account)) as client:
            listing = await self.request(client, "GET", "/users/me/messages", params=params) or {}
            refs = listing.get("messages") or []

            semaphore = asyncio.Semaphore(self.detail_concurrency)

            async def detail(message_id: str) -> dict[str, Any]:
                async with semaphore:
                    return await self.request(
                        client,
                        "GET",
                        f"/users/me/messages/{message_id}",
                        params={"format": "metadata", "metadataHeaders": list(METADATA_HEADERS)},
                    )

            details = await asyncio.gather(*(detail(ref["id"]) for ref in refs))

        messages = [parse_gmail_message(account.id, d) for d in details if d]
        if request.sort_direction == "asc":
            messages.reverse()

        logger.info(f"Gmail {account.id}: fetched {len(messages)} message(s)")
        return FetchResult(
            messages=messages,
            total=listing.get("resultSizeEstimate"),
            cursor=listing.get("nextPageToken"),
        )

    async def fetch_body(self, account: Account, message: Message) -> Message:
        async with self._client(self.credentials(account)) as client:
            data = await self.request(
                client, "GET", f"/users/me/messages/{message.id}", params={"format": "full"}
            )
        full = parse_gmail_message(account.id, data)
        return message.model_copy(
            update={
                "body": full.body,
                "html_body": full.html_body,
                "attachments": full.attachments,
            }
        )

    async def send(self, account: Account, message: OutgoingMessage) -> Message:
        creds = self.credentials(account)
        mime = build_mime(message, creds.get("email", "me"), list(message.to))
        payload: dict[str, Any] = {"raw": encode_base64url(mime.as_bytes())}
        if message.thread_id:
            payload["threadId"] = message.thread_id

        async with self._client(creds) as client:
            sent = await self.request(client, "POST", "/users/me/messages/send", json=payload)
            data = await self.request(
                client, "GET", f"/users/me/messages/{sent['id']}", params={"format": "full"}
            )

        logger.info(f"Gmail sent {sent['id']} from {account.id}")
        return parse_gmail_message(account.id, data)

    async def mark_read(self, account: Account, ids: Sequence[str]) -> None:
        await self._modify(account, ids, {"removeLabelIds": ["UNREAD"]})

    async def delete(self, account: Account, ids: Sequence[str]) -> None:
        await self._modify(account, ids, {"addLabelIds": ["TRASH"], "removeLabelIds": ["INBOX"]})

    async def _modify(self, account: Account, ids: Sequence[str], change: dict[str, list[str]]) -> None:
        if not ids:
            return
        async with self._client(self.credentials(account)) as client:
            await self.request(
                client, "POST", "/users/me/messages/batchModify", json={"ids": list(ids), **change}
            )
