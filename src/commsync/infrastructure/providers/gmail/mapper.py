"""Gmail REST payloads to canonical messages."""

from __future__ import annotations

import base64
from email.utils import getaddresses
from typing import Any

from commsync.domain.models import Attachment, Message, Participant, ProviderType, coerce_datetime


def decode_base64url(data: str) -> str:
    if not data:
        return ""
    raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    return raw.decode("utf-8", errors="replace")


def encode_base64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def parse_address(value: str) -> Participant:
    addresses = parse_addresses(value)
    return addresses[0] if addresses else Participant(name=value.strip(), address=value.strip())


def parse_addresses(value: str) -> list[Participant]:
    return [
        Participant(name=name.strip().strip('"'), address=address.strip())
        for name, address in getaddresses([value or ""])
        if address
    ]


def _walk(part: dict[str, Any], found: dict[str, Any]) -> None:
    mime_type = part.get("mimeType", "")
    body = part.get("body") or {}

    if part.get("filename") and body.get("attachmentId"):
        found["attachments"].append(
            Attachment(
                id=body["attachmentId"],
                filename=part["filename"],
                mime_type=mime_type or "application/octet-stream",
                size=int(body.get("size") or 0),
            )
        )
    elif mime_type == "text/plain" and body.get("data") and not found["body"]:
        found["body"] = decode_base64url(body["data"])
    elif mime_type == "text/html" and body.get("data") and not found["html_body"]:
        found["html_body"] = decode_base64url(body["data"])

    for child in part.get("parts") or []:
        _walk(child, found)


def parse_gmail_message(account_id: str, data: dict[str, Any]) -> Message:
    payload = data.get("payload") or {}
    headers = {h["name"].lower(): h.get("value", "") for h in payload.get("headers", [])}

    found: dict[str, Any] = {"body": "", "html_body": "", "attachments": []}
    _walk(payload, found)

    labels = list(data.get("labelIds") or [])
    date_source: Any = headers.get("date")
    if data.get("internalDate"):
        date_source = int(data["internalDate"])

    return Message(
        id=data["id"],
        thread_id=data.get("threadId"),
        sender=parse_address(headers.get("from", "")),
        to=parse_addresses(headers.get("to", "")) + parse_addresses(headers.get("cc", "")),
        subject=headers.get("subject") or "(No Subject)",
        body=found["body"],
        html_body=found["html_body"],
        date=coerce_datetime(date_source),
        attachments=found["attachments"],
        labels=[label for label in labels if label != "UNREAD"] or ["INBOX"],
        read="UNREAD" not in labels,
        flagged="STARRED" in labels,
        provider_type=ProviderType.GMAIL,
        account_id=account_id,
        provider_ref=headers.get("message-id"),
    )
