from __future__ import annotations

from email import policy
from email.parser import BytesParser
from email.utils import getaddresses
from datetime import datetime, timezone

from commsync.domain.models import Message, Participant, ProviderType
from commsync.infrastructure.providers.imap.rfc822 import describe_attachments, text_bodies


def message_id_for(account_id: str, uid: int) -> str:
    return f"imap-{account_id}-{uid}"


def uid_from_id(account_id: str, message_id: str) -> int | None:
    prefix = f"imap-{account_id}-"
    if not message_id.startswith(prefix):
        return None
    tail = message_id[len(prefix):]
    return int(tail) if tail.isdigit() else None


def _participants(values: list[str]) -> list[Participant]:
    return [
        Participant(name=name.strip(), address=address.strip())
        for name, address in getaddresses(values)
        if address
    ]


def rfc822_to_message(
    account_id: str,
    folder: str,
    uid: int,
    rfc822_bytes: bytes,
    flags: tuple[str, ...] = (),
    headers_only: bool = False,
) -> Message:
    em = BytesParser(policy=policy.default).parsebytes(rfc822_bytes, headersonly=headers_only)

    senders = _participants([str(em.get("From") or "")])
    to = _participants([str(v) for v in (em.get_all("To") or [])])
    to += _participants([str(v) for v in (em.get_all("Cc") or [])])

    # Date parsing can be messy; default to now if absent/unparseable
    dt = em.get("Date")
    try:
        date = dt.datetime if dt and dt.datetime else datetime.now(timezone.utc)
    except (AttributeError, TypeError, ValueError):
        date = datetime.now(timezone.utc)

    message_id = str(em.get("Message-ID") or "").strip() or None
    references = str(em.get("References") or "").split()
    thread_id = (references[0] if references else None) or str(em.get("In-Reply-To") or "").strip() or message_id

    body, html_body = ("", "") if headers_only else text_bodies(em)
    attachments = [] if headers_only else describe_attachments(em, message_id_for(account_id, uid))

    return Message(
        id=message_id_for(account_id, uid),
        thread_id=thread_id,
        sender=senders[0] if senders else Participant(),
        to=to,
        subject=str(em.get("Subject") or "").strip() or "(No Subject)",
        body=body,
        html_body=html_body,
        date=date,
        attachments=attachments,
        labels=[folder.upper() if folder.upper() == "INBOX" else folder],
        read="\\Seen" in flags,
        flagged="\\Flagged" in flags,
        provider_type=ProviderType.IMAP,
        account_id=account_id,
        provider_ref=message_id,
    )
