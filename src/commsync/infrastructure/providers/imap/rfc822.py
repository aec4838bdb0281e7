from __future__ import annotations

import mimetypes
from email.message import EmailMessage, Message as MimeMessage
from email.utils import formatdate, make_msgid
from typing import Iterator, Sequence

from commsync.application.ports.provider_adapter import OutgoingMessage
from commsync.domain.models import Attachment


def attachment_parts(em: MimeMessage) -> Iterator[MimeMessage]:
    for part in em.walk():
        if part.is_multipart():
            continue

        filename = part.get_filename()
        disp = (part.get("Content-Disposition") or "").lower()

        # capture explicit attachments + common inline-with-filename cases
        if not filename and "attachment" not in disp:
            continue
        yield part


def describe_attachments(em: MimeMessage, id_prefix: str) -> list[Attachment]:
    """Attachment metadata only; bytes stay on the server."""
    out: list[Attachment] = []
    for index, part in enumerate(attachment_parts(em)):
        payload = part.get_payload(decode=True) or b""
        out.append(
            Attachment(
                id=f"{id_prefix}-{index}",
                filename=part.get_filename() or "attachment.bin",
                mime_type=part.get_content_type(),
                size=len(payload),
            )
        )
    return out


def text_bodies(em: MimeMessage) -> tuple[str, str]:
    """(plain, html) bodies, skipping attachment parts."""
    plain = ""
    html = ""
    for part in em.walk():
        if part.is_multipart() or part.get_filename():
            continue
        if "attachment" in (part.get("Content-Disposition") or "").lower():
            continue
        ctype = part.get_content_type()
        if ctype == "text/plain" and not plain:
            plain = _decoded(part).strip()
        elif ctype == "text/html" and not html:
            html = _decoded(part).strip()
    return plain, html


def _decoded(part: MimeMessage) -> str:
    try:
        return part.get_content()
    except (LookupError, AttributeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode(part.get_content_charset() or "utf-8", errors="replace")


def build_mime(message: OutgoingMessage, sender: str, recipients: Sequence[str]) -> EmailMessage:
    """RFC 2822 message for SMTP and raw-upload APIs."""
    em = EmailMessage()
    em["From"] = sender
    em["To"] = ", ".join(recipients)
    em["Subject"] = message.subject
    em["Date"] = formatdate(localtime=False, usegmt=True)
    em["Message-ID"] = make_msgid()
    if message.thread_id:
        em["In-Reply-To"] = message.thread_id
        em["References"] = message.thread_id

    em.set_content(message.body or "")
    if message.html:
        em.add_alternative(message.html, subtype="html")

    for attachment in message.attachments:
        mime_type = attachment.mime_type or mimetypes.guess_type(attachment.filename)[0]
        maintype, _, subtype = (mime_type or "application/octet-stream").partition("/")
        em.add_attachment(
            attachment.content,
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return em
