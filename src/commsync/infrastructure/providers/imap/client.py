from __future__ import annotations

import asyncio
import imaplib
import re
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from loguru import logger

from commsync.application.ports.credential_vault import CredentialVault
from commsync.application.ports.provider_adapter import (
    FetchFilter,
    FetchRequest,
    FetchResult,
    OutgoingMessage,
    ProviderAdapter,
)
from commsync.domain.entities.account import Account
from commsync.domain.errors import AuthError, ProviderConnectionError
from commsync.domain.models import Message, Participant, ProviderType
from commsync.infrastructure.providers.http_base import placeholder_id
from commsync.infrastructure.providers.imap.mapper import rfc822_to_message, uid_from_id
from commsync.infrastructure.providers.imap.rfc822 import build_mime

HEADER_FETCH = "(UID FLAGS RFC822.SIZE BODY.PEEK[HEADER])"
FULL_FETCH = "(UID FLAGS BODY.PEEK[])"

_UID_RE = re.compile(rb"UID (\d+)")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


@dataclass
class ImapConfig:
    host: str
    username: str
    password: str
    port: int = 993
    secure: bool = True
    folder: str = "INBOX"
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = None
    email: Optional[str] = None

    @classmethod
    def from_credentials(cls, creds: dict[str, Any]) -> ImapConfig:
        try:
            return cls(
                host=creds["host"],
                username=creds["username"],
                password=creds["password"],
                port=int(creds.get("port") or 993),
                secure=bool(creds.get("secure", True)),
                folder=creds.get("folder") or "INBOX",
                smtp_host=creds.get("smtp_host"),
                smtp_port=int(creds["smtp_port"]) if creds.get("smtp_port") else None,
                email=creds.get("email"),
            )
        except KeyError as e:
            raise AuthError(f"IMAP credentials missing {e.args[0]}") from e

    @property
    def sender_address(self) -> str:
        return self.email or self.username

    @property
    def outgoing_host(self) -> str:
        return self.smtp_host or self.host

    @property
    def outgoing_port(self) -> int:
        return self.smtp_port or (465 if self.secure else 587)


def imap_date(value: datetime) -> str:
    """IMAP date literal, independent of the process locale."""
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_search_criteria(fetch_filter: FetchFilter) -> list[str]:
    criteria: list[str] = []
    if fetch_filter.since is not None:
        criteria += ["SINCE", imap_date(fetch_filter.since)]
    if fetch_filter.before is not None:
        criteria += ["BEFORE", imap_date(fetch_filter.before)]
    if fetch_filter.sender:
        criteria += ["FROM", _quote(fetch_filter.sender)]
    if fetch_filter.recipient:
        criteria += ["TO", _quote(fetch_filter.recipient)]
    if fetch_filter.subject:
        criteria += ["SUBJECT", _quote(fetch_filter.subject)]
    if fetch_filter.seen is not None:
        criteria.append("SEEN" if fetch_filter.seen else "UNSEEN")
    if fetch_filter.flagged is not None:
        criteria.append("FLAGGED" if fetch_filter.flagged else "UNFLAGGED")
    return criteria or ["ALL"]


def _parse_fetch(data: list) -> list[tuple[int, tuple[str, ...], bytes]]:
    """(uid, flags, literal) triples from an imaplib FETCH response."""
    out: list[tuple[int, tuple[str, ...], bytes]] = []
    for item in data or []:
        if not isinstance(item, tuple) or len(item) < 2:
            continue
        meta, literal = item[0], item[1]
        match = _UID_RE.search(meta)
        if not match:
            continue
        flags = tuple(f.decode() for f in imaplib.ParseFlags(meta))
        out.append((int(match.group(1)), flags, literal))
    return out


class ImapSession:
    """Blocking IMAP connection for one mailbox folder."""

    def __init__(self, cfg: ImapConfig, timeout: float = 30.0) -> None:
        self.cfg = cfg
        self.timeout = timeout
        self._conn: Optional[imaplib.IMAP4] = None

    def _connect(self) -> imaplib.IMAP4:
        if self._conn is None:
            try:
                if self.cfg.secure:
                    conn = imaplib.IMAP4_SSL(self.cfg.host, self.cfg.port, timeout=self.timeout)
                else:
                    conn = imaplib.IMAP4(self.cfg.host, self.cfg.port, timeout=self.timeout)
            except OSError as e:
                raise ProviderConnectionError(f"IMAP connect to {self.cfg.host} failed: {e}") from e
            try:
                conn.login(self.cfg.username, self.cfg.password)
            except imaplib.IMAP4.error as e:
                raise AuthError(f"IMAP login rejected for {self.cfg.username}") from e
            self._conn = conn
        return self._conn

    def disconnect(self) -> None:
        if self._conn:
            try:
                self._conn.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.debug(f"IMAP logout failed: {e}")
            self._conn = None

    def __enter__(self) -> ImapSession:
        return self

    def __exit__(self, *exc: object) -> None:
        self.disconnect()

    def select(self, readonly: bool = True) -> None:
        typ, _ = self._connect().select(self.cfg.folder, readonly=readonly)
        if typ != "OK":
            raise ProviderConnectionError(f"Failed to select folder {self.cfg.folder}")

    def search(self, criteria: Sequence[str]) -> list[int]:
        typ, uids_data = self._connect().uid("SEARCH", None, *criteria)
        if typ != "OK":
            raise ProviderConnectionError("UID SEARCH failed")
        if not uids_data or not uids_data[0]:
            return []
        return sorted(int(x) for x in uids_data[0].split())

    def fetch(self, uids: Sequence[int], parts: str) -> list[tuple[int, tuple[str, ...], bytes]]:
        if not uids:
            return []
        typ, data = self._connect().uid("FETCH", ",".join(str(u) for u in uids), parts)
        if typ != "OK":
            raise ProviderConnectionError("UID FETCH failed")
        return _parse_fetch(data)

    def store(self, uids: Sequence[int], flags: str) -> None:
        if uids:
            self._connect().uid("STORE", ",".join(str(u) for u in uids), "+FLAGS", flags)

    def expunge(self) -> None:
        self._connect().expunge()


class ImapAdapter(ProviderAdapter):
    """IMAP mailbox reads and SMTP sends.

    Lists fetch headers only; bodies are completed lazily via fetch_body.
    Blocking imaplib/smtplib calls run in worker threads.
    """

    provider_type = ProviderType.IMAP

    def __init__(
        self,
        vault: CredentialVault,
        timeout: float = 30.0,
        connection_test_timeout: float = 10.0,
        session_factory: type[ImapSession] = ImapSession,
    ):
        self.vault = vault
        self.timeout = timeout
        self.connection_test_timeout = connection_test_timeout
        self.session_factory = session_factory

    def _config(self, account: Account) -> ImapConfig:
        if not account.credentials:
            raise AuthError(f"Account {account.id} has no stored credentials")
        return ImapConfig.from_credentials(self.vault.decrypt(account.credentials))

    async def test_connection(self, account: Account) -> bool:
        def check() -> bool:
            with self.session_factory(self._config(account), self.connection_test_timeout) as session:
                session.select(readonly=True)
            return True

        try:
            return await asyncio.wait_for(asyncio.to_thread(check), self.connection_test_timeout)
        except Exception as e:
            logger.warning(f"IMAP connection test failed for {account.id}: {e}")
            return False

    async def fetch(self, account: Account, request: FetchRequest) -> FetchResult:
        return await asyncio.to_thread(self._fetch_sync, account, request)

    def _fetch_sync(self, account: Account, request: FetchRequest) -> FetchResult:
        cfg = self._config(account)
        with self.session_factory(cfg, self.timeout) as session:
            session.select(readonly=True)
            uids = session.search(build_search_criteria(request.filter))
            if request.sort_direction == "desc":
                uids.reverse()

            window = uids[request.offset : request.offset + request.page_size]
            fetched = session.fetch(window, HEADER_FETCH)

        by_uid = {uid: (flags, raw) for uid, flags, raw in fetched}
        messages = [
            rfc822_to_message(account.id, cfg.folder, uid, by_uid[uid][1], by_uid[uid][0], headers_only=True)
            for uid in window
            if uid in by_uid
        ]
        logger.info(f"IMAP {account.id}: {len(messages)} of {len(uids)} message(s) in {cfg.folder}")
        return FetchResult.from_offset(messages, len(uids), request)

    async def fetch_body(self, account: Account, message: Message) -> Message:
        uid = uid_from_id(account.id, message.id)
        if uid is None:
            return message
        return await asyncio.to_thread(self._fetch_body_sync, account, message, uid)

    def _fetch_body_sync(self, account: Account, message: Message, uid: int) -> Message:
        cfg = self._config(account)
        with self.session_factory(cfg, self.timeout) as session:
            session.select(readonly=True)
            fetched = session.fetch([uid], FULL_FETCH)
        if not fetched:
            return message
        _, flags, raw = fetched[0]
        full = rfc822_to_message(account.id, cfg.folder, uid, raw, flags)
        return message.model_copy(
            update={
                "body": full.body,
                "html_body": full.html_body,
                "attachments": full.attachments,
            }
        )

    async def mark_read(self, account: Account, ids: Sequence[str]) -> None:
        await asyncio.to_thread(self._store_sync, account, ids, "(\\Seen)", False)

    async def delete(self, account: Account, ids: Sequence[str]) -> None:
        await asyncio.to_thread(self._store_sync, account, ids, "(\\Deleted)", True)

    def _store_sync(self, account: Account, ids: Sequence[str], flags: str, expunge: bool) -> None:
        uids = [u for u in (uid_from_id(account.id, i) for i in ids) if u is not None]
        if not uids:
            return
        with self.session_factory(self._config(account), self.timeout) as session:
            session.select(readonly=False)
            session.store(uids, flags)
            if expunge:
                session.expunge()
        logger.info(f"IMAP {account.id}: set {flags} on {len(uids)} message(s)")

    async def send(self, account: Account, message: OutgoingMessage) -> Message:
        cfg = self._config(account)
        mime = build_mime(message, cfg.sender_address, list(message.to))
        await asyncio.to_thread(self._smtp_send, cfg, mime)
        logger.info(f"SMTP sent to {len(message.to)} recipient(s) from {account.id}")

        return Message(
            id=placeholder_id(f"imap-{account.id}-sent"),
            thread_id=message.thread_id or str(mime["Message-ID"]),
            sender=Participant(address=cfg.sender_address),
            to=[Participant(address=a) for a in message.to],
            subject=message.subject,
            body=message.body,
            html_body=message.html or "",
            labels=["SENT"],
            read=True,
            provider_type=ProviderType.IMAP,
            account_id=account.id,
            provider_ref=str(mime["Message-ID"]),
        )

    def _smtp_send(self, cfg: ImapConfig, mime) -> None:
        host, port = cfg.outgoing_host, cfg.outgoing_port
        try:
            if port == 465:
                smtp = smtplib.SMTP_SSL(host, port, timeout=self.timeout, context=ssl.create_default_context())
            else:
                smtp = smtplib.SMTP(host, port, timeout=self.timeout)
            with smtp:
                if port != 465:
                    smtp.starttls(context=ssl.create_default_context())
                smtp.login(cfg.username, cfg.password)
                smtp.send_message(mime)
        except smtplib.SMTPAuthenticationError as e:
            raise AuthError(f"SMTP login rejected for {cfg.username}") from e
        except (smtplib.SMTPException, OSError) as e:
            raise ProviderConnectionError(f"SMTP send via {host}:{port} failed: {e}") from e
