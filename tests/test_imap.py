"""Tests for the IMAP mapper, search criteria and adapter paging."""

from datetime import datetime, timezone

import pytest
from cryptography.fernet import Fernet

from commsync.application.ports.provider_adapter import FetchFilter, FetchRequest
from commsync.infrastructure.providers.imap import ImapAdapter
from commsync.infrastructure.providers.imap.client import (
    ImapConfig,
    build_search_criteria,
    imap_date,
)
from commsync.infrastructure.providers.imap.mapper import (
    message_id_for,
    rfc822_to_message,
    uid_from_id,
)
from commsync.infrastructure.vault import FernetCredentialVault

from conftest import make_account

RAW = (
    b"From: Alice Smith <alice@example.com>\r\n"
    b"To: me@example.com\r\n"
    b"Cc: Bob <bob@example.com>\r\n"
    b"Subject: Weekend plans\r\n"
    b"Date: Wed, 01 May 2024 12:00:00 +0000\r\n"
    b"Message-ID: <abc123@example.com>\r\n"
    b"Content-Type: text/plain; charset=utf-8\r\n"
    b"\r\n"
    b"Are we still on for Saturday?\r\n"
)


class TestMapper:
    def test_full_message(self):
        message = rfc822_to_message("acct-a", "INBOX", 7, RAW, ("\\Seen",))

        assert message.id == "imap-acct-a-7"
        assert message.sender.address == "alice@example.com"
        assert [p.address for p in message.to] == ["me@example.com", "bob@example.com"]
        assert message.subject == "Weekend plans"
        assert message.body.strip() == "Are we still on for Saturday?"
        assert message.date == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert message.read is True
        assert message.provider_ref == "<abc123@example.com>"

    def test_headers_only_needs_content(self):
        message = rfc822_to_message("acct-a", "INBOX", 7, RAW, (), headers_only=True)

        assert message.needs_content
        assert message.read is False

    def test_uid_round_trip(self):
        assert uid_from_id("acct-a", message_id_for("acct-a", 42)) == 42
        assert uid_from_id("acct-b", message_id_for("acct-a", 42)) is None


class TestSearchCriteria:
    def test_empty_filter_is_all(self):
        assert build_search_criteria(FetchFilter()) == ["ALL"]

    def test_filter_terms(self):
        criteria = build_search_criteria(
            FetchFilter(
                since=datetime(2024, 3, 5, tzinfo=timezone.utc),
                sender="alice@example.com",
                seen=False,
            )
        )

        assert criteria == ["SINCE", "05-Mar-2024", "FROM", '"alice@example.com"', "UNSEEN"]

    def test_imap_date_is_locale_independent(self):
        assert imap_date(datetime(2024, 12, 1)) == "01-Dec-2024"


class TestConfig:
    def test_outgoing_port_follows_security(self):
        secure = ImapConfig.from_credentials({"host": "mail", "username": "u", "password": "p"})
        plain = ImapConfig.from_credentials(
            {"host": "mail", "username": "u", "password": "p", "secure": False}
        )

        assert secure.outgoing_port == 465
        assert plain.outgoing_port == 587


class FakeSession:
    uids = list(range(1, 8))

    def __init__(self, cfg, timeout):
        self.cfg = cfg

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return None

    def select(self, readonly=True):
        pass

    def search(self, criteria):
        return list(self.uids)

    def fetch(self, uids, parts):
        return [(uid, (), RAW) for uid in uids]


class TestImapAdapter:
    @pytest.mark.asyncio
    async def test_fetch_pages_newest_first(self):
        vault = FernetCredentialVault(Fernet.generate_key())
        account = make_account(
            "acct-a",
            credentials=vault.encrypt({"host": "mail", "username": "u", "password": "p"}),
        )
        adapter = ImapAdapter(vault, session_factory=FakeSession)

        first = await adapter.fetch(account, FetchRequest(page=1, page_size=3))
        last = await adapter.fetch(account, FetchRequest(page_size=3, cursor="3"))

        assert [m.id for m in first.messages] == ["imap-acct-a-7", "imap-acct-a-6", "imap-acct-a-5"]
        assert first.total == 7
        assert first.cursor == "2"
        assert [m.id for m in last.messages] == ["imap-acct-a-1"]
        assert last.has_more is False
        assert all(m.needs_content for m in first.messages)
