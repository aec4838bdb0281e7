"""Tests for the canonical store and its contact projection."""

import pytest

from commsync.application.sync import CanonicalStore, derive_contacts
from commsync.domain.models import Participant

from conftest import FakeCache, make_message


class TestCanonicalStore:
    @pytest.mark.asyncio
    async def test_merge_updates_contacts(self):
        store = CanonicalStore("user-1", own_addresses={"acct-a": ["me@example.com"]})

        await store.merge([make_message("1", minutes=1), make_message("2", minutes=2, read=True)])

        contacts = store.contacts()
        assert [c.address for c in contacts] == ["alice@example.com"]
        assert contacts[0].unread_count == 1
        assert contacts[0].name == "Alice Smith"

    @pytest.mark.asyncio
    async def test_update_and_remove(self):
        store = CanonicalStore("user-1")
        await store.merge([make_message("1"), make_message("2")])

        changed = await store.update(
            [("acct-a", "1")], lambda m: m.model_copy(update={"read": True})
        )
        removed = await store.remove([("acct-a", "2"), ("acct-a", "missing")])

        assert changed == 1
        assert removed == 1
        assert store.get("acct-a", "1").read is True
        assert store.get("acct-a", "2") is None

    @pytest.mark.asyncio
    async def test_persist_and_load_round_trip(self):
        cache = FakeCache()
        store = CanonicalStore("user-1", cache)
        await store.merge([make_message("1", minutes=1), make_message("2", minutes=2)])
        await store.persist()

        restored = CanonicalStore("user-1", cache)
        loaded = await restored.load()

        assert loaded == 2
        assert restored.snapshot() == store.snapshot()

    @pytest.mark.asyncio
    async def test_corrupt_cache_starts_empty(self):
        cache = FakeCache()
        cache.set("user-1", CanonicalStore.CACHE_KEY, '[{"not": "a message"}]')
        store = CanonicalStore("user-1", cache)

        assert await store.load() == 0
        assert len(store) == 0

    def test_missing_content(self):
        store = CanonicalStore("user-1")
        store._set([make_message("1", body=""), make_message("2")])

        assert [m.id for m in store.missing_content()] == ["1"]


class TestDeriveContacts:
    def test_own_addresses_are_skipped(self):
        messages = [make_message("1")]

        contacts = derive_contacts(messages, {"acct-a": ["ME@example.com"]})

        assert [c.address for c in contacts] == ["alice@example.com"]

    def test_contacts_are_per_account(self):
        messages = [make_message("1", "acct-a"), make_message("2", "acct-b")]

        contacts = derive_contacts(messages, {"acct-a": ["me@example.com"], "acct-b": ["me@example.com"]})

        assert {(c.account_id, c.address) for c in contacts} == {
            ("acct-a", "alice@example.com"),
            ("acct-b", "alice@example.com"),
        }

    def test_latest_message_wins_preview(self):
        messages = [
            make_message("1", minutes=1, subject="Old news"),
            make_message("2", minutes=10, subject="Fresh news"),
        ]

        contacts = derive_contacts(messages, {"acct-a": ["me@example.com"]})

        assert contacts[0].last_message == "Fresh news"
        assert contacts[0].unread_count == 2

    def test_recipient_contacts_do_not_count_unread(self):
        outgoing = make_message(
            "1",
            sender=Participant(address="me@example.com"),
            to=[Participant(name="Bob", address="bob@example.com")],
        )

        contacts = derive_contacts([outgoing], {"acct-a": ["me@example.com"]})

        assert contacts[0].address == "bob@example.com"
        assert contacts[0].unread_count == 0
