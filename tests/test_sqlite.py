"""Tests for the SQLite repositories, SMS inbox and local message state."""

from datetime import datetime, timezone

import pytest

from commsync.domain.entities.subscription import Organization, Subscription, SubscriptionStatus
from commsync.domain.models import ProviderType
from commsync.infrastructure.sqlite import (
    LocalMessageState,
    SmsInbox,
    SQLiteAccountRepository,
    SQLiteCacheStore,
    SQLiteClient,
    SQLiteSubscriptionRepository,
)

from conftest import make_account, make_message


@pytest.fixture
def client(tmp_path):
    return SQLiteClient(tmp_path / "commsync.db")


class TestCacheStore:
    def test_set_get_overwrite(self, client):
        cache = SQLiteCacheStore(client)

        cache.set("u1", "messages", "[]")
        cache.set("u1", "messages", "[1]")

        assert cache.get("u1", "messages") == "[1]"
        assert cache.get("u2", "messages") is None

    def test_total_size_counts_bytes_for_members_only(self, client):
        cache = SQLiteCacheStore(client)
        cache.set("u1", "messages", "abcd")
        cache.set("u1", "prefs", "é")
        cache.set("u2", "messages", "xyz")
        cache.set("u3", "messages", "ignored")

        assert cache.total_size(["u1", "u2"]) == 4 + 2 + 3
        assert cache.total_size([]) == 0

    def test_delete(self, client):
        cache = SQLiteCacheStore(client)
        cache.set("u1", "messages", "x")

        cache.delete("u1", "messages")

        assert cache.get("u1", "messages") is None


class TestAccountRepository:
    def test_save_and_list_linked(self, client):
        repo = SQLiteAccountRepository(client)
        repo.save(make_account("a1", own_addresses=("me@example.com",)))
        repo.save(make_account("a2", ProviderType.SMS_B, linked=False))
        repo.save(make_account("a3", user_id="other"))

        linked = repo.list_linked("user-1")

        assert [a.id for a in linked] == ["a1"]
        assert linked[0].own_addresses == ("me@example.com",)
        assert repo.count_linked("user-1") == 1
        assert len(repo.list_linked()) == 2

    def test_last_sync_and_unlink(self, client):
        repo = SQLiteAccountRepository(client)
        repo.save(make_account("a1"))
        when = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)

        repo.update_last_sync("a1", when)
        repo.set_linked("a1", False)

        account = repo.get("a1")
        assert account.last_sync == when
        assert account.linked is False


class TestSubscriptionRepository:
    def test_round_trip_and_member_lookup(self, client):
        repo = SQLiteSubscriptionRepository(client)
        sub = Subscription(
            id="sub-1",
            organization_id="org-1",
            billing_subscription_id="bill-1",
            status=SubscriptionStatus.TRIALING,
            trial_ends_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
            used_storage=12,
        )
        repo.save(sub)
        repo.add_member("org-1", "u2")
        repo.add_member("org-1", "u1")
        repo.add_member("org-1", "u1")

        assert repo.get("sub-1") == sub
        assert repo.get_by_billing_id("bill-1") == sub
        assert repo.get_for_user("u1") == sub
        assert repo.get_for_user("stranger") is None
        assert repo.members("org-1") == ["u1", "u2"]

    def test_organization_and_member_removal(self, client):
        repo = SQLiteSubscriptionRepository(client)
        repo.save_organization(Organization(id="org-1", name="Acme", owner_id="u1"))
        repo.save_organization(Organization(id="org-1", name="Acme Inc", owner_id="u1"))
        repo.add_member("org-1", "u1")
        repo.add_member("org-1", "u2")

        assert repo.get_organization("org-1").name == "Acme Inc"
        assert repo.get_organization("org-1").created_at is not None
        assert repo.get_organization("org-2") is None
        assert repo.remove_member("org-1", "u2") is True
        assert repo.remove_member("org-1", "u2") is False
        assert repo.members("org-1") == ["u1"]

    def test_delete(self, client):
        repo = SQLiteSubscriptionRepository(client)
        repo.save(
            Subscription(
                id="sub-1",
                organization_id="org-1",
                billing_subscription_id="bill-1",
                status=SubscriptionStatus.ACTIVE,
            )
        )

        repo.delete("sub-1")

        assert repo.get("sub-1") is None


class TestSmsInbox:
    def test_redelivered_webhook_is_ignored(self, client):
        inbox = SmsInbox(client)
        for _ in range(2):
            inbox.add("a1", "bulkvs", "inbound", "+15550001", "+15550002", "hi", message_id="m1")

        records, total = inbox.page("a1", 0, 10)

        assert total == 1
        assert records[0].text == "hi"

    def test_paging_newest_first(self, client):
        inbox = SmsInbox(client)
        for i in range(5):
            inbox.add(
                "a1", "bulkvs", "inbound", "+1", "+2", f"msg {i}",
                message_id=f"m{i}", ts=f"2024-05-01T12:0{i}:00+00:00",
            )

        first, total = inbox.page("a1", 0, 2)
        second, _ = inbox.page("a1", 2, 2)

        assert total == 5
        assert [r.id for r in first] == ["m4", "m3"]
        assert [r.id for r in second] == ["m2", "m1"]

    def test_mark_read_and_delete(self, client):
        inbox = SmsInbox(client)
        inbox.add("a1", "bulkvs", "inbound", "+1", "+2", "one", message_id="m1")
        inbox.add("a1", "bulkvs", "inbound", "+1", "+2", "two", message_id="m2")

        assert inbox.mark_read("a1", ["m1"]) == 1
        assert inbox.delete("a1", ["m2"]) == 1
        assert inbox.mark_read("a1", []) == 0

        records, total = inbox.page("a1", 0, 10)
        assert total == 1
        assert records[0].read is True

    def test_timestamps_normalized_for_since_filter(self, client):
        inbox = SmsInbox(client)
        inbox.add("a1", "bulkvs", "inbound", "+1", "+2", "spaced", message_id="m1", ts="2024-05-01 12:05:00")
        inbox.add("a1", "bulkvs", "inbound", "+1", "+2", "offset", message_id="m2", ts="2024-05-01T08:00:00-04:00")

        both, _ = inbox.page("a1", 0, 10, since="2024-05-01T11:59:00+00:00")
        later, _ = inbox.page("a1", 0, 10, since="2024-05-01T08:01:00-04:00")

        assert [r.id for r in both] == ["m1", "m2"]
        assert both[0].ts == "2024-05-01T12:05:00+00:00"
        assert both[1].ts == "2024-05-01T12:00:00+00:00"
        assert [r.id for r in later] == ["m1"]


class TestLocalMessageState:
    def test_overlay_hides_tombstones_and_marks_reads(self, client):
        state = LocalMessageState(client)
        messages = [make_message(i, account_id="acct-1") for i in ("m1", "m2", "m3")]

        state.acknowledge("acct-1", ["m1", "m1"])
        state.tombstone("acct-1", ["m2"])
        # Same ids on another account are untouched
        state.tombstone("acct-2", ["m3"])

        overlaid = state.overlay("acct-1", messages)

        assert [(m.id, m.read) for m in overlaid] == [("m1", True), ("m3", False)]

    def test_read_then_delete_keeps_both_flags(self, client):
        state = LocalMessageState(client)

        state.acknowledge("acct-1", ["m1"])
        state.tombstone("acct-1", ["m1"])

        assert state.lookup("acct-1", ["m1", "m9"]) == ({"m1"}, {"m1"})
        assert state.lookup("acct-1", []) == (set(), set())
