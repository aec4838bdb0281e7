"""Tests for sync passes, account isolation and re-entrancy."""

import asyncio
from datetime import datetime, timezone

import pytest

from commsync.application.ports.provider_adapter import OutgoingMessage
from commsync.application.sync import (
    CanonicalStore,
    ContentCompletionWorker,
    SyncMode,
    SyncOrchestrator,
    SyncScheduler,
)
from commsync.domain.errors import AccountNotFound, AuthError, ProviderConnectionError
from commsync.domain.models import ProviderType
from commsync.infrastructure.providers.registry import AdapterRegistry

from conftest import FakeAccounts, FakeAdapter, FakeCache, make_account, make_message


def build(settings, accounts, adapters, with_completion=False):
    store = CanonicalStore("user-1", FakeCache())
    repo = FakeAccounts(accounts)
    registry = AdapterRegistry({a.provider_type: a for a in adapters})
    completion = ContentCompletionWorker(store, registry, repo) if with_completion else None
    orchestrator = SyncOrchestrator(store, repo, registry, completion=completion, settings=settings)
    return orchestrator, store, repo


class TestSyncPass:
    @pytest.mark.asyncio
    async def test_bulk_result_independent_of_page_size(self, settings):
        messages = [make_message(str(i), minutes=i) for i in range(25)]

        small, small_store, _ = build(
            settings, [make_account("acct-a")], [FakeAdapter(messages)]
        )
        await small.sync_pass(SyncMode.FOREGROUND, bulk=True)

        settings.bulk_page_size = 1000
        large, large_store, _ = build(
            settings, [make_account("acct-a")], [FakeAdapter(messages)]
        )
        await large.sync_pass(SyncMode.FOREGROUND, bulk=True)

        assert len(small_store) == 25
        assert small_store.snapshot() == large_store.snapshot()

    @pytest.mark.asyncio
    async def test_failing_account_does_not_block_others(self, settings):
        a = FakeAdapter([make_message("1", "acct-a")], ProviderType.IMAP)
        b = FakeAdapter(provider_type=ProviderType.GMAIL, error=ProviderConnectionError("boom"))
        c = FakeAdapter(
            [make_message("3", "acct-c", provider_type=ProviderType.DISCORD)], ProviderType.DISCORD
        )
        orchestrator, store, repo = build(
            settings,
            [
                make_account("acct-a"),
                make_account("acct-b", ProviderType.GMAIL),
                make_account("acct-c", ProviderType.DISCORD),
            ],
            [a, b, c],
        )

        summary = await orchestrator.sync_pass()

        assert sorted(summary.ok) == ["acct-a", "acct-c"]
        assert summary.failed == ["acct-b"]
        assert summary.results["acct-b"].error_kind == "connection"
        assert {m.account_id for m in store.snapshot()} == {"acct-a", "acct-c"}
        assert set(repo.last_syncs) == {"acct-a", "acct-c"}

    @pytest.mark.asyncio
    async def test_auth_failure_is_classified(self, settings):
        adapter = FakeAdapter(error=AuthError("token revoked"))
        orchestrator, _, _ = build(settings, [make_account("acct-a")], [adapter])

        summary = await orchestrator.sync_pass()

        assert summary.results["acct-a"].error_kind == "auth"

    @pytest.mark.asyncio
    async def test_fetch_timeout_is_a_connection_failure(self, settings):
        settings.fetch_timeout = 0.05
        adapter = FakeAdapter([make_message("1")], delay=1.0)
        orchestrator, store, _ = build(settings, [make_account("acct-a")], [adapter])

        summary = await orchestrator.sync_pass()

        assert summary.failed == ["acct-a"]
        assert summary.results["acct-a"].error_kind == "connection"
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_read_flag_change_lands_on_next_pass(self, settings):
        now = datetime.now(timezone.utc)
        adapter = FakeAdapter([make_message("1", date=now, read=False)])
        orchestrator, store, _ = build(settings, [make_account("acct-a")], [adapter])

        await orchestrator.sync_pass()
        assert store.get("acct-a", "1").read is False

        adapter.messages = [make_message("1", date=now, read=True)]
        await orchestrator.sync_pass()

        assert store.get("acct-a", "1").read is True
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_steady_pass_uses_overlap_window(self, settings):
        adapter = FakeAdapter([make_message("1")])
        last = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        orchestrator, _, _ = build(settings, [make_account("acct-a", last_sync=last)], [adapter])

        await orchestrator.sync_pass()

        request = adapter.fetch_calls[0]
        assert (last - request.filter.since).total_seconds() == 300
        assert request.page_size == 50

    @pytest.mark.asyncio
    async def test_account_without_adapter_is_skipped(self, settings):
        orchestrator, _, _ = build(
            settings,
            [make_account("acct-a"), make_account("acct-w", ProviderType.WHATSAPP)],
            [FakeAdapter([make_message("1")])],
        )

        summary = await orchestrator.sync_pass()

        assert summary.skipped == ["acct-w"]
        assert summary.ok == ["acct-a"]

    @pytest.mark.asyncio
    async def test_second_pass_for_busy_account_is_skipped(self, settings):
        adapter = FakeAdapter([make_message("1")], delay=0.2)
        orchestrator, _, _ = build(settings, [make_account("acct-a")], [adapter])

        first = asyncio.create_task(orchestrator.sync_pass())
        await asyncio.sleep(0.05)
        assert orchestrator.in_flight("acct-a")

        second = await orchestrator.sync_pass()
        await first

        assert second.skipped == ["acct-a"]
        assert len(adapter.fetch_calls) == 1
        assert not orchestrator.in_flight("acct-a")


class TestScheduler:
    @pytest.mark.asyncio
    async def test_tick_during_pass_is_dropped(self, settings):
        adapter = FakeAdapter([make_message("1")], delay=0.2)
        orchestrator, _, _ = build(settings, [make_account("acct-a")], [adapter])
        scheduler = SyncScheduler(orchestrator)

        running = asyncio.create_task(scheduler.tick("acct-a"))
        await asyncio.sleep(0.05)
        dropped = await scheduler.tick("acct-a")
        summary = await running

        assert dropped is None
        assert scheduler.ticks_dropped == 1
        assert summary.ok == ["acct-a"]

    @pytest.mark.asyncio
    async def test_start_and_stop_timers(self, settings):
        orchestrator, _, _ = build(
            settings,
            [make_account("acct-a"), make_account("acct-b")],
            [FakeAdapter()],
        )
        scheduler = SyncScheduler(orchestrator)

        assert await scheduler.start() == 2
        assert scheduler.running
        await scheduler.stop()
        assert not scheduler.running


class TestContentCompletion:
    @pytest.mark.asyncio
    async def test_header_only_message_completed_once(self, settings):
        adapter = FakeAdapter([make_message("1", body="")], bodies={"1": "the full text"})
        orchestrator, store, _ = build(
            settings, [make_account("acct-a")], [adapter], with_completion=True
        )

        await orchestrator.sync_pass()
        await orchestrator.completion.drain()
        await orchestrator.sync_pass()
        await orchestrator.completion.drain()

        assert adapter.body_calls == ["1"]
        assert store.get("acct-a", "1").body == "the full text"

    @pytest.mark.asyncio
    async def test_failed_completion_is_not_retried(self, settings):
        adapter = FakeAdapter([make_message("1", body="")])
        orchestrator, store, _ = build(
            settings, [make_account("acct-a")], [adapter], with_completion=True
        )

        await orchestrator.sync_pass()
        await orchestrator.completion.drain()
        await orchestrator.sync_pass()
        await orchestrator.completion.drain()

        assert adapter.body_calls == ["1"]
        assert store.get("acct-a", "1").needs_content

    @pytest.mark.asyncio
    async def test_completion_keeps_newer_read_state(self, settings):
        adapter = FakeAdapter([make_message("1", body="")], bodies={"1": "full text"})
        orchestrator, store, _ = build(settings, [make_account("acct-a")], [adapter])
        await orchestrator.sync_pass()
        discovered = store.get("acct-a", "1")
        await orchestrator.mark_read("acct-a", ["1"])
        worker = ContentCompletionWorker(store, orchestrator.registry, orchestrator.accounts)

        report = await worker.run([discovered])

        completed = store.get("acct-a", "1")
        assert report.completed == 1
        assert completed.body == "full text"
        assert completed.read is True

    @pytest.mark.asyncio
    async def test_completion_does_not_restore_deleted_message(self, settings):
        adapter = FakeAdapter([make_message("1", body="")], bodies={"1": "full text"})
        orchestrator, store, _ = build(settings, [make_account("acct-a")], [adapter])
        await orchestrator.sync_pass()
        discovered = store.get("acct-a", "1")
        await orchestrator.delete("acct-a", ["1"])
        worker = ContentCompletionWorker(store, orchestrator.registry, orchestrator.accounts)

        report = await worker.run([discovered])

        assert report.skipped == 1
        assert store.get("acct-a", "1") is None


class TestAccountActions:
    @pytest.mark.asyncio
    async def test_send_then_provider_copy_replaces_placeholder(self, settings):
        adapter = FakeAdapter()
        orchestrator, store, _ = build(settings, [make_account("acct-a")], [adapter])

        sent = await orchestrator.send("acct-a", OutgoingMessage(to=["bob@example.com"], body="hi"))
        assert store.get("acct-a", sent.id).placeholder

        adapter.messages = [make_message("real-1", body="hi", provider_ref=sent.provider_ref)]
        await orchestrator.sync_pass()

        assert [m.id for m in store.snapshot()] == ["real-1"]

    @pytest.mark.asyncio
    async def test_mark_read_and_delete(self, settings):
        adapter = FakeAdapter([make_message("1"), make_message("2")])
        orchestrator, store, _ = build(settings, [make_account("acct-a")], [adapter])
        await orchestrator.sync_pass()

        assert await orchestrator.mark_read("acct-a", ["1"]) == 1
        assert await orchestrator.delete("acct-a", ["2"]) == 1

        assert adapter.read_ids == ["1"]
        assert adapter.deleted_ids == ["2"]
        assert store.get("acct-a", "1").read is True
        assert store.get("acct-a", "2") is None

    @pytest.mark.asyncio
    async def test_unknown_account_raises(self, settings):
        orchestrator, _, _ = build(settings, [], [FakeAdapter()])

        with pytest.raises(AccountNotFound):
            await orchestrator.mark_read("nope", ["1"])

    @pytest.mark.asyncio
    async def test_link_runs_bulk_import(self, settings):
        adapter = FakeAdapter([make_message("1", "acct-new")])
        orchestrator, store, repo = build(settings, [], [adapter])

        summary = await orchestrator.link_account(
            make_account("acct-new", own_addresses=("me@example.com",))
        )

        assert summary.bulk is True
        assert summary.ok == ["acct-new"]
        assert repo.get("acct-new").linked
        assert [c.address for c in store.contacts()] == ["alice@example.com"]

    @pytest.mark.asyncio
    async def test_link_rejected_when_connection_test_fails(self, settings):
        adapter = FakeAdapter()
        adapter.connection_ok = False
        orchestrator, _, repo = build(settings, [], [adapter])

        with pytest.raises(ProviderConnectionError):
            await orchestrator.link_account(make_account("acct-new"))
        assert repo.get("acct-new") is None

    @pytest.mark.asyncio
    async def test_unlinked_account_excluded_but_messages_kept(self, settings):
        adapter = FakeAdapter([make_message("1")])
        orchestrator, store, _ = build(settings, [make_account("acct-a")], [adapter])
        await orchestrator.sync_pass()

        await orchestrator.unlink_account("acct-a")
        summary = await orchestrator.sync_pass()

        assert summary.results == {}
        assert len(store) == 1
