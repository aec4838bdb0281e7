"""Sync orchestrator - fans out to provider adapters and merges once per pass."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Literal, Sequence

from loguru import logger

from commsync.application.ports.account_repository import AccountRepository
from commsync.application.ports.provider_adapter import (
    FetchFilter,
    FetchRequest,
    OutgoingMessage,
    ProviderAdapter,
)
from commsync.application.sync.canonical_store import CanonicalStore
from commsync.application.sync.content_completion import ContentCompletionWorker
from commsync.domain.entities.account import Account
from commsync.domain.errors import AccountNotFound, ProviderConnectionError, error_kind
from commsync.domain.models import Message
from commsync.infrastructure.providers.registry import AdapterRegistry
from commsync.infrastructure.settings import Settings, get_settings

if TYPE_CHECKING:
    from commsync.application.usage.accountant import UsageAccountant


class SyncMode(str, Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"


@dataclass
class AccountSyncResult:
    account_id: str
    provider_type: str
    status: Literal["ok", "failed", "skipped"]
    fetched: int = 0
    error: str | None = None
    error_kind: str | None = None


@dataclass
class SyncSummary:
    mode: SyncMode
    started_at: datetime
    finished_at: datetime | None = None
    bulk: bool = False
    results: dict[str, AccountSyncResult] = field(default_factory=dict)
    merged_total: int = 0

    def _with_status(self, status: str) -> list[str]:
        return [r.account_id for r in self.results.values() if r.status == status]

    @property
    def ok(self) -> list[str]:
        return self._with_status("ok")

    @property
    def failed(self) -> list[str]:
        return self._with_status("failed")

    @property
    def skipped(self) -> list[str]:
        return self._with_status("skipped")


class SyncOrchestrator:
    """
    Runs sync passes for one user's linked accounts.

    A pass fetches every eligible account in parallel, isolates failures
    per account, merges all successful batches into the canonical store
    with a single write, then hands header-only messages to the content
    completion worker and asks the usage accountant to reconcile when the
    store grew. No account ever has two passes in flight.
    """

    def __init__(
        self,
        store: CanonicalStore,
        accounts: AccountRepository,
        registry: AdapterRegistry,
        completion: ContentCompletionWorker | None = None,
        accountant: UsageAccountant | None = None,
        settings: Settings | None = None,
        on_loading: Callable[[bool], None] | None = None,
    ):
        self.store = store
        self.accounts = accounts
        self.registry = registry
        self.completion = completion
        self.accountant = accountant
        self.settings = settings or get_settings()
        self.on_loading = on_loading
        self._in_flight: set[str] = set()
        self._foreground_passes = 0

    @property
    def is_loading(self) -> bool:
        return self._foreground_passes > 0

    def in_flight(self, account_id: str) -> bool:
        return account_id in self._in_flight

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def sync_pass(
        self,
        mode: SyncMode = SyncMode.BACKGROUND,
        bulk: bool = False,
        account_ids: Iterable[str] | None = None,
    ) -> SyncSummary:
        """Run one pass. Never raises; per-account outcomes are in the summary."""
        summary = SyncSummary(mode=mode, started_at=datetime.now(timezone.utc), bulk=bulk)
        if mode == SyncMode.FOREGROUND:
            self._set_loading(True)

        accounts: list[Account] = []
        try:
            accounts = await self._eligible_accounts(summary, account_ids)
            if accounts:
                await self._run_pass(summary, accounts, bulk)
        except Exception as e:
            logger.exception(f"Sync pass aborted: {e}")
        finally:
            for account in accounts:
                self._in_flight.discard(account.id)
            summary.finished_at = datetime.now(timezone.utc)
            if mode == SyncMode.FOREGROUND:
                self._set_loading(False)

        logger.info(
            f"Sync pass ({mode.value}{', bulk' if bulk else ''}) finished: "
            f"ok={len(summary.ok)}, failed={len(summary.failed)}, "
            f"skipped={len(summary.skipped)}, merged_total={summary.merged_total}"
        )
        return summary

    async def sync_account(self, account_id: str, mode: SyncMode = SyncMode.FOREGROUND) -> SyncSummary:
        """Manual 'sync now' for a single account."""
        return await self.sync_pass(mode=mode, account_ids=[account_id])

    async def bulk_sync(self, account_id: str) -> SyncSummary:
        """Initial full import for a freshly linked account."""
        return await self.sync_pass(mode=SyncMode.FOREGROUND, bulk=True, account_ids=[account_id])

    async def _eligible_accounts(
        self, summary: SyncSummary, account_ids: Iterable[str] | None
    ) -> list[Account]:
        linked = await asyncio.to_thread(self.accounts.list_linked, self.store.user_id)
        if account_ids is not None:
            wanted = set(account_ids)
            linked = [a for a in linked if a.id in wanted]

        eligible: list[Account] = []
        for account in linked:
            if account.provider_type not in self.registry:
                summary.results[account.id] = AccountSyncResult(
                    account_id=account.id,
                    provider_type=account.provider_type.value,
                    status="skipped",
                    error="no adapter registered",
                    error_kind="unsupported",
                )
                continue
            if account.id in self._in_flight:
                logger.debug(f"Account {account.id} already syncing, skipping")
                summary.results[account.id] = AccountSyncResult(
                    account_id=account.id,
                    provider_type=account.provider_type.value,
                    status="skipped",
                    error="pass already in flight",
                )
                continue
            self._in_flight.add(account.id)
            eligible.append(account)
        return eligible

    async def _run_pass(self, summary: SyncSummary, accounts: list[Account], bulk: bool) -> None:
        size_before = self.store.bytes_size()

        outcomes = await asyncio.gather(
            *(self._fetch_account(account, bulk) for account in accounts),
            return_exceptions=True,
        )

        incoming: list[Message] = []
        succeeded: list[Account] = []
        for account, outcome in zip(accounts, outcomes):
            result = AccountSyncResult(
                account_id=account.id,
                provider_type=account.provider_type.value,
                status="ok",
            )
            if isinstance(outcome, BaseException):
                result.status = "failed"
                result.error = str(outcome) or type(outcome).__name__
                result.error_kind = error_kind(outcome)
                logger.error(
                    f"Sync failed for {account.id} ({account.provider_type.value}): "
                    f"[{result.error_kind}] {result.error}"
                )
            else:
                result.fetched = len(outcome)
                incoming.extend(outcome)
                succeeded.append(account)
            summary.results[account.id] = result

        # One write per pass, after every fetch has settled
        if incoming:
            merged = await self.store.merge(incoming)
            summary.merged_total = len(merged)
            await self._persist()
        else:
            summary.merged_total = len(self.store)

        await self._record_last_sync(succeeded, summary.started_at)
        self._queue_completion(incoming)

        if self.store.bytes_size() > size_before:
            await self._reconcile_usage()

    async def _fetch_account(self, account: Account, bulk: bool) -> list[Message]:
        adapter = self.registry.get(account.provider_type)
        timeout = self.settings.fetch_timeout_for(account.provider_type.value)

        if bulk:
            return await self._drain(
                adapter,
                account,
                FetchFilter(),
                self.settings.bulk_page_size,
                self.settings.bulk_max_pages,
                timeout,
            )

        since = None
        if account.last_sync is not None:
            since = account.last_sync - timedelta(seconds=self.settings.sync_overlap_seconds)
        return await self._drain(
            adapter, account, FetchFilter(since=since), self.settings.page_size, 1, timeout
        )

    async def _drain(
        self,
        adapter: ProviderAdapter,
        account: Account,
        fetch_filter: FetchFilter,
        page_size: int,
        max_pages: int,
        timeout: float,
    ) -> list[Message]:
        messages: list[Message] = []
        cursor: str | None = None
        for page in range(1, max_pages + 1):
            request = FetchRequest(page=page, page_size=page_size, filter=fetch_filter, cursor=cursor)
            try:
                result = await asyncio.wait_for(adapter.fetch(account, request), timeout)
            except asyncio.TimeoutError:
                raise ProviderConnectionError(
                    f"fetch timed out after {timeout:.0f}s (page {page})"
                ) from None
            messages.extend(result.messages)
            if not result.has_more or not result.messages:
                break
            cursor = result.cursor
        logger.debug(f"Fetched {len(messages)} message(s) from {account.id}")
        return messages

    # ------------------------------------------------------------------
    # Post-merge steps
    # ------------------------------------------------------------------

    async def _persist(self) -> None:
        try:
            await self.store.persist()
        except Exception as e:
            logger.error(f"Failed to persist message cache: {e}")

    async def _record_last_sync(self, accounts: Sequence[Account], when: datetime) -> None:
        for account in accounts:
            try:
                await asyncio.to_thread(self.accounts.update_last_sync, account.id, when)
            except Exception as e:
                logger.error(f"Failed to record last sync for {account.id}: {e}")

    def _queue_completion(self, incoming: Sequence[Message]) -> None:
        if self.completion is None or not incoming:
            return
        keys = {m.key for m in incoming}
        missing = [m for m in self.store.missing_content() if m.key in keys]
        if missing:
            self.completion.submit(missing)

    async def _reconcile_usage(self) -> None:
        if self.accountant is None:
            return
        try:
            await self.accountant.reconcile_for_user(self.store.user_id)
        except Exception as e:
            logger.warning(f"Usage reconciliation failed for {self.store.user_id}: {e}")

    def _set_loading(self, starting: bool) -> None:
        self._foreground_passes += 1 if starting else -1
        if self.on_loading is not None:
            try:
                self.on_loading(self.is_loading)
            except Exception as e:
                logger.warning(f"Loading callback failed: {e}")

    # ------------------------------------------------------------------
    # Account lifecycle and outbound actions
    # ------------------------------------------------------------------

    async def _account(self, account_id: str) -> Account:
        account = await asyncio.to_thread(self.accounts.get, account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    async def link_account(self, account: Account) -> SyncSummary:
        """Persist a newly linked account and run its bulk import."""
        adapter = self.registry.get(account.provider_type)
        if not await adapter.test_connection(account):
            raise ProviderConnectionError(f"Connection test failed for {account.id}")

        account = replace(account, linked=True)
        await asyncio.to_thread(self.accounts.save, account)
        if account.own_addresses:
            self.store.set_own_addresses(account.id, account.own_addresses)
        logger.info(f"Linked {account.provider_type.value} account {account.id}")

        summary = await self.bulk_sync(account.id)
        await self._reconcile_usage()
        return summary

    async def unlink_account(self, account_id: str) -> None:
        """Exclude the account from future passes. Its messages stay in the store."""
        await self._account(account_id)
        await asyncio.to_thread(self.accounts.set_linked, account_id, False)
        logger.info(f"Unlinked account {account_id}")
        await self._reconcile_usage()

    async def send(self, account_id: str, message: OutgoingMessage) -> Message:
        account = await self._account(account_id)
        adapter = self.registry.get(account.provider_type)
        sent = await adapter.send(account, message)
        await self.store.merge([sent])
        await self._persist()
        logger.info(f"Sent message {sent.id} via {account_id}")
        return sent

    async def mark_read(self, account_id: str, ids: Sequence[str]) -> int:
        account = await self._account(account_id)
        adapter = self.registry.get(account.provider_type)
        await adapter.mark_read(account, ids)
        changed = await self.store.update(
            [(account_id, i) for i in ids], lambda m: m.model_copy(update={"read": True})
        )
        await self._persist()
        return changed

    async def delete(self, account_id: str, ids: Sequence[str]) -> int:
        account = await self._account(account_id)
        adapter = self.registry.get(account.provider_type)
        await adapter.delete(account, ids)
        removed = await self.store.remove([(account_id, i) for i in ids])
        await self._persist()
        return removed
