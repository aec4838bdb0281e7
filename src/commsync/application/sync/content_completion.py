"""Fills in bodies for messages that arrived header-only."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable

from loguru import logger

from commsync.application.ports.account_repository import AccountRepository
from commsync.application.sync.canonical_store import CanonicalStore
from commsync.application.sync.merge import MessageKey
from commsync.domain.errors import AccountNotFound, PartialContentError
from commsync.domain.models import Message
from commsync.infrastructure.providers.registry import AdapterRegistry


@dataclass
class CompletionReport:
    completed: int = 0
    failed: int = 0
    skipped: int = 0


class ContentCompletionWorker:
    """Completes message bodies in small concurrent batches.

    Each message gets exactly one attempt per discovery. Failures are
    logged and swallowed; a message that stays incomplete is not retried
    until it leaves the missing set and is discovered again.
    """

    def __init__(
        self,
        store: CanonicalStore,
        registry: AdapterRegistry,
        accounts: AccountRepository,
        batch_size: int = 5,
        timeout: float = 60.0,
    ):
        self.store = store
        self.registry = registry
        self.accounts = accounts
        self.batch_size = max(1, batch_size)
        self.timeout = timeout
        self._attempted: set[MessageKey] = set()
        self._tasks: set[asyncio.Task] = set()

    def submit(self, messages: Iterable[Message]) -> asyncio.Task | None:
        """Schedule completion in the background."""
        messages = list(messages)
        if not messages:
            return None
        task = asyncio.create_task(self.run(messages))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(self, messages: Iterable[Message]) -> CompletionReport:
        report = CompletionReport()
        self._forget_resolved()

        pending: list[Message] = []
        for message in messages:
            if not message.needs_content or message.key in self._attempted:
                report.skipped += 1
                continue
            self._attempted.add(message.key)
            pending.append(message)

        if not pending:
            return report

        logger.info(f"Completing content for {len(pending)} message(s)")

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start : start + self.batch_size]
            results = await asyncio.gather(
                *(self._complete(m) for m in batch), return_exceptions=True
            )

            completed: list[Message] = []
            for message, result in zip(batch, results):
                if isinstance(result, BaseException):
                    report.failed += 1
                    logger.warning(f"Content completion failed for {message.id}: {result}")
                    continue
                completed.append(result)

            if completed:
                # Messages deleted while their body was in flight are dropped
                applied = await self.store.fill_content(completed)
                report.completed += applied
                report.skipped += len(completed) - applied

        if report.completed:
            try:
                await self.store.persist()
            except Exception as e:
                logger.error(f"Failed to persist completed content: {e}")

        logger.info(
            f"Content completion done: completed={report.completed}, "
            f"failed={report.failed}, skipped={report.skipped}"
        )
        return report

    async def _complete(self, message: Message) -> Message:
        account = await asyncio.to_thread(self.accounts.get, message.account_id)
        if account is None:
            raise AccountNotFound(message.account_id)

        adapter = self.registry.get(account.provider_type)
        completed = await asyncio.wait_for(adapter.fetch_body(account, message), self.timeout)
        if completed.needs_content:
            raise PartialContentError(f"{message.id} still has no body")
        return completed

    def _forget_resolved(self) -> None:
        # Keys no longer missing content count as a fresh discovery next time
        still_missing = {m.key for m in self.store.missing_content()}
        self._attempted &= still_missing
