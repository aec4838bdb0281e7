"""Per-account sync timers."""

from __future__ import annotations

import asyncio

from loguru import logger

from commsync.application.sync.orchestrator import SyncMode, SyncOrchestrator, SyncSummary
from commsync.domain.entities.account import Account


class SyncScheduler:
    """Owns one timer task per linked account.

    Each timer triggers a background pass for its account. A tick that
    fires while that account's pass is still running is dropped, not
    queued.
    """

    def __init__(self, orchestrator: SyncOrchestrator):
        self.orchestrator = orchestrator
        self.settings = orchestrator.settings
        self._timers: dict[str, asyncio.Task] = {}
        self.ticks_dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._timers)

    def interval_for(self, account: Account) -> float:
        return self.settings.interval_for(account.provider_type.value)

    async def start(self) -> int:
        accounts = await asyncio.to_thread(
            self.orchestrator.accounts.list_linked, self.orchestrator.store.user_id
        )
        for account in accounts:
            self.add_account(account)
        logger.info(f"Sync scheduler started with {len(accounts)} account timer(s)")
        return len(accounts)

    async def stop(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        logger.info("Sync scheduler stopped")

    def add_account(self, account: Account) -> None:
        if account.id in self._timers:
            return
        interval = self.interval_for(account)
        self._timers[account.id] = asyncio.create_task(
            self._run(account.id, interval), name=f"sync-timer-{account.id}"
        )
        logger.debug(f"Timer for {account.id} every {interval:.0f}s")

    def remove_account(self, account_id: str) -> None:
        task = self._timers.pop(account_id, None)
        if task is not None:
            task.cancel()

    async def tick(self, account_id: str) -> SyncSummary | None:
        if self.orchestrator.in_flight(account_id):
            self.ticks_dropped += 1
            logger.debug(f"Tick for {account_id} dropped, pass in flight")
            return None
        return await self.orchestrator.sync_pass(SyncMode.BACKGROUND, account_ids=[account_id])

    async def _run(self, account_id: str, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.tick(account_id)
            except Exception as e:
                logger.error(f"Scheduled sync for {account_id} failed: {e}")
