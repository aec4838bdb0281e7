"""Sync worker - runs the scheduler for every linked account until signalled."""

from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from commsync.infrastructure import get_settings
from commsync.infrastructure.container import SyncEngine, build_engine


@dataclass
class WorkerStats:
    """Track worker statistics."""

    started_at: datetime = field(default_factory=datetime.now)
    accounts: int = 0
    ticks_dropped: int = 0
    messages: int = 0


class SyncWorker:
    """
    Long-running sync worker.

    Loads the canonical store, runs an initial foreground pass and then
    leaves per-account timers to the scheduler until SIGTERM/SIGINT.
    """

    def __init__(self, engine: SyncEngine, stats_interval: float = 300.0):
        self.engine = engine
        self.stats_interval = stats_interval
        self.stats = WorkerStats()
        self._stop = asyncio.Event()

    def _handle_shutdown(self, signum: int) -> None:
        """Handle graceful shutdown."""
        logger.info(f"Received signal {signum}, shutting down...")
        self._stop.set()

    def _log_stats(self) -> None:
        self.stats.ticks_dropped = self.engine.scheduler.ticks_dropped
        self.stats.messages = len(self.engine.store)
        logger.info(
            f"Worker stats: "
            f"accounts={self.stats.accounts}, "
            f"messages={self.stats.messages}, "
            f"ticks_dropped={self.stats.ticks_dropped}"
        )

    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown, sig)

        try:
            await self.engine.start(with_scheduler=False)
        except Exception as e:
            logger.error(f"Failed to initialize sync engine: {e}")
            return 1

        summary = await self.engine.orchestrator.sync_pass()
        logger.info(f"Initial pass: ok={len(summary.ok)}, failed={len(summary.failed)}")

        self.stats.accounts = await self.engine.scheduler.start()
        logger.info(f"Scheduler running for {self.stats.accounts} account(s)")

        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.stats_interval)
            except asyncio.TimeoutError:
                self._log_stats()

        await self.engine.stop()
        logger.info("Worker shutdown complete")
        self._log_stats()
        return 0


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
    )


def main() -> int:
    """Entry point for the sync worker."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("=" * 60)
    logger.info(f"{settings.app_name} Sync Worker")
    logger.info("=" * 60)

    worker = SyncWorker(build_engine(settings))
    return asyncio.run(worker.run())


if __name__ == "__main__":
    raise SystemExit(main())
