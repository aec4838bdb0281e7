"""One-shot sync pass over linked accounts."""

from __future__ import annotations

import argparse
import asyncio

from commsync.application.sync import SyncMode, SyncSummary
from commsync.cli.worker import configure_logging
from commsync.infrastructure import get_settings
from commsync.infrastructure.container import build_engine


async def run_once(account_ids: list[str] | None, bulk: bool) -> SyncSummary:
    engine = build_engine()
    await engine.start(with_scheduler=False)
    try:
        return await engine.orchestrator.sync_pass(
            SyncMode.FOREGROUND, bulk=bulk, account_ids=account_ids
        )
    finally:
        await engine.stop()


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a single sync pass")
    parser.add_argument("--account", action="append", default=None, help="Limit to this account id (repeatable)")
    parser.add_argument("--bulk", action="store_true", help="Full import with bulk page sizes")
    args = parser.parse_args()

    configure_logging(get_settings().log_level)
    summary = asyncio.run(run_once(args.account, args.bulk))

    print(f"Synced {len(summary.ok)} account(s), {len(summary.failed)} failed, {len(summary.skipped)} skipped")
    for result in summary.results.values():
        line = f"  {result.account_id} [{result.provider_type}]: {result.status}, fetched={result.fetched}"
        if result.error:
            line += f" ({result.error_kind}: {result.error})"
        print(line)
    print(f"Canonical store now holds {summary.merged_total} message(s)")
    return 1 if summary.failed and not summary.ok else 0


if __name__ == "__main__":
    raise SystemExit(main())
