"""Multi-source synchronization: merge, canonical store, orchestration."""

from commsync.application.sync.canonical_store import CanonicalStore
from commsync.application.sync.content_completion import CompletionReport, ContentCompletionWorker
from commsync.application.sync.contacts import derive_contacts
from commsync.application.sync.merge import merge, sort_for_display
from commsync.application.sync.orchestrator import (
    AccountSyncResult,
    SyncMode,
    SyncOrchestrator,
    SyncSummary,
)
from commsync.application.sync.scheduler import SyncScheduler

__all__ = [
    "CanonicalStore",
    "CompletionReport",
    "ContentCompletionWorker",
    "derive_contacts",
    "merge",
    "sort_for_display",
    "AccountSyncResult",
    "SyncMode",
    "SyncOrchestrator",
    "SyncSummary",
    "SyncScheduler",
]
