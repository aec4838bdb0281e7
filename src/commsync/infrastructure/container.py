"""Wires the sync engine together from settings."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from commsync.application.ports.ai_generator import AiGenerator
from commsync.application.sync import (
    CanonicalStore,
    ContentCompletionWorker,
    SyncOrchestrator,
    SyncScheduler,
)
from commsync.application.usage import (
    AiFeatureService,
    BillingEventReconciler,
    OrganizationService,
    UsageAccountant,
)
from commsync.infrastructure.ai import get_ai_generator
from commsync.infrastructure.providers import AdapterRegistry, build_registry
from commsync.infrastructure.settings import Settings, get_settings
from commsync.infrastructure.sqlite import (
    LocalMessageState,
    SmsInbox,
    SQLiteAccountRepository,
    SQLiteCacheStore,
    SQLiteClient,
    SQLiteSubscriptionRepository,
)
from commsync.infrastructure.vault import FernetCredentialVault, get_credential_vault


@dataclass
class SyncEngine:
    settings: Settings
    sqlite: SQLiteClient
    vault: FernetCredentialVault
    accounts: SQLiteAccountRepository
    subscriptions: SQLiteSubscriptionRepository
    cache: SQLiteCacheStore
    inbox: SmsInbox
    message_state: LocalMessageState
    registry: AdapterRegistry
    store: CanonicalStore
    completion: ContentCompletionWorker
    accountant: UsageAccountant
    orchestrator: SyncOrchestrator
    scheduler: SyncScheduler
    billing: BillingEventReconciler
    ai: AiFeatureService
    organizations: OrganizationService

    async def start(self, with_scheduler: bool = True) -> None:
        for account in self.accounts.list_linked(self.settings.user_id):
            if account.own_addresses:
                self.store.set_own_addresses(account.id, account.own_addresses)
        await self.store.load()
        if with_scheduler:
            await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.completion.drain()
        await self.store.persist()


def build_engine(
    settings: Settings | None = None,
    vault: FernetCredentialVault | None = None,
    generator: AiGenerator | None = None,
) -> SyncEngine:
    settings = settings or get_settings()
    sqlite = SQLiteClient(settings.sqlite_path)
    vault = vault or get_credential_vault()
    accounts = SQLiteAccountRepository(sqlite)
    subscriptions = SQLiteSubscriptionRepository(sqlite)
    cache = SQLiteCacheStore(sqlite)
    inbox = SmsInbox(sqlite)
    message_state = LocalMessageState(sqlite)
    registry = build_registry(settings, vault, inbox, message_state)

    store = CanonicalStore(settings.user_id, cache)
    completion = ContentCompletionWorker(
        store,
        registry,
        accounts,
        batch_size=settings.content_batch_size,
        timeout=settings.fetch_timeout,
    )
    accountant = UsageAccountant(subscriptions, accounts, cache, cache_ttl=settings.usage_cache_ttl)
    orchestrator = SyncOrchestrator(
        store,
        accounts,
        registry,
        completion=completion,
        accountant=accountant,
        settings=settings,
    )

    logger.info(f"Sync engine built for user {settings.user_id} ({len(list(registry))} provider families)")
    return SyncEngine(
        settings=settings,
        sqlite=sqlite,
        vault=vault,
        accounts=accounts,
        subscriptions=subscriptions,
        cache=cache,
        inbox=inbox,
        message_state=message_state,
        registry=registry,
        store=store,
        completion=completion,
        accountant=accountant,
        orchestrator=orchestrator,
        scheduler=SyncScheduler(orchestrator),
        billing=BillingEventReconciler(subscriptions),
        ai=AiFeatureService(generator or get_ai_generator(), subscriptions, accountant),
        organizations=OrganizationService(subscriptions, accountant),
    )


# Singleton instance
_engine: SyncEngine | None = None


def get_engine() -> SyncEngine:
    """Get or create sync engine singleton."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine
