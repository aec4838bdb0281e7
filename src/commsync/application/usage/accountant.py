"""Usage accountant - recomputes organization usage and clamps it to plan ceilings."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from math import ceil
from typing import Callable, Iterable

from loguru import logger

from commsync.application.ports.account_repository import AccountRepository
from commsync.application.ports.cache_store import CacheStore
from commsync.application.ports.subscription_repository import SubscriptionRepository
from commsync.domain.entities.subscription import Subscription, has_active_access
from commsync.domain.errors import SubscriptionNotFound

BYTES_PER_MB = 1024 * 1024


def bytes_to_mb(size: int) -> int:
    return ceil(max(0, size) / BYTES_PER_MB)


def format_storage(mb: int | float) -> str:
    if mb < 1024:
        return f"{round(mb)}MB"
    return f"{round(mb / 1024, 1):g}GB"


def _percent(used: int, total: int) -> float:
    if total <= 0:
        return 100.0 if used else 0.0
    return round(min(100.0, used * 100.0 / total), 1)


@dataclass
class ReconcileResult:
    """What was written, plus the unclamped figures it was derived from."""

    subscription: Subscription
    computed_storage: int
    computed_connections: int
    computed_ai_credits: int
    over_limit: dict[str, bool] = field(default_factory=dict)

    @property
    def exceeded(self) -> bool:
        return any(self.over_limit.values())


@dataclass(frozen=True)
class UsageView:
    subscription_id: str
    plan_type: str
    status: str
    active: bool
    used_storage: int
    total_storage: int
    used_connections: int
    total_connections: int
    used_ai_credits: int
    total_ai_credits: int
    storage_percent: float
    connections_percent: float
    ai_credits_percent: float
    storage_display: str

    @classmethod
    def from_subscription(cls, sub: Subscription) -> UsageView:
        return cls(
            subscription_id=sub.id,
            plan_type=sub.plan_type,
            status=sub.status.value,
            active=has_active_access(sub),
            used_storage=sub.used_storage,
            total_storage=sub.total_storage,
            used_connections=sub.used_connections,
            total_connections=sub.total_connections,
            used_ai_credits=sub.used_ai_credits,
            total_ai_credits=sub.total_ai_credits,
            storage_percent=_percent(sub.used_storage, sub.total_storage),
            connections_percent=_percent(sub.used_connections, sub.total_connections),
            ai_credits_percent=_percent(sub.used_ai_credits, sub.total_ai_credits),
            storage_display=f"{format_storage(sub.used_storage)} / {format_storage(sub.total_storage)}",
        )


class UsageAccountant:
    """
    Keeps subscription counters in line with what the organization consumes.

    Storage is always recomputed with a single aggregate over the members'
    cache rows immediately before writing, so a stale in-memory figure never
    reaches the repository. Counters are clamped to their ceilings on write;
    overage is reported in the result and logged, never raised.
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        accounts: AccountRepository,
        cache: CacheStore,
        cache_ttl: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.subscriptions = subscriptions
        self.accounts = accounts
        self.cache = cache
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._views: dict[str, tuple[float, UsageView]] = {}

    def _lock(self, subscription_id: str) -> asyncio.Lock:
        lock = self._locks.get(subscription_id)
        if lock is None:
            lock = self._locks[subscription_id] = asyncio.Lock()
        return lock

    async def compute_storage(self, member_ids: Iterable[str]) -> int:
        """Total cache bytes across the given users (one aggregate query)."""
        members = sorted(set(member_ids))
        if not members:
            return 0
        return await asyncio.to_thread(self.cache.total_size, members)

    async def compute_connections(self, user_id: str) -> int:
        """The user's own seat plus every linked provider account."""
        linked = await asyncio.to_thread(self.accounts.count_linked, user_id)
        return 1 + linked

    async def _load(self, subscription_id: str) -> Subscription:
        sub = await asyncio.to_thread(self.subscriptions.get, subscription_id)
        if sub is None:
            raise SubscriptionNotFound(subscription_id)
        return sub

    async def reconcile(
        self,
        subscription_id: str,
        storage_delta: int = 0,
        connections_delta: int = 0,
        ai_credits_delta: int = 0,
        user_id: str | None = None,
    ) -> ReconcileResult:
        async with self._lock(subscription_id):
            sub = await self._load(subscription_id)
            members = await asyncio.to_thread(self.subscriptions.members, sub.organization_id)
            if not members and user_id:
                members = [user_id]

            storage_bytes = await self.compute_storage(members) + storage_delta
            storage = bytes_to_mb(storage_bytes)

            if members:
                connections = sum([await self.compute_connections(m) for m in members])
            else:
                connections = sub.used_connections
            connections += connections_delta

            ai_credits = sub.used_ai_credits + ai_credits_delta

            over_limit = {
                "storage": storage > sub.total_storage,
                "connections": connections > sub.total_connections,
                "ai_credits": ai_credits > sub.total_ai_credits,
            }

            updated = replace(
                sub,
                used_storage=storage,
                used_connections=connections,
                used_ai_credits=ai_credits,
                updated_at=datetime.now(timezone.utc),
            ).clamped()
            await asyncio.to_thread(self.subscriptions.save, updated)
            self._views.pop(subscription_id, None)

        for resource, over in over_limit.items():
            if over:
                logger.warning(
                    f"Subscription {subscription_id} over {resource} limit; "
                    f"stored value clamped to plan ceiling"
                )
        logger.debug(
            f"Reconciled {subscription_id}: storage={updated.used_storage}MB, "
            f"connections={updated.used_connections}, ai_credits={updated.used_ai_credits}"
        )
        return ReconcileResult(
            subscription=updated,
            computed_storage=storage,
            computed_connections=connections,
            computed_ai_credits=ai_credits,
            over_limit=over_limit,
        )

    async def reconcile_for_user(self, user_id: str, **deltas: int) -> ReconcileResult | None:
        sub = await asyncio.to_thread(self.subscriptions.get_for_user, user_id)
        if sub is None:
            logger.debug(f"No subscription for {user_id}, skipping reconciliation")
            return None
        return await self.reconcile(sub.id, user_id=user_id, **deltas)

    async def debit_ai_credits(self, subscription_id: str, amount: int) -> ReconcileResult:
        return await self.reconcile(subscription_id, ai_credits_delta=amount)

    async def usage_view(self, subscription_id: str) -> UsageView:
        """Display read, cached briefly. Writes always hit the repository."""
        now = self._clock()
        cached = self._views.get(subscription_id)
        if cached is not None and cached[0] > now:
            return cached[1]
        view = UsageView.from_subscription(await self._load(subscription_id))
        self._views[subscription_id] = (now + self.cache_ttl, view)
        return view
