from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from math import ceil
from typing import Optional


class SubscriptionStatus(str, Enum):
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"


ACTIVE_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.UNPAID,
    }
)


@dataclass(frozen=True)
class PlanLimits:
    max_users: int
    total_storage: int  # MB
    total_connections: int
    total_ai_credits: int


PLANS: dict[str, PlanLimits] = {
    "lite": PlanLimits(max_users=1, total_storage=100, total_connections=6, total_ai_credits=25),
    "standard": PlanLimits(max_users=3, total_storage=1000, total_connections=30, total_ai_credits=300),
    "business": PlanLimits(max_users=8, total_storage=5120, total_connections=100, total_ai_credits=1000),
}

DEFAULT_PLAN = "lite"


def limits_for(plan_type: str | None) -> PlanLimits:
    return PLANS.get((plan_type or "").lower(), PLANS[DEFAULT_PLAN])


@dataclass(frozen=True)
class Subscription:
    id: str
    organization_id: str
    billing_subscription_id: str
    status: SubscriptionStatus
    plan_type: str = DEFAULT_PLAN
    max_users: int = 1
    total_storage: int = 100
    total_connections: int = 6
    total_ai_credits: int = 25
    used_storage: int = 0
    used_connections: int = 0
    used_ai_credits: int = 0
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def clamped(self) -> Subscription:
        """Counters never exceed their ceilings."""
        return replace(
            self,
            used_storage=max(0, min(self.used_storage, self.total_storage)),
            used_connections=max(0, min(self.used_connections, self.total_connections)),
            used_ai_credits=max(0, min(self.used_ai_credits, self.total_ai_credits)),
        )

    def with_limits(self, limits: PlanLimits) -> Subscription:
        return replace(
            self,
            max_users=limits.max_users,
            total_storage=limits.total_storage,
            total_connections=limits.total_connections,
            total_ai_credits=limits.total_ai_credits,
        )

    @property
    def remaining_ai_credits(self) -> int:
        return max(0, self.total_ai_credits - self.used_ai_credits)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_in_trial(subscription: Subscription, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    return (
        subscription.status == SubscriptionStatus.TRIALING
        and subscription.trial_ends_at is not None
        and _aware(subscription.trial_ends_at) > now
    )


def has_active_access(subscription: Subscription | None, now: datetime | None = None) -> bool:
    """Active billing status, a running trial, or a still-valid paid period."""
    if subscription is None:
        return False
    now = now or datetime.now(timezone.utc)
    if subscription.status in ACTIVE_STATUSES:
        return True
    if is_in_trial(subscription, now):
        return True
    # Webhooks can lag behind; honour the period that was paid for
    if (
        subscription.status != SubscriptionStatus.CANCELED
        and subscription.current_period_end is not None
        and _aware(subscription.current_period_end) > now
    ):
        return True
    return False


def trial_days_remaining(subscription: Subscription, now: datetime | None = None) -> int:
    if subscription.trial_ends_at is None:
        return 0
    now = now or datetime.now(timezone.utc)
    seconds = (_aware(subscription.trial_ends_at) - now).total_seconds()
    return max(0, ceil(seconds / 86400))


@dataclass(frozen=True)
class Organization:
    """Billing owner of a subscription. Its id doubles as the join key."""

    id: str
    name: str = ""
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None
