"""Billing events - idempotent subscription upserts keyed by the billing id."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field

from commsync.application.ports.subscription_repository import SubscriptionRepository
from commsync.domain.entities.subscription import (
    Organization,
    PlanLimits,
    Subscription,
    SubscriptionStatus,
    limits_for,
)


class LimitsOverride(BaseModel):
    max_users: int
    total_storage: int
    total_connections: int
    total_ai_credits: int


class BillingEvent(BaseModel):
    """Normalized subscription event from the billing processor."""

    type: Literal["upsert", "deleted"] = "upsert"
    billing_subscription_id: str
    organization_id: str | None = None
    organization_name: str = ""
    owner_user_id: str | None = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    plan_type: str = "lite"
    limits: LimitsOverride | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_ends_at: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class BillingEventReconciler:
    """Applies billing events. Replaying the same event leaves state unchanged."""

    def __init__(self, subscriptions: SubscriptionRepository):
        self.subscriptions = subscriptions

    async def apply(self, event: BillingEvent) -> Subscription | None:
        existing = await asyncio.to_thread(
            self.subscriptions.get_by_billing_id, event.billing_subscription_id
        )

        if event.type == "deleted":
            if existing is not None:
                await asyncio.to_thread(self.subscriptions.delete, existing.id)
                logger.info(f"Deleted subscription {existing.id} ({event.billing_subscription_id})")
            return None

        limits = (
            PlanLimits(**event.limits.model_dump()) if event.limits else limits_for(event.plan_type)
        )

        if existing is None:
            if not event.organization_id:
                raise ValueError("organization_id is required to create a subscription")
            base = Subscription(
                id=str(uuid.uuid4()),
                organization_id=event.organization_id,
                billing_subscription_id=event.billing_subscription_id,
                status=event.status,
            )
        else:
            base = existing

        candidate = replace(
            base.with_limits(limits),
            organization_id=event.organization_id or base.organization_id,
            status=event.status,
            plan_type=event.plan_type,
            current_period_start=event.current_period_start,
            current_period_end=event.current_period_end,
            trial_ends_at=event.trial_ends_at,
        ).clamped()

        await self._ensure_organization(candidate.organization_id, event)

        if existing is not None and replace(candidate, updated_at=existing.updated_at) == existing:
            logger.debug(f"Billing event for {event.billing_subscription_id} already applied")
            return existing

        saved = replace(candidate, updated_at=datetime.now(timezone.utc))
        await asyncio.to_thread(self.subscriptions.save, saved)
        logger.info(
            f"Subscription {saved.id} now {saved.status.value} on plan {saved.plan_type} "
            f"(storage {saved.total_storage}MB, connections {saved.total_connections}, "
            f"ai credits {saved.total_ai_credits})"
        )
        return saved

    async def _ensure_organization(self, organization_id: str, event: BillingEvent) -> None:
        """Record the organization and seat its owner. Safe to repeat."""
        org = await asyncio.to_thread(self.subscriptions.get_organization, organization_id)
        if org is None or (event.owner_user_id and org.owner_id != event.owner_user_id):
            org = Organization(
                id=organization_id,
                name=event.organization_name or (org.name if org else ""),
                owner_id=event.owner_user_id or (org.owner_id if org else None),
                created_at=org.created_at if org else None,
            )
            await asyncio.to_thread(self.subscriptions.save_organization, org)
            logger.info(f"Organization {organization_id} owned by {org.owner_id}")
        if org.owner_id:
            await asyncio.to_thread(self.subscriptions.add_member, organization_id, org.owner_id)
