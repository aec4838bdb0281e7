"""Organization membership - seats are bounded by the plan's max_users."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from commsync.application.ports.subscription_repository import SubscriptionRepository
from commsync.application.usage.accountant import UsageAccountant
from commsync.domain.entities.subscription import Organization, Subscription, has_active_access
from commsync.domain.errors import MembershipRejected, OrganizationNotFound, PermissionDenied


@dataclass(frozen=True)
class OrganizationView:
    organization: Organization
    members: list[str]
    subscription: Optional[Subscription]

    def is_admin(self, user_id: str) -> bool:
        return self.organization.owner_id == user_id


@dataclass(frozen=True)
class JoinResult:
    organization_id: str
    joined: bool
    members: int


class OrganizationService:
    """Join and leave organizations; usage is recounted after every change."""

    def __init__(self, subscriptions: SubscriptionRepository, accountant: UsageAccountant):
        self.subscriptions = subscriptions
        self.accountant = accountant

    async def get(self, organization_id: str) -> OrganizationView:
        org = await asyncio.to_thread(self.subscriptions.get_organization, organization_id)
        if org is None:
            raise OrganizationNotFound(organization_id)
        members = await asyncio.to_thread(self.subscriptions.members, organization_id)
        sub = await asyncio.to_thread(self.subscriptions.get_by_organization, organization_id)
        return OrganizationView(organization=org, members=members, subscription=sub)

    async def join(self, organization_id: str, user_id: str) -> JoinResult:
        view = await self.get(organization_id)
        if user_id in view.members:
            return JoinResult(organization_id, joined=False, members=len(view.members))

        sub = view.subscription
        if not has_active_access(sub):
            raise MembershipRejected(f"Organization {organization_id} has no active subscription")
        if len(view.members) >= sub.max_users:
            raise MembershipRejected(
                f"Organization {organization_id} has reached its member limit ({sub.max_users})"
            )

        await asyncio.to_thread(self.subscriptions.add_member, organization_id, user_id)
        logger.info(f"{user_id} joined organization {organization_id}")
        await self._recount(sub)
        return JoinResult(organization_id, joined=True, members=len(view.members) + 1)

    async def remove_member(self, organization_id: str, member_id: str, requested_by: str) -> bool:
        view = await self.get(organization_id)
        if not view.is_admin(requested_by):
            raise PermissionDenied("Only the organization admin can remove members")
        if view.is_admin(member_id):
            raise MembershipRejected("Cannot remove the organization admin")

        removed = await asyncio.to_thread(self.subscriptions.remove_member, organization_id, member_id)
        if removed:
            logger.info(f"{member_id} removed from organization {organization_id}")
            await self._recount(view.subscription)
        return removed

    async def _recount(self, sub: Optional[Subscription]) -> None:
        if sub is None:
            return
        try:
            await self.accountant.reconcile(sub.id)
        except Exception as e:
            logger.warning(f"Usage recount after membership change failed for {sub.id}: {e}")
