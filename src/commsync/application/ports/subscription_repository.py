from __future__ import annotations
from typing import Optional, Protocol

from commsync.domain.entities.subscription import Organization, Subscription


class SubscriptionRepository(Protocol):
    def get(self, subscription_id: str) -> Optional[Subscription]: ...
    def get_by_billing_id(self, billing_subscription_id: str) -> Optional[Subscription]: ...
    def get_by_organization(self, organization_id: str) -> Optional[Subscription]: ...
    def get_for_user(self, user_id: str) -> Optional[Subscription]: ...
    def save(self, subscription: Subscription) -> None: ...
    def delete(self, subscription_id: str) -> None: ...
    def members(self, organization_id: str) -> list[str]: ...
    def add_member(self, organization_id: str, user_id: str) -> None: ...
    def remove_member(self, organization_id: str, user_id: str) -> bool: ...
    def get_organization(self, organization_id: str) -> Optional[Organization]: ...
    def save_organization(self, organization: Organization) -> None: ...
