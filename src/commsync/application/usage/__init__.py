"""Usage accounting, billing reconciliation and AI-credit metering."""

from commsync.application.usage.accountant import (
    ReconcileResult,
    UsageAccountant,
    UsageView,
    bytes_to_mb,
    format_storage,
)
from commsync.application.usage.ai_credits import (
    AI_CREDIT_COSTS,
    AiActionKind,
    AiActionResult,
    AiFeatureService,
    has_enough_credits,
)
from commsync.application.usage.billing import BillingEvent, BillingEventReconciler
from commsync.application.usage.organizations import (
    JoinResult,
    OrganizationService,
    OrganizationView,
)

__all__ = [
    "ReconcileResult",
    "UsageAccountant",
    "UsageView",
    "bytes_to_mb",
    "format_storage",
    "AI_CREDIT_COSTS",
    "AiActionKind",
    "AiActionResult",
    "AiFeatureService",
    "has_enough_credits",
    "BillingEvent",
    "BillingEventReconciler",
    "JoinResult",
    "OrganizationService",
    "OrganizationView",
]
