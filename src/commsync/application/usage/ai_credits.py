"""Metered AI actions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from commsync.application.ports.ai_generator import AiGenerator
from commsync.application.ports.subscription_repository import SubscriptionRepository
from commsync.application.usage.accountant import UsageAccountant
from commsync.domain.entities.subscription import Subscription
from commsync.domain.errors import QuotaExceeded, SubscriptionNotFound


class AiActionKind(str, Enum):
    GENERATE_MESSAGE = "generate_message"
    SUMMARIZE_THREAD = "summarize_thread"
    DRAFT_EMAIL = "draft_email"
    TRANSLATE_MESSAGE = "translate_message"
    ANALYZE_SENTIMENT = "analyze_sentiment"


AI_CREDIT_COSTS: dict[AiActionKind, int] = {
    AiActionKind.GENERATE_MESSAGE: 1,
    AiActionKind.SUMMARIZE_THREAD: 1,
    AiActionKind.DRAFT_EMAIL: 2,
    AiActionKind.TRANSLATE_MESSAGE: 1,
    AiActionKind.ANALYZE_SENTIMENT: 1,
}


def credit_cost(kind: AiActionKind | str) -> int:
    return AI_CREDIT_COSTS[AiActionKind(kind)]


def has_enough_credits(subscription: Subscription, kind: AiActionKind | str) -> bool:
    return subscription.used_ai_credits + credit_cost(kind) <= subscription.total_ai_credits


@dataclass
class AiActionResult:
    kind: AiActionKind
    text: str
    credits_charged: int
    remaining_credits: int | None = None
    billing_warning: str | None = None


class AiFeatureService:
    """Gates an AI action on remaining credits, runs it, then records the debit.

    A debit that fails after a successful generation does not roll the
    generation back; the caller gets the text plus a billing warning.
    """

    def __init__(
        self,
        generator: AiGenerator,
        subscriptions: SubscriptionRepository,
        accountant: UsageAccountant,
    ):
        self.generator = generator
        self.subscriptions = subscriptions
        self.accountant = accountant

    async def run(self, kind: AiActionKind | str, user_id: str, prompt: str) -> AiActionResult:
        kind = AiActionKind(kind)
        cost = credit_cost(kind)

        sub = await asyncio.to_thread(self.subscriptions.get_for_user, user_id)
        if sub is None:
            raise SubscriptionNotFound(f"No subscription for user {user_id}")
        if not has_enough_credits(sub, kind):
            raise QuotaExceeded("ai_credits", sub.used_ai_credits, sub.total_ai_credits)

        text = await self.generator.generate(kind.value, prompt)

        try:
            result = await self.accountant.debit_ai_credits(sub.id, cost)
        except Exception as e:
            logger.warning(f"AI credit debit failed for {sub.id} after {kind.value}: {e}")
            return AiActionResult(
                kind=kind,
                text=text,
                credits_charged=0,
                billing_warning=f"Usage could not be recorded: {e}",
            )

        return AiActionResult(
            kind=kind,
            text=text,
            credits_charged=cost,
            remaining_credits=result.subscription.remaining_ai_credits,
        )
