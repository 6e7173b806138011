from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.gateway import PaymentGateway
from app.billing.retry import RetryPolicy
from app.billing.types import SubscriptionActionResult
from app.db.models.subscriptions import Subscription
from app.db.repo.subscriptions_repo import SubscriptionsRepo

from .cancel import cancel_subscription
from .context import LifecycleContext
from .create import create_subscription
from .reactivate import reactivate_subscription

SUBSCRIPTION_ACTIONS = frozenset({"cancel", "reactivate"})


class SubscriptionLifecycleService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        fee_rate: Decimal,
        retry_policy: RetryPolicy,
        demo_mode: bool = False,
    ) -> None:
        self.context = LifecycleContext(
            session_factory=session_factory,
            gateway=gateway,
            fee_rate=fee_rate,
            retry_policy=retry_policy,
            demo_mode=demo_mode,
        )

    async def create_subscription(self, *, subscriber_id: str, creator_id: str, tier_id: UUID) -> Subscription:
        return await create_subscription(
            self.context,
            subscriber_id=subscriber_id,
            creator_id=creator_id,
            tier_id=tier_id,
        )

    async def cancel_subscription(self, *, subscription_id: UUID, requester_id: str) -> SubscriptionActionResult:
        return await cancel_subscription(self.context, subscription_id=subscription_id, requester_id=requester_id)

    async def reactivate_subscription(
        self,
        *,
        subscription_id: UUID,
        requester_id: str,
    ) -> SubscriptionActionResult:
        return await reactivate_subscription(
            self.context,
            subscription_id=subscription_id,
            requester_id=requester_id,
        )

    async def update_subscription(
        self,
        *,
        subscription_id: UUID,
        requester_id: str,
        action: str,
    ) -> SubscriptionActionResult:
        if action == "cancel":
            return await self.cancel_subscription(subscription_id=subscription_id, requester_id=requester_id)
        if action == "reactivate":
            return await self.reactivate_subscription(subscription_id=subscription_id, requester_id=requester_id)
        raise ValueError(f"unsupported subscription action: {action}")

    async def list_subscriptions(self, *, subscriber_id: str) -> list[Subscription]:
        async with self.context.session_factory() as session:
            return await SubscriptionsRepo.list_by_subscriber(session, subscriber_id=subscriber_id)


__all__ = [
    "LifecycleContext",
    "SUBSCRIPTION_ACTIONS",
    "SubscriptionLifecycleService",
]
