from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.errors import SubscriptionForbiddenError, SubscriptionNotFoundError
from app.billing.gateway import PaymentGateway
from app.billing.retry import RetryPolicy
from app.db.models.subscriptions import Subscription
from app.db.repo.subscriptions_repo import SubscriptionsRepo


@dataclass(frozen=True, slots=True)
class LifecycleContext:
    session_factory: async_sessionmaker[AsyncSession]
    gateway: PaymentGateway
    fee_rate: Decimal
    retry_policy: RetryPolicy
    demo_mode: bool = False


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_idempotency_key(subscription_id: UUID) -> str:
    return f"subscription:create:{subscription_id}"


async def lock_owned_subscription(
    session: AsyncSession,
    *,
    subscription_id: UUID,
    requester_id: str,
) -> Subscription:
    subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
    if subscription is None:
        raise SubscriptionNotFoundError
    if subscription.subscriber_id != requester_id:
        raise SubscriptionForbiddenError
    return subscription
