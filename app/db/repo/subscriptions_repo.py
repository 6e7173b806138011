from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.statuses import LIVE_STATUSES, RECONCILABLE_STATUSES, SubscriptionKind
from app.db.models.subscriptions import Subscription


class SubscriptionsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, subscription_id: UUID) -> Subscription | None:
        return await session.get(Subscription, subscription_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, subscription_id: UUID) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.id == subscription_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_external_id_for_update(
        session: AsyncSession,
        external_subscription_id: str,
    ) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.external_subscription_id == external_subscription_id)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_live_for_triple(
        session: AsyncSession,
        *,
        subscriber_id: str,
        creator_id: str,
        tier_id: UUID,
        exclude_id: UUID | None = None,
    ) -> Subscription | None:
        stmt = select(Subscription).where(
            Subscription.subscriber_id == subscriber_id,
            Subscription.creator_id == creator_id,
            Subscription.tier_id == tier_id,
            Subscription.status.in_(LIVE_STATUSES),
        )
        if exclude_id is not None:
            stmt = stmt.where(Subscription.id != exclude_id)
        result = await session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    @staticmethod
    async def list_by_subscriber(session: AsyncSession, *, subscriber_id: str) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.subscriber_id == subscriber_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_reconcilable(
        session: AsyncSession,
        *,
        limit: int,
        after_id: UUID | None = None,
    ) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(
                Subscription.kind == SubscriptionKind.PROCESSOR_BACKED.value,
                Subscription.status.in_(RECONCILABLE_STATUSES),
            )
            .order_by(Subscription.id.asc())
            .limit(max(1, int(limit)))
        )
        if after_id is not None:
            stmt = stmt.where(Subscription.id > after_id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def count_by_status(session: AsyncSession) -> dict[str, int]:
        stmt = select(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status)
        result = await session.execute(stmt)
        return {str(status): int(count) for status, count in result.all()}

    @staticmethod
    async def sum_total_amount(
        session: AsyncSession,
        *,
        status: str,
        billing_period: str,
    ) -> int:
        stmt = select(func.coalesce(func.sum(Subscription.total_amount), 0)).where(
            Subscription.status == status,
            Subscription.billing_period == billing_period,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        subscription: Subscription,
        created_at: datetime,
    ) -> Subscription:
        subscription.created_at = created_at
        subscription.updated_at = created_at
        session.add(subscription)
        await session.flush()
        return subscription
