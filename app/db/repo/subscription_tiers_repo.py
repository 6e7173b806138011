from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.subscription_tiers import SubscriptionTier


class SubscriptionTiersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, tier_id: UUID) -> SubscriptionTier | None:
        return await session.get(SubscriptionTier, tier_id)
