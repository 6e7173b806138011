from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.billing_profiles import BillingProfile


class BillingProfilesRepo:
    @staticmethod
    async def get_by_subscriber_id(session: AsyncSession, subscriber_id: str) -> BillingProfile | None:
        return await session.get(BillingProfile, subscriber_id)
