from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.statuses import BillingPeriod, SubscriptionStatus
from app.billing.types import SubscriptionStats
from app.db.repo.subscriptions_repo import SubscriptionsRepo


async def collect_subscription_stats(session: AsyncSession) -> SubscriptionStats:
    counts = await SubscriptionsRepo.count_by_status(session)
    monthly_recurring_revenue = await SubscriptionsRepo.sum_total_amount(
        session,
        status=SubscriptionStatus.ACTIVE.value,
        billing_period=BillingPeriod.MONTHLY.value,
    )
    return SubscriptionStats(
        total=sum(counts.values()),
        active=counts.get(SubscriptionStatus.ACTIVE.value, 0),
        cancelled=counts.get(SubscriptionStatus.CANCELLED.value, 0),
        past_due=counts.get(SubscriptionStatus.PAST_DUE.value, 0),
        pending=counts.get(SubscriptionStatus.PENDING.value, 0),
        monthly_recurring_revenue=monthly_recurring_revenue,
    )
