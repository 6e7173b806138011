from __future__ import annotations

from enum import Enum


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    REACTIVATED_PENDING = "reactivated_pending"


class SubscriptionKind(str, Enum):
    PROCESSOR_BACKED = "processor_backed"
    SYNTHETIC = "synthetic"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


LIVE_STATUSES = frozenset(
    {
        SubscriptionStatus.PENDING.value,
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.PAST_DUE.value,
        SubscriptionStatus.REACTIVATED_PENDING.value,
    }
)
RECONCILABLE_STATUSES = LIVE_STATUSES

# Every status the processor documents for a subscription resource.
PROCESSOR_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
    "incomplete": SubscriptionStatus.PENDING,
}
PROCESSOR_TERMINAL_STATUSES = frozenset({"canceled", "incomplete_expired"})
