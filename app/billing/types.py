from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime

from app.db.models.subscriptions import Subscription


@dataclass(frozen=True, slots=True)
class FeeSplit:
    total_amount: int
    platform_fee: int
    creator_earnings: int


@dataclass(frozen=True, slots=True)
class ProcessorSubscription:
    id: str
    status: str
    cancel_at_period_end: bool = False
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    canceled_at: datetime | None = None


@dataclass(slots=True)
class TransitionOutcome:
    applied: bool
    changed: bool
    stale: bool
    previous_status: str
    status: str


@dataclass(slots=True)
class SubscriptionActionResult:
    subscription: Subscription
    idempotent_replay: bool = False


@dataclass(frozen=True, slots=True)
class MismatchEntry:
    subscription_id: str
    external_subscription_id: str | None
    issue: str
    resolution_action: str | None

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(slots=True)
class ReconciliationResult:
    run_id: int | None
    run_at: datetime
    finished_at: datetime | None
    status: str
    checked_count: int = 0
    synced_count: int = 0
    error_count: int = 0
    mismatches: list[MismatchEntry] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SubscriptionStats:
    total: int
    active: int
    cancelled: int
    past_due: int
    pending: int
    monthly_recurring_revenue: int
