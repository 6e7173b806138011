from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from app.billing.errors import ProcessorResourceMissingError
from app.billing.lifecycle import SubscriptionLifecycleService
from app.billing.reconciliation import ReconciliationJob
from app.billing.retry import RetryPolicy
from app.billing.types import ProcessorSubscription
from app.billing.webhooks import WebhookEventProcessor
from app.db.models.billing_profiles import BillingProfile
from app.db.models.subscription_tiers import SubscriptionTier
from app.db.models.subscriptions import Subscription
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.session import SessionLocal

UTC = timezone.utc
PERIOD_START = datetime(2026, 3, 1, tzinfo=UTC)
PERIOD_END = datetime(2026, 4, 1, tzinfo=UTC)
NO_WAIT_RETRY = RetryPolicy(max_attempts=2, backoff_base_seconds=0.0, backoff_max_seconds=0.0)


class FakeGateway:
    """In-memory processor that honours idempotency keys like the real one."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, ProcessorSubscription] = {}
        self.created_by_key: dict[str, str] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.calls: list[tuple[str, str]] = []
        self.create_status = "active"
        self.lose_next_create_response: Exception | None = None
        self._failures: dict[str, list[Exception]] = defaultdict(list)

    def fail_next(self, operation: str, error: Exception, *, times: int = 1) -> None:
        self._failures[operation].extend([error] * times)

    def _maybe_fail(self, operation: str) -> None:
        if self._failures[operation]:
            raise self._failures[operation].pop(0)

    def set_state(self, external_subscription_id: str, **changes: object) -> None:
        self.subscriptions[external_subscription_id] = replace(
            self.subscriptions[external_subscription_id],
            **changes,
        )

    def _get(self, external_subscription_id: str) -> ProcessorSubscription:
        state = self.subscriptions.get(external_subscription_id)
        if state is None:
            raise ProcessorResourceMissingError("No such subscription", code="resource_missing")
        return state

    async def create_subscription(
        self,
        *,
        customer_id: str,
        price_id: str,
        idempotency_key: str,
        correlation_id: str,
        metadata: dict[str, str],
    ) -> ProcessorSubscription:
        self.calls.append(("create", idempotency_key))
        self._maybe_fail("create")
        external_id = self.created_by_key.get(idempotency_key)
        if external_id is None:
            external_id = f"sub_{uuid4().hex[:14]}"
            self.created_by_key[idempotency_key] = external_id
            self.metadata[external_id] = dict(metadata)
            self.subscriptions[external_id] = ProcessorSubscription(
                id=external_id,
                status=self.create_status,
                current_period_start=PERIOD_START,
                current_period_end=PERIOD_END,
            )
        if self.lose_next_create_response is not None:
            error, self.lose_next_create_response = self.lose_next_create_response, None
            raise error
        return self.subscriptions[external_id]

    async def retrieve_subscription(self, external_subscription_id: str, *, correlation_id: str) -> ProcessorSubscription:
        self.calls.append(("retrieve", external_subscription_id))
        self._maybe_fail("retrieve")
        return self._get(external_subscription_id)

    async def cancel_subscription(self, external_subscription_id: str, *, correlation_id: str) -> ProcessorSubscription:
        self.calls.append(("cancel", external_subscription_id))
        self._maybe_fail("cancel")
        self.set_state(self._get(external_subscription_id).id, cancel_at_period_end=True)
        return self.subscriptions[external_subscription_id]

    async def reactivate_subscription(
        self,
        external_subscription_id: str,
        *,
        correlation_id: str,
    ) -> ProcessorSubscription:
        self.calls.append(("reactivate", external_subscription_id))
        self._maybe_fail("reactivate")
        self.set_state(self._get(external_subscription_id).id, cancel_at_period_end=False)
        return self.subscriptions[external_subscription_id]

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


def _lifecycle(gateway: FakeGateway, *, demo_mode: bool = False) -> SubscriptionLifecycleService:
    return SubscriptionLifecycleService(
        session_factory=SessionLocal,
        gateway=gateway,
        fee_rate=Decimal("0.30"),
        retry_policy=NO_WAIT_RETRY,
        demo_mode=demo_mode,
    )


def _webhooks(*, threshold: int = 3) -> WebhookEventProcessor:
    return WebhookEventProcessor(session_factory=SessionLocal, past_due_after_failed_attempts=threshold)


def _reconciliation(lifecycle: SubscriptionLifecycleService, *, batch_size: int = 100) -> ReconciliationJob:
    return ReconciliationJob(context=lifecycle.context, batch_size=batch_size)


async def _create_tier(
    *,
    creator_id: str = "creator_1",
    price_amount: int = 1999,
    billing_period: str = "monthly",
    processor_price_id: str | None = "price_1",
    is_active: bool = True,
) -> UUID:
    tier_id = uuid4()
    async with SessionLocal.begin() as session:
        session.add(
            SubscriptionTier(
                id=tier_id,
                creator_id=creator_id,
                name=f"Tier {price_amount}",
                price_amount=price_amount,
                currency="usd",
                billing_period=billing_period,
                processor_price_id=processor_price_id,
                is_active=is_active,
                created_at=datetime.now(UTC),
            )
        )
    return tier_id


async def _create_profile(subscriber_id: str) -> None:
    async with SessionLocal.begin() as session:
        session.add(
            BillingProfile(
                subscriber_id=subscriber_id,
                processor_customer_id=f"cus_{subscriber_id}",
                created_at=datetime.now(UTC),
            )
        )


async def _load(subscription_id: UUID) -> Subscription:
    async with SessionLocal.begin() as session:
        subscription = await SubscriptionsRepo.get_by_id(session, subscription_id)
        assert subscription is not None
        return subscription


async def _age(subscription_id: UUID, *, by: timedelta) -> None:
    async with SessionLocal.begin() as session:
        subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
        assert subscription is not None
        subscription.created_at = subscription.created_at - by
        subscription.updated_at = subscription.updated_at - by


def _subscription_event(
    *,
    event_id: str,
    external_subscription_id: str,
    created: datetime,
    status: str = "active",
    cancel_at_period_end: bool = False,
    metadata: dict[str, str] | None = None,
    event_type: str = "customer.subscription.updated",
) -> dict[str, object]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(created.timestamp()),
        "data": {
            "object": {
                "id": external_subscription_id,
                "object": "subscription",
                "status": status,
                "cancel_at_period_end": cancel_at_period_end,
                "current_period_start": int(PERIOD_START.timestamp()),
                "current_period_end": int(PERIOD_END.timestamp()),
                "metadata": metadata or {},
            }
        },
    }


def _invoice_event(
    *,
    event_id: str,
    external_subscription_id: str,
    created: datetime,
    succeeded: bool,
    attempt_count: int,
) -> dict[str, object]:
    return {
        "id": event_id,
        "object": "event",
        "type": "invoice.payment_succeeded" if succeeded else "invoice.payment_failed",
        "created": int(created.timestamp()),
        "data": {
            "object": {
                "id": f"in_{event_id}",
                "object": "invoice",
                "subscription": external_subscription_id,
                "attempt_count": attempt_count,
            }
        },
    }
