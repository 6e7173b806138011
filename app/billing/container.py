from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.gateway import PaymentGateway, StripeGateway
from app.billing.lifecycle import SubscriptionLifecycleService
from app.billing.reconciliation import ReconciliationJob
from app.billing.retry import RetryPolicy
from app.billing.webhooks import WebhookEventProcessor
from app.core.config import Settings, get_settings
from app.db.session import SessionLocal


@dataclass(frozen=True, slots=True)
class BillingContainer:
    gateway: PaymentGateway
    lifecycle: SubscriptionLifecycleService
    webhooks: WebhookEventProcessor
    reconciliation: ReconciliationJob


def build_billing_container(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PaymentGateway | None = None,
) -> BillingContainer:
    resolved_gateway = gateway or StripeGateway(
        api_key=settings.stripe_secret_key,
        timeout_seconds=settings.gateway_timeout_seconds,
        payment_behavior=settings.stripe_payment_behavior,
    )
    lifecycle = SubscriptionLifecycleService(
        session_factory=session_factory,
        gateway=resolved_gateway,
        fee_rate=Decimal(str(settings.platform_fee_rate)),
        retry_policy=RetryPolicy(
            max_attempts=settings.gateway_max_attempts,
            backoff_base_seconds=settings.gateway_backoff_base_seconds,
            backoff_max_seconds=settings.gateway_backoff_max_seconds,
        ),
        demo_mode=settings.billing_demo_mode,
    )
    return BillingContainer(
        gateway=resolved_gateway,
        lifecycle=lifecycle,
        webhooks=WebhookEventProcessor(
            session_factory=session_factory,
            past_due_after_failed_attempts=settings.past_due_after_failed_attempts,
        ),
        reconciliation=ReconciliationJob(
            context=lifecycle.context,
            batch_size=settings.reconciliation_batch_size,
        ),
    )


@lru_cache
def get_billing_container() -> BillingContainer:
    return build_billing_container(settings=get_settings(), session_factory=SessionLocal)
