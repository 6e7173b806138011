from __future__ import annotations

from datetime import timedelta
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError

from app.billing.errors import (
    BillingProfileMissingError,
    DuplicateActiveSubscriptionError,
    GatewayPermanentError,
    GatewayTransientError,
    InvalidTierError,
    SubscriptionGatewayPermanentError,
    SubscriptionGatewayTransientError,
)
from app.billing.fees import assert_split_invariant, split_amount
from app.billing.retry import call_with_retry
from app.billing.statuses import BillingPeriod, SubscriptionKind, SubscriptionStatus
from app.billing.transitions import apply_processor_state, mark_cancelled
from app.billing.types import ProcessorSubscription
from app.db.models.subscriptions import Subscription
from app.db.repo.billing_profiles_repo import BillingProfilesRepo
from app.db.repo.subscription_tiers_repo import SubscriptionTiersRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo

from .context import LifecycleContext, create_idempotency_key, utcnow

logger = structlog.get_logger(__name__)

SYNTHETIC_PERIOD_LENGTH = {
    BillingPeriod.MONTHLY.value: timedelta(days=30),
    BillingPeriod.YEARLY.value: timedelta(days=365),
}


async def issue_processor_create(
    ctx: LifecycleContext,
    subscription: Subscription,
) -> ProcessorSubscription:
    """Sends the create call for ``subscription`` with its stored idempotency key.

    Safe to repeat: the processor answers a repeated key with the subscription
    it created the first time.
    """
    async with ctx.session_factory.begin() as session:
        tier = await SubscriptionTiersRepo.get_by_id(session, subscription.tier_id)
        profile = await BillingProfilesRepo.get_by_subscriber_id(session, subscription.subscriber_id)
    if tier is None or not tier.processor_price_id:
        raise InvalidTierError
    if profile is None:
        raise BillingProfileMissingError

    customer_id = profile.processor_customer_id
    price_id = tier.processor_price_id
    correlation_id = str(subscription.id)
    return await call_with_retry(
        lambda: ctx.gateway.create_subscription(
            customer_id=customer_id,
            price_id=price_id,
            idempotency_key=subscription.idempotency_key,
            correlation_id=correlation_id,
            metadata={
                "subscription_id": correlation_id,
                "creator_id": subscription.creator_id,
                "tier_id": str(subscription.tier_id),
            },
        ),
        policy=ctx.retry_policy,
        operation_name="create_subscription",
        correlation_id=correlation_id,
    )


async def apply_creation_confirmation(
    ctx: LifecycleContext,
    subscription_id: UUID,
    state: ProcessorSubscription,
) -> Subscription | None:
    async with ctx.session_factory.begin() as session:
        subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
        if subscription is None:
            return None
        outcome = apply_processor_state(
            subscription,
            state,
            observed_at=utcnow(),
            allow_initial_confirmation=True,
        )
    logger.info(
        "subscription_creation_confirmed",
        subscription_id=str(subscription_id),
        external_subscription_id=state.id,
        processor_status=state.status,
        status=outcome.status,
        stale=outcome.stale,
    )
    return subscription


async def record_creation_failure(
    ctx: LifecycleContext,
    subscription_id: UUID,
    *,
    failure_reason: str,
) -> Subscription | None:
    async with ctx.session_factory.begin() as session:
        subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
        if subscription is None:
            return None
        if subscription.status == SubscriptionStatus.PENDING.value and subscription.external_subscription_id is None:
            mark_cancelled(subscription, now=utcnow(), failure_reason=failure_reason[:64])
    return subscription


async def create_subscription(
    ctx: LifecycleContext,
    *,
    subscriber_id: str,
    creator_id: str,
    tier_id: UUID,
) -> Subscription:
    now = utcnow()
    kind = SubscriptionKind.SYNTHETIC if ctx.demo_mode else SubscriptionKind.PROCESSOR_BACKED
    subscription_id = uuid4()

    try:
        async with ctx.session_factory.begin() as session:
            tier = await SubscriptionTiersRepo.get_by_id(session, tier_id)
            if tier is None or not tier.is_active or tier.creator_id != creator_id:
                raise InvalidTierError

            existing = await SubscriptionsRepo.get_live_for_triple(
                session,
                subscriber_id=subscriber_id,
                creator_id=creator_id,
                tier_id=tier_id,
            )
            if existing is not None:
                raise DuplicateActiveSubscriptionError

            if kind == SubscriptionKind.PROCESSOR_BACKED:
                if not tier.processor_price_id:
                    raise InvalidTierError
                profile = await BillingProfilesRepo.get_by_subscriber_id(session, subscriber_id)
                if profile is None:
                    raise BillingProfileMissingError

            split = split_amount(tier.price_amount, ctx.fee_rate)
            assert_split_invariant(
                total_amount=split.total_amount,
                platform_fee=split.platform_fee,
                creator_earnings=split.creator_earnings,
            )

            subscription = Subscription(
                id=subscription_id,
                subscriber_id=subscriber_id,
                creator_id=creator_id,
                tier_id=tier_id,
                kind=kind.value,
                status=SubscriptionStatus.PENDING.value,
                billing_period=tier.billing_period,
                currency=tier.currency,
                total_amount=split.total_amount,
                platform_fee=split.platform_fee,
                creator_earnings=split.creator_earnings,
                cancel_at_period_end=False,
                failed_payment_count=0,
                idempotency_key=create_idempotency_key(subscription_id),
            )
            if kind == SubscriptionKind.SYNTHETIC:
                subscription.status = SubscriptionStatus.ACTIVE.value
                subscription.current_period_start = now
                subscription.current_period_end = now + SYNTHETIC_PERIOD_LENGTH[tier.billing_period]
            await SubscriptionsRepo.create(session, subscription=subscription, created_at=now)
    except IntegrityError as exc:
        raise DuplicateActiveSubscriptionError from exc

    logger.info(
        "subscription_created",
        subscription_id=str(subscription_id),
        subscriber_id=subscriber_id,
        creator_id=creator_id,
        tier_id=str(tier_id),
        kind=kind.value,
        status=subscription.status,
        total_amount=subscription.total_amount,
        platform_fee=subscription.platform_fee,
        creator_earnings=subscription.creator_earnings,
    )
    if kind == SubscriptionKind.SYNTHETIC:
        return subscription

    try:
        state = await issue_processor_create(ctx, subscription)
    except GatewayTransientError as exc:
        logger.warning(
            "subscription_create_left_pending",
            subscription_id=str(subscription_id),
            error_code=exc.code,
        )
        raise SubscriptionGatewayTransientError(subscription_id) from exc
    except GatewayPermanentError as exc:
        failure_reason = exc.code or "gateway_permanent"
        await record_creation_failure(ctx, subscription_id, failure_reason=failure_reason)
        logger.warning(
            "subscription_create_rejected",
            subscription_id=str(subscription_id),
            error_code=failure_reason,
        )
        raise SubscriptionGatewayPermanentError(subscription_id, code=failure_reason) from exc

    confirmed = await apply_creation_confirmation(ctx, subscription_id, state)
    return confirmed if confirmed is not None else subscription
