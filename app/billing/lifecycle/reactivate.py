from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.errors import (
    DuplicateActiveSubscriptionError,
    ProcessorResourceMissingError,
    SubscriptionNotReactivatableError,
)
from app.billing.retry import call_with_retry
from app.billing.statuses import PROCESSOR_TERMINAL_STATUSES, SubscriptionKind, SubscriptionStatus
from app.billing.transitions import apply_processor_state, local_status_for
from app.billing.types import SubscriptionActionResult
from app.db.models.subscriptions import Subscription
from app.db.repo.subscriptions_repo import SubscriptionsRepo

from .context import LifecycleContext, lock_owned_subscription, utcnow

logger = structlog.get_logger(__name__)

NOOP_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.REACTIVATED_PENDING.value})


async def _ensure_no_live_sibling(session: AsyncSession, subscription: Subscription) -> None:
    sibling = await SubscriptionsRepo.get_live_for_triple(
        session,
        subscriber_id=subscription.subscriber_id,
        creator_id=subscription.creator_id,
        tier_id=subscription.tier_id,
        exclude_id=subscription.id,
    )
    if sibling is not None:
        raise DuplicateActiveSubscriptionError


def _reopen(subscription: Subscription, *, status: SubscriptionStatus, now: datetime) -> None:
    subscription.status = status.value
    subscription.cancelled_at = None
    subscription.cancel_at_period_end = False
    if now > subscription.updated_at:
        subscription.updated_at = now


async def reactivate_subscription(
    ctx: LifecycleContext,
    *,
    subscription_id: UUID,
    requester_id: str,
) -> SubscriptionActionResult:
    async with ctx.session_factory.begin() as session:
        subscription = await lock_owned_subscription(
            session,
            subscription_id=subscription_id,
            requester_id=requester_id,
        )
        if subscription.status in NOOP_STATUSES:
            return SubscriptionActionResult(subscription=subscription, idempotent_replay=True)
        if subscription.status != SubscriptionStatus.CANCELLED.value:
            raise SubscriptionNotReactivatableError

        await _ensure_no_live_sibling(session, subscription)

        if subscription.kind == SubscriptionKind.SYNTHETIC.value:
            _reopen(subscription, status=SubscriptionStatus.ACTIVE, now=utcnow())
            logger.info("subscription_reactivated", subscription_id=str(subscription_id), kind=subscription.kind)
            return SubscriptionActionResult(subscription=subscription)

        external_subscription_id = subscription.external_subscription_id
        if external_subscription_id is None:
            raise SubscriptionNotReactivatableError

    correlation_id = str(subscription_id)
    try:
        current = await call_with_retry(
            lambda: ctx.gateway.retrieve_subscription(
                external_subscription_id,
                correlation_id=correlation_id,
            ),
            policy=ctx.retry_policy,
            operation_name="retrieve_subscription",
            correlation_id=correlation_id,
        )
    except ProcessorResourceMissingError as exc:
        raise SubscriptionNotReactivatableError from exc
    if current.status in PROCESSOR_TERMINAL_STATUSES:
        raise SubscriptionNotReactivatableError

    state = await call_with_retry(
        lambda: ctx.gateway.reactivate_subscription(
            external_subscription_id,
            correlation_id=correlation_id,
        ),
        policy=ctx.retry_policy,
        operation_name="reactivate_subscription",
        correlation_id=correlation_id,
    )

    now = utcnow()
    async with ctx.session_factory.begin() as session:
        subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
        if subscription.status in NOOP_STATUSES:
            return SubscriptionActionResult(subscription=subscription, idempotent_replay=True)
        await _ensure_no_live_sibling(session, subscription)

        _reopen(subscription, status=SubscriptionStatus.REACTIVATED_PENDING, now=now)
        if local_status_for(state) == SubscriptionStatus.ACTIVE:
            apply_processor_state(subscription, state, observed_at=now)
        else:
            subscription.processor_status = state.status

    logger.info(
        "subscription_reactivated",
        subscription_id=correlation_id,
        external_subscription_id=external_subscription_id,
        processor_status=state.status,
        status=subscription.status,
    )
    return SubscriptionActionResult(subscription=subscription)
