from __future__ import annotations

from uuid import UUID

import structlog

from app.billing.errors import GatewayPermanentError, ProcessorResourceMissingError
from app.billing.retry import call_with_retry
from app.billing.statuses import SubscriptionKind, SubscriptionStatus
from app.billing.transitions import apply_processor_state, mark_cancelled
from app.billing.types import ProcessorSubscription, SubscriptionActionResult
from app.db.models.subscriptions import Subscription
from app.db.repo.subscriptions_repo import SubscriptionsRepo

from .context import LifecycleContext, lock_owned_subscription, utcnow
from .create import apply_creation_confirmation, issue_processor_create, record_creation_failure

logger = structlog.get_logger(__name__)


async def _resolve_unconfirmed(ctx: LifecycleContext, subscription: Subscription) -> str | None:
    # A create call may have succeeded without the answer reaching us; replaying
    # it with the stored key returns that subscription instead of a new one.
    try:
        state = await issue_processor_create(ctx, subscription)
    except GatewayPermanentError as exc:
        await record_creation_failure(
            ctx,
            subscription.id,
            failure_reason=exc.code or "gateway_permanent",
        )
        return None
    await apply_creation_confirmation(ctx, subscription.id, state)
    return state.id


async def cancel_subscription(
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
        if subscription.status == SubscriptionStatus.CANCELLED.value:
            logger.info("subscription_cancel_replayed", subscription_id=str(subscription_id))
            return SubscriptionActionResult(subscription=subscription, idempotent_replay=True)

        if subscription.kind == SubscriptionKind.SYNTHETIC.value:
            mark_cancelled(subscription, now=utcnow())
            subscription.cancel_at_period_end = True
            logger.info("subscription_cancelled", subscription_id=str(subscription_id), kind=subscription.kind)
            return SubscriptionActionResult(subscription=subscription)

        external_subscription_id = subscription.external_subscription_id

    if external_subscription_id is None:
        external_subscription_id = await _resolve_unconfirmed(ctx, subscription)
        if external_subscription_id is None:
            async with ctx.session_factory.begin() as session:
                cancelled = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
            logger.info("subscription_cancelled_before_confirmation", subscription_id=str(subscription_id))
            return SubscriptionActionResult(subscription=cancelled or subscription)

    correlation_id = str(subscription_id)
    state: ProcessorSubscription | None
    try:
        state = await call_with_retry(
            lambda: ctx.gateway.cancel_subscription(
                external_subscription_id,
                correlation_id=correlation_id,
            ),
            policy=ctx.retry_policy,
            operation_name="cancel_subscription",
            correlation_id=correlation_id,
        )
    except ProcessorResourceMissingError:
        logger.warning(
            "subscription_cancel_processor_resource_missing",
            subscription_id=correlation_id,
            external_subscription_id=external_subscription_id,
        )
        state = None

    now = utcnow()
    async with ctx.session_factory.begin() as session:
        subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
        if state is not None:
            apply_processor_state(subscription, state, observed_at=now)
        mark_cancelled(subscription, now=now)

    logger.info(
        "subscription_cancelled",
        subscription_id=correlation_id,
        external_subscription_id=external_subscription_id,
        processor_status=state.status if state is not None else None,
        cancel_at_period_end=subscription.cancel_at_period_end,
    )
    return SubscriptionActionResult(subscription=subscription)
