from __future__ import annotations

from datetime import datetime

from app.billing.errors import UnknownProcessorStatusError
from app.billing.statuses import PROCESSOR_STATUS_MAP, SubscriptionStatus
from app.billing.types import ProcessorSubscription, TransitionOutcome
from app.db.models.subscriptions import Subscription


def local_status_for(state: ProcessorSubscription) -> SubscriptionStatus:
    mapped = PROCESSOR_STATUS_MAP.get(state.status)
    if mapped is None:
        raise UnknownProcessorStatusError(f"unknown processor status: {state.status!r}")
    if mapped in {SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE} and state.cancel_at_period_end:
        return SubscriptionStatus.CANCELLED
    return mapped


def is_stale(subscription: Subscription, *, observed_at: datetime) -> bool:
    return observed_at < subscription.updated_at


def _bump_version(subscription: Subscription, observed_at: datetime) -> None:
    if observed_at > subscription.updated_at:
        subscription.updated_at = observed_at


def _assign(subscription: Subscription, values: dict[str, object]) -> bool:
    changed = False
    for attr, value in values.items():
        if getattr(subscription, attr) != value:
            setattr(subscription, attr, value)
            changed = True
    return changed


def apply_processor_state(
    subscription: Subscription,
    state: ProcessorSubscription,
    *,
    observed_at: datetime,
    allow_initial_confirmation: bool = False,
) -> TransitionOutcome:
    """Mirrors a processor snapshot onto the local record.

    A snapshot observed before the record's ``updated_at`` is rejected, except
    for the first confirmation of a pending record when
    ``allow_initial_confirmation`` is set.
    """
    previous_status = subscription.status
    initial_confirmation = (
        allow_initial_confirmation
        and previous_status == SubscriptionStatus.PENDING.value
        and subscription.external_subscription_id is None
    )
    if not initial_confirmation and is_stale(subscription, observed_at=observed_at):
        return TransitionOutcome(
            applied=False,
            changed=False,
            stale=True,
            previous_status=previous_status,
            status=previous_status,
        )

    target = local_status_for(state)
    values: dict[str, object] = {
        "status": target.value,
        "processor_status": state.status,
        "cancel_at_period_end": state.cancel_at_period_end,
    }
    if subscription.external_subscription_id is None:
        values["external_subscription_id"] = state.id
    if state.current_period_start is not None:
        values["current_period_start"] = state.current_period_start
    if state.current_period_end is not None:
        values["current_period_end"] = state.current_period_end

    if target == SubscriptionStatus.CANCELLED:
        if subscription.cancelled_at is None:
            values["cancelled_at"] = state.canceled_at or observed_at
    else:
        values["cancelled_at"] = None
    if target == SubscriptionStatus.ACTIVE:
        values["failed_payment_count"] = 0

    changed = _assign(subscription, values)
    if changed:
        _bump_version(subscription, observed_at)
    return TransitionOutcome(
        applied=True,
        changed=changed,
        stale=False,
        previous_status=previous_status,
        status=subscription.status,
    )


def apply_invoice_outcome(
    subscription: Subscription,
    *,
    succeeded: bool,
    attempt_count: int,
    observed_at: datetime,
    past_due_threshold: int,
) -> TransitionOutcome:
    previous_status = subscription.status
    if is_stale(subscription, observed_at=observed_at):
        return TransitionOutcome(
            applied=False,
            changed=False,
            stale=True,
            previous_status=previous_status,
            status=previous_status,
        )
    if previous_status == SubscriptionStatus.CANCELLED.value:
        return TransitionOutcome(
            applied=False,
            changed=False,
            stale=False,
            previous_status=previous_status,
            status=previous_status,
        )

    values: dict[str, object] = {}
    if succeeded:
        values["failed_payment_count"] = 0
        if previous_status == SubscriptionStatus.PAST_DUE.value:
            values["status"] = SubscriptionStatus.ACTIVE.value
    else:
        failed_count = max(0, int(attempt_count))
        values["failed_payment_count"] = failed_count
        if previous_status == SubscriptionStatus.ACTIVE.value and failed_count >= past_due_threshold:
            values["status"] = SubscriptionStatus.PAST_DUE.value

    changed = _assign(subscription, values)
    if changed:
        _bump_version(subscription, observed_at)
    return TransitionOutcome(
        applied=True,
        changed=changed,
        stale=False,
        previous_status=previous_status,
        status=subscription.status,
    )


def mark_cancelled(
    subscription: Subscription,
    *,
    now: datetime,
    failure_reason: str | None = None,
) -> bool:
    values: dict[str, object] = {"status": SubscriptionStatus.CANCELLED.value}
    if subscription.cancelled_at is None:
        values["cancelled_at"] = now
    if failure_reason is not None:
        values["failure_reason"] = failure_reason
    changed = _assign(subscription, values)
    if changed:
        _bump_version(subscription, now)
    return changed
