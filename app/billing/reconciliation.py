from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from uuid import UUID

import structlog

from app.billing.errors import (
    GatewayPermanentError,
    GatewayTransientError,
    ProcessorResourceMissingError,
)
from app.billing.lifecycle import LifecycleContext
from app.billing.lifecycle.create import issue_processor_create
from app.billing.retry import call_with_retry
from app.billing.transitions import apply_processor_state, local_status_for, mark_cancelled
from app.billing.types import MismatchEntry, ProcessorSubscription, ReconciliationResult
from app.db.models.subscriptions import Subscription
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.sync_audit_runs_repo import SyncAuditRunsRepo
from app.services.alerts import send_ops_alert

logger = structlog.get_logger(__name__)

ISSUE_PENDING_UNCONFIRMED = "pending_unconfirmed"
ISSUE_CREATION_FAILED = "creation_failed"
ISSUE_CREATE_RETRY_FAILED = "create_retry_failed"
ISSUE_STATUS_DRIFT = "status_drift"
ISSUE_PERIOD_DRIFT = "period_drift"
ISSUE_RESOURCE_MISSING = "processor_resource_missing"
ISSUE_RETRIEVE_FAILED = "retrieve_failed"
ISSUE_RECONCILE_ERROR = "reconcile_error"

ACTION_MARKED_CANCELLED = "marked_cancelled"
ACTION_CORRECTED_PERIOD = "corrected_period"
ACTION_SUPERSEDED = "superseded_by_newer_update"

ALERT_EVENT_DIFF_DETECTED = "subscriptions_reconciliation_diff_detected"
UNCONFIRMED_GRACE_PERIOD = timedelta(seconds=60)


def reconciliation_status(mismatch_count: int) -> str:
    return "OK" if mismatch_count == 0 else "DIFF"


def _period_differs(subscription: Subscription, state: ProcessorSubscription) -> bool:
    return (
        state.current_period_start is not None and state.current_period_start != subscription.current_period_start
    ) or (state.current_period_end is not None and state.current_period_end != subscription.current_period_end)


class ReconciliationJob:
    """Compares live processor-backed records with the processor and corrects drift."""

    def __init__(self, *, context: LifecycleContext, batch_size: int) -> None:
        self._context = context
        self._batch_size = max(1, int(batch_size))

    def _mismatch(
        self,
        subscription: Subscription,
        *,
        issue: str,
        resolution_action: str | None,
        external_subscription_id: str | None = None,
    ) -> MismatchEntry:
        return MismatchEntry(
            subscription_id=str(subscription.id),
            external_subscription_id=external_subscription_id or subscription.external_subscription_id,
            issue=issue,
            resolution_action=resolution_action,
        )

    async def _mark_missing(self, subscription_id: UUID) -> None:
        async with self._context.session_factory.begin() as session:
            locked = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
            if locked is not None:
                mark_cancelled(locked, now=datetime.now(timezone.utc))

    async def _confirm_unconfirmed(self, subscription: Subscription) -> tuple[MismatchEntry, bool]:
        try:
            state = await issue_processor_create(self._context, subscription)
        except GatewayTransientError:
            return self._mismatch(subscription, issue=ISSUE_CREATE_RETRY_FAILED, resolution_action=None), False
        except GatewayPermanentError as exc:
            failure_reason = (exc.code or "gateway_permanent")[:64]
            async with self._context.session_factory.begin() as session:
                locked = await SubscriptionsRepo.get_by_id_for_update(session, subscription.id)
                if locked is not None and locked.external_subscription_id is None:
                    mark_cancelled(locked, now=datetime.now(timezone.utc), failure_reason=failure_reason)
            return self._mismatch(
                subscription,
                issue=ISSUE_CREATION_FAILED,
                resolution_action=ACTION_MARKED_CANCELLED,
            ), True

        async with self._context.session_factory.begin() as session:
            locked = await SubscriptionsRepo.get_by_id_for_update(session, subscription.id)
            outcome = apply_processor_state(
                locked,
                state,
                observed_at=datetime.now(timezone.utc),
                allow_initial_confirmation=True,
            )
        return self._mismatch(
            subscription,
            issue=ISSUE_PENDING_UNCONFIRMED,
            resolution_action=f"confirmed_{outcome.status}",
            external_subscription_id=state.id,
        ), True

    async def _reconcile_one(self, subscription: Subscription) -> tuple[MismatchEntry | None, bool]:
        if subscription.external_subscription_id is None:
            return await self._confirm_unconfirmed(subscription)

        external_subscription_id = subscription.external_subscription_id
        correlation_id = str(subscription.id)
        observed_at = datetime.now(timezone.utc)
        try:
            state = await call_with_retry(
                lambda: self._context.gateway.retrieve_subscription(
                    external_subscription_id,
                    correlation_id=correlation_id,
                ),
                policy=self._context.retry_policy,
                operation_name="retrieve_subscription",
                correlation_id=correlation_id,
            )
        except ProcessorResourceMissingError:
            await self._mark_missing(subscription.id)
            return self._mismatch(
                subscription,
                issue=ISSUE_RESOURCE_MISSING,
                resolution_action=ACTION_MARKED_CANCELLED,
            ), True
        except GatewayTransientError:
            return self._mismatch(subscription, issue=ISSUE_RETRIEVE_FAILED, resolution_action=None), False

        return await self._apply_observation(subscription.id, state, observed_at=observed_at)

    async def _apply_observation(
        self,
        subscription_id: UUID,
        state: ProcessorSubscription,
        *,
        observed_at: datetime,
    ) -> tuple[MismatchEntry | None, bool]:
        async with self._context.session_factory.begin() as session:
            subscription = await SubscriptionsRepo.get_by_id_for_update(session, subscription_id)
            if subscription is None:
                return None, False

            target = local_status_for(state)
            status_differs = target.value != subscription.status
            period_differs = _period_differs(subscription, state)
            if not status_differs and not period_differs:
                apply_processor_state(subscription, state, observed_at=observed_at)
                return None, False

            outcome = apply_processor_state(subscription, state, observed_at=observed_at)
            if outcome.stale:
                action = ACTION_SUPERSEDED
            elif status_differs:
                action = f"corrected_to_{outcome.status}"
            else:
                action = ACTION_CORRECTED_PERIOD
            entry = self._mismatch(
                subscription,
                issue=ISSUE_STATUS_DRIFT if status_differs else ISSUE_PERIOD_DRIFT,
                resolution_action=action,
            )
        return entry, not outcome.stale

    async def _iter_candidates(self) -> AsyncIterator[Subscription]:
        after_id: UUID | None = None
        while True:
            async with self._context.session_factory.begin() as session:
                batch = await SubscriptionsRepo.list_reconcilable(
                    session,
                    limit=self._batch_size,
                    after_id=after_id,
                )
            for subscription in batch:
                yield subscription
            if len(batch) < self._batch_size:
                return
            after_id = batch[-1].id

    async def run(self) -> ReconciliationResult:
        run_at = datetime.now(timezone.utc)
        mismatches: list[MismatchEntry] = []
        checked_count = 0
        synced_count = 0
        error_count = 0
        unconfirmed_cutoff = run_at - UNCONFIRMED_GRACE_PERIOD
        async for subscription in self._iter_candidates():
            if subscription.external_subscription_id is None and subscription.created_at > unconfirmed_cutoff:
                continue
            checked_count += 1
            try:
                entry, synced = await self._reconcile_one(subscription)
            except Exception:
                logger.exception(
                    "subscription_reconcile_error",
                    subscription_id=str(subscription.id),
                    external_subscription_id=subscription.external_subscription_id,
                )
                entry = self._mismatch(subscription, issue=ISSUE_RECONCILE_ERROR, resolution_action=None)
                synced = False

            if entry is None:
                continue
            mismatches.append(entry)
            if synced:
                synced_count += 1
            if entry.issue in {ISSUE_RETRIEVE_FAILED, ISSUE_CREATE_RETRY_FAILED, ISSUE_RECONCILE_ERROR}:
                error_count += 1

        status = reconciliation_status(len(mismatches))
        finished_at = datetime.now(timezone.utc)
        async with self._context.session_factory.begin() as session:
            audit_run = await SyncAuditRunsRepo.create(
                session,
                run_at=run_at,
                finished_at=finished_at,
                status=status,
                checked_count=checked_count,
                synced_count=synced_count,
                error_count=error_count,
                mismatches=[entry.as_dict() for entry in mismatches],
            )
            run_id = audit_run.id

        result = ReconciliationResult(
            run_id=run_id,
            run_at=run_at,
            finished_at=finished_at,
            status=status,
            checked_count=checked_count,
            synced_count=synced_count,
            error_count=error_count,
            mismatches=mismatches,
        )
        summary: dict[str, object] = {
            "run_id": run_id,
            "status": status,
            "checked_count": result.checked_count,
            "synced_count": synced_count,
            "error_count": error_count,
            "mismatch_count": len(mismatches),
        }
        if status == "DIFF":
            logger.warning(ALERT_EVENT_DIFF_DETECTED, **summary)
            await send_ops_alert(
                event=ALERT_EVENT_DIFF_DETECTED,
                payload={**summary, "mismatches": [entry.as_dict() for entry in mismatches[:20]]},
            )
        else:
            logger.info("subscriptions_reconciliation_finished", **summary)
        return result
