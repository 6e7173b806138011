from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.errors import WebhookEventConflictError, WebhookPayloadError
from app.billing.gateway import processor_subscription_from_payload
from app.billing.transitions import apply_invoice_outcome, apply_processor_state
from app.billing.types import TransitionOutcome
from app.db.models.subscriptions import Subscription
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.webhook_events_repo import WebhookEventsRepo

logger = structlog.get_logger(__name__)

SUBSCRIPTION_EVENT_TYPES = frozenset(
    {
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "customer.subscription.paused",
        "customer.subscription.resumed",
    }
)
INVOICE_EVENT_TYPES = frozenset({"invoice.payment_succeeded", "invoice.payment_failed"})

OUTCOME_DUPLICATE = "duplicate"
OUTCOME_ORPHAN = "orphan"
OUTCOME_APPLIED = "applied"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_STALE = "stale"
OUTCOME_IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class WebhookEventEnvelope:
    event_id: str
    event_type: str
    created_at: datetime
    data_object: dict[str, Any]
    external_subscription_id: str | None
    payload_sha256: str


class _OrphanEvent(Exception):
    pass


FINGERPRINT_FIELDS = ("id", "type", "created", "data")


def payload_fingerprint(event: dict[str, Any]) -> str:
    """Hashes the event content that stays fixed across delivery attempts."""
    stable = {key: event.get(key) for key in FINGERPRINT_FIELDS}
    canonical = json.dumps(stable, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    subscription_ref = invoice.get("subscription")
    if subscription_ref is None:
        parent = invoice.get("parent")
        details = parent.get("subscription_details") if isinstance(parent, dict) else None
        subscription_ref = details.get("subscription") if isinstance(details, dict) else None
    if isinstance(subscription_ref, dict):
        subscription_ref = subscription_ref.get("id")
    return subscription_ref if isinstance(subscription_ref, str) else None


def parse_event(event: object) -> WebhookEventEnvelope:
    if not isinstance(event, dict):
        raise WebhookPayloadError("event must be a JSON object")

    event_id = event.get("id")
    event_type = event.get("type")
    created = event.get("created")
    if not isinstance(event_id, str) or not event_id:
        raise WebhookPayloadError("event id is missing")
    if not isinstance(event_type, str) or not event_type:
        raise WebhookPayloadError("event type is missing")
    if isinstance(created, bool) or not isinstance(created, int):
        raise WebhookPayloadError("event created timestamp is missing")

    data = event.get("data")
    data_object = data.get("object") if isinstance(data, dict) else None
    if not isinstance(data_object, dict):
        raise WebhookPayloadError("event data.object is missing")

    external_subscription_id: str | None = None
    if event_type in SUBSCRIPTION_EVENT_TYPES:
        object_id = data_object.get("id")
        external_subscription_id = object_id if isinstance(object_id, str) else None
    elif event_type in INVOICE_EVENT_TYPES:
        external_subscription_id = _invoice_subscription_id(data_object)

    return WebhookEventEnvelope(
        event_id=event_id,
        event_type=event_type,
        created_at=datetime.fromtimestamp(created, tz=timezone.utc),
        data_object=data_object,
        external_subscription_id=external_subscription_id,
        payload_sha256=payload_fingerprint(event),
    )


def _metadata_subscription_id(data_object: dict[str, Any]) -> UUID | None:
    metadata = data_object.get("metadata")
    raw_id = metadata.get("subscription_id") if isinstance(metadata, dict) else None
    if not isinstance(raw_id, str):
        return None
    try:
        return UUID(raw_id)
    except ValueError:
        return None


def _outcome_label(outcome: TransitionOutcome) -> str:
    if outcome.stale:
        return OUTCOME_STALE
    if not outcome.applied:
        return OUTCOME_IGNORED
    return OUTCOME_APPLIED if outcome.changed else OUTCOME_UNCHANGED


class WebhookEventProcessor:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        past_due_after_failed_attempts: int,
    ) -> None:
        self._session_factory = session_factory
        self._past_due_threshold = max(1, int(past_due_after_failed_attempts))

    async def _locate_subscription(
        self,
        session: AsyncSession,
        envelope: WebhookEventEnvelope,
    ) -> Subscription | None:
        subscription = await SubscriptionsRepo.get_by_external_id_for_update(
            session,
            envelope.external_subscription_id,
        )
        if subscription is not None or envelope.event_type not in SUBSCRIPTION_EVENT_TYPES:
            return subscription

        # The create response may not have been applied yet; the processor
        # echoes our record id in the subscription metadata.
        local_id = _metadata_subscription_id(envelope.data_object)
        if local_id is None:
            return None
        candidate = await SubscriptionsRepo.get_by_id_for_update(session, local_id)
        if candidate is None or candidate.external_subscription_id is not None:
            return None
        return candidate

    async def _apply(self, session: AsyncSession, envelope: WebhookEventEnvelope) -> str:
        handled = envelope.event_type in SUBSCRIPTION_EVENT_TYPES or envelope.event_type in INVOICE_EVENT_TYPES
        if not handled or envelope.external_subscription_id is None:
            return OUTCOME_IGNORED

        subscription = await self._locate_subscription(session, envelope)
        if subscription is None:
            raise _OrphanEvent

        if envelope.event_type in SUBSCRIPTION_EVENT_TYPES:
            try:
                state = processor_subscription_from_payload(envelope.data_object)
            except ValueError as exc:
                raise WebhookPayloadError(str(exc)) from exc
            outcome = apply_processor_state(
                subscription,
                state,
                observed_at=envelope.created_at,
                allow_initial_confirmation=True,
            )
        else:
            attempt_count = envelope.data_object.get("attempt_count")
            outcome = apply_invoice_outcome(
                subscription,
                succeeded=envelope.event_type == "invoice.payment_succeeded",
                attempt_count=attempt_count if isinstance(attempt_count, int) else 0,
                observed_at=envelope.created_at,
                past_due_threshold=self._past_due_threshold,
            )

        label = _outcome_label(outcome)
        logger.info(
            "stripe_webhook_transition",
            event_id=envelope.event_id,
            event_type=envelope.event_type,
            subscription_id=str(subscription.id),
            previous_status=outcome.previous_status,
            status=outcome.status,
            outcome=label,
        )
        return label

    async def process_event(self, event: dict[str, Any]) -> str:
        envelope = parse_event(event)
        try:
            async with self._session_factory.begin() as session:
                created = await WebhookEventsRepo.try_create_processing_slot(
                    session,
                    event_id=envelope.event_id,
                    event_type=envelope.event_type,
                    external_subscription_id=envelope.external_subscription_id,
                    payload_sha256=envelope.payload_sha256,
                    event_created_at=envelope.created_at,
                )
                if not created:
                    existing = await WebhookEventsRepo.get_by_event_id(session, envelope.event_id)
                    if existing is not None and existing.payload_sha256 != envelope.payload_sha256:
                        logger.error(
                            "stripe_webhook_event_id_conflict",
                            event_id=envelope.event_id,
                            event_type=envelope.event_type,
                            stored_sha256=existing.payload_sha256,
                            received_sha256=envelope.payload_sha256,
                        )
                        raise WebhookEventConflictError(envelope.event_id)
                    logger.info("stripe_webhook_duplicate", event_id=envelope.event_id)
                    return OUTCOME_DUPLICATE

                outcome = await self._apply(session, envelope)
                await WebhookEventsRepo.set_outcome(
                    session,
                    event_id=envelope.event_id,
                    outcome=outcome,
                    processed_at=datetime.now(timezone.utc),
                )
        except _OrphanEvent:
            logger.warning(
                "stripe_webhook_orphan",
                event_id=envelope.event_id,
                event_type=envelope.event_type,
                external_subscription_id=envelope.external_subscription_id,
            )
            return OUTCOME_ORPHAN
        return outcome
