from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.billing.container import BillingContainer, get_billing_container
from app.billing.errors import WebhookEventConflictError, WebhookPayloadError
from app.billing.webhooks import OUTCOME_ORPHAN
from app.core.config import get_settings
from app.services.alerts import send_ops_alert
from app.services.stripe_webhooks import (
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    decode_event,
    extract_event_id,
    verify_webhook_signature,
)

router = APIRouter(tags=["stripe"])
logger = structlog.get_logger(__name__)


def _status_response(status_code: int, label: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": label})


@router.post("/webhook/stripe")
async def stripe_webhook(
    request: Request,
    container: BillingContainer = Depends(get_billing_container),
) -> JSONResponse:
    settings = get_settings()
    payload = await request.body()
    try:
        verify_webhook_signature(
            payload=payload,
            signature_header=request.headers.get("Stripe-Signature"),
            secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )
    except InvalidWebhookSignatureError:
        logger.warning("stripe_webhook_invalid_signature")
        return _status_response(status.HTTP_400_BAD_REQUEST, "invalid_signature")

    try:
        event = decode_event(payload)
        outcome = await container.webhooks.process_event(event)
    except (InvalidWebhookPayloadError, WebhookPayloadError) as exc:
        logger.warning("stripe_webhook_invalid_payload", error=str(exc))
        return _status_response(status.HTTP_400_BAD_REQUEST, "invalid_payload")
    except WebhookEventConflictError as exc:
        await send_ops_alert(
            event="stripe_webhook_event_id_conflict",
            payload={"event_id": exc.event_id},
        )
        return _status_response(status.HTTP_409_CONFLICT, "conflict")

    if outcome == OUTCOME_ORPHAN:
        # Not acknowledged, so the processor redelivers once the record exists.
        return _status_response(status.HTTP_409_CONFLICT, OUTCOME_ORPHAN)

    logger.info("stripe_webhook_processed", event_id=extract_event_id(event), outcome=outcome)
    return _status_response(status.HTTP_200_OK, outcome)
