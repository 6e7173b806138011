from __future__ import annotations

import json

import stripe


class InvalidWebhookSignatureError(Exception):
    pass


class InvalidWebhookPayloadError(ValueError):
    pass


def verify_webhook_signature(
    *,
    payload: bytes,
    signature_header: str | None,
    secret: str,
    tolerance_seconds: int,
) -> None:
    if not secret or not signature_header:
        raise InvalidWebhookSignatureError("missing webhook secret or signature header")
    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            signature_header,
            secret,
            tolerance_seconds,
        )
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
        raise InvalidWebhookSignatureError(str(exc)) from exc


def decode_event(payload: bytes) -> dict[str, object]:
    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise InvalidWebhookPayloadError("webhook body is not valid JSON") from exc
    if not isinstance(event, dict):
        raise InvalidWebhookPayloadError("webhook body must be a JSON object")
    return event


def extract_event_id(event: object) -> str | None:
    if not isinstance(event, dict):
        return None
    event_id = event.get("id")
    if isinstance(event_id, str) and event_id:
        return event_id
    return None
