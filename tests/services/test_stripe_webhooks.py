from __future__ import annotations

import hashlib
import hmac
import json
import time

import pytest

from app.services.stripe_webhooks import (
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    decode_event,
    extract_event_id,
    verify_webhook_signature,
)

SECRET = "whsec_test_secret"


def _signature_header(payload: bytes, *, secret: str = SECRET, timestamp: int | None = None) -> str:
    signed_at = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{signed_at}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={signed_at},v1={digest}"


def test_verify_webhook_signature_accepts_valid_header() -> None:
    payload = json.dumps({"id": "evt_1"}).encode("utf-8")

    verify_webhook_signature(
        payload=payload,
        signature_header=_signature_header(payload),
        secret=SECRET,
        tolerance_seconds=300,
    )


def test_verify_webhook_signature_rejects_wrong_secret() -> None:
    payload = json.dumps({"id": "evt_1"}).encode("utf-8")

    with pytest.raises(InvalidWebhookSignatureError):
        verify_webhook_signature(
            payload=payload,
            signature_header=_signature_header(payload, secret="whsec_other"),
            secret=SECRET,
            tolerance_seconds=300,
        )


def test_verify_webhook_signature_rejects_tampered_body() -> None:
    payload = json.dumps({"id": "evt_1"}).encode("utf-8")
    header = _signature_header(payload)

    with pytest.raises(InvalidWebhookSignatureError):
        verify_webhook_signature(
            payload=json.dumps({"id": "evt_2"}).encode("utf-8"),
            signature_header=header,
            secret=SECRET,
            tolerance_seconds=300,
        )


def test_verify_webhook_signature_rejects_expired_timestamp() -> None:
    payload = json.dumps({"id": "evt_1"}).encode("utf-8")

    with pytest.raises(InvalidWebhookSignatureError):
        verify_webhook_signature(
            payload=payload,
            signature_header=_signature_header(payload, timestamp=int(time.time()) - 3600),
            secret=SECRET,
            tolerance_seconds=300,
        )


def test_verify_webhook_signature_requires_header_and_secret() -> None:
    payload = b"{}"
    with pytest.raises(InvalidWebhookSignatureError):
        verify_webhook_signature(payload=payload, signature_header=None, secret=SECRET, tolerance_seconds=300)
    with pytest.raises(InvalidWebhookSignatureError):
        verify_webhook_signature(
            payload=payload,
            signature_header=_signature_header(payload),
            secret="",
            tolerance_seconds=300,
        )


def test_decode_event_requires_json_object() -> None:
    assert decode_event(b'{"id": "evt_1"}') == {"id": "evt_1"}
    with pytest.raises(InvalidWebhookPayloadError):
        decode_event(b"not json")
    with pytest.raises(InvalidWebhookPayloadError):
        decode_event(b"[1, 2]")


def test_extract_event_id() -> None:
    assert extract_event_id({"id": "evt_1"}) == "evt_1"
    assert extract_event_id({"id": ""}) is None
    assert extract_event_id(["evt_1"]) is None
