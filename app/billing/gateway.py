from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Protocol

import stripe
import structlog

from app.billing.errors import (
    GatewayPermanentError,
    GatewayTransientError,
    ProcessorResourceMissingError,
)
from app.billing.types import ProcessorSubscription

logger = structlog.get_logger(__name__)

TRANSIENT_HTTP_STATUSES = frozenset({409, 429, 500, 502, 503, 504})


class PaymentGateway(Protocol):
    async def create_subscription(
        self,
        *,
        customer_id: str,
        price_id: str,
        idempotency_key: str,
        correlation_id: str,
        metadata: dict[str, str],
    ) -> ProcessorSubscription: ...

    async def retrieve_subscription(
        self,
        external_subscription_id: str,
        *,
        correlation_id: str,
    ) -> ProcessorSubscription: ...

    async def cancel_subscription(
        self,
        external_subscription_id: str,
        *,
        correlation_id: str,
    ) -> ProcessorSubscription: ...

    async def reactivate_subscription(
        self,
        external_subscription_id: str,
        *,
        correlation_id: str,
    ) -> ProcessorSubscription: ...


def _field(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, IndexError, TypeError):
        return None


def _as_datetime(value: object) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _first_item(subscription: Any) -> Any:
    items = _field(_field(subscription, "items"), "data")
    if not items:
        return None
    return _field(items, 0)


def processor_subscription_from_payload(subscription: Any) -> ProcessorSubscription:
    """Builds a snapshot from a processor subscription object or its JSON form."""
    subscription_id = _field(subscription, "id")
    status = _field(subscription, "status")
    if not isinstance(subscription_id, str) or not isinstance(status, str):
        raise ValueError("subscription payload without id/status")

    # Newer API versions report the billing period on the subscription item.
    item = _first_item(subscription)
    period_start = _field(subscription, "current_period_start") or _field(item, "current_period_start")
    period_end = _field(subscription, "current_period_end") or _field(item, "current_period_end")

    return ProcessorSubscription(
        id=subscription_id,
        status=status,
        cancel_at_period_end=bool(_field(subscription, "cancel_at_period_end")),
        current_period_start=_as_datetime(period_start),
        current_period_end=_as_datetime(period_end),
        canceled_at=_as_datetime(_field(subscription, "canceled_at")),
    )


def classify_stripe_error(exc: stripe.StripeError) -> Exception:
    code = getattr(exc, "code", None)
    message = getattr(exc, "user_message", None) or str(exc)

    if isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError)):
        return GatewayTransientError(message, code=code or type(exc).__name__)
    if isinstance(exc, stripe.InvalidRequestError) and code == "resource_missing":
        return ProcessorResourceMissingError(message, code=code)
    if isinstance(exc, stripe.IdempotencyError):
        return GatewayPermanentError(message, code=code or "idempotency_error")
    if isinstance(exc, stripe.APIError):
        return GatewayTransientError(message, code=code or "api_error")

    http_status = getattr(exc, "http_status", None)
    if isinstance(http_status, int) and http_status in TRANSIENT_HTTP_STATUSES:
        return GatewayTransientError(message, code=code or f"http_{http_status}")
    return GatewayPermanentError(message, code=code or type(exc).__name__)


class StripeGateway:
    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: float,
        payment_behavior: str = "allow_incomplete",
    ) -> None:
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._payment_behavior = payment_behavior

    async def _call(
        self,
        operation: str,
        call: Callable[[], Any],
        *,
        correlation_id: str,
    ) -> ProcessorSubscription:
        if not self._api_key:
            raise GatewayPermanentError("processor is not configured", code="gateway_not_configured")

        log = logger.bind(operation=operation, correlation_id=correlation_id)
        log.info("stripe_call_started")
        try:
            raw = await asyncio.wait_for(asyncio.to_thread(call), timeout=self._timeout_seconds)
        except asyncio.TimeoutError as exc:
            log.warning("stripe_call_timeout", timeout_seconds=self._timeout_seconds)
            raise GatewayTransientError("processor call timed out", code="timeout") from exc
        except stripe.StripeError as exc:
            translated = classify_stripe_error(exc)
            log.warning(
                "stripe_call_failed",
                error_type=type(exc).__name__,
                error_code=getattr(translated, "code", None),
                transient=isinstance(translated, GatewayTransientError),
                request_id=getattr(exc, "request_id", None),
            )
            raise translated from exc

        snapshot = processor_subscription_from_payload(raw)
        log.info(
            "stripe_call_succeeded",
            external_subscription_id=snapshot.id,
            processor_status=snapshot.status,
            cancel_at_period_end=snapshot.cancel_at_period_end,
        )
        return snapshot

    async def create_subscription(
        self,
        *,
        customer_id: str,
        price_id: str,
        idempotency_key: str,
        correlation_id: str,
        metadata: dict[str, str],
    ) -> ProcessorSubscription:
        return await self._call(
            "create_subscription",
            lambda: stripe.Subscription.create(
                api_key=self._api_key,
                idempotency_key=idempotency_key,
                customer=customer_id,
                items=[{"price": price_id}],
                payment_behavior=self._payment_behavior,
                metadata=metadata,
            ),
            correlation_id=correlation_id,
        )

    async def retrieve_subscription(
        self,
        external_subscription_id: str,
        *,
        correlation_id: str,
    ) -> ProcessorSubscription:
        return await self._call(
            "retrieve_subscription",
            lambda: stripe.Subscription.retrieve(external_subscription_id, api_key=self._api_key),
            correlation_id=correlation_id,
        )

    async def cancel_subscription(
        self,
        external_subscription_id: str,
        *,
        correlation_id: str,
    ) -> ProcessorSubscription:
        return await self._call(
            "cancel_subscription",
            lambda: stripe.Subscription.modify(
                external_subscription_id,
                api_key=self._api_key,
                cancel_at_period_end=True,
            ),
            correlation_id=correlation_id,
        )

    async def reactivate_subscription(
        self,
        external_subscription_id: str,
        *,
        correlation_id: str,
    ) -> ProcessorSubscription:
        return await self._call(
            "reactivate_subscription",
            lambda: stripe.Subscription.modify(
                external_subscription_id,
                api_key=self._api_key,
                cancel_at_period_end=False,
            ),
            correlation_id=correlation_id,
        )
