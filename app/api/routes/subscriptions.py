from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from app.billing.container import BillingContainer, get_billing_container
from app.billing.errors import (
    BillingProfileMissingError,
    DuplicateActiveSubscriptionError,
    GatewayPermanentError,
    GatewayTransientError,
    InvalidTierError,
    SubscriptionForbiddenError,
    SubscriptionGatewayPermanentError,
    SubscriptionGatewayTransientError,
    SubscriptionNotFoundError,
    SubscriptionNotReactivatableError,
)
from app.core.config import get_settings
from app.db.models.subscriptions import Subscription
from app.services.internal_auth import INTERNAL_TOKEN_HEADER, internal_access_denial

router = APIRouter(tags=["subscriptions"])
logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES: tuple[tuple[type[Exception], int, str], ...] = (
    (SubscriptionNotFoundError, status.HTTP_404_NOT_FOUND, "E_NOT_FOUND"),
    (SubscriptionForbiddenError, status.HTTP_403_FORBIDDEN, "E_FORBIDDEN"),
    (DuplicateActiveSubscriptionError, status.HTTP_409_CONFLICT, "E_DUPLICATE_ACTIVE_SUBSCRIPTION"),
    (SubscriptionNotReactivatableError, status.HTTP_409_CONFLICT, "E_NOT_REACTIVATABLE"),
    (InvalidTierError, status.HTTP_422_UNPROCESSABLE_ENTITY, "E_INVALID_TIER"),
    (BillingProfileMissingError, status.HTTP_422_UNPROCESSABLE_ENTITY, "E_BILLING_PROFILE_MISSING"),
    (SubscriptionGatewayTransientError, status.HTTP_503_SERVICE_UNAVAILABLE, "E_GATEWAY_TRANSIENT"),
    (GatewayTransientError, status.HTTP_503_SERVICE_UNAVAILABLE, "E_GATEWAY_TRANSIENT"),
    (SubscriptionGatewayPermanentError, status.HTTP_402_PAYMENT_REQUIRED, "E_GATEWAY_PERMANENT"),
    (GatewayPermanentError, status.HTTP_402_PAYMENT_REQUIRED, "E_GATEWAY_PERMANENT"),
)


class SubscriptionCreateRequest(BaseModel):
    creator_id: str = Field(min_length=1, max_length=64)
    tier_id: UUID


class SubscriptionUpdateRequest(BaseModel):
    action: Literal["cancel", "reactivate"]


class SubscriptionResponse(BaseModel):
    id: UUID
    subscriber_id: str
    creator_id: str
    tier_id: UUID
    kind: str
    status: str
    billing_period: str
    currency: str
    total_amount: int = Field(ge=0)
    platform_fee: int = Field(ge=0)
    creator_earnings: int = Field(ge=0)
    external_subscription_id: str | None
    cancel_at_period_end: bool
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime
    idempotent_replay: bool = False


def _to_response(subscription: Subscription, *, idempotent_replay: bool = False) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        subscriber_id=subscription.subscriber_id,
        creator_id=subscription.creator_id,
        tier_id=subscription.tier_id,
        kind=subscription.kind,
        status=subscription.status,
        billing_period=subscription.billing_period,
        currency=subscription.currency,
        total_amount=subscription.total_amount,
        platform_fee=subscription.platform_fee,
        creator_earnings=subscription.creator_earnings,
        external_subscription_id=subscription.external_subscription_id,
        cancel_at_period_end=subscription.cancel_at_period_end,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        cancelled_at=subscription.cancelled_at,
        created_at=subscription.created_at,
        updated_at=subscription.updated_at,
        idempotent_replay=idempotent_replay,
    )


def _http_error(exc: Exception) -> HTTPException:
    for error_type, status_code, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            detail: dict[str, object] = {"code": code}
            subscription_id = getattr(exc, "subscription_id", None)
            if subscription_id is not None:
                detail["subscription_id"] = str(subscription_id)
            return HTTPException(status_code=status_code, detail=detail)
    raise exc


def _authenticated_subscriber(request: Request) -> str:
    settings = get_settings()
    denial = internal_access_denial(
        request,
        header_name=INTERNAL_TOKEN_HEADER,
        expected_token=settings.internal_api_token,
    )
    if denial is not None:
        logger.warning("subscriptions_auth_failed", reason=denial)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"code": "E_FORBIDDEN"})

    subscriber_id = (request.headers.get("X-User-Id") or "").strip()
    if not subscriber_id or len(subscriber_id) > 64:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"code": "E_UNAUTHENTICATED"})
    return subscriber_id


@router.post(
    "/subscriptions",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_subscription(
    payload: SubscriptionCreateRequest,
    request: Request,
    container: BillingContainer = Depends(get_billing_container),
) -> SubscriptionResponse:
    subscriber_id = _authenticated_subscriber(request)
    try:
        subscription = await container.lifecycle.create_subscription(
            subscriber_id=subscriber_id,
            creator_id=payload.creator_id,
            tier_id=payload.tier_id,
        )
    except (
        InvalidTierError,
        DuplicateActiveSubscriptionError,
        BillingProfileMissingError,
        SubscriptionGatewayTransientError,
        SubscriptionGatewayPermanentError,
    ) as exc:
        raise _http_error(exc) from exc
    return _to_response(subscription)


@router.get("/subscriptions", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    request: Request,
    container: BillingContainer = Depends(get_billing_container),
) -> list[SubscriptionResponse]:
    subscriber_id = _authenticated_subscriber(request)
    subscriptions = await container.lifecycle.list_subscriptions(subscriber_id=subscriber_id)
    return [_to_response(subscription) for subscription in subscriptions]


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: UUID,
    payload: SubscriptionUpdateRequest,
    request: Request,
    container: BillingContainer = Depends(get_billing_container),
) -> SubscriptionResponse:
    requester_id = _authenticated_subscriber(request)
    try:
        result = await container.lifecycle.update_subscription(
            subscription_id=subscription_id,
            requester_id=requester_id,
            action=payload.action,
        )
    except (
        SubscriptionNotFoundError,
        SubscriptionForbiddenError,
        SubscriptionNotReactivatableError,
        DuplicateActiveSubscriptionError,
        GatewayTransientError,
        GatewayPermanentError,
    ) as exc:
        raise _http_error(exc) from exc
    return _to_response(result.subscription, idempotent_replay=result.idempotent_replay)
