from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from app.billing.container import BillingContainer, get_billing_container
from app.billing.stats import collect_subscription_stats
from app.core.config import get_settings
from app.db.repo.sync_audit_runs_repo import SyncAuditRunsRepo
from app.db.session import SessionLocal
from app.services.internal_auth import (
    ADMIN_TOKEN_HEADER,
    SCHEDULER_TOKEN_HEADER,
    internal_access_denial,
)

router = APIRouter(tags=["internal", "billing"])
logger = structlog.get_logger(__name__)


class SubscriptionStatsResponse(BaseModel):
    total: int = Field(ge=0)
    active: int = Field(ge=0)
    cancelled: int = Field(ge=0)
    past_due: int = Field(ge=0)
    pending: int = Field(ge=0)
    monthly_recurring_revenue: int = Field(ge=0)


class MismatchEntryResponse(BaseModel):
    subscription_id: str
    external_subscription_id: str | None
    issue: str
    resolution_action: str | None


class SyncAuditRunResponse(BaseModel):
    id: int | None
    run_at: datetime
    finished_at: datetime | None
    status: str
    checked_count: int = Field(ge=0)
    synced_count: int = Field(ge=0)
    error_count: int = Field(ge=0)
    mismatches: list[MismatchEntryResponse]


def _assert_admin_access(request: Request) -> None:
    settings = get_settings()
    denial = internal_access_denial(
        request,
        header_name=ADMIN_TOKEN_HEADER,
        expected_token=settings.admin_api_token,
        allowlist=settings.internal_api_allowlist,
        trusted_proxies=settings.internal_api_trusted_proxies,
    )
    if denial is not None:
        logger.warning("internal_billing_auth_failed", reason=denial, path=request.url.path)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


def _assert_scheduler_access(request: Request) -> None:
    settings = get_settings()
    denial = internal_access_denial(
        request,
        header_name=SCHEDULER_TOKEN_HEADER,
        expected_token=settings.scheduler_api_token,
    )
    if denial is not None:
        logger.warning("internal_billing_auth_failed", reason=denial, path=request.url.path)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


@router.get("/internal/subscriptions/stats", response_model=SubscriptionStatsResponse)
async def get_subscription_stats(request: Request) -> SubscriptionStatsResponse:
    _assert_admin_access(request)
    async with SessionLocal.begin() as session:
        stats = await collect_subscription_stats(session)
    return SubscriptionStatsResponse(
        total=stats.total,
        active=stats.active,
        cancelled=stats.cancelled,
        past_due=stats.past_due,
        pending=stats.pending,
        monthly_recurring_revenue=stats.monthly_recurring_revenue,
    )


@router.get(
    "/internal/subscriptions/reconciliation/runs",
    response_model=list[SyncAuditRunResponse],
)
async def list_reconciliation_runs(
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
) -> list[SyncAuditRunResponse]:
    _assert_admin_access(request)
    async with SessionLocal.begin() as session:
        runs = await SyncAuditRunsRepo.list_recent(session, limit=limit)
    return [
        SyncAuditRunResponse(
            id=run.id,
            run_at=run.run_at,
            finished_at=run.finished_at,
            status=run.status,
            checked_count=run.checked_count,
            synced_count=run.synced_count,
            error_count=run.error_count,
            mismatches=[MismatchEntryResponse(**entry) for entry in run.mismatches],
        )
        for run in runs
    ]


@router.post("/internal/subscriptions/reconciliation", response_model=SyncAuditRunResponse)
async def run_reconciliation(
    request: Request,
    container: BillingContainer = Depends(get_billing_container),
) -> SyncAuditRunResponse:
    _assert_scheduler_access(request)
    result = await container.reconciliation.run()
    return SyncAuditRunResponse(
        id=result.run_id,
        run_at=result.run_at,
        finished_at=result.finished_at,
        status=result.status,
        checked_count=result.checked_count,
        synced_count=result.synced_count,
        error_count=result.error_count,
        mismatches=[MismatchEntryResponse(**entry.as_dict()) for entry in result.mismatches],
    )
