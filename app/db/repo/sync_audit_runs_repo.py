from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.sync_audit_runs import SyncAuditRun


class SyncAuditRunsRepo:
    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        run_at: datetime,
        finished_at: datetime | None,
        status: str,
        checked_count: int,
        synced_count: int,
        error_count: int,
        mismatches: list[dict[str, object]],
    ) -> SyncAuditRun:
        run = SyncAuditRun(
            run_at=run_at,
            finished_at=finished_at,
            status=status,
            checked_count=checked_count,
            synced_count=synced_count,
            error_count=error_count,
            mismatches=mismatches,
        )
        session.add(run)
        await session.flush()
        return run

    @staticmethod
    async def list_recent(session: AsyncSession, *, limit: int) -> list[SyncAuditRun]:
        stmt = (
            select(SyncAuditRun)
            .order_by(SyncAuditRun.run_at.desc(), SyncAuditRun.id.desc())
            .limit(max(1, int(limit)))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
