from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class SyncAuditRun(Base):
    __tablename__ = "sync_audit_runs"
    __table_args__ = (
        CheckConstraint("status IN ('OK','DIFF')", name="ck_sync_audit_runs_status"),
        CheckConstraint("checked_count >= 0", name="ck_sync_audit_runs_checked_non_negative"),
        CheckConstraint("synced_count >= 0", name="ck_sync_audit_runs_synced_non_negative"),
        Index("idx_sync_audit_runs_run_at", "run_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(8), nullable=False)
    checked_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    synced_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    mismatches: Mapped[list[dict[str, object]]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'[]'::jsonb"),
    )
