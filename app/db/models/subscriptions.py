from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','active','past_due','cancelled','reactivated_pending')",
            name="ck_subscriptions_status",
        ),
        CheckConstraint(
            "kind IN ('processor_backed','synthetic')",
            name="ck_subscriptions_kind",
        ),
        CheckConstraint(
            "billing_period IN ('monthly','yearly')",
            name="ck_subscriptions_billing_period",
        ),
        CheckConstraint("total_amount >= 0", name="ck_subscriptions_total_non_negative"),
        CheckConstraint("platform_fee >= 0", name="ck_subscriptions_fee_non_negative"),
        CheckConstraint("creator_earnings >= 0", name="ck_subscriptions_earnings_non_negative"),
        CheckConstraint(
            "platform_fee + creator_earnings = total_amount",
            name="ck_subscriptions_fee_split",
        ),
        CheckConstraint("failed_payment_count >= 0", name="ck_subscriptions_failed_payments_non_negative"),
        Index("idx_subscriptions_subscriber_created", "subscriber_id", "created_at"),
        Index("idx_subscriptions_creator", "creator_id"),
        Index("idx_subscriptions_status_updated", "status", "updated_at"),
        Index(
            "uq_subscriptions_live_subscriber_creator_tier",
            "subscriber_id",
            "creator_id",
            "tier_id",
            unique=True,
            postgresql_where=text("status IN ('pending','active','past_due','reactivated_pending')"),
        ),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    subscriber_id: Mapped[str] = mapped_column(String(64), nullable=False)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tier_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("subscription_tiers.id"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    billing_period: Mapped[str] = mapped_column(String(16), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default=text("'usd'"))
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    creator_earnings: Mapped[int] = mapped_column(Integer, nullable=False)
    external_subscription_id: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    processor_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_payment_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    failure_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(96), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
