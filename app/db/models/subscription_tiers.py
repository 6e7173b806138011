from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class SubscriptionTier(Base):
    __tablename__ = "subscription_tiers"
    __table_args__ = (
        CheckConstraint("price_amount >= 0", name="ck_subscription_tiers_price_non_negative"),
        CheckConstraint(
            "billing_period IN ('monthly','yearly')",
            name="ck_subscription_tiers_billing_period",
        ),
        Index("idx_subscription_tiers_creator_active", "creator_id", "is_active"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default=text("'usd'"))
    billing_period: Mapped[str] = mapped_column(String(16), nullable=False)
    processor_price_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
