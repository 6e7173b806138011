from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class BillingProfile(Base):
    __tablename__ = "billing_profiles"

    subscriber_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    processor_customer_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
