from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.webhook_events import WebhookEvent


class WebhookEventsRepo:
    @staticmethod
    async def try_create_processing_slot(
        session: AsyncSession,
        *,
        event_id: str,
        event_type: str,
        external_subscription_id: str | None,
        payload_sha256: str,
        event_created_at: datetime,
    ) -> bool:
        stmt = (
            postgresql_insert(WebhookEvent)
            .values(
                event_id=event_id,
                event_type=event_type,
                external_subscription_id=external_subscription_id,
                payload_sha256=payload_sha256,
                outcome="processing",
                event_created_at=event_created_at,
                received_at=func.now(),
            )
            .on_conflict_do_nothing(index_elements=[WebhookEvent.event_id])
            .returning(WebhookEvent.event_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def get_by_event_id(session: AsyncSession, event_id: str) -> WebhookEvent | None:
        stmt = select(WebhookEvent).where(WebhookEvent.event_id == event_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def set_outcome(
        session: AsyncSession,
        *,
        event_id: str,
        outcome: str,
        processed_at: datetime,
    ) -> int:
        stmt = (
            update(WebhookEvent)
            .where(WebhookEvent.event_id == event_id)
            .values(outcome=outcome, processed_at=processed_at)
            .returning(WebhookEvent.event_id)
        )
        result = await session.execute(stmt)
        return 1 if result.scalar_one_or_none() is not None else 0
