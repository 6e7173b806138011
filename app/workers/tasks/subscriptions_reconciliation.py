from __future__ import annotations

from app.billing.container import get_billing_container
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app


async def run_subscriptions_reconciliation_async() -> dict[str, int | str | None]:
    result = await get_billing_container().reconciliation.run()
    return {
        "run_id": result.run_id,
        "status": result.status,
        "checked_count": result.checked_count,
        "synced_count": result.synced_count,
        "error_count": result.error_count,
        "mismatch_count": len(result.mismatches),
    }


@celery_app.task(name="app.workers.tasks.subscriptions_reconciliation.run_subscriptions_reconciliation")
def run_subscriptions_reconciliation() -> dict[str, int | str | None]:
    return run_async_job(
        run_subscriptions_reconciliation_async(),
        job_name="subscriptions_reconciliation",
    )


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "subscriptions-reconciliation-hourly": {
            "task": "app.workers.tasks.subscriptions_reconciliation.run_subscriptions_reconciliation",
            "schedule": 3600.0,
            "options": {"queue": "q_normal"},
        },
    }
)
