from app.workers.tasks.subscriptions_reconciliation import run_subscriptions_reconciliation

__all__ = [
    "run_subscriptions_reconciliation",
]
