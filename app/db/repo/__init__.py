from app.db.repo.billing_profiles_repo import BillingProfilesRepo
from app.db.repo.subscription_tiers_repo import SubscriptionTiersRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.sync_audit_runs_repo import SyncAuditRunsRepo
from app.db.repo.webhook_events_repo import WebhookEventsRepo

__all__ = [
    "BillingProfilesRepo",
    "SubscriptionTiersRepo",
    "SubscriptionsRepo",
    "SyncAuditRunsRepo",
    "WebhookEventsRepo",
]
