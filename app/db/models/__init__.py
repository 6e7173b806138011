from app.db.models.billing_profiles import BillingProfile
from app.db.models.subscription_tiers import SubscriptionTier
from app.db.models.subscriptions import Subscription
from app.db.models.sync_audit_runs import SyncAuditRun
from app.db.models.webhook_events import WebhookEvent

__all__ = [
    "BillingProfile",
    "Subscription",
    "SubscriptionTier",
    "SyncAuditRun",
    "WebhookEvent",
]
