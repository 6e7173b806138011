"""creator_billing_core

Revision ID: 3a9c1e7d5b20
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "3a9c1e7d5b20"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

LIVE_STATUSES_SQL = "status IN ('pending','active','past_due','reactivated_pending')"


def upgrade() -> None:
    op.create_table(
        "subscription_tiers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("price_amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'usd'")),
        sa.Column("billing_period", sa.String(16), nullable=False),
        sa.Column("processor_price_id", sa.String(128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("price_amount >= 0", name="ck_subscription_tiers_price_non_negative"),
        sa.CheckConstraint(
            "billing_period IN ('monthly','yearly')",
            name="ck_subscription_tiers_billing_period",
        ),
    )
    op.create_index(
        "idx_subscription_tiers_creator_active",
        "subscription_tiers",
        ["creator_id", "is_active"],
    )

    op.create_table(
        "billing_profiles",
        sa.Column("subscriber_id", sa.String(64), primary_key=True),
        sa.Column("processor_customer_id", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("processor_customer_id", name="uq_billing_profiles_processor_customer_id"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("subscriber_id", sa.String(64), nullable=False),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("tier_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("billing_period", sa.String(16), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'usd'")),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("platform_fee", sa.Integer(), nullable=False),
        sa.Column("creator_earnings", sa.Integer(), nullable=False),
        sa.Column("external_subscription_id", sa.String(128), nullable=True),
        sa.Column("processor_status", sa.String(32), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_payment_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failure_reason", sa.String(64), nullable=True),
        sa.Column("idempotency_key", sa.String(96), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending','active','past_due','cancelled','reactivated_pending')",
            name="ck_subscriptions_status",
        ),
        sa.CheckConstraint("kind IN ('processor_backed','synthetic')", name="ck_subscriptions_kind"),
        sa.CheckConstraint(
            "billing_period IN ('monthly','yearly')",
            name="ck_subscriptions_billing_period",
        ),
        sa.CheckConstraint("total_amount >= 0", name="ck_subscriptions_total_non_negative"),
        sa.CheckConstraint("platform_fee >= 0", name="ck_subscriptions_fee_non_negative"),
        sa.CheckConstraint("creator_earnings >= 0", name="ck_subscriptions_earnings_non_negative"),
        sa.CheckConstraint(
            "platform_fee + creator_earnings = total_amount",
            name="ck_subscriptions_fee_split",
        ),
        sa.CheckConstraint(
            "failed_payment_count >= 0",
            name="ck_subscriptions_failed_payments_non_negative",
        ),
        sa.ForeignKeyConstraint(["tier_id"], ["subscription_tiers.id"]),
        sa.UniqueConstraint("external_subscription_id", name="uq_subscriptions_external_subscription_id"),
        sa.UniqueConstraint("idempotency_key", name="uq_subscriptions_idempotency_key"),
    )
    op.create_index(
        "idx_subscriptions_subscriber_created",
        "subscriptions",
        ["subscriber_id", "created_at"],
    )
    op.create_index("idx_subscriptions_creator", "subscriptions", ["creator_id"])
    op.create_index("idx_subscriptions_status_updated", "subscriptions", ["status", "updated_at"])
    op.create_index(
        "uq_subscriptions_live_subscriber_creator_tier",
        "subscriptions",
        ["subscriber_id", "creator_id", "tier_id"],
        unique=True,
        postgresql_where=sa.text(LIVE_STATUSES_SQL),
    )

    op.create_table(
        "webhook_events",
        sa.Column("event_id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("external_subscription_id", sa.String(128), nullable=True),
        sa.Column("payload_sha256", sa.String(64), nullable=False),
        sa.Column("outcome", sa.String(16), nullable=False),
        sa.Column("event_created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "outcome IN ('processing','applied','unchanged','stale','ignored')",
            name="ck_webhook_events_outcome",
        ),
    )
    op.create_index("idx_webhook_events_received_at", "webhook_events", ["received_at"])
    op.create_index(
        "idx_webhook_events_external_subscription",
        "webhook_events",
        ["external_subscription_id"],
    )

    op.create_table(
        "sync_audit_runs",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(8), nullable=False),
        sa.Column("checked_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("synced_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "mismatches",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.CheckConstraint("status IN ('OK','DIFF')", name="ck_sync_audit_runs_status"),
        sa.CheckConstraint("checked_count >= 0", name="ck_sync_audit_runs_checked_non_negative"),
        sa.CheckConstraint("synced_count >= 0", name="ck_sync_audit_runs_synced_non_negative"),
    )
    op.create_index("idx_sync_audit_runs_run_at", "sync_audit_runs", ["run_at"])


def downgrade() -> None:
    op.drop_index("idx_sync_audit_runs_run_at", table_name="sync_audit_runs")
    op.drop_table("sync_audit_runs")
    op.drop_index("idx_webhook_events_external_subscription", table_name="webhook_events")
    op.drop_index("idx_webhook_events_received_at", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("uq_subscriptions_live_subscriber_creator_tier", table_name="subscriptions")
    op.drop_index("idx_subscriptions_status_updated", table_name="subscriptions")
    op.drop_index("idx_subscriptions_creator", table_name="subscriptions")
    op.drop_index("idx_subscriptions_subscriber_created", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("billing_profiles")
    op.drop_index("idx_subscription_tiers_creator_active", table_name="subscription_tiers")
    op.drop_table("subscription_tiers")
