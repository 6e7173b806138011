from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from app.billing import reconciliation
from app.billing.errors import GatewayTransientError, SubscriptionGatewayTransientError
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.sync_audit_runs_repo import SyncAuditRunsRepo
from app.db.session import SessionLocal
from tests.integration.billing_fixtures import (
    PERIOD_END,
    UTC,
    FakeGateway,
    _age,
    _create_profile,
    _create_tier,
    _lifecycle,
    _load,
    _reconciliation,
)


@pytest.fixture
def sent_alerts(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, object]]:
    alerts: list[dict[str, object]] = []

    async def _fake_alert(*, event: str, payload: dict[str, object]) -> bool:
        alerts.append({"event": event, "payload": payload})
        return True

    monkeypatch.setattr(reconciliation, "send_ops_alert", _fake_alert)
    return alerts


async def _setup(gateway: FakeGateway):
    tier_id = await _create_tier()
    await _create_profile("fan_1")
    lifecycle = _lifecycle(gateway)
    subscription = await lifecycle.create_subscription(
        subscriber_id="fan_1",
        creator_id="creator_1",
        tier_id=tier_id,
    )
    return lifecycle, subscription


@pytest.mark.asyncio
async def test_reconciliation_without_drift_records_ok_run(sent_alerts: list[dict[str, object]]) -> None:
    gateway = FakeGateway()
    lifecycle, _ = await _setup(gateway)

    result = await _reconciliation(lifecycle).run()

    assert result.status == "OK"
    assert result.checked_count == 1
    assert result.mismatches == []
    assert sent_alerts == []
    async with SessionLocal.begin() as session:
        runs = await SyncAuditRunsRepo.list_recent(session, limit=5)
    assert [(run.id, run.status, run.checked_count) for run in runs] == [(result.run_id, "OK", 1)]


@pytest.mark.asyncio
async def test_reconciliation_corrects_status_drift_and_alerts(sent_alerts: list[dict[str, object]]) -> None:
    gateway = FakeGateway()
    lifecycle, subscription = await _setup(gateway)
    gateway.set_state(subscription.external_subscription_id, status="unpaid")

    result = await _reconciliation(lifecycle).run()

    assert result.status == "DIFF"
    assert result.synced_count == 1
    assert result.error_count == 0
    assert [entry.as_dict() for entry in result.mismatches] == [
        {
            "subscription_id": str(subscription.id),
            "external_subscription_id": subscription.external_subscription_id,
            "issue": "status_drift",
            "resolution_action": "corrected_to_past_due",
        }
    ]
    assert (await _load(subscription.id)).status == "past_due"
    assert [alert["event"] for alert in sent_alerts] == ["subscriptions_reconciliation_diff_detected"]

    async with SessionLocal.begin() as session:
        runs = await SyncAuditRunsRepo.list_recent(session, limit=1)
    assert runs[0].status == "DIFF"
    assert runs[0].mismatches[0]["issue"] == "status_drift"


@pytest.mark.asyncio
async def test_reconciliation_corrects_billing_period_drift(sent_alerts: list[dict[str, object]]) -> None:
    gateway = FakeGateway()
    lifecycle, subscription = await _setup(gateway)
    renewed_end = PERIOD_END + timedelta(days=30)
    gateway.set_state(
        subscription.external_subscription_id,
        current_period_start=PERIOD_END,
        current_period_end=renewed_end,
    )

    result = await _reconciliation(lifecycle).run()

    assert [(entry.issue, entry.resolution_action) for entry in result.mismatches] == [
        ("period_drift", "corrected_period"),
    ]
    stored = await _load(subscription.id)
    assert stored.status == "active"
    assert stored.current_period_end == renewed_end


@pytest.mark.asyncio
async def test_reconciliation_cancels_record_missing_at_processor(sent_alerts: list[dict[str, object]]) -> None:
    gateway = FakeGateway()
    lifecycle, subscription = await _setup(gateway)
    gateway.subscriptions.clear()

    result = await _reconciliation(lifecycle).run()

    assert [(entry.issue, entry.resolution_action) for entry in result.mismatches] == [
        ("processor_resource_missing", "marked_cancelled"),
    ]
    assert result.synced_count == 1
    assert (await _load(subscription.id)).status == "cancelled"


@pytest.mark.asyncio
async def test_reconciliation_counts_unreachable_processor_as_error(sent_alerts: list[dict[str, object]]) -> None:
    gateway = FakeGateway()
    lifecycle, subscription = await _setup(gateway)
    gateway.fail_next("retrieve", GatewayTransientError("unavailable", code="api_error"), times=2)

    result = await _reconciliation(lifecycle).run()

    assert result.status == "DIFF"
    assert result.error_count == 1
    assert result.synced_count == 0
    assert [entry.issue for entry in result.mismatches] == ["retrieve_failed"]
    assert (await _load(subscription.id)).status == "active"


@pytest.mark.asyncio
async def test_reconciliation_confirms_old_pending_record_and_skips_fresh_one(
    sent_alerts: list[dict[str, object]],
) -> None:
    first_tier = await _create_tier()
    second_tier = await _create_tier(price_amount=999)
    await _create_profile("fan_1")
    gateway = FakeGateway()
    gateway.fail_next("create", GatewayTransientError("unavailable", code="api_error"), times=4)
    lifecycle = _lifecycle(gateway)
    pending_ids = []
    for tier_id in (first_tier, second_tier):
        with pytest.raises(SubscriptionGatewayTransientError) as exc_info:
            await lifecycle.create_subscription(subscriber_id="fan_1", creator_id="creator_1", tier_id=tier_id)
        pending_ids.append(exc_info.value.subscription_id)
    old_id, fresh_id = pending_ids
    await _age(old_id, by=timedelta(minutes=10))

    result = await _reconciliation(lifecycle).run()

    confirmed = await _load(old_id)
    assert confirmed.status == "active"
    assert confirmed.external_subscription_id is not None
    assert [(entry.subscription_id, entry.issue, entry.resolution_action) for entry in result.mismatches] == [
        (str(old_id), "pending_unconfirmed", "confirmed_active"),
    ]
    assert (await _load(fresh_id)).status == "pending"
    assert gateway.count("create") == 5


@pytest.mark.asyncio
async def test_reconciliation_ignores_cancelled_and_synthetic_records(sent_alerts: list[dict[str, object]]) -> None:
    gateway = FakeGateway()
    lifecycle, subscription = await _setup(gateway)
    await lifecycle.cancel_subscription(subscription_id=subscription.id, requester_id="fan_1")
    demo_tier = await _create_tier(creator_id="creator_2", processor_price_id=None)
    await _lifecycle(gateway, demo_mode=True).create_subscription(
        subscriber_id="fan_2",
        creator_id="creator_2",
        tier_id=demo_tier,
    )

    result = await _reconciliation(lifecycle).run()

    assert result.status == "OK"
    assert result.checked_count == 0
    assert gateway.count("retrieve") == 0


@pytest.mark.asyncio
async def test_reconciliation_pages_through_every_live_record(sent_alerts: list[dict[str, object]]) -> None:
    tier_id = await _create_tier()
    gateway = FakeGateway()
    lifecycle = _lifecycle(gateway)
    subscriptions = []
    for subscriber_id in ("fan_1", "fan_2", "fan_3"):
        await _create_profile(subscriber_id)
        subscriptions.append(
            await lifecycle.create_subscription(
                subscriber_id=subscriber_id,
                creator_id="creator_1",
                tier_id=tier_id,
            )
        )
    for subscription in subscriptions:
        gateway.set_state(subscription.external_subscription_id, status="unpaid")

    result = await _reconciliation(lifecycle, batch_size=1).run()

    assert result.checked_count == 3
    assert result.synced_count == 3
    assert sorted(entry.subscription_id for entry in result.mismatches) == sorted(
        str(subscription.id) for subscription in subscriptions
    )
    for subscription in subscriptions:
        assert (await _load(subscription.id)).status == "past_due"
    assert gateway.count("retrieve") == 3


@pytest.mark.asyncio
async def test_reconciliation_does_not_overwrite_newer_local_update(sent_alerts: list[dict[str, object]]) -> None:
    gateway = FakeGateway()
    lifecycle, subscription = await _setup(gateway)
    newer_update = datetime.now(UTC) + timedelta(hours=1)
    async with SessionLocal.begin() as session:
        locked = await SubscriptionsRepo.get_by_id_for_update(session, subscription.id)
        locked.updated_at = newer_update
    gateway.set_state(subscription.external_subscription_id, status="unpaid")

    result = await _reconciliation(lifecycle).run()

    assert result.synced_count == 0
    assert [(entry.issue, entry.resolution_action) for entry in result.mismatches] == [
        ("status_drift", "superseded_by_newer_update"),
    ]
    stored = await _load(subscription.id)
    assert stored.status == "active"
    assert stored.updated_at == newer_update


@pytest.mark.asyncio
async def test_reconciliation_checked_count_skips_pending_records_in_grace_period(
    sent_alerts: list[dict[str, object]],
) -> None:
    tier_id = await _create_tier()
    await _create_profile("fan_1")
    gateway = FakeGateway()
    gateway.fail_next("create", GatewayTransientError("unavailable", code="api_error"), times=2)
    lifecycle = _lifecycle(gateway)
    with pytest.raises(SubscriptionGatewayTransientError):
        await lifecycle.create_subscription(subscriber_id="fan_1", creator_id="creator_1", tier_id=tier_id)

    result = await _reconciliation(lifecycle).run()

    assert result.status == "OK"
    assert result.checked_count == 0
    assert gateway.count("create") == 2
