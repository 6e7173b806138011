from __future__ import annotations

from collections.abc import Iterator
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from app.api.routes import subscriptions as subscriptions_routes
from app.billing.container import get_billing_container
from app.billing.errors import (
    DuplicateActiveSubscriptionError,
    GatewayTransientError,
    InvalidTierError,
    SubscriptionForbiddenError,
    SubscriptionGatewayPermanentError,
    SubscriptionGatewayTransientError,
    SubscriptionNotFoundError,
    SubscriptionNotReactivatableError,
)
from app.billing.types import SubscriptionActionResult
from app.main import app
from tests.billing.billing_fixtures import make_subscription

AUTH_HEADERS = {"X-Internal-Token": "internal-secret", "X-User-Id": "fan_1"}


class _StubLifecycle:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, object]]] = []
        self.error: Exception | None = None
        self.subscription = make_subscription()
        self.replay = False

    async def create_subscription(self, **kwargs: object):
        self.calls.append(("create", kwargs))
        if self.error is not None:
            raise self.error
        return self.subscription

    async def list_subscriptions(self, **kwargs: object):
        self.calls.append(("list", kwargs))
        return [self.subscription]

    async def update_subscription(self, **kwargs: object) -> SubscriptionActionResult:
        self.calls.append(("update", kwargs))
        if self.error is not None:
            raise self.error
        return SubscriptionActionResult(subscription=self.subscription, idempotent_replay=self.replay)


@pytest.fixture
def lifecycle(monkeypatch: pytest.MonkeyPatch) -> Iterator[_StubLifecycle]:
    monkeypatch.setattr(
        subscriptions_routes,
        "get_settings",
        lambda: SimpleNamespace(internal_api_token="internal-secret"),
    )
    stub = _StubLifecycle()
    app.dependency_overrides[get_billing_container] = lambda: SimpleNamespace(lifecycle=stub)
    yield stub
    app.dependency_overrides.pop(get_billing_container, None)


def test_create_subscription_returns_created_record(lifecycle: _StubLifecycle) -> None:
    tier_id = uuid4()
    client = TestClient(app)

    response = client.post(
        "/subscriptions",
        json={"creator_id": "creator_1", "tier_id": str(tier_id)},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["id"] == str(lifecycle.subscription.id)
    assert body["status"] == "active"
    assert body["total_amount"] == 1999
    assert body["platform_fee"] + body["creator_earnings"] == body["total_amount"]
    assert lifecycle.calls == [
        ("create", {"subscriber_id": "fan_1", "creator_id": "creator_1", "tier_id": tier_id}),
    ]


def test_create_subscription_rejects_missing_internal_token(lifecycle: _StubLifecycle) -> None:
    client = TestClient(app)

    response = client.post(
        "/subscriptions",
        json={"creator_id": "creator_1", "tier_id": str(uuid4())},
        headers={"X-User-Id": "fan_1"},
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}
    assert lifecycle.calls == []


def test_create_subscription_requires_subscriber_identity(lifecycle: _StubLifecycle) -> None:
    client = TestClient(app)

    response = client.post(
        "/subscriptions",
        json={"creator_id": "creator_1", "tier_id": str(uuid4())},
        headers={"X-Internal-Token": "internal-secret"},
    )

    assert response.status_code == 401
    assert response.json() == {"detail": {"code": "E_UNAUTHENTICATED"}}


@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (InvalidTierError("tier"), 422, "E_INVALID_TIER"),
        (DuplicateActiveSubscriptionError("dup"), 409, "E_DUPLICATE_ACTIVE_SUBSCRIPTION"),
        (SubscriptionGatewayPermanentError(UUID(int=1), code="card_declined"), 402, "E_GATEWAY_PERMANENT"),
    ],
)
def test_create_subscription_maps_domain_errors(
    lifecycle: _StubLifecycle,
    error: Exception,
    status_code: int,
    code: str,
) -> None:
    lifecycle.error = error
    client = TestClient(app)

    response = client.post(
        "/subscriptions",
        json={"creator_id": "creator_1", "tier_id": str(uuid4())},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == status_code
    assert response.json()["detail"]["code"] == code


def test_create_subscription_reports_pending_record_on_gateway_outage(lifecycle: _StubLifecycle) -> None:
    pending_id = uuid4()
    lifecycle.error = SubscriptionGatewayTransientError(pending_id)
    client = TestClient(app)

    response = client.post(
        "/subscriptions",
        json={"creator_id": "creator_1", "tier_id": str(uuid4())},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 503
    assert response.json() == {
        "detail": {"code": "E_GATEWAY_TRANSIENT", "subscription_id": str(pending_id)},
    }


def test_list_subscriptions_scopes_to_requester(lifecycle: _StubLifecycle) -> None:
    client = TestClient(app)

    response = client.get("/subscriptions", headers=AUTH_HEADERS)

    assert response.status_code == 200
    assert [item["id"] for item in response.json()] == [str(lifecycle.subscription.id)]
    assert lifecycle.calls == [("list", {"subscriber_id": "fan_1"})]


def test_update_subscription_passes_action_and_replay_flag(lifecycle: _StubLifecycle) -> None:
    lifecycle.replay = True
    subscription_id = uuid4()
    client = TestClient(app)

    response = client.patch(
        f"/subscriptions/{subscription_id}",
        json={"action": "cancel"},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["idempotent_replay"] is True
    assert lifecycle.calls == [
        ("update", {"subscription_id": subscription_id, "requester_id": "fan_1", "action": "cancel"}),
    ]


def test_update_subscription_rejects_unknown_action(lifecycle: _StubLifecycle) -> None:
    client = TestClient(app)

    response = client.patch(f"/subscriptions/{uuid4()}", json={"action": "pause"}, headers=AUTH_HEADERS)

    assert response.status_code == 422
    assert lifecycle.calls == []


@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (SubscriptionNotFoundError("missing"), 404, "E_NOT_FOUND"),
        (SubscriptionForbiddenError("other"), 403, "E_FORBIDDEN"),
        (SubscriptionNotReactivatableError("ended"), 409, "E_NOT_REACTIVATABLE"),
        (GatewayTransientError("timeout", code="timeout"), 503, "E_GATEWAY_TRANSIENT"),
    ],
)
def test_update_subscription_maps_domain_errors(
    lifecycle: _StubLifecycle,
    error: Exception,
    status_code: int,
    code: str,
) -> None:
    lifecycle.error = error
    client = TestClient(app)

    response = client.patch(f"/subscriptions/{uuid4()}", json={"action": "reactivate"}, headers=AUTH_HEADERS)

    assert response.status_code == status_code
    assert response.json() == {"detail": {"code": code}}
