from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.auth.dependencies import CurrentUser
from app.common.enums import SubscriptionTier
from app.users import routes
from conftest import FakeConvex


@pytest.fixture()
def client(make_client, fake_db: FakeConvex) -> TestClient:
    fake_db.insert(
        "users",
        {"_id": "user-1", "email": "driver@example.com", "hourlyRate": 75.0, "gracePeriodMinutes": 120},
    )
    return make_client(routes)


def test_get_profile(client: TestClient) -> None:
    response = client.get("/users/me")

    assert response.status_code == 200
    body = response.json()
    assert body["_id"] == "user-1"
    assert body["hourlyRate"] == 75.0
    assert body["subscriptionTier"] == "pro"


def test_profile_without_stored_document(make_client) -> None:
    client = make_client(routes, CurrentUser(id="new-user", email="new@example.com", tier=SubscriptionTier.FREE))

    assert client.get("/users/me").json() == {
        "_id": "new-user",
        "email": "new@example.com",
        "subscriptionTier": "free",
    }


def test_update_profile_normalizes_phone_and_rates(client: TestClient, fake_db: FakeConvex) -> None:
    response = client.put(
        "/users/me",
        json={"phone": "+1 (214) 555-0100", "company_name": " Lone Star Haulers ", "hourly_rate": 90, "grace_period_minutes": 60},
    )

    assert response.status_code == 200
    stored = fake_db.tables["users"]["user-1"]
    assert stored["phone"] == "+12145550100"
    assert stored["companyName"] == "Lone Star Haulers"
    assert stored["hourlyRate"] == 90
    assert stored["gracePeriodMinutes"] == 60
    assert response.json()["user"]["phone"] == "+12145550100"


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"phone": "555-0100"}, "phone"),
        ({"phone": "call me maybe 2145550100"}, "phone"),
        ({"hourly_rate": 1500}, "hourlyRate"),
        ({"grace_period_minutes": 800}, "gracePeriodMinutes"),
    ],
)
def test_update_profile_rejects_invalid_values(client: TestClient, fake_db: FakeConvex, payload, field) -> None:
    response = client.put("/users/me", json=payload)

    assert response.status_code == 422
    assert response.json()["field"] == field
    assert "users:update" not in fake_db.paths()


def test_update_profile_needs_a_field(client: TestClient) -> None:
    assert client.put("/users/me", json={}).status_code == 400


def test_update_unknown_profile(make_client) -> None:
    client = make_client(routes, CurrentUser(id="ghost"))

    assert client.put("/users/me", json={"name": "Ghost"}).status_code == 404
