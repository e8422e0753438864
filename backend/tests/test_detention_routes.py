from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

from app.auth.dependencies import CurrentUser
from app.common.enums import SubscriptionTier
from app.detention import routes
from conftest import FakeConvex, at, ms


@pytest.fixture()
def client(make_client) -> TestClient:
    return make_client(routes)


def freeze(monkeypatch: pytest.MonkeyPatch, moment: datetime) -> None:
    monkeypatch.setattr(routes, "utcnow", lambda: moment)


def seed_event(fake_db: FakeConvex, **overrides: Any) -> Dict[str, Any]:
    event = {
        "_id": "evt-1",
        "userId": "user-1",
        "facilityId": "fac-1",
        "eventType": "delivery",
        "status": "active",
        "hourlyRate": 75.0,
        "arrivalTime": ms(at(10)),
        "gracePeriodEnd": ms(at(12)),
    }
    event.update(overrides)
    fake_db.insert("detentionEvents", event)
    return event


def test_live_timer_endpoint(client: TestClient) -> None:
    response = client.get(
        "/detention/timer",
        params={"arrival": "2024-01-01T10:00:00Z", "now": "2024-01-01T13:00:00Z"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["elapsed_seconds"] == 10800
    assert body["detention_seconds"] == 3600
    assert body["current_earnings"] == 75
    assert body["elapsed"] == "03:00:00"
    assert body["earnings"] == "$75.00"


def test_settle_endpoint(client: TestClient) -> None:
    response = client.post(
        "/detention/settle",
        json={
            "arrival": "2024-01-01T10:00:00Z",
            "departure": "2024-01-01T13:30:00Z",
            "grace_period_minutes": 120,
            "hourly_rate": 100,
        },
    )

    assert response.status_code == 200
    assert response.json() == {
        "detention_minutes": 90,
        "total_amount": 150.0,
        "detention": "1h 30m",
        "amount": "$150.00",
    }


def test_check_in_uses_profile_defaults(
    monkeypatch: pytest.MonkeyPatch, client: TestClient, fake_db: FakeConvex
) -> None:
    freeze(monkeypatch, at(10))
    fake_db.insert("users", {"_id": "user-1", "hourlyRate": 90.0, "gracePeriodMinutes": 60})
    fake_db.insert("facilities", {"_id": "fac-1", "name": "Dallas DC", "lat": 32.7767, "lng": -96.797})

    response = client.post("/detention/events", json={"event_type": "pickup", "facility_id": "fac-1"})

    assert response.status_code == 201
    body = response.json()
    assert body["hourlyRate"] == 90.0
    assert body["gracePeriodMinutes"] == 60
    assert body["arrivalTime"] == ms(at(10))
    assert body["gracePeriodEnd"] == ms(at(11))

    stored = fake_db.tables["detentionEvents"][body["id"]]
    assert stored["status"] == "active"
    assert stored["eventType"] == "pickup"
    assert stored["facilityId"] == "fac-1"


def test_check_in_rejects_second_active_event(client: TestClient, fake_db: FakeConvex) -> None:
    seed_event(fake_db)

    response = client.post("/detention/events", json={"event_type": "delivery"})

    assert response.status_code == 409
    assert "detentionEvents:start" not in fake_db.paths()


def test_check_in_validates_billing_terms(client: TestClient, fake_db: FakeConvex) -> None:
    response = client.post("/detention/events", json={"event_type": "delivery", "hourly_rate": 5000})

    assert response.status_code == 422
    assert response.json() == {"detail": "Hourly rate must be between $0 and $1000", "field": "hourlyRate"}
    assert "detentionEvents:start" not in fake_db.paths()


def test_check_in_unknown_facility(client: TestClient) -> None:
    response = client.post("/detention/events", json={"event_type": "delivery", "facility_id": "missing"})

    assert response.status_code == 404


def test_free_tier_monthly_limit(
    monkeypatch: pytest.MonkeyPatch, make_client, fake_db: FakeConvex
) -> None:
    free_driver = CurrentUser(id="user-1", tier=SubscriptionTier.FREE)
    client = make_client(routes, free_driver)
    freeze(monkeypatch, at(9, day=20))
    for day in (2, 5, 9):
        seed_event(fake_db, _id=f"evt-{day}", status="completed", arrivalTime=ms(at(10, day=day)))
    # last month's event does not count
    seed_event(fake_db, _id="evt-old", status="paid", arrivalTime=ms(at(10, day=28)) - 40 * 86_400_000)

    response = client.post("/detention/events", json={"event_type": "delivery"})

    assert response.status_code == 402


def test_paid_tier_on_profile_lifts_free_limit(
    monkeypatch: pytest.MonkeyPatch, make_client, fake_db: FakeConvex
) -> None:
    client = make_client(routes, CurrentUser(id="user-1", tier=SubscriptionTier.FREE))
    freeze(monkeypatch, at(9, day=20))
    fake_db.insert("users", {"_id": "user-1", "subscriptionTier": "pro"})
    for day in (2, 5, 9):
        seed_event(fake_db, _id=f"evt-{day}", status="completed", arrivalTime=ms(at(10, day=day)))

    response = client.post("/detention/events", json={"event_type": "delivery"})

    assert response.status_code == 201


def test_check_in_detects_facility_from_position(
    monkeypatch: pytest.MonkeyPatch, client: TestClient, fake_db: FakeConvex
) -> None:
    freeze(monkeypatch, at(10))
    fake_db.insert("facilities", {"_id": "fac-dal", "name": "Dallas DC", "lat": 32.7767, "lng": -96.7970})
    fake_db.insert("facilities", {"_id": "fac-ftw", "name": "Fort Worth Yard", "lat": 32.7555, "lng": -97.3308})

    inside = client.post("/detention/events", json={"event_type": "pickup", "lat": 32.7772, "lng": -96.7970})

    assert inside.status_code == 201
    assert inside.json()["facilityId"] == "fac-dal"
    assert fake_db.tables["detentionEvents"][inside.json()["id"]]["facilityId"] == "fac-dal"


def test_check_in_outside_every_geofence_has_no_facility(
    monkeypatch: pytest.MonkeyPatch, client: TestClient, fake_db: FakeConvex
) -> None:
    freeze(monkeypatch, at(10))
    fake_db.insert("facilities", {"_id": "fac-dal", "name": "Dallas DC", "lat": 32.7767, "lng": -96.7970})

    response = client.post("/detention/events", json={"event_type": "pickup", "lat": 32.80, "lng": -96.7970})

    assert response.status_code == 201
    assert response.json()["facilityId"] is None


def test_get_event_returns_live_timer(
    monkeypatch: pytest.MonkeyPatch, client: TestClient, fake_db: FakeConvex
) -> None:
    seed_event(fake_db)
    freeze(monkeypatch, at(12, 30))

    response = client.get("/detention/events/evt-1")

    assert response.status_code == 200
    timer = response.json()["timer"]
    assert timer["grace_period_seconds"] == 7200
    assert timer["detention_seconds"] == 1800
    assert timer["current_earnings"] == 37.5


def test_completed_event_timer_freezes_at_departure(
    monkeypatch: pytest.MonkeyPatch, client: TestClient, fake_db: FakeConvex
) -> None:
    seed_event(fake_db, status="completed", departureTime=ms(at(13)))
    freeze(monkeypatch, at(23))

    response = client.get("/detention/events/evt-1/timer")

    assert response.json()["detention_seconds"] == 3600


def test_other_drivers_event_is_forbidden(client: TestClient, fake_db: FakeConvex) -> None:
    seed_event(fake_db, userId="someone-else")

    assert client.get("/detention/events/evt-1").status_code == 403
    assert client.get("/detention/events/nope").status_code == 404


def test_active_event_endpoint(monkeypatch: pytest.MonkeyPatch, client: TestClient, fake_db: FakeConvex) -> None:
    assert client.get("/detention/events/active").status_code == 404

    seed_event(fake_db)
    freeze(monkeypatch, at(11))
    response = client.get("/detention/events/active")

    assert response.status_code == 200
    assert response.json()["event"]["_id"] == "evt-1"
    assert response.json()["timer"]["is_in_grace_period"] is True


def test_list_events_passes_filters(client: TestClient, fake_db: FakeConvex) -> None:
    seed_event(fake_db, _id="evt-1", status="completed", arrivalTime=ms(at(8)))
    seed_event(fake_db, _id="evt-2", status="active", arrivalTime=ms(at(9)))

    response = client.get("/detention/events", params={"status": "completed"})

    assert [event["_id"] for event in response.json()] == ["evt-1"]
    assert fake_db.calls[-1] == ("query", "detentionEvents:list", {"userId": "user-1", "status": "completed"})


def test_check_out_settles_event(monkeypatch: pytest.MonkeyPatch, client: TestClient, fake_db: FakeConvex) -> None:
    seed_event(fake_db)
    freeze(monkeypatch, at(14))

    response = client.post("/detention/events/evt-1/check-out")

    assert response.status_code == 200
    body = response.json()
    assert body["detentionMinutes"] == 120
    assert body["totalAmount"] == 150
    assert body["detentionStart"] == ms(at(12))
    assert body["amount"] == "$150.00"

    stored = fake_db.tables["detentionEvents"]["evt-1"]
    assert stored["status"] == "completed"
    assert stored["departureTime"] == ms(at(14))
    assert stored["totalAmount"] == 150


def test_check_out_inside_grace_has_no_detention_start(
    monkeypatch: pytest.MonkeyPatch, client: TestClient, fake_db: FakeConvex
) -> None:
    seed_event(fake_db)
    freeze(monkeypatch, at(11))

    body = client.post("/detention/events/evt-1/check-out").json()

    assert body["detentionStart"] is None
    assert body["totalAmount"] == 0
    assert "detentionStart" not in fake_db.tables["detentionEvents"]["evt-1"]


def test_check_out_twice_conflicts(monkeypatch: pytest.MonkeyPatch, client: TestClient, fake_db: FakeConvex) -> None:
    seed_event(fake_db, status="completed", departureTime=ms(at(13)))
    freeze(monkeypatch, at(14))

    assert client.post("/detention/events/evt-1/check-out").status_code == 409


def test_delete_event_rules(client: TestClient, fake_db: FakeConvex) -> None:
    seed_event(fake_db, _id="evt-1", status="completed")
    seed_event(fake_db, _id="evt-2", status="invoiced")

    assert client.delete("/detention/events/evt-2").status_code == 409
    assert client.delete("/detention/events/evt-1").status_code == 200
    assert "evt-1" not in fake_db.tables["detentionEvents"]
