import pytest
from fastapi.testclient import TestClient

from conftest import OWNER_ID, PLAN_DATE
from main import app
from transport_planner.database import get_db
from transport_planner.models import Route, RouteStatus


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def sample_payload(driver_id, **overrides):
    payload = {
        "date": PLAN_DATE.isoformat(),
        "departure_minute": 9 * 60,
        "distance_km": 10.0,
        "travel_minutes": 15.0,
        "driver_id": driver_id,
        "start_latitude": 52.0,
        "start_longitude": 5.0,
        "end_latitude": 52.05,
        "end_longitude": 5.1,
        "stop_service_minutes": 12.0,
    }
    payload.update(overrides)
    return payload


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "connected"}


def test_solve_day_endpoint(client, db, make_driver, make_location):
    driver = make_driver()
    location = make_location()

    response = client.post("/api/planning/solve", json={
        "date": PLAN_DATE.isoformat(),
        "owner_id": OWNER_ID,
        "weights": {"distance": 0, "time": 70, "date": 30, "cost": 0, "overtime": 0},
    })

    assert response.status_code == 200
    body = response.json()
    assert body["date"] == PLAN_DATE.isoformat()
    assert len(body["routes"]) == 1
    route = body["routes"][0]
    assert route["driver_id"] == driver.id
    assert [s["service_location_id"] for s in route["stops"]] == [location.id]
    assert route["stops"][0]["status"] == "pending"
    assert body["unassigned"] == []
    assert db.get(Route, route["route_id"]).status == RouteStatus.temp


def test_solve_day_rejects_unknown_template(client, make_driver, make_location):
    make_driver()
    make_location()

    response = client.post("/api/planning/solve", json={
        "date": PLAN_DATE.isoformat(),
        "owner_id": OWNER_ID,
        "weight_template_id": 12345,
    })

    assert response.status_code == 400
    assert "12345" in response.json()["detail"]


def test_solve_day_validates_body(client):
    response = client.post("/api/planning/solve", json={"date": PLAN_DATE.isoformat(), "owner_id": 0})
    assert response.status_code == 422


def test_record_sample_and_review_flow(client, global_region, make_driver):
    driver = make_driver()

    response = client.post("/api/admin/travel-time/samples", json=sample_payload(driver.id))
    assert response.status_code == 201
    stat = response.json()
    assert stat["region_id"] == global_region.id
    assert stat["day_type"] == "weekday"
    assert (stat["bucket_start_hour"], stat["bucket_end_hour"]) == (9, 10)
    assert stat["total_sample_count"] == 1
    assert stat["avg_minutes_per_km"] == pytest.approx(1.5)
    assert stat["status"] == "draft"
    assert "low_sample" in stat["quality"]["flags"]
    assert [c["driver_id"] for c in stat["top_contributors"]] == [driver.id]

    stat_id = stat["id"]
    refused = client.patch(f"/api/admin/travel-time/learned/{stat_id}/status", json={"status": "approved"})
    assert refused.status_code == 409
    assert "low_sample" in refused.json()["detail"]["flags"]

    forced = client.patch(
        f"/api/admin/travel-time/learned/{stat_id}/status",
        json={"status": "approved", "force": True, "note": "checked manually"}
    )
    assert forced.status_code == 200
    assert forced.json()["status"] == "approved"
    assert forced.json()["approved_at_utc"] is not None

    listed = client.get("/api/admin/travel-time/learned", params={"status": "approved"})
    assert [s["id"] for s in listed.json()] == [stat_id]
    assert client.get("/api/admin/travel-time/learned", params={"status": "draft"}).json() == []

    reset = client.post(f"/api/admin/travel-time/learned/{stat_id}/reset")
    assert reset.status_code == 200
    body = reset.json()
    assert body["status"] == "draft"
    assert body["total_sample_count"] == 0
    assert body["avg_minutes_per_km"] is None
    assert body["approved_at_utc"] is None
    assert body["top_contributors"] == []


def test_rejecting_does_not_need_force(client, global_region, make_driver):
    driver = make_driver()
    stat_id = client.post("/api/admin/travel-time/samples", json=sample_payload(driver.id)).json()["id"]

    response = client.patch(f"/api/admin/travel-time/learned/{stat_id}/status", json={"status": "rejected"})

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["approved_at_utc"] is None


def test_sample_outside_any_region_rejected(client, make_driver):
    driver = make_driver()
    response = client.post("/api/admin/travel-time/samples", json=sample_payload(driver.id))
    assert response.status_code == 400


def test_sample_validation(client):
    response = client.post("/api/admin/travel-time/samples", json=sample_payload(1, distance_km=0))
    assert response.status_code == 422


def test_unknown_learned_stat_returns_404(client):
    assert client.get("/api/admin/travel-time/learned/999").status_code == 404
    assert client.post("/api/admin/travel-time/learned/999/reset").status_code == 404
    response = client.patch("/api/admin/travel-time/learned/999/status", json={"status": "rejected"})
    assert response.status_code == 404
