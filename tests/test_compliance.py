"""Tests for contractor compliance checks and the compliance dashboard."""
from datetime import date, datetime

import pytest

from app.fleet.db import session_scope
from app.fleet.modules.compliance.models import ContractorVehicleCheck
from app.fleet.modules.compliance.service import format_name, format_vehicle_label, notification_at, week_start


@pytest.fixture()
def pair(client, login):
    login(client)
    driver = client.post(
        "/api/drivers",
        json={"first_name": "Casey", "last_name": "Contractor", "email": "casey@example.com", "phone": "0412345678"},
    ).json["driver"]
    vehicle = client.post(
        "/api/vehicles",
        json={"year": 2020, "make": "Ford", "model": "Ranger", "license_plate": "CMP001", "vin": "FORD0000001"},
    ).json["vehicle"]
    return driver, vehicle


def _schedule(client, driver, vehicle, week="2025-11-19"):
    return client.post("/api/compliance/checks", json={"driver_id": driver["id"], "vehicle_id": vehicle["id"], "week": week})


def test_week_helpers():
    assert week_start(date(2025, 11, 19)) == date(2025, 11, 17)
    assert week_start(date(2025, 11, 17)) == date(2025, 11, 17)
    assert notification_at(date(2025, 11, 17)).isoformat() == "2025-11-19T16:00:00"


def test_formatting_helpers():
    assert format_name(" Casey ", None) == "Casey"
    assert format_name(None, "") == "Unknown"
    assert format_name(None, None, "Unassigned driver") == "Unassigned driver"
    assert format_vehicle_label("CMP001", 2020, "Ford", "Ranger") == "CMP001 • 2020 Ford Ranger"
    assert format_vehicle_label(None, None, "Ford", None) == "Ford"
    assert format_vehicle_label(None, None, None, None) == "Vehicle details unavailable"


def test_schedule_normalizes_to_monday(client, pair):
    driver, vehicle = pair
    r = _schedule(client, driver, vehicle)
    assert r.status_code == 201
    check = r.json["check"]
    assert check["cycle_week_start"] == "2025-11-17"
    assert check["status"] == "pending"
    assert check["vehicle_label"] == "CMP001 • 2020 Ford Ranger"


def test_schedule_duplicate_and_missing(client, pair):
    driver, vehicle = pair
    _schedule(client, driver, vehicle)
    r = _schedule(client, driver, vehicle, week="2025-11-21")
    assert r.status_code == 400
    assert "already scheduled" in r.json["error"]

    r = client.post("/api/compliance/checks", json={"driver_id": 999, "vehicle_id": vehicle["id"]})
    assert r.status_code == 404
    r = client.post("/api/compliance/checks", json={"vehicle_id": vehicle["id"]})
    assert r.status_code == 400
    r = _schedule(client, driver, vehicle, week="19/11/2025")
    assert r.status_code == 400


def test_submit_and_complete(client, pair):
    driver, vehicle = pair
    check = _schedule(client, driver, vehicle).json["check"]

    r = client.post(f"/api/compliance/checks/{check['id']}/submit")
    assert r.status_code == 200
    assert r.json["check"]["submitted_at"]
    r = client.post(f"/api/compliance/checks/{check['id']}/submit")
    assert r.status_code == 400

    r = client.post(f"/api/compliance/checks/{check['id']}/complete")
    assert r.status_code == 200
    assert r.json["check"]["status"] == "complete"
    assert r.json["check"]["completed_by"] == "System Administrator"
    r = client.post(f"/api/compliance/checks/{check['id']}/complete")
    assert r.status_code == 400
    assert r.json["error"] == "Check is already complete"

    r = client.post("/api/compliance/checks/999/complete")
    assert r.status_code == 404


def test_contractor_checks_summaries(client, pair):
    driver, vehicle = pair
    other = client.post("/api/drivers", json={"first_name": "Robin", "last_name": "Other"}).json["driver"]
    first = _schedule(client, driver, vehicle).json["check"]
    _schedule(client, other, vehicle)
    client.post(f"/api/compliance/checks/{first['id']}/complete")

    r = client.get("/api/compliance/checks?week=2025-11-19")
    assert r.status_code == 200
    data = r.json
    assert data["week"] == "2025-11-17"
    assert data["week_end"] == "2025-11-23"
    assert data["notification_at"] == "2025-11-19T16:00:00"
    assert data["weeks"] == ["2025-11-17"]
    assert data["summary"] == {"total": 2, "completed": 1, "pending": 1, "submitted": 0}

    # filtered_summary follows the search but not the status filter
    r = client.get("/api/compliance/checks?week=2025-11-17&search=casey&status=pending")
    assert r.json["filtered_summary"] == {"total": 1, "completed": 1, "pending": 0, "submitted": 0}
    assert r.json["checks"] == []

    r = client.get("/api/compliance/checks?week=2025-11-17&search=0412345678")
    assert [c["driver_name"] for c in r.json["checks"]] == ["Casey Contractor"]

    r = client.get("/api/compliance/checks?week=bad")
    assert r.status_code == 400


def test_checks_listed_most_recently_updated_first(app, client, pair):
    driver, vehicle = pair
    other = client.post("/api/drivers", json={"first_name": "Robin", "last_name": "Other"}).json["driver"]
    first = _schedule(client, driver, vehicle).json["check"]
    second = _schedule(client, other, vehicle).json["check"]
    with session_scope(app) as s:
        s.get(ContractorVehicleCheck, first["id"]).updated_at = datetime(2025, 11, 17, 9, 0)
        s.get(ContractorVehicleCheck, second["id"]).updated_at = datetime(2025, 11, 17, 10, 0)

    r = client.get("/api/compliance/checks?week=2025-11-17")
    assert [c["driver_name"] for c in r.json["checks"]] == ["Robin Other", "Casey Contractor"]

    client.post(f"/api/compliance/checks/{first['id']}/submit")
    r = client.get("/api/compliance/checks?week=2025-11-17")
    assert [c["driver_name"] for c in r.json["checks"]] == ["Casey Contractor", "Robin Other"]


def test_default_weeks_when_empty(client, login):
    login(client)
    r = client.get("/api/compliance/checks")
    assert r.status_code == 200
    assert r.json["weeks"] == ["2025-12-03", "2025-11-26", "2025-11-19"]
    assert r.json["summary"]["total"] == 0


def test_dashboard_metrics(client, pair):
    driver, vehicle = pair
    check = _schedule(client, driver, vehicle).json["check"]
    _schedule(client, driver, vehicle, week="2025-12-03")
    client.post(f"/api/compliance/checks/{check['id']}/complete")

    r = client.get("/api/compliance/dashboard")
    metrics = r.json["metrics"]
    assert metrics == {"total": 2, "open": 1, "completed": 1, "pending_submissions": 2, "completion_rate": 50}
    assert len(r.json["activity"]) == 2

    r = client.get("/api/compliance/dashboard?start=2025-12-01&end=2025-12-31")
    assert r.json["metrics"]["total"] == 1
    assert r.json["range"] == {"start": "2025-12-01", "end": "2025-12-31"}

    r = client.get("/api/compliance/dashboard?start=nope")
    assert r.status_code == 400


def test_compliance_pages(client, pair):
    driver, vehicle = pair
    r = client.post(
        "/dashboard/compliance/contractor-checks",
        data={"driver_id": driver["id"], "vehicle_id": vehicle["id"], "week": "2025-11-19"},
    )
    assert r.status_code == 302
    assert "week=2025-11-17" in r.headers["Location"]

    r = client.get(r.headers["Location"])
    assert r.status_code == 200
    assert b"Casey Contractor" in r.data

    r = client.get("/dashboard/compliance?start=2025-11-01&end=2025-12-31")
    assert r.status_code == 200


def test_viewer_cannot_schedule(client, login, pair):
    driver, vehicle = pair
    viewer = client.application.test_client()
    login(viewer, "viewer@example.com")
    r = viewer.get("/api/compliance/checks")
    assert r.status_code == 200
    r = _schedule(viewer, driver, vehicle)
    assert r.status_code == 403
