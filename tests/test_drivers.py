"""Tests for the drivers module."""


def test_create_driver_normalizes_email(client, login):
    login(client)
    r = client.post(
        "/api/drivers",
        json={"first_name": " Jane ", "last_name": "Citizen", "email": "Jane@Example.COM", "phone": "04 1234 5678"},
    )
    assert r.status_code == 201
    d = r.json["driver"]
    assert d["first_name"] == "Jane"
    assert d["email"] == "jane@example.com"
    assert d["full_name"] == "Jane Citizen"


def test_create_driver_validation(client, login):
    login(client)
    r = client.post("/api/drivers", json={"first_name": "", "last_name": "X", "email": "bad", "phone": "12345"})
    assert r.status_code == 400
    details = r.json["details"]
    assert "First name is required." in details
    assert "Invalid email address." in details
    assert any(d.startswith("Invalid phone number") for d in details)


def test_list_and_search_drivers(client, login):
    login(client)
    for first in ("Alice", "Bob", "Carol"):
        client.post("/api/drivers", json={"first_name": first, "last_name": "Driver"})
    r = client.get("/api/drivers?search=bo")
    assert [d["first_name"] for d in r.json["drivers"]] == ["Bob"]
    r = client.get("/api/drivers?limit=2")
    assert r.json["total"] == 3
    assert r.json["total_pages"] == 2


def test_update_and_get_driver(client, login):
    login(client)
    d = client.post("/api/drivers", json={"first_name": "Dan", "last_name": "Driver"}).json["driver"]
    r = client.put(f"/api/drivers/{d['id']}", json={"phone": "+61412345678"})
    assert r.status_code == 200
    assert r.json["driver"]["phone"] == "+61412345678"
    assert r.json["driver"]["last_name"] == "Driver"

    r = client.get(f"/api/drivers/{d['id']}")
    assert r.status_code == 200
    assert r.json["agreements"] == []
    assert r.json["stats"] == {"total": 0, "active": 0}


def test_delete_driver_blocked_by_compliance_history(client, login):
    login(client)
    d = client.post("/api/drivers", json={"first_name": "Eve", "last_name": "Driver"}).json["driver"]
    v = client.post(
        "/api/vehicles",
        json={"year": 2019, "make": "Kia", "model": "Carnival", "license_plate": "KIA001", "vin": "KNA000001"},
    ).json["vehicle"]
    r = client.post("/api/compliance/checks", json={"driver_id": d["id"], "vehicle_id": v["id"], "week": "2025-11-19"})
    assert r.status_code == 201

    r = client.delete(f"/api/drivers/{d['id']}")
    assert r.status_code == 400
    assert r.json["error"] == "Cannot delete a driver with compliance check history."


def test_delete_driver(client, login):
    login(client)
    d = client.post("/api/drivers", json={"first_name": "Fay", "last_name": "Driver"}).json["driver"]
    r = client.delete(f"/api/drivers/{d['id']}")
    assert r.status_code == 200
    r = client.get(f"/api/drivers/{d['id']}")
    assert r.status_code == 404


def test_driver_pages(client, login):
    login(client)
    r = client.post("/dashboard/drivers/new", data={"first_name": "Gus", "last_name": "Driver", "email": "gus@example.com"})
    assert r.status_code == 302
    r = client.get(r.headers["Location"])
    assert r.status_code == 200
    assert b"gus@example.com" in r.data
    r = client.get("/dashboard/drivers")
    assert r.status_code == 200
    assert b"Gus" in r.data
