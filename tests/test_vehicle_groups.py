"""Tests for vehicle groups: CRUD, vehicle assignment and manager assignment."""


def _vehicle(client, plate):
    r = client.post(
        "/api/vehicles",
        json={"year": 2020, "make": "Isuzu", "model": "NPR", "license_plate": plate, "vin": f"VIN{plate}"},
    )
    assert r.status_code == 201
    return r.json["vehicle"]


def _group(client, name="North Depot", **extra):
    r = client.post("/api/vehicle-groups", json={"name": name, **extra})
    assert r.status_code == 201, r.json
    return r.json["group"]


def test_create_group_validation(client, login):
    login(client)
    r = client.post("/api/vehicle-groups", json={"name": "", "signature_mode": "triple"})
    assert r.status_code == 400
    assert "Name is required." in r.json["details"]
    assert any(d.startswith("Invalid signature mode") for d in r.json["details"])


def test_group_defaults_to_dual_signature(client, login):
    login(client)
    g = _group(client, contract_id="C-42")
    assert g["signature_mode"] == "dual"
    assert g["contract_id"] == "C-42"
    assert g["is_default"] is False


def test_assign_vehicles_moves_out_of_default(client, login):
    login(client)
    v1 = _vehicle(client, "AAA111")
    v2 = _vehicle(client, "BBB222")
    g = _group(client)

    r = client.post(f"/api/vehicle-groups/{g['id']}/vehicles", json={"vehicle_ids": [v1["id"], v2["id"]]})
    assert r.status_code == 200
    assert r.json["assigned"] == 2

    r = client.get("/api/vehicle-groups")
    stats = {row["name"]: row for row in r.json["groups"]}
    assert stats["North Depot"]["total_vehicles"] == 2
    assert stats["North Depot"]["active_vehicles"] == 2
    assert stats["Default Group"]["total_vehicles"] == 0

    r = client.get("/api/vehicle-groups?exclude_default=1")
    assert [row["name"] for row in r.json["groups"]] == ["North Depot"]

    r = client.get(f"/api/vehicles/{v1['id']}")
    assert r.json["vehicle"]["group_name"] == "North Depot"

    r = client.get("/api/vehicle-groups/non-default/vehicles")
    assert {v["license_plate"] for v in r.json["vehicles"]} == {"AAA111", "BBB222"}
    r = client.get(f"/api/vehicle-groups/non-default/vehicles?exclude_group_id={g['id']}")
    assert r.json["vehicles"] == []


def test_assign_unknown_vehicle_404(client, login):
    login(client)
    g = _group(client)
    r = client.post(f"/api/vehicle-groups/{g['id']}/vehicles", json={"vehicle_ids": [999]})
    assert r.status_code == 404
    r = client.post(f"/api/vehicle-groups/{g['id']}/vehicles", json={"vehicle_ids": []})
    assert r.status_code == 400


def test_delete_group_with_vehicles_refused(client, login):
    login(client)
    v = _vehicle(client, "CCC333")
    g = _group(client)
    client.post(f"/api/vehicle-groups/{g['id']}/vehicles", json={"vehicle_ids": [v["id"]]})

    r = client.delete(f"/api/vehicle-groups/{g['id']}")
    assert r.status_code == 400
    assert "reassign" in r.json["error"]

    # Return the vehicle, then delete succeeds
    r = client.post(f"/dashboard/vehicles/groups/{g['id']}/vehicles/{v['id']}/return")
    assert r.status_code == 302
    r = client.delete(f"/api/vehicle-groups/{g['id']}")
    assert r.status_code == 200


def test_default_group_protected(client, login):
    login(client)
    v = _vehicle(client, "DDD444")
    default_id = v["group_id"]
    r = client.put(f"/api/vehicle-groups/{default_id}", json={"name": "Renamed"})
    assert r.status_code == 400
    r = client.put(f"/api/vehicle-groups/{default_id}", json={"description": "Fleet pool"})
    assert r.status_code == 200
    client.delete(f"/api/vehicles/{v['id']}")
    r = client.delete(f"/api/vehicle-groups/{default_id}")
    assert r.status_code == 400
    assert r.json["error"] == "The Default Group cannot be deleted."


def test_manager_assignment(client, login, user_id):
    login(client)
    g = _group(client)
    manager_id = user_id("manager@example.com")
    viewer_id = user_id("viewer@example.com")

    r = client.post(f"/api/vehicle-groups/{g['id']}/managers", json={"manager_id": manager_id})
    assert r.status_code == 201
    r = client.post(f"/api/vehicle-groups/{g['id']}/managers", json={"manager_id": manager_id})
    assert r.status_code == 400
    assert r.json["error"] == "Manager is already assigned to this group"
    r = client.post(f"/api/vehicle-groups/{g['id']}/managers", json={"manager_id": viewer_id})
    assert r.status_code == 400
    r = client.post(f"/api/vehicle-groups/{g['id']}/managers", json={"manager_id": 999})
    assert r.status_code == 404

    r = client.get(f"/api/vehicle-groups/{g['id']}")
    assert [m["email"] for m in r.json["group"]["managers"]] == ["manager@example.com"]

    r = client.delete(f"/api/vehicle-groups/{g['id']}/managers?manager_id={manager_id}")
    assert r.status_code == 200
    r = client.delete(f"/api/vehicle-groups/{g['id']}/managers?manager_id={manager_id}")
    assert r.status_code == 404


def test_group_pages(client, login):
    login(client)
    _vehicle(client, "EEE555")
    r = client.post("/dashboard/vehicles/groups/new", data={"name": "South Depot", "signature_mode": "single"})
    assert r.status_code == 302
    r = client.get(r.headers["Location"])
    assert r.status_code == 200
    assert b"South Depot" in r.data
    r = client.get("/dashboard/vehicles/groups")
    assert r.status_code == 200
    assert b"Default Group" in r.data
