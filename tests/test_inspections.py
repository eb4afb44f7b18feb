"""Tests for vehicle inspections and inspection images."""
import io

import pytest


@pytest.fixture()
def vehicle(client, login):
    login(client)
    r = client.post(
        "/api/vehicles",
        json={"year": 2022, "make": "Toyota", "model": "Corolla", "license_plate": "INS001", "vin": "JT0000000001"},
    )
    return r.json["vehicle"]


def _inspection(client, vehicle_id, **extra):
    payload = {
        "vehicle_id": vehicle_id,
        "exterior_condition": "Minor scratch rear bumper",
        "interior_condition": "Clean",
        "mechanical_condition": "Good",
        **extra,
    }
    r = client.post("/api/inspections", json=payload)
    assert r.status_code == 201, r.json
    return r.json["inspection"]


def test_create_inspection_defaults_to_draft(client, vehicle):
    i = _inspection(client, vehicle["id"])
    assert i["status"] == "draft"
    assert i["submitted_at"] is None
    assert i["inspector"] == "System Administrator"
    assert i["license_plate"] == "INS001"


def test_create_inspection_validation(client, vehicle):
    r = client.post("/api/inspections", json={"vehicle_id": vehicle["id"], "status": "approved"})
    assert r.status_code == 400
    assert "Exterior condition is required." in r.json["details"]
    assert "Status must be draft or submitted." in r.json["details"]

    r = client.post(
        "/api/inspections",
        json={"vehicle_id": 999, "exterior_condition": "a", "interior_condition": "b", "mechanical_condition": "c"},
    )
    assert r.status_code == 404


def test_submitted_inspection_sets_timestamp(client, vehicle):
    i = _inspection(client, vehicle["id"], status="submitted")
    assert i["submitted_at"] is not None

    r = client.patch(f"/api/inspections/{i['id']}", json={"status": "draft"})
    assert r.status_code == 200
    assert r.json["inspection"]["submitted_at"] is None

    r = client.patch(f"/api/inspections/{i['id']}", json={"status": "closed"})
    assert r.status_code == 400


def test_image_upload_and_attach(client, vehicle):
    r = client.post(
        "/api/inspections/images",
        data={"section": "exterior", "file": (io.BytesIO(b"\x89PNG fake"), "front.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    image = r.json["image"]
    assert image["storage_key"].startswith("inspections/exterior/")

    i = _inspection(client, vehicle["id"], images=[image])
    assert len(i["images"]) == 1
    assert i["images"][0]["section"] == "exterior"

    # Replacing the image list drops the old one
    r = client.put(f"/api/inspections/{i['id']}", json={"images": []})
    assert r.status_code == 200
    assert r.json["inspection"]["images"] == []


def test_image_upload_rejects_non_images(client, vehicle):
    r = client.post(
        "/api/inspections/images",
        data={"section": "exterior", "file": (io.BytesIO(b"text"), "notes.txt", "text/plain")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["error"] == "Only image files are allowed."

    r = client.post(
        "/api/inspections/images",
        data={"section": "roof", "file": (io.BytesIO(b"\x89PNG"), "roof.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400


def test_list_inspections_by_vehicle(client, vehicle):
    _inspection(client, vehicle["id"])
    _inspection(client, vehicle["id"], status="submitted")
    r = client.get(f"/api/inspections?vehicle_id={vehicle['id']}")
    assert r.json["total"] == 2
    r = client.get("/api/inspections?status=submitted")
    assert r.json["total"] == 1


def test_delete_inspection(client, vehicle):
    i = _inspection(client, vehicle["id"])
    r = client.delete(f"/api/inspections/{i['id']}")
    assert r.status_code == 200
    r = client.get(f"/api/inspections/{i['id']}")
    assert r.status_code == 404


def test_inspection_pages(client, vehicle):
    i = _inspection(client, vehicle["id"])
    r = client.get("/dashboard/inspections")
    assert r.status_code == 200
    assert b"INS001" in r.data
    r = client.get(f"/dashboard/inspections/{i['id']}")
    assert r.status_code == 200
    r = client.post(f"/dashboard/inspections/{i['id']}/submit")
    assert r.status_code == 302
    r = client.get(f"/api/inspections/{i['id']}")
    assert r.json["inspection"]["status"] == "submitted"
