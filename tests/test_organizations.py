import io
import itertools

import pytest

from app.fleet.modules.organizations import service

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture()
def ticking_clock(monkeypatch):
    ticks = itertools.count(1700000000000)
    monkeypatch.setattr(service, "timestamp_ms", lambda: next(ticks))


def _upload(client, data=PNG, filename="logo.png", content_type="image/png"):
    return client.post(
        "/api/upload/organization-logo",
        data={"file": (io.BytesIO(data), filename, content_type)},
        content_type="multipart/form-data",
    )


def test_save_organization(client, login):
    login(client)
    assert client.get("/api/organizations").json["organization"] is None

    r = client.post("/api/organizations", json={"name": "  Acme Fleet  "})
    assert r.status_code == 200
    org = r.json["organization"]
    assert org["name"] == "Acme Fleet"
    assert org["logo_url"] is None

    r = client.post("/api/organizations", json={"name": "Acme Logistics"})
    assert r.json["organization"]["id"] == org["id"]

    r = client.post("/api/organizations", json={"name": " "})
    assert r.status_code == 400
    assert r.json["error"] == "Organization name is required"


def test_organization_is_per_user(app, client, login):
    login(client)
    client.post("/api/organizations", json={"name": "Acme Fleet"})

    viewer = app.test_client()
    login(viewer, "viewer@example.com")
    assert viewer.get("/api/organizations").json["organization"] is None


def test_logo_upload(client, login, user_id, ticking_clock):
    login(client)
    client.post("/api/organizations", json={"name": "Acme Fleet"})

    r = _upload(client)
    assert r.status_code == 201
    key = r.json["storage_key"]
    assert key == f"organizations/{user_id('admin@example.com')}/logo-1700000000000.png"

    org = client.get("/api/organizations").json["organization"]
    assert org["logo_storage_key"] == key
    r = client.get(org["logo_url"])
    assert r.status_code == 200
    assert r.data == PNG

    # A new logo replaces and removes the previous file.
    new_key = _upload(client, filename="logo.gif", content_type="image/gif").json["storage_key"]
    assert new_key.endswith(".gif")
    assert client.get(f"/files/{key}").status_code == 404


def test_logo_upload_rejections(client, login):
    login(client)
    r = _upload(client, data=b"%PDF-1.4", filename="logo.pdf", content_type="application/pdf")
    assert r.status_code == 400
    assert r.json["error"] == "Logo must be a JPEG, PNG or GIF image"

    r = _upload(client, data=b"")
    assert r.status_code == 400

    r = client.post("/api/upload/organization-logo", data={}, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.json["error"] == "No file provided"


def test_logo_upload_without_organization_stores_file(client, login):
    login(client)
    r = _upload(client)
    assert r.status_code == 201
    assert client.get(f"/files/{r.json['storage_key']}").status_code == 200
    assert client.get("/api/organizations").json["organization"] is None


def test_profile_organization_page(client, login):
    login(client)
    r = client.post(
        "/dashboard/profile/organization",
        data={"name": "Acme Fleet", "logo": (io.BytesIO(PNG), "logo.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 302
    page = client.get("/dashboard/profile").data
    assert b'value="Acme Fleet"' in page
    assert b"/files/organizations/" in page

    r = client.post("/dashboard/profile/organization", data={"name": ""})
    assert r.status_code == 400
