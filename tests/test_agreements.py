"""Tests for agreement templates, drafting, e-signature, termination and export."""
import base64
import io
import zipfile

import pytest

from app.fleet.db import session_scope
from app.fleet.modules.agreements.models import Agreement


@pytest.fixture()
def setup(client, login):
    """Vehicle, submitted inspection, driver and template for one agreement."""
    login(client)
    vehicle = client.post(
        "/api/vehicles",
        json={"year": 2023, "make": "Toyota", "model": "Camry", "license_plate": "AGR001", "vin": "JTAGR0000001"},
    ).json["vehicle"]
    inspection = client.post(
        "/api/inspections",
        json={
            "vehicle_id": vehicle["id"],
            "exterior_condition": "Good",
            "interior_condition": "Good",
            "mechanical_condition": "Good",
            "status": "submitted",
        },
    ).json["inspection"]
    driver = client.post(
        "/api/drivers",
        json={"first_name": "Dana", "last_name": "Driver", "email": "dana@example.com"},
    ).json["driver"]
    template = client.post(
        "/api/agreements/templates",
        json={"title": "Rental Agreement", "content_richtext": "<p>Standard terms</p>"},
    ).json["template"]
    return {"vehicle": vehicle, "inspection": inspection, "driver": driver, "template": template}


def _draft(client, setup):
    r = client.post(
        "/api/agreements",
        json={
            "vehicle_id": setup["vehicle"]["id"],
            "inspection_id": setup["inspection"]["id"],
            "template_id": setup["template"]["id"],
        },
    )
    assert r.status_code == 201, r.json
    return r.json["agreement"]


def _finalise(client, setup, agreement_id, **extra):
    return client.post(
        f"/api/agreements/{agreement_id}/finalise",
        json={"driver_id": setup["driver"]["id"], **extra},
    )


def _sign(app, agreement_id, token, signature="Dana Driver"):
    # The driver is never signed in.
    return app.test_client().post(
        f"/api/agreements/{agreement_id}/sign",
        json={"token": token, "signature": signature},
    )


def _token(app, agreement_id):
    with session_scope(app) as s:
        return s.get(Agreement, agreement_id).signing_token


def test_template_validation_and_update(client, setup):
    r = client.post("/api/agreements/templates", json={"title": "", "content_richtext": ""})
    assert r.status_code == 400
    assert r.json["details"] == ["Title is required.", "Content is required."]

    tid = setup["template"]["id"]
    r = client.put(f"/api/agreements/templates/{tid}", json={"active": False})
    assert r.status_code == 200
    assert r.json["template"]["active"] is False
    assert r.json["template"]["title"] == "Rental Agreement"

    r = client.get("/api/agreements/templates?active=1")
    assert r.json["templates"] == []


def test_template_fields_must_be_text(client, setup):
    r = client.post("/api/agreements/templates", json={"title": ["Rental"], "content_richtext": ["<p>x</p>"]})
    assert r.status_code == 400
    assert r.json["details"] == ["Title must be text.", "Content must be text."]

    tid = setup["template"]["id"]
    r = client.put(f"/api/agreements/templates/{tid}", json={"content_richtext": {"html": "<p>x</p>"}})
    assert r.status_code == 400
    assert r.json["details"] == ["Content must be text."]


def test_create_agreement_is_draft(client, setup):
    a = _draft(client, setup)
    assert a["status"] == "draft"
    assert a["license_plate"] == "AGR001"
    assert a["template_title"] == "Rental Agreement"
    assert a["final_content_richtext"] is None


def test_create_agreement_requires_matching_inspection(client, setup):
    other = client.post(
        "/api/vehicles",
        json={"year": 2018, "make": "Mazda", "model": "BT-50", "license_plate": "OTH001", "vin": "MZ0000001"},
    ).json["vehicle"]
    r = client.post(
        "/api/agreements",
        json={
            "vehicle_id": other["id"],
            "inspection_id": setup["inspection"]["id"],
            "template_id": setup["template"]["id"],
        },
    )
    assert r.status_code == 400
    assert r.json["error"] == "Inspection does not match selected vehicle"

    r = client.post("/api/agreements", json={"vehicle_id": other["id"]})
    assert r.status_code == 400
    assert "Inspection is required." in r.json["details"]


def test_finalise_emails_signing_link(client, setup, sent_emails):
    a = _draft(client, setup)
    r = _finalise(client, setup, a["id"], content="<p>Custom terms</p>")
    assert r.status_code == 200, r.json
    assert r.json["agreement"]["status"] == "pending_signature"
    assert r.json["agreement"]["signed_by"] == "Dana Driver"
    link = r.json["signing_link"]
    assert link.startswith("http://testserver/agreements/driver/sign/")

    assert len(sent_emails) == 1
    assert sent_emails[0]["to"] == "dana@example.com"
    assert link in sent_emails[0]["text"]

    r = client.get(f"/api/agreements/{a['id']}")
    assert r.json["agreement"]["final_content_richtext"] == "<p>Custom terms</p>"


def test_resend_keeps_signing_token(app, client, setup, sent_emails):
    a = _draft(client, setup)
    first = _finalise(client, setup, a["id"]).json["signing_link"]
    second = _finalise(client, setup, a["id"]).json["signing_link"]
    assert first == second
    assert len(sent_emails) == 2


def test_finalise_without_mail_config_reports_failure(app, client, setup):
    a = _draft(client, setup)
    r = _finalise(client, setup, a["id"])
    assert r.status_code == 500
    assert r.json["error"] == "Agreement updated but email failed to send"
    # The status change was committed before the send.
    r = client.get(f"/api/agreements/{a['id']}")
    assert r.json["agreement"]["status"] == "pending_signature"


def test_finalise_requires_driver_email(client, setup, sent_emails):
    no_email = client.post("/api/drivers", json={"first_name": "No", "last_name": "Email"}).json["driver"]
    a = _draft(client, setup)
    r = client.post(f"/api/agreements/{a['id']}/finalise", json={"driver_id": no_email["id"]})
    assert r.status_code == 400
    assert r.json["error"] == "Driver must have an email address before sending"
    r = client.post(f"/api/agreements/{a['id']}/finalise", json={"driver_id": 999})
    assert r.status_code == 404
    assert sent_emails == []


def test_finalise_content_must_be_text(client, setup, sent_emails):
    a = _draft(client, setup)
    r = _finalise(client, setup, a["id"], content=["<p>Custom terms</p>"])
    assert r.status_code == 400
    assert r.json["error"] == "Agreement content must be text"
    assert sent_emails == []


def test_driver_signs_with_token(app, client, setup, sent_emails):
    a = _draft(client, setup)
    _finalise(client, setup, a["id"])
    token = _token(app, a["id"])

    r = _sign(app, a["id"], "wrong-token")
    assert r.status_code == 404
    r = _sign(app, a["id"], token, signature="  ")
    assert r.status_code == 400
    assert r.json["error"] == "Signature is required"
    r = _sign(app, a["id"], token, signature={"x": 1})
    assert r.status_code == 400
    assert r.json["error"] == "Signature is required"
    r = _sign(app, a["id"], {"token": token})
    assert r.status_code == 404

    r = _sign(app, a["id"], token, signature="data:image/png;base64,iVBORw0KGgo=")
    assert r.status_code == 200
    assert r.json["signed_at"]

    r = _sign(app, a["id"], token)
    assert r.status_code == 400
    assert r.json["error"] == "Agreement has already been signed"

    r = client.get(f"/api/drivers/{setup['driver']['id']}")
    assert r.json["stats"] == {"total": 1, "active": 1}


def test_public_signing_page(app, client, setup, sent_emails):
    a = _draft(client, setup)
    _finalise(client, setup, a["id"])
    token = _token(app, a["id"])

    driver_client = app.test_client()
    r = driver_client.get(f"/agreements/driver/sign/{token}")
    assert r.status_code == 200
    assert b"Standard terms" in r.data
    with driver_client.session_transaction() as sess:
        csrf = sess["csrf_token"]
    r = driver_client.post(f"/agreements/driver/sign/{token}", data={"signature": "Dana Driver", "csrf_token": csrf})
    assert r.status_code == 302

    r = client.get(f"/api/agreements/{a['id']}")
    assert r.json["agreement"]["status"] == "signed"
    assert r.json["agreement"]["has_signature"] is True

    r = driver_client.get("/agreements/driver/sign/not-a-token")
    assert r.status_code == 404


def test_terminate_notifies_driver(app, client, setup, sent_emails):
    a = _draft(client, setup)
    _finalise(client, setup, a["id"])
    _sign(app, a["id"], _token(app, a["id"]))

    r = client.post(f"/api/agreements/{a['id']}/terminate", json={"reason": "Vehicle returned"})
    assert r.status_code == 200
    assert r.json["email_sent"] is True
    assert r.json["agreement"]["status"] == "terminated"
    assert "Vehicle returned" in sent_emails[-1]["text"]

    r = client.post(f"/api/agreements/{a['id']}/terminate", json={})
    assert r.status_code == 400
    assert r.json["error"] == "Agreement has already been terminated"

    # A terminated agreement can no longer be signed or re-sent
    r = _sign(app, a["id"], _token(app, a["id"]))
    assert r.status_code == 400
    assert r.json["error"] == "Agreement has been terminated"
    r = _finalise(client, setup, a["id"])
    assert r.status_code == 400


def test_terminate_draft_without_driver(client, setup):
    a = _draft(client, setup)
    r = client.post(f"/api/agreements/{a['id']}/terminate", json={"reason": "Not needed"})
    assert r.status_code == 200
    assert r.json["email_sent"] is False


def test_relink_inspection(client, setup):
    a = _draft(client, setup)
    r = client.patch(f"/api/agreements/{a['id']}/inspection", json={"inspection_id": setup["inspection"]["id"]})
    assert r.status_code == 400
    assert r.json["error"] == "Agreement already linked to this inspection"

    newer = client.post(
        "/api/inspections",
        json={
            "vehicle_id": setup["vehicle"]["id"],
            "exterior_condition": "Dent on door",
            "interior_condition": "Good",
            "mechanical_condition": "Good",
        },
    ).json["inspection"]
    r = client.patch(f"/api/agreements/{a['id']}/inspection", json={"inspection_id": newer["id"], "reason": "Newer check"})
    assert r.status_code == 200
    assert r.json["agreement"]["inspection_id"] == newer["id"]

    r = client.get(f"/api/agreements/{a['id']}")
    assert [i["id"] for i in r.json["other_inspections"]] == [setup["inspection"]["id"]]


def test_supporting_documents(client, setup):
    a = _draft(client, setup)
    r = client.post(
        f"/api/agreements/{a['id']}/supporting",
        data={"file": (io.BytesIO(b"%PDF-1.4 licence"), "licence.pdf", "application/pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    path = r.json["path"]
    assert path.startswith(f"agreements/{a['id']}/supporting/")

    r = client.post(
        f"/api/agreements/{a['id']}/supporting",
        data={"file": (io.BytesIO(b"MZ"), "tool.exe", "application/octet-stream")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["error"] == "Unsupported file type"

    r = client.get(f"/api/agreements/{a['id']}/supporting")
    assert r.json["files"] == [{"path": path, "file_name": "licence.pdf"}]

    r = client.delete(f"/api/agreements/{a['id']}/supporting", json={"path": "agreements/999/supporting/x.pdf"})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid file path"

    r = client.delete(f"/api/agreements/{a['id']}/supporting", json={"path": path})
    assert r.status_code == 200
    r = client.get(f"/api/agreements/{a['id']}/supporting")
    assert r.json["files"] == []


def test_export_zip(app, client, setup, sent_emails):
    a = _draft(client, setup)
    _finalise(client, setup, a["id"])
    _sign(app, a["id"], _token(app, a["id"]), signature="Dana Driver")
    client.post(
        f"/api/agreements/{a['id']}/supporting",
        data={"file": (io.BytesIO(b"%PDF-1.4 licence"), "licence.pdf", "application/pdf")},
        content_type="multipart/form-data",
    )

    r = client.post(f"/api/agreements/{a['id']}/export", json={"format": "zip"})
    assert r.status_code == 200
    assert r.json["filename"] == f"agreement-{a['id']}.zip"
    zf = zipfile.ZipFile(io.BytesIO(base64.b64decode(r.json["content_base64"])))
    names = zf.namelist()
    assert "agreement.html" in names
    assert zf.read("signature.txt") == b"Dana Driver"
    assert any(n.startswith("supporting/") and n.endswith("licence.pdf") for n in names)
    assert b"AGR001" in zf.read("agreement.html")


def test_export_zip_by_email(client, setup, sent_emails):
    a = _draft(client, setup)
    r = client.post(f"/api/agreements/{a['id']}/export", json={"format": "zip", "send_email": True})
    assert r.status_code == 200
    assert r.json["emailed"] is True
    assert sent_emails[-1]["to"] == "admin@example.com"
    filename, data, mimetype = sent_emails[-1]["attachments"][0]
    assert filename == f"agreement-{a['id']}.zip"
    assert mimetype == "application/zip"


def test_export_validation(client, setup):
    a = _draft(client, setup)
    r = client.post(f"/api/agreements/{a['id']}/export", json={"format": "docx"})
    assert r.status_code == 400
    r = client.post(f"/api/agreements/{a['id']}/export", json={"format": "zip", "send_email": "yes"})
    assert r.status_code == 400
    r = client.post(f"/api/agreements/{a['id']}/export", json={"format": "pdf"})
    assert r.status_code == 200
    assert "content_base64" not in r.json


def test_inspection_linked_to_agreement_cannot_be_deleted(client, setup):
    _draft(client, setup)
    r = client.delete(f"/api/inspections/{setup['inspection']['id']}")
    assert r.status_code == 400


def test_delete_agreement(client, setup):
    a = _draft(client, setup)
    r = client.delete(f"/api/agreements/{a['id']}")
    assert r.status_code == 200
    r = client.get(f"/api/agreements/{a['id']}")
    assert r.status_code == 404


def test_agreement_pages(client, setup, sent_emails):
    r = client.get(f"/dashboard/agreements/new?vehicle_id={setup['vehicle']['id']}&inspection_id={setup['inspection']['id']}")
    assert r.status_code == 200

    r = client.post(
        "/dashboard/agreements/new",
        data={
            "vehicle_id": setup["vehicle"]["id"],
            "inspection_id": setup["inspection"]["id"],
            "template_id": setup["template"]["id"],
        },
    )
    assert r.status_code == 302
    preview_url = r.headers["Location"]
    r = client.get(preview_url)
    assert r.status_code == 200

    r = client.post(preview_url, data={"driver_id": setup["driver"]["id"], "content": "<p>Page terms</p>"})
    assert r.status_code == 302
    assert len(sent_emails) == 1

    r = client.get(r.headers["Location"])
    assert r.status_code == 200
    assert b"Page terms" in r.data

    r = client.get("/dashboard/agreements?status=pending_signature")
    assert r.status_code == 200
    assert b"AGR001" in r.data

    r = client.get("/dashboard/agreements/templates")
    assert r.status_code == 200
    assert b"Rental Agreement" in r.data
