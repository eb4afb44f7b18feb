"""
Rental agreements: templates, drafting, e-signature and lifecycle.

Status flow: draft -> pending_signature -> signed | terminated.
A signing link carries an opaque token; the public sign endpoint matches it
against the agreement id and never requires a session.
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
import uuid
import zipfile
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import or_

from app.fleet.audit import record_event
from app.fleet.constants import EXPORT_FORMATS, MAX_SUPPORTING_DOC_BYTES, SUPPORTING_DOC_CONTENT_TYPES
from app.fleet.utils import clean_str, parse_int, sanitize_filename, timestamp_ms

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fleet.models import User
    from app.fleet.modules.agreements.models import Agreement, AgreementTemplate
    from app.fleet.storage import Storage

logger = logging.getLogger(__name__)


class AgreementError(ValueError):
    pass


def _storage() -> "Storage":
    from flask import current_app
    from app.fleet.storage import storage_from_config

    return storage_from_config(current_app.config)


def _vehicle_name(agreement: "Agreement") -> str:
    return agreement.vehicle.display_name if agreement.vehicle else "Unknown Vehicle"


# ---------- Templates ----------
def validate_template_payload(payload: dict) -> list[str]:
    errors = []
    title = payload.get("title")
    if title is not None and not isinstance(title, str):
        errors.append("Title must be text.")
    elif not clean_str(title):
        errors.append("Title is required.")
    elif len(clean_str(title)) > 255:
        errors.append("Title must be 255 characters or fewer.")
    content = payload.get("content_richtext")
    if content is not None and not isinstance(content, str):
        errors.append("Content must be text.")
    elif not clean_str(content):
        errors.append("Content is required.")
    return errors


def list_templates(s: "Session", *, active_only: bool = False) -> list["AgreementTemplate"]:
    from app.fleet.modules.agreements.models import AgreementTemplate

    q = s.query(AgreementTemplate)
    if active_only:
        q = q.filter(AgreementTemplate.active.is_(True))
    return q.order_by(AgreementTemplate.updated_at.desc(), AgreementTemplate.id.desc()).all()


def get_template(s: "Session", template_id: int) -> "AgreementTemplate | None":
    from app.fleet.modules.agreements.models import AgreementTemplate

    return s.get(AgreementTemplate, template_id)


def create_template(s: "Session", payload: dict, user: "User") -> "AgreementTemplate":
    from app.fleet.modules.agreements.models import AgreementTemplate

    now = datetime.utcnow()
    template = AgreementTemplate(
        title=clean_str(payload.get("title")),
        content_richtext=payload.get("content_richtext").strip(),
        active=payload.get("active", True) not in (False, "0", "false", "off"),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(template)
    s.flush()
    record_event(
        s,
        actor=user,
        action="agreement_template.create",
        entity_type="AgreementTemplate",
        entity_id=str(template.id),
        metadata={"title": template.title},
    )
    return template


def update_template(s: "Session", template: "AgreementTemplate", payload: dict, user: "User") -> "AgreementTemplate":
    changes = []
    if "title" in payload and clean_str(payload.get("title")) != template.title:
        template.title = clean_str(payload.get("title"))
        changes.append("title")
    if "content_richtext" in payload and (payload.get("content_richtext") or "").strip() != template.content_richtext:
        template.content_richtext = (payload.get("content_richtext") or "").strip()
        changes.append("content_richtext")
    if "active" in payload:
        active = payload.get("active") not in (False, None, "", "0", "false", "off")
        if active != template.active:
            template.active = active
            changes.append("active")
    template.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="agreement_template.update",
        entity_type="AgreementTemplate",
        entity_id=str(template.id),
        metadata={"title": template.title, "changed": changes},
    )
    return template


# ---------- Agreements ----------
def list_agreements(
    s: "Session",
    *,
    status: str | None = None,
    search: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> tuple[list["Agreement"], int]:
    from app.fleet.modules.agreements.models import Agreement, AgreementTemplate
    from app.fleet.modules.vehicles.models import Vehicle

    q = (
        s.query(Agreement)
        .outerjoin(Vehicle, Vehicle.id == Agreement.vehicle_id)
        .outerjoin(AgreementTemplate, AgreementTemplate.id == Agreement.template_id)
    )
    if status and status != "all":
        q = q.filter(Agreement.status == status)
    search = (search or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Vehicle.license_plate.ilike(like),
                Vehicle.make.ilike(like),
                Vehicle.model.ilike(like),
                AgreementTemplate.title.ilike(like),
            )
        )
    total = q.order_by(None).count()
    rows = q.order_by(Agreement.created_at.desc(), Agreement.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def list_recent_agreements(s: "Session", limit: int = 5) -> list["Agreement"]:
    rows, _ = list_agreements(s, limit=limit)
    return rows


def get_agreement(s: "Session", agreement_id: int) -> "Agreement | None":
    from app.fleet.modules.agreements.models import Agreement

    return s.get(Agreement, agreement_id)


def validate_agreement_payload(payload: dict) -> list[str]:
    errors = []
    for key, label in (("vehicle_id", "Vehicle"), ("inspection_id", "Inspection"), ("template_id", "Template")):
        if not parse_int(payload.get(key)):
            errors.append(f"{label} is required.")
    return errors


def create_agreement(s: "Session", payload: dict, user: "User") -> "Agreement":
    """Raises LookupError for a missing vehicle, inspection or template."""
    from app.fleet.modules.agreements.models import Agreement, AgreementTemplate
    from app.fleet.modules.inspections.models import Inspection
    from app.fleet.modules.vehicles.models import Vehicle

    vehicle_id = parse_int(payload.get("vehicle_id"))
    inspection_id = parse_int(payload.get("inspection_id"))
    template_id = parse_int(payload.get("template_id"))

    if not s.get(Vehicle, vehicle_id):
        raise LookupError("Vehicle not found")
    inspection = s.get(Inspection, inspection_id)
    if not inspection:
        raise LookupError("Inspection not found")
    if inspection.vehicle_id != vehicle_id:
        raise AgreementError("Inspection does not match selected vehicle")
    if not s.get(AgreementTemplate, template_id):
        raise LookupError("Template not found")

    now = datetime.utcnow()
    agreement = Agreement(
        vehicle_id=vehicle_id,
        inspection_id=inspection_id,
        template_id=template_id,
        status="draft",
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(agreement)
    s.flush()
    record_event(
        s,
        actor=user,
        action="agreement.create",
        entity_type="Agreement",
        entity_id=str(agreement.id),
        metadata={"vehicle_id": vehicle_id, "inspection_id": inspection_id, "template_id": template_id},
    )
    return agreement


def signing_link(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/agreements/driver/sign/{token}"


def finalise_agreement(
    s: "Session",
    agreement: "Agreement",
    *,
    driver_id: int | None,
    content: str | None,
    user: "User",
) -> "Agreement":
    """
    Lock in the final content and hand the agreement to a driver for signature.

    The signing token is kept across re-sends so earlier links stay valid.
    Emailing the link is a separate step (send_signing_invite) so callers can
    commit first.
    """
    from app.fleet.modules.agreements.models import DriverAgreement
    from app.fleet.modules.drivers.models import Driver

    driver = s.get(Driver, driver_id) if driver_id else None
    if not driver:
        raise LookupError("Driver not found")
    if not driver.email:
        raise AgreementError("Driver must have an email address before sending")
    if agreement.status in ("signed", "terminated"):
        raise AgreementError(f"Agreement is already {agreement.status}")

    if content is not None and not isinstance(content, str):
        raise AgreementError("Agreement content must be text")
    final_content = clean_str(content) or agreement.final_content_richtext
    if not final_content and agreement.template:
        final_content = agreement.template.content_richtext
    if not final_content:
        raise AgreementError("Agreement content is required")

    agreement.final_content_richtext = final_content
    agreement.signing_token = agreement.signing_token or uuid.uuid4().hex
    agreement.signed_by_driver = driver
    agreement.status = "pending_signature"
    agreement.updated_at = datetime.utcnow()

    link = next((dl for dl in agreement.driver_links if dl.driver_id == driver.id), None)
    if link is None:
        agreement.driver_links.append(DriverAgreement(driver_id=driver.id, role="signer"))
    else:
        link.role = "signer"
    s.flush()

    record_event(
        s,
        actor=user,
        action="agreement.finalise",
        entity_type="Agreement",
        entity_id=str(agreement.id),
        metadata={"driver_id": driver.id, "driver_email": driver.email},
    )
    return agreement


def send_signing_invite(s: "Session", agreement: "Agreement", user: "User", app_url: str) -> str:
    """Email the signing link to the assigned driver. Raises MailerError on delivery failure."""
    from app.fleet.mailer import send_agreement_invite_email

    driver = agreement.signed_by_driver
    link = signing_link(app_url, agreement.signing_token)
    send_agreement_invite_email(
        s,
        to=driver.email,
        driver_name=driver.full_name,
        requester_name=user.display_name,
        vehicle_name=_vehicle_name(agreement),
        license_plate=agreement.vehicle.license_plate if agreement.vehicle else "",
        template_title=agreement.template.title if agreement.template else "Rental agreement",
        signing_link=link,
    )
    return link


def get_agreement_by_token(s: "Session", token: str) -> "Agreement | None":
    from app.fleet.modules.agreements.models import Agreement

    if not token:
        return None
    return s.query(Agreement).filter(Agreement.signing_token == token).one_or_none()


def sign_agreement(s: "Session", agreement_id: int, token: str, signature: str) -> "Agreement":
    from app.fleet.modules.agreements.models import Agreement

    agreement = None
    if token and isinstance(token, str):
        agreement = (
            s.query(Agreement)
            .filter(Agreement.id == agreement_id, Agreement.signing_token == token)
            .one_or_none()
        )
    if agreement is None:
        raise LookupError("Signing link is invalid or has expired")
    if agreement.status == "signed":
        raise AgreementError("Agreement has already been signed")
    if agreement.status == "terminated":
        raise AgreementError("Agreement has been terminated")
    if not isinstance(signature, str) or not clean_str(signature):
        raise AgreementError("Signature is required")

    now = datetime.utcnow()
    agreement.driver_signature_data = signature
    agreement.status = "signed"
    agreement.signed_at = now
    agreement.updated_at = now
    record_event(
        s,
        actor=None,
        action="agreement.sign",
        entity_type="Agreement",
        entity_id=str(agreement.id),
        metadata={"driver_id": agreement.signed_by_driver_id},
    )
    return agreement


def terminate_agreement(s: "Session", agreement: "Agreement", reason: str | None, user: "User") -> "Agreement":
    reason = clean_str(reason)
    if reason and len(reason) > 1000:
        raise AgreementError("Reason must be 1000 characters or fewer")
    if agreement.status == "terminated":
        raise AgreementError("Agreement has already been terminated")

    now = datetime.utcnow()
    old_status = agreement.status
    agreement.status = "terminated"
    agreement.terminated_at = now
    agreement.termination_reason = reason
    agreement.updated_at = now
    record_event(
        s,
        actor=user,
        action="agreement.terminate",
        entity_type="Agreement",
        entity_id=str(agreement.id),
        reason=reason,
        metadata={"old_status": old_status},
    )
    return agreement


def notify_termination(s: "Session", agreement: "Agreement") -> bool:
    """Email the driver about a termination. Failures are logged; the termination stands."""
    from app.fleet.mailer import MailerError, send_agreement_terminated_email

    driver = agreement.signed_by_driver
    if not driver or not driver.email:
        return False
    try:
        send_agreement_terminated_email(
            s,
            to=driver.email,
            driver_name=driver.full_name,
            vehicle_name=_vehicle_name(agreement),
            license_plate=agreement.vehicle.license_plate if agreement.vehicle else "",
            reason=agreement.termination_reason,
        )
    except MailerError:
        logger.exception("Termination email failed for agreement %s", agreement.id)
        return False
    return True


def relink_inspection(
    s: "Session",
    agreement: "Agreement",
    inspection_id: int | None,
    reason: str | None,
    user: "User",
) -> "Agreement":
    from app.fleet.modules.inspections.models import Inspection

    if inspection_id == agreement.inspection_id:
        raise AgreementError("Agreement already linked to this inspection")
    inspection = s.get(Inspection, inspection_id) if inspection_id else None
    if not inspection:
        raise LookupError("Inspection not found")
    if inspection.vehicle_id != agreement.vehicle_id:
        raise AgreementError("Inspection does not belong to the same vehicle")

    old = agreement.inspection_id
    agreement.inspection_id = inspection.id
    agreement.inspection = inspection
    agreement.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="agreement.relink_inspection",
        entity_type="Agreement",
        entity_id=str(agreement.id),
        reason=clean_str(reason),
        metadata={"old_inspection_id": old, "new_inspection_id": inspection.id},
    )
    return agreement


def delete_agreement(s: "Session", agreement: "Agreement", user: "User") -> None:
    agreement_id = agreement.id
    record_event(
        s,
        actor=user,
        action="agreement.delete",
        entity_type="Agreement",
        entity_id=str(agreement_id),
        metadata={"vehicle_id": agreement.vehicle_id, "status": agreement.status},
    )
    s.delete(agreement)
    s.flush()
    _storage().delete_prefix(supporting_prefix(agreement_id))


# ---------- Supporting documents ----------
def supporting_prefix(agreement_id: int) -> str:
    return f"agreements/{agreement_id}/supporting/"


def _is_supported_doc(content_type: str | None) -> bool:
    content_type = content_type or ""
    return content_type.startswith("image/") or content_type in SUPPORTING_DOC_CONTENT_TYPES


def _doc_info(key: str) -> dict:
    name = key.rsplit("/", 1)[-1]
    stamp, sep, rest = name.partition("-")
    return {"path": key, "file_name": rest if sep and stamp.isdigit() else name}


def list_supporting_docs(agreement: "Agreement") -> list[dict]:
    return [_doc_info(k) for k in _storage().list_keys(supporting_prefix(agreement.id))]


def upload_supporting_doc(
    s: "Session",
    agreement: "Agreement",
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: "User",
) -> dict:
    if not file_bytes:
        raise AgreementError("File is empty")
    if not _is_supported_doc(content_type):
        raise AgreementError("Unsupported file type")
    if len(file_bytes) > MAX_SUPPORTING_DOC_BYTES:
        raise AgreementError("File exceeds 20MB limit")

    key = f"{supporting_prefix(agreement.id)}{timestamp_ms()}-{sanitize_filename(filename)}"
    _storage().put_bytes(key, file_bytes, content_type=content_type)
    record_event(
        s,
        actor=user,
        action="agreement.supporting_upload",
        entity_type="Agreement",
        entity_id=str(agreement.id),
        metadata={"path": key, "file_name": filename},
    )
    return {**_doc_info(key), "file_name": filename, "file_size": len(file_bytes), "content_type": content_type}


def delete_supporting_doc(s: "Session", agreement: "Agreement", path: str | None, user: "User") -> None:
    if not path or not isinstance(path, str):
        raise AgreementError("File path is required")
    if not path.startswith(supporting_prefix(agreement.id)) or ".." in path.split("/"):
        raise AgreementError("Invalid file path")
    _storage().delete(path)
    record_event(
        s,
        actor=user,
        action="agreement.supporting_delete",
        entity_type="Agreement",
        entity_id=str(agreement.id),
        metadata={"path": path},
    )


# ---------- Export ----------
def _signature_entry(data: str | None) -> tuple[str, bytes] | None:
    """Signature pads post data URLs; anything else is kept as typed text."""
    if not data:
        return None
    if data.startswith("data:") and ";base64," in data:
        header, payload = data.split(";base64,", 1)
        ext = header.rsplit("/", 1)[-1] or "bin"
        try:
            return f"signature.{ext}", base64.b64decode(payload)
        except (binascii.Error, ValueError):
            return "signature.txt", data.encode("utf-8")
    return "signature.txt", data.encode("utf-8")


def build_agreement_zip(agreement: "Agreement") -> bytes:
    from flask import render_template

    storage = _storage()
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("agreement.html", render_template("agreements/export.html", agreement=agreement))
        sig = _signature_entry(agreement.driver_signature_data)
        if sig:
            zf.writestr(*sig)
        for doc in list_supporting_docs(agreement):
            with storage.open(doc["path"]) as fh:
                zf.writestr(f"supporting/{doc['path'].rsplit('/', 1)[-1]}", fh.read())
    return buf.getvalue()


def export_agreement(s: "Session", agreement: "Agreement", fmt: str, *, send_email: bool, user: "User") -> dict:
    """
    Returns {"format", "filename", "data"}; data is None for pdf, which is not rendered.
    With send_email the zip is mailed to the requesting user.
    """
    if fmt not in EXPORT_FORMATS:
        raise AgreementError("Format must be zip or pdf")
    result = {"format": fmt, "filename": f"agreement-{agreement.id}.{fmt}", "data": None}
    if fmt == "zip":
        result["data"] = build_agreement_zip(agreement)
        if send_email:
            from app.fleet.mailer import send_agreement_export_email

            send_agreement_export_email(
                s,
                to=user.email,
                vehicle_name=_vehicle_name(agreement),
                filename=result["filename"],
                data=result["data"],
            )
    record_event(
        s,
        actor=user,
        action="agreement.export",
        entity_type="Agreement",
        entity_id=str(agreement.id),
        metadata={"format": fmt, "send_email": send_email},
    )
    return result


# ---------- Page contexts ----------
def get_finalise_context(s: "Session", agreement: "Agreement") -> dict:
    from app.fleet.modules.drivers.models import Driver

    drivers = s.query(Driver).order_by(Driver.last_name, Driver.first_name).all()
    return {
        "agreement": agreement,
        "content": agreement.resolved_content or "",
        "drivers": drivers,
        "selected_driver_id": agreement.signed_by_driver_id,
    }


def get_detail_context(s: "Session", agreement: "Agreement") -> dict:
    from app.fleet.modules.inspections.models import Inspection

    other_inspections = (
        s.query(Inspection)
        .filter(Inspection.vehicle_id == agreement.vehicle_id, Inspection.id != agreement.inspection_id)
        .order_by(Inspection.updated_at.desc())
        .all()
    )
    return {
        "agreement": agreement,
        "inspection": agreement.inspection,
        "supporting_docs": list_supporting_docs(agreement),
        "other_inspections": other_inspections,
    }


def get_signing_context(s: "Session", token: str) -> dict | None:
    agreement = get_agreement_by_token(s, token)
    if agreement is None:
        return None
    return {
        "agreement": agreement,
        "content": agreement.resolved_content or "",
        "vehicle_name": _vehicle_name(agreement),
        "driver": agreement.signed_by_driver,
        "already_signed": agreement.status == "signed",
        "terminated": agreement.status == "terminated",
    }


def agreement_to_dict(agreement: "Agreement", *, detail: bool = False) -> dict:
    vehicle = agreement.vehicle
    driver = agreement.signed_by_driver
    data = {
        "id": agreement.id,
        "status": agreement.status,
        "vehicle_id": agreement.vehicle_id,
        "vehicle": _vehicle_name(agreement),
        "license_plate": vehicle.license_plate if vehicle else None,
        "inspection_id": agreement.inspection_id,
        "template_id": agreement.template_id,
        "template_title": agreement.template.title if agreement.template else None,
        "signed_by": driver.full_name if driver else None,
        "signed_by_driver_id": agreement.signed_by_driver_id,
        "signed_at": agreement.signed_at.isoformat() if agreement.signed_at else None,
        "terminated_at": agreement.terminated_at.isoformat() if agreement.terminated_at else None,
        "created_at": agreement.created_at.isoformat() if agreement.created_at else None,
        "updated_at": agreement.updated_at.isoformat() if agreement.updated_at else None,
    }
    if detail:
        data.update(
            {
                "final_content_richtext": agreement.final_content_richtext,
                "termination_reason": agreement.termination_reason,
                "has_signature": bool(agreement.driver_signature_data),
                "created_by": agreement.created_by.display_name if agreement.created_by else None,
            }
        )
    return data


def template_to_dict(template: "AgreementTemplate") -> dict:
    return {
        "id": template.id,
        "title": template.title,
        "content_richtext": template.content_richtext,
        "active": template.active,
        "created_at": template.created_at.isoformat() if template.created_at else None,
        "updated_at": template.updated_at.isoformat() if template.updated_at else None,
    }
