from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.fleet.audit import record_event
from app.fleet.constants import INSPECTION_SECTIONS, INSPECTION_STATUSES, MAX_INSPECTION_IMAGE_BYTES
from app.fleet.utils import clean_str, parse_int, sanitize_filename, timestamp_ms

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fleet.models import User
    from app.fleet.modules.inspections.models import Inspection


class InspectionError(ValueError):
    pass


CONDITION_FIELDS = ("exterior_condition", "interior_condition", "mechanical_condition")


def validate_inspection_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial or "vehicle_id" in payload:
        if not parse_int(payload.get("vehicle_id")):
            errors.append("Vehicle is required.")
    for field in CONDITION_FIELDS:
        if partial and field not in payload:
            continue
        if not clean_str(payload.get(field)):
            label = field.replace("_", " ").capitalize()
            errors.append(f"{label} is required.")
    status = payload.get("status")
    if status is not None and status not in INSPECTION_STATUSES:
        errors.append("Status must be draft or submitted.")
    images = payload.get("images")
    if images is not None:
        if not isinstance(images, list):
            errors.append("Images must be a list.")
        else:
            for i, img in enumerate(images):
                if not isinstance(img, dict) or not img.get("storage_key"):
                    errors.append(f"Image {i + 1} is missing a storage key.")
                elif img.get("section") not in INSPECTION_SECTIONS:
                    errors.append(f"Image {i + 1} has an invalid section.")
    return errors


def list_inspections(
    s: "Session",
    *,
    vehicle_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list["Inspection"], int]:
    from app.fleet.modules.inspections.models import Inspection
    from app.fleet.modules.vehicles.models import Vehicle

    q = s.query(Inspection)
    if vehicle_id:
        q = q.filter(Inspection.vehicle_id == vehicle_id)
    if status in INSPECTION_STATUSES:
        q = q.filter(Inspection.status == status)
    search = (search or "").strip()
    if search:
        q = q.join(Vehicle, Vehicle.id == Inspection.vehicle_id).filter(Vehicle.license_plate.ilike(f"%{search}%"))
    total = q.order_by(None).count()
    limit = min(max(limit, 1), 50)
    rows = q.order_by(Inspection.updated_at.desc(), Inspection.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def list_recent_inspections(s: "Session", limit: int = 5) -> list["Inspection"]:
    rows, _ = list_inspections(s, limit=limit)
    return rows


def get_inspection(s: "Session", inspection_id: int) -> "Inspection | None":
    from app.fleet.modules.inspections.models import Inspection

    return s.get(Inspection, inspection_id)


def _build_images(payload_images: list[dict], user: "User"):
    from app.fleet.modules.inspections.models import InspectionImage

    return [
        InspectionImage(
            section=img["section"],
            storage_key=img["storage_key"],
            file_name=clean_str(img.get("file_name")) or img["storage_key"].rsplit("/", 1)[-1],
            file_size_bytes=parse_int(img.get("file_size_bytes"), 0) or 0,
            content_type=clean_str(img.get("content_type")) or "application/octet-stream",
            created_by_user_id=user.id,
        )
        for img in payload_images
    ]


def create_inspection(s: "Session", payload: dict, user: "User") -> "Inspection":
    from app.fleet.modules.inspections.models import Inspection
    from app.fleet.modules.vehicles.models import Vehicle

    vehicle_id = parse_int(payload.get("vehicle_id"))
    if not s.get(Vehicle, vehicle_id):
        raise LookupError("Vehicle not found")

    now = datetime.utcnow()
    status = payload.get("status") or "draft"
    inspection = Inspection(
        vehicle_id=vehicle_id,
        inspector_id=user.id,
        status=status,
        exterior_condition=clean_str(payload.get("exterior_condition")),
        interior_condition=clean_str(payload.get("interior_condition")),
        mechanical_condition=clean_str(payload.get("mechanical_condition")),
        additional_notes=clean_str(payload.get("additional_notes")),
        submitted_at=now if status == "submitted" else None,
        created_at=now,
        updated_at=now,
    )
    inspection.images.extend(_build_images(payload.get("images") or [], user))
    s.add(inspection)
    s.flush()
    record_event(
        s,
        actor=user,
        action="inspection.create",
        entity_type="Inspection",
        entity_id=str(inspection.id),
        metadata={"vehicle_id": vehicle_id, "status": status, "images": len(inspection.images)},
    )
    return inspection


def update_inspection(s: "Session", inspection: "Inspection", payload: dict, user: "User") -> "Inspection":
    changes = {}
    for field in (*CONDITION_FIELDS, "additional_notes"):
        if field not in payload:
            continue
        new = clean_str(payload.get(field))
        if new != getattr(inspection, field):
            changes[field] = True
            setattr(inspection, field, new)
    if "vehicle_id" in payload:
        from app.fleet.modules.vehicles.models import Vehicle

        vehicle_id = parse_int(payload.get("vehicle_id"))
        if vehicle_id != inspection.vehicle_id:
            vehicle = s.get(Vehicle, vehicle_id)
            if not vehicle:
                raise LookupError("Vehicle not found")
            changes["vehicle_id"] = {"old": inspection.vehicle_id, "new": vehicle_id}
            inspection.vehicle = vehicle
    if payload.get("status") in INSPECTION_STATUSES and payload["status"] != inspection.status:
        changes["status"] = {"old": inspection.status, "new": payload["status"]}
        _set_status(inspection, payload["status"])
    if isinstance(payload.get("images"), list):
        # The submitted list replaces the whole image set.
        inspection.images.clear()
        s.flush()
        inspection.images.extend(_build_images(payload["images"], user))
        changes["images"] = len(payload["images"])
    inspection.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="inspection.update",
        entity_type="Inspection",
        entity_id=str(inspection.id),
        metadata={"changes": changes},
    )
    return inspection


def _set_status(inspection: "Inspection", status: str) -> None:
    inspection.status = status
    inspection.submitted_at = datetime.utcnow() if status == "submitted" else None


def update_inspection_status(s: "Session", inspection: "Inspection", status: str, user: "User") -> "Inspection":
    if status not in INSPECTION_STATUSES:
        raise InspectionError("Status must be draft or submitted.")
    old = inspection.status
    _set_status(inspection, status)
    inspection.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="inspection.status",
        entity_type="Inspection",
        entity_id=str(inspection.id),
        metadata={"old": old, "new": status},
    )
    return inspection


def delete_inspection(s: "Session", inspection: "Inspection", user: "User") -> None:
    from sqlalchemy import func

    from app.fleet.modules.agreements.models import Agreement

    linked = s.query(func.count(Agreement.id)).filter(Agreement.inspection_id == inspection.id).scalar() or 0
    if linked:
        raise InspectionError("Cannot delete an inspection that is linked to an agreement.")
    record_event(
        s,
        actor=user,
        action="inspection.delete",
        entity_type="Inspection",
        entity_id=str(inspection.id),
        metadata={"vehicle_id": inspection.vehicle_id, "images": len(inspection.images)},
    )
    s.delete(inspection)
    s.flush()


def build_image_storage_key(section: str, user_id: int, filename: str) -> str:
    return f"inspections/{section}/{user_id}/{timestamp_ms()}-{sanitize_filename(filename)}"


def upload_inspection_image(file_bytes: bytes, filename: str, content_type: str | None, section: str, user: "User") -> dict:
    """Store an image and return the descriptor that create/update accept under `images`."""
    from flask import current_app
    from app.fleet.storage import storage_from_config

    if section not in INSPECTION_SECTIONS:
        raise InspectionError("Section must be exterior, interior or mechanical.")
    if not file_bytes:
        raise InspectionError("File is empty.")
    if not (content_type or "").startswith("image/"):
        raise InspectionError("Only image files are allowed.")
    if len(file_bytes) > MAX_INSPECTION_IMAGE_BYTES:
        raise InspectionError("File size exceeds 10MB limit.")

    key = build_image_storage_key(section, user.id, filename)
    storage_from_config(current_app.config).put_bytes(key, file_bytes, content_type=content_type)
    return {
        "section": section,
        "storage_key": key,
        "file_name": filename or "image",
        "file_size_bytes": len(file_bytes),
        "content_type": content_type,
    }


def inspection_to_dict(inspection: "Inspection", *, detail: bool = False) -> dict:
    vehicle = inspection.vehicle
    data = {
        "id": inspection.id,
        "vehicle_id": inspection.vehicle_id,
        "vehicle": vehicle.display_name if vehicle else "Unknown Vehicle",
        "license_plate": vehicle.license_plate if vehicle else None,
        "inspector": inspection.inspector.display_name if inspection.inspector else None,
        "status": inspection.status,
        "submitted_at": inspection.submitted_at.isoformat() if inspection.submitted_at else None,
        "created_at": inspection.created_at.isoformat() if inspection.created_at else None,
        "updated_at": inspection.updated_at.isoformat() if inspection.updated_at else None,
    }
    if detail:
        data.update(
            {
                "exterior_condition": inspection.exterior_condition,
                "interior_condition": inspection.interior_condition,
                "mechanical_condition": inspection.mechanical_condition,
                "additional_notes": inspection.additional_notes,
                "images": [
                    {
                        "id": img.id,
                        "section": img.section,
                        "storage_key": img.storage_key,
                        "file_name": img.file_name,
                        "file_size_bytes": img.file_size_bytes,
                        "content_type": img.content_type,
                    }
                    for img in inspection.images
                ],
            }
        )
    return data
