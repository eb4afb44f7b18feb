from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.fleet.audit import record_event
from app.fleet.constants import (
    FUEL_TYPES,
    MAX_VEHICLE_ATTACHMENT_BYTES,
    TRANSMISSIONS,
    VEHICLE_OWNERSHIP,
    VEHICLE_STATUSES,
)
from app.fleet.utils import clean_str, is_valid_date, parse_date, parse_decimal, parse_int, sanitize_filename, timestamp_ms

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fleet.models import User
    from app.fleet.modules.vehicles.models import Vehicle, VehicleAttachment


class VehicleError(ValueError):
    pass


# Fields copied straight from the payload (after clean_str) on create/update.
_TEXT_FIELDS = ("make", "model", "license_plate", "vin", "owner_company", "notes")
_ENUM_FIELDS = {
    "status": VEHICLE_STATUSES,
    "ownership": VEHICLE_OWNERSHIP,
    "fuel_type": FUEL_TYPES,
    "transmission": TRANSMISSIONS,
}
_DATE_FIELDS = ("purchase_date", "last_service_date", "next_service_due")
_NUMBER_FIELDS = ("engine_size_l", "odometer")


def validate_vehicle_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate vehicle create/update payload. Returns list of errors.

    With partial=True (API PUT), only the keys present are checked.
    """
    errors: list[str] = []

    def present(key: str) -> bool:
        return not partial or key in payload

    if present("year"):
        year = parse_int(payload.get("year"))
        if year is None:
            errors.append("Year is required.")
        elif year < 1900 or year > 2100:
            errors.append("Year must be between 1900 and 2100.")

    for key, label in (("make", "Make"), ("model", "Model"), ("license_plate", "License plate"), ("vin", "VIN")):
        if present(key) and not clean_str(payload.get(key)):
            errors.append(f"{label} is required.")

    for key, allowed in _ENUM_FIELDS.items():
        value = clean_str(payload.get(key))
        if value and value not in allowed:
            errors.append(f"Invalid {key.replace('_', ' ')}. Must be one of: {', '.join(allowed)}")

    for key in _DATE_FIELDS:
        if not is_valid_date(payload.get(key)):
            errors.append(f"{key.replace('_', ' ').capitalize()} must be YYYY-MM-DD.")

    for key in _NUMBER_FIELDS:
        try:
            value = parse_decimal(payload.get(key))
        except ValueError:
            errors.append(f"{key.replace('_', ' ').capitalize()} must be a number.")
            continue
        if value is not None and value < 0:
            errors.append(f"{key.replace('_', ' ').capitalize()} cannot be negative.")

    return errors


def list_vehicles(
    s: "Session",
    *,
    search: str | None = None,
    status: str | None = None,
    ownership: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> tuple[list["Vehicle"], int]:
    """Filtered page of vehicles, most recently updated first. Returns (rows, total)."""
    from app.fleet.modules.vehicles.models import Vehicle

    q = s.query(Vehicle)
    search = (search or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Vehicle.license_plate.ilike(like),
                Vehicle.make.ilike(like),
                Vehicle.model.ilike(like),
            )
        )
    if status and status != "all":
        q = q.filter(Vehicle.status == status)
    if ownership and ownership != "all":
        q = q.filter(Vehicle.ownership == ownership)

    total = q.order_by(None).count()
    rows = q.order_by(Vehicle.updated_at.desc(), Vehicle.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def list_vehicle_options(s: "Session", limit: int = 50) -> list[dict]:
    from app.fleet.modules.vehicles.models import Vehicle

    rows = s.query(Vehicle).order_by(Vehicle.license_plate.asc()).limit(limit).all()
    return [{"id": v.id, "label": v.label, "license_plate": v.license_plate} for v in rows]


def list_recent_vehicles(s: "Session", limit: int = 5) -> list["Vehicle"]:
    from app.fleet.modules.vehicles.models import Vehicle

    return s.query(Vehicle).order_by(Vehicle.created_at.desc(), Vehicle.id.desc()).limit(limit).all()


def get_vehicle(s: "Session", vehicle_id: int) -> "Vehicle | None":
    from app.fleet.modules.vehicles.models import Vehicle

    return s.get(Vehicle, vehicle_id)


def _apply_fields(vehicle: "Vehicle", payload: dict, *, partial: bool) -> dict:
    """Copy payload onto the vehicle. Returns {field: {"old", "new"}} for changed fields."""
    changes: dict = {}

    def setv(field: str, new) -> None:
        old = getattr(vehicle, field)
        if old != new:
            changes[field] = {"old": None if old is None else str(old), "new": None if new is None else str(new)}
            setattr(vehicle, field, new)

    if not partial or "year" in payload:
        setv("year", parse_int(payload.get("year")))
    for field in _TEXT_FIELDS:
        if not partial or field in payload:
            setv(field, clean_str(payload.get(field)))
    for field in _ENUM_FIELDS:
        if not partial or field in payload:
            value = clean_str(payload.get(field))
            if field == "status":
                value = value or "available"
            elif field == "ownership":
                value = value or "owned"
            setv(field, value)
    for field in _DATE_FIELDS:
        if not partial or field in payload:
            setv(field, parse_date(payload.get(field)))
    for field in _NUMBER_FIELDS:
        if not partial or field in payload:
            setv(field, parse_decimal(payload.get(field)))
    return changes


def create_vehicle(s: "Session", payload: dict, user: "User") -> "Vehicle":
    """Create a vehicle and place it in the Default Group."""
    from app.fleet.modules.vehicles.models import Vehicle
    from app.fleet.modules.vehicle_groups.models import VehicleGroupAssignment
    from app.fleet.modules.vehicle_groups.service import get_or_create_default_group

    now = datetime.utcnow()
    vehicle = Vehicle(created_at=now, updated_at=now, created_by_user_id=user.id, updated_by_user_id=user.id)
    _apply_fields(vehicle, payload, partial=False)
    s.add(vehicle)
    s.flush()

    group = get_or_create_default_group(s, user)
    vehicle.group_assignments.append(
        VehicleGroupAssignment(group=group, assigned_at=now, assigned_by_user_id=user.id)
    )
    s.flush()

    record_event(
        s,
        actor=user,
        action="vehicle.create",
        entity_type="Vehicle",
        entity_id=str(vehicle.id),
        metadata={"license_plate": vehicle.license_plate, "vin": vehicle.vin, "group_id": group.id},
    )
    return vehicle


def update_vehicle(s: "Session", vehicle: "Vehicle", payload: dict, user: "User", *, partial: bool = False) -> "Vehicle":
    changes = _apply_fields(vehicle, payload, partial=partial)
    vehicle.updated_at = datetime.utcnow()
    vehicle.updated_by_user_id = user.id

    record_event(
        s,
        actor=user,
        action="vehicle.update",
        entity_type="Vehicle",
        entity_id=str(vehicle.id),
        metadata={"license_plate": vehicle.license_plate, "changes": changes},
    )
    return vehicle


def delete_vehicle(s: "Session", vehicle: "Vehicle", user: "User") -> None:
    """Hard delete. Vehicles referenced by inspections, agreements or checks must be retired instead."""
    from flask import current_app
    from app.fleet.modules.agreements.models import Agreement
    from app.fleet.modules.compliance.models import ContractorVehicleCheck
    from app.fleet.modules.inspections.models import Inspection
    from app.fleet.storage import storage_from_config

    for model, label in ((Inspection, "inspections"), (Agreement, "agreements"), (ContractorVehicleCheck, "compliance checks")):
        count = s.query(func.count(model.id)).filter(model.vehicle_id == vehicle.id).scalar() or 0
        if count:
            raise VehicleError(f"Cannot delete vehicle with existing {label}. Retire it instead.")

    storage_keys = [a.storage_key for a in vehicle.attachments]
    record_event(
        s,
        actor=user,
        action="vehicle.delete",
        entity_type="Vehicle",
        entity_id=str(vehicle.id),
        metadata={"license_plate": vehicle.license_plate, "vin": vehicle.vin},
    )
    s.delete(vehicle)
    s.flush()

    storage = storage_from_config(current_app.config)
    for key in storage_keys:
        storage.delete(key)


def retire_vehicle(s: "Session", vehicle: "Vehicle", user: "User") -> "Vehicle":
    """Soft delete: keep the record, mark it retired."""
    old_status = vehicle.status
    vehicle.status = "retired"
    vehicle.updated_at = datetime.utcnow()
    vehicle.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="vehicle.retire",
        entity_type="Vehicle",
        entity_id=str(vehicle.id),
        metadata={"license_plate": vehicle.license_plate, "old_status": old_status},
    )
    return vehicle


def build_attachment_storage_key(user_id: int, filename: str) -> str:
    return f"vehicles/attachments/{user_id}/{timestamp_ms()}-{sanitize_filename(filename)}"


def upload_vehicle_attachment(
    s: "Session",
    vehicle: "Vehicle",
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: "User",
) -> "VehicleAttachment":
    from flask import current_app
    from app.fleet.modules.vehicles.models import VehicleAttachment
    from app.fleet.storage import storage_from_config

    if not file_bytes:
        raise VehicleError("File is empty.")
    if len(file_bytes) > MAX_VEHICLE_ATTACHMENT_BYTES:
        raise VehicleError("File size exceeds 10MB limit.")

    content_type = content_type or "application/octet-stream"
    storage_key = build_attachment_storage_key(user.id, filename)
    storage = storage_from_config(current_app.config)
    storage.put_bytes(storage_key, file_bytes, content_type=content_type)

    attachment = VehicleAttachment(
        vehicle_id=vehicle.id,
        storage_key=storage_key,
        file_name=filename or "file",
        file_size_bytes=len(file_bytes),
        content_type=content_type,
        created_by_user_id=user.id,
    )
    s.add(attachment)
    s.flush()

    record_event(
        s,
        actor=user,
        action="vehicle.attachment_upload",
        entity_type="Vehicle",
        entity_id=str(vehicle.id),
        metadata={"attachment_id": attachment.id, "file_name": attachment.file_name, "storage_key": storage_key},
    )
    return attachment


def vehicle_to_dict(vehicle: "Vehicle", *, detail: bool = False) -> dict:
    group = vehicle.group
    data = {
        "id": vehicle.id,
        "year": vehicle.year,
        "make": vehicle.make,
        "model": vehicle.model,
        "license_plate": vehicle.license_plate,
        "vin": vehicle.vin,
        "status": vehicle.status,
        "ownership": vehicle.ownership,
        "display_name": vehicle.display_name,
        "group_id": group.id if group else None,
        "group_name": group.name if group else None,
        "updated_at": vehicle.updated_at.isoformat() if vehicle.updated_at else None,
    }
    if detail:
        data.update(
            {
                "owner_company": vehicle.owner_company,
                "fuel_type": vehicle.fuel_type,
                "transmission": vehicle.transmission,
                "engine_size_l": float(vehicle.engine_size_l) if vehicle.engine_size_l is not None else None,
                "odometer": float(vehicle.odometer) if vehicle.odometer is not None else None,
                "purchase_date": vehicle.purchase_date.isoformat() if vehicle.purchase_date else None,
                "last_service_date": vehicle.last_service_date.isoformat() if vehicle.last_service_date else None,
                "next_service_due": vehicle.next_service_due.isoformat() if vehicle.next_service_due else None,
                "notes": vehicle.notes,
                "created_at": vehicle.created_at.isoformat() if vehicle.created_at else None,
                "attachments": [
                    {
                        "id": a.id,
                        "file_name": a.file_name,
                        "file_size_bytes": a.file_size_bytes,
                        "content_type": a.content_type,
                        "storage_key": a.storage_key,
                    }
                    for a in vehicle.attachments
                ],
            }
        )
    return data
