from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.fleet.audit import record_event
from app.fleet.utils import clean_str, is_valid_au_phone, is_valid_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fleet.models import User
    from app.fleet.modules.drivers.models import Driver


class DriverError(ValueError):
    pass


ACTIVE_AGREEMENT_STATUSES = ("pending_signature", "signed")


def validate_driver_payload(payload: dict) -> list[str]:
    errors = []
    for key, label in (("first_name", "First name"), ("last_name", "Last name")):
        value = clean_str(payload.get(key))
        if not value:
            errors.append(f"{label} is required.")
        elif len(value) > 100:
            errors.append(f"{label} must be 100 characters or fewer.")
    email = clean_str(payload.get("email"))
    if email and not is_valid_email(email):
        errors.append("Invalid email address.")
    phone = clean_str(payload.get("phone"))
    if phone and not is_valid_au_phone(phone):
        errors.append("Invalid phone number. Use an Australian number, e.g. 0412345678, 04 1234 5678 or +61412345678.")
    notes = clean_str(payload.get("notes"))
    if notes and len(notes) > 2000:
        errors.append("Notes must be 2000 characters or fewer.")
    return errors


def list_drivers(s: "Session", *, search: str | None = None, limit: int = 20, offset: int = 0) -> tuple[list["Driver"], int]:
    from app.fleet.modules.drivers.models import Driver

    q = s.query(Driver)
    search = (search or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Driver.first_name.ilike(like),
                Driver.last_name.ilike(like),
                Driver.email.ilike(like),
                Driver.phone.ilike(like),
            )
        )
    total = q.order_by(None).count()
    rows = q.order_by(Driver.created_at.desc(), Driver.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def get_driver(s: "Session", driver_id: int) -> "Driver | None":
    from app.fleet.modules.drivers.models import Driver

    return s.get(Driver, driver_id)


def get_driver_detail(s: "Session", driver: "Driver") -> dict:
    """Driver plus the agreements sent to them for signature."""
    from app.fleet.modules.agreements.models import Agreement

    agreements = (
        s.query(Agreement)
        .filter(Agreement.signed_by_driver_id == driver.id)
        .order_by(Agreement.created_at.desc())
        .all()
    )
    return {
        "driver": driver,
        "agreements": agreements,
        "stats": {
            "total": len(agreements),
            "active": sum(1 for a in agreements if a.status in ACTIVE_AGREEMENT_STATUSES),
        },
    }


def create_driver(s: "Session", payload: dict, user: "User") -> "Driver":
    from app.fleet.modules.drivers.models import Driver

    now = datetime.utcnow()
    driver = Driver(
        first_name=clean_str(payload.get("first_name")),
        last_name=clean_str(payload.get("last_name")),
        email=(clean_str(payload.get("email")) or "").lower() or None,
        phone=clean_str(payload.get("phone")),
        notes=clean_str(payload.get("notes")),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(driver)
    s.flush()
    record_event(
        s,
        actor=user,
        action="driver.create",
        entity_type="Driver",
        entity_id=str(driver.id),
        metadata={"name": driver.full_name, "email": driver.email},
    )
    return driver


def update_driver(s: "Session", driver: "Driver", payload: dict, user: "User") -> "Driver":
    changes = {}
    for field in ("first_name", "last_name", "email", "phone", "notes"):
        if field not in payload:
            continue
        new = clean_str(payload.get(field))
        if field == "email" and new:
            new = new.lower()
        old = getattr(driver, field)
        if new != old:
            changes[field] = {"old": old, "new": new}
            setattr(driver, field, new)
    driver.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="driver.update",
        entity_type="Driver",
        entity_id=str(driver.id),
        metadata={"name": driver.full_name, "changes": changes},
    )
    return driver


def delete_driver(s: "Session", driver: "Driver", user: "User") -> None:
    from app.fleet.modules.compliance.models import ContractorVehicleCheck

    checks = s.query(func.count(ContractorVehicleCheck.id)).filter(ContractorVehicleCheck.driver_id == driver.id).scalar() or 0
    if checks:
        raise DriverError("Cannot delete a driver with compliance check history.")
    record_event(
        s,
        actor=user,
        action="driver.delete",
        entity_type="Driver",
        entity_id=str(driver.id),
        metadata={"name": driver.full_name, "email": driver.email},
    )
    s.delete(driver)
    s.flush()


def driver_to_dict(driver: "Driver") -> dict:
    return {
        "id": driver.id,
        "first_name": driver.first_name,
        "last_name": driver.last_name,
        "full_name": driver.full_name,
        "email": driver.email,
        "phone": driver.phone,
        "notes": driver.notes,
        "created_at": driver.created_at.isoformat() if driver.created_at else None,
        "updated_at": driver.updated_at.isoformat() if driver.updated_at else None,
    }
