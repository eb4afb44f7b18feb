from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.fleet.audit import record_event
from app.fleet.constants import CHECK_STATUSES, DEFAULT_CHECK_WEEKS
from app.fleet.utils import parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fleet.models import User
    from app.fleet.modules.compliance.models import ContractorVehicleCheck


class ComplianceError(ValueError):
    pass


# ---------- Formatting ----------
def format_name(first: str | None, last: str | None, fallback: str = "Unknown") -> str:
    name = " ".join(p.strip() for p in (first, last) if p and p.strip())
    return name or fallback


def format_vehicle_label(plate: str | None, year: int | None, make: str | None, model: str | None) -> str:
    descriptor = " ".join(str(p).strip() for p in (year, make, model) if p and str(p).strip())
    plate = (plate or "").strip()
    if plate and descriptor:
        return f"{plate} • {descriptor}"
    return plate or descriptor or "Vehicle details unavailable"


# ---------- Week helpers ----------
def week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


def week_end(start: date) -> date:
    return start + timedelta(days=6)


def notification_at(start: date) -> datetime:
    """Reminder time for a cycle: Wednesday 16:00."""
    return datetime.combine(start + timedelta(days=2), time(16, 0))


# ---------- Queries ----------
def get_dashboard_data(s: "Session", start: date | None = None, end: date | None = None) -> dict:
    from app.fleet.modules.compliance.models import ContractorVehicleCheck as Check

    q = s.query(Check)
    if start:
        q = q.filter(Check.cycle_week_start >= start)
    if end:
        q = q.filter(Check.cycle_week_start <= end)

    total = q.order_by(None).count()
    completed = q.filter(Check.status == "complete").order_by(None).count()
    open_checks = q.filter(Check.status == "pending").order_by(None).count()
    pending_submissions = q.filter(Check.submitted_at.is_(None)).order_by(None).count()
    activity = q.order_by(Check.updated_at.desc(), Check.id.desc()).limit(5).all()
    return {
        "metrics": {
            "total": total,
            "open": open_checks,
            "completed": completed,
            "pending_submissions": pending_submissions,
            "completion_rate": round(completed / total * 100) if total else 0,
        },
        "activity": [check_to_dict(c) for c in activity],
        "range": {"start": start.isoformat() if start else None, "end": end.isoformat() if end else None},
    }


def get_check_weeks(s: "Session") -> list[str]:
    from app.fleet.modules.compliance.models import ContractorVehicleCheck as Check

    rows = s.query(Check.cycle_week_start).distinct().order_by(Check.cycle_week_start.desc()).all()
    weeks = [r[0].isoformat() for r in rows if r[0]]
    return weeks or list(DEFAULT_CHECK_WEEKS)


def _summary(checks: list[dict]) -> dict:
    return {
        "total": len(checks),
        "completed": sum(1 for c in checks if c["status"] == "complete"),
        "pending": sum(1 for c in checks if c["status"] == "pending"),
        "submitted": sum(1 for c in checks if c["submitted_at"]),
    }


def get_contractor_checks(
    s: "Session",
    week: str | None,
    *,
    search: str | None = None,
    status: str | None = None,
) -> dict:
    """
    Checks for one cycle week.

    `summary` covers the whole week; `filtered_summary` is taken after the
    search filter but before the status filter, so the status tabs can show counts.
    """
    from app.fleet.modules.compliance.models import ContractorVehicleCheck as Check

    weeks = get_check_weeks(s)
    selected = week or weeks[0]
    start = week_start(parse_date(selected))

    rows = (
        s.query(Check)
        .filter(Check.cycle_week_start == start)
        .order_by(Check.updated_at.desc(), Check.id.desc())
        .all()
    )
    checks = [check_to_dict(c) for c in rows]
    summary = _summary(checks)

    term = (search or "").strip().lower()
    if term:
        checks = [c for c in checks if term in c["search_text"]]
    filtered_summary = _summary(checks)

    if status in CHECK_STATUSES:
        checks = [c for c in checks if c["status"] == status]

    return {
        "selected": selected,
        "week": start.isoformat(),
        "week_end": week_end(start).isoformat(),
        "notification_at": notification_at(start).isoformat(),
        "weeks": weeks,
        "checks": checks,
        "summary": summary,
        "filtered_summary": filtered_summary,
    }


def get_check(s: "Session", check_id: int) -> "ContractorVehicleCheck | None":
    from app.fleet.modules.compliance.models import ContractorVehicleCheck

    return s.get(ContractorVehicleCheck, check_id)


# ---------- Mutations ----------
def schedule_check(s: "Session", payload: dict, user: "User") -> "ContractorVehicleCheck":
    from app.fleet.modules.compliance.models import ContractorVehicleCheck as Check
    from app.fleet.modules.drivers.models import Driver
    from app.fleet.modules.vehicles.models import Vehicle

    driver = s.get(Driver, parse_int(payload.get("driver_id")))
    if not driver:
        raise LookupError("Driver not found")
    vehicle = s.get(Vehicle, parse_int(payload.get("vehicle_id")))
    if not vehicle:
        raise LookupError("Vehicle not found")
    try:
        week = parse_date(payload.get("week")) or date.today()
    except ValueError as e:
        raise ComplianceError("Week must be a date in YYYY-MM-DD format") from e
    start = week_start(week)

    exists = (
        s.query(func.count(Check.id))
        .filter(Check.driver_id == driver.id, Check.vehicle_id == vehicle.id, Check.cycle_week_start == start)
        .scalar()
    )
    if exists:
        raise ComplianceError("A check is already scheduled for this driver and vehicle in that week")

    now = datetime.utcnow()
    check = Check(
        driver_id=driver.id,
        vehicle_id=vehicle.id,
        cycle_week_start=start,
        status="pending",
        created_at=now,
        updated_at=now,
    )
    s.add(check)
    s.flush()
    record_event(
        s,
        actor=user,
        action="compliance.schedule",
        entity_type="ContractorVehicleCheck",
        entity_id=str(check.id),
        metadata={"driver_id": driver.id, "vehicle_id": vehicle.id, "week": start.isoformat()},
    )
    return check


def submit_check(s: "Session", check: "ContractorVehicleCheck", user: "User") -> "ContractorVehicleCheck":
    if check.submitted_at:
        raise ComplianceError("Check has already been submitted")
    now = datetime.utcnow()
    check.submitted_at = now
    check.updated_at = now
    record_event(
        s,
        actor=user,
        action="compliance.submit",
        entity_type="ContractorVehicleCheck",
        entity_id=str(check.id),
    )
    return check


def complete_check(s: "Session", check: "ContractorVehicleCheck", user: "User") -> "ContractorVehicleCheck":
    if check.status == "complete":
        raise ComplianceError("Check is already complete")
    now = datetime.utcnow()
    check.status = "complete"
    check.completed_at = now
    check.completed_by = user
    check.updated_at = now
    record_event(
        s,
        actor=user,
        action="compliance.complete",
        entity_type="ContractorVehicleCheck",
        entity_id=str(check.id),
    )
    return check


def check_to_dict(check: "ContractorVehicleCheck") -> dict:
    driver = check.driver
    vehicle = check.vehicle
    driver_name = format_name(
        driver.first_name if driver else None, driver.last_name if driver else None, "Unassigned driver"
    )
    vehicle_label = (
        format_vehicle_label(vehicle.license_plate, vehicle.year, vehicle.make, vehicle.model)
        if vehicle
        else format_vehicle_label(None, None, None, None)
    )
    email = driver.email if driver else None
    phone = driver.phone if driver else None
    return {
        "id": check.id,
        "driver_id": check.driver_id,
        "driver_name": driver_name,
        "driver_email": email,
        "driver_phone": phone,
        "vehicle_id": check.vehicle_id,
        "vehicle_label": vehicle_label,
        "cycle_week_start": check.cycle_week_start.isoformat(),
        "status": check.status,
        "submitted_at": check.submitted_at.isoformat() if check.submitted_at else None,
        "completed_at": check.completed_at.isoformat() if check.completed_at else None,
        "completed_by": check.completed_by.display_name if check.completed_by else None,
        "updated_at": check.updated_at.isoformat() if check.updated_at else None,
        "search_text": " ".join(p for p in (driver_name, email, phone, vehicle_label) if p).lower(),
    }
