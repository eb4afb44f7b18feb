from __future__ import annotations

from datetime import date

from flask import Blueprint, flash, redirect, render_template, request, url_for
from sqlalchemy import func

from app.fleet.audit import query_events
from app.fleet.constants import ACTIVE_VEHICLE_STATUSES
from app.fleet.db import db_session
from app.fleet.http import current_user, form_payload
from app.fleet.rbac import require_permission
from app.fleet.utils import parse_date

bp = Blueprint("dashboard", __name__)


def _parse_date(s: str) -> date | None:
    try:
        return parse_date(s)
    except ValueError:
        return None


@bp.get("/")
@require_permission("vehicles.view")
def index():
    from app.fleet.modules.agreements.service import list_recent_agreements
    from app.fleet.modules.drivers.models import Driver
    from app.fleet.modules.inspections.service import list_recent_inspections
    from app.fleet.modules.vehicles.models import Vehicle
    from app.fleet.modules.vehicles.service import list_recent_vehicles

    s = db_session()
    counts = {
        "vehicles": s.query(func.count(Vehicle.id)).scalar() or 0,
        "active_vehicles": s.query(func.count(Vehicle.id)).filter(Vehicle.status.in_(ACTIVE_VEHICLE_STATUSES)).scalar() or 0,
        "drivers": s.query(func.count(Driver.id)).scalar() or 0,
    }
    return render_template(
        "dashboard/index.html",
        counts=counts,
        recent_vehicles=list_recent_vehicles(s),
        recent_inspections=list_recent_inspections(s),
        recent_agreements=list_recent_agreements(s),
    )


# ---------- Profile ----------
def _render_profile(status: int = 200):
    from app.fleet.modules.organizations.service import get_organization
    from app.fleet.modules.users.service import get_roles

    s = db_session()
    u = current_user()
    return (
        render_template(
            "dashboard/profile.html",
            user=u,
            organization=get_organization(s, u),
            roles=get_roles(s) if u.role_key == "admin" else [],
        ),
        status,
    )


@bp.get("/profile")
@require_permission("profile.edit")
def profile():
    return _render_profile()


@bp.post("/profile")
@require_permission("profile.edit")
def profile_update():
    from app.fleet.modules.users.service import UserAdminError, update_profile

    s = db_session()
    payload = form_payload(("username", "email", "first_name", "last_name", "phone", "password", "confirm_password"))
    if request.form.get("role_id"):
        payload["role_id"] = request.form.get("role_id")
    payload = {k: v for k, v in payload.items() if v is not None}
    try:
        update_profile(s, current_user(), payload)
    except UserAdminError as e:
        s.rollback()
        for msg in str(e).split("; "):
            flash(msg, "danger")
        return _render_profile(400)
    s.commit()
    flash("Profile updated.", "success")
    return redirect(url_for("dashboard.profile"))


@bp.post("/profile/organization")
@require_permission("profile.edit")
def profile_organization():
    from app.fleet.modules.organizations.service import OrganizationError, save_organization, upload_logo

    s = db_session()
    u = current_user()
    try:
        save_organization(s, u, {"name": request.form.get("name")})
        f = request.files.get("logo")
        if f and f.filename:
            upload_logo(s, u, f.read(), f.mimetype)
    except OrganizationError as e:
        s.rollback()
        flash(str(e), "danger")
        return _render_profile(400)
    s.commit()
    flash("Organisation saved.", "success")
    return redirect(url_for("dashboard.profile"))


# ---------- Audit ----------
@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """Latest audit events, filtered by action, actor email and an inclusive date range."""
    args = {k: (request.args.get(k) or "").strip() for k in ("action", "actor_email", "date_from", "date_to")}
    dates = {}
    for key in ("date_from", "date_to"):
        dates[key] = _parse_date(args[key])
        if args[key] and not dates[key]:
            flash(f"{key} must be YYYY-MM-DD", "danger")

    events = query_events(
        db_session(),
        action=args["action"],
        actor_email=args["actor_email"],
        date_from=dates["date_from"],
        date_to=dates["date_to"],
    )
    return render_template("dashboard/audit.html", events=events, **args)
