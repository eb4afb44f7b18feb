from __future__ import annotations

from datetime import date, timedelta

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.fleet.constants import CHECK_STATUSES
from app.fleet.db import db_session
from app.fleet.http import current_user, form_payload
from app.fleet.modules.compliance.service import (
    ComplianceError,
    complete_check,
    get_check,
    get_contractor_checks,
    get_dashboard_data,
    schedule_check,
    submit_check,
    week_start,
)
from app.fleet.modules.drivers.models import Driver
from app.fleet.modules.vehicles.service import list_vehicle_options
from app.fleet.rbac import require_permission
from app.fleet.utils import parse_date

bp = Blueprint("compliance", __name__)


def _checks_redirect():
    return redirect(url_for("compliance.contractor_checks", week=request.form.get("week") or None))


@bp.get("/compliance")
@require_permission("compliance.view")
def compliance_dashboard():
    today = date.today()
    try:
        start = parse_date(request.args.get("start")) or week_start(today) - timedelta(weeks=3)
        end = parse_date(request.args.get("end")) or today
    except ValueError:
        flash("Invalid date range.", "danger")
        return redirect(url_for("compliance.compliance_dashboard"))
    data = get_dashboard_data(db_session(), start, end)
    return render_template("compliance/dashboard.html", start=start, end=end, **data)


@bp.get("/compliance/contractor-checks")
@require_permission("compliance.view")
def contractor_checks():
    s = db_session()
    try:
        data = get_contractor_checks(
            s,
            request.args.get("week"),
            search=request.args.get("search"),
            status=request.args.get("status"),
        )
    except ValueError:
        abort(400)
    return render_template(
        "compliance/contractor_checks.html",
        search=(request.args.get("search") or "").strip(),
        status=request.args.get("status") or "",
        statuses=CHECK_STATUSES,
        drivers=s.query(Driver).order_by(Driver.last_name, Driver.first_name).all(),
        vehicles=list_vehicle_options(s, limit=500),
        **data,
    )


@bp.post("/compliance/contractor-checks")
@require_permission("compliance.edit")
def contractor_checks_schedule():
    s = db_session()
    payload = form_payload(("driver_id", "vehicle_id", "week"))
    try:
        check = schedule_check(s, payload, current_user())
    except (ComplianceError, LookupError) as e:
        s.rollback()
        flash(str(e.args[0]), "danger")
        return _checks_redirect()
    s.commit()
    flash("Check scheduled.", "success")
    return redirect(url_for("compliance.contractor_checks", week=check.cycle_week_start.isoformat()))


@bp.post("/compliance/contractor-checks/<int:check_id>/submit")
@require_permission("compliance.edit")
def contractor_check_submit(check_id: int):
    s = db_session()
    check = get_check(s, check_id)
    if not check:
        abort(404)
    try:
        submit_check(s, check, current_user())
    except ComplianceError as e:
        s.rollback()
        flash(str(e), "danger")
        return _checks_redirect()
    s.commit()
    flash("Check marked as submitted.", "success")
    return _checks_redirect()


@bp.post("/compliance/contractor-checks/<int:check_id>/complete")
@require_permission("compliance.edit")
def contractor_check_complete(check_id: int):
    s = db_session()
    check = get_check(s, check_id)
    if not check:
        abort(404)
    try:
        complete_check(s, check, current_user())
    except ComplianceError as e:
        s.rollback()
        flash(str(e), "danger")
        return _checks_redirect()
    s.commit()
    flash("Check completed.", "success")
    return _checks_redirect()
