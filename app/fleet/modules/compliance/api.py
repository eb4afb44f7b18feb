from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.fleet.db import db_session
from app.fleet.http import current_user, json_error, json_payload, validation_error
from app.fleet.modules.compliance.service import (
    ComplianceError,
    check_to_dict,
    complete_check,
    get_check,
    get_contractor_checks,
    get_dashboard_data,
    schedule_check,
    submit_check,
)
from app.fleet.rbac import require_permission
from app.fleet.utils import parse_date

bp = Blueprint("compliance_api", __name__)


@bp.get("/compliance/dashboard")
@require_permission("compliance.view")
def api_compliance_dashboard():
    try:
        start = parse_date(request.args.get("start"))
        end = parse_date(request.args.get("end"))
    except ValueError:
        return validation_error(["start and end must be dates in YYYY-MM-DD format."])
    return jsonify(get_dashboard_data(db_session(), start, end))


@bp.get("/compliance/checks")
@require_permission("compliance.view")
def api_contractor_checks():
    try:
        data = get_contractor_checks(
            db_session(),
            request.args.get("week"),
            search=request.args.get("search"),
            status=request.args.get("status"),
        )
    except ValueError:
        return validation_error(["week must be a date in YYYY-MM-DD format."])
    return jsonify(data)


@bp.post("/compliance/checks")
@require_permission("compliance.edit")
def api_schedule_check():
    s = db_session()
    payload = json_payload()
    errors = [f"{k} is required." for k in ("driver_id", "vehicle_id") if not payload.get(k)]
    if errors:
        return validation_error(errors)
    try:
        check = schedule_check(s, payload, current_user())
    except LookupError as e:
        s.rollback()
        return json_error(e.args[0], 404)
    except ComplianceError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "check": check_to_dict(check)}), 201


def _transition(check_id: int, action):
    s = db_session()
    check = get_check(s, check_id)
    if not check:
        return json_error("Check not found", 404)
    try:
        action(s, check, current_user())
    except ComplianceError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "check": check_to_dict(check)})


@bp.post("/compliance/checks/<int:check_id>/submit")
@require_permission("compliance.edit")
def api_submit_check(check_id: int):
    return _transition(check_id, submit_check)


@bp.post("/compliance/checks/<int:check_id>/complete")
@require_permission("compliance.edit")
def api_complete_check(check_id: int):
    return _transition(check_id, complete_check)
