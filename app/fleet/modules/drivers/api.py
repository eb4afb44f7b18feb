from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.fleet.db import db_session
from app.fleet.http import current_user, json_error, json_payload, validation_error
from app.fleet.modules.drivers.service import (
    DriverError,
    create_driver,
    delete_driver,
    driver_to_dict,
    get_driver,
    get_driver_detail,
    list_drivers,
    update_driver,
    validate_driver_payload,
)
from app.fleet.rbac import require_permission
from app.fleet.utils import page_window, total_pages

bp = Blueprint("drivers_api", __name__)


@bp.get("/drivers")
@require_permission("drivers.view")
def api_drivers_list():
    page, limit, offset = page_window(request.args.get("page"), request.args.get("limit"), default_limit=20)
    rows, total = list_drivers(db_session(), search=request.args.get("search"), limit=limit, offset=offset)
    return jsonify(
        {
            "drivers": [driver_to_dict(d) for d in rows],
            "total": total,
            "page": page,
            "total_pages": total_pages(total, limit),
        }
    )


@bp.post("/drivers")
@require_permission("drivers.edit")
def api_drivers_create():
    s = db_session()
    payload = json_payload()
    errors = validate_driver_payload(payload)
    if errors:
        return validation_error(errors)
    driver = create_driver(s, payload, current_user())
    s.commit()
    return jsonify({"success": True, "driver": driver_to_dict(driver)}), 201


@bp.get("/drivers/<int:driver_id>")
@require_permission("drivers.view")
def api_driver_get(driver_id: int):
    s = db_session()
    driver = get_driver(s, driver_id)
    if not driver:
        return json_error("Driver not found", 404)
    detail = get_driver_detail(s, driver)
    return jsonify(
        {
            "driver": driver_to_dict(driver),
            "agreements": [
                {
                    "id": a.id,
                    "status": a.status,
                    "vehicle": a.vehicle.display_name if a.vehicle else "Unknown Vehicle",
                    "license_plate": a.vehicle.license_plate if a.vehicle else None,
                    "template_title": a.template.title if a.template else None,
                    "signed_at": a.signed_at.isoformat() if a.signed_at else None,
                    "created_at": a.created_at.isoformat() if a.created_at else None,
                }
                for a in detail["agreements"]
            ],
            "stats": detail["stats"],
        }
    )


@bp.put("/drivers/<int:driver_id>")
@require_permission("drivers.edit")
def api_driver_update(driver_id: int):
    s = db_session()
    driver = get_driver(s, driver_id)
    if not driver:
        return json_error("Driver not found", 404)
    payload = json_payload()
    merged = {"first_name": driver.first_name, "last_name": driver.last_name, **payload}
    errors = validate_driver_payload(merged)
    if errors:
        return validation_error(errors)
    update_driver(s, driver, payload, current_user())
    s.commit()
    return jsonify({"success": True, "driver": driver_to_dict(driver)})


@bp.delete("/drivers/<int:driver_id>")
@require_permission("drivers.edit")
def api_driver_delete(driver_id: int):
    s = db_session()
    driver = get_driver(s, driver_id)
    if not driver:
        return json_error("Driver not found", 404)
    try:
        delete_driver(s, driver, current_user())
    except DriverError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True})
