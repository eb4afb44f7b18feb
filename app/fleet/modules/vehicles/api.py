from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.fleet.db import db_session
from app.fleet.http import current_user, json_error, json_payload, validation_error
from app.fleet.modules.vehicles.service import (
    VehicleError,
    create_vehicle,
    delete_vehicle,
    get_vehicle,
    list_vehicles,
    retire_vehicle,
    update_vehicle,
    upload_vehicle_attachment,
    validate_vehicle_payload,
    vehicle_to_dict,
)
from app.fleet.rbac import require_permission
from app.fleet.utils import page_window, parse_bool, total_pages

bp = Blueprint("vehicles_api", __name__)


@bp.get("/vehicles")
@require_permission("vehicles.view")
def api_vehicles_list():
    s = db_session()
    page, limit, offset = page_window(request.args.get("page"), request.args.get("limit"), default_limit=10)
    rows, total = list_vehicles(
        s,
        search=request.args.get("search"),
        status=request.args.get("status"),
        ownership=request.args.get("ownership"),
        limit=limit,
        offset=offset,
    )
    return jsonify(
        {
            "vehicles": [vehicle_to_dict(v) for v in rows],
            "total": total,
            "page": page,
            "total_pages": total_pages(total, limit),
        }
    )


@bp.post("/vehicles")
@require_permission("vehicles.edit")
def api_vehicles_create():
    s = db_session()
    payload = json_payload()
    errors = validate_vehicle_payload(payload)
    if errors:
        return validation_error(errors)
    vehicle = create_vehicle(s, payload, current_user())
    s.commit()
    return jsonify({"success": True, "vehicle": vehicle_to_dict(vehicle, detail=True)}), 201


@bp.get("/vehicles/<int:vehicle_id>")
@require_permission("vehicles.view")
def api_vehicle_get(vehicle_id: int):
    vehicle = get_vehicle(db_session(), vehicle_id)
    if not vehicle:
        return json_error("Vehicle not found", 404)
    return jsonify({"vehicle": vehicle_to_dict(vehicle, detail=True)})


@bp.put("/vehicles/<int:vehicle_id>")
@require_permission("vehicles.edit")
def api_vehicle_update(vehicle_id: int):
    s = db_session()
    vehicle = get_vehicle(s, vehicle_id)
    if not vehicle:
        return json_error("Vehicle not found", 404)
    payload = json_payload()
    errors = validate_vehicle_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    update_vehicle(s, vehicle, payload, current_user(), partial=True)
    s.commit()
    return jsonify({"success": True, "vehicle": vehicle_to_dict(vehicle, detail=True)})


@bp.delete("/vehicles/<int:vehicle_id>")
@require_permission("vehicles.edit")
def api_vehicle_delete(vehicle_id: int):
    s = db_session()
    vehicle = get_vehicle(s, vehicle_id)
    if not vehicle:
        return json_error("Vehicle not found", 404)
    if parse_bool(request.args.get("soft")):
        retire_vehicle(s, vehicle, current_user())
        s.commit()
        return jsonify({"success": True, "message": "Vehicle retired"})
    try:
        delete_vehicle(s, vehicle, current_user())
    except VehicleError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "message": "Vehicle deleted"})


@bp.post("/upload/vehicle-attachments")
@require_permission("vehicles.edit")
def api_vehicle_attachment_upload():
    s = db_session()
    vehicle_id = request.form.get("vehicle_id", type=int)
    vehicle = get_vehicle(s, vehicle_id) if vehicle_id else None
    if not vehicle:
        return json_error("Vehicle not found", 404)
    f = request.files.get("file")
    if not f or not f.filename:
        return json_error("No file provided", 400)
    try:
        attachment = upload_vehicle_attachment(s, vehicle, f.read(), f.filename, f.mimetype, current_user())
    except VehicleError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return (
        jsonify(
            {
                "success": True,
                "attachment": {
                    "id": attachment.id,
                    "file_name": attachment.file_name,
                    "file_size_bytes": attachment.file_size_bytes,
                    "content_type": attachment.content_type,
                    "storage_key": attachment.storage_key,
                },
            }
        ),
        201,
    )
