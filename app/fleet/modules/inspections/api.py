from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.fleet.db import db_session
from app.fleet.http import current_user, json_error, json_payload, validation_error
from app.fleet.modules.inspections.service import (
    InspectionError,
    create_inspection,
    delete_inspection,
    get_inspection,
    inspection_to_dict,
    list_inspections,
    update_inspection,
    update_inspection_status,
    upload_inspection_image,
    validate_inspection_payload,
)
from app.fleet.rbac import require_permission
from app.fleet.utils import parse_int

bp = Blueprint("inspections_api", __name__)


@bp.get("/inspections")
@require_permission("inspections.view")
def api_inspections_list():
    limit = min(max(parse_int(request.args.get("limit"), 20) or 20, 1), 50)
    offset = max(parse_int(request.args.get("offset"), 0) or 0, 0)
    rows, total = list_inspections(
        db_session(),
        vehicle_id=parse_int(request.args.get("vehicle_id")),
        status=request.args.get("status"),
        search=request.args.get("search"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"inspections": [inspection_to_dict(i) for i in rows], "total": total, "limit": limit, "offset": offset})


@bp.post("/inspections")
@require_permission("inspections.edit")
def api_inspections_create():
    s = db_session()
    payload = json_payload()
    errors = validate_inspection_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        inspection = create_inspection(s, payload, current_user())
    except LookupError as e:
        s.rollback()
        return json_error(e.args[0], 404)
    s.commit()
    return jsonify({"success": True, "inspection": inspection_to_dict(inspection, detail=True)}), 201


@bp.get("/inspections/<int:inspection_id>")
@require_permission("inspections.view")
def api_inspection_get(inspection_id: int):
    inspection = get_inspection(db_session(), inspection_id)
    if not inspection:
        return json_error("Inspection not found", 404)
    return jsonify({"inspection": inspection_to_dict(inspection, detail=True)})


@bp.put("/inspections/<int:inspection_id>")
@require_permission("inspections.edit")
def api_inspection_update(inspection_id: int):
    s = db_session()
    inspection = get_inspection(s, inspection_id)
    if not inspection:
        return json_error("Inspection not found", 404)
    payload = json_payload()
    errors = validate_inspection_payload(payload, partial=True)
    if errors:
        return validation_error(errors)
    try:
        update_inspection(s, inspection, payload, current_user())
    except LookupError as e:
        s.rollback()
        return json_error(e.args[0], 404)
    s.commit()
    return jsonify({"success": True, "inspection": inspection_to_dict(inspection, detail=True)})


@bp.patch("/inspections/<int:inspection_id>")
@require_permission("inspections.edit")
def api_inspection_status(inspection_id: int):
    s = db_session()
    inspection = get_inspection(s, inspection_id)
    if not inspection:
        return json_error("Inspection not found", 404)
    try:
        update_inspection_status(s, inspection, json_payload().get("status"), current_user())
    except InspectionError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "inspection": inspection_to_dict(inspection)})


@bp.delete("/inspections/<int:inspection_id>")
@require_permission("inspections.edit")
def api_inspection_delete(inspection_id: int):
    s = db_session()
    inspection = get_inspection(s, inspection_id)
    if not inspection:
        return json_error("Inspection not found", 404)
    try:
        delete_inspection(s, inspection, current_user())
    except InspectionError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True})


@bp.post("/inspections/images")
@require_permission("inspections.edit")
def api_inspection_image_upload():
    f = request.files.get("file")
    if not f or not f.filename:
        return json_error("No file provided", 400)
    try:
        image = upload_inspection_image(f.read(), f.filename, f.mimetype, request.form.get("section") or "", current_user())
    except InspectionError as e:
        return json_error(str(e), 400)
    return jsonify({"success": True, "image": image}), 201
