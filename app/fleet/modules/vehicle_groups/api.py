from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.fleet.db import db_session
from app.fleet.http import current_user, json_error, json_payload, validation_error
from app.fleet.modules.vehicle_groups.service import (
    VehicleGroupError,
    assign_manager,
    assign_vehicle_to_group,
    create_group,
    delete_group,
    get_group,
    get_group_detail,
    group_to_dict,
    list_groups,
    non_default_vehicles,
    remove_manager,
    update_group,
    validate_group_payload,
)
from app.fleet.modules.vehicles.models import Vehicle
from app.fleet.modules.vehicles.service import vehicle_to_dict
from app.fleet.rbac import require_permission
from app.fleet.utils import parse_bool, parse_int

bp = Blueprint("vehicle_groups_api", __name__)


def _user_summary(u) -> dict:
    return {"id": u.id, "name": u.display_name, "email": u.email, "role": u.role_key}


@bp.get("/vehicle-groups")
@require_permission("groups.view")
def api_groups_list():
    rows = list_groups(db_session(), exclude_default=parse_bool(request.args.get("exclude_default")))
    return jsonify({"groups": [group_to_dict(row["group"], row) for row in rows]})


@bp.post("/vehicle-groups")
@require_permission("groups.edit")
def api_groups_create():
    s = db_session()
    payload = json_payload()
    errors = validate_group_payload(payload)
    if errors:
        return validation_error(errors)
    group = create_group(s, payload, current_user())
    s.commit()
    return jsonify({"success": True, "group": group_to_dict(group)}), 201


@bp.get("/vehicle-groups/non-default/vehicles")
@require_permission("groups.view")
def api_non_default_vehicles():
    exclude = parse_int(request.args.get("exclude_group_id"))
    vehicles = non_default_vehicles(db_session(), exclude_group_id=exclude)
    return jsonify({"vehicles": [vehicle_to_dict(v) for v in vehicles]})


@bp.get("/vehicle-groups/<int:group_id>")
@require_permission("groups.view")
def api_group_get(group_id: int):
    s = db_session()
    group = get_group(s, group_id)
    if not group:
        return json_error("Group not found", 404)
    detail = get_group_detail(s, group)
    data = group_to_dict(group)
    data.update(
        {
            "vehicles": [vehicle_to_dict(v) for v in detail["vehicles"]],
            "managers": [_user_summary(m) for m in detail["managers"]],
            "created_by_name": detail["created_by_name"],
        }
    )
    return jsonify({"group": data})


@bp.put("/vehicle-groups/<int:group_id>")
@require_permission("groups.edit")
def api_group_update(group_id: int):
    s = db_session()
    group = get_group(s, group_id)
    if not group:
        return json_error("Group not found", 404)
    payload = json_payload()
    merged = {"name": group.name, **payload}
    errors = validate_group_payload(merged)
    if errors:
        return validation_error(errors)
    try:
        update_group(s, group, payload, current_user())
    except VehicleGroupError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "group": group_to_dict(group)})


@bp.delete("/vehicle-groups/<int:group_id>")
@require_permission("groups.edit")
def api_group_delete(group_id: int):
    s = db_session()
    group = get_group(s, group_id)
    if not group:
        return json_error("Group not found", 404)
    try:
        delete_group(s, group, current_user())
    except VehicleGroupError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True})


@bp.post("/vehicle-groups/<int:group_id>/managers")
@require_permission("groups.edit")
def api_group_assign_manager(group_id: int):
    s = db_session()
    group = get_group(s, group_id)
    if not group:
        return json_error("Group not found", 404)
    manager_id = parse_int(json_payload().get("manager_id"))
    if not manager_id:
        return validation_error(["manager_id is required."])
    try:
        assign_manager(s, group, manager_id, current_user())
    except LookupError as e:
        s.rollback()
        return json_error(e.args[0], 404)
    except VehicleGroupError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True}), 201


@bp.delete("/vehicle-groups/<int:group_id>/managers")
@require_permission("groups.edit")
def api_group_remove_manager(group_id: int):
    s = db_session()
    group = get_group(s, group_id)
    if not group:
        return json_error("Group not found", 404)
    manager_id = parse_int(request.args.get("manager_id"))
    if not manager_id:
        return json_error("manager_id is required", 400)
    try:
        remove_manager(s, group, manager_id, current_user())
    except LookupError as e:
        s.rollback()
        return json_error(e.args[0], 404)
    s.commit()
    return jsonify({"success": True})


@bp.post("/vehicle-groups/<int:group_id>/vehicles")
@require_permission("groups.edit")
def api_group_assign_vehicles(group_id: int):
    s = db_session()
    u = current_user()
    group = get_group(s, group_id)
    if not group:
        return json_error("Group not found", 404)
    raw_ids = json_payload().get("vehicle_ids")
    if not isinstance(raw_ids, list) or not raw_ids:
        return validation_error(["vehicle_ids must be a non-empty list."])
    ids = [parse_int(v) for v in raw_ids]
    if any(i is None for i in ids):
        return validation_error(["vehicle_ids must contain integer ids."])
    vehicles = s.query(Vehicle).filter(Vehicle.id.in_(ids)).all()
    missing = sorted(set(ids) - {v.id for v in vehicles})
    if missing:
        return json_error(f"Vehicle not found: {', '.join(str(m) for m in missing)}", 404)
    for vehicle in vehicles:
        assign_vehicle_to_group(s, vehicle, group, u)
    s.commit()
    return jsonify({"success": True, "assigned": len(vehicles)})
