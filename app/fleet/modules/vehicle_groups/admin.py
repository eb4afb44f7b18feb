from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.fleet.constants import SIGNATURE_MODES
from app.fleet.db import db_session
from app.fleet.http import current_user, form_payload
from app.fleet.modules.vehicle_groups.models import VehicleGroup
from app.fleet.modules.vehicle_groups.service import (
    VehicleGroupError,
    assign_manager,
    assign_vehicle_to_group,
    available_managers,
    create_group,
    delete_group,
    get_group_detail,
    list_groups,
    remove_manager,
    return_vehicle_to_default,
    update_group,
    validate_group_payload,
)
from app.fleet.modules.vehicles.models import Vehicle
from app.fleet.rbac import require_permission

bp = Blueprint("vehicle_groups", __name__)

GROUP_FORM_FIELDS = ("name", "description", "type", "contract_id", "area_manager_contact", "signature_mode")


def _get_group_or_404(group_id: int) -> VehicleGroup:
    group = db_session().get(VehicleGroup, group_id)
    if not group:
        abort(404)
    return group


@bp.get("/vehicles/groups")
@require_permission("groups.view")
def groups_list():
    exclude_default = request.args.get("exclude_default") == "1"
    rows = list_groups(db_session(), exclude_default=exclude_default)
    return render_template("vehicle_groups/list.html", rows=rows, exclude_default=exclude_default)


@bp.get("/vehicles/groups/new")
@require_permission("groups.edit")
def groups_new_get():
    return render_template("vehicle_groups/form.html", group=None, form={}, signature_modes=SIGNATURE_MODES)


@bp.post("/vehicles/groups/new")
@require_permission("groups.edit")
def groups_new_post():
    s = db_session()
    payload = form_payload(GROUP_FORM_FIELDS)
    errors = validate_group_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("vehicle_groups/form.html", group=None, form=payload, signature_modes=SIGNATURE_MODES), 400
    group = create_group(s, payload, current_user())
    s.commit()
    flash("Group created.", "success")
    return redirect(url_for("vehicle_groups.group_detail", group_id=group.id))


@bp.get("/vehicles/groups/<int:group_id>")
@require_permission("groups.view")
def group_detail(group_id: int):
    s = db_session()
    group = _get_group_or_404(group_id)
    detail = get_group_detail(s, group)
    in_group = {v.id for v in detail["vehicles"]}
    candidate_vehicles = [v for v in s.query(Vehicle).order_by(Vehicle.license_plate.asc()).all() if v.id not in in_group]
    assigned_ids = {m.id for m in detail["managers"]}
    candidate_managers = [row["user"] for row in available_managers(s) if row["user"].id not in assigned_ids]
    return render_template(
        "vehicle_groups/detail.html",
        candidate_vehicles=candidate_vehicles,
        candidate_managers=candidate_managers,
        **detail,
    )


@bp.get("/vehicles/groups/<int:group_id>/edit")
@require_permission("groups.edit")
def group_edit_get(group_id: int):
    group = _get_group_or_404(group_id)
    return render_template("vehicle_groups/form.html", group=group, form={}, signature_modes=SIGNATURE_MODES)


@bp.post("/vehicles/groups/<int:group_id>/edit")
@require_permission("groups.edit")
def group_edit_post(group_id: int):
    s = db_session()
    group = _get_group_or_404(group_id)
    payload = form_payload(GROUP_FORM_FIELDS)
    errors = validate_group_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("vehicle_groups/form.html", group=group, form=payload, signature_modes=SIGNATURE_MODES), 400
    try:
        update_group(s, group, payload, current_user())
    except VehicleGroupError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("vehicle_groups.group_edit_get", group_id=group_id))
    s.commit()
    flash("Group updated.", "success")
    return redirect(url_for("vehicle_groups.group_detail", group_id=group_id))


@bp.post("/vehicles/groups/<int:group_id>/delete")
@require_permission("groups.edit")
def group_delete(group_id: int):
    s = db_session()
    group = _get_group_or_404(group_id)
    try:
        delete_group(s, group, current_user())
    except VehicleGroupError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("vehicle_groups.group_detail", group_id=group_id))
    s.commit()
    flash("Group deleted.", "success")
    return redirect(url_for("vehicle_groups.groups_list"))


@bp.post("/vehicles/groups/<int:group_id>/vehicles")
@require_permission("groups.edit")
def group_add_vehicles(group_id: int):
    s = db_session()
    u = current_user()
    group = _get_group_or_404(group_id)
    ids = [int(v) for v in request.form.getlist("vehicle_ids") if v.isdigit()]
    vehicles = s.query(Vehicle).filter(Vehicle.id.in_(ids)).all() if ids else []
    if not vehicles:
        flash("Select at least one vehicle.", "danger")
        return redirect(url_for("vehicle_groups.group_detail", group_id=group_id))
    for vehicle in vehicles:
        assign_vehicle_to_group(s, vehicle, group, u)
    s.commit()
    flash(f"{len(vehicles)} vehicle(s) added to {group.name}.", "success")
    return redirect(url_for("vehicle_groups.group_detail", group_id=group_id))


@bp.post("/vehicles/groups/<int:group_id>/vehicles/<int:vehicle_id>/return")
@require_permission("groups.edit")
def group_return_vehicle(group_id: int, vehicle_id: int):
    s = db_session()
    _get_group_or_404(group_id)
    vehicle = s.get(Vehicle, vehicle_id)
    if not vehicle:
        abort(404)
    return_vehicle_to_default(s, vehicle, current_user())
    s.commit()
    flash(f"{vehicle.license_plate} returned to the Default Group.", "success")
    return redirect(url_for("vehicle_groups.group_detail", group_id=group_id))


@bp.post("/vehicles/groups/<int:group_id>/managers")
@require_permission("groups.edit")
def group_add_manager(group_id: int):
    s = db_session()
    group = _get_group_or_404(group_id)
    manager_id = request.form.get("manager_id", type=int)
    try:
        if not manager_id:
            raise VehicleGroupError("Select a manager.")
        assign_manager(s, group, manager_id, current_user())
    except (VehicleGroupError, LookupError) as e:
        s.rollback()
        flash(str(e.args[0] if e.args else e), "danger")
        return redirect(url_for("vehicle_groups.group_detail", group_id=group_id))
    s.commit()
    flash("Manager assigned.", "success")
    return redirect(url_for("vehicle_groups.group_detail", group_id=group_id))


@bp.post("/vehicles/groups/<int:group_id>/managers/<int:manager_id>/remove")
@require_permission("groups.edit")
def group_remove_manager(group_id: int, manager_id: int):
    s = db_session()
    group = _get_group_or_404(group_id)
    try:
        remove_manager(s, group, manager_id, current_user())
    except LookupError as e:
        s.rollback()
        flash(str(e.args[0] if e.args else e), "danger")
        return redirect(url_for("vehicle_groups.group_detail", group_id=group_id))
    s.commit()
    flash("Manager removed.", "success")
    return redirect(url_for("vehicle_groups.group_detail", group_id=group_id))
