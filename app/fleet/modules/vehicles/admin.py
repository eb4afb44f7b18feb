from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.fleet.constants import FUEL_TYPES, TRANSMISSIONS, VEHICLE_OWNERSHIP, VEHICLE_STATUSES
from app.fleet.db import db_session
from app.fleet.http import current_user, form_payload
from app.fleet.modules.vehicles.models import Vehicle
from app.fleet.modules.vehicles.service import (
    VehicleError,
    create_vehicle,
    delete_vehicle,
    list_vehicles,
    retire_vehicle,
    update_vehicle,
    upload_vehicle_attachment,
    validate_vehicle_payload,
)
from app.fleet.modules.vehicle_groups.service import assign_vehicle_to_group, get_group, list_groups
from app.fleet.rbac import require_permission
from app.fleet.utils import page_window, total_pages

bp = Blueprint("vehicles", __name__)

VEHICLE_FORM_FIELDS = (
    "year",
    "make",
    "model",
    "license_plate",
    "vin",
    "status",
    "ownership",
    "owner_company",
    "fuel_type",
    "transmission",
    "engine_size_l",
    "odometer",
    "purchase_date",
    "last_service_date",
    "next_service_due",
    "notes",
)


def _form_choices() -> dict:
    return {
        "statuses": VEHICLE_STATUSES,
        "ownerships": VEHICLE_OWNERSHIP,
        "fuel_types": FUEL_TYPES,
        "transmissions": TRANSMISSIONS,
    }


def _get_vehicle_or_404(vehicle_id: int) -> Vehicle:
    vehicle = db_session().get(Vehicle, vehicle_id)
    if not vehicle:
        abort(404)
    return vehicle


# ---------- List ----------
@bp.get("/vehicles")
@require_permission("vehicles.view")
def vehicles_list():
    s = db_session()
    search = (request.args.get("search") or "").strip()
    status = (request.args.get("status") or "all").strip()
    ownership = (request.args.get("ownership") or "all").strip()
    page, limit, offset = page_window(request.args.get("page"), request.args.get("limit"), default_limit=10)

    vehicles, total = list_vehicles(s, search=search, status=status, ownership=ownership, limit=limit, offset=offset)
    return render_template(
        "vehicles/list.html",
        vehicles=vehicles,
        total=total,
        page=page,
        total_pages=total_pages(total, limit),
        search=search,
        status=status,
        ownership=ownership,
        **_form_choices(),
    )


# ---------- New ----------
@bp.get("/vehicles/new")
@require_permission("vehicles.edit")
def vehicles_new_get():
    return render_template("vehicles/form.html", vehicle=None, form={}, **_form_choices())


@bp.post("/vehicles/new")
@require_permission("vehicles.edit")
def vehicles_new_post():
    s = db_session()
    u = current_user()
    payload = form_payload(VEHICLE_FORM_FIELDS)

    errors = validate_vehicle_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("vehicles/form.html", vehicle=None, form=payload, **_form_choices()), 400

    vehicle = create_vehicle(s, payload, u)
    for f in request.files.getlist("attachments"):
        if not f or not f.filename:
            continue
        try:
            upload_vehicle_attachment(s, vehicle, f.read(), f.filename, f.mimetype, u)
        except VehicleError as e:
            s.rollback()
            flash(f"{f.filename}: {e}", "danger")
            return render_template("vehicles/form.html", vehicle=None, form=payload, **_form_choices()), 400
    s.commit()

    flash("Vehicle created.", "success")
    return redirect(url_for("vehicles.vehicle_detail", vehicle_id=vehicle.id))


# ---------- Detail ----------
@bp.get("/vehicles/<int:vehicle_id>")
@require_permission("vehicles.view")
def vehicle_detail(vehicle_id: int):
    s = db_session()
    vehicle = _get_vehicle_or_404(vehicle_id)
    groups = [row["group"] for row in list_groups(s)]
    return render_template("vehicles/detail.html", vehicle=vehicle, groups=groups)


# ---------- Edit ----------
@bp.get("/vehicles/<int:vehicle_id>/edit")
@require_permission("vehicles.edit")
def vehicle_edit_get(vehicle_id: int):
    vehicle = _get_vehicle_or_404(vehicle_id)
    return render_template("vehicles/form.html", vehicle=vehicle, form={}, **_form_choices())


@bp.post("/vehicles/<int:vehicle_id>/edit")
@require_permission("vehicles.edit")
def vehicle_edit_post(vehicle_id: int):
    s = db_session()
    u = current_user()
    vehicle = _get_vehicle_or_404(vehicle_id)
    payload = form_payload(VEHICLE_FORM_FIELDS)

    errors = validate_vehicle_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("vehicles/form.html", vehicle=vehicle, form=payload, **_form_choices()), 400

    update_vehicle(s, vehicle, payload, u)
    s.commit()
    flash("Vehicle updated.", "success")
    return redirect(url_for("vehicles.vehicle_detail", vehicle_id=vehicle.id))


# ---------- Delete / retire ----------
@bp.post("/vehicles/<int:vehicle_id>/delete")
@require_permission("vehicles.edit")
def vehicle_delete(vehicle_id: int):
    s = db_session()
    u = current_user()
    vehicle = _get_vehicle_or_404(vehicle_id)
    try:
        delete_vehicle(s, vehicle, u)
    except VehicleError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("vehicles.vehicle_detail", vehicle_id=vehicle_id))
    s.commit()
    flash("Vehicle deleted.", "success")
    return redirect(url_for("vehicles.vehicles_list"))


@bp.post("/vehicles/<int:vehicle_id>/retire")
@require_permission("vehicles.edit")
def vehicle_retire(vehicle_id: int):
    s = db_session()
    vehicle = _get_vehicle_or_404(vehicle_id)
    retire_vehicle(s, vehicle, current_user())
    s.commit()
    flash("Vehicle retired.", "success")
    return redirect(url_for("vehicles.vehicle_detail", vehicle_id=vehicle_id))


# ---------- Attachments ----------
@bp.post("/vehicles/<int:vehicle_id>/attachments")
@require_permission("vehicles.edit")
def vehicle_attachment_upload(vehicle_id: int):
    s = db_session()
    vehicle = _get_vehicle_or_404(vehicle_id)
    f = request.files.get("file")
    if not f or not f.filename:
        flash("Choose a file to upload.", "danger")
        return redirect(url_for("vehicles.vehicle_detail", vehicle_id=vehicle_id))
    try:
        upload_vehicle_attachment(s, vehicle, f.read(), f.filename, f.mimetype, current_user())
    except VehicleError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("vehicles.vehicle_detail", vehicle_id=vehicle_id))
    s.commit()
    flash("Attachment uploaded.", "success")
    return redirect(url_for("vehicles.vehicle_detail", vehicle_id=vehicle_id))


# ---------- Group ----------
@bp.post("/vehicles/<int:vehicle_id>/group")
@require_permission("groups.edit")
def vehicle_assign_group(vehicle_id: int):
    s = db_session()
    vehicle = _get_vehicle_or_404(vehicle_id)
    group_id = request.form.get("group_id", type=int)
    group = get_group(s, group_id) if group_id else None
    if not group:
        flash("Select a group.", "danger")
        return redirect(url_for("vehicles.vehicle_detail", vehicle_id=vehicle_id))
    assign_vehicle_to_group(s, vehicle, group, current_user())
    s.commit()
    flash(f"Vehicle moved to {group.name}.", "success")
    return redirect(url_for("vehicles.vehicle_detail", vehicle_id=vehicle_id))
