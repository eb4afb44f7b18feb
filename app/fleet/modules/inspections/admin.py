from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.fleet.constants import INSPECTION_SECTIONS, INSPECTION_STATUSES
from app.fleet.db import db_session
from app.fleet.http import current_user, form_payload
from app.fleet.modules.inspections.models import Inspection
from app.fleet.modules.inspections.service import (
    InspectionError,
    create_inspection,
    delete_inspection,
    list_inspections,
    update_inspection,
    update_inspection_status,
    upload_inspection_image,
    validate_inspection_payload,
)
from app.fleet.modules.vehicles.service import list_vehicle_options
from app.fleet.rbac import require_permission
from app.fleet.utils import page_window, parse_int, total_pages

bp = Blueprint("inspections", __name__)

INSPECTION_FORM_FIELDS = (
    "vehicle_id",
    "status",
    "exterior_condition",
    "interior_condition",
    "mechanical_condition",
    "additional_notes",
)


def _get_inspection_or_404(inspection_id: int) -> Inspection:
    inspection = db_session().get(Inspection, inspection_id)
    if not inspection:
        abort(404)
    return inspection


def _render_form(inspection, form, status: int = 200):
    return (
        render_template(
            "inspections/form.html",
            inspection=inspection,
            form=form,
            vehicles=list_vehicle_options(db_session(), limit=500),
            statuses=INSPECTION_STATUSES,
            sections=INSPECTION_SECTIONS,
        ),
        status,
    )


def _uploaded_images(user) -> list[dict]:
    """Store the files posted as images_<section> and return their descriptors."""
    images = []
    for section in INSPECTION_SECTIONS:
        for f in request.files.getlist(f"images_{section}"):
            if not f or not f.filename:
                continue
            try:
                images.append(upload_inspection_image(f.read(), f.filename, f.mimetype, section, user))
            except InspectionError as e:
                raise InspectionError(f"{f.filename}: {e}") from e
    return images


@bp.get("/inspections")
@require_permission("inspections.view")
def inspections_list():
    search = (request.args.get("search") or "").strip()
    status = (request.args.get("status") or "").strip()
    vehicle_id = parse_int(request.args.get("vehicle_id"))
    page, limit, offset = page_window(request.args.get("page"), request.args.get("limit"), default_limit=20, max_limit=50)
    inspections, total = list_inspections(
        db_session(), vehicle_id=vehicle_id, status=status, search=search, limit=limit, offset=offset
    )
    return render_template(
        "inspections/list.html",
        inspections=inspections,
        total=total,
        page=page,
        total_pages=total_pages(total, limit),
        search=search,
        status=status,
        statuses=INSPECTION_STATUSES,
    )


@bp.get("/inspections/new")
@require_permission("inspections.edit")
def inspections_new_get():
    return _render_form(None, {"vehicle_id": request.args.get("vehicle_id")})


@bp.post("/inspections/new")
@require_permission("inspections.edit")
def inspections_new_post():
    s = db_session()
    u = current_user()
    payload = form_payload(INSPECTION_FORM_FIELDS)
    payload["status"] = payload.get("status") or "draft"
    errors = validate_inspection_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(None, payload, 400)
    try:
        payload["images"] = _uploaded_images(u)
        inspection = create_inspection(s, payload, u)
    except (InspectionError, LookupError) as e:
        s.rollback()
        flash(str(e.args[0]), "danger")
        return _render_form(None, payload, 400)
    s.commit()
    flash("Inspection saved.", "success")
    return redirect(url_for("inspections.inspection_detail", inspection_id=inspection.id))


@bp.get("/inspections/<int:inspection_id>")
@require_permission("inspections.view")
def inspection_detail(inspection_id: int):
    inspection = _get_inspection_or_404(inspection_id)
    images_by_section = {section: [] for section in INSPECTION_SECTIONS}
    for img in inspection.images:
        images_by_section.setdefault(img.section, []).append(img)
    return render_template("inspections/detail.html", inspection=inspection, images_by_section=images_by_section)


@bp.get("/inspections/<int:inspection_id>/edit")
@require_permission("inspections.edit")
def inspection_edit_get(inspection_id: int):
    return _render_form(_get_inspection_or_404(inspection_id), {})


@bp.post("/inspections/<int:inspection_id>/edit")
@require_permission("inspections.edit")
def inspection_edit_post(inspection_id: int):
    s = db_session()
    u = current_user()
    inspection = _get_inspection_or_404(inspection_id)
    payload = form_payload(INSPECTION_FORM_FIELDS)
    errors = validate_inspection_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(inspection, payload, 400)
    try:
        new_images = _uploaded_images(u)
        if new_images:
            # Pages add to the existing set; the API replaces it.
            keep = [
                {
                    "section": img.section,
                    "storage_key": img.storage_key,
                    "file_name": img.file_name,
                    "file_size_bytes": img.file_size_bytes,
                    "content_type": img.content_type,
                }
                for img in inspection.images
            ]
            payload["images"] = keep + new_images
        update_inspection(s, inspection, payload, u)
    except (InspectionError, LookupError) as e:
        s.rollback()
        flash(str(e.args[0]), "danger")
        return _render_form(inspection, payload, 400)
    s.commit()
    flash("Inspection updated.", "success")
    return redirect(url_for("inspections.inspection_detail", inspection_id=inspection_id))


@bp.post("/inspections/<int:inspection_id>/submit")
@require_permission("inspections.edit")
def inspection_submit(inspection_id: int):
    s = db_session()
    inspection = _get_inspection_or_404(inspection_id)
    update_inspection_status(s, inspection, "submitted", current_user())
    s.commit()
    flash("Inspection submitted.", "success")
    return redirect(url_for("inspections.inspection_detail", inspection_id=inspection_id))


@bp.post("/inspections/<int:inspection_id>/delete")
@require_permission("inspections.edit")
def inspection_delete(inspection_id: int):
    s = db_session()
    inspection = _get_inspection_or_404(inspection_id)
    try:
        delete_inspection(s, inspection, current_user())
    except InspectionError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("inspections.inspection_detail", inspection_id=inspection_id))
    s.commit()
    flash("Inspection deleted.", "success")
    return redirect(url_for("inspections.inspections_list"))
