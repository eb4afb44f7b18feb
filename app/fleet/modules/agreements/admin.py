from __future__ import annotations

import io

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, send_file, url_for

from app.fleet.constants import AGREEMENT_STATUSES
from app.fleet.db import db_session
from app.fleet.http import current_user, form_payload
from app.fleet.mailer import MailerError
from app.fleet.modules.agreements.models import Agreement, AgreementTemplate
from app.fleet.modules.agreements.service import (
    AgreementError,
    create_agreement,
    create_template,
    delete_agreement,
    delete_supporting_doc,
    export_agreement,
    finalise_agreement,
    get_detail_context,
    get_finalise_context,
    list_agreements,
    list_templates,
    notify_termination,
    relink_inspection,
    send_signing_invite,
    terminate_agreement,
    update_template,
    upload_supporting_doc,
    validate_agreement_payload,
    validate_template_payload,
)
from app.fleet.modules.inspections.service import list_inspections
from app.fleet.modules.vehicles.service import list_vehicle_options
from app.fleet.rbac import require_permission
from app.fleet.utils import page_window, parse_int, total_pages

bp = Blueprint("agreements", __name__)


def _get_agreement_or_404(agreement_id: int) -> Agreement:
    agreement = db_session().get(Agreement, agreement_id)
    if not agreement:
        abort(404)
    return agreement


def _get_template_or_404(template_id: int) -> AgreementTemplate:
    template = db_session().get(AgreementTemplate, template_id)
    if not template:
        abort(404)
    return template


def _detail_redirect(agreement_id: int):
    return redirect(url_for("agreements.agreement_detail", agreement_id=agreement_id))


# ---------- Agreements ----------
@bp.get("/agreements")
@require_permission("agreements.view")
def agreements_list():
    search = (request.args.get("search") or "").strip()
    status = (request.args.get("status") or "all").strip()
    page, limit, offset = page_window(request.args.get("page"), request.args.get("limit"), default_limit=10)
    agreements, total = list_agreements(db_session(), status=status, search=search, limit=limit, offset=offset)
    return render_template(
        "agreements/list.html",
        agreements=agreements,
        total=total,
        page=page,
        total_pages=total_pages(total, limit),
        search=search,
        status=status,
        statuses=AGREEMENT_STATUSES,
    )


def _render_new(form: dict, status: int = 200):
    s = db_session()
    vehicle_id = parse_int(form.get("vehicle_id"))
    inspections = list_inspections(s, vehicle_id=vehicle_id, limit=50)[0] if vehicle_id else []
    return (
        render_template(
            "agreements/new.html",
            form=form,
            vehicles=list_vehicle_options(s, limit=500),
            inspections=inspections,
            templates=list_templates(s, active_only=True),
        ),
        status,
    )


@bp.get("/agreements/new")
@require_permission("agreements.edit")
def agreements_new_get():
    return _render_new({"vehicle_id": request.args.get("vehicle_id"), "inspection_id": request.args.get("inspection_id")})


@bp.post("/agreements/new")
@require_permission("agreements.edit")
def agreements_new_post():
    s = db_session()
    payload = form_payload(("vehicle_id", "inspection_id", "template_id"))
    errors = validate_agreement_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_new(payload, 400)
    try:
        agreement = create_agreement(s, payload, current_user())
    except (AgreementError, LookupError) as e:
        s.rollback()
        flash(str(e.args[0]), "danger")
        return _render_new(payload, 400)
    s.commit()
    flash("Agreement drafted. Review it and send it for signature.", "success")
    return redirect(url_for("agreements.agreement_preview_get", agreement_id=agreement.id))


@bp.get("/agreements/<int:agreement_id>")
@require_permission("agreements.view")
def agreement_detail(agreement_id: int):
    agreement = _get_agreement_or_404(agreement_id)
    return render_template("agreements/detail.html", **get_detail_context(db_session(), agreement))


@bp.get("/agreements/<int:agreement_id>/preview")
@require_permission("agreements.edit")
def agreement_preview_get(agreement_id: int):
    agreement = _get_agreement_or_404(agreement_id)
    return render_template("agreements/preview.html", **get_finalise_context(db_session(), agreement))


@bp.post("/agreements/<int:agreement_id>/preview")
@require_permission("agreements.edit")
def agreement_preview_post(agreement_id: int):
    s = db_session()
    u = current_user()
    agreement = _get_agreement_or_404(agreement_id)
    try:
        finalise_agreement(
            s,
            agreement,
            driver_id=parse_int(request.form.get("driver_id")),
            content=request.form.get("content"),
            user=u,
        )
    except (AgreementError, LookupError) as e:
        s.rollback()
        flash(str(e.args[0]), "danger")
        return render_template("agreements/preview.html", **get_finalise_context(s, agreement)), 400
    s.commit()
    try:
        send_signing_invite(s, agreement, u, current_app.config["APP_URL"])
    except MailerError:
        flash("Agreement updated but email failed to send.", "danger")
        return _detail_redirect(agreement_id)
    flash("Agreement sent to the driver for signature.", "success")
    return _detail_redirect(agreement_id)


@bp.get("/agreements/<int:agreement_id>/terminate")
@require_permission("agreements.edit")
def agreement_terminate_get(agreement_id: int):
    return render_template("agreements/terminate.html", agreement=_get_agreement_or_404(agreement_id))


@bp.post("/agreements/<int:agreement_id>/terminate")
@require_permission("agreements.edit")
def agreement_terminate_post(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(agreement_id)
    try:
        terminate_agreement(s, agreement, request.form.get("reason"), current_user())
    except AgreementError as e:
        s.rollback()
        flash(str(e), "danger")
        return render_template("agreements/terminate.html", agreement=agreement), 400
    s.commit()
    if agreement.signed_by_driver and agreement.signed_by_driver.email and not notify_termination(s, agreement):
        flash("Agreement terminated, but the driver could not be emailed.", "warning")
    else:
        flash("Agreement terminated.", "success")
    return _detail_redirect(agreement_id)


@bp.post("/agreements/<int:agreement_id>/inspection")
@require_permission("agreements.edit")
def agreement_relink_inspection(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(agreement_id)
    try:
        relink_inspection(
            s, agreement, parse_int(request.form.get("inspection_id")), request.form.get("reason"), current_user()
        )
    except (AgreementError, LookupError) as e:
        s.rollback()
        flash(str(e.args[0]), "danger")
        return _detail_redirect(agreement_id)
    s.commit()
    flash("Inspection updated.", "success")
    return _detail_redirect(agreement_id)


@bp.post("/agreements/<int:agreement_id>/supporting")
@require_permission("agreements.edit")
def agreement_supporting_upload(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(agreement_id)
    f = request.files.get("file")
    if not f or not f.filename:
        flash("No file provided.", "danger")
        return _detail_redirect(agreement_id)
    try:
        upload_supporting_doc(s, agreement, f.read(), f.filename, f.mimetype, current_user())
    except AgreementError as e:
        s.rollback()
        flash(f"{f.filename}: {e}", "danger")
        return _detail_redirect(agreement_id)
    s.commit()
    flash("Document uploaded.", "success")
    return _detail_redirect(agreement_id)


@bp.post("/agreements/<int:agreement_id>/supporting/delete")
@require_permission("agreements.edit")
def agreement_supporting_delete(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(agreement_id)
    try:
        delete_supporting_doc(s, agreement, request.form.get("path"), current_user())
    except AgreementError as e:
        s.rollback()
        flash(str(e), "danger")
        return _detail_redirect(agreement_id)
    s.commit()
    flash("Document removed.", "success")
    return _detail_redirect(agreement_id)


@bp.post("/agreements/<int:agreement_id>/export")
@require_permission("agreements.view")
def agreement_export(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(agreement_id)
    result = export_agreement(s, agreement, "zip", send_email=False, user=current_user())
    s.commit()
    return send_file(
        io.BytesIO(result["data"]),
        mimetype="application/zip",
        as_attachment=True,
        download_name=result["filename"],
    )


@bp.post("/agreements/<int:agreement_id>/delete")
@require_permission("agreements.edit")
def agreement_delete(agreement_id: int):
    s = db_session()
    agreement = _get_agreement_or_404(agreement_id)
    delete_agreement(s, agreement, current_user())
    s.commit()
    flash("Agreement deleted.", "success")
    return redirect(url_for("agreements.agreements_list"))


# ---------- Templates ----------
@bp.get("/agreements/templates")
@require_permission("agreements.view")
def templates_list():
    return render_template("agreements/templates_list.html", templates=list_templates(db_session()))


@bp.get("/agreements/templates/new")
@require_permission("agreements.edit")
def templates_new_get():
    return render_template("agreements/template_form.html", template=None, form={"active": "1"})


@bp.post("/agreements/templates/new")
@require_permission("agreements.edit")
def templates_new_post():
    s = db_session()
    payload = form_payload(("title", "content_richtext"))
    payload["active"] = request.form.get("active") == "1"
    errors = validate_template_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("agreements/template_form.html", template=None, form=payload), 400
    create_template(s, payload, current_user())
    s.commit()
    flash("Template created.", "success")
    return redirect(url_for("agreements.templates_list"))


@bp.get("/agreements/templates/<int:template_id>")
@require_permission("agreements.edit")
def template_edit_get(template_id: int):
    return render_template("agreements/template_form.html", template=_get_template_or_404(template_id), form={})


@bp.post("/agreements/templates/<int:template_id>")
@require_permission("agreements.edit")
def template_edit_post(template_id: int):
    s = db_session()
    template = _get_template_or_404(template_id)
    payload = form_payload(("title", "content_richtext"))
    payload["active"] = request.form.get("active") == "1"
    errors = validate_template_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("agreements/template_form.html", template=template, form=payload), 400
    update_template(s, template, payload, current_user())
    s.commit()
    flash("Template updated.", "success")
    return redirect(url_for("agreements.templates_list"))
