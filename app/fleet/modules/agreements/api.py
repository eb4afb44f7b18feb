from __future__ import annotations

import base64

from flask import Blueprint, current_app, jsonify, request

from app.fleet.constants import EXPORT_FORMATS
from app.fleet.db import db_session
from app.fleet.http import current_user, json_error, json_payload, validation_error
from app.fleet.mailer import MailerError
from app.fleet.modules.agreements.service import (
    AgreementError,
    agreement_to_dict,
    create_agreement,
    create_template,
    delete_agreement,
    delete_supporting_doc,
    export_agreement,
    finalise_agreement,
    get_agreement,
    get_detail_context,
    get_template,
    list_agreements,
    list_supporting_docs,
    list_templates,
    notify_termination,
    relink_inspection,
    send_signing_invite,
    sign_agreement,
    template_to_dict,
    terminate_agreement,
    update_template,
    upload_supporting_doc,
    validate_agreement_payload,
    validate_template_payload,
)
from app.fleet.modules.inspections.service import inspection_to_dict
from app.fleet.rbac import require_permission
from app.fleet.utils import page_window, parse_bool, parse_int, total_pages

bp = Blueprint("agreements_api", __name__)


def _find_agreement(agreement_id: int):
    return get_agreement(db_session(), agreement_id)


# ---------- Templates ----------
@bp.get("/agreements/templates")
@require_permission("agreements.view")
def api_templates_list():
    templates = list_templates(db_session(), active_only=parse_bool(request.args.get("active")))
    return jsonify({"templates": [template_to_dict(t) for t in templates]})


@bp.post("/agreements/templates")
@require_permission("agreements.edit")
def api_templates_create():
    s = db_session()
    payload = json_payload()
    errors = validate_template_payload(payload)
    if errors:
        return validation_error(errors)
    template = create_template(s, payload, current_user())
    s.commit()
    return jsonify({"success": True, "template": template_to_dict(template)}), 201


@bp.get("/agreements/templates/<int:template_id>")
@require_permission("agreements.view")
def api_template_get(template_id: int):
    template = get_template(db_session(), template_id)
    if not template:
        return json_error("Template not found", 404)
    return jsonify({"template": template_to_dict(template)})


@bp.put("/agreements/templates/<int:template_id>")
@require_permission("agreements.edit")
def api_template_update(template_id: int):
    s = db_session()
    template = get_template(s, template_id)
    if not template:
        return json_error("Template not found", 404)
    payload = json_payload()
    errors = validate_template_payload(
        {"title": template.title, "content_richtext": template.content_richtext, **payload}
    )
    if errors:
        return validation_error(errors)
    update_template(s, template, payload, current_user())
    s.commit()
    return jsonify({"success": True, "template": template_to_dict(template)})


# ---------- Agreements ----------
@bp.get("/agreements")
@require_permission("agreements.view")
def api_agreements_list():
    page, limit, offset = page_window(request.args.get("page"), request.args.get("limit"), default_limit=10)
    rows, total = list_agreements(
        db_session(),
        status=request.args.get("status"),
        search=request.args.get("search"),
        limit=limit,
        offset=offset,
    )
    return jsonify(
        {
            "agreements": [agreement_to_dict(a) for a in rows],
            "total": total,
            "page": page,
            "total_pages": total_pages(total, limit),
        }
    )


@bp.post("/agreements")
@require_permission("agreements.edit")
def api_agreements_create():
    s = db_session()
    payload = json_payload()
    errors = validate_agreement_payload(payload)
    if errors:
        return validation_error(errors)
    try:
        agreement = create_agreement(s, payload, current_user())
    except LookupError as e:
        s.rollback()
        return json_error(e.args[0], 404)
    except AgreementError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "agreement": agreement_to_dict(agreement, detail=True)}), 201


@bp.get("/agreements/<int:agreement_id>")
@require_permission("agreements.view")
def api_agreement_get(agreement_id: int):
    s = db_session()
    agreement = _find_agreement(agreement_id)
    if not agreement:
        return json_error("Agreement not found", 404)
    ctx = get_detail_context(s, agreement)
    return jsonify(
        {
            "agreement": agreement_to_dict(agreement, detail=True),
            "inspection": inspection_to_dict(ctx["inspection"], detail=True) if ctx["inspection"] else None,
            "supporting_docs": ctx["supporting_docs"],
            "other_inspections": [inspection_to_dict(i) for i in ctx["other_inspections"]],
        }
    )


@bp.delete("/agreements/<int:agreement_id>")
@require_permission("agreements.edit")
def api_agreement_delete(agreement_id: int):
    s = db_session()
    agreement = _find_agreement(agreement_id)
    if not agreement:
        return json_error("Agreement not found", 404)
    delete_agreement(s, agreement, current_user())
    s.commit()
    return jsonify({"success": True})


@bp.post("/agreements/<int:agreement_id>/finalise")
@require_permission("agreements.edit")
def api_agreement_finalise(agreement_id: int):
    s = db_session()
    u = current_user()
    agreement = _find_agreement(agreement_id)
    if not agreement:
        return json_error("Agreement not found", 404)
    payload = json_payload()
    try:
        finalise_agreement(
            s, agreement, driver_id=parse_int(payload.get("driver_id")), content=payload.get("content"), user=u
        )
    except LookupError as e:
        s.rollback()
        return json_error(e.args[0], 404)
    except AgreementError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    try:
        link = send_signing_invite(s, agreement, u, current_app.config["APP_URL"])
    except MailerError:
        return json_error("Agreement updated but email failed to send", 500)
    return jsonify({"success": True, "signing_link": link, "agreement": agreement_to_dict(agreement)})


@bp.post("/agreements/<int:agreement_id>/sign")
def api_agreement_sign(agreement_id: int):
    s = db_session()
    payload = json_payload()
    try:
        agreement = sign_agreement(s, agreement_id, payload.get("token") or "", payload.get("signature") or "")
    except LookupError as e:
        return json_error(e.args[0], 404)
    except AgreementError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "signed_at": agreement.signed_at.isoformat()})


@bp.post("/agreements/<int:agreement_id>/terminate")
@require_permission("agreements.edit")
def api_agreement_terminate(agreement_id: int):
    s = db_session()
    agreement = _find_agreement(agreement_id)
    if not agreement:
        return json_error("Agreement not found", 404)
    try:
        terminate_agreement(s, agreement, json_payload().get("reason"), current_user())
    except AgreementError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    emailed = notify_termination(s, agreement)
    return jsonify({"success": True, "email_sent": emailed, "agreement": agreement_to_dict(agreement)})


@bp.patch("/agreements/<int:agreement_id>/inspection")
@require_permission("agreements.edit")
def api_agreement_relink(agreement_id: int):
    s = db_session()
    agreement = _find_agreement(agreement_id)
    if not agreement:
        return json_error("Agreement not found", 404)
    payload = json_payload()
    inspection_id = parse_int(payload.get("inspection_id"))
    if not inspection_id:
        return validation_error(["inspection_id is required."])
    try:
        relink_inspection(s, agreement, inspection_id, payload.get("reason"), current_user())
    except LookupError as e:
        s.rollback()
        return json_error(e.args[0], 404)
    except AgreementError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "agreement": agreement_to_dict(agreement)})


@bp.get("/agreements/<int:agreement_id>/supporting")
@require_permission("agreements.view")
def api_supporting_list(agreement_id: int):
    agreement = _find_agreement(agreement_id)
    if not agreement:
        return json_error("Agreement not found", 404)
    return jsonify({"files": list_supporting_docs(agreement)})


@bp.post("/agreements/<int:agreement_id>/supporting")
@require_permission("agreements.edit")
def api_supporting_upload(agreement_id: int):
    s = db_session()
    agreement = _find_agreement(agreement_id)
    if not agreement:
        return json_error("Agreement not found", 404)
    f = request.files.get("file")
    if not f or not f.filename:
        return json_error("No file provided", 400)
    try:
        doc = upload_supporting_doc(s, agreement, f.read(), f.filename, f.mimetype, current_user())
    except AgreementError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, **doc}), 201


@bp.delete("/agreements/<int:agreement_id>/supporting")
@require_permission("agreements.edit")
def api_supporting_delete(agreement_id: int):
    s = db_session()
    agreement = _find_agreement(agreement_id)
    if not agreement:
        return json_error("Agreement not found", 404)
    try:
        delete_supporting_doc(s, agreement, json_payload().get("path"), current_user())
    except AgreementError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True})


@bp.post("/agreements/<int:agreement_id>/export")
@require_permission("agreements.edit")
def api_agreement_export(agreement_id: int):
    s = db_session()
    agreement = _find_agreement(agreement_id)
    if not agreement:
        return json_error("Agreement not found", 404)
    payload = json_payload()
    fmt = payload.get("format")
    if fmt not in EXPORT_FORMATS:
        return validation_error(["format must be one of: zip, pdf."])
    send_email = payload.get("send_email", False)
    if not isinstance(send_email, bool):
        return validation_error(["send_email must be a boolean."])
    try:
        result = export_agreement(s, agreement, fmt, send_email=send_email, user=current_user())
    except MailerError as e:
        s.rollback()
        return json_error(str(e), 500)
    s.commit()
    body = {"success": True, "format": fmt}
    if result["data"] is not None:
        body.update(
            {
                "filename": result["filename"],
                "content_base64": base64.b64encode(result["data"]).decode("ascii"),
                "emailed": send_email,
            }
        )
    return jsonify(body)
