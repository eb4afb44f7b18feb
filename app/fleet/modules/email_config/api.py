from __future__ import annotations

from flask import Blueprint, jsonify

from app.fleet.db import db_session
from app.fleet.http import current_user, json_error, json_payload, validation_error
from app.fleet.modules.email_config import service
from app.fleet.rbac import require_permission
from app.fleet.utils import clean_str, is_valid_email

bp = Blueprint("email_config_api", __name__)


@bp.get("/admin/email")
@require_permission("email.manage")
def api_email_config_get():
    try:
        config = service.get_email_config(db_session(), current_user())
    except service.EmailConfigError as e:
        return json_error(str(e), 500)
    if config is not None:
        # Never echo the stored secret back to the browser.
        config["smtp_password"] = ""
        config["has_password"] = True
    return jsonify({"config": config})


@bp.post("/admin/email")
@require_permission("email.manage")
def api_email_config_save():
    s = db_session()
    u = current_user()
    payload = json_payload()
    try:
        existing = service.get_email_config(s, u) if not payload.get("smtp_password") else None
        errors = service.validate_email_config_payload(payload, has_stored_password=existing is not None)
        if errors:
            return validation_error(errors)
        config = service.save_email_config(s, u, payload)
    except service.EmailConfigError as e:
        s.rollback()
        return json_error(str(e), 500)
    s.commit()
    return jsonify({"success": True, "config": service.email_config_to_dict(config)})


@bp.post("/admin/email/test")
@require_permission("email.manage")
def api_email_config_test():
    s = db_session()
    u = current_user()
    payload = json_payload()
    action = payload.get("action")
    if action not in ("connection", "send"):
        return json_error("Invalid action. Use 'connection' or 'send'", 400)

    if not payload.get("smtp_password"):
        try:
            stored = service.get_email_config(s, u)
        except service.EmailConfigError as e:
            return json_error(str(e), 500)
        if stored is not None:
            payload = {**stored, **{k: v for k, v in payload.items() if v not in (None, "")}}
    errors = service.validate_email_config_payload(payload)
    if errors:
        return validation_error(errors)
    settings = service.settings_from_payload(payload)

    if action == "connection":
        ok, message = service.test_connection(settings)
    else:
        to = clean_str(payload.get("to")) or u.email
        if not is_valid_email(to):
            return validation_error(["Recipient must be a valid email address."])
        ok, message = service.send_test_email(settings, to)
    return jsonify({"success": ok, "message": message}), (200 if ok else 400)
