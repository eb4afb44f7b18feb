from __future__ import annotations

from flask import Blueprint, flash, redirect, render_template, request, url_for

from app.fleet.db import db_session
from app.fleet.http import current_user, form_payload
from app.fleet.modules.email_config import service
from app.fleet.rbac import require_permission

bp = Blueprint("email_config", __name__)

EMAIL_FORM_FIELDS = ("smtp_host", "smtp_port", "smtp_username", "smtp_password", "from_email", "from_name")


def _form_from_request() -> dict:
    payload = form_payload(EMAIL_FORM_FIELDS)
    payload["active"] = request.form.get("active") == "1"
    return payload


@bp.get("/admin/email")
@require_permission("email.manage")
def email_config_get():
    try:
        config = service.get_email_config(db_session(), current_user())
    except service.EmailConfigError as e:
        flash(str(e), "danger")
        config = None
    form = dict(config or {"smtp_port": 587, "active": True})
    form["smtp_password"] = ""
    return render_template("email_config/form.html", form=form, has_config=config is not None)


@bp.post("/admin/email")
@require_permission("email.manage")
def email_config_post():
    s = db_session()
    u = current_user()
    payload = _form_from_request()
    try:
        has_stored = service.get_email_config(s, u) is not None if not payload.get("smtp_password") else False
    except service.EmailConfigError as e:
        flash(str(e), "danger")
        return render_template("email_config/form.html", form=payload, has_config=True), 400
    errors = service.validate_email_config_payload(payload, has_stored_password=has_stored)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("email_config/form.html", form=payload, has_config=has_stored), 400
    try:
        service.save_email_config(s, u, payload)
    except service.EmailConfigError as e:
        s.rollback()
        flash(str(e), "danger")
        return render_template("email_config/form.html", form=payload, has_config=has_stored), 400
    s.commit()
    flash("Email settings saved.", "success")
    return redirect(url_for("email_config.email_config_get"))


@bp.post("/admin/email/test")
@require_permission("email.manage")
def email_config_test():
    s = db_session()
    u = current_user()
    payload = _form_from_request()
    if not payload.get("smtp_password"):
        try:
            stored = service.get_email_config(s, u)
        except service.EmailConfigError as e:
            flash(str(e), "danger")
            return redirect(url_for("email_config.email_config_get"))
        if stored is not None:
            payload["smtp_password"] = stored["smtp_password"]
    errors = service.validate_email_config_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("email_config.email_config_get"))
    settings = service.settings_from_payload(payload)
    if request.form.get("action") == "send":
        ok, message = service.send_test_email(settings, (request.form.get("to") or "").strip() or u.email)
    else:
        ok, message = service.test_connection(settings)
    flash(message, "success" if ok else "danger")
    return redirect(url_for("email_config.email_config_get"))
