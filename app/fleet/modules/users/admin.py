from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, url_for

from app.fleet.db import db_session
from app.fleet.http import current_user, form_payload
from app.fleet.mailer import MailerError, send_welcome_email
from app.fleet.models import User
from app.fleet.modules.users.service import (
    USER_ACTIVE_FILTERS,
    UserAdminError,
    create_user,
    delete_user,
    get_roles,
    list_users,
    reset_url,
    soft_delete_user,
    update_user,
    validate_user_payload,
)
from app.fleet.rbac import require_permission
from app.fleet.utils import page_window, total_pages

bp = Blueprint("users", __name__)

USER_FORM_FIELDS = (
    "username",
    "email",
    "first_name",
    "last_name",
    "phone",
    "role_id",
    "password",
    "confirm_password",
)


def _get_user_or_404(user_id: int) -> User:
    user = db_session().get(User, user_id)
    if not user:
        abort(404)
    return user


def _render_form(account, form, status: int = 200):
    return render_template("users/form.html", account=account, form=form, roles=get_roles(db_session())), status


@bp.get("/admin/users")
@require_permission("users.view")
def users_list():
    s = db_session()
    search = (request.args.get("search") or "").strip()
    role = (request.args.get("role") or "all").strip()
    active = request.args.get("active") if request.args.get("active") in USER_ACTIVE_FILTERS else "all"
    page, limit, offset = page_window(request.args.get("page"), request.args.get("limit"), default_limit=10)
    users, total = list_users(s, search=search, role=role, active=active, limit=limit, offset=offset)
    return render_template(
        "users/list.html",
        users=users,
        total=total,
        page=page,
        total_pages=total_pages(total, limit),
        search=search,
        role=role,
        active=active,
        roles=get_roles(s),
    )


@bp.get("/admin/users/new")
@require_permission("users.edit")
def users_new_get():
    return _render_form(None, {"send_invite": "1"})


@bp.post("/admin/users/new")
@require_permission("users.edit")
def users_new_post():
    s = db_session()
    payload = form_payload(USER_FORM_FIELDS)
    payload["send_invite"] = request.form.get("send_invite") == "1"
    errors = validate_user_payload(payload, creating=True)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(None, payload, 400)
    try:
        user, token = create_user(s, payload, current_user())
    except UserAdminError as e:
        s.rollback()
        flash(str(e), "danger")
        return _render_form(None, payload, 400)
    s.commit()

    if token:
        try:
            send_welcome_email(
                s,
                to=user.email,
                user_name=user.display_name,
                username=user.username,
                setup_url=reset_url(current_app.config["APP_URL"], token),
            )
        except MailerError:
            flash(f"Account created for {user.email}, but the invite email could not be sent.", "warning")
            return redirect(url_for("users.users_list"))
        flash(f"Invite sent to {user.email}.", "success")
    else:
        flash(f"Account created for {user.email}.", "success")
    return redirect(url_for("users.users_list"))


@bp.get("/admin/users/<int:user_id>/edit")
@require_permission("users.edit")
def user_edit_get(user_id: int):
    return _render_form(_get_user_or_404(user_id), {})


@bp.post("/admin/users/<int:user_id>/edit")
@require_permission("users.edit")
def user_edit_post(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    payload = form_payload(USER_FORM_FIELDS)
    payload["is_active"] = request.form.get("is_active") == "1"
    errors = validate_user_payload(payload, creating=False)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form(user, payload, 400)
    try:
        update_user(s, user, payload, current_user())
    except UserAdminError as e:
        s.rollback()
        flash(str(e), "danger")
        return _render_form(user, payload, 400)
    s.commit()
    flash(f"Account updated for {user.email}.", "success")
    return redirect(url_for("users.users_list"))


@bp.post("/admin/users/<int:user_id>/deactivate")
@require_permission("users.edit")
def user_deactivate(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    try:
        soft_delete_user(s, user, current_user())
    except UserAdminError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.users_list"))
    s.commit()
    flash(f"{user.email} deactivated.", "success")
    return redirect(url_for("users.users_list"))


@bp.post("/admin/users/<int:user_id>/delete")
@require_permission("users.edit")
def user_delete(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    email = user.email
    try:
        delete_user(s, user, current_user())
    except UserAdminError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.users_list"))
    s.commit()
    flash(f"{email} deleted.", "success")
    return redirect(url_for("users.users_list"))
