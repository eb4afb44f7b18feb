from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.fleet.db import db_session
from app.fleet.http import current_user, json_error, json_payload, validation_error
from app.fleet.mailer import MailerError, send_welcome_email
from app.fleet.modules.users.service import (
    USER_ACTIVE_FILTERS,
    UserAdminError,
    create_user,
    delete_user,
    get_roles,
    get_user,
    list_users,
    reset_url,
    role_to_dict,
    soft_delete_user,
    update_profile,
    update_user,
    user_to_dict,
    validate_user_payload,
)
from app.fleet.rbac import require_permission
from app.fleet.utils import page_window, parse_bool, total_pages

bp = Blueprint("users_api", __name__)


@bp.get("/admin/users")
@require_permission("users.view")
def api_users_list():
    page, limit, offset = page_window(request.args.get("page"), request.args.get("limit"), default_limit=10)
    active = request.args.get("active") if request.args.get("active") in USER_ACTIVE_FILTERS else "all"
    rows, total = list_users(
        db_session(),
        search=request.args.get("search"),
        role=request.args.get("role"),
        active=active,
        limit=limit,
        offset=offset,
    )
    return jsonify(
        {
            "users": [user_to_dict(u) for u in rows],
            "total": total,
            "page": page,
            "total_pages": total_pages(total, limit),
        }
    )


@bp.post("/admin/users")
@require_permission("users.edit")
def api_users_create():
    s = db_session()
    payload = json_payload()
    errors = validate_user_payload(payload, creating=True)
    if errors:
        return validation_error(errors)
    try:
        user, token = create_user(s, payload, current_user())
    except UserAdminError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()

    invite_sent = False
    if token:
        try:
            send_welcome_email(
                s,
                to=user.email,
                user_name=user.display_name,
                username=user.username,
                setup_url=reset_url(current_app.config["APP_URL"], token),
            )
            invite_sent = True
        except MailerError:
            current_app.logger.warning("Invite email failed for user %s", user.id)
    return jsonify({"success": True, "user": user_to_dict(user), "invite_sent": invite_sent}), 201


@bp.get("/admin/users/<int:user_id>")
@require_permission("users.view")
def api_user_get(user_id: int):
    user = get_user(db_session(), user_id)
    if not user:
        return json_error("User not found", 404)
    return jsonify({"user": user_to_dict(user)})


@bp.put("/admin/users/<int:user_id>")
@require_permission("users.edit")
def api_user_update(user_id: int):
    s = db_session()
    user = get_user(s, user_id)
    if not user:
        return json_error("User not found", 404)
    payload = json_payload()
    errors = validate_user_payload(payload, creating=False)
    if errors:
        return validation_error(errors)
    try:
        update_user(s, user, payload, current_user())
    except UserAdminError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "user": user_to_dict(user)})


@bp.delete("/admin/users/<int:user_id>")
@require_permission("users.edit")
def api_user_delete(user_id: int):
    s = db_session()
    user = get_user(s, user_id)
    if not user:
        return json_error("User not found", 404)
    try:
        if parse_bool(request.args.get("soft")):
            soft_delete_user(s, user, current_user())
        else:
            delete_user(s, user, current_user())
    except UserAdminError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True})


@bp.get("/admin/roles")
@require_permission("users.view")
def api_roles_list():
    return jsonify({"roles": [role_to_dict(r) for r in get_roles(db_session())]})


@bp.get("/profile")
@require_permission("profile.edit")
def api_profile_get():
    from app.fleet.modules.organizations.service import get_organization, organization_to_dict

    s = db_session()
    u = current_user()
    org = get_organization(s, u)
    return jsonify({"user": user_to_dict(u), "organization": organization_to_dict(org) if org else None})


@bp.put("/profile")
@require_permission("profile.edit")
def api_profile_update():
    s = db_session()
    u = current_user()
    try:
        update_profile(s, u, json_payload())
    except UserAdminError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "user": user_to_dict(u)})
