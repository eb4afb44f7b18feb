from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.fleet.db import db_session
from app.fleet.http import current_user, json_error, json_payload
from app.fleet.modules.organizations.service import (
    OrganizationError,
    get_organization,
    organization_to_dict,
    save_organization,
    upload_logo,
)
from app.fleet.rbac import require_permission

bp = Blueprint("organizations_api", __name__)


@bp.get("/organizations")
@require_permission("profile.edit")
def api_organization_get():
    org = get_organization(db_session(), current_user())
    return jsonify({"organization": organization_to_dict(org) if org else None})


@bp.post("/organizations")
@require_permission("profile.edit")
def api_organization_save():
    s = db_session()
    try:
        org = save_organization(s, current_user(), json_payload())
    except OrganizationError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "organization": organization_to_dict(org)})


@bp.post("/upload/organization-logo")
@require_permission("profile.edit")
def api_organization_logo_upload():
    s = db_session()
    f = request.files.get("file")
    if not f or not f.filename:
        return json_error("No file provided", 400)
    try:
        key = upload_logo(s, current_user(), f.read(), f.mimetype)
    except OrganizationError as e:
        s.rollback()
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "storage_key": key}), 201
