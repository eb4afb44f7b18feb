from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.fleet.audit import record_event
from app.fleet.constants import LOGO_CONTENT_TYPES, MAX_LOGO_BYTES
from app.fleet.utils import clean_str, timestamp_ms

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fleet.models import User
    from app.fleet.modules.organizations.models import Organization


class OrganizationError(ValueError):
    pass


LOGO_EXTENSIONS = {"image/jpeg": "jpg", "image/jpg": "jpg", "image/png": "png", "image/gif": "gif"}


def get_organization(s: "Session", user: "User") -> "Organization | None":
    from app.fleet.modules.organizations.models import Organization

    return s.query(Organization).filter(Organization.created_by_user_id == user.id).one_or_none()


def save_organization(s: "Session", user: "User", payload: dict) -> "Organization":
    from app.fleet.modules.organizations.models import Organization

    name = clean_str(payload.get("name"))
    if not name:
        raise OrganizationError("Organization name is required")
    if len(name) > 255:
        raise OrganizationError("Organization name must be 255 characters or fewer")

    org = get_organization(s, user)
    now = datetime.utcnow()
    created = org is None
    if created:
        org = Organization(created_by_user_id=user.id, created_at=now)
        s.add(org)
    old_name = org.name
    org.name = name
    if "logo_storage_key" in payload:
        org.logo_storage_key = clean_str(payload.get("logo_storage_key"))
    org.updated_by_user_id = user.id
    org.updated_at = now
    s.flush()
    record_event(
        s,
        actor=user,
        action="organization.create" if created else "organization.update",
        entity_type="Organization",
        entity_id=str(org.id),
        metadata={"name": {"old": old_name, "new": name}, "logo_storage_key": org.logo_storage_key},
    )
    return org


def upload_logo(s: "Session", user: "User", file_bytes: bytes, content_type: str | None) -> str:
    """Store a logo and attach it to the user's organization when one exists. Returns the storage key."""
    from flask import current_app
    from app.fleet.storage import storage_from_config

    if not file_bytes:
        raise OrganizationError("File is empty")
    if content_type not in LOGO_CONTENT_TYPES:
        raise OrganizationError("Logo must be a JPEG, PNG or GIF image")
    if len(file_bytes) > MAX_LOGO_BYTES:
        raise OrganizationError("Logo exceeds 5MB limit")

    key = f"organizations/{user.id}/logo-{timestamp_ms()}.{LOGO_EXTENSIONS[content_type]}"
    storage = storage_from_config(current_app.config)
    storage.put_bytes(key, file_bytes, content_type=content_type)

    org = get_organization(s, user)
    if org is not None:
        previous = org.logo_storage_key
        org.logo_storage_key = key
        org.updated_by_user_id = user.id
        org.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="organization.logo_upload",
            entity_type="Organization",
            entity_id=str(org.id),
            metadata={"storage_key": key, "previous": previous},
        )
        if previous and previous != key:
            storage.delete(previous)
    return key


def organization_to_dict(org: "Organization") -> dict:
    from flask import url_for

    return {
        "id": org.id,
        "name": org.name,
        "logo_storage_key": org.logo_storage_key,
        "logo_url": url_for("routes.serve_file", key=org.logo_storage_key) if org.logo_storage_key else None,
        "updated_at": org.updated_at.isoformat() if org.updated_at else None,
    }
