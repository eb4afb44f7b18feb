from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, or_
from werkzeug.security import generate_password_hash

from app.fleet.audit import record_event
from app.fleet.security import new_token
from app.fleet.utils import clean_str, is_valid_au_phone, is_valid_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fleet.models import Role, User

USERNAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
RESET_TOKEN_TTL = timedelta(hours=1)
USER_ACTIVE_FILTERS = ("active", "inactive", "all")


class UserAdminError(ValueError):
    pass


def validate_password(password: str, confirm: str | None = None) -> list[str]:
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain an uppercase letter.")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain a lowercase letter.")
    if not re.search(r"\d", password):
        errors.append("Password must contain a number.")
    if confirm is not None and password != confirm:
        errors.append("Passwords do not match.")
    return errors


def validate_user_payload(payload: dict, *, creating: bool) -> list[str]:
    errors = []
    username = clean_str(payload.get("username"))
    if creating or "username" in payload:
        if not username or not (3 <= len(username) <= 50):
            errors.append("Username must be 3-50 characters.")
        elif not USERNAME_RE.match(username):
            errors.append("Username may only contain letters, numbers, dots, underscores and hyphens.")
    if creating or "email" in payload:
        if not is_valid_email(clean_str(payload.get("email")) or ""):
            errors.append("Invalid email address.")
    for key, label in (("first_name", "First name"), ("last_name", "Last name")):
        if creating or key in payload:
            value = clean_str(payload.get(key))
            if not value or len(value) > 50:
                errors.append(f"{label} must be 1-50 characters.")
    phone = clean_str(payload.get("phone"))
    if phone and not is_valid_au_phone(phone):
        errors.append("Invalid phone number. Use an Australian number, e.g. 0412345678, 04 1234 5678 or +61412345678.")
    if creating and not payload.get("role_id"):
        errors.append("Role is required.")

    password = payload.get("password") or ""
    send_invite = payload.get("send_invite") in (True, "1", "true", "on")
    if not isinstance(password, str):
        errors.append("Password must be text.")
    elif password:
        errors.extend(validate_password(password, payload.get("confirm_password")))
    elif creating and not send_invite:
        errors.append("Password is required unless an invite is sent.")
    return errors


def list_users(
    s: "Session",
    *,
    search: str | None = None,
    role: str | None = None,
    active: str = "all",
    limit: int = 10,
    offset: int = 0,
) -> tuple[list["User"], int]:
    from app.fleet.models import Role, User

    q = s.query(User)
    search = (search or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                User.username.ilike(like),
                User.email.ilike(like),
                User.first_name.ilike(like),
                User.last_name.ilike(like),
            )
        )
    if role and role != "all":
        q = q.join(Role, Role.id == User.role_id).filter(Role.key == role)
    if active == "active":
        q = q.filter(User.is_active.is_(True))
    elif active == "inactive":
        q = q.filter(User.is_active.is_(False))
    total = q.order_by(None).count()
    rows = q.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def get_user(s: "Session", user_id: int) -> "User | None":
    from app.fleet.models import User

    return s.get(User, user_id)


def get_roles(s: "Session") -> list["Role"]:
    from app.fleet.models import Role

    return s.query(Role).order_by(Role.name.asc()).all()


def _resolve_role(s: "Session", role_id) -> "Role":
    from app.fleet.models import Role

    try:
        role = s.get(Role, int(role_id))
    except (TypeError, ValueError):
        role = None
    if not role:
        raise UserAdminError("Invalid role")
    return role


def _check_unique(s: "Session", *, username: str | None, email: str | None, exclude_id: int | None = None) -> None:
    from app.fleet.models import User

    if username:
        q = s.query(User.id).filter(func.lower(User.username) == username.lower())
        if exclude_id:
            q = q.filter(User.id != exclude_id)
        if q.first():
            raise UserAdminError("Username is already taken")
    if email:
        q = s.query(User.id).filter(User.email == email)
        if exclude_id:
            q = q.filter(User.id != exclude_id)
        if q.first():
            raise UserAdminError("Email is already registered")


def issue_reset_token(s: "Session", user: "User") -> str:
    from app.fleet.models import PasswordResetToken

    token = new_token()
    s.add(PasswordResetToken(token=token, user_id=user.id, expires_at=datetime.utcnow() + RESET_TOKEN_TTL))
    s.flush()
    return token


def reset_url(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/auth/reset-password/{token}"


def create_user(s: "Session", payload: dict, actor: "User") -> tuple["User", str | None]:
    """
    Returns (user, reset_token). The token is set only for invites, where the
    account gets a random password and the caller emails a set-password link.
    """
    from app.fleet.models import User

    username = clean_str(payload.get("username"))
    email = (clean_str(payload.get("email")) or "").lower()
    _check_unique(s, username=username, email=email)
    role = _resolve_role(s, payload.get("role_id"))

    password = payload.get("password") or ""
    invite = not password and payload.get("send_invite") in (True, "1", "true", "on")
    now = datetime.utcnow()
    user = User(
        username=username,
        email=email,
        password_hash=generate_password_hash(password or new_token(24)),
        first_name=clean_str(payload.get("first_name")) or "",
        last_name=clean_str(payload.get("last_name")) or "",
        phone=clean_str(payload.get("phone")),
        role=role,
        is_active=payload.get("is_active", True) not in (False, "0", "false", "off"),
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()

    token = issue_reset_token(s, user) if invite else None
    record_event(
        s,
        actor=actor,
        action="user.invite" if invite else "user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"username": username, "email": email, "role": role.key},
    )
    return user, token


def update_user(s: "Session", user: "User", payload: dict, actor: "User") -> "User":
    username = clean_str(payload.get("username")) if "username" in payload else None
    email = (clean_str(payload.get("email")) or "").lower() if "email" in payload else None
    _check_unique(
        s,
        username=username if username and username != user.username else None,
        email=email if email and email != user.email else None,
        exclude_id=user.id,
    )

    changes: dict = {}

    def setv(field: str, new) -> None:
        old = getattr(user, field)
        if new != old:
            changes[field] = {"old": old, "new": new}
            setattr(user, field, new)

    if username:
        setv("username", username)
    if email:
        setv("email", email)
    for field in ("first_name", "last_name"):
        if field in payload:
            setv(field, clean_str(payload.get(field)) or "")
    if "phone" in payload:
        setv("phone", clean_str(payload.get("phone")))
    if payload.get("role_id"):
        role = _resolve_role(s, payload.get("role_id"))
        if role.id != user.role_id:
            changes["role"] = {"old": user.role_key, "new": role.key}
            user.role = role
    if "is_active" in payload:
        setv("is_active", payload.get("is_active") not in (False, None, "", "0", "false", "off"))
    if payload.get("password"):
        user.password_hash = generate_password_hash(payload["password"])
        changes["password"] = "changed"

    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"changes": changes},
    )
    return user


def soft_delete_user(s: "Session", user: "User", actor: "User") -> "User":
    if user.id == actor.id:
        raise UserAdminError("You cannot deactivate your own account")
    user.is_active = False
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.deactivate",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
    )
    return user


def delete_user(s: "Session", user: "User", actor: "User") -> None:
    if user.id == actor.id:
        raise UserAdminError("You cannot delete your own account")
    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "username": user.username},
    )
    s.delete(user)
    s.flush()


def update_profile(s: "Session", user: "User", payload: dict) -> "User":
    """Self-service profile edit. Only admins may change their own role here."""
    errors = validate_user_payload(
        {k: v for k, v in payload.items() if k in ("username", "email", "first_name", "last_name", "phone", "password", "confirm_password")},
        creating=False,
    )
    if errors:
        raise UserAdminError("; ".join(errors))

    username = clean_str(payload.get("username")) if "username" in payload else None
    email = (clean_str(payload.get("email")) or "").lower() if "email" in payload else None
    _check_unique(
        s,
        username=username if username and username != user.username else None,
        email=email if email and email != user.email else None,
        exclude_id=user.id,
    )

    changes: dict = {}
    for field, new in (
        ("username", username),
        ("email", email),
        ("first_name", clean_str(payload.get("first_name")) if "first_name" in payload else None),
        ("last_name", clean_str(payload.get("last_name")) if "last_name" in payload else None),
    ):
        if new and new != getattr(user, field):
            changes[field] = {"old": getattr(user, field), "new": new}
            setattr(user, field, new)
    if "phone" in payload:
        phone = clean_str(payload.get("phone"))
        if phone != user.phone:
            changes["phone"] = {"old": user.phone, "new": phone}
            user.phone = phone
    if payload.get("role_id"):
        role = _resolve_role(s, payload.get("role_id"))
        if role.id != user.role_id:
            if user.role_key != "admin":
                raise UserAdminError("Only administrators can change roles")
            changes["role"] = {"old": user.role_key, "new": role.key}
            user.role = role
    if payload.get("password"):
        user.password_hash = generate_password_hash(payload["password"])
        changes["password"] = "changed"

    if changes:
        user.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="user.profile_update",
            entity_type="User",
            entity_id=str(user.id),
            metadata={"changes": changes},
        )
    return user


def user_to_dict(user: "User") -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "name": user.display_name,
        "phone": user.phone,
        "role_id": user.role_id,
        "role": user.role_key,
        "role_name": user.role.name if user.role else None,
        "is_active": user.is_active,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
    }


def role_to_dict(role: "Role") -> dict:
    return {
        "id": role.id,
        "key": role.key,
        "name": role.name,
        "description": role.description,
        "permissions": sorted(p.key for p in role.permissions),
    }
