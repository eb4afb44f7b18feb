from __future__ import annotations

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.fleet.constants import PERMISSIONS, ROLE_ADMIN, ROLE_PERMISSIONS, ROLES
from app.fleet.models import Permission, Role, User


def seed_roles(s: Session) -> dict[str, Role]:
    """
    Seed permissions and roles in an idempotent way.
    Existing roles keep any extra permissions granted by hand.
    """
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for key, (name, description) in ROLES.items():
        role = s.query(Role).filter(Role.key == key).one_or_none()
        if not role:
            role = Role(key=key, name=name, description=description)
            s.add(role)
        for perm_key in ROLE_PERMISSIONS[key]:
            if perms[perm_key] not in role.permissions:
                role.permissions.append(perms[perm_key])
        roles[key] = role
    s.flush()
    return roles


def ensure_admin(s: Session, *, email: str, password: str, username: str = "admin") -> User:
    """
    Create the bootstrap admin account if it does not exist.
    Does NOT overwrite an existing user's password.
    """
    roles = seed_roles(s)
    email = email.strip().lower()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user:
        user = User(
            username=username,
            email=email,
            password_hash=generate_password_hash(password),
            first_name="System",
            last_name="Administrator",
            role=roles[ROLE_ADMIN],
            is_active=True,
        )
        s.add(user)
        s.flush()
    return user
