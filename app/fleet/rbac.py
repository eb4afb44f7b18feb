from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify, redirect, request, url_for

from app.fleet.models import User


def is_api_request() -> bool:
    return request.path.startswith("/api/")


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active or not user.role:
        return False
    for perm in user.role.permissions:
        if perm.key == permission_key:
            return True
    return False


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                # API callers get a status code; browsers get the login page.
                if is_api_request():
                    return jsonify({"error": "Unauthorized"}), 401
                nxt = request.full_path or request.path
                # Avoid trailing '?' from full_path when there is no query string.
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            if is_api_request():
                return jsonify({"error": "Unauthorized"}), 401
            return redirect(url_for("auth.login_get", next=request.path))
        return fn(*args, **kwargs)

    return wrapped
