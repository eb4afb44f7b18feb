from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy import func, or_
from werkzeug.security import check_password_hash, generate_password_hash

from app.fleet.audit import record_event
from app.fleet.db import db_session
from app.fleet.mailer import MailerError, send_password_reset_email
from app.fleet.models import PasswordResetToken, User

bp = Blueprint("auth", __name__)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _login_attempts() -> dict[str, list[datetime]]:
    # Per-app so each app instance (and each test app) starts clean.
    return current_app.extensions.setdefault("login_attempts", defaultdict(list))


def _check_rate_limit(ip: str) -> bool:
    attempts = _login_attempts()
    cutoff = datetime.utcnow() - timedelta(seconds=_LOGIN_RATE_WINDOW)
    attempts[ip] = [t for t in attempts[ip] if t > cutoff]
    return len(attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts()[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def _find_login_user(s, identifier: str) -> User | None:
    return (
        s.query(User)
        .filter(or_(func.lower(User.email) == identifier, func.lower(User.username) == identifier))
        .one_or_none()
    )


@bp.get("/login")
def login_get():
    if getattr(g, "current_user", None):
        return redirect(url_for("dashboard.index"))
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    identifier = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    s = db_session()
    user = _find_login_user(s, identifier) if identifier else None
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=identifier,
            reason="Invalid credentials",
            metadata={"identifier": identifier, "ip": ip},
        )
        s.commit()
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    session["user_id"] = user.id
    _login_attempts()[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    # Only allow local paths to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return redirect(nxt)
    return redirect(url_for("dashboard.index"))


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("auth.login_get"))


@bp.get("/forgot-password")
def forgot_password_get():
    return render_template("auth/forgot_password.html")


@bp.post("/forgot-password")
def forgot_password_post():
    from app.fleet.modules.users.service import issue_reset_token, reset_url

    email = (request.form.get("email") or "").strip().lower()
    s = db_session()
    user = s.query(User).filter(func.lower(User.email) == email).one_or_none() if email else None
    if user and user.is_active:
        token = issue_reset_token(s, user)
        record_event(s, actor=None, action="auth.password_reset_requested", entity_type="User", entity_id=str(user.id))
        s.commit()
        try:
            send_password_reset_email(
                s,
                to=user.email,
                reset_url=reset_url(current_app.config["APP_URL"], token),
                user_name=user.display_name,
            )
        except MailerError:
            current_app.logger.error("Password reset email failed (user_id=%s request_id=%s)", user.id, g.request_id)
    # Same response whether or not the account exists.
    flash("If an account exists for that email, a reset link has been sent.", "success")
    return redirect(url_for("auth.login_get"))


def _usable_token(token: str) -> PasswordResetToken | None:
    row = db_session().query(PasswordResetToken).filter(PasswordResetToken.token == token).one_or_none()
    if row is None or not row.is_usable():
        return None
    return row


@bp.get("/reset-password/<token>")
def reset_password_get(token: str):
    if _usable_token(token) is None:
        flash("This reset link is invalid or has expired.", "danger")
        return redirect(url_for("auth.forgot_password_get"))
    return render_template("auth/reset_password.html", token=token)


@bp.post("/reset-password/<token>")
def reset_password_post(token: str):
    from app.fleet.modules.users.service import validate_password

    s = db_session()
    row = _usable_token(token)
    if row is None:
        flash("This reset link is invalid or has expired.", "danger")
        return redirect(url_for("auth.forgot_password_get"))

    password = request.form.get("password") or ""
    errors = validate_password(password, request.form.get("confirm_password") or "")
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("auth/reset_password.html", token=token), 400

    user = row.user
    user.password_hash = generate_password_hash(password)
    user.updated_at = datetime.utcnow()
    row.used_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=str(user.id))
    s.commit()
    flash("Password updated. You can now sign in.", "success")
    return redirect(url_for("auth.login_get"))
