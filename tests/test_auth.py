"""Tests for login, password reset, RBAC and CSRF enforcement."""
import re
from datetime import datetime, timedelta

from app.fleet.db import session_scope
from app.fleet.models import AuditEvent, PasswordResetToken


def test_login_with_username(client):
    r = client.post("/auth/login", data={"email": "admin", "password": "Passw0rd!"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard/")


def test_login_bad_password_is_audited(app, client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "wrong"}, follow_redirects=True)
    assert r.status_code == 200
    assert b"Invalid credentials." in r.data
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1


def test_login_rate_limited_after_five_attempts(client):
    for _ in range(5):
        client.post("/auth/login", data={"email": "admin@example.com", "password": "wrong"})
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "Passw0rd!"}, follow_redirects=True)
    assert b"Too many login attempts" in r.data
    r = client.get("/dashboard/")
    assert r.status_code == 302


def test_login_next_only_allows_local_paths(client):
    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "Passw0rd!", "next": "//evil.example.com/"},
    )
    assert r.headers["Location"].endswith("/dashboard/")

    client.get("/auth/logout")
    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "Passw0rd!", "next": "/dashboard/vehicles"},
    )
    assert r.headers["Location"].endswith("/dashboard/vehicles")


def test_logout_clears_user(client, login):
    login(client)
    r = client.get("/auth/logout")
    assert r.status_code == 302
    r = client.get("/dashboard/")
    assert r.status_code == 302


def test_inactive_user_cannot_login(app, client):
    from app.fleet.models import User

    with session_scope(app) as s:
        s.query(User).filter(User.email == "viewer@example.com").one().is_active = False
    r = client.post("/auth/login", data={"email": "viewer@example.com", "password": "Passw0rd!"}, follow_redirects=True)
    assert b"Invalid credentials." in r.data


def test_forgot_and_reset_password(app, client, sent_emails):
    r = client.post("/auth/forgot-password", data={"email": "viewer@example.com"})
    assert r.status_code == 302
    assert len(sent_emails) == 1
    assert sent_emails[0]["to"] == "viewer@example.com"
    token = re.search(r"/auth/reset-password/(\S+)", sent_emails[0]["text"]).group(1)

    r = client.get(f"/auth/reset-password/{token}")
    assert r.status_code == 200

    r = client.post(
        f"/auth/reset-password/{token}",
        data={"password": "weak", "confirm_password": "weak"},
    )
    assert r.status_code == 400

    r = client.post(
        f"/auth/reset-password/{token}",
        data={"password": "N3wPassword", "confirm_password": "N3wPassword"},
    )
    assert r.status_code == 302

    # Token is single use
    r = client.get(f"/auth/reset-password/{token}")
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.query(PasswordResetToken).filter(PasswordResetToken.token == token).one().used_at is not None

    r = client.post("/auth/login", data={"email": "viewer@example.com", "password": "N3wPassword"})
    assert r.headers["Location"].endswith("/dashboard/")


def test_expired_reset_token_is_refused(app, client, sent_emails):
    client.post("/auth/forgot-password", data={"email": "viewer@example.com"})
    token = re.search(r"/auth/reset-password/(\S+)", sent_emails[0]["text"]).group(1)
    with session_scope(app) as s:
        row = s.query(PasswordResetToken).filter(PasswordResetToken.token == token).one()
        row.expires_at = datetime.utcnow() - timedelta(minutes=1)

    r = client.get(f"/auth/reset-password/{token}")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/auth/forgot-password")

    r = client.post(
        f"/auth/reset-password/{token}",
        data={"password": "N3wPassword", "confirm_password": "N3wPassword"},
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/auth/forgot-password")
    with session_scope(app) as s:
        assert s.query(PasswordResetToken).filter(PasswordResetToken.token == token).one().used_at is None

    r = client.post(
        "/auth/login", data={"email": "viewer@example.com", "password": "N3wPassword"}, follow_redirects=True
    )
    assert b"Invalid credentials." in r.data


def test_forgot_password_unknown_email_same_response(client, sent_emails):
    r = client.post("/auth/forgot-password", data={"email": "nobody@example.com"}, follow_redirects=True)
    assert r.status_code == 200
    assert b"If an account exists" in r.data
    assert sent_emails == []


def test_forgot_password_without_mail_config_still_redirects(client):
    r = client.post("/auth/forgot-password", data={"email": "viewer@example.com"})
    assert r.status_code == 302


def test_api_requires_session(client):
    r = client.get("/api/vehicles")
    assert r.status_code == 401
    assert r.json == {"error": "Unauthorized"}


def test_api_forbidden_without_permission(client, login):
    login(client, "viewer@example.com")
    r = client.post("/api/vehicles", json={"make": "Toyota"})
    assert r.status_code == 403
    assert r.json == {"error": "Insufficient permissions"}


def test_api_write_requires_csrf_token(client, login):
    login(client)
    client.environ_base.pop("HTTP_X_CSRF_TOKEN")
    r = client.post("/api/drivers", json={"first_name": "A", "last_name": "B"})
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid"


def test_page_form_requires_csrf_token(client, login):
    login(client)
    client.environ_base.pop("HTTP_X_CSRF_TOKEN")
    r = client.post("/dashboard/drivers/new", data={"first_name": "A", "last_name": "B"})
    assert r.status_code == 400


def test_page_form_accepts_csrf_form_field(client, login):
    login(client)
    token = client.environ_base.pop("HTTP_X_CSRF_TOKEN")
    r = client.post("/dashboard/drivers/new", data={"first_name": "A", "last_name": "B", "csrf_token": token})
    assert r.status_code == 302


def test_unknown_api_path_returns_json_404(client, login):
    login(client)
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json == {"error": "Not found"}
