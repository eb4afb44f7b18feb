"""Shared fixtures: a fresh sqlite app per test, seeded roles and one user per role."""
import pytest
from werkzeug.security import generate_password_hash

from app.fleet import create_app
from app.fleet.db import session_scope
from app.fleet.models import Base, User
from app.fleet.seed import ensure_admin, seed_roles

PASSWORD = "Passw0rd!"
ENCRYPTION_KEY = "ab" * 32


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("APP_URL", "http://testserver")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("EMAIL_ENCRYPTION_KEY", ENCRYPTION_KEY)
    for k in (
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
        "MAIL_SERVER",
        "MAIL_USERNAME",
        "MAIL_PASSWORD",
    ):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = seed_roles(s)
        ensure_admin(s, email="admin@example.com", password=PASSWORD)
        for key in ("manager", "inspector", "viewer"):
            s.add(
                User(
                    username=key,
                    email=f"{key}@example.com",
                    password_hash=generate_password_hash(PASSWORD),
                    first_name=key.capitalize(),
                    last_name="User",
                    role=roles[key],
                    is_active=True,
                )
            )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login():
    """Sign a test client in and attach its session CSRF token to every later request."""

    def _login(client, email="admin@example.com", password=PASSWORD):
        r = client.post("/auth/login", data={"email": email, "password": password})
        with client.session_transaction() as sess:
            client.environ_base["HTTP_X_CSRF_TOKEN"] = sess["csrf_token"]
        return r

    return _login


@pytest.fixture()
def sent_emails(monkeypatch):
    """Capture outbound email instead of opening an SMTP connection."""
    import app.fleet.mailer as mailer

    sent = []

    def _send_email(s, to, subject, text, html=None, attachments=None):
        sent.append({"to": to, "subject": subject, "text": text, "html": html, "attachments": attachments or []})

    monkeypatch.setattr(mailer, "send_email", _send_email)
    return sent


@pytest.fixture()
def user_id(app):
    def _user_id(email):
        with session_scope(app) as s:
            return s.query(User).filter(User.email == email).one().id

    return _user_id
