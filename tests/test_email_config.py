import smtplib

import pytest

from app.fleet.db import session_scope
from app.fleet.mailer import MailerError, send_email
from app.fleet.modules.email_config import service
from app.fleet.modules.email_config.models import EmailConfig

CONFIG = {
    "smtp_host": "smtp.example.com",
    "smtp_port": 587,
    "smtp_username": "mailer@example.com",
    "smtp_password": "app-password",
    "from_email": "fleet@example.com",
    "from_name": "Fleet Team",
    "active": True,
}


class FakeSMTP:
    """Stands in for smtplib.SMTP; records what the mailer does with it."""

    instances: list["FakeSMTP"] = []
    fail_login = False

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.logged_in = None
        self.sent = []
        self.starttls_called = False
        self.closed = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.quit()

    def ehlo(self):
        return 250, b"ok"

    def has_extn(self, name):
        return name == "starttls"

    def starttls(self):
        self.starttls_called = True

    def login(self, username, password):
        if FakeSMTP.fail_login:
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")
        self.logged_in = (username, password)

    def send_message(self, msg):
        self.sent.append(msg)

    def noop(self):
        return 250, b"ok"

    def quit(self):
        self.close()

    def close(self):
        self.closed = True


@pytest.fixture()
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_login = False
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_secret_round_trip(app):
    with app.app_context():
        token = service.encrypt_secret("app-password")
        assert token != "app-password"
        assert service.decrypt_secret(token) == "app-password"
        with pytest.raises(service.EmailConfigError):
            service.decrypt_secret("not-a-fernet-token")


def test_bad_encryption_key(app):
    app.config["EMAIL_ENCRYPTION_KEY"] = "abc"
    with app.app_context():
        with pytest.raises(service.EmailConfigError, match="64 hex characters"):
            service.encrypt_secret("x")


def test_validation_messages():
    errors = service.validate_email_config_payload(
        {"smtp_host": "bad host!", "smtp_port": 70000, "from_email": "nope", "from_name": "", "active": "yes"}
    )
    assert errors == [
        "SMTP host must be a valid hostname.",
        "SMTP port must be between 1 and 65535.",
        "SMTP username is required.",
        "SMTP password is required.",
        "From email must be a valid email address.",
        "From name must be 1-100 characters.",
        "Active must be true or false.",
    ]
    assert "SMTP password is required." not in service.validate_email_config_payload(
        {**CONFIG, "smtp_password": ""}, has_stored_password=True
    )


def test_save_encrypts_and_hides_password(app, client, login):
    login(client)
    r = client.get("/api/admin/email")
    assert r.json["config"] is None

    r = client.post("/api/admin/email", json=CONFIG)
    assert r.status_code == 200
    assert "smtp_password" not in r.json["config"]

    with session_scope(app) as s:
        stored = s.query(EmailConfig).one()
        assert stored.smtp_password_enc != "app-password"

    r = client.get("/api/admin/email")
    config = r.json["config"]
    assert config["smtp_password"] == ""
    assert config["has_password"] is True
    assert config["from_name"] == "Fleet Team"

    # Saving again without a password keeps the stored one.
    r = client.post("/api/admin/email", json={**CONFIG, "smtp_password": "", "from_name": "Fleet Ops"})
    assert r.status_code == 200
    with app.app_context(), session_scope(app) as s:
        settings = service.active_smtp_settings(s)
    assert settings.password == "app-password"
    assert settings.from_name == "Fleet Ops"


def test_save_validation_error(client, login):
    login(client)
    r = client.post("/api/admin/email", json={**CONFIG, "smtp_port": "abc"})
    assert r.status_code == 400
    assert r.json["details"] == ["SMTP port must be between 1 and 65535."]


def test_invalid_test_action(client, login):
    login(client)
    r = client.post("/api/admin/email/test", json={**CONFIG, "action": "ping"})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid action. Use 'connection' or 'send'"


def test_connection_check(client, login, fake_smtp):
    login(client)
    r = client.post("/api/admin/email/test", json={**CONFIG, "action": "connection"})
    assert r.status_code == 200
    assert r.json == {"success": True, "message": "Connection successful."}
    server = fake_smtp.instances[0]
    assert server.starttls_called
    assert server.logged_in == ("mailer@example.com", "app-password")
    assert server.closed


def test_connection_auth_failure(client, login, fake_smtp):
    login(client)
    fake_smtp.fail_login = True
    r = client.post("/api/admin/email/test", json={**CONFIG, "action": "connection"})
    assert r.status_code == 400
    assert r.json["message"] == "Authentication failed. Check your username and password."
    assert fake_smtp.instances[0].closed


def test_send_test_email_uses_stored_password(client, login, fake_smtp):
    login(client)
    client.post("/api/admin/email", json=CONFIG)
    r = client.post("/api/admin/email/test", json={"action": "send", "to": "ops@example.com"})
    assert r.status_code == 200
    assert r.json["message"] == "Test email sent to ops@example.com."
    msg = fake_smtp.instances[0].sent[0]
    assert msg["Subject"] == service.TEST_EMAIL_SUBJECT
    assert msg["To"] == "ops@example.com"
    assert fake_smtp.instances[0].closed
    assert fake_smtp.instances[0].logged_in == ("mailer@example.com", "app-password")

    r = client.post("/api/admin/email/test", json={"action": "send", "to": "nobody"})
    assert r.status_code == 400


def test_starttls_failure_closes_connection(fake_smtp, monkeypatch):
    def refuse(self):
        raise smtplib.SMTPNotSupportedError("STARTTLS refused")

    monkeypatch.setattr(fake_smtp, "starttls", refuse)
    settings = service.settings_from_payload(CONFIG)
    ok, message = service.test_connection(settings)
    assert ok is False
    assert message == "Connection failed: STARTTLS refused"
    assert fake_smtp.instances[0].closed


def test_password_must_be_text(client, login):
    login(client)
    r = client.post("/api/admin/email", json={**CONFIG, "smtp_password": ["app-password"]})
    assert r.status_code == 400
    assert r.json["details"] == ["SMTP password must be text."]


def test_rotated_key_reports_decrypt_failure(app, client, login, fake_smtp):
    login(client)
    client.post("/api/admin/email", json=CONFIG)
    app.config["EMAIL_ENCRYPTION_KEY"] = "cd" * 32

    r = client.get("/api/admin/email")
    assert r.status_code == 500
    assert r.json["error"] == "Stored SMTP password could not be decrypted"

    r = client.post("/api/admin/email", json={**CONFIG, "smtp_password": ""})
    assert r.status_code == 500
    assert r.json["error"] == "Stored SMTP password could not be decrypted"

    r = client.post("/api/admin/email/test", json={"action": "connection"})
    assert r.status_code == 500
    assert r.json["error"] == "Stored SMTP password could not be decrypted"

    form = {**CONFIG, "smtp_port": "587", "smtp_password": "", "active": "1"}
    assert client.post("/dashboard/admin/email", data=form).status_code == 400
    assert client.post("/dashboard/admin/email/test", data=form).status_code == 302
    assert fake_smtp.instances == []

    # A fresh password re-encrypts under the new key.
    r = client.post("/api/admin/email", json=CONFIG)
    assert r.status_code == 200
    assert client.get("/api/admin/email").status_code == 200


def test_describe_smtp_failure():
    assert service.describe_smtp_failure(ConnectionRefusedError()) == "Connection refused. Check the host and port."
    assert service.describe_smtp_failure(TimeoutError()).startswith("Connection timeout")
    assert service.describe_smtp_failure(OSError("boom")) == "Connection failed: boom"


def test_stored_config_drives_outbound_mail(app, client, login, fake_smtp):
    login(client)
    client.post("/api/admin/email", json=CONFIG)
    with app.app_context(), session_scope(app) as s:
        send_email(s, "driver@example.com", "Hello", "Body", attachments=[("a.txt", b"hi", "text/plain")])
    msg = fake_smtp.instances[0].sent[0]
    assert msg["From"] == "Fleet Team <fleet@example.com>"
    assert [p.get_filename() for p in msg.iter_attachments()] == ["a.txt"]


def test_inactive_config_is_ignored(app, client, login):
    login(client)
    client.post("/api/admin/email", json={**CONFIG, "active": False})
    with app.app_context(), session_scope(app) as s:
        assert service.active_smtp_settings(s) is None
        with pytest.raises(MailerError, match="not configured"):
            send_email(s, "driver@example.com", "Hello", "Body")


def test_manager_can_manage_email_viewer_cannot(app, login):
    manager = app.test_client()
    login(manager, "manager@example.com")
    assert manager.get("/api/admin/email").status_code == 200

    viewer = app.test_client()
    login(viewer, "viewer@example.com")
    assert viewer.get("/api/admin/email").status_code == 403


def test_email_settings_pages(client, login, fake_smtp):
    login(client)
    assert client.get("/dashboard/admin/email").status_code == 200

    form = {**CONFIG, "smtp_port": "587", "active": "1"}
    r = client.post("/dashboard/admin/email", data=form)
    assert r.status_code == 302

    r = client.post("/dashboard/admin/email", data={**form, "smtp_host": ""})
    assert r.status_code == 400

    r = client.post("/dashboard/admin/email/test", data={**form, "smtp_password": "", "action": "connection"})
    assert r.status_code == 302
    assert fake_smtp.instances[0].logged_in == ("mailer@example.com", "app-password")
