"""
Stored SMTP settings.

The SMTP password is encrypted at rest with Fernet. The key is derived from
EMAIL_ENCRYPTION_KEY (64 hex chars = 32 raw bytes).
"""
from __future__ import annotations

import base64
import binascii
import logging
import re
import smtplib
import socket
from datetime import datetime
from typing import TYPE_CHECKING

from cryptography.fernet import Fernet, InvalidToken

from app.fleet.audit import record_event
from app.fleet.mailer import MailerError, SmtpSettings, open_smtp, send_with_settings
from app.fleet.utils import clean_str, is_valid_email, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fleet.models import User
    from app.fleet.modules.email_config.models import EmailConfig

logger = logging.getLogger(__name__)

HOSTNAME_RE = re.compile(
    r"^(?=.{1,255}$)[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
TEST_EMAIL_SUBJECT = "Test Email - Vehicle Track"


class EmailConfigError(ValueError):
    pass


# ---------- Encryption ----------
def _fernet() -> Fernet:
    from flask import current_app

    raw = (current_app.config.get("EMAIL_ENCRYPTION_KEY") or "").strip()
    if not raw:
        raise EmailConfigError("EMAIL_ENCRYPTION_KEY is not configured")
    try:
        key_bytes = bytes.fromhex(raw)
    except ValueError as e:
        raise EmailConfigError("EMAIL_ENCRYPTION_KEY must be 64 hex characters") from e
    if len(key_bytes) != 32:
        raise EmailConfigError("EMAIL_ENCRYPTION_KEY must be 64 hex characters")
    return Fernet(base64.urlsafe_b64encode(key_bytes))


def encrypt_secret(plain: str) -> str:
    return _fernet().encrypt(plain.encode("utf-8")).decode("ascii")


def decrypt_secret(token: str) -> str:
    try:
        return _fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except (InvalidToken, binascii.Error, UnicodeDecodeError) as e:
        raise EmailConfigError("Stored SMTP password could not be decrypted") from e


# ---------- Validation ----------
def validate_email_config_payload(payload: dict, *, has_stored_password: bool = False) -> list[str]:
    errors = []
    host = clean_str(payload.get("smtp_host"))
    if not host or not HOSTNAME_RE.match(host):
        errors.append("SMTP host must be a valid hostname.")
    port = parse_int(payload.get("smtp_port"))
    if port is None or not (1 <= port <= 65535):
        errors.append("SMTP port must be between 1 and 65535.")
    if not clean_str(payload.get("smtp_username")):
        errors.append("SMTP username is required.")
    if not isinstance(payload.get("smtp_password") or "", str):
        errors.append("SMTP password must be text.")
    elif not payload.get("smtp_password") and not has_stored_password:
        errors.append("SMTP password is required.")
    if not is_valid_email(clean_str(payload.get("from_email")) or ""):
        errors.append("From email must be a valid email address.")
    from_name = clean_str(payload.get("from_name"))
    if not from_name or len(from_name) > 100:
        errors.append("From name must be 1-100 characters.")
    if "active" in payload and not isinstance(payload.get("active"), bool):
        errors.append("Active must be true or false.")
    return errors


# ---------- Persistence ----------
def _config_for_user(s: "Session", user: "User") -> "EmailConfig | None":
    from app.fleet.modules.email_config.models import EmailConfig

    return s.query(EmailConfig).filter(EmailConfig.user_id == user.id).one_or_none()


def get_email_config(s: "Session", user: "User") -> dict | None:
    """The user's config with the password decrypted, or None."""
    config = _config_for_user(s, user)
    if config is None:
        return None
    return {**email_config_to_dict(config), "smtp_password": decrypt_secret(config.smtp_password_enc)}


def save_email_config(s: "Session", user: "User", payload: dict) -> "EmailConfig":
    from app.fleet.modules.email_config.models import EmailConfig

    config = _config_for_user(s, user)
    now = datetime.utcnow()
    created = config is None
    if created:
        config = EmailConfig(user_id=user.id, created_at=now)
        s.add(config)

    config.smtp_host = clean_str(payload.get("smtp_host"))
    config.smtp_port = parse_int(payload.get("smtp_port"))
    config.smtp_username = clean_str(payload.get("smtp_username"))
    if payload.get("smtp_password"):
        config.smtp_password_enc = encrypt_secret(payload["smtp_password"])
    config.from_email = clean_str(payload.get("from_email"))
    config.from_name = clean_str(payload.get("from_name"))
    config.active = payload.get("active", True) is not False
    config.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="email_config.create" if created else "email_config.update",
        entity_type="EmailConfig",
        entity_id=str(config.id),
        metadata={
            "smtp_host": config.smtp_host,
            "smtp_port": config.smtp_port,
            "from_email": config.from_email,
            "active": config.active,
            "password_changed": bool(payload.get("smtp_password")),
        },
    )
    return config


def settings_from_payload(payload: dict) -> SmtpSettings:
    return SmtpSettings(
        host=clean_str(payload.get("smtp_host")) or "",
        port=parse_int(payload.get("smtp_port"), 587) or 587,
        username=clean_str(payload.get("smtp_username")) or "",
        password=payload.get("smtp_password") or "",
        from_email=clean_str(payload.get("from_email")) or "",
        from_name=clean_str(payload.get("from_name")) or "",
    )


def active_smtp_settings(s: "Session") -> SmtpSettings | None:
    """Transport settings from the most recently updated active stored config."""
    from app.fleet.modules.email_config.models import EmailConfig

    config = (
        s.query(EmailConfig)
        .filter(EmailConfig.active.is_(True))
        .order_by(EmailConfig.updated_at.desc(), EmailConfig.id.desc())
        .first()
    )
    if config is None:
        return None
    try:
        password = decrypt_secret(config.smtp_password_enc)
    except EmailConfigError as e:
        raise MailerError(str(e)) from e
    return SmtpSettings(
        host=config.smtp_host,
        port=config.smtp_port,
        username=config.smtp_username,
        password=password,
        from_email=config.from_email,
        from_name=config.from_name,
    )


# ---------- Testing ----------
def describe_smtp_failure(exc: BaseException) -> str:
    if isinstance(exc, smtplib.SMTPAuthenticationError):
        return "Authentication failed. Check your username and password."
    if isinstance(exc, ConnectionRefusedError):
        return "Connection refused. Check the host and port."
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return "Connection timeout. The server may be unreachable."
    return f"Connection failed: {exc}"


def test_connection(settings: SmtpSettings) -> tuple[bool, str]:
    try:
        with open_smtp(settings) as server:
            server.noop()
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("SMTP connection test failed for %s:%s: %s", settings.host, settings.port, e)
        return False, describe_smtp_failure(e)
    return True, "Connection successful."


def send_test_email(settings: SmtpSettings, to: str) -> tuple[bool, str]:
    text = (
        "This is a test email from Vehicle Track.\n\n"
        f"SMTP host: {settings.host}:{settings.port}\n"
        "If you received this, your email settings are working.\n"
    )
    try:
        send_with_settings(settings, to, TEST_EMAIL_SUBJECT, text)
    except MailerError as e:
        cause = e.__cause__ or e
        return False, describe_smtp_failure(cause)
    return True, f"Test email sent to {to}."


def email_config_to_dict(config: "EmailConfig") -> dict:
    return {
        "id": config.id,
        "smtp_host": config.smtp_host,
        "smtp_port": config.smtp_port,
        "smtp_username": config.smtp_username,
        "from_email": config.from_email,
        "from_name": config.from_name,
        "active": config.active,
        "updated_at": config.updated_at.isoformat() if config.updated_at else None,
    }
