"""
Outbound email over SMTP.

Transport settings come from the first active stored email configuration
(admin > Email settings) and fall back to the MAIL_* app config.
"""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import TYPE_CHECKING

from flask import current_app, render_template

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 10
APP_NAME = "Vehicle Track"


class MailerError(RuntimeError):
    pass


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    username: str
    password: str
    from_email: str
    from_name: str = APP_NAME

    @property
    def sender(self) -> str:
        return formataddr((self.from_name, self.from_email)) if self.from_name else self.from_email


def settings_from_app_config(config) -> SmtpSettings | None:
    host = (config.get("MAIL_SERVER") or "").strip()
    if not host:
        return None
    from email.utils import parseaddr

    from_name, from_email = parseaddr(config.get("MAIL_FROM") or "")
    return SmtpSettings(
        host=host,
        port=int(config.get("MAIL_PORT") or 587),
        username=(config.get("MAIL_USERNAME") or "").strip(),
        password=config.get("MAIL_PASSWORD") or "",
        from_email=from_email or (config.get("MAIL_USERNAME") or "").strip(),
        from_name=from_name or APP_NAME,
    )


def resolve_smtp_settings(s: "Session") -> SmtpSettings:
    from app.fleet.modules.email_config.service import active_smtp_settings

    stored = active_smtp_settings(s)
    if stored is not None:
        return stored
    fallback = settings_from_app_config(current_app.config)
    if fallback is None:
        raise MailerError("Email is not configured. Add SMTP settings under Admin > Email.")
    return fallback


def open_smtp(settings: SmtpSettings, *, timeout: int = SMTP_TIMEOUT_SECONDS) -> smtplib.SMTP:
    """
    Connect and authenticate. Port 465 is implicit TLS; other ports upgrade
    with STARTTLS when offered. The connection is closed if the handshake or
    login fails; callers own it afterwards (use it as a context manager).
    """
    if settings.port == 465:
        server: smtplib.SMTP = smtplib.SMTP_SSL(settings.host, settings.port, timeout=timeout)
    else:
        server = smtplib.SMTP(settings.host, settings.port, timeout=timeout)
    try:
        if settings.port != 465:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
        if settings.username and settings.password:
            server.login(settings.username, settings.password)
    except Exception:
        server.close()
        raise
    return server


def build_message(
    settings: SmtpSettings,
    to: str,
    subject: str,
    text: str,
    html: str | None = None,
    attachments: list[tuple[str, bytes, str]] | None = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.sender
    msg["To"] = to
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    for filename, data, mimetype in attachments or ():
        maintype, _, subtype = mimetype.partition("/")
        msg.add_attachment(data, maintype=maintype, subtype=subtype or "octet-stream", filename=filename)
    return msg


def send_with_settings(
    settings: SmtpSettings,
    to: str,
    subject: str,
    text: str,
    html: str | None = None,
    attachments: list[tuple[str, bytes, str]] | None = None,
) -> None:
    msg = build_message(settings, to, subject, text, html, attachments)
    try:
        with open_smtp(settings) as server:
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.exception("SMTP send failed (to=%s subject=%s)", to, subject)
        raise MailerError(f"Failed to send email: {e}") from e
    logger.info("Sent email to %s (subject=%s)", to, subject)


def send_email(
    s: "Session",
    to: str,
    subject: str,
    text: str,
    html: str | None = None,
    attachments: list[tuple[str, bytes, str]] | None = None,
) -> None:
    send_with_settings(resolve_smtp_settings(s), to, subject, text, html, attachments)


# ---------- Messages ----------
def send_password_reset_email(s: "Session", *, to: str, reset_url: str, user_name: str | None = None) -> None:
    subject = f"Reset Your Password - {APP_NAME}"
    greeting = f"Hello {user_name}," if user_name else "Hello,"
    text = (
        f"{greeting}\n\n"
        f"We received a request to reset your password for your {APP_NAME} account.\n"
        f"Open this link to choose a new password (expires in 1 hour):\n\n{reset_url}\n\n"
        "If you didn't request this, you can ignore this email."
    )
    html = render_template("email/password_reset.html", reset_url=reset_url, user_name=user_name)
    send_email(s, to, subject, text, html)


def send_welcome_email(s: "Session", *, to: str, user_name: str, username: str, setup_url: str) -> None:
    subject = f"Welcome to {APP_NAME}"
    text = (
        f"Hello {user_name},\n\n"
        f"An account has been created for you on {APP_NAME} (username: {username}).\n"
        f"Set your password here (link expires in 1 hour):\n\n{setup_url}\n"
    )
    html = render_template("email/welcome.html", user_name=user_name, username=username, setup_url=setup_url)
    send_email(s, to, subject, text, html)


def send_agreement_invite_email(
    s: "Session",
    *,
    to: str,
    driver_name: str,
    requester_name: str,
    vehicle_name: str,
    license_plate: str,
    template_title: str,
    signing_link: str,
) -> None:
    subject = f"Please sign: {template_title}"
    text = (
        f"Hello {driver_name or 'there'},\n\n"
        f"{requester_name} has sent you \"{template_title}\" for {vehicle_name} ({license_plate}).\n"
        f"Review and sign the agreement here:\n\n{signing_link}\n"
    )
    html = render_template(
        "email/agreement_invite.html",
        driver_name=driver_name,
        requester_name=requester_name,
        vehicle_name=vehicle_name,
        license_plate=license_plate,
        template_title=template_title,
        signing_link=signing_link,
    )
    send_email(s, to, subject, text, html)


def send_agreement_terminated_email(
    s: "Session",
    *,
    to: str,
    driver_name: str,
    vehicle_name: str,
    license_plate: str,
    reason: str | None,
) -> None:
    subject = f"Agreement terminated - {vehicle_name}"
    text = (
        f"Hello {driver_name or 'there'},\n\n"
        f"Your rental agreement for {vehicle_name} ({license_plate}) has been terminated.\n"
    )
    if reason:
        text += f"\nReason: {reason}\n"
    html = render_template(
        "email/agreement_terminated.html",
        driver_name=driver_name,
        vehicle_name=vehicle_name,
        license_plate=license_plate,
        reason=reason,
    )
    send_email(s, to, subject, text, html)


def send_agreement_export_email(s: "Session", *, to: str, vehicle_name: str, filename: str, data: bytes) -> None:
    subject = f"Agreement export - {vehicle_name}"
    text = f"The exported agreement for {vehicle_name} is attached ({filename}).\n"
    send_email(s, to, subject, text, attachments=[(filename, data, "application/zip")])
