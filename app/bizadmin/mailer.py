from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import Flask, current_app

from app.bizadmin.notifications import user_new_password, user_welcome

logger = logging.getLogger(__name__)

BUSINESS_NAME = "bizadmin"


def send_email(to: str, subject: str, body: str, html: str | None = None) -> tuple[bool, str]:
    """
    Send one email through the configured SMTP server.

    Returns:
        Tuple of (success: bool, error_message: str)
    """
    cfg = current_app.config
    smtp_server = (cfg.get("SMTP_SERVER") or "").strip()
    email_from = (cfg.get("EMAIL_FROM") or "").strip()
    if not smtp_server:
        return False, "SMTP server not configured (SMTP_SERVER environment variable missing)"
    if not email_from:
        return False, "Email from address not configured (EMAIL_FROM environment variable missing)"

    if html:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(html, "html"))
    else:
        msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = email_from
    msg["To"] = to

    try:
        with smtplib.SMTP(smtp_server, int(cfg.get("SMTP_PORT") or 587), timeout=30) as server:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            username = (cfg.get("SMTP_USERNAME") or "").strip()
            if username:
                server.login(username, cfg.get("SMTP_PASSWORD") or "")
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email to %s failed: %s", to, e)
        return False, str(e)
    return True, ""


def _first_word(name: str) -> str:
    parts = (name or "").split()
    return parts[0] if parts else ""


def on_user_welcome(sender, *, name: str, email: str, password: str, web_admin: str, **_kw) -> bool:
    subject = f"Welcome to {BUSINESS_NAME}: {_first_word(name)}"
    body = (
        f"Hello {name},\n\n"
        f"An account was created for you.\n"
        f"Email: {email}\n"
        f"Temporary password: {password}\n\n"
        f"Sign in at {web_admin} and change your password.\n"
    )
    ok, _err = send_email(email, subject, body)
    return ok


def on_user_new_password(sender, *, name: str, email: str, password: str, web_admin: str, **_kw) -> bool:
    subject = f"Your new {BUSINESS_NAME} password"
    body = (
        f"Hello {name},\n\n"
        f"Your password was reset.\n"
        f"Temporary password: {password}\n\n"
        f"Sign in at {web_admin} and change your password.\n"
    )
    ok, _err = send_email(email, subject, body)
    return ok


def init_mailer(app: Flask) -> None:
    if not app.config.get("SMTP_SERVER"):
        app.logger.warning("SMTP_SERVER not set; email receivers not connected (notifications will fail).")
        return
    user_welcome.connect(on_user_welcome)
    user_new_password.connect(on_user_new_password)
