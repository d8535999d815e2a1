from __future__ import annotations

import uuid
from typing import Any

from flask import current_app
from flask_mail import Message

from extensions import mail


def smtp_configured() -> bool:
    """True when Flask-Mail can actually deliver, or delivery is suppressed.

    A ``MAIL_SERVER`` alone is not enough: sending through an unauthenticated
    connection fails with "please run connect() first".
    """
    cfg = current_app.config
    if cfg.get("MAIL_SUPPRESS_SEND") or cfg.get("TESTING"):
        return True
    server = (cfg.get("MAIL_SERVER") or "").strip()
    username = (cfg.get("MAIL_USERNAME") or "").strip()
    password = (cfg.get("MAIL_PASSWORD") or "").strip()
    return bool(server and username and password)


def send_email(to: str, subject: str, html_body: str, text_body: str | None = None) -> dict[str, Any]:
    """Deliver one message.

    Returns ``{"success": True, "messageId": ...}`` or
    ``{"success": False, "error": ...}``; never raises.
    """
    if not to:
        return {"success": False, "error": "No recipient address"}
    if not smtp_configured():
        return {"success": False, "error": "Email sending is not configured (set MAIL_* settings)"}

    msg = Message(
        subject=subject,
        sender=current_app.config.get("MAIL_DEFAULT_SENDER"),
        recipients=[to],
        html=html_body,
        body=text_body,
    )
    try:
        mail.send(msg)
    except Exception as exc:  # smtplib raises a wide family of errors
        current_app.logger.warning("Failed to send email to %s: %s", to, exc)
        return {"success": False, "error": str(exc)}
    return {"success": True, "messageId": getattr(msg, "msgId", None) or f"<{uuid.uuid4().hex}@local>"}
