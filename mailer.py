# backend/mailer.py
from __future__ import annotations
import smtplib, ssl
from email.message import EmailMessage

from flask import current_app


def send_email(to: str, subject: str, html: str, text: str | None = None) -> None:
    """Send one message through the configured SMTP relay. Raises on failure."""
    cfg = current_app.config
    host, port = cfg["SMTP_HOST"], int(cfg["SMTP_PORT"])
    user, password = cfg.get("SMTP_USER"), cfg.get("SMTP_PASS")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{cfg['FROM_NAME']} <{cfg['FROM_EMAIL']}>"
    msg["To"] = to
    msg.set_content(text or "")
    msg.add_alternative(html, subtype="html")

    ctx = ssl.create_default_context()
    if cfg.get("SMTP_SSL"):
        with smtplib.SMTP_SSL(host, port, context=ctx, timeout=10) as s:
            if user and password:
                s.login(user, password)
            s.send_message(msg)
    else:
        with smtplib.SMTP(host, port, timeout=10) as s:
            s.starttls(context=ctx)
            if user and password:
                s.login(user, password)
            s.send_message(msg)

    current_app.logger.info("[mail] sent %r to %s", subject, to)
