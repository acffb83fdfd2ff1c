# services/notify.py
"""
Best-effort email notifications.

Every send is detached from the operation that triggered it: it runs on a
daemon thread (or inline when NOTIFY_INLINE is set) inside its own app context,
and any failure is logged here and never reaches the caller.
"""
from __future__ import annotations

from threading import Thread
from typing import Any, Callable, Dict

from flask import current_app

import mailer
from models.backup_settings import BackupSettings
from models.user import Role, User
from utils.dates import now_utc


def _dispatch(label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    app = current_app._get_current_object()

    def _run():
        with app.app_context():
            try:
                fn(*args, **kwargs)
            except Exception:
                app.logger.exception("[notify] %s failed", label)

    if app.config.get("NOTIFY_INLINE"):
        _run()
        return
    Thread(target=_run, name=f"notify:{label}", daemon=True).start()


def _otp_bodies(otp: str, name: str | None, ttl_minutes: int) -> tuple[str, str]:
    greeting = f"Hi {name}," if name else "Hi,"
    html = f"""
      <div style="font-family:system-ui,Segoe UI,Roboto,Arial">
        <h2>Password Reset</h2>
        <p>{greeting}<br>Use the code below to reset your password.</p>
        <div style="font-size:32px;font-weight:700;letter-spacing:8px">{otp}</div>
        <p>This code expires in {ttl_minutes} minutes.</p>
        <p style="color:#999">If you didn't request this, please ignore this email.</p>
      </div>
    """
    text = f"Your password reset OTP is: {otp}. This code expires in {ttl_minutes} minutes."
    return html, text


def send_otp_email(email: str, name: str | None, otp: str) -> None:
    ttl = int(current_app.config["OTP_TTL_MINUTES"])
    app_name = current_app.config["APP_NAME"]
    html, text = _otp_bodies(otp, name, ttl)
    _dispatch(
        f"otp:{email}",
        mailer.send_email,
        email,
        f"Password Reset OTP - {app_name}",
        html,
        text,
    )


def _backup_bodies(name: str, collections: Dict[str, int], filename: str) -> tuple[str, str]:
    users = int(collections.get("users") or 0)
    routes = int(collections.get("rideLocations") or 0)
    bills = int(collections.get("rideBills") or 0)
    html = f"""
      <div style="font-family:system-ui,Segoe UI,Roboto,Arial">
        <h2>Backup Completed</h2>
        <p>Hi {name},<br>Your system backup has been completed successfully.</p>
        <table>
          <tr><td>Users:</td><td>{users}</td></tr>
          <tr><td>Routes:</td><td>{routes}</td></tr>
          <tr><td>Bills:</td><td>{bills}</td></tr>
          <tr><td><b>Total Records:</b></td><td><b>{users + routes + bills}</b></td></tr>
        </table>
        <p>Backup file: <code>{filename}</code></p>
      </div>
    """
    text = (
        f"Backup completed successfully. {users} users, {routes} routes, "
        f"{bills} bills backed up. File: {filename}"
    )
    return html, text


def notify_backup_completed(collections: Dict[str, int], filename: str) -> int:
    """
    Email every active admin that a backup finished.
    Returns the number of emails queued; 0 when disabled or on any lookup error.
    """
    try:
        if not BackupSettings.load().email_notifications:
            current_app.logger.info("[notify] backup email notifications are disabled")
            return 0

        admins = (
            User.query
            .filter(User.role == Role.ADMIN.value, User.is_active.is_(True))
            .order_by(User.id)
            .all()
        )
        recipients = [(u.email, u.name) for u in admins if u.settings.get("backup", True)]
        current_app.logger.info("[notify] backup %s: notifying %d admin(s)", filename, len(recipients))

        app_name = current_app.config["APP_NAME"]
        stamp = now_utc().strftime("%Y-%m-%d %H:%M UTC")
        for email, name in recipients:
            html, text = _backup_bodies(name, collections, filename)
            _dispatch(
                f"backup:{email}",
                mailer.send_email,
                email,
                f"Backup Completed ({stamp}) - {app_name}",
                html,
                text,
            )
        return len(recipients)
    except Exception:
        current_app.logger.exception("[notify] backup notification fan-out failed")
        return 0
