# services/password_reset.py
"""
Login and the OTP password-reset flow.

Reset state lives on the user row:
  no reset pending -> forgot_password -> otp + token set
                   -> verify_otp      -> otp cleared, token returned
                   -> reset_password  -> token cleared, password replaced
A new forgot_password overwrites whatever pair was issued before.
"""
from __future__ import annotations

import secrets
from datetime import timedelta

from flask import current_app

from auth_guard import issue_token
from db import db
from errors import AuthError, Forbidden, ValidationError
from models.user import User
from services.notify import send_otp_email
from services.users import find_by_email
from utils.dates import as_utc, now_utc, to_db

MIN_PASSWORD_LENGTH = 6


def _gen_otp_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def _gen_reset_token() -> str:
    return secrets.token_hex(32)


def _mask_email(addr: str) -> str:
    try:
        local, domain = addr.split("@", 1)
    except ValueError:
        return addr
    local_mask = local[0] + "***" if len(local) > 1 else "*"
    # keep domain TLD visible
    dot = domain.rfind(".")
    if dot > 0:
        dom_mask = domain[0] + "***" + domain[dot:]
    else:
        dom_mask = domain[0] + "***"
    return f"{local_mask}@{dom_mask}"


def authenticate(email: str, password: str) -> dict:
    if not email or not password:
        raise ValidationError("Missing email or password")

    user = find_by_email(email)
    if user is None:
        raise AuthError("Email not found")
    if not user.check_password(password):
        current_app.logger.info("[auth] wrong password for %s", _mask_email(user.email))
        raise AuthError("Wrong password")
    if not user.is_active:
        raise Forbidden("Account is inactive")

    current_app.logger.info("[auth] login uid=%s role=%s", user.id, user.role)
    return {"token": issue_token(user), "user": user.to_dict()}


def forgot_password(email: str) -> dict:
    user = find_by_email(email)
    if user is None:
        raise ValidationError("Email not found")

    cfg = current_app.config
    now = now_utc()
    otp = _gen_otp_code()
    token = _gen_reset_token()

    user.reset_password_otp = otp
    user.reset_password_otp_expires = to_db(now + timedelta(minutes=int(cfg["OTP_TTL_MINUTES"])))
    user.reset_password_token = token
    user.reset_password_expires = to_db(now + timedelta(minutes=int(cfg["RESET_TOKEN_TTL_MINUTES"])))
    db.session.commit()

    current_app.logger.info("[auth] reset requested for %s", _mask_email(user.email))
    send_otp_email(user.email, user.name, otp)

    out = {"message": "OTP sent to your email", "to": _mask_email(user.email)}
    if cfg.get("EXPOSE_RESET_SECRETS"):
        out.update(otp=otp, resetToken=token)
    return out


def verify_otp(email: str, otp: str) -> dict:
    otp = str(otp or "").strip()
    user = find_by_email(email) if otp else None

    if (
        user is None
        or not user.reset_password_otp
        or not secrets.compare_digest(user.reset_password_otp.encode(), otp.encode())
        or as_utc(user.reset_password_otp_expires) is None
        or as_utc(user.reset_password_otp_expires) <= now_utc()
    ):
        raise ValidationError("Invalid or expired OTP")

    token = user.reset_password_token
    user.reset_password_otp = None
    user.reset_password_otp_expires = None
    db.session.commit()

    return {"message": "OTP verified", "resetToken": token}


def reset_password(token: str, new_password: str) -> dict:
    token = str(token or "").strip()
    user = User.query.filter_by(reset_password_token=token).first() if token else None
    if (
        user is None
        or as_utc(user.reset_password_expires) is None
        or as_utc(user.reset_password_expires) <= now_utc()
    ):
        raise ValidationError("Invalid or expired reset token")

    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"newPassword must be at least {MIN_PASSWORD_LENGTH} characters")

    user.set_password(new_password)
    user.clear_reset_state()
    db.session.commit()

    current_app.logger.info("[auth] password reset for uid=%s", user.id)
    return {"message": "Password reset successfully"}
