# services/users.py
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict

from flask import current_app
from sqlalchemy import case, func

from db import db
from errors import ConflictError, NotFoundError, ValidationError
from models.user import HAS_EXPIRY, REQUIRES_PASSWORD, Role, User
from realtime import publish_user_event
from services.driver_qr import apply_driver_qr
from utils.dates import now_utc, parse_datetime, to_db

# camelCase payload key -> column
_PLAIN_FIELDS = {
    "name": "name",
    "entryNumber": "entry_number",
    "programme": "programme",
    "department": "department",
    "disabilityType": "disability_type",
    "udidNumber": "udid_number",
    "qrCode": "qr_code",
}
_JSON_FIELDS = {
    "phone": "phone",
    "hostel": "hostel",
    "emergencyDetails": "emergency_details",
    "notificationSettings": "notification_settings",
}
_INT_FIELDS = {"age": "age", "disabilityPercentage": "disability_percentage"}

# Only the password-reset flow and set_password() may touch these
_CREDENTIAL_KEYS = {
    "password", "passwordHash",
    "resetPasswordToken", "resetPasswordExpires",
    "resetPasswordOtp", "resetPasswordOtpExpires",
}


def as_bool(x, default=False) -> bool:
    if x is None:
        return default
    if isinstance(x, bool):
        return x
    s = str(x).strip().lower()
    return s in {"1", "true", "yes", "on"}


def normalize_email(raw) -> str:
    return str(raw or "").strip().lower()


def _decode_photo(raw) -> dict | None:
    if raw is None:
        return None
    if not isinstance(raw, dict) or raw.get("data") is None:
        raise ValueError("profilePhoto must be an object with a data field")
    data = raw["data"]
    if isinstance(data, str):
        try:
            data = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("profilePhoto.data is not valid base64") from None
    elif isinstance(data, dict) and data.get("type") == "Buffer":
        # Node Buffer serialised by JSON.stringify
        data = bytes(data.get("data") or [])
    elif not isinstance(data, (bytes, bytearray)):
        raise ValueError("profilePhoto.data has an unsupported type")
    return {
        "data": bytes(data),
        "filename": raw.get("filename"),
        "mimetype": raw.get("mimetype"),
        "size": raw.get("size") or len(data),
    }


def apply_fields(user: User, data: Dict[str, Any]) -> None:
    """
    Copy profile fields from a camelCase payload onto the row.
    Credential fields are ignored. Raises ValueError on malformed values.
    """
    if "email" in data:
        email = normalize_email(data["email"])
        if not email or "@" not in email:
            raise ValueError("A valid email is required")
        user.email = email
    if "role" in data:
        user.role = Role.parse(data["role"]).value
    if "isActive" in data:
        user.is_active = as_bool(data["isActive"], default=True)

    for key, col in _PLAIN_FIELDS.items():
        if key in data:
            value = data[key]
            setattr(user, col, None if value is None else str(value))

    for key, col in _JSON_FIELDS.items():
        if key in data:
            value = data[key]
            if isinstance(value, str):
                try:
                    value = json.loads(value) if value.strip() else None
                except json.JSONDecodeError:
                    raise ValueError(f"Invalid JSON format for {key}") from None
            if value is not None and not isinstance(value, dict):
                raise ValueError(f"{key} must be an object")
            setattr(user, col, value)

    for key, col in _INT_FIELDS.items():
        if key in data:
            value = data[key]
            if value in (None, ""):
                setattr(user, col, None)
                continue
            try:
                setattr(user, col, int(value))
            except (TypeError, ValueError):
                raise ValueError(f"{key} must be a whole number") from None

    if "expiryDate" in data:
        user.expiry_date = parse_datetime(data["expiryDate"])

    if "profilePhoto" in data:
        photo = _decode_photo(data["profilePhoto"])
        user.profile_photo = photo["data"] if photo else None
        user.profile_photo_filename = photo["filename"] if photo else None
        user.profile_photo_mimetype = photo["mimetype"] if photo else None
        user.profile_photo_size = photo["size"] if photo else None

    if "createdAt" in data and user.id is None:
        created = parse_datetime(data["createdAt"])
        if created is not None:
            user.created_at = created

    user.is_expired = user.expired_now


def _get(user_id) -> User:
    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        user = None
    if user is None:
        raise NotFoundError("User not found")
    return user


def _email_taken(email: str, *, exclude_id: int | None = None) -> bool:
    q = User.query.filter(func.lower(User.email) == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    return q.first() is not None


def find_by_email(email) -> User | None:
    return User.query.filter(func.lower(User.email) == normalize_email(email)).first()


def create_user(data: Dict[str, Any]) -> User:
    if not str(data.get("name") or "").strip():
        raise ValidationError("name is required")
    email = normalize_email(data.get("email"))
    if not email:
        raise ValidationError("email is required")
    try:
        role = Role.parse(data.get("role") or Role.STUDENT.value)
    except ValueError as e:
        raise ValidationError(str(e))

    password = data.get("password") or ""
    if REQUIRES_PASSWORD[role] and not password:
        raise ValidationError(f"password is required for {role.value} accounts")
    if _email_taken(email):
        raise ConflictError("Email already exists")

    user = User(role=role.value, is_active=True)
    clean = {k: v for k, v in data.items() if k not in _CREDENTIAL_KEYS and k != "qrCode"}
    clean["role"] = role.value
    try:
        apply_fields(user, clean)
    except ValueError as e:
        raise ValidationError(str(e))
    if password:
        user.set_password(password)

    db.session.add(user)
    db.session.flush()
    apply_driver_qr(user)
    db.session.commit()

    current_app.logger.info("[users] created uid=%s role=%s", user.id, user.role)
    publish_user_event("created", user.to_dict())
    return user


def list_users() -> list[User]:
    refresh_expiry_status()
    return User.query.order_by(User.created_at.desc(), User.id.desc()).all()


def get_user(user_id) -> User:
    return _get(user_id)


def update_user(user_id, data: Dict[str, Any]) -> User:
    user = _get(user_id)
    if "email" in data and _email_taken(normalize_email(data["email"]), exclude_id=user.id):
        raise ConflictError("Email already exists")

    clean = {k: v for k, v in data.items() if k not in _CREDENTIAL_KEYS}
    try:
        apply_fields(user, clean)
    except ValueError as e:
        db.session.rollback()
        raise ValidationError(str(e))
    if data.get("password"):
        user.set_password(data["password"])
    apply_driver_qr(user)
    db.session.commit()

    publish_user_event("updated", user.to_dict())
    return user


def delete_user(user_id) -> dict:
    user = _get(user_id)
    snapshot = user.to_dict()
    db.session.delete(user)
    db.session.commit()

    current_app.logger.info("[users] deleted uid=%s", snapshot["id"])
    publish_user_event("deleted", snapshot)
    return snapshot


def set_status(user_id, is_active) -> User:
    return update_user(user_id, {"isActive": as_bool(is_active)})


def set_role(user_id, role) -> User:
    try:
        Role.parse(role)
    except ValueError as e:
        raise ValidationError(str(e))
    return update_user(user_id, {"role": role})


def user_stats() -> list[dict]:
    rows = (
        db.session.query(
            User.role,
            func.count(User.id),
            func.sum(case((User.is_active.is_(True), 1), else_=0)),
        )
        .group_by(User.role)
        .order_by(User.role)
        .all()
    )
    return [
        {"role": role, "count": int(count or 0), "activeCount": int(active or 0)}
        for role, count, active in rows
    ]


def get_notification_settings(user: User) -> dict:
    return user.settings


def update_notification_settings(user: User, changes: Dict[str, Any]) -> dict:
    allowed = {k: as_bool(v) for k, v in (changes or {}).items() if k in user.settings}
    user.notification_settings = {**user.settings, **allowed}
    db.session.commit()
    return user.settings


def refresh_expiry_status() -> dict:
    """Persist is_expired for students from expiry_date vs. now. Returns counts changed."""
    now = to_db(now_utc())
    students = [r.value for r in Role if HAS_EXPIRY[r]]

    expired = (
        User.query
        .filter(User.role.in_(students), User.expiry_date < now, User.is_expired.is_(False))
        .update({User.is_expired: True}, synchronize_session=False)
    )
    renewed = (
        User.query
        .filter(User.role.in_(students), User.expiry_date >= now, User.is_expired.is_(True))
        .update({User.is_expired: False}, synchronize_session=False)
    )
    db.session.commit()
    if expired or renewed:
        current_app.logger.info("[users] expiry refresh: %d expired, %d renewed", expired, renewed)
    return {"expired": int(expired or 0), "renewed": int(renewed or 0)}
