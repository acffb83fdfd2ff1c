# models/user.py
from __future__ import annotations

import base64
import enum
from datetime import datetime, timezone

from sqlalchemy.sql import func
from werkzeug.security import generate_password_hash, check_password_hash

from db import db
from utils.dates import as_utc, iso_z


class Role(str, enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"
    STUDENT = "student"
    DRIVER = "driver"

    @classmethod
    def parse(cls, raw) -> "Role":
        if isinstance(raw, cls):
            return raw
        value = str(raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown role: {raw!r}") from None


def _exhaustive(table: dict) -> dict:
    missing = set(Role) - set(table)
    if missing:
        raise RuntimeError(f"role table missing {sorted(r.value for r in missing)}")
    return table


# Per-role capabilities. Adding a Role without updating these fails at import.
REQUIRES_PASSWORD = _exhaustive({
    Role.ADMIN: True,
    Role.STAFF: True,
    Role.STUDENT: False,
    Role.DRIVER: False,
})
HAS_QR_CODE = _exhaustive({
    Role.ADMIN: False,
    Role.STAFF: False,
    Role.STUDENT: False,
    Role.DRIVER: True,
})
HAS_EXPIRY = _exhaustive({
    Role.ADMIN: False,
    Role.STAFF: False,
    Role.STUDENT: True,
    Role.DRIVER: False,
})
CAN_MANAGE_DATA = _exhaustive({
    Role.ADMIN: True,
    Role.STAFF: True,
    Role.STUDENT: False,
    Role.DRIVER: False,
})

DEFAULT_NOTIFICATION_SETTINGS = {"login": True, "backup": True, "registration": True, "device": False}

# Never leave the server through export or any public payload
CREDENTIAL_FIELDS = (
    "password",
    "resetPasswordToken",
    "resetPasswordExpires",
    "resetPasswordOtp",
    "resetPasswordOtpExpires",
)


class User(db.Model):
    __tablename__ = "users"

    id               = db.Column(db.Integer, primary_key=True, autoincrement=True)
    name             = db.Column(db.String(120), nullable=False)
    email            = db.Column(db.String(254), nullable=False, unique=True, index=True)
    password_hash    = db.Column(db.String(255), nullable=True)
    role             = db.Column(db.String(32), nullable=False, default=Role.STUDENT.value, index=True)
    is_active        = db.Column(db.Boolean, nullable=False, default=True)
    age              = db.Column(db.Integer, nullable=True)
    phone            = db.Column(db.JSON, nullable=True)          # {countryCode, number}

    profile_photo          = db.Column(db.LargeBinary, nullable=True)
    profile_photo_filename = db.Column(db.String(255), nullable=True)
    profile_photo_mimetype = db.Column(db.String(100), nullable=True)
    profile_photo_size     = db.Column(db.Integer, nullable=True)

    # ── Student ─────────────────────────────────────────────────────────────
    entry_number          = db.Column(db.String(32), nullable=True, index=True)
    programme             = db.Column(db.String(120), nullable=True)
    department            = db.Column(db.String(120), nullable=True)
    hostel                = db.Column(db.JSON, nullable=True)     # {name, roomNo}
    emergency_details     = db.Column(db.JSON, nullable=True)     # {name, address, phone, additionalPhone}
    disability_type       = db.Column(db.String(120), nullable=True)
    udid_number           = db.Column(db.String(64), nullable=True)
    disability_percentage = db.Column(db.Integer, nullable=True)
    expiry_date           = db.Column(db.DateTime, nullable=True)
    is_expired            = db.Column(db.Boolean, nullable=False, default=False)

    # ── Driver ──────────────────────────────────────────────────────────────
    qr_code = db.Column(db.Text, nullable=True)                   # data:image/png;base64,...

    # ── Password reset ──────────────────────────────────────────────────────
    reset_password_otp         = db.Column(db.String(6), nullable=True)
    reset_password_otp_expires = db.Column(db.DateTime, nullable=True)
    reset_password_token       = db.Column(db.String(64), nullable=True, index=True)
    reset_password_expires     = db.Column(db.DateTime, nullable=True)

    notification_settings = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, server_default=func.now(), nullable=False)
    updated_at = db.Column(db.DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # ── Helpers ─────────────────────────────────────────────────────────────
    @property
    def role_enum(self) -> Role:
        return Role.parse(self.role)

    def set_password(self, raw: str) -> None:
        self.password_hash = generate_password_hash(raw)

    def check_password(self, raw: str) -> bool:
        if not self.password_hash:
            return False
        try:
            return check_password_hash(self.password_hash, raw or "")
        except Exception:
            return False

    def clear_reset_state(self) -> None:
        self.reset_password_otp = None
        self.reset_password_otp_expires = None
        self.reset_password_token = None
        self.reset_password_expires = None

    @property
    def expired_now(self) -> bool:
        """Students past their expiry date; always False for other roles."""
        if not HAS_EXPIRY[self.role_enum] or self.expiry_date is None:
            return False
        return as_utc(self.expiry_date) < datetime.now(timezone.utc)

    @property
    def settings(self) -> dict:
        return {**DEFAULT_NOTIFICATION_SETTINGS, **(self.notification_settings or {})}

    def photo_dict(self) -> dict | None:
        if self.profile_photo is None:
            return None
        return {
            "filename": self.profile_photo_filename,
            "mimetype": self.profile_photo_mimetype,
            "size": self.profile_photo_size,
            "data": base64.b64encode(self.profile_photo).decode("ascii"),
        }

    def to_dict(self, *, include_secrets: bool = False) -> dict:
        out = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "isActive": bool(self.is_active),
            "age": self.age,
            "phone": self.phone,
            "profilePhoto": self.photo_dict(),
            "entryNumber": self.entry_number,
            "programme": self.programme,
            "department": self.department,
            "hostel": self.hostel,
            "emergencyDetails": self.emergency_details,
            "disabilityType": self.disability_type,
            "udidNumber": self.udid_number,
            "disabilityPercentage": self.disability_percentage,
            "expiryDate": iso_z(self.expiry_date),
            "isExpired": self.expired_now,
            "qrCode": self.qr_code,
            "notificationSettings": self.notification_settings,
            "createdAt": iso_z(self.created_at),
            "updatedAt": iso_z(self.updated_at),
        }
        if include_secrets:
            out.update({
                "password": self.password_hash,
                "resetPasswordToken": self.reset_password_token,
                "resetPasswordExpires": iso_z(self.reset_password_expires),
                "resetPasswordOtp": self.reset_password_otp,
                "resetPasswordOtpExpires": iso_z(self.reset_password_otp_expires),
            })
        return out

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email} ({self.role})>"
