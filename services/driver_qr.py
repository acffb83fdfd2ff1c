# services/driver_qr.py
from __future__ import annotations

from flask import current_app

from db import db
from errors import NotFoundError
from models.user import HAS_QR_CODE, Role, User
from utils.dates import iso_z
from utils.qr import build_verification_url, is_verification_qr, qr_data_url

__all__ = [
    "verification_url_for",
    "apply_driver_qr",
    "generate_qr_for_driver",
    "generate_qr_for_all_drivers",
    "public_driver_info",
]


def _get_driver(driver_id) -> User:
    try:
        user = db.session.get(User, int(driver_id))
    except (TypeError, ValueError):
        user = None
    if user is None or user.role_enum is not Role.DRIVER:
        raise NotFoundError("Driver not found")
    return user


def verification_url_for(user: User) -> str:
    return build_verification_url(current_app.config["APP_BASE_URL"], user.id, user.name, user.email)


def apply_driver_qr(user: User) -> bool:
    """
    Keep the QR column consistent with the role: drivers always carry one,
    everyone else carries none. Needs user.id, so call after a flush.
    Returns True when the row changed. Does not commit.
    """
    if HAS_QR_CODE[user.role_enum]:
        if user.qr_code:
            return False
        user.qr_code = qr_data_url(verification_url_for(user))
        return True
    if user.qr_code:
        user.qr_code = None
        return True
    return False


def generate_qr_for_driver(driver_id) -> str:
    """Generate (or regenerate) the driver's verification QR and store it as a data URL."""
    user = _get_driver(driver_id)
    url = verification_url_for(user)
    user.qr_code = qr_data_url(url)
    db.session.commit()
    current_app.logger.info("[qr] generated for driver %s -> %s", user.id, url)
    return user.qr_code


def generate_qr_for_all_drivers(*, force: bool = False) -> dict:
    drivers = User.query.filter(User.role == Role.DRIVER.value).order_by(User.id).all()
    updated = skipped = failed = 0

    for driver in drivers:
        if not force and is_verification_qr(driver.qr_code):
            skipped += 1
            continue
        try:
            driver.qr_code = qr_data_url(verification_url_for(driver))
            db.session.commit()
            updated += 1
        except Exception:
            db.session.rollback()
            failed += 1
            current_app.logger.exception("[qr] failed for driver %s", driver.id)

    current_app.logger.info(
        "[qr] sync done: updated=%d skipped=%d failed=%d total=%d",
        updated, skipped, failed, len(drivers),
    )
    return {"updated": updated, "skipped": skipped, "failed": failed, "total": len(drivers)}


def public_driver_info(driver_id) -> dict:
    """Non-sensitive fields for the unauthenticated /public/drivers/<id> lookup."""
    driver = _get_driver(driver_id)
    return {
        "id": driver.id,
        "name": driver.name,
        "email": driver.email,
        "phone": driver.phone,
        "profilePhoto": driver.photo_dict(),
        "isActive": bool(driver.is_active),
        "role": driver.role,
        "createdAt": iso_z(driver.created_at),
    }
