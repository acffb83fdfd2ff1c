# tests/test_users.py
import base64
from datetime import timedelta

import pytest

from errors import ValidationError
from models.user import CAN_MANAGE_DATA, HAS_QR_CODE, REQUIRES_PASSWORD, Role
from services import users
from utils.dates import now_utc, to_db


def test_role_tables_cover_every_role():
    for table in (REQUIRES_PASSWORD, HAS_QR_CODE, CAN_MANAGE_DATA):
        assert set(table) == set(Role)


def test_unknown_role_is_rejected(app):
    with pytest.raises(ValueError, match="Unknown role"):
        Role.parse("superuser")
    with pytest.raises(ValidationError):
        users.create_user({"name": "X", "email": "x@campus.test", "role": "superuser"})


def test_update_cannot_write_credentials_directly(app, user_factory):
    user = user_factory("stud@campus.test", Role.STUDENT)

    users.update_user(user.id, {"resetPasswordToken": "c" * 64, "passwordHash": "plain"})

    assert user.reset_password_token is None
    assert user.password_hash is None


def test_update_hashes_new_password(app, user_factory):
    user = user_factory("staff@campus.test", Role.STAFF, password="oldpass1")

    users.update_user(user.id, {"password": "newpass1"})

    assert user.password_hash != "newpass1"
    assert user.check_password("newpass1")


def test_profile_photo_and_json_fields(app):
    raw = b"\x89PNG fake"
    user = users.create_user({
        "name": "Asha",
        "email": "asha@campus.test",
        "hostel": '{"name": "H1", "roomNo": "12"}',
        "profilePhoto": {"data": base64.b64encode(raw).decode(), "filename": "a.png", "mimetype": "image/png"},
    })

    assert user.hostel == {"name": "H1", "roomNo": "12"}
    assert user.profile_photo == raw
    assert user.photo_dict()["size"] == len(raw)

    with pytest.raises(ValidationError, match="Invalid JSON format for hostel"):
        users.update_user(user.id, {"hostel": "{broken"})


def test_expiry_refresh(app, user_factory):
    past = to_db(now_utc() - timedelta(days=1))
    future = to_db(now_utc() + timedelta(days=30))
    lapsed = user_factory("old@campus.test", Role.STUDENT, expiry_date=past)
    renewed = user_factory("new@campus.test", Role.STUDENT, expiry_date=future, is_expired=True)
    user_factory("dan@campus.test", Role.DRIVER, expiry_date=past)

    assert users.refresh_expiry_status() == {"expired": 1, "renewed": 1}

    listed = {u.email: u.to_dict()["isExpired"] for u in users.list_users()}
    assert listed == {"old@campus.test": True, "new@campus.test": False, "dan@campus.test": False}
    assert lapsed.id and renewed.id


def test_user_stats(app, user_factory):
    user_factory("a@campus.test", Role.STUDENT)
    inactive = user_factory("b@campus.test", Role.STUDENT)
    user_factory("d@campus.test", Role.DRIVER)
    users.set_status(inactive.id, False)

    stats = {row["role"]: row for row in users.user_stats()}

    assert stats["student"] == {"role": "student", "count": 2, "activeCount": 1}
    assert stats["driver"]["count"] == 1
