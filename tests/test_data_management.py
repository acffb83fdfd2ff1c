# tests/test_data_management.py
import json
import os
from datetime import timedelta

import pytest
from dateutil.parser import isoparse

import mailer
from db import db
from errors import NotFoundError, OperationFailed, ValidationError
from models.backup_settings import BackupSettings
from models.ride_bill import RideBill
from models.ride_route import RideRoute
from models.user import Role, User
from services import data_management as dm
from utils.dates import now_utc


def _seed(user_factory):
    user_factory("stud@campus.test", Role.STUDENT, entry_number="2021CS001")
    db.session.add(RideRoute(from_location="Main Gate", to_location="Library", fare=20))
    db.session.add(RideBill(
        ride_id="R-1", student_id="1", student_name="Stud", driver_id="2", driver_name="Dan",
        location="Main Gate → Library", fare=20, date=now_utc().replace(tzinfo=None), time="09:30",
    ))
    db.session.commit()


def _write_backup(app, name, body="{}"):
    os.makedirs(app.config["BACKUP_DIR"], exist_ok=True)
    path = os.path.join(app.config["BACKUP_DIR"], name)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(body)
    return path


# ─── create_backup ────────────────────────────────────────────────────────────
def test_create_backup_writes_counts_and_notifies_admins(app, admin, user_factory, sent_mail):
    _seed(user_factory)

    result = dm.create_backup()

    assert result["success"] is True
    assert dm.BACKUP_NAME_RE.match(result["filename"])
    assert result["stats"] == {"users": 2, "rideLocations": 1, "rideBills": 1}

    with open(result["filepath"], encoding="utf-8") as fh:
        content = json.load(fh)
    assert content["collections"] == result["stats"]
    assert content["version"] == "1.0"
    assert content["exportDate"]
    assert len(content["data"]["users"]) == 2

    assert [to for to, _ in sent_mail] == [admin.email]


def test_backup_skips_admins_who_opted_out(app, admin, sent_mail):
    admin.notification_settings = {"backup": False}
    db.session.commit()

    dm.create_backup()

    assert sent_mail == []


def test_backup_skips_mail_when_notifications_disabled(app, admin, sent_mail):
    dm.update_backup_settings({"emailNotifications": False})

    dm.create_backup()

    assert sent_mail == []


def test_failed_mail_does_not_fail_backup(app, admin, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("smtp down")

    monkeypatch.setattr(mailer, "send_email", boom)

    result = dm.create_backup()

    assert result["success"] is True
    assert os.path.exists(result["filepath"])


def test_failed_write_leaves_no_file(app, monkeypatch, sent_mail):
    def broken_dump(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(dm.json, "dump", broken_dump)

    with pytest.raises(OperationFailed) as exc:
        dm.create_backup()

    assert str(exc.value).startswith("Backup creation failed: ")
    assert os.listdir(app.config["BACKUP_DIR"]) == []
    assert sent_mail == []


def test_two_backups_in_the_same_millisecond_get_distinct_names(app, monkeypatch, sent_mail):
    frozen = now_utc()
    monkeypatch.setattr(dm, "now_utc", lambda: frozen)

    first = dm.create_backup()
    second = dm.create_backup()

    assert first["filename"] != second["filename"]
    assert len(os.listdir(app.config["BACKUP_DIR"])) == 2


# ─── export ───────────────────────────────────────────────────────────────────
def test_export_never_contains_credentials(app, user_factory):
    user = user_factory("staff@campus.test", Role.STAFF, password="hunter22")
    user.reset_password_token = "a" * 64
    user.reset_password_otp = "123456"
    db.session.commit()

    result = dm.export_all_data()

    assert result["version"] == "1.0"
    assert result["stats"]["users"] == 1
    exported = result["data"]["users"][0]
    for key in ("password", "resetPasswordToken", "resetPasswordExpires",
                "resetPasswordOtp", "resetPasswordOtpExpires"):
        assert key not in exported
    assert exported["email"] == "staff@campus.test"


# ─── import ───────────────────────────────────────────────────────────────────
def test_import_rejects_files_without_data_or_export_date(app):
    with pytest.raises(ValidationError) as exc:
        dm.import_data(b'{"data": {"users": []}}')
    assert exc.value.description == "Invalid import file format"

    with pytest.raises(ValidationError):
        dm.import_data(b"not json at all")


def test_reimporting_an_export_skips_everything(app, user_factory):
    _seed(user_factory)
    payload = json.dumps(dm.export_all_data()).encode()

    result = dm.import_data(payload)

    assert result["results"] == {
        "users": {"imported": 0, "skipped": 1, "errors": 0},
        "rideLocations": {"imported": 0, "skipped": 1, "errors": 0},
        "rideBills": {"imported": 0, "skipped": 1, "errors": 0},
    }
    assert User.query.count() == 1
    assert RideRoute.query.count() == 1
    assert RideBill.query.count() == 1


def test_import_counts_bad_records_and_keeps_going(app):
    payload = {
        "exportDate": "2026-01-01T00:00:00.000Z",
        "data": {
            "rideLocations": [
                {"_id": "abc", "fromLocation": "Hostel", "toLocation": "Gate", "fare": 15},
                {"fromLocation": "Hostel", "toLocation": "Lab", "fare": -1},
            ],
            "rideBills": [
                {"rideId": "R-9", "studentId": "s", "studentName": "S", "driverId": "d",
                 "driverName": "D", "location": "Hostel → Gate", "fare": 20000,
                 "date": "2026-01-01", "time": "10:00"},
                {"rideId": "R-10", "studentId": "s", "studentName": "S", "driverId": "d",
                 "driverName": "D", "location": "Hostel → Gate", "fare": 15,
                 "date": "2026-01-01", "time": "10:05"},
            ],
        },
    }

    result = dm.import_data(json.dumps(payload).encode())

    assert result["results"]["rideLocations"] == {"imported": 1, "skipped": 0, "errors": 1}
    assert result["results"]["rideBills"] == {"imported": 1, "skipped": 0, "errors": 1}
    assert result["sourceFile"] == "2026-01-01T00:00:00.000Z"
    assert RideBill.query.one().ride_id == "R-10"


def test_imported_users_carry_no_credentials(app):
    payload = {
        "exportDate": "2026-01-01T00:00:00.000Z",
        "data": {"users": [{
            "_id": "64f0c0ffee", "id": 99, "name": "Imported", "email": "Imp@Campus.test",
            "role": "staff", "password": "$2b$10$abcdefghijklmnopqrstuv",
            "resetPasswordToken": "f" * 64, "resetPasswordOtp": "999999",
        }]},
    }

    result = dm.import_data(json.dumps(payload).encode())

    assert result["results"]["users"]["imported"] == 1
    user = User.query.filter_by(email="imp@campus.test").one()
    assert user.id != 99
    assert user.password_hash is None
    assert user.reset_password_token is None
    assert user.reset_password_otp is None
    assert user.check_password("anything") is False


def test_imported_drivers_get_a_qr_code(app):
    payload = {
        "exportDate": "2026-01-01T00:00:00.000Z",
        "data": {"users": [{"name": "Dan", "email": "dan@campus.test", "role": "driver"}]},
    }

    dm.import_data(json.dumps(payload).encode())

    driver = User.query.filter_by(email="dan@campus.test").one()
    assert driver.qr_code.startswith("data:image/png;base64,")


def test_backup_file_can_be_imported(app, user_factory, sent_mail):
    _seed(user_factory)
    backup = dm.create_backup()
    with open(backup["filepath"], "rb") as fh:
        raw = fh.read()

    result = dm.import_data(raw)

    assert result["results"]["users"]["skipped"] == 1


# ─── cache ────────────────────────────────────────────────────────────────────
def test_clear_cache_removes_plain_files_only(app):
    temp_dir, cache_dir = app.config["TEMP_DIR"], app.config["CACHE_DIR"]
    os.makedirs(os.path.join(cache_dir, "nested"))
    os.makedirs(temp_dir)
    for path in (os.path.join(temp_dir, "a.tmp"), os.path.join(cache_dir, "b.bin")):
        with open(path, "w") as fh:
            fh.write("x")

    result = dm.clear_cache()

    assert result["success"] is True
    assert result["details"] == ["Cleared 1 temporary files", "Cleared 1 cache files"]
    assert os.listdir(temp_dir) == []
    assert os.listdir(cache_dir) == ["nested"]


def test_clear_cache_without_directories(app):
    result = dm.clear_cache()
    assert result["details"] == ["No cache files found to clear"]


def test_data_stats(app, user_factory):
    _seed(user_factory)
    stats = dm.get_data_stats()
    assert (stats["users"], stats["rideLocations"], stats["rideBills"]) == (1, 1, 1)
    assert stats["totalRecords"] == 3


# ─── settings / schedule ──────────────────────────────────────────────────────
def test_settings_defaults(app):
    settings = dm.get_backup_settings()
    assert settings["enabled"] is True
    assert settings["interval"] == 24
    assert settings["maxBackups"] == 30
    assert settings["lastBackup"] is None
    assert settings["totalBackups"] == 0


def test_settings_validation(app):
    with pytest.raises(ValidationError) as exc:
        dm.update_backup_settings({"enabled": True, "interval": 200, "maxBackups": 30})
    assert exc.value.description == "Backup interval must be between 1 and 168 hours"

    with pytest.raises(ValidationError) as exc:
        dm.update_backup_settings({"enabled": True, "interval": 24, "maxBackups": 0})
    assert exc.value.description == "Max backups must be between 1 and 100"

    assert db.session.get(BackupSettings, 1) is None


def test_settings_update_persists_and_projects_next_backup(app):
    before = now_utc()
    result = dm.update_backup_settings({"enabled": True, "interval": 24, "maxBackups": 30})

    assert result["success"] is True
    next_backup = isoparse(result["settings"]["nextBackup"])
    assert abs(next_backup - (before + timedelta(hours=24))) < timedelta(minutes=1)

    dm.update_backup_settings({"interval": 6, "maxBackups": 5})
    stored = dm.get_backup_settings()
    assert (stored["interval"], stored["maxBackups"]) == (6, 5)


def test_disabled_settings_have_no_next_backup(app):
    result = dm.update_backup_settings({"enabled": False, "interval": 12, "maxBackups": 10})
    assert result["settings"]["nextBackup"] is None
    assert dm.get_backup_settings()["nextBackup"] is None


def test_schedule_backup_prunes_beyond_max(app, sent_mail):
    dm.update_backup_settings({"maxBackups": 2})
    old = [
        "backup-2020-01-01T00-00-00-000Z.json",
        "backup-2020-01-02T00-00-00-000Z.json",
        "backup-2020-01-03T00-00-00-000Z.json",
    ]
    for name in old:
        _write_backup(app, name)

    result = dm.schedule_backup()

    assert sorted(result["pruned"]) == old[:2]
    remaining = sorted(os.listdir(app.config["BACKUP_DIR"]))
    assert remaining == sorted([old[2], result["backup"]["filename"]])
    assert dm.get_backup_settings()["lastBackup"] is not None
    assert result["nextScheduled"] is not None


def test_backup_if_due(app, sent_mail):
    dm.update_backup_settings({"enabled": False})
    assert dm.backup_if_due() is None
    assert not os.path.isdir(app.config["BACKUP_DIR"])

    dm.update_backup_settings({"enabled": True})
    assert dm.backup_if_due() is not None
    # just ran, so not due again for another interval
    assert dm.backup_if_due() is None
    assert len(os.listdir(app.config["BACKUP_DIR"])) == 1


# ─── history / delete ─────────────────────────────────────────────────────────
def test_history_is_newest_first_and_survives_corrupt_files(app):
    _write_backup(app, "backup-2026-01-01T00-00-00-000Z.json",
                  json.dumps({"collections": {"users": 1, "rideLocations": 0, "rideBills": 0}}))
    _write_backup(app, "backup-2026-02-01T00-00-00-000Z.json", "{not json")
    _write_backup(app, "notes.json", "{}")

    history = dm.get_backup_history()

    assert history["count"] == 2
    assert [b["filename"] for b in history["backups"]] == [
        "backup-2026-02-01T00-00-00-000Z.json",
        "backup-2026-01-01T00-00-00-000Z.json",
    ]
    assert history["backups"][0]["collections"] is None
    assert history["backups"][1]["collections"]["users"] == 1
    assert history["backups"][0]["createdAt"] == "2026-02-01T00:00:00.000Z"
    assert history["totalSize"] == sum(b["size"] for b in history["backups"])


def test_history_keeps_the_ten_newest(app):
    for day in range(1, 13):
        _write_backup(app, f"backup-2026-03-{day:02d}T00-00-00-000Z.json")

    history = dm.get_backup_history()

    assert history["count"] == 10
    assert history["backups"][-1]["filename"] == "backup-2026-03-03T00-00-00-000Z.json"


@pytest.mark.parametrize("name", [
    "../../etc/passwd",
    "backup-../../x.json",
    "backup-2026-01-01T00-00-00-000Z.json/../x",
    "notes.json",
    "",
])
def test_delete_backup_rejects_unsafe_names(app, name):
    outside = _write_backup(app, "backup-2026-01-01T00-00-00-000Z.json")

    with pytest.raises(ValidationError) as exc:
        dm.delete_backup(name)

    assert exc.value.description == "Invalid backup file"
    assert os.path.exists(outside)


def test_delete_backup(app):
    path = _write_backup(app, "backup-2026-01-01T00-00-00-000Z.json", "{}")

    result = dm.delete_backup("backup-2026-01-01T00-00-00-000Z.json")

    assert result["size"] == 2
    assert not os.path.exists(path)
    with pytest.raises(NotFoundError) as exc:
        dm.delete_backup("backup-2026-01-01T00-00-00-000Z.json")
    assert exc.value.description == "Backup file not found"


def test_clear_all_backups_leaves_other_files(app):
    _write_backup(app, "backup-2026-01-01T00-00-00-000Z.json", "{}")
    _write_backup(app, "backup-2026-01-02T00-00-00-000Z.json", "{}")
    _write_backup(app, "keep-me.txt", "x")

    result = dm.clear_all_backups()

    assert result["deletedCount"] == 2
    assert result["totalSize"] == 4
    assert os.listdir(app.config["BACKUP_DIR"]) == ["keep-me.txt"]


def test_clear_all_backups_without_directory(app):
    assert dm.clear_all_backups()["deletedCount"] == 0


def test_badly_typed_user_does_not_stop_the_import(app):
    payload = {
        "exportDate": "2026-01-01T00:00:00.000Z",
        "data": {
            "users": [
                {"name": "A", "email": "a@campus.test", "age": [1]},
                {"name": "B", "email": "b@campus.test", "disabilityPercentage": {}},
                {"name": "C", "email": "c@campus.test", "age": "21"},
            ],
            "rideBills": [
                {"rideId": "R-1", "studentId": "s", "studentName": "S", "driverId": "d",
                 "driverName": "D", "location": "Hostel → Gate", "fare": 15,
                 "date": "2026-01-01", "time": "10:00"},
            ],
        },
    }

    result = dm.import_data(json.dumps(payload).encode())

    assert result["results"]["users"] == {"imported": 1, "skipped": 0, "errors": 2}
    assert result["results"]["rideBills"]["imported"] == 1
    assert User.query.filter_by(email="c@campus.test").one().age == 21
    assert RideBill.query.count() == 1


def test_import_wraps_unexpected_failures(app, monkeypatch):
    def broken(record):
        raise RuntimeError("db went away")

    monkeypatch.setitem(dm._IMPORTERS, "rideLocations", broken)
    payload = {"exportDate": "2026-01-01T00:00:00.000Z",
               "data": {"rideLocations": [{"fromLocation": "A", "toLocation": "B", "fare": 1}]}}

    with pytest.raises(OperationFailed) as exc:
        dm.import_data(json.dumps(payload).encode())
    assert str(exc.value) == "Failed to import data: db went away"


def test_import_skips_bill_whose_padded_ride_id_already_exists(app, user_factory):
    _seed(user_factory)
    payload = {
        "exportDate": "2026-01-01T00:00:00.000Z",
        "data": {"rideBills": [
            {"rideId": "  R-1 ", "studentId": "s", "studentName": "S", "driverId": "d",
             "driverName": "D", "location": "Hostel → Gate", "fare": 15,
             "date": "2026-01-01", "time": "10:00"},
        ]},
    }

    result = dm.import_data(json.dumps(payload).encode())

    assert result["results"]["rideBills"] == {"imported": 0, "skipped": 1, "errors": 0}


def test_trailing_newline_is_not_a_backup_name(app):
    name = "backup-2026-01-01T00-00-00-000Z.json"
    _write_backup(app, name)

    with pytest.raises(ValidationError):
        dm.delete_backup(name + "\n")
    assert dm.BACKUP_NAME_RE.fullmatch(name + "\n") is None


@pytest.mark.parametrize("raw, expected", [("false", False), ("0", False), ("true", True), (False, False)])
def test_settings_flags_parse_strings(app, raw, expected):
    result = dm.update_backup_settings({"enabled": raw, "emailNotifications": raw})

    assert result["settings"]["enabled"] is expected
    assert result["settings"]["emailNotifications"] is expected
