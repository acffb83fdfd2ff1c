# services/data_management.py
"""
Backups, export / import and cache housekeeping for the admin console.

Backup files live in BACKUP_DIR as backup-<UTC timestamp>.json; only names
matching BACKUP_NAME_RE are ever listed, pruned or deleted.
"""
from __future__ import annotations

import json
import os
import re
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from db import db
from errors import APIError, NotFoundError, OperationFailed, ValidationError
from models.backup_settings import BackupSettings
from models.ride_bill import RideBill
from models.ride_route import RideRoute
from models.user import CREDENTIAL_FIELDS, Role, User
from realtime import publish_user_event
from services.driver_qr import apply_driver_qr
from services.notify import notify_backup_completed
from services.ride_bills import build_bill, find_bill
from services.ride_routes import find_route, validate_route
from services.users import as_bool, apply_fields, find_by_email
from utils.dates import as_utc, iso_z, now_utc, to_db

EXPORT_VERSION = "1.0"
BACKUP_NAME_RE = re.compile(r"backup-\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z\.json")
COLLECTIONS = ("users", "rideLocations", "rideBills")

MIN_INTERVAL_HOURS, MAX_INTERVAL_HOURS = 1, 168
MIN_MAX_BACKUPS, MAX_MAX_BACKUPS = 1, 100


# ─── helpers ──────────────────────────────────────────────────────────────────
def _backup_dir() -> str:
    return current_app.config["BACKUP_DIR"]


def backup_filename(when: datetime) -> str:
    """2026-10-17T08:30:00.123Z -> backup-2026-10-17T08-30-00-123Z.json"""
    return "backup-" + iso_z(when).replace(":", "-").replace(".", "-") + ".json"


def _filename_time(filename: str) -> datetime | None:
    m = re.match(r"^backup-(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})-(\d{3})Z\.json$", filename)
    if not m:
        return None
    day, hh, mm, ss, ms = m.groups()
    try:
        return datetime.strptime(f"{day}T{hh}:{mm}:{ss}.{ms}", "%Y-%m-%dT%H:%M:%S.%f").replace(
            tzinfo=timezone.utc
        )
    except ValueError:
        return None


def _backup_files() -> list[tuple[str, str, datetime]]:
    """(filename, path, created) for well-formed backups, newest first."""
    directory = _backup_dir()
    if not os.path.isdir(directory):
        return []
    out = []
    for name in os.listdir(directory):
        if not BACKUP_NAME_RE.fullmatch(name):
            continue
        path = os.path.join(directory, name)
        if not os.path.isfile(path):
            continue
        created = _filename_time(name)
        if created is None:
            created = datetime.fromtimestamp(os.path.getmtime(path), tz=timezone.utc)
        out.append((name, path, created))
    out.sort(key=lambda row: row[2], reverse=True)
    return out


def _snapshot(*, include_secrets: bool) -> Dict[str, list]:
    users = [u.to_dict(include_secrets=include_secrets) for u in User.query.order_by(User.id).all()]
    if not include_secrets:
        for u in users:
            for key in CREDENTIAL_FIELDS:
                u.pop(key, None)
    return {
        "users": users,
        "rideLocations": [r.to_dict() for r in RideRoute.query.order_by(RideRoute.id).all()],
        "rideBills": [b.to_dict() for b in RideBill.query.order_by(RideBill.id).all()],
    }


def _counts(data: Dict[str, list]) -> Dict[str, int]:
    return {name: len(data[name]) for name in COLLECTIONS}


def _write_atomic(path: str, payload: dict) -> int:
    """Write JSON next to its final name, then rename into place. Returns bytes written."""
    directory = os.path.dirname(path)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", suffix=".part", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.remove(tmp)
        except FileNotFoundError:
            pass
        raise
    return os.path.getsize(path)


# ─── backup / export ──────────────────────────────────────────────────────────
def create_backup() -> dict:
    try:
        directory = _backup_dir()
        os.makedirs(directory, exist_ok=True)

        data = _snapshot(include_secrets=True)
        collections = _counts(data)

        now = now_utc()
        filename = backup_filename(now)
        while os.path.exists(os.path.join(directory, filename)):
            now += timedelta(milliseconds=1)
            filename = backup_filename(now)
        filepath = os.path.join(directory, filename)

        stamp = iso_z(now)
        size = _write_atomic(filepath, {
            "timestamp": stamp,
            "exportDate": stamp,
            "version": EXPORT_VERSION,
            "collections": collections,
            "data": data,
        })
    except Exception as e:
        current_app.logger.exception("[backup] failed")
        raise OperationFailed.wrap("Backup creation failed", e)

    current_app.logger.info("[backup] wrote %s (%d bytes) %s", filename, size, collections)
    notify_backup_completed(collections, filename)

    return {
        "success": True,
        "message": "Backup created successfully",
        "filename": filename,
        "filepath": filepath,
        "stats": collections,
    }


def export_all_data() -> dict:
    try:
        data = _snapshot(include_secrets=False)
    except SQLAlchemyError as e:
        raise OperationFailed.wrap("Data export failed", e)
    return {
        "exportDate": iso_z(now_utc()),
        "version": EXPORT_VERSION,
        "data": data,
        "stats": _counts(data),
    }


# ─── import ───────────────────────────────────────────────────────────────────
def _strip_ids(record: dict) -> dict:
    return {k: v for k, v in record.items() if k not in ("_id", "id")}


def _import_user(record: dict) -> bool:
    """Returns False when skipped. Raises ValueError / SQLAlchemyError on bad rows."""
    if find_by_email(record.get("email")) is not None:
        return False
    if not str(record.get("name") or "").strip():
        raise ValueError("name is required")
    if not record.get("email"):
        raise ValueError("email is required")

    clean = {k: v for k, v in _strip_ids(record).items() if k not in CREDENTIAL_FIELDS}
    clean.pop("passwordHash", None)
    clean.pop("updatedAt", None)

    user = User(role=Role.STUDENT.value, is_active=True)
    apply_fields(user, clean)
    db.session.add(user)
    db.session.flush()
    apply_driver_qr(user)
    db.session.commit()
    publish_user_event("created", user.to_dict())
    return True


def _import_route(record: dict) -> bool:
    fields = validate_route(record)
    if find_route(fields["from_location"], fields["to_location"]) is not None:
        return False
    db.session.add(RideRoute(**fields))
    db.session.commit()
    return True


def _import_bill(record: dict) -> bool:
    ride_id = str(record.get("rideId") or "").strip()
    if ride_id and find_bill(ride_id) is not None:
        return False
    db.session.add(build_bill(record))
    db.session.commit()
    return True


_IMPORTERS = {
    "users": _import_user,
    "rideLocations": _import_route,
    "rideBills": _import_bill,
}


def _import_collections(data: dict) -> dict:
    results = {name: {"imported": 0, "skipped": 0, "errors": 0} for name in COLLECTIONS}
    for name in COLLECTIONS:
        records = data.get(name)
        if not isinstance(records, list):
            continue
        importer = _IMPORTERS[name]
        for record in records:
            try:
                if not isinstance(record, dict):
                    raise ValueError("record is not an object")
                if importer(record):
                    results[name]["imported"] += 1
                else:
                    results[name]["skipped"] += 1
            except (ValueError, TypeError, SQLAlchemyError) as e:
                db.session.rollback()
                results[name]["errors"] += 1
                current_app.logger.warning("[import] %s record rejected: %s", name, e)
    return results


def import_data(file_bytes: bytes) -> dict:
    try:
        payload = json.loads(file_bytes.decode("utf-8") if isinstance(file_bytes, bytes) else file_bytes)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Invalid import file format: {e}")

    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict) or not payload.get("exportDate"):
        raise ValidationError("Invalid import file format")

    try:
        results = _import_collections(payload["data"])
    except APIError:
        raise
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("[import] aborted")
        raise OperationFailed.wrap("Failed to import data", e)

    totals = {k: sum(r[k] for r in results.values()) for k in ("imported", "skipped", "errors")}
    current_app.logger.info("[import] source=%s %s", payload["exportDate"], totals)
    return {
        "success": True,
        "message": (
            f"Import completed. {totals['imported']} records imported, "
            f"{totals['skipped']} skipped, {totals['errors']} errors."
        ),
        "results": results,
        "importDate": iso_z(now_utc()),
        "sourceFile": payload["exportDate"],
    }


# ─── cache / stats ────────────────────────────────────────────────────────────
def clear_cache() -> dict:
    details = []
    try:
        for label, key in (("temporary", "TEMP_DIR"), ("cache", "CACHE_DIR")):
            directory = current_app.config[key]
            if not os.path.isdir(directory):
                continue
            cleared = 0
            for entry in os.scandir(directory):
                if not entry.is_file(follow_symlinks=False):
                    continue
                try:
                    os.remove(entry.path)
                    cleared += 1
                except OSError as e:
                    current_app.logger.warning("[cache] could not remove %s: %s", entry.path, e)
            details.append(f"Cleared {cleared} {label} files")
    except OSError as e:
        raise OperationFailed.wrap("Cache clearing failed", e)

    return {
        "success": True,
        "message": "Cache cleared successfully",
        "details": details or ["No cache files found to clear"],
    }


def get_data_stats() -> dict:
    counts = {
        "users": User.query.count(),
        "rideLocations": RideRoute.query.count(),
        "rideBills": RideBill.query.count(),
    }
    return {**counts, "totalRecords": sum(counts.values()), "lastUpdated": iso_z(now_utc())}


# ─── settings / scheduling ────────────────────────────────────────────────────
def _next_backup(settings: BackupSettings, *, since: datetime | None) -> str | None:
    if not settings.enabled:
        return None
    base = as_utc(since) or now_utc()
    return iso_z(base + timedelta(hours=int(settings.interval_hours)))


def _last_backup(settings: BackupSettings) -> datetime | None:
    if settings.last_backup_at is not None:
        return as_utc(settings.last_backup_at)
    files = _backup_files()
    return files[0][2] if files else None


def get_backup_settings() -> dict:
    settings = BackupSettings.load()
    last = _last_backup(settings)
    return {
        **settings.to_dict(),
        "lastBackup": iso_z(last),
        "nextBackup": _next_backup(settings, since=last),
        "totalBackups": len(_backup_files()),
    }


def _bounded_int(payload: dict, key: str, lo: int, hi: int, message: str, current: int) -> int:
    if key not in payload or payload[key] is None:
        return current
    try:
        value = int(payload[key])
    except (TypeError, ValueError):
        raise ValidationError(message) from None
    if value < lo or value > hi:
        raise ValidationError(message)
    return value


def update_backup_settings(payload: Dict[str, Any]) -> dict:
    payload = payload or {}
    settings = BackupSettings.load()

    interval = _bounded_int(
        payload, "interval", MIN_INTERVAL_HOURS, MAX_INTERVAL_HOURS,
        "Backup interval must be between 1 and 168 hours", settings.interval_hours,
    )
    max_backups = _bounded_int(
        payload, "maxBackups", MIN_MAX_BACKUPS, MAX_MAX_BACKUPS,
        "Max backups must be between 1 and 100", settings.max_backups,
    )

    settings.interval_hours = interval
    settings.max_backups = max_backups
    if "enabled" in payload:
        settings.enabled = as_bool(payload["enabled"])
    if "emailNotifications" in payload:
        settings.email_notifications = as_bool(payload["emailNotifications"])
    settings.updated_at = to_db(now_utc())

    db.session.add(settings)
    db.session.commit()
    current_app.logger.info("[backup] settings updated %s", settings.to_dict())

    return {
        "success": True,
        "message": "Backup settings updated successfully",
        "settings": {**settings.to_dict(), "nextBackup": _next_backup(settings, since=None)},
    }


def _prune(max_backups: int) -> list[str]:
    pruned = []
    for name, path, _ in _backup_files()[max_backups:]:
        try:
            os.remove(path)
            pruned.append(name)
        except OSError as e:
            current_app.logger.warning("[backup] could not prune %s: %s", name, e)
    if pruned:
        current_app.logger.info("[backup] pruned %d old backup(s)", len(pruned))
    return pruned


def schedule_backup() -> dict:
    backup = create_backup()

    settings = BackupSettings.load()
    ran_at = now_utc()
    settings.last_backup_at = to_db(ran_at)
    db.session.add(settings)
    db.session.commit()

    return {
        "success": True,
        "message": "Backup completed successfully",
        "backup": backup,
        "nextScheduled": _next_backup(settings, since=ran_at),
        "pruned": _prune(int(settings.max_backups)),
    }


def backup_if_due() -> dict | None:
    """Entry point for cron: run schedule_backup() when enabled and the interval has passed."""
    settings = BackupSettings.load()
    if not settings.enabled:
        current_app.logger.info("[backup] scheduled backups are disabled")
        return None
    last = _last_backup(settings)
    if last is not None and now_utc() < last + timedelta(hours=int(settings.interval_hours)):
        current_app.logger.info("[backup] not due (last=%s)", iso_z(last))
        return None
    return schedule_backup()


# ─── history ──────────────────────────────────────────────────────────────────
def _read_collections(path: str):
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh).get("collections")
    except (OSError, ValueError, AttributeError) as e:
        current_app.logger.warning("[backup] unreadable backup %s: %s", os.path.basename(path), e)
        return None


def get_backup_history() -> dict:
    try:
        files = _backup_files()[: int(current_app.config.get("BACKUP_HISTORY_LIMIT", 10))]
        backups = [
            {
                "filename": name,
                "createdAt": iso_z(created),
                "size": os.path.getsize(path),
                "collections": _read_collections(path),
            }
            for name, path, created in files
        ]
    except OSError as e:
        raise OperationFailed.wrap("Failed to get backup history", e)
    return {
        "backups": backups,
        "count": len(backups),
        "totalSize": sum(b["size"] for b in backups),
    }


def delete_backup(filename: str) -> dict:
    if not isinstance(filename, str) or not BACKUP_NAME_RE.fullmatch(filename):
        raise ValidationError("Invalid backup file")

    path = os.path.join(_backup_dir(), filename)
    if not os.path.isfile(path):
        raise NotFoundError("Backup file not found")

    try:
        size = os.path.getsize(path)
        os.remove(path)
    except FileNotFoundError:
        raise NotFoundError("Backup file not found")
    except OSError as e:
        raise OperationFailed.wrap("Failed to delete backup", e)

    current_app.logger.info("[backup] deleted %s", filename)
    return {"success": True, "message": "Backup deleted successfully", "filename": filename, "size": size}


def clear_all_backups() -> dict:
    if not os.path.isdir(_backup_dir()):
        return {"success": True, "message": "No backup directory found", "deletedCount": 0, "totalSize": 0}

    deleted = total = 0
    for name, path, _ in _backup_files():
        try:
            size = os.path.getsize(path)
            os.remove(path)
        except OSError as e:
            current_app.logger.warning("[backup] could not delete %s: %s", name, e)
            continue
        deleted += 1
        total += size

    current_app.logger.info("[backup] cleared %d backup file(s)", deleted)
    return {
        "success": True,
        "message": f"Cleared {deleted} backup files",
        "deletedCount": deleted,
        "totalSize": total,
    }
