# services/ride_bills.py
from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any, Dict

from flask import current_app
from sqlalchemy.exc import IntegrityError

from db import db
from errors import ConflictError, NotFoundError, ValidationError
from models.ride_bill import RIDE_STATUSES, RideBill
from utils.dates import parse_datetime

MAX_FARE = 10_000
TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

_REQUIRED_TEXT = {
    "rideId": "ride_id",
    "studentId": "student_id",
    "studentName": "student_name",
    "driverId": "driver_id",
    "driverName": "driver_name",
    "location": "location",
}


def validate_fare(raw) -> float:
    try:
        fare = float(raw)
    except (TypeError, ValueError):
        raise ValueError("fare must be a number") from None
    if not math.isfinite(fare) or fare < 0 or fare > MAX_FARE:
        raise ValueError(f"fare must be between 0 and {MAX_FARE}")
    return fare


def validate_time(raw) -> str:
    value = str(raw or "").strip()
    if not TIME_RE.match(value):
        raise ValueError("Time must be in HH:MM format")
    return value


def validate_status(raw) -> str:
    value = str(raw or "completed").strip().lower()
    if value not in RIDE_STATUSES:
        raise ValueError(f"status must be one of {', '.join(RIDE_STATUSES)}")
    return value


def build_bill(data: Dict[str, Any]) -> RideBill:
    """Validate a camelCase payload into an unsaved RideBill. Raises ValueError."""
    fields: dict = {}
    for key, col in _REQUIRED_TEXT.items():
        value = str(data.get(key) or "").strip()
        if not value:
            raise ValueError(f"{key} is required")
        fields[col] = value

    date = parse_datetime(data.get("date"))
    if date is None:
        raise ValueError("date is required")

    entry = data.get("studentEntryNumber")
    return RideBill(
        **fields,
        student_entry_number=str(entry) if entry else None,
        fare=validate_fare(data.get("fare")),
        date=date,
        time=validate_time(data.get("time")),
        status=validate_status(data.get("status")),
        notes=data.get("notes") or None,
    )


def find_bill(ride_id: str) -> RideBill | None:
    return RideBill.query.filter_by(ride_id=ride_id).first()


def _get(bill_id) -> RideBill:
    try:
        bill = db.session.get(RideBill, int(bill_id))
    except (TypeError, ValueError):
        bill = None
    if bill is None:
        raise NotFoundError("Ride bill not found")
    return bill


def create_bill(data: Dict[str, Any]) -> RideBill:
    try:
        bill = build_bill(data)
    except ValueError as e:
        raise ValidationError(str(e))

    if find_bill(bill.ride_id):
        raise ConflictError(f"Ride {bill.ride_id} already exists")

    db.session.add(bill)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Ride {bill.ride_id} already exists")

    current_app.logger.info("[bills] created ride=%s fare=%s", bill.ride_id, bill.fare)
    return bill


def list_bills() -> list[RideBill]:
    return RideBill.query.order_by(RideBill.created_at.desc(), RideBill.id.desc()).all()


def get_bill(bill_id) -> RideBill:
    return _get(bill_id)


def update_bill(bill_id, data: Dict[str, Any]) -> RideBill:
    """Bills are history: only status and notes change after creation."""
    bill = _get(bill_id)
    frozen = set(data) - {"status", "notes"}
    if frozen:
        raise ValidationError(f"Only status and notes can be updated (got {', '.join(sorted(frozen))})")

    if "status" in data:
        try:
            bill.status = validate_status(data["status"])
        except ValueError as e:
            raise ValidationError(str(e))
    if "notes" in data:
        bill.notes = data["notes"] or None
    db.session.commit()
    return bill


def delete_bill(bill_id) -> dict:
    bill = _get(bill_id)
    snapshot = bill.to_dict()
    db.session.delete(bill)
    db.session.commit()
    return snapshot


def bills_between(start: datetime | str, end: datetime | str) -> list[RideBill]:
    try:
        lo, hi = parse_datetime(start), parse_datetime(end)
    except ValueError as e:
        raise ValidationError(str(e))
    if lo is None or hi is None:
        raise ValidationError("startDate and endDate are required")
    return (
        RideBill.query
        .filter(RideBill.date >= lo, RideBill.date <= hi)
        .order_by(RideBill.created_at.desc(), RideBill.id.desc())
        .all()
    )


def bill_stats() -> dict:
    fares = [f for (f,) in db.session.query(RideBill.fare).all()]
    if not fares:
        return {"totalRides": 0, "totalRevenue": 0, "averageFare": 0, "minFare": 0, "maxFare": 0}
    total = sum(fares)
    return {
        "totalRides": len(fares),
        "totalRevenue": total,
        "averageFare": total / len(fares),
        "minFare": min(fares),
        "maxFare": max(fares),
    }
