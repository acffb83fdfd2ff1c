# models/ride_bill.py
from __future__ import annotations

from sqlalchemy.sql import func

from db import db
from utils.dates import iso_z

RIDE_STATUSES = ("completed", "cancelled", "pending")


class RideBill(db.Model):
    __tablename__ = "ride_bills"

    id                   = db.Column(db.Integer, primary_key=True, autoincrement=True)
    ride_id              = db.Column(db.String(64), nullable=False, unique=True, index=True)
    student_id           = db.Column(db.String(64), nullable=False, index=True)
    student_name         = db.Column(db.String(120), nullable=False)
    student_entry_number = db.Column(db.String(32), nullable=True)
    driver_id            = db.Column(db.String(64), nullable=False, index=True)
    driver_name          = db.Column(db.String(120), nullable=False)
    location             = db.Column(db.String(320), nullable=False)   # "From → To", denormalized
    fare                 = db.Column(db.Float, nullable=False)
    date                 = db.Column(db.DateTime, nullable=False, index=True)
    time                 = db.Column(db.String(5), nullable=False)     # HH:MM, 24h
    status               = db.Column(db.String(16), nullable=False, default="completed", index=True)
    notes                = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, server_default=func.now(), nullable=False, index=True)
    updated_at = db.Column(db.DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rideId": self.ride_id,
            "studentId": self.student_id,
            "studentName": self.student_name,
            "studentEntryNumber": self.student_entry_number,
            "driverId": self.driver_id,
            "driverName": self.driver_name,
            "location": self.location,
            "fare": self.fare,
            "date": iso_z(self.date),
            "time": self.time,
            "status": self.status,
            "notes": self.notes,
            "createdAt": iso_z(self.created_at),
            "updatedAt": iso_z(self.updated_at),
        }
