# models/ride_route.py
from __future__ import annotations

from sqlalchemy.sql import func

from db import db
from utils.dates import iso_z


class RideRoute(db.Model):
    __tablename__ = "ride_routes"
    __table_args__ = (
        db.UniqueConstraint("from_location", "to_location", name="uq_ride_routes_pair"),
    )

    id            = db.Column(db.Integer, primary_key=True, autoincrement=True)
    from_location = db.Column(db.String(160), nullable=False, index=True)
    to_location   = db.Column(db.String(160), nullable=False, index=True)
    fare          = db.Column(db.Float, nullable=False, index=True)

    created_at = db.Column(db.DateTime, server_default=func.now(), nullable=False, index=True)
    updated_at = db.Column(db.DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def label(self) -> str:
        return f"{self.from_location} → {self.to_location}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fromLocation": self.from_location,
            "toLocation": self.to_location,
            "fare": self.fare,
            "createdAt": iso_z(self.created_at),
            "updatedAt": iso_z(self.updated_at),
        }
