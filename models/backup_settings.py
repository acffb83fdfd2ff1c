# models/backup_settings.py
from __future__ import annotations

from sqlalchemy.sql import func

from db import db
from utils.dates import iso_z

DEFAULT_INTERVAL_HOURS = 24
DEFAULT_MAX_BACKUPS = 30


class BackupSettings(db.Model):
    """Single-row table (id=1) holding the backup schedule the operators configured."""
    __tablename__ = "backup_settings"

    id                  = db.Column(db.Integer, primary_key=True)
    enabled             = db.Column(db.Boolean, nullable=False, default=True)
    interval_hours      = db.Column(db.Integer, nullable=False, default=DEFAULT_INTERVAL_HOURS)
    max_backups         = db.Column(db.Integer, nullable=False, default=DEFAULT_MAX_BACKUPS)
    email_notifications = db.Column(db.Boolean, nullable=False, default=True)
    last_backup_at      = db.Column(db.DateTime, nullable=True)
    updated_at          = db.Column(db.DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    @classmethod
    def load(cls) -> "BackupSettings":
        """Return the stored row, or an unsaved row with defaults."""
        row = db.session.get(cls, 1)
        if row is None:
            row = cls(
                id=1,
                enabled=True,
                interval_hours=DEFAULT_INTERVAL_HOURS,
                max_backups=DEFAULT_MAX_BACKUPS,
                email_notifications=True,
            )
        return row

    def to_dict(self) -> dict:
        return {
            "enabled": bool(self.enabled),
            "interval": int(self.interval_hours),
            "maxBackups": int(self.max_backups),
            "emailNotifications": bool(self.email_notifications),
            "lastUpdated": iso_z(self.updated_at),
        }
