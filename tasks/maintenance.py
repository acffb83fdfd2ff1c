# tasks/maintenance.py
"""Jobs behind the `flask ...` CLI commands; meant to be driven by cron."""
import logging

from services import data_management, driver_qr, users

log = logging.getLogger("tasks.maintenance")


def backup_if_due():
    result = data_management.backup_if_due()
    if result is None:
        log.info("backup not due")
        return None
    log.info("backup written: %s (pruned %d)", result["backup"]["filename"], len(result["pruned"]))
    return result


def backup_now():
    result = data_management.schedule_backup()
    log.info("backup written: %s", result["backup"]["filename"])
    return result


def sync_driver_qr(force=False):
    result = driver_qr.generate_qr_for_all_drivers(force=force)
    if result["failed"]:
        log.warning("QR sync had %d failure(s)", result["failed"])
    return result


def refresh_expiry():
    return users.refresh_expiry_status()
