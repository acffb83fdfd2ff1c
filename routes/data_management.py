# backend/routes/data_management.py
from __future__ import annotations

import json

from flask import Blueprint, Response, request, jsonify, current_app

from auth_guard import require_role
from services import data_management as dm
from utils.dates import now_utc

__all__ = ["data_bp"]
data_bp = Blueprint("data_management", __name__, url_prefix="/data-management")


@data_bp.route("/backup", methods=["POST"])
@require_role("staff")
def create_backup():
    return jsonify(dm.create_backup()), 200


@data_bp.route("/export", methods=["GET"])
@require_role("staff")
def export_data():
    payload = dm.export_all_data()
    filename = f"campus-rides-export-{now_utc().strftime('%Y-%m-%d')}.json"
    return Response(
        json.dumps(payload, indent=2, ensure_ascii=False),
        mimetype="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@data_bp.route("/import", methods=["POST"])
@require_role("staff")
def import_data():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return jsonify(error="No file uploaded"), 400
    if not upload.filename.lower().endswith(".json"):
        return jsonify(error="Only JSON files are allowed"), 400

    current_app.logger.info("[import] upload %s", upload.filename)
    return jsonify(dm.import_data(upload.read())), 200


@data_bp.route("/cache", methods=["DELETE", "POST"])
@require_role("staff")
def clear_cache():
    return jsonify(dm.clear_cache()), 200


@data_bp.route("/stats", methods=["GET"])
@require_role("staff")
def data_stats():
    return jsonify(dm.get_data_stats()), 200


@data_bp.route("/backup/settings", methods=["GET"])
@require_role("staff")
def get_backup_settings():
    return jsonify(dm.get_backup_settings()), 200


@data_bp.route("/backup/settings", methods=["POST", "PUT"])
@require_role("staff")
def update_backup_settings():
    return jsonify(dm.update_backup_settings(request.get_json(silent=True) or {})), 200


@data_bp.route("/backup/schedule", methods=["POST"])
@require_role("staff")
def schedule_backup():
    return jsonify(dm.schedule_backup()), 200


@data_bp.route("/backup/history", methods=["GET"])
@require_role("staff")
def backup_history():
    return jsonify(dm.get_backup_history()), 200


@data_bp.route("/backup/history", methods=["DELETE"])
@require_role("staff")
def clear_backups():
    return jsonify(dm.clear_all_backups()), 200


@data_bp.route("/backup/history/<path:filename>", methods=["DELETE"])
@require_role("staff")
def delete_backup(filename: str):
    return jsonify(dm.delete_backup(filename)), 200
