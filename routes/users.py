# backend/routes/users.py
from __future__ import annotations

import base64

from flask import Blueprint, request, jsonify, current_app

from auth_guard import require_role
from services import driver_qr, users as svc

users_bp = Blueprint("users", __name__, url_prefix="/users")


def _payload() -> dict:
    """JSON body, or multipart form fields plus an optional profilePhoto upload."""
    if request.is_json:
        return request.get_json(silent=True) or {}

    data = {k: v for k, v in request.form.items()}
    photo = request.files.get("profilePhoto")
    if photo is not None and photo.filename:
        raw = photo.read()
        data["profilePhoto"] = {
            "data": base64.b64encode(raw).decode("ascii"),
            "filename": photo.filename,
            "mimetype": photo.mimetype,
            "size": len(raw),
        }
    return data


@users_bp.route("", methods=["GET"])
@require_role("staff")
def list_users():
    return jsonify([u.to_dict() for u in svc.list_users()]), 200


@users_bp.route("", methods=["POST"])
@require_role("staff")
def create_user():
    user = svc.create_user(_payload())
    return jsonify(user.to_dict()), 201


@users_bp.route("/stats/overview", methods=["GET"])
@require_role("staff")
def user_stats():
    return jsonify(svc.user_stats()), 200


@users_bp.route("/drivers/generate-qr-codes", methods=["POST"])
@require_role("staff")
def generate_all_qr():
    force = str(request.args.get("force", "")).lower() in {"1", "true", "yes"}
    result = driver_qr.generate_qr_for_all_drivers(force=force)
    return jsonify({"message": f"Generated QR codes for {result['updated']} drivers", **result}), 200


@users_bp.route("/<user_id>", methods=["GET"])
@require_role("staff")
def get_user(user_id):
    return jsonify(svc.get_user(user_id).to_dict()), 200


@users_bp.route("/<user_id>", methods=["PUT", "PATCH"])
@require_role("staff")
def update_user(user_id):
    user = svc.update_user(user_id, _payload())
    return jsonify(user.to_dict()), 200


@users_bp.route("/<user_id>", methods=["DELETE"])
@require_role("admin")
def delete_user(user_id):
    snapshot = svc.delete_user(user_id)
    return jsonify({"message": "User deleted successfully", "id": snapshot["id"]}), 200


@users_bp.route("/<user_id>/status", methods=["PATCH", "PUT"])
@require_role("staff")
def set_status(user_id):
    data = request.get_json(silent=True) or {}
    if "isActive" not in data:
        return jsonify(error="isActive is required"), 400
    return jsonify(svc.set_status(user_id, data["isActive"]).to_dict()), 200


@users_bp.route("/<user_id>/role", methods=["PATCH", "PUT"])
@require_role("admin")
def set_role(user_id):
    data = request.get_json(silent=True) or {}
    user = svc.set_role(user_id, data.get("role"))
    current_app.logger.info("[users] uid=%s role -> %s", user.id, user.role)
    return jsonify(user.to_dict()), 200


@users_bp.route("/<user_id>/generate-qr", methods=["POST"])
@require_role("staff")
def generate_qr(user_id):
    qr = driver_qr.generate_qr_for_driver(user_id)
    return jsonify({"message": "QR code generated successfully", "qrCode": qr}), 200
