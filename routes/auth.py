# backend/routes/auth.py
from __future__ import annotations

from flask import Blueprint, request, jsonify, g, current_app

from auth_guard import require_role
from services import password_reset, users as user_svc

__all__ = ["auth_bp"]
auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.after_request
def add_no_store(resp):
    resp.headers["Cache-Control"] = "no-store"
    return resp


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    result = password_reset.authenticate(data.get("email"), data.get("password"))
    return jsonify(result), 200


@auth_bp.route("/me", methods=["GET"])
@require_role()
def me():
    return jsonify(g.user.to_dict()), 200


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    if not email:
        return jsonify(error="email is required"), 400
    return jsonify(password_reset.forgot_password(email)), 200


@auth_bp.route("/verify-otp", methods=["POST"])
def verify_otp():
    data = request.get_json(silent=True) or {}
    return jsonify(password_reset.verify_otp(data.get("email"), data.get("otp"))), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = request.get_json(silent=True) or {}
    token = data.get("token") or data.get("resetToken")
    return jsonify(password_reset.reset_password(token, data.get("newPassword"))), 200


@auth_bp.route("/notifications/settings", methods=["GET"])
@require_role()
def get_notification_settings():
    return jsonify(user_svc.get_notification_settings(g.user)), 200


@auth_bp.route("/notifications/settings", methods=["POST", "PUT"])
@require_role()
def update_notification_settings():
    data = request.get_json(silent=True) or {}
    settings = user_svc.update_notification_settings(g.user, data)
    current_app.logger.info("[auth] uid=%s notification settings -> %s", g.user.id, settings)
    return jsonify(settings), 200
