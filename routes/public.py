# backend/routes/public.py
from __future__ import annotations

from flask import Blueprint, jsonify

from services.driver_qr import public_driver_info

public_bp = Blueprint("public", __name__, url_prefix="/public")


@public_bp.route("/drivers/<driver_id>", methods=["GET"])
def driver_info(driver_id):
    """Target of the verify-driver page a scanned QR opens. No auth."""
    return jsonify(public_driver_info(driver_id)), 200
