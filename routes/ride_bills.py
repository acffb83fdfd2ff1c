# backend/routes/ride_bills.py
from __future__ import annotations

from flask import Blueprint, request, jsonify

from auth_guard import require_role
from services import ride_bills as svc

ride_bills_bp = Blueprint("ride_bills", __name__, url_prefix="/ride-bills")


@ride_bills_bp.route("", methods=["GET"])
@require_role("staff")
def list_bills():
    start, end = request.args.get("startDate"), request.args.get("endDate")
    bills = svc.bills_between(start, end) if (start or end) else svc.list_bills()
    return jsonify([b.to_dict() for b in bills]), 200


@ride_bills_bp.route("/stats", methods=["GET"])
@require_role("staff")
def bill_stats():
    return jsonify(svc.bill_stats()), 200


@ride_bills_bp.route("", methods=["POST"])
@require_role("staff", "driver")
def create_bill():
    bill = svc.create_bill(request.get_json(silent=True) or {})
    return jsonify(bill.to_dict()), 201


@ride_bills_bp.route("/<bill_id>", methods=["GET"])
@require_role("staff")
def get_bill(bill_id):
    return jsonify(svc.get_bill(bill_id).to_dict()), 200


@ride_bills_bp.route("/<bill_id>", methods=["PUT", "PATCH"])
@require_role("staff")
def update_bill(bill_id):
    bill = svc.update_bill(bill_id, request.get_json(silent=True) or {})
    return jsonify(bill.to_dict()), 200


@ride_bills_bp.route("/<bill_id>", methods=["DELETE"])
@require_role("staff")
def delete_bill(bill_id):
    return jsonify(svc.delete_bill(bill_id)), 200
