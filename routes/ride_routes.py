# backend/routes/ride_routes.py
from __future__ import annotations

from flask import Blueprint, request, jsonify

from auth_guard import require_role
from services import ride_routes as svc

ride_routes_bp = Blueprint("ride_routes", __name__, url_prefix="/ride-locations")


@ride_routes_bp.route("", methods=["GET"])
@require_role()
def list_routes():
    return jsonify([r.to_dict() for r in svc.list_routes()]), 200


@ride_routes_bp.route("", methods=["POST"])
@require_role("staff")
def create_route():
    route = svc.create_route(request.get_json(silent=True) or {})
    return jsonify(route.to_dict()), 201


@ride_routes_bp.route("/<route_id>", methods=["GET"])
@require_role()
def get_route(route_id):
    return jsonify(svc.get_route(route_id).to_dict()), 200


@ride_routes_bp.route("/<route_id>", methods=["PUT", "PATCH"])
@require_role("staff")
def update_route(route_id):
    route = svc.update_route(route_id, request.get_json(silent=True) or {})
    return jsonify(route.to_dict()), 200


@ride_routes_bp.route("/<route_id>", methods=["DELETE"])
@require_role("staff")
def delete_route(route_id):
    return jsonify(svc.delete_route(route_id)), 200
