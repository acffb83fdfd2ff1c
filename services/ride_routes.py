# services/ride_routes.py
from __future__ import annotations

import math
from typing import Any, Dict

from flask import current_app
from sqlalchemy.exc import IntegrityError

from db import db
from errors import ConflictError, NotFoundError, ValidationError
from models.ride_route import RideRoute

DUPLICATE_ROUTE = "A ride location with this route already exists"


def validate_route(data: Dict[str, Any], *, partial: bool = False) -> dict:
    """Return {from_location, to_location, fare} for the keys present. Raises ValueError."""
    out: dict = {}
    for key, col in (("fromLocation", "from_location"), ("toLocation", "to_location")):
        if key in data or not partial:
            value = str(data.get(key) or "").strip()
            if not value:
                raise ValueError(f"{key} is required")
            out[col] = value

    if "fare" in data or not partial:
        try:
            fare = float(data.get("fare"))
        except (TypeError, ValueError):
            raise ValueError("fare must be a number") from None
        if not math.isfinite(fare) or fare < 0:
            raise ValueError("fare must be a non-negative number")
        out["fare"] = fare
    return out


def find_route(from_location: str, to_location: str) -> RideRoute | None:
    return RideRoute.query.filter_by(from_location=from_location, to_location=to_location).first()


def _get(route_id) -> RideRoute:
    try:
        route = db.session.get(RideRoute, int(route_id))
    except (TypeError, ValueError):
        route = None
    if route is None:
        raise NotFoundError("Ride location not found")
    return route


def create_route(data: Dict[str, Any]) -> RideRoute:
    try:
        fields = validate_route(data)
    except ValueError as e:
        raise ValidationError(str(e))

    if find_route(fields["from_location"], fields["to_location"]):
        raise ConflictError(DUPLICATE_ROUTE)

    route = RideRoute(**fields)
    db.session.add(route)
    try:
        db.session.commit()
    except IntegrityError:
        # lost a race with a concurrent insert of the same pair
        db.session.rollback()
        raise ConflictError(DUPLICATE_ROUTE)

    current_app.logger.info("[routes] created %s (fare=%s)", route.label, route.fare)
    return route


def list_routes() -> list[RideRoute]:
    return RideRoute.query.order_by(RideRoute.created_at.desc(), RideRoute.id.desc()).all()


def get_route(route_id) -> RideRoute:
    return _get(route_id)


def update_route(route_id, data: Dict[str, Any]) -> RideRoute:
    route = _get(route_id)
    try:
        fields = validate_route(data, partial=True)
    except ValueError as e:
        raise ValidationError(str(e))

    pair = (
        fields.get("from_location", route.from_location),
        fields.get("to_location", route.to_location),
    )
    clash = find_route(*pair)
    if clash is not None and clash.id != route.id:
        raise ConflictError(DUPLICATE_ROUTE)

    for col, value in fields.items():
        setattr(route, col, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(DUPLICATE_ROUTE)
    return route


def delete_route(route_id) -> dict:
    route = _get(route_id)
    snapshot = route.to_dict()
    db.session.delete(route)
    db.session.commit()
    return snapshot
