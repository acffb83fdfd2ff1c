# auth_guard.py
from __future__ import annotations

import jwt
from functools import wraps
from datetime import timedelta

from flask import request, jsonify, g, current_app

from db import db
from models.user import Role, User
from utils.dates import now_utc

__all__ = ["require_role", "issue_token", "user_from_token"]


def issue_token(user: User) -> str:
    payload = {
        "user_id": user.id,
        "role": user.role,
        "exp": now_utc() + timedelta(hours=int(current_app.config["JWT_TTL_HOURS"])),
    }
    return jwt.encode(payload, current_app.config["SECRET_KEY"], algorithm="HS256")


def user_from_token(token: str | None) -> tuple[User | None, str | None]:
    """Decode a bearer token; returns (user, None) or (None, error message)."""
    if not token:
        return None, "Missing token"
    try:
        payload = jwt.decode(token, current_app.config["SECRET_KEY"], algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None, "Token has expired"
    except jwt.InvalidTokenError:
        return None, "Invalid token"

    user = db.session.get(User, payload.get("user_id"))
    if not user:
        return None, "User not found"
    if not user.is_active:
        return None, "Account is inactive"
    return user, None


def require_role(*roles):
    """
    Usage:
      @require_role()                    -> any authenticated user
      @require_role("staff")             -> only staff (or admin)
      @require_role("staff", "driver")   -> staff or driver (or admin)
    """
    # Support passing a single list/tuple as well
    if len(roles) == 1 and isinstance(roles[0], (list, tuple, set)):
        roles = tuple(roles[0])
    allowed = {Role.parse(r) for r in roles if r}

    def decorator(f):
        @wraps(f)
        def wrapped(*args, **kwargs):
            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Bearer "):
                return jsonify(error="Missing token"), 401

            user, error = user_from_token(auth.split(" ", 1)[1])
            if user is None:
                return jsonify(error=error), 401

            role = user.role_enum
            g.user = user  # type: ignore[attr-defined]
            g.role = role  # type: ignore[attr-defined]

            current_app.logger.info(
                "[guard] %s %s uid=%s role=%s ip=%s",
                request.method, request.path, user.id, role.value, request.remote_addr,
            )

            # Role check (admin bypass)
            if allowed and role not in allowed and role is not Role.ADMIN:
                return jsonify(error="Insufficient permissions"), 403

            return f(*args, **kwargs)

        return wrapped

    return decorator
