# backend/realtime.py
"""
Socket.IO channel for user-record change events.

Clients emit "users:subscribe" with {"token": <admin/staff JWT>} on the /rt
namespace; they get one {"type": "snapshot", "users": [...]} event, then a
{"type": "created"|"updated"|"deleted", "user": {...}} event after each write
committed through services.users.
"""
from __future__ import annotations

from flask import current_app
from flask_socketio import SocketIO, emit, join_room, leave_room

from auth_guard import user_from_token
from models.user import CAN_MANAGE_DATA, User

# one shared instance for the whole app
socketio = SocketIO(cors_allowed_origins="*", ping_interval=25, ping_timeout=20)

NS = "/rt"
USERS_ROOM = "users"
USERS_EVENT = "users:event"

EVENT_TYPES = ("created", "updated", "deleted", "snapshot")


@socketio.on("connect", namespace=NS)
def on_connect(auth=None):
    emit("connected", {"ok": True})


@socketio.on("disconnect", namespace=NS)
def on_disconnect(reason=None):
    pass


@socketio.on("users:subscribe", namespace=NS)
def on_users_subscribe(data):
    user, error = user_from_token((data or {}).get("token"))
    if user is None or not CAN_MANAGE_DATA[user.role_enum]:
        emit("users:error", {"error": error or "Insufficient permissions"})
        return

    join_room(USERS_ROOM)
    users = [u.to_dict() for u in User.query.order_by(User.id).all()]
    emit(USERS_EVENT, {"type": "snapshot", "users": users})
    current_app.logger.info("[rt] uid=%s subscribed to users (%d in snapshot)", user.id, len(users))


@socketio.on("users:unsubscribe", namespace=NS)
def on_users_unsubscribe(data=None):
    leave_room(USERS_ROOM)


def publish_user_event(kind: str, user: dict) -> None:
    """Fan a committed change out to subscribers; delivery failures are only logged."""
    if kind not in EVENT_TYPES:
        raise ValueError(f"unknown event type {kind!r}")
    try:
        socketio.emit(USERS_EVENT, {"type": kind, "user": user}, namespace=NS, to=USERS_ROOM)
    except Exception:
        current_app.logger.exception("[rt] publish %s failed for user %s", kind, user.get("id"))
