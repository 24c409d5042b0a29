"""
Realtime Channel

Best-effort push of freshly stored notifications to connected clients over
Flask-SocketIO.  Every browser session joins ``user:<id>`` (and
``tenant:<id>``) on connect; the dispatcher emits ``notificationCreated`` to
the recipient's user room.

The channel is only live when the app factory called ``socketio.init_app``
(``REALTIME_ENABLED``); otherwise ``available`` is False and every push
raises ``DeliveryError``, which the dispatcher reports as PARTIAL_SUCCESS.
"""

import logging

from flask import request
from flask_socketio import SocketIO, emit, join_room

from auditcapa.core.exceptions import DeliveryError

logger = logging.getLogger(__name__)

socketio = SocketIO()

NOTIFICATION_EVENT = "notificationCreated"


def user_room(user_id) -> str:
    return f"user:{user_id}"


def tenant_room(tenant_id) -> str:
    return f"tenant:{tenant_id}"


class RealtimeChannel:
    """Push channel over the module-level ``socketio`` server."""

    def __init__(self, server: SocketIO | None = None):
        self._socketio = server or socketio

    @property
    def available(self) -> bool:
        return self._socketio.server is not None

    def push_to_user(self, user_id: int, payload: dict) -> None:
        if not self.available:
            raise DeliveryError("realtime", "Socket.io server not initialised")
        try:
            self._socketio.emit(NOTIFICATION_EVENT, payload, to=user_room(user_id))
        except Exception as exc:
            raise DeliveryError("realtime", str(exc)) from exc


def register_realtime_events(server: SocketIO) -> None:
    """Register connection handlers that place each client in its rooms."""

    @server.on("connect")
    def handle_connect(auth=None):
        auth = auth or {}
        user_id = auth.get("user_id") or request.args.get("user_id")
        tenant_id = auth.get("tenant_id") or request.args.get("tenant_id")
        if user_id:
            join_room(user_room(user_id))
        if tenant_id:
            join_room(tenant_room(tenant_id))
        logger.debug("Realtime client %s joined user=%s tenant=%s", request.sid, user_id, tenant_id)
        emit("connected", {"user_id": user_id, "tenant_id": tenant_id})

    @server.on("join")
    def handle_join(data):
        """Join an explicit user room after connecting (e.g. after login)."""
        user_id = (data or {}).get("user_id")
        if user_id:
            join_room(user_room(user_id))
            emit("joined", {"room": user_room(user_id)})
