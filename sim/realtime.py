"""
Socket.IO live updates for conversations.

Clients join ``conversation:<id>`` rooms and receive ``message:new`` events
whenever a message is stored in that conversation.
"""

import logging
from typing import Any, Dict, Optional

from flask import Flask, request, session
from flask_socketio import SocketIO, emit, join_room, leave_room

from sim import db_storage
from sim.decorators import profile_from_access_token
from sim.tokens import TokenError

logger = logging.getLogger(__name__)

# Created unbound so handlers can register at import time.
socketio = SocketIO()

# Per-socket session key holding the profile resolved from the handshake token
SOCKET_PROFILE_KEY = "socket_profile_id"


def room_name(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def init_socketio(app: Flask) -> SocketIO:
    """Bind the Socket.IO server to the app."""
    cfg = app.config["APP_CONFIG"]
    socketio.init_app(app, cors_allowed_origins=cfg.get("SOCKETIO_CORS", "*"))
    return socketio


def _conversation_id(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        return (data.get("conversationId") or data.get("conversation_id") or "").strip() or None
    if isinstance(data, str):
        return data.strip() or None
    return None


def _may_join(conversation: Dict[str, Any]) -> bool:
    owner = conversation.get("user_id")
    if owner is None:
        return True
    return owner in (session.get("profile_id"), session.get(SOCKET_PROFILE_KEY))


@socketio.on("connect")
def on_connect(auth=None):
    """
    Accept an access token in the handshake for clients without a cookie session.

    Client connects with: io(url, { auth: { token } })
    """
    token = auth.get("token") if isinstance(auth, dict) else None
    if not token:
        return None

    try:
        profile, _ = profile_from_access_token(token)
    except TokenError as e:
        logger.info(f"Socket {request.sid} refused: {e}")
        return False

    session[SOCKET_PROFILE_KEY] = profile["id"]
    return None


@socketio.on("conversation:join")
def on_conversation_join(data):
    """
    Client sends: socket.emit('conversation:join', { conversationId })
    """
    conversation_id = _conversation_id(data)
    if not conversation_id:
        emit("conversation:error", {"error": "conversationId is required"})
        return

    conversation = db_storage.get_conversation(conversation_id)
    if not conversation or not _may_join(conversation):
        emit("conversation:error", {"error": "Conversation not found", "conversationId": conversation_id})
        return

    join_room(room_name(conversation_id))
    logger.debug(f"Socket {request.sid} joined {room_name(conversation_id)}")
    emit("conversation:joined", {"conversationId": conversation_id})


@socketio.on("conversation:leave")
def on_conversation_leave(data):
    conversation_id = _conversation_id(data)
    if not conversation_id:
        return
    leave_room(room_name(conversation_id))
    emit("conversation:left", {"conversationId": conversation_id})


@socketio.on_error_default
def default_error_handler(e):
    """Handle SocketIO errors."""
    logger.error(f"SocketIO error: {e}", exc_info=True)


def broadcast_message(message: Dict[str, Any]) -> None:
    """Emit a stored message to everyone in its conversation room."""
    socketio.emit("message:new", message, to=room_name(message["conversation_id"]))
