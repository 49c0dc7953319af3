"""Request authentication decorators shared by the API blueprints."""

import logging
from functools import wraps
from typing import Any, Dict, Optional, Tuple

from flask import current_app, g, jsonify, request, session

from sim import db_storage
from sim.tokens import TokenError, decode_access_token

logger = logging.getLogger(__name__)


def _bearer_token() -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def profile_from_access_token(token: str) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Resolve an access token to ``(profile, auth_session_id)``.

    Raises:
        TokenError: If the token is invalid, revoked or names an unknown profile
    """
    cfg = current_app.config["APP_CONFIG"]
    payload = decode_access_token(cfg, token)
    sid = payload.get("sid")
    if sid and not db_storage.is_auth_session_active(sid):
        raise TokenError("Session has been revoked")
    profile = db_storage.get_profile(payload["sub"])
    if not profile:
        raise TokenError("Unknown subject")
    return profile, sid


def resolve_current_user() -> Optional[Dict[str, Any]]:
    """
    Identify the caller from a Bearer access token or the Flask session.

    Raises:
        TokenError: If a Bearer token is present but invalid or revoked
    """
    token = _bearer_token()
    if token:
        profile, sid = profile_from_access_token(token)
        g.auth_session_id = sid
        return profile

    profile_id = session.get("profile_id")
    if profile_id:
        g.auth_session_id = session.get("auth_session_id")
        return db_storage.get_profile(profile_id)

    return None


def require_auth(f):
    """Reject the request with 401 unless a signed-in wallet is resolved."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            user = resolve_current_user()
        except TokenError as e:
            return jsonify({"error": "invalid_token", "message": str(e)}), 401

        if not user:
            return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """Resolve the caller when possible; anonymous requests pass with ``g.current_user = None``."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            g.current_user = resolve_current_user()
        except TokenError as e:
            logger.debug(f"Ignoring invalid token on optional-auth route: {e}")
            g.current_user = None
        return f(*args, **kwargs)

    return decorated_function
