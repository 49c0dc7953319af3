"""
Credits Blueprint - Message Quota per Profile
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from sim import credits
from sim.decorators import require_auth
from sim.security import limiter

logger = logging.getLogger(__name__)

credits_bp = Blueprint("credits", __name__)


@credits_bp.route("", methods=["GET"])
@require_auth
def get_credits():
    """Current usage, limit and next reset time for the signed-in profile."""
    cfg = current_app.config["APP_CONFIG"]
    status = credits.get_credit_status(g.current_user["id"], cfg)
    status["plan"] = g.current_user["plan"]
    return jsonify(status), 200


@credits_bp.route("/consume", methods=["POST"])
@require_auth
@limiter.limit("60 per minute")
def consume():
    """
    Spend one message credit.

    Expected JSON body:
        - conversationId: Optional conversation the credit is spent on

    Returns:
        JSON with ``success``, ``remaining`` and ``limit``; 429 when exhausted
    """
    data = request.get_json(silent=True) or {}
    cfg = current_app.config["APP_CONFIG"]

    success, remaining, limit = credits.consume_credit(g.current_user["id"], data.get("conversationId"), cfg)
    body = {"success": success, "remaining": remaining, "limit": limit}

    if not success:
        body["error"] = "credits_exhausted"
        body["message"] = f"Message limit reached ({limit} per period)"
        return jsonify(body), 429

    return jsonify(body), 200
