"""
Chat Blueprint - Conversations with Advisors

Paid advisors are gated by an x402 payment session; free advisors spend a
message credit for signed-in callers. Replies come from the completion
client and are pushed to the conversation's Socket.IO room.
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from sim import db_storage
from sim.audit_logger import get_audit_logger
from sim.blueprints.payments import presented_payment_session
from sim.chat.completion import CompletionError, generate_reply
from sim.credits import CreditsExhausted, charge_message
from sim.decorators import optional_auth, require_auth
from sim.payments.x402 import (
    advisor_payment_terms,
    advisor_requirements,
    payment_required_response,
    validate_payment_session,
)
from sim.realtime import broadcast_message
from sim.security import limiter
from sim.utils import clean_str

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

chat_bp = Blueprint("chat", __name__)

MAX_MESSAGE_LENGTH = 10000


def _load_conversation(conversation_id: str):
    """Conversation visible to the caller, or None."""
    conversation = db_storage.get_conversation(conversation_id)
    if not conversation:
        return None

    owner = conversation["user_id"]
    user = g.current_user
    if owner and (not user or user["id"] != owner):
        return None
    return conversation


@chat_bp.route("/advisors/<advisor_id>/conversations", methods=["POST"])
@optional_auth
def start_conversation(advisor_id):
    """
    Open a conversation with an advisor.

    Signed-in callers get their existing conversation back; anonymous
    callers always get a new one.
    """
    advisor = db_storage.get_advisor(advisor_id)
    if not advisor or not advisor["is_active"]:
        return jsonify({"error": "not_found", "message": "Advisor not found"}), 404

    user = g.current_user
    if user:
        existing = db_storage.find_conversation(user["id"], advisor["id"])
        if existing:
            return jsonify({"conversation": existing, "created": False}), 200

    conversation = db_storage.create_conversation(advisor["id"], user["id"] if user else None)
    logger.info(f"Conversation {conversation['id']} started with advisor {advisor['id']}")

    return jsonify({"conversation": conversation, "created": True}), 201


@chat_bp.route("/conversations", methods=["GET"])
@require_auth
def list_conversations():
    """Signed-in caller's conversations, most recent first."""
    return jsonify({"conversations": db_storage.list_conversations(g.current_user["id"])}), 200


@chat_bp.route("/conversations/<conversation_id>/messages", methods=["GET"])
@optional_auth
def list_messages(conversation_id):
    conversation = _load_conversation(conversation_id)
    if not conversation:
        return jsonify({"error": "not_found", "message": "Conversation not found"}), 404
    return jsonify({"messages": db_storage.list_messages(conversation_id)}), 200


@chat_bp.route("/conversations/<conversation_id>/messages", methods=["POST"])
@optional_auth
@limiter.limit("30 per minute")
def send_message(conversation_id):
    """
    Send a message and receive the advisor's reply.

    Expected JSON body:
        - content: Message text
        - paymentSessionId: Optional x402 session (also accepted via the
          ``X-Payment-Session`` header)

    Returns:
        JSON with both stored messages; 402 when payment is required,
        429 when credits are exhausted, 502 when the reply fails
    """
    data = request.get_json(silent=True) or {}
    content = clean_str(data.get("content"))
    if not content:
        return jsonify({"error": "bad_request", "message": "Message content is required"}), 400
    if len(content) > MAX_MESSAGE_LENGTH:
        return jsonify({"error": "bad_request", "message": f"Message exceeds {MAX_MESSAGE_LENGTH} characters"}), 400

    conversation = _load_conversation(conversation_id)
    if not conversation:
        return jsonify({"error": "not_found", "message": "Conversation not found"}), 404

    advisor = db_storage.get_advisor(conversation["advisor_id"])
    if not advisor or not advisor["is_active"]:
        return jsonify({"error": "not_found", "message": "Advisor not found"}), 404

    cfg = current_app.config["APP_CONFIG"]
    user = g.current_user
    credits_remaining = None

    if advisor["x402_enabled"]:
        session_id = presented_payment_session(advisor["id"], data)
        _, pay_to = advisor_payment_terms(cfg, advisor)
        if not validate_payment_session(session_id, advisor_wallet=pay_to, advisor_id=advisor["id"]):
            resource = f"{cfg['PUBLIC_BASE_URL'].rstrip('/')}/api/conversations/{conversation_id}/messages"
            audit_logger.log_event("chat.payment_required", advisor_id=advisor["id"], ip=request.remote_addr)
            return payment_required_response(advisor_requirements(cfg, advisor, resource))
    elif user:
        try:
            credits_remaining = charge_message(user["id"], conversation_id, cfg)
        except CreditsExhausted as e:
            return jsonify({
                "error": "credits_exhausted",
                "message": str(e),
                "remaining": e.remaining,
                "limit": e.limit,
                "reset_at": e.reset_at,
            }), 429

    user_message = db_storage.add_message(conversation_id, "user", content)
    broadcast_message(user_message)

    history = db_storage.list_messages(conversation_id, limit=cfg["COMPLETION_HISTORY_LIMIT"])
    try:
        reply = generate_reply(cfg, advisor, history)
    except CompletionError as e:
        logger.error(f"Completion failed for conversation {conversation_id}: {e}")
        return jsonify({
            "error": "completion_failed",
            "message": "The advisor could not reply right now",
            "userMessage": user_message,
        }), 502

    assistant_message = db_storage.add_message(conversation_id, "assistant", reply)
    broadcast_message(assistant_message)

    body = {"userMessage": user_message, "assistantMessage": assistant_message}
    if credits_remaining is not None:
        body["credits"] = {"remaining": credits_remaining}
    return jsonify(body), 201
