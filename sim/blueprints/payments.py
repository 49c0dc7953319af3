"""
Payments Blueprint - x402 Payment Sessions

Stores verified x402 payment sessions and answers whether a session still
grants access to a paid advisor.
"""

import logging
from typing import Optional

from flask import Blueprint, current_app, jsonify, request, session

from sim import db_storage
from sim.audit_logger import get_audit_logger
from sim.payments.x402 import (
    PaymentError,
    advisor_payment_terms,
    create_payment_session,
    validate_payment_session,
)
from sim.security import limiter

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

payments_bp = Blueprint("payments", __name__)

SESSION_CACHE_KEY = "x402_sessions"


def remember_payment_session(advisor_id: str, session_id: str) -> None:
    cached = dict(session.get(SESSION_CACHE_KEY) or {})
    cached[advisor_id] = session_id
    session[SESSION_CACHE_KEY] = cached


def forget_payment_session(advisor_id: str) -> None:
    cached = dict(session.get(SESSION_CACHE_KEY) or {})
    if cached.pop(advisor_id, None):
        session[SESSION_CACHE_KEY] = cached


def presented_payment_session(advisor_id: str, body: Optional[dict] = None) -> Optional[str]:
    """Session id from the ``X-Payment-Session`` header, the body or the Flask session cache."""
    body = body or {}
    return (
        request.headers.get("X-Payment-Session")
        or body.get("paymentSessionId")
        or (session.get(SESSION_CACHE_KEY) or {}).get(advisor_id)
    )


@payments_bp.route("/sessions", methods=["POST"])
@limiter.limit("30 per minute")
def create_session():
    """
    Record an x402 payment session.

    Expected JSON body:
        - sessionId: ``x402_...`` or ``corbits_...`` identifier
        - walletAddress: Payer wallet
        - signature: Transaction signature / hash
        - amount: Amount paid
        - currency, network, expiresInHours: Optional
        - agentId: Optional advisor the payment unlocks
        - payTo: Optional receiving wallet

    Returns:
        JSON with the stored session
    """
    data = request.get_json(silent=True) or {}
    cfg = current_app.config["APP_CONFIG"]
    session_id = str(data.get("sessionId") or "")
    wallet = str(data.get("walletAddress") or "")

    try:
        payment_session = create_payment_session(cfg, data)
    except PaymentError as e:
        audit_logger.log_payment_event("session.create", session_id, wallet, False, reason=e.message)
        return jsonify({"error": "payment_error", "message": e.message}), e.status_code

    if payment_session["agent_id"]:
        remember_payment_session(payment_session["agent_id"], payment_session["session_id"])

    audit_logger.log_payment_event("session.create", session_id, wallet, True)
    logger.info(f"Stored x402 session {session_id[:16]} for advisor {payment_session['agent_id']}")

    return jsonify({"success": True, "session": payment_session}), 201


@payments_bp.route("/sessions/validate", methods=["POST"])
@limiter.limit("60 per minute")
def validate_session():
    """
    Check whether a payment session is still valid.

    Always answers 200 with ``{"valid": bool}``.
    """
    data = request.get_json(silent=True) or {}
    cfg = current_app.config["APP_CONFIG"]
    session_id = data.get("sessionId")
    wallet_address = data.get("walletAddress")

    advisor_wallet = None
    agent_id = data.get("agentId")
    if agent_id:
        advisor = db_storage.get_advisor(agent_id)
        advisor_wallet = advisor_payment_terms(cfg, advisor)[1] if advisor else None
    elif session_id:
        record = db_storage.get_payment_session(session_id)
        if record and record["agent_id"]:
            advisor = db_storage.get_advisor(record["agent_id"])
            advisor_wallet = advisor_payment_terms(cfg, advisor)[1] if advisor else None

    valid = validate_payment_session(
        session_id, wallet_address=wallet_address, advisor_wallet=advisor_wallet, advisor_id=agent_id
    )
    if not valid and agent_id:
        forget_payment_session(agent_id)

    return jsonify({"valid": valid}), 200
