"""
Authentication Blueprint - Wallet Challenges, Sign-In and Session Tokens

Handles Solana (Phantom / Solflare) signature-based authentication and
exchanges a verified signature for an access token and refresh token.
"""

import logging
import time
from datetime import datetime

from flask import Blueprint, current_app, g, jsonify, request, session

from sim import db_storage
from sim.audit_logger import get_audit_logger
from sim.decorators import require_auth, resolve_current_user
from sim.security import limiter
from sim.tokens import TokenError, generate_refresh_token, issue_access_token
from sim.utils import generate_nonce
from sim.wallet import (
    WalletAuthError,
    abbreviate_address,
    build_sign_in_message,
    build_wallet_deep_links,
    is_valid_solana_address,
    verify_wallet_signature,
)

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

auth_bp = Blueprint("auth", __name__)

# Rate limiting decorators
CHALLENGE_RATE_LIMIT = "20 per minute"
VERIFY_RATE_LIMIT = "10 per minute"

# Flask session keys owned by the wallet sign-in flow
SESSION_KEYS = ("wallet_address", "profile_id", "auth_session_id", "x402_sessions")


def _issue_session(profile, auth_session_id: str, refresh_token: str):
    cfg = current_app.config["APP_CONFIG"]
    access_token = issue_access_token(cfg, profile["id"], {"sid": auth_session_id, "wallet": profile["wallet_address"]})
    audit_logger.log_token_issued(profile["id"], "access_token")
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "Bearer",
        "expires_in": cfg["ACCESS_TOKEN_TTL"],
        "user": profile,
    }


@auth_bp.route("/challenge", methods=["POST"])
@limiter.limit(CHALLENGE_RATE_LIMIT)
def challenge():
    """
    Issue a sign-in challenge for a wallet.

    Expected JSON body:
        - publicKey: Base58 Solana address
        - redirect: Optional path to reopen inside a mobile wallet browser

    Returns:
        JSON with the message to sign, its nonce, expiry and wallet deep links
    """
    data = request.get_json(silent=True) or {}
    public_key = (data.get("publicKey") or "").strip()

    if not is_valid_solana_address(public_key):
        return jsonify({"error": "invalid_public_key", "message": "publicKey must be a base58 Solana address"}), 400

    cfg = current_app.config["APP_CONFIG"]
    ttl = cfg["AUTH_CHALLENGE_TTL"]
    nonce = generate_nonce()
    message = build_sign_in_message(
        public_key, nonce, datetime.utcnow(), cfg["AUTH_DOMAIN"], app_name=cfg.get("APP_NAME", "Sim")
    )
    expires_at = int(time.time()) + ttl

    db_storage.store_wallet_challenge(public_key, {"message": message, "nonce": nonce, "expires_at": expires_at}, ttl)

    base_url = cfg["PUBLIC_BASE_URL"].rstrip("/")
    redirect_path = data.get("redirect") or "/"
    if not str(redirect_path).startswith("/"):
        redirect_path = "/"

    audit_logger.log_event("auth.challenge_issued", wallet=public_key, ip=request.remote_addr)

    return jsonify({
        "message": message,
        "nonce": nonce,
        "expiresAt": expires_at,
        "deepLinks": build_wallet_deep_links(f"{base_url}{redirect_path}", base_url),
    }), 200


@auth_bp.route("/solana", methods=["POST"])
@limiter.limit(VERIFY_RATE_LIMIT)
def solana_sign_in():
    """
    Verify a signed challenge and open a session.

    Expected JSON body:
        - publicKey: Wallet address that signed
        - signature: Base58 ed25519 signature
        - message: Exact challenge text that was signed

    Returns:
        JSON with access token, refresh token and the wallet's profile
    """
    data = request.get_json(silent=True) or {}
    public_key = (data.get("publicKey") or "").strip()
    signature = (data.get("signature") or "").strip()
    message = data.get("message") or ""

    if not public_key or not signature or not message:
        return jsonify({"error": "invalid_request", "message": "Missing required fields"}), 400

    pending = db_storage.get_wallet_challenge(public_key)
    if not pending or pending["message"] != message:
        audit_logger.log_event("auth.verify_failed", reason="unknown_challenge", wallet=public_key, ip=request.remote_addr)
        return jsonify({"error": "invalid_challenge", "message": "Invalid or expired challenge"}), 400

    if pending["expires_at"] < time.time():
        db_storage.delete_wallet_challenge(public_key)
        audit_logger.log_event("auth.verify_failed", reason="challenge_expired", wallet=public_key, ip=request.remote_addr)
        return jsonify({"error": "invalid_challenge", "message": "Challenge expired"}), 400

    try:
        verified = verify_wallet_signature(public_key, message, signature)
    except WalletAuthError as e:
        audit_logger.log_signature_verification(public_key, False)
        return jsonify({"error": "invalid_signature", "message": str(e)}), 400

    audit_logger.log_signature_verification(public_key, verified)
    if not verified:
        audit_logger.log_auth_attempt(public_key, "solana", False, request.remote_addr)
        return jsonify({"error": "invalid_signature", "message": "Invalid signature"}), 401

    # Challenges are single use
    db_storage.delete_wallet_challenge(public_key)

    cfg = current_app.config["APP_CONFIG"]
    profile = db_storage.get_or_create_profile(public_key, abbreviate_address(public_key))
    created = profile.pop("created")

    refresh_token = generate_refresh_token()
    auth_session_id = db_storage.create_auth_session(
        profile["id"],
        refresh_token,
        cfg["REFRESH_TOKEN_TTL"],
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )

    session["wallet_address"] = public_key
    session["profile_id"] = profile["id"]
    session["auth_session_id"] = auth_session_id

    audit_logger.log_auth_attempt(public_key, "solana", True, request.remote_addr)
    audit_logger.log_session_created(auth_session_id, profile["id"])
    logger.info(f"Wallet sign-in: {abbreviate_address(public_key)} (new profile: {created})")

    return jsonify({"success": True, "session": _issue_session(profile, auth_session_id, refresh_token)}), 200


@auth_bp.route("/refresh", methods=["POST"])
@limiter.limit(VERIFY_RATE_LIMIT)
def refresh():
    """Exchange a refresh token for a new access token and rotated refresh token."""
    data = request.get_json(silent=True) or {}
    refresh_token = (data.get("refresh_token") or "").strip()
    if not refresh_token:
        return jsonify({"error": "invalid_request", "message": "refresh_token is required"}), 400

    auth_session = db_storage.get_auth_session_by_refresh_token(refresh_token)
    if not auth_session:
        return jsonify({"error": "invalid_grant", "message": "Refresh token is invalid or expired"}), 401

    profile = db_storage.get_profile(auth_session["profile_id"])
    if not profile:
        return jsonify({"error": "invalid_grant", "message": "Refresh token is invalid or expired"}), 401

    cfg = current_app.config["APP_CONFIG"]
    new_refresh_token = generate_refresh_token()
    db_storage.rotate_refresh_token(auth_session["id"], new_refresh_token, cfg["REFRESH_TOKEN_TTL"])

    return jsonify({"success": True, "session": _issue_session(profile, auth_session["id"], new_refresh_token)}), 200


@auth_bp.route("/logout", methods=["POST"])
def logout():
    """
    End the wallet session.

    Deactivates the server-side session and clears wallet state and cached
    payment-session flags from the Flask session.

    Returns:
        JSON listing the cleared session keys
    """
    data = request.get_json(silent=True) or {}
    auth_session_id = session.get("auth_session_id")

    if not auth_session_id:
        try:
            resolve_current_user()
            auth_session_id = g.get("auth_session_id")
        except TokenError:
            auth_session_id = None

    if not auth_session_id and data.get("refresh_token"):
        auth_session = db_storage.get_auth_session_by_refresh_token(data["refresh_token"])
        auth_session_id = auth_session["id"] if auth_session else None

    if auth_session_id:
        db_storage.deactivate_auth_session(auth_session_id)
        audit_logger.log_session_destroyed(auth_session_id)

    wallet = session.get("wallet_address")
    if wallet:
        audit_logger.log_event("auth.logout", wallet=wallet, ip=request.remote_addr)

    cleared = [key for key in session.keys() if key in SESSION_KEYS]
    session.clear()

    return jsonify({"success": True, "cleared": sorted(cleared)}), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """Profile of the signed-in wallet."""
    return jsonify({"user": g.current_user}), 200
