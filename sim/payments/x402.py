"""x402 (HTTP 402 Payment Required) integration for Sim"""

import json
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Tuple

import requests
from flask import jsonify

from sim import db_storage
from sim.models import utc_now

logger = logging.getLogger(__name__)

X402_VERSION = 1
SESSION_ID_PREFIXES = ("x402_", "corbits_")
MAX_TIMEOUT_SECONDS = 86400
MAX_PAYMENT_AMOUNT = 10000

# Rejections caused by the stored session itself rather than the caller
SESSION_FAULTS = ("missing_proof", "expired")


class PaymentError(Exception):
    """Raised when a payment proof is rejected."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ============================================================================
# Payment requirements
# ============================================================================


def build_payment_requirements(
    cfg: Mapping[str, Any],
    amount: float,
    pay_to: str,
    resource: str,
    description: str,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the x402 requirements document a client pays against.

    Args:
        cfg: Application configuration
        amount: Price in ``X402_ASSET`` units
        pay_to: Receiving wallet address
        resource: URL of the gated resource
        description: Human readable purchase description

    Returns:
        Document with ``x402Version`` and ``accepts``
    """
    return {
        "x402Version": X402_VERSION,
        "accepts": [
            {
                "scheme": "exact",
                "network": cfg.get("X402_NETWORK", "base"),
                "maxAmountRequired": str(amount),
                "resource": resource,
                "description": description,
                "mimeType": "application/json",
                "payTo": pay_to,
                "maxTimeoutSeconds": MAX_TIMEOUT_SECONDS,
                "asset": cfg.get("X402_ASSET", "USDC"),
                "extra": extra or {},
            }
        ],
    }


def advisor_payment_terms(cfg: Mapping[str, Any], advisor: Dict[str, Any]) -> Tuple[float, str]:
    """Price and receiving wallet for a paid advisor, falling back to configured defaults."""
    price = advisor.get("x402_price") or cfg.get("X402_DEFAULT_PRICE", 5.0)
    pay_to = advisor.get("x402_wallet") or cfg.get("DEFAULT_WALLET_ADDRESS", "")
    return float(price), pay_to


def advisor_requirements(cfg: Mapping[str, Any], advisor: Dict[str, Any], resource: str) -> Dict[str, Any]:
    price, pay_to = advisor_payment_terms(cfg, advisor)
    return build_payment_requirements(
        cfg,
        amount=price,
        pay_to=pay_to,
        resource=resource,
        description=f"Chat access to {advisor['name']}",
        extra={"advisorId": advisor["id"], "sessionHours": cfg.get("X402_SESSION_HOURS", 24)},
    )


def payment_required_response(requirements: Dict[str, Any], message: str = "Payment required"):
    """HTTP 402 response carrying the requirements document."""
    body = dict(requirements)
    body["error"] = "payment_required"
    body["message"] = message
    return jsonify(body), 402


# ============================================================================
# Payment sessions
# ============================================================================


def _bounded_str(data: Mapping[str, Any], key: str, min_len: int, max_len: int) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not min_len <= len(value.strip()) <= max_len:
        raise PaymentError(f"{key} must be {min_len}-{max_len} characters")
    return value.strip()


def _bounded_number(data: Mapping[str, Any], key: str, default: Optional[float], maximum: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise PaymentError(f"{key} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise PaymentError(f"{key} must be a number") from exc
    if not 0 < number <= maximum:
        raise PaymentError(f"{key} must be greater than 0 and at most {maximum:g}")
    return number


def parse_session_request(data: Mapping[str, Any], cfg: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate a payment-session submission.

    Raises:
        PaymentError: On any out-of-range field
    """
    session_id = _bounded_str(data, "sessionId", 10, 200)
    wallet_address = _bounded_str(data, "walletAddress", 26, 100)
    signature = _bounded_str(data, "signature", 50, 200)
    amount = _bounded_number(data, "amount", None, MAX_PAYMENT_AMOUNT)

    currency = data.get("currency") or cfg.get("X402_ASSET", "USDC")
    if not isinstance(currency, str) or len(currency) > 10:
        raise PaymentError("currency must be at most 10 characters")

    network = data.get("network") or cfg.get("X402_NETWORK", "base")
    if not isinstance(network, str) or len(network) > 50:
        raise PaymentError("network must be at most 50 characters")

    max_hours = cfg.get("X402_MAX_SESSION_HOURS", 720)
    expires_in_hours = _bounded_number(data, "expiresInHours", cfg.get("X402_SESSION_HOURS", 24), max_hours)

    return {
        "session_id": session_id,
        "wallet_address": wallet_address,
        "signature": signature,
        "amount": amount,
        "currency": currency,
        "network": network,
        "expires_in_hours": expires_in_hours,
        "agent_id": data.get("agentId"),
        "pay_to": data.get("payTo"),
    }


def verify_payment(cfg: Mapping[str, Any], payment: Dict[str, Any]) -> bool:
    """
    Confirm a payment with the configured backend.

    The ``stub`` backend accepts every well-formed proof; ``facilitator``
    asks an x402 facilitator service.
    """
    backend = str(cfg.get("X402_BACKEND", "stub")).lower()
    if backend != "facilitator":
        return True

    base_url = str(cfg.get("X402_FACILITATOR_URL") or "").rstrip("/")
    if not base_url:
        raise PaymentError("X402_FACILITATOR_URL is not configured", status_code=503)

    payload = {
        "x402Version": X402_VERSION,
        "network": payment["network"],
        "payer": payment["wallet_address"],
        "payTo": payment.get("pay_to"),
        "amount": str(payment["amount"]),
        "asset": payment["currency"],
        "signature": payment["signature"],
    }
    try:
        resp = requests.post(f"{base_url}/verify", json=payload, timeout=10)
    except requests.RequestException as exc:
        logger.error(f"x402 facilitator unreachable: {exc}")
        raise PaymentError("Payment verification unavailable", status_code=502) from exc

    if resp.status_code >= 300:
        logger.warning(f"x402 facilitator rejected payment: {resp.status_code} {resp.text}")
        return False
    try:
        result = resp.json()
    except ValueError as exc:
        logger.error(f"x402 facilitator returned a non-JSON body: {resp.text[:200]}")
        raise PaymentError("Payment verification unavailable", status_code=502) from exc
    return isinstance(result, dict) and bool(result.get("isValid"))


def create_payment_session(cfg: Mapping[str, Any], data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate, verify and persist a payment session.

    Raises:
        PaymentError: On invalid input, insufficient amount, duplicate
            session id or a failed verification
    """
    payment = parse_session_request(data, cfg)

    if not payment["session_id"].startswith(SESSION_ID_PREFIXES):
        raise PaymentError("sessionId must start with x402_ or corbits_")

    if payment["agent_id"]:
        advisor = db_storage.get_advisor(payment["agent_id"])
        if not advisor:
            raise PaymentError("Advisor not found", status_code=404)
        price, pay_to = advisor_payment_terms(cfg, advisor)
        if payment["amount"] < price:
            raise PaymentError(f"Amount {payment['amount']:g} is below the advisor price {price:g}")
        if payment["pay_to"] and pay_to and payment["pay_to"].lower() != pay_to.lower():
            raise PaymentError("payTo does not match the advisor wallet")
        payment["pay_to"] = payment["pay_to"] or pay_to
        payment["agent_id"] = advisor["id"]

    if db_storage.payment_session_exists(payment["session_id"]):
        raise PaymentError("Payment session already exists", status_code=409)

    if not verify_payment(cfg, payment):
        raise PaymentError("Payment could not be verified", status_code=402)

    payment["expires_at"] = utc_now() + timedelta(hours=payment.pop("expires_in_hours"))
    payment["provider"] = "corbits" if payment["session_id"].startswith("corbits_") else "x402"
    return db_storage.store_payment_session(payment)


def validate_payment_session(
    session_id: Optional[str],
    wallet_address: Optional[str] = None,
    advisor_wallet: Optional[str] = None,
    advisor_id: Optional[str] = None,
) -> bool:
    """
    Check a stored payment session.

    A session is valid when its id carries an x402 prefix, it holds a
    payment proof, it is active and unexpired, and its pay-to address
    matches ``advisor_wallet`` (case-insensitive). Sessions without a proof
    or past their expiry are deactivated; a mismatch with the caller only
    fails the check.
    """
    if not isinstance(session_id, str) or not session_id.startswith(SESSION_ID_PREFIXES):
        return False

    record = db_storage.get_payment_session(session_id)
    if not record:
        return False

    reason = None
    if not record["is_active"]:
        reason = "inactive"
    elif not record["signature"]:
        reason = "missing_proof"
    elif datetime.fromisoformat(record["expires_at"]) <= utc_now():
        reason = "expired"
    elif advisor_wallet and (record["pay_to"] or "").lower() != advisor_wallet.lower():
        reason = "wallet_mismatch"
    elif wallet_address and record["wallet_address"].lower() != wallet_address.lower():
        reason = "payer_mismatch"
    elif advisor_id and record["agent_id"] and record["agent_id"] != advisor_id:
        reason = "advisor_mismatch"

    if reason:
        logger.info(f"Payment session {session_id} rejected: {reason}")
        if reason in SESSION_FAULTS:
            db_storage.deactivate_payment_session(session_id)
        return False

    return True


# ============================================================================
# Product purchases
# ============================================================================


def parse_payment_header(raw_header: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Decode the ``X-402-Payment`` header.

    Returns:
        None when the header is absent

    Raises:
        PaymentError: If the header is not a JSON object
    """
    if not raw_header:
        return None
    try:
        proof = json.loads(raw_header)
    except ValueError as exc:
        raise PaymentError("Invalid X-402-Payment header") from exc
    if not isinstance(proof, dict):
        raise PaymentError("Invalid X-402-Payment header")
    return proof


def check_purchase_proof(cfg: Mapping[str, Any], proof: Dict[str, Any], price: float, pay_to: str) -> str:
    """
    Validate a purchase proof against a product's price and store wallet.

    Returns:
        The transaction hash

    Raises:
        PaymentError: 400 for a wrong network, amount or recipient and
            409 for an already recorded transaction
    """
    tx_hash = proof.get("transactionHash")
    if not tx_hash or not isinstance(tx_hash, str):
        raise PaymentError("transactionHash is required")
    if not proof.get("from"):
        raise PaymentError("Payer address (from) is required")

    expected_network = cfg.get("X402_NETWORK", "base")
    if str(proof.get("network") or "").lower() != expected_network.lower():
        raise PaymentError(f"Payment must be made on {expected_network}")

    try:
        amount = float(proof.get("amount"))
    except (TypeError, ValueError) as exc:
        raise PaymentError("Invalid payment amount") from exc
    if not math.isfinite(amount):
        raise PaymentError("Invalid payment amount")
    if amount < price:
        raise PaymentError(f"Insufficient payment: {amount:g} < {price:g}")

    if not pay_to or str(proof.get("to") or "").lower() != pay_to.lower():
        raise PaymentError("Payment recipient does not match store wallet")

    if db_storage.purchase_exists(tx_hash):
        raise PaymentError("Transaction already used", status_code=409)

    return tx_hash
