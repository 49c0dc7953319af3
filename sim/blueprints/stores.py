"""
Stores Blueprint - Creator Storefronts and x402 Product Purchases
"""

import logging
from typing import Any, Dict

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError

from sim import db_storage
from sim.audit_logger import get_audit_logger
from sim.chat.completion import CompletionError, build_store_prompt, generate_reply
from sim.decorators import require_auth
from sim.payments.x402 import (
    PaymentError,
    build_payment_requirements,
    check_purchase_proof,
    parse_payment_header,
    payment_required_response,
)
from sim.security import limiter
from sim.utils import ValidationError, clean_str, parse_float

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

stores_bp = Blueprint("stores", __name__)
products_bp = Blueprint("products", __name__)

STORE_FIELDS = {
    "store_name": 100,
    "store_description": 2000,
    "x_username": 100,
    "avatar_url": 2000,
    "greeting_message": 2000,
    "crypto_wallet": 100,
}

MAX_CHAT_MESSAGE_LENGTH = 10000

PRODUCT_TEXT_FIELDS = {
    "title": 200,
    "description": 5000,
    "delivery_info": 5000,
}


def _parse_store_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    fields = {key: clean_str(data[key], max_length) for key, max_length in STORE_FIELDS.items() if key in data}
    if (not partial or "store_name" in data) and not fields.get("store_name"):
        raise ValidationError("store_name is required", {"store_name": "required"})
    return fields


def _parse_product_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        key: clean_str(data[key], max_length) for key, max_length in PRODUCT_TEXT_FIELDS.items() if key in data
    }
    if (not partial or "title" in data) and not fields.get("title"):
        raise ValidationError("title is required", {"title": "required"})

    if not partial or "price" in data:
        price = parse_float(data.get("price", 0), "price")
        if price < 0:
            raise ValidationError("price must not be negative", {"price": "must be >= 0"})
        fields["price"] = price

    if "currency" in data:
        currency = clean_str(data["currency"])
        if not currency or len(currency) > 10:
            raise ValidationError("currency must be 1-10 characters", {"currency": "invalid"})
        fields["currency"] = currency

    if "image_urls" in data:
        urls = data["image_urls"] or []
        if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
            raise ValidationError("image_urls must be a list of strings", {"image_urls": "invalid"})
        fields["image_urls"] = urls

    if "is_active" in data:
        fields["is_active"] = bool(data["is_active"])

    return fields


def _owned_store(store_id: str):
    """(store, error_response) for the caller's own store."""
    store = db_storage.get_store(store_id)
    if not store:
        return None, (jsonify({"error": "not_found", "message": "Store not found"}), 404)
    if store["user_id"] != g.current_user["id"]:
        return None, (jsonify({"error": "forbidden", "message": "Access denied"}), 403)
    return store, None


def _public_product(product: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(product)
    data.pop("delivery_info", None)
    return data


# ============================================================================
# Stores
# ============================================================================


@stores_bp.route("", methods=["POST"])
@require_auth
def create_store():
    """Create the caller's store; each profile may own one."""
    data = request.get_json(silent=True) or {}
    try:
        fields = _parse_store_fields(data)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    if db_storage.get_store_for_owner(g.current_user["id"]):
        return jsonify({"error": "conflict", "message": "You already have a store"}), 409

    store = db_storage.create_store(g.current_user["id"], fields)
    audit_logger.log_event("store.created", store_id=store["id"], user_id=g.current_user["id"], ip=request.remote_addr)

    return jsonify({"store": store}), 201


@stores_bp.route("/mine", methods=["GET"])
@require_auth
def my_store():
    store = db_storage.get_store_for_owner(g.current_user["id"])
    if not store:
        return jsonify({"error": "not_found", "message": "Store not found"}), 404
    store["products"] = db_storage.list_products(store["id"], active_only=False)
    return jsonify({"store": store}), 200


@stores_bp.route("/<store_id>", methods=["GET"])
def get_store(store_id):
    """Public storefront with its active products."""
    store = db_storage.get_store(store_id)
    if not store or not store["is_active"]:
        return jsonify({"error": "not_found", "message": "Store not found"}), 404
    store["products"] = [_public_product(p) for p in db_storage.list_products(store_id)]
    return jsonify({"store": store}), 200


@stores_bp.route("/<store_id>", methods=["PATCH"])
@require_auth
def update_store(store_id):
    store, error = _owned_store(store_id)
    if error:
        return error

    try:
        changes = _parse_store_fields(request.get_json(silent=True) or {}, partial=True)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    return jsonify({"store": db_storage.update_store(store["id"], changes)}), 200


@stores_bp.route("/<store_id>/chat", methods=["POST"])
@limiter.limit("30 per minute")
def store_chat(store_id):
    """
    Ask the store's shopping assistant about its catalog.

    Expected JSON body:
        - message: Customer question
        - conversationHistory: Optional prior turns as ``{role, content}``

    Returns:
        JSON with the assistant's reply; 502 when the reply fails
    """
    data = request.get_json(silent=True) or {}
    message = clean_str(data.get("message"))
    if not message:
        return jsonify({"error": "bad_request", "message": "Message is required"}), 400
    if len(message) > MAX_CHAT_MESSAGE_LENGTH:
        return jsonify({
            "error": "bad_request",
            "message": f"Message exceeds {MAX_CHAT_MESSAGE_LENGTH} characters",
        }), 400

    history = data.get("conversationHistory") or []
    if not isinstance(history, list):
        return jsonify({"error": "bad_request", "message": "conversationHistory must be a list"}), 400

    store = db_storage.get_store(store_id)
    if not store or not store["is_active"]:
        return jsonify({"error": "not_found", "message": "Store not found"}), 404

    cfg = current_app.config["APP_CONFIG"]
    turns = [
        {"role": turn["role"], "content": turn["content"]}
        for turn in history
        if isinstance(turn, dict) and turn.get("role") in ("user", "assistant") and isinstance(turn.get("content"), str)
    ]
    keep = max(cfg["COMPLETION_HISTORY_LIMIT"] - 1, 0)
    turns = turns[-keep:] if keep else []
    turns.append({"role": "user", "content": message})

    assistant = {
        "id": store["id"],
        "name": store["store_name"],
        "prompt": build_store_prompt(store, db_storage.list_products(store["id"])),
    }
    try:
        reply = generate_reply(cfg, assistant, turns)
    except CompletionError as e:
        logger.error(f"Store assistant failed for store {store_id}: {e}")
        return jsonify({"error": "completion_failed", "message": "The store assistant could not reply right now"}), 502

    return jsonify({"reply": reply, "storeId": store["id"]}), 200


@stores_bp.route("/<store_id>/products", methods=["POST"])
@require_auth
def create_product(store_id):
    store, error = _owned_store(store_id)
    if error:
        return error

    try:
        fields = _parse_product_fields(request.get_json(silent=True) or {})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    product = db_storage.create_product(store["id"], fields)
    return jsonify({"product": product}), 201


# ============================================================================
# Products
# ============================================================================


def _owned_product(product_id: str):
    product = db_storage.get_product(product_id)
    if not product:
        return None, (jsonify({"error": "not_found", "message": "Product not found"}), 404)
    _, error = _owned_store(product["store_id"])
    if error:
        return None, error
    return product, None


@products_bp.route("/<product_id>", methods=["GET"])
def get_product(product_id):
    product = db_storage.get_product(product_id)
    if not product or not product["is_active"]:
        return jsonify({"error": "not_found", "message": "Product not found"}), 404
    return jsonify({"product": _public_product(product)}), 200


@products_bp.route("/<product_id>", methods=["PATCH"])
@require_auth
def update_product(product_id):
    product, error = _owned_product(product_id)
    if error:
        return error

    try:
        changes = _parse_product_fields(request.get_json(silent=True) or {}, partial=True)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    return jsonify({"product": db_storage.update_product(product["id"], changes)}), 200


@products_bp.route("/<product_id>", methods=["DELETE"])
@require_auth
def delete_product(product_id):
    product, error = _owned_product(product_id)
    if error:
        return error

    db_storage.delete_product(product["id"])
    return jsonify({"success": True}), 200


@products_bp.route("/<product_id>/purchase", methods=["POST"])
@limiter.limit("20 per minute")
def purchase_product(product_id):
    """
    Buy a product with an x402 payment.

    The payment proof is sent as JSON in the ``X-402-Payment`` header:
    ``{transactionHash, network, amount, currency, from, to, timestamp}``.

    Returns:
        402 with requirements when no proof is sent, 400 for a rejected
        proof, 409 for a reused transaction, 201 with delivery info otherwise
    """
    product = db_storage.get_product(product_id)
    if not product or not product["is_active"]:
        return jsonify({"error": "not_found", "message": "Product not found"}), 404

    store = db_storage.get_store(product["store_id"])
    if not store or not store["is_active"]:
        return jsonify({"error": "not_found", "message": "Store not found"}), 404

    cfg = current_app.config["APP_CONFIG"]
    pay_to = store["crypto_wallet"] or cfg.get("DEFAULT_WALLET_ADDRESS", "")

    try:
        proof = parse_payment_header(request.headers.get("X-402-Payment"))
    except PaymentError as e:
        return jsonify({"error": "invalid_payment", "message": e.message}), e.status_code

    if proof is None:
        requirements = build_payment_requirements(
            cfg,
            amount=product["price"],
            pay_to=pay_to,
            resource=f"{cfg['PUBLIC_BASE_URL'].rstrip('/')}/api/products/{product_id}/purchase",
            description=product["title"],
            extra={"productId": product_id, "storeId": store["id"]},
        )
        return payment_required_response(requirements)

    try:
        tx_hash = check_purchase_proof(cfg, proof, product["price"], pay_to)
    except PaymentError as e:
        audit_logger.log_payment_event(
            "purchase", str(proof.get("transactionHash") or ""), str(proof.get("from") or ""), False, reason=e.message
        )
        return jsonify({"error": "invalid_payment", "message": e.message}), e.status_code

    data = request.get_json(silent=True) or {}
    try:
        purchase_id = db_storage.record_purchase({
            "product_id": product_id,
            "store_id": store["id"],
            "buyer_wallet": proof.get("from"),
            "amount_paid": float(proof["amount"]),
            "transaction_signature": tx_hash,
            "payment_network": proof.get("network"),
            "buyer_info": data.get("buyerInfo"),
            "status": "completed",
            "payment_method": "x402",
        })
    except IntegrityError:
        logger.warning(f"Transaction {tx_hash} was recorded by a concurrent purchase")
        return jsonify({"error": "invalid_payment", "message": "Transaction already used"}), 409

    audit_logger.log_payment_event("purchase", tx_hash, str(proof.get("from") or ""), True)
    logger.info(f"Recorded purchase {purchase_id} of product {product_id}")

    return jsonify({
        "success": True,
        "purchaseId": purchase_id,
        "transactionHash": tx_hash,
        "deliveryInfo": product["delivery_info"],
    }), 201
