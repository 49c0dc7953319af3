"""
Advisors Blueprint - Persona Directory

Create, browse and edit AI personas. Edits and deletion are gated by the
six-digit edit code handed to the creator.
"""

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, g, jsonify, request

from sim import db_storage
from sim.audit_logger import get_audit_logger
from sim.decorators import optional_auth, require_auth
from sim.payments.x402 import MAX_PAYMENT_AMOUNT, advisor_requirements
from sim.security import limiter
from sim.utils import (
    ValidationError,
    clean_str,
    edit_codes_match,
    generate_edit_code,
    is_valid_edit_code,
    is_valid_slug,
    parse_float,
    slugify,
)

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

advisors_bp = Blueprint("advisors", __name__)

EDIT_CODE_RATE_LIMIT = "10 per minute"
MAX_PAGE_SIZE = 100

TEXT_FIELDS = {
    "name": 200,
    "title": 200,
    "description": 2000,
    "prompt": 20000,
    "category": 100,
    "avatar_url": 2000,
    "welcome_message": 2000,
}


def default_prompt(name: str, title: Optional[str], description: Optional[str]) -> str:
    """System prompt used when the creator does not write one."""
    intro = f"You are {name}, {title}." if title else f"You are {name}."
    parts = [intro]
    if description:
        parts.append(description)
    parts.append("Stay in character, speak in the first person and keep answers helpful and concise.")
    return " ".join(parts)


def _as_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValidationError(f"{field} must be a boolean", {field: "must be a boolean"})


def _parse_advisor_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate submitted persona fields; only keys present in ``data`` are returned when ``partial``."""
    fields: Dict[str, Any] = {}

    for key, max_length in TEXT_FIELDS.items():
        if key in data:
            fields[key] = clean_str(data[key], max_length)

    if not partial or "name" in data:
        if not fields.get("name"):
            raise ValidationError("Name is required", {"name": "required"})

    for key in ("is_public", "x402_enabled"):
        if key in data:
            fields[key] = _as_bool(data[key], key)

    if "custom_url" in data:
        slug = clean_str(data["custom_url"])
        if slug is not None:
            slug = slugify(slug)
            if not is_valid_slug(slug):
                raise ValidationError("custom_url must contain letters or digits", {"custom_url": "invalid"})
        fields["custom_url"] = slug

    if "x402_price" in data and data["x402_price"] is not None:
        fields["x402_price"] = parse_float(data["x402_price"], "x402_price")

    if "x402_wallet" in data:
        fields["x402_wallet"] = clean_str(data["x402_wallet"], 100)

    return fields


def _check_x402(settings: Dict[str, Any]) -> None:
    if not settings.get("x402_enabled"):
        return
    price = settings.get("x402_price")
    if price is None or not 0 < price <= MAX_PAYMENT_AMOUNT:
        raise ValidationError(
            f"x402_price must be greater than 0 and at most {MAX_PAYMENT_AMOUNT}",
            {"x402_price": "out of range"},
        )
    if not settings.get("x402_wallet"):
        raise ValidationError("x402_wallet is required when payments are enabled", {"x402_wallet": "required"})


def _submitted_edit_code(data: Dict[str, Any]) -> str:
    return str(data.get("edit_code") or data.get("editCode") or request.headers.get("X-Edit-Code") or "").strip()


def _edit_code_error(advisor_id: str, data: Dict[str, Any]):
    """Response for a malformed (400) or wrong (403) edit code, or None if it matches."""
    provided = _submitted_edit_code(data)

    if not is_valid_edit_code(provided):
        audit_logger.log_edit_code_failure(advisor_id, "malformed", request.remote_addr)
        return jsonify({"error": "invalid_edit_code", "message": "Edit code must be exactly 6 digits"}), 400

    expected = db_storage.get_advisor_edit_code(advisor_id)
    if not expected or not edit_codes_match(expected, provided):
        audit_logger.log_edit_code_failure(advisor_id, "mismatch", request.remote_addr)
        return jsonify({"error": "forbidden", "message": "Edit code does not match"}), 403

    return None


@advisors_bp.route("", methods=["POST"])
@optional_auth
@limiter.limit("30 per hour")
def create_advisor():
    """
    Create a persona.

    Returns:
        JSON with the advisor and its edit code (shown only once)
    """
    data = request.get_json(silent=True) or {}

    try:
        fields = _parse_advisor_fields(data)
        _check_x402(fields)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    if fields.get("custom_url") and db_storage.custom_url_taken(fields["custom_url"]):
        return jsonify({"error": "conflict", "message": "custom_url is already taken"}), 409

    if not fields.get("prompt"):
        fields["prompt"] = default_prompt(fields["name"], fields.get("title"), fields.get("description"))

    user = g.current_user
    fields["user_id"] = user["id"] if user else None
    fields["edit_code"] = generate_edit_code()

    advisor = db_storage.create_advisor(fields)
    edit_code = advisor.pop("edit_code")

    audit_logger.log_event(
        "advisor.created",
        advisor_id=advisor["id"],
        user_id=fields["user_id"],
        x402_enabled=advisor["x402_enabled"],
        ip=request.remote_addr,
    )
    logger.info(f"Created advisor {advisor['id']} ({advisor['name']})")

    return jsonify({"advisor": advisor, "edit_code": edit_code}), 201


@advisors_bp.route("", methods=["GET"])
def list_advisors():
    """Public directory with optional ``category``, ``q``, ``limit`` and ``offset`` filters."""
    try:
        limit = min(max(int(request.args.get("limit", 50)), 1), MAX_PAGE_SIZE)
        offset = max(int(request.args.get("offset", 0)), 0)
    except ValueError:
        return jsonify({"error": "bad_request", "message": "limit and offset must be integers"}), 400

    advisors = db_storage.list_advisors(
        category=clean_str(request.args.get("category")),
        search=clean_str(request.args.get("q"), 200),
        limit=limit,
        offset=offset,
    )
    return jsonify({"advisors": advisors, "limit": limit, "offset": offset}), 200


@advisors_bp.route("/mine", methods=["GET"])
@require_auth
def my_advisors():
    return jsonify({"advisors": db_storage.list_advisors_for_owner(g.current_user["id"])}), 200


@advisors_bp.route("/<advisor_ref>", methods=["GET"])
def get_advisor(advisor_ref):
    """Look up an advisor by id or custom URL."""
    advisor = db_storage.get_advisor(advisor_ref)
    if not advisor or not advisor["is_active"]:
        return jsonify({"error": "not_found", "message": "Advisor not found"}), 404
    return jsonify({"advisor": advisor}), 200


@advisors_bp.route("/<advisor_id>/x402", methods=["GET"])
def payment_requirements(advisor_id):
    """x402 requirements a client must satisfy to chat with a paid advisor."""
    advisor = db_storage.get_advisor(advisor_id)
    if not advisor:
        return jsonify({"error": "not_found", "message": "Advisor not found"}), 404
    if not advisor["x402_enabled"]:
        return jsonify({"error": "not_found", "message": "Advisor does not require payment"}), 404

    cfg = current_app.config["APP_CONFIG"]
    resource = f"{cfg['PUBLIC_BASE_URL'].rstrip('/')}/api/advisors/{advisor['id']}"
    return jsonify(advisor_requirements(cfg, advisor, resource)), 200


@advisors_bp.route("/<advisor_id>/verify-edit-code", methods=["POST"])
@limiter.limit(EDIT_CODE_RATE_LIMIT)
def verify_edit_code(advisor_id):
    """Check an edit code without changing anything."""
    advisor = db_storage.get_advisor(advisor_id)
    if not advisor:
        return jsonify({"error": "not_found", "message": "Advisor not found"}), 404

    advisor_id = advisor["id"]
    error = _edit_code_error(advisor_id, request.get_json(silent=True) or {})
    if error:
        return error
    return jsonify({"valid": True}), 200


@advisors_bp.route("/<advisor_id>", methods=["PATCH"])
@limiter.limit(EDIT_CODE_RATE_LIMIT)
def update_advisor(advisor_id):
    """
    Edit a persona.

    Requires the edit code in the ``edit_code`` body field or the
    ``X-Edit-Code`` header.
    """
    current = db_storage.get_advisor(advisor_id)
    if not current:
        return jsonify({"error": "not_found", "message": "Advisor not found"}), 404

    advisor_id = current["id"]
    data = request.get_json(silent=True) or {}
    error = _edit_code_error(advisor_id, data)
    if error:
        return error

    try:
        changes = _parse_advisor_fields(data, partial=True)
        merged = {**current, **changes}
        _check_x402(merged)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    if changes.get("custom_url") and db_storage.custom_url_taken(changes["custom_url"], exclude_id=advisor_id):
        return jsonify({"error": "conflict", "message": "custom_url is already taken"}), 409

    if "prompt" in changes and not changes["prompt"]:
        changes["prompt"] = default_prompt(merged["name"], merged.get("title"), merged.get("description"))

    advisor = db_storage.update_advisor(advisor_id, changes)
    audit_logger.log_event("advisor.updated", advisor_id=advisor_id, fields=sorted(changes), ip=request.remote_addr)

    return jsonify({"advisor": advisor}), 200


@advisors_bp.route("/<advisor_id>", methods=["DELETE"])
@limiter.limit(EDIT_CODE_RATE_LIMIT)
def delete_advisor(advisor_id):
    """Delete a persona along with its conversations and messages."""
    advisor = db_storage.get_advisor(advisor_id)
    if not advisor:
        return jsonify({"error": "not_found", "message": "Advisor not found"}), 404

    advisor_id = advisor["id"]
    error = _edit_code_error(advisor_id, request.get_json(silent=True) or {})
    if error:
        return error

    db_storage.delete_advisor(advisor_id)
    audit_logger.log_event("advisor.deleted", advisor_id=advisor_id, ip=request.remote_addr)

    return jsonify({"success": True}), 200
