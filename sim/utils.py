"""
Utility functions for Sim

Shared helpers for edit codes, slugs, nonces and input validation.
"""

import math
import re
import secrets
from typing import Any, Dict, Optional

EDIT_CODE_PATTERN = re.compile(r"\d{6}")
SLUG_PATTERN = re.compile(r"[a-z0-9]+(?:-[a-z0-9]+)*")


class ValidationError(Exception):
    """Raised when request input fails validation.

    ``fields`` maps field names to human readable problems.
    """

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.fields = fields or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": "validation_error", "message": self.message}
        if self.fields:
            body["fields"] = self.fields
        return body


def generate_edit_code() -> str:
    """Six-digit code in 100000-999999 shared with a persona's creator."""
    return str(100000 + secrets.randbelow(900000))


def is_valid_edit_code(code: Optional[str]) -> bool:
    """True when ``code`` is exactly six ASCII digits."""
    if not code or not isinstance(code, str):
        return False
    return bool(EDIT_CODE_PATTERN.fullmatch(code.strip()))


def edit_codes_match(expected: str, provided: str) -> bool:
    """Constant-time comparison of edit codes, ignoring surrounding whitespace."""
    return secrets.compare_digest((expected or "").strip(), (provided or "").strip())


def generate_nonce(nbytes: int = 16) -> str:
    """Cryptographically secure hex nonce for sign-in challenges."""
    return secrets.token_hex(nbytes)


def slugify(value: str) -> str:
    """Lower-case, hyphen separated slug for custom persona URLs."""
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value.strip().lower())
    return value.strip("-")


def is_valid_slug(value: str) -> bool:
    return bool(value) and len(value) <= 100 and bool(SLUG_PATTERN.fullmatch(value))


def parse_float(value: Any, field: str) -> float:
    """Parse a numeric field, raising ``ValidationError`` naming it."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", {field: "must be a number"})
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", {field: "must be a number"}) from exc
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number", {field: "must be finite"})
    return number


def clean_str(value: Any, max_length: Optional[int] = None) -> Optional[str]:
    """Strip a string input; empty strings become None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None:
        text = text[:max_length]
    return text
