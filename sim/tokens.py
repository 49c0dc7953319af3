"""Helpers for issuing and verifying signed access tokens."""

from __future__ import annotations

import secrets
import time
from typing import Any, Dict, Mapping, Optional

import jwt


class TokenError(Exception):
    """Raised when an access token cannot be verified."""


def _resolve_ttl(cfg: Mapping[str, Any]) -> int:
    try:
        return int(cfg.get("ACCESS_TOKEN_TTL") or 3600)
    except (TypeError, ValueError):
        return 3600


def _signing_key(cfg: Mapping[str, Any]) -> str:
    secret = cfg.get("JWT_SECRET", "dev-secret-CHANGE-ME-IN-PRODUCTION")
    return secret.decode() if isinstance(secret, (bytes, bytearray)) else str(secret)


def issue_access_token(cfg: Mapping[str, Any], sub: str, claims: Optional[Dict[str, Any]] = None) -> str:
    """Issue an HS256 access token for a profile id."""
    now = int(time.time())

    payload: Dict[str, Any] = {
        "iss": cfg.get("JWT_ISSUER") or "http://localhost:5000",
        "aud": cfg.get("JWT_AUDIENCE") or "sim",
        "sub": sub,
        "iat": now,
        "exp": now + _resolve_ttl(cfg),
    }
    if claims:
        payload.update(claims)

    alg = str(cfg.get("JWT_ALGORITHM") or "HS256").upper()
    return jwt.encode(payload, _signing_key(cfg), algorithm=alg)


def decode_access_token(cfg: Mapping[str, Any], token: str) -> Dict[str, Any]:
    """Verify signature, expiry, issuer and audience of an access token."""
    alg = str(cfg.get("JWT_ALGORITHM") or "HS256").upper()
    try:
        return jwt.decode(
            token,
            _signing_key(cfg),
            algorithms=[alg],
            audience=cfg.get("JWT_AUDIENCE") or "sim",
            issuer=cfg.get("JWT_ISSUER") or "http://localhost:5000",
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError(f"Invalid token: {exc}") from exc


def generate_refresh_token() -> str:
    """Opaque refresh token stored server-side."""
    return secrets.token_urlsafe(48)


__all__ = ["TokenError", "decode_access_token", "generate_refresh_token", "issue_access_token"]
