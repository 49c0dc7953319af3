"""Security helpers for configuring Flask in production."""
from __future__ import annotations

import logging
import os
from typing import Any, List, Mapping, Union

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman
from werkzeug.middleware.proxy_fix import ProxyFix

logger = logging.getLogger(__name__)

# Created unbound so blueprints can decorate views at import time.
limiter = Limiter(key_func=get_remote_address)

CORS_ALLOW_HEADERS = ["Authorization", "Content-Type", "X-Edit-Code", "X-Payment-Session", "X-402-Payment"]
CORS_EXPOSE_HEADERS = ["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"]
CORS_METHODS = ["GET", "POST", "PATCH", "DELETE", "OPTIONS"]


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in {"1", "true", "yes", "on"}


def parse_cors_origins(value: Any) -> Union[str, List[str]]:
    """Split a comma-separated ``CORS_ORIGINS`` value; ``*`` anywhere allows every origin."""
    if isinstance(value, (list, tuple)):
        origins = [str(o).strip() for o in value]
    else:
        origins = str(value or "*").split(",")
    origins = [o.strip() for o in origins if o.strip()]
    if not origins or "*" in origins:
        return "*"
    return origins


def init_cors(app: Flask, cfg: Mapping[str, Any]) -> None:
    """Allow browser clients on the configured origins to call the JSON API."""
    CORS(
        app,
        resources={r"/api/*": {"origins": parse_cors_origins(cfg.get("CORS_ORIGINS"))}},
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=CORS_EXPOSE_HEADERS,
        methods=CORS_METHODS,
    )


def configure_logging(cfg: Mapping[str, Any]) -> None:
    """Install the JSON-shaped root handler once and apply ``LOG_LEVEL``."""
    log_level = str(cfg.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, log_level, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if not any(isinstance(handler, logging.StreamHandler) for handler in root_logger.handlers):
        handler = logging.StreamHandler()
        fmt = (
            "{\"level\":\"%(levelname)s\",\"msg\":\"%(message)s\",\"name\":\"%(name)s\",\"path\":\"%(pathname)s\","
            "\"lineno\":%(lineno)d}"
        )
        handler.setFormatter(logging.Formatter(fmt))
        root_logger.addHandler(handler)


def init_security(app: Flask, cfg: Mapping[str, Any]) -> Limiter:
    """Initialise standard security middleware and rate limiting."""

    # Respect reverse proxy headers for TLS detection and client IP extraction.
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)  # type: ignore[assignment]

    default_force_https = str(cfg.get("FLASK_ENV") or os.getenv("FLASK_ENV", "development")).strip().lower() == "production"
    force_https = _as_bool(cfg.get("FORCE_HTTPS"), default_force_https)

    if not force_https and default_force_https:
        logger.warning("FORCE_HTTPS disabled while FLASK_ENV=production - ensure this is intentional before deploying.")
    elif force_https:
        logger.debug("HTTPS enforcement enabled")

    csp = {
        "default-src": "'self'",
        "img-src": "* data:",
        "style-src": "'self' 'unsafe-inline'",
        "script-src": "'self' https://cdnjs.cloudflare.com",
        "connect-src": "'self' wss: ws: https:",
    }
    Talisman(
        app,
        force_https=force_https,
        force_file_save=False,
        content_security_policy=csp,
        session_cookie_secure=_as_bool(cfg.get("SECURE_COOKIES"), force_https),
        session_cookie_samesite="Lax",
        frame_options="DENY",
        referrer_policy="no-referrer",
    )

    app.config["RATELIMIT_ENABLED"] = _as_bool(cfg.get("RATE_LIMIT_ENABLED"), True)
    app.config["RATELIMIT_DEFAULT"] = cfg.get("RATE_LIMIT_DEFAULT") or "200/hour"
    app.config["RATELIMIT_STORAGE_URI"] = cfg.get("REDIS_URL") or "memory://"
    app.config["RATELIMIT_STRATEGY"] = "fixed-window"
    app.config["RATELIMIT_HEADERS_ENABLED"] = True
    limiter.init_app(app)

    init_cors(app, cfg)

    configure_logging(cfg)

    return limiter
