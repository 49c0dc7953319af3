"""
Application Factory for Sim

Implements the Flask application factory pattern with:
- Blueprint registration
- Security configuration (TLS, headers, rate limiting)
- Database and cache initialization
- Socket.IO live updates
- Comprehensive error handling
"""

import logging
from datetime import timedelta
from typing import Any, Mapping, Optional

from flask import Flask, jsonify, request
from flask_socketio import SocketIO

from sim.audit_logger import get_audit_logger, init_audit_logger
from sim.config import get_config, validate_config
from sim.database import init_all
from sim.security import init_security
from sim.storage import init_storage

logger = logging.getLogger(__name__)


def create_app(config_override: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Create and configure the Flask application using the factory pattern.

    Args:
        config_override: Optional configuration values layered over the
            environment configuration (used by tests)

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    # Load configuration
    cfg = dict(get_config())
    if config_override:
        cfg.update(config_override)
    validate_config(cfg)
    app.config["APP_CONFIG"] = cfg

    # Set Flask secret key (required for sessions)
    app.secret_key = cfg.get("FLASK_SECRET_KEY") or cfg["JWT_SECRET"]
    app.permanent_session_lifetime = timedelta(hours=cfg["SESSION_LIFETIME_HOURS"])
    if cfg.get("FLASK_ENV") == "testing":
        app.config["TESTING"] = True

    # Initialize security middleware (Talisman, rate limiting, CORS, logging)
    init_security(app, cfg)

    # Initialize database and cache connections
    try:
        init_storage()
        init_all(db_url=cfg.get("DATABASE_URL") or None, redis_url=cfg.get("REDIS_URL"))
        init_audit_logger()
        logger.info("Database, cache, and audit logging initialized")
    except Exception as e:
        logger.error(f"Infrastructure initialization failed: {e}")
        raise

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Register before/after request handlers
    register_request_handlers(app)

    # Bind Socket.IO
    create_socketio(app)

    logger.info("Application factory completed successfully")
    return app


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""

    # Wallet sign-in and session tokens
    from sim.blueprints.auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix="/api/auth")

    # Persona directory and edit-code gated edits
    from sim.blueprints.advisors import advisors_bp
    app.register_blueprint(advisors_bp, url_prefix="/api/advisors")

    # Conversations and messages
    from sim.blueprints.chat import chat_bp
    app.register_blueprint(chat_bp, url_prefix="/api")

    # x402 payment sessions
    from sim.blueprints.payments import payments_bp
    app.register_blueprint(payments_bp, url_prefix="/api/payments")

    # Message credits
    from sim.blueprints.credits import credits_bp
    app.register_blueprint(credits_bp, url_prefix="/api/credits")

    # Storefronts and product purchases
    from sim.blueprints.stores import products_bp, stores_bp
    app.register_blueprint(stores_bp, url_prefix="/api/stores")
    app.register_blueprint(products_bp, url_prefix="/api/products")

    # Admin/operations blueprint (health, metrics)
    from sim.blueprints.admin import admin_bp
    app.register_blueprint(admin_bp)

    logger.info("All blueprints registered")


def register_error_handlers(app: Flask) -> None:
    """Register global error handlers."""

    from sim.chat.completion import CompletionError
    from sim.payments.x402 import PaymentError
    from sim.utils import ValidationError
    from sim.wallet import WalletAuthError

    @app.errorhandler(ValidationError)
    def validation_error(e):
        return jsonify(e.to_dict()), 400

    @app.errorhandler(WalletAuthError)
    def wallet_auth_error(e):
        return jsonify({"error": "invalid_signature", "message": str(e)}), 400

    @app.errorhandler(PaymentError)
    def payment_error(e):
        return jsonify({"error": "payment_error", "message": e.message}), e.status_code

    @app.errorhandler(CompletionError)
    def completion_error(e):
        logger.error(f"Completion backend error: {e}")
        return jsonify({"error": "completion_failed", "message": "The advisor could not reply right now"}), 502

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "bad_request", "message": str(e)}), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "forbidden", "message": "Access denied"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "method_not_allowed", "message": str(e)}), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        get_audit_logger().log_rate_limit_exceeded(request.remote_addr, request.path)
        return jsonify({"error": "rate_limit_exceeded", "message": str(e)}), 429

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal server error: {e}", exc_info=True)
        get_audit_logger().log_error(type(e).__name__, str(e), {"path": request.path})
        return jsonify({"error": "internal_error", "message": "An unexpected error occurred"}), 500


def register_request_handlers(app: Flask) -> None:
    """Register before/after request handlers."""

    from sim.blueprints.admin import record_request

    @app.after_request
    def count_request(response):
        """Count the request for the Prometheus exporter."""
        endpoint = request.url_rule.rule if request.url_rule else "unmatched"
        record_request(request.method, endpoint, response.status_code)
        return response

    @app.teardown_appcontext
    def cleanup(error=None):
        """Cleanup resources after request."""
        if error:
            logger.error(f"Request cleanup with error: {error}")
        # Database connections are handled by connection pooling


def create_socketio(app: Flask) -> SocketIO:
    """
    Bind the shared SocketIO instance to the application.

    Args:
        app: Flask application instance

    Returns:
        Configured SocketIO instance
    """
    from sim.realtime import init_socketio

    return init_socketio(app)
