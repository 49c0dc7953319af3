"""Configuration management for Sim.

Centralises environment variable loading and validation logic while keeping the
public API intentionally simple.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional, TypedDict

_TRUTHY_VALUES = {"1", "true", "yes", "on"}

_DEV_JWT_SECRET = "dev-secret-CHANGE-ME-IN-PRODUCTION"


class AppConfig(TypedDict):
    """Typed representation of the application's configuration."""

    FLASK_SECRET_KEY: Optional[str]
    FLASK_ENV: str
    FLASK_DEBUG: bool
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_ISSUER: str
    JWT_AUDIENCE: str
    ACCESS_TOKEN_TTL: int
    REFRESH_TOKEN_TTL: int
    AUTH_DOMAIN: str
    AUTH_CHALLENGE_TTL: int
    PUBLIC_BASE_URL: str
    X402_NETWORK: str
    X402_ASSET: str
    X402_DEFAULT_PRICE: float
    X402_SESSION_HOURS: int
    X402_MAX_SESSION_HOURS: int
    X402_BACKEND: str
    X402_FACILITATOR_URL: str
    DEFAULT_WALLET_ADDRESS: str
    CREDIT_RESET_DAYS: int
    PLAN_LIMITS: Dict[str, int]
    COMPLETION_BACKEND: str
    COMPLETION_API_URL: str
    COMPLETION_API_KEY: Optional[str]
    COMPLETION_MODEL: str
    COMPLETION_HISTORY_LIMIT: int
    COMPLETION_TIMEOUT: int
    CORS_ORIGINS: str
    SOCKETIO_CORS: str
    RATE_LIMIT_ENABLED: bool
    RATE_LIMIT_DEFAULT: str
    FORCE_HTTPS: bool
    SECURE_COOKIES: bool
    LOG_LEVEL: str
    DATABASE_URL: Optional[str]
    DB_HOST: str
    DB_PORT: int
    DB_USER: str
    DB_PASSWORD: Optional[str]
    DB_NAME: str
    REDIS_URL: Optional[str]
    SESSION_LIFETIME_HOURS: int
    APP_NAME: str
    APP_VERSION: str
    APP_HOST: str
    APP_PORT: int


def _get_env_bool(name: str, default: bool) -> bool:
    """Return an environment variable as a boolean."""

    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUTHY_VALUES


def _get_env_int(name: str, default: int) -> int:
    """Return an environment variable as an integer, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer (got {raw_value!r})") from exc


def _get_env_float(name: str, default: float) -> float:
    """Return an environment variable as a float, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return float(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number (got {raw_value!r})") from exc


def get_config() -> AppConfig:
    """Load application configuration from environment variables."""

    flask_env = os.getenv("FLASK_ENV", "development")

    return {
        # Flask Configuration
        "FLASK_SECRET_KEY": os.getenv("FLASK_SECRET_KEY"),
        "FLASK_ENV": flask_env,
        "FLASK_DEBUG": _get_env_bool("FLASK_DEBUG", False),
        # JWT Configuration
        "JWT_SECRET": os.getenv("JWT_SECRET", _DEV_JWT_SECRET),
        "JWT_ALGORITHM": os.getenv("JWT_ALGORITHM", "HS256"),
        "JWT_ISSUER": os.getenv("JWT_ISSUER") or os.getenv("PUBLIC_BASE_URL") or "http://localhost:5000",
        "JWT_AUDIENCE": os.getenv("JWT_AUDIENCE", "sim"),
        "ACCESS_TOKEN_TTL": _get_env_int("ACCESS_TOKEN_TTL", 3600),
        "REFRESH_TOKEN_TTL": _get_env_int("REFRESH_TOKEN_TTL", 30 * 86400),
        # Wallet sign-in
        "AUTH_DOMAIN": os.getenv("AUTH_DOMAIN", "localhost"),
        "AUTH_CHALLENGE_TTL": _get_env_int("AUTH_CHALLENGE_TTL", 300),
        "PUBLIC_BASE_URL": os.getenv("PUBLIC_BASE_URL", "http://localhost:5000"),
        # x402 payments
        "X402_NETWORK": os.getenv("X402_NETWORK", "base"),
        "X402_ASSET": os.getenv("X402_ASSET", "USDC"),
        "X402_DEFAULT_PRICE": _get_env_float("X402_DEFAULT_PRICE", 5.0),
        "X402_SESSION_HOURS": _get_env_int("X402_SESSION_HOURS", 24),
        "X402_MAX_SESSION_HOURS": _get_env_int("X402_MAX_SESSION_HOURS", 720),
        "X402_BACKEND": os.getenv("X402_BACKEND", "stub"),
        "X402_FACILITATOR_URL": os.getenv("X402_FACILITATOR_URL", ""),
        "DEFAULT_WALLET_ADDRESS": os.getenv("DEFAULT_WALLET_ADDRESS", ""),
        # Message credits
        "CREDIT_RESET_DAYS": _get_env_int("CREDIT_RESET_DAYS", 30),
        "PLAN_LIMITS": {
            "free": _get_env_int("PLAN_LIMIT_FREE", 30),
            "plus": _get_env_int("PLAN_LIMIT_PLUS", 100),
            "pro": _get_env_int("PLAN_LIMIT_PRO", 1000),
        },
        # Chat completion
        "COMPLETION_BACKEND": os.getenv("COMPLETION_BACKEND", "stub"),
        "COMPLETION_API_URL": os.getenv("COMPLETION_API_URL", "https://openrouter.ai/api/v1/chat/completions"),
        "COMPLETION_API_KEY": os.getenv("COMPLETION_API_KEY"),
        "COMPLETION_MODEL": os.getenv("COMPLETION_MODEL", "openrouter/auto"),
        "COMPLETION_HISTORY_LIMIT": _get_env_int("COMPLETION_HISTORY_LIMIT", 20),
        "COMPLETION_TIMEOUT": _get_env_int("COMPLETION_TIMEOUT", 30),
        # CORS Configuration
        "CORS_ORIGINS": os.getenv("CORS_ORIGINS", "*"),
        "SOCKETIO_CORS": os.getenv("SOCKETIO_CORS", "*"),
        # Rate Limiting
        "RATE_LIMIT_ENABLED": _get_env_bool("RATE_LIMIT_ENABLED", True),
        "RATE_LIMIT_DEFAULT": os.getenv("RATE_LIMIT_DEFAULT", "200/hour"),
        "FORCE_HTTPS": _get_env_bool("FORCE_HTTPS", flask_env.lower() == "production"),
        "SECURE_COOKIES": _get_env_bool("SECURE_COOKIES", flask_env.lower() == "production"),
        # Logging
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        # Database Configuration
        "DATABASE_URL": os.getenv("DATABASE_URL"),
        "DB_HOST": os.getenv("DB_HOST", "localhost"),
        "DB_PORT": _get_env_int("DB_PORT", 5432),
        "DB_USER": os.getenv("DB_USER", "sim"),
        "DB_PASSWORD": os.getenv("DB_PASSWORD"),
        "DB_NAME": os.getenv("DB_NAME", "sim"),
        # Redis is optional; challenges fall back to in-memory storage
        "REDIS_URL": os.getenv("REDIS_URL") or os.getenv("REDIS_DSN"),
        # Session Configuration
        "SESSION_LIFETIME_HOURS": _get_env_int("SESSION_LIFETIME_HOURS", 24),
        # Application Settings
        "APP_NAME": os.getenv("APP_NAME", "Sim"),
        "APP_VERSION": os.getenv("APP_VERSION", "1.0.0"),
        "APP_HOST": os.getenv("APP_HOST", "0.0.0.0"),
        "APP_PORT": _get_env_int("APP_PORT", 5000),
    }


def validate_config(config: Mapping[str, Any]) -> bool:
    """Validate critical configuration values.

    Args:
        config: Configuration mapping to validate.

    Returns:
        True if configuration is valid, raises ValueError otherwise.
    """

    if config.get("FLASK_ENV") == "production":
        if config.get("JWT_SECRET") == _DEV_JWT_SECRET:
            raise ValueError("JWT_SECRET must be changed for production!")

        if not config.get("FLASK_SECRET_KEY"):
            raise ValueError("FLASK_SECRET_KEY must be set for production!")

        if config.get("X402_BACKEND") == "facilitator" and not config.get("X402_FACILITATOR_URL"):
            raise ValueError("X402_FACILITATOR_URL must be set when X402_BACKEND=facilitator!")

        if not config.get("DATABASE_URL") and not config.get("DB_PASSWORD"):
            import warnings

            warnings.warn(
                "DATABASE_URL or DB_PASSWORD not set - database connectivity may fail!",
                stacklevel=2,
            )

    return True
