"""
Admin Blueprint - Health Checks, Metrics, and Operational Endpoints

Provides monitoring and operational endpoints for infrastructure health.
"""

import logging
import time
from typing import Any, Dict

from flask import Blueprint, Response, current_app, jsonify
from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from sim.database import check_database_health, get_health_status

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)

_started_at = time.time()

# Prometheus metrics
registry = CollectorRegistry()
request_counter = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry
)
payment_required_counter = Counter(
    "payment_required_total",
    "Requests answered with HTTP 402",
    ["endpoint"],
    registry=registry
)
uptime_gauge = Gauge(
    "app_uptime_seconds",
    "Seconds since the application started",
    registry=registry
)


def record_request(method: str, endpoint: str, status: int) -> None:
    """Count a finished request; called from the factory's after_request hook."""
    request_counter.labels(method=method, endpoint=endpoint, status=str(status)).inc()
    if status == 402:
        payment_required_counter.labels(endpoint=endpoint).inc()


@admin_bp.route("/health")
def health():
    """
    Comprehensive health check endpoint.

    Returns:
        JSON health status with service information
    """
    cfg = current_app.config["APP_CONFIG"]
    try:
        health_status: Dict[str, Any] = {
            "status": "healthy",
            "timestamp": time.time(),
            "service": cfg.get("APP_NAME", "Sim"),
            "version": cfg.get("APP_VERSION", "1.0.0"),
            "components": {},
        }

        components = get_health_status()
        health_status["components"]["database"] = components["database"]

        redis_status = components["redis"]
        if redis_status.get("status") == "unavailable":
            health_status["components"]["redis"] = {"status": "optional_unavailable"}
        else:
            health_status["components"]["redis"] = redis_status

        if components["database"].get("status") != "healthy":
            health_status["status"] = "degraded"

        return jsonify(health_status), 200 if health_status["status"] == "healthy" else 503

    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)
        return jsonify({
            "status": "unhealthy",
            "error": str(e),
            "timestamp": time.time()
        }), 500


@admin_bp.route("/health/live")
def liveness():
    """
    Kubernetes liveness probe - checks if app is running.

    Returns:
        200 if process is alive
    """
    return jsonify({"status": "alive"}), 200


@admin_bp.route("/health/ready")
def readiness():
    """
    Kubernetes readiness probe - checks if app is ready to serve traffic.

    Returns:
        200 if ready, 503 if not ready
    """
    db_status = check_database_health()
    if db_status.get("status") == "healthy":
        return jsonify({"status": "ready"}), 200

    logger.warning(f"Readiness check failed: {db_status.get('error')}")
    return jsonify({"status": "not_ready", "error": db_status.get("error")}), 503


@admin_bp.route("/metrics")
def metrics_json():
    """
    JSON metrics endpoint for monitoring.

    Returns:
        JSON metrics data
    """
    cfg = current_app.config["APP_CONFIG"]
    metrics_data = {
        "timestamp": time.time(),
        "application": {
            "name": cfg.get("APP_NAME", "Sim"),
            "version": cfg.get("APP_VERSION", "1.0.0"),
            "uptime": time.time() - _started_at,
        },
        "payments": {
            "network": cfg.get("X402_NETWORK"),
            "asset": cfg.get("X402_ASSET"),
            "backend": cfg.get("X402_BACKEND"),
        },
        "completion_backend": cfg.get("COMPLETION_BACKEND"),
    }
    return jsonify(metrics_data), 200


@admin_bp.route("/metrics/prometheus")
def metrics_prometheus():
    """
    Prometheus metrics endpoint.

    Returns:
        Prometheus text format metrics
    """
    uptime_gauge.set(time.time() - _started_at)
    metrics = generate_latest(registry)
    return Response(metrics, mimetype="text/plain; version=0.0.4")
