"""
Integration tests for API endpoints.
"""

from unittest.mock import patch

import pytest

from sim.blueprints import admin
from sim.security import parse_cors_origins


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_endpoint_returns_ok(self, client):
        """Test that health endpoint returns 200 OK."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert "timestamp" in data

    def test_health_endpoint_includes_version(self, client):
        """Test that health endpoint includes service and version info."""
        data = client.get("/health").get_json()

        assert data["service"] == "Sim"
        assert data["version"] == "1.0.0"

    def test_health_components(self, client):
        components = client.get("/health").get_json()["components"]

        assert components["database"]["status"] == "healthy"
        assert components["redis"] == {"status": "optional_unavailable"}

    def test_health_degraded_without_database(self, client):
        broken = {"database": {"status": "unhealthy", "error": "down"}, "redis": {"status": "unavailable"}}
        with patch.object(admin, "get_health_status", return_value=broken):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.get_json()["status"] == "degraded"

    def test_liveness_and_readiness(self, client):
        assert client.get("/health/live").get_json() == {"status": "alive"}
        assert client.get("/health/ready").get_json() == {"status": "ready"}

    def test_readiness_fails_without_database(self, client):
        with patch.object(admin, "check_database_health", return_value={"status": "unhealthy", "error": "down"}):
            response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.get_json()["status"] == "not_ready"


class TestMetricsEndpoint:
    """Test metrics endpoints."""

    def test_metrics_endpoint_returns_json(self, client):
        """Test that metrics endpoint returns JSON data."""
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.content_type == "application/json"
        data = response.get_json()
        assert data["application"]["name"] == "Sim"
        assert data["payments"]["network"] == "base"
        assert data["completion_backend"] == "stub"

    def test_prometheus_counts_payment_required(self, client, paid_advisor):
        advisor, _ = paid_advisor
        conversation = client.post(f"/api/advisors/{advisor['id']}/conversations").get_json()["conversation"]
        client.post(f"/api/conversations/{conversation['id']}/messages", json={"content": "Hello"})

        response = client.get("/metrics/prometheus")

        assert response.status_code == 200
        assert response.mimetype == "text/plain"
        body = response.get_data(as_text=True)
        assert "http_requests_total" in body
        assert "payment_required_total" in body
        assert "app_uptime_seconds" in body


class TestCorsHeaders:
    ORIGIN = "https://app.example"

    def test_api_responses_allow_origin(self, client):
        response = client.get("/api/advisors", headers={"Origin": self.ORIGIN})

        assert response.headers["Access-Control-Allow-Origin"] in ("*", self.ORIGIN)
        assert "Retry-After" in response.headers["Access-Control-Expose-Headers"]

    def test_preflight_allows_payment_headers(self, client):
        response = client.options(
            "/api/advisors",
            headers={
                "Origin": self.ORIGIN,
                "Access-Control-Request-Method": "PATCH",
                "Access-Control-Request-Headers": "X-Payment-Session, X-Edit-Code",
            },
        )

        assert response.status_code == 200
        allowed = response.headers["Access-Control-Allow-Headers"].lower()
        assert "x-payment-session" in allowed
        assert "x-edit-code" in allowed
        assert "PATCH" in response.headers["Access-Control-Allow-Methods"]

    def test_health_has_no_cors_headers(self, client):
        response = client.get("/health", headers={"Origin": self.ORIGIN})

        assert "Access-Control-Allow-Origin" not in response.headers

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("*", "*"),
            ("", "*"),
            ("https://a.example", ["https://a.example"]),
            ("https://a.example, https://b.example", ["https://a.example", "https://b.example"]),
            ("https://a.example,*", "*"),
            (["https://a.example"], ["https://a.example"]),
        ],
    )
    def test_parse_origins(self, value, expected):
        assert parse_cors_origins(value) == expected


class TestConfiguredCorsOrigins:
    @pytest.fixture
    def cors_client(self):
        from sim.database import close_all
        from sim.factory import create_app

        close_all()
        flask_app = create_app({"CORS_ORIGINS": "https://a.example, https://b.example"})
        with flask_app.app_context():
            yield flask_app.test_client()
        close_all()

    def test_each_listed_origin_echoed(self, cors_client):
        for origin in ("https://a.example", "https://b.example"):
            response = cors_client.get("/api/advisors", headers={"Origin": origin})
            assert response.headers["Access-Control-Allow-Origin"] == origin

    def test_unlisted_origin_refused(self, cors_client):
        response = cors_client.get("/api/advisors", headers={"Origin": "https://evil.example"})

        assert "Access-Control-Allow-Origin" not in response.headers


class TestErrorHandling:
    """Test error handling."""

    def test_404_not_found(self, client):
        """Test that non-existent routes return JSON 404."""
        response = client.get("/nonexistent/route/that/does/not/exist")

        assert response.status_code == 404
        assert response.get_json()["error"] == "not_found"

    def test_405_method_not_allowed(self, client):
        """Test that wrong HTTP methods return 405."""
        response = client.post("/health")

        assert response.status_code == 405
        assert response.get_json()["error"] == "method_not_allowed"

    @pytest.mark.parametrize("path", ["/api/advisors", "/api/payments/sessions", "/api/auth/challenge"])
    def test_non_json_body_handled(self, client, path):
        response = client.post(path, data="plain text", content_type="text/plain")

        assert response.status_code == 400
