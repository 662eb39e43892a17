"""
Integration tests for health and utility endpoints.

Tests basic API health and functionality.
"""
from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_check(self, client: TestClient):
        """Test health endpoint returns OK."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"


class TestDocsEndpoint:
    """Tests for documentation endpoints."""

    def test_docs_accessible(self, client: TestClient):
        """Test Swagger docs are accessible."""
        response = client.get("/docs")

        assert response.status_code == 200

    def test_openapi_json(self, client: TestClient):
        """Test OpenAPI JSON schema is accessible."""
        response = client.get("/openapi.json")

        assert response.status_code == 200
        data = response.json()
        assert data["info"]["title"] == "Ledgerline API"
        assert "/api/v1/statements/process" in data["paths"]
        assert "/api/v1/exports/validate" in data["paths"]


class TestCorrelationId:
    """Tests for correlation ID propagation."""

    def test_generated_when_missing(self, client: TestClient):
        response = client.get("/health")

        assert response.headers.get("X-Correlation-ID")

    def test_echoed_when_provided(self, client: TestClient):
        response = client.get("/health", headers={"X-Correlation-ID": "req-42"})

        assert response.headers["X-Correlation-ID"] == "req-42"


class TestErrorTracking:
    """Tests for the Sentry wiring."""

    def test_disabled_without_dsn(self, settings_env):
        from ledgerline.main import init_error_tracking

        assert init_error_tracking(settings_env) is False

    def test_events_scrubbed(self, settings_env):
        from ledgerline.main import scrub_event

        event = {
            "request": {"data": {"account_number": "50100123456789"}},
            "extra": {"note": "NEFT from 50100123456789"},
        }

        scrubbed = scrub_event(event, {})

        assert scrubbed["request"]["data"]["account_number"] == "[REDACTED]"
        assert scrubbed["extra"]["note"] == "NEFT from ****6789"
