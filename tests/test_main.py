"""Tests for main application endpoints and middleware"""

import pytest
from unittest.mock import patch


class TestRootEndpoint:
    """Test root endpoint functionality"""

    def test_root_endpoint_returns_200(self, client):
        """Test that root endpoint returns 200 OK"""
        response = client.get("/")
        assert response.status_code == 200

    def test_root_endpoint_contains_version(self, client):
        """Test that root endpoint contains version info"""
        data = client.get("/").json()

        assert "version" in data
        assert "message" in data
        assert data["status"] == "running"
        assert set(data["models"]) == {"analysis", "image"}

    def test_root_endpoint_shows_features(self, client):
        """Test that root endpoint lists available features"""
        features = client.get("/").json()["features"]

        assert features["gemini_analysis"] == "enabled"
        assert features["grid_generation"] == "enabled"
        assert features["payment"] == "disabled"
        assert features["email_report"] == "disabled"
        assert features["redis_storage"] == "disabled"


class TestHealthCheck:
    """Test health check endpoint"""

    def test_health_check_returns_200(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200

    def test_health_check_shows_healthy_status(self, client):
        data = client.get("/api/health").json()

        assert data["status"] == "healthy"
        assert data["startup"]["required_services"] == {"gemini": True, "storage": True}

    def test_health_check_includes_checks(self, client):
        data = client.get("/api/health").json()

        checks = data["checks"]
        assert checks["storage"]["backend"] == "memory"
        assert checks["gemini_api"]["status"] == "skipped"
        assert checks["providers"]["polar"] == "missing"
        assert "circuit_breaker" in checks
        assert "system" in checks

    def test_open_breaker_degrades_health(self, client):
        from services.circuit_breaker import gemini_breaker

        gemini_breaker.open()

        assert client.get("/api/health").json()["status"] == "degraded"


class TestSecurityHeaders:
    """Test security headers are properly set"""

    @pytest.mark.parametrize("path", ["/", "/api/health"])
    def test_security_headers(self, client, path):
        headers = client.get(path).headers

        assert "default-src 'self'" in headers["Content-Security-Policy"]
        assert "frame-ancestors 'none'" in headers["Content-Security-Policy"]
        assert "frame-src https://www.youtube.com" in headers["Content-Security-Policy"]
        assert headers.get("X-Frame-Options") == "DENY"
        assert headers.get("X-Content-Type-Options") == "nosniff"
        assert headers.get("X-XSS-Protection") == "1; mode=block"
        assert headers.get("Referrer-Policy") == "strict-origin-when-cross-origin"
        assert "geolocation=()" in headers["Permissions-Policy"]
        assert "camera=(self)" in headers["Permissions-Policy"]

    def test_hsts_only_in_production(self, client):
        assert "Strict-Transport-Security" not in client.get("/").headers

        with patch("main.settings.ENVIRONMENT", "production"):
            headers = client.get("/").headers

        assert headers["Strict-Transport-Security"] == "max-age=31536000; includeSubDomains"


class TestCORS:
    """Test CORS middleware configuration"""

    def test_allowed_origin_echoed(self, client):
        response = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert response.headers.get("access-control-allow-origin") == "http://localhost:5173"

    def test_unknown_origin_not_echoed(self, client):
        response = client.get("/api/health", headers={"Origin": "https://evil.test"})
        assert "access-control-allow-origin" not in response.headers


class TestInitialization:

    def test_missing_gemini_key_fails_startup(self):
        import main

        with patch.object(main, "_services_initialized", False), \
                patch("main.settings.GEMINI_API_KEY", ""):
            with pytest.raises(RuntimeError):
                main.initialize_services()
