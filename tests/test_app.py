"""
Tests for the application shell: health check and response headers.
"""

from app.security_headers import get_security_headers


class TestAppShell:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_api_responses_are_not_cacheable(self, client):
        response = client.get("/slots/available")

        assert response.headers["Cache-Control"].startswith("no-store")
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Content-Security-Policy"].startswith("default-src 'none'")

    def test_hsts_only_in_production(self):
        assert "Strict-Transport-Security" in get_security_headers(production=True)
        assert "Strict-Transport-Security" not in get_security_headers(production=False)

    def test_missing_bearer_token(self, client):
        response = client.get("/appointments")

        assert response.status_code in (401, 403)
