"""Tests for security headers middleware."""

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from helpers.security_headers import API_HEADERS, SecurityHeadersMiddleware


def _app(environment: str) -> FastAPI:
    app = FastAPI()
    app.add_middleware(SecurityHeadersMiddleware, environment=environment)

    @app.get("/plain")
    def plain():
        return {"ok": True}

    @app.get("/cached")
    def cached():
        return JSONResponse({"ok": True}, headers={"Cache-Control": "public, max-age=60"})

    return app


class TestSecurityHeaders:
    """Test security headers are present in responses."""

    def test_api_headers_on_real_app(self, client):
        response = client.get("/api/health")
        for name, value in API_HEADERS.items():
            assert response.headers[name] == value

    def test_content_policy_denies_everything(self, client):
        response = client.get("/api/health")
        assert response.headers["Content-Security-Policy"].startswith("default-src 'none'")

    def test_no_hsts_outside_production(self):
        response = TestClient(_app("development")).get("/plain")
        assert "Strict-Transport-Security" not in response.headers

    def test_hsts_in_production(self):
        response = TestClient(_app("production")).get("/plain")
        assert response.headers["Strict-Transport-Security"].startswith("max-age=31536000")

    def test_cache_control_defaults_to_no_store(self):
        response = TestClient(_app("test")).get("/plain")
        assert response.headers["Cache-Control"] == "no-store, max-age=0"

    def test_route_cache_policy_kept(self):
        response = TestClient(_app("test")).get("/cached")
        assert response.headers["Cache-Control"] == "public, max-age=60"
