"""
Security headers middleware for FastAPI.

Adds standard security headers to all responses. The service is a JSON API
that serves no documents, so the content policy denies everything.
"""

from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from models.config import settings

API_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": (
        "accelerometer=(), camera=(), geolocation=(), gyroscope=(), "
        "magnetometer=(), microphone=(), payment=(), usb=()"
    ),
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds security headers to all responses.

    HSTS is only sent in production. Responses carrying identity or
    privacy data must never be cached, so ``Cache-Control: no-store`` is
    set unless a route chose its own policy.
    """

    def __init__(self, app: ASGIApp, environment: str | None = None):
        super().__init__(app)
        self.environment = environment or settings.ENVIRONMENT

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)

        for name, value in API_HEADERS.items():
            response.headers[name] = value

        # max-age=31536000 = 1 year
        if self.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store, max-age=0"

        return response
