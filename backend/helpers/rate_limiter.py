"""Rate limiter configuration module.

Kept apart from main.py so the auth router can decorate the login endpoint
without a circular import.
"""

from slowapi import Limiter

from helpers.request_utils import get_client_ip
from models.config import settings


def client_key(request) -> str:  # type: ignore[no-untyped-def]
    """Rate-limit key: proxy-aware client IP."""
    return get_client_ip(request) or "unknown"


limiter = Limiter(key_func=client_key)

# Applied to POST /api/auth/login
LOGIN_RATE_LIMIT = settings.LOGIN_RATE_LIMIT
