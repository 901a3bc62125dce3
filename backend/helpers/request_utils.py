"""
Client details recorded on sessions, consent records and audit events.

Proxy headers are only honoured when ``TRUST_PROXY_HEADERS`` is on: a
client talking to the API directly could otherwise put any address into
the audit trail and dodge per-IP rate limits.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from models.config import settings
from models.policies import MAX_USER_AGENT_LENGTH

# Checked in order; the first non-empty value wins
PROXY_HEADERS = ("CF-Connecting-IP", "X-Real-IP", "X-Forwarded-For")


@dataclass(frozen=True)
class ClientInfo:
    ip_address: Optional[str]
    user_agent: Optional[str]


def _from_proxy_headers(request: Request) -> Optional[str]:
    for header in PROXY_HEADERS:
        value = request.headers.get(header)
        if not value:
            continue
        # X-Forwarded-For is a chain; the first hop is the client
        candidate = value.split(",")[0].strip()
        if candidate:
            return candidate
    return None


def get_client_ip(request: Request, trust_proxy: Optional[bool] = None) -> Optional[str]:
    """
    Client IP address for a request.

    Args:
        request: Incoming request
        trust_proxy: Override ``TRUST_PROXY_HEADERS``

    Returns:
        The address, or None when the transport does not expose one
    """
    if trust_proxy is None:
        trust_proxy = settings.TRUST_PROXY_HEADERS
    if trust_proxy:
        forwarded = _from_proxy_headers(request)
        if forwarded:
            return forwarded
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    user_agent = request.headers.get("User-Agent")
    return user_agent[:MAX_USER_AGENT_LENGTH] if user_agent else None


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(ip_address=get_client_ip(request), user_agent=get_user_agent(request))
