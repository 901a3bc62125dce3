"""
FastAPI dependencies implementing the authorization contract.

Dependencies raise domain exceptions only; the handlers in main.py turn
them into 401/403 responses.
"""

from collections.abc import Callable, Coroutine
from typing import Any, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from models.exceptions import AuthenticationException
from services.security_system import SecuritySystem
from services.session_service import SessionInfo

bearer_scheme = HTTPBearer(auto_error=False)


def get_security_system(request: Request) -> SecuritySystem:
    return request.app.state.security


def get_db(security: SecuritySystem = Depends(get_security_system)):  # type: ignore[no-untyped-def]
    """Database session from the facade's session factory."""
    db = security.session_factory()
    try:
        yield db
    finally:
        db.close()


async def require_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    security: SecuritySystem = Depends(get_security_system),
) -> SessionInfo:
    """
    Resolve the caller's live session.

    Does not consult the processing restriction, so privacy routes stay
    usable for users who withdrew consent.

    Raises:
        AuthenticationException: Missing, invalid or expired token, or revoked session
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationException("Not authenticated")
    return security.authenticate_token(credentials.credentials)


async def require_authentication(
    session: SessionInfo = Depends(require_identity),
    security: SecuritySystem = Depends(get_security_system),
    db: Session = Depends(get_db),
) -> SessionInfo:
    """
    Live session of a user whose data may be processed.

    Raises:
        ProcessingRestrictedException: The user restricted processing
    """
    security.ensure_processing_allowed(db, session)
    return session


def require_permission(
    permission: str,
) -> Callable[..., Coroutine[Any, Any, SessionInfo]]:
    """Dependency factory: the caller's session must carry ``permission``."""

    async def dependency(session: SessionInfo = Depends(require_identity)) -> SessionInfo:
        SecuritySystem.ensure_permission(session, permission)
        return session

    return dependency


def require_role(role: str) -> Callable[..., Coroutine[Any, Any, SessionInfo]]:
    """Dependency factory: the caller must have ``role`` (admins always pass)."""

    async def dependency(session: SessionInfo = Depends(require_identity)) -> SessionInfo:
        SecuritySystem.ensure_role(session, role)
        return session

    return dependency
