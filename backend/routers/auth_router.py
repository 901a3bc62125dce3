"""Authentication router endpoints."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import authentication.auth as auth
import models.schemas as schemas
from helpers.rate_limiter import LOGIN_RATE_LIMIT, limiter
from helpers.request_utils import get_client_ip, get_user_agent
from services.auth_service import AuthResult, ErrorKind, RegistrationInput
from services.security_system import SecuritySystem
from services.session_service import SessionInfo

router = APIRouter(prefix="/auth", tags=["auth"])

ERROR_KIND_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
}


def envelope_response(result: AuthResult, success_status: int = 200) -> JSONResponse:
    """Render an AuthResult with the status code derived from its error kind."""
    if result.success:
        status = success_status
    else:
        status = ERROR_KIND_STATUS.get(result.error_kind or "", 400)
    return JSONResponse(status_code=status, content=result.to_envelope())


@router.post("/register", response_model=schemas.AuthEnvelope, status_code=201)
@limiter.limit("5/minute")
def register(
    request: Request,
    body: schemas.RegisterRequest,
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    """
    Register a new user.

    Data-processing consent is mandatory where the user's region requires it.
    """
    result = security.auth.register(
        db,
        RegistrationInput(
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            organization=body.organization,
            professional_info=body.professional_info,
            geographic_region=body.geographic_region,
            consents=body.consents,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        ),
    )
    return envelope_response(result, success_status=201)


@router.post("/login", response_model=schemas.AuthEnvelope)
@limiter.limit(LOGIN_RATE_LIMIT)
def login(
    request: Request,
    body: schemas.LoginRequest,
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    """Login with email and password. Rate limited per client IP."""
    result = security.auth.authenticate(
        db,
        body.email,
        body.password,
        remember_me=body.remember_me,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return envelope_response(result)


@router.post("/verify-email", response_model=schemas.AuthEnvelope)
def verify_email(
    body: schemas.TokenRequest,
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    return envelope_response(security.auth.verify_email(db, body.token))


@router.post("/resend-verification", response_model=schemas.AuthEnvelope)
@limiter.limit("3/minute")
def resend_verification(
    request: Request,
    body: schemas.EmailRequest,
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    return envelope_response(security.auth.resend_verification(db, body.email))


@router.post("/password-reset/request", response_model=schemas.AuthEnvelope)
@limiter.limit("3/minute")
def request_password_reset(
    request: Request,
    body: schemas.EmailRequest,
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    """Always succeeds so the response does not reveal whether the account exists."""
    result = security.auth.request_password_reset(
        db, body.email, ip_address=get_client_ip(request)
    )
    return envelope_response(result)


@router.post("/password-reset/confirm", response_model=schemas.AuthEnvelope)
def confirm_password_reset(
    body: schemas.PasswordResetConfirm,
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    return envelope_response(
        security.auth.confirm_password_reset(db, body.token, body.new_password)
    )


@router.post("/change-password", response_model=schemas.AuthEnvelope)
def change_password(
    request: Request,
    body: schemas.PasswordChange,
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    """Change password. Every session of the user is revoked, this one included."""
    result = security.auth.change_password(
        db,
        session.user_id,
        body.current_password,
        body.new_password,
        ip_address=get_client_ip(request),
    )
    return envelope_response(result)


@router.post("/logout", response_model=schemas.AuthEnvelope)
def logout(
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    return envelope_response(security.auth.logout(db, session.session_id, session.user_id))


@router.post("/logout-all", response_model=schemas.AuthEnvelope)
def logout_all(
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    return envelope_response(security.auth.logout_all(db, session.user_id))


@router.get("/me", response_model=schemas.AuthEnvelope)
def read_me(
    session: SessionInfo = Depends(auth.require_authentication),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    """Get the current user's profile."""
    result = security.auth.get_profile(db, session.user_id)
    if result.success and result.data is not None:
        result.data["permissions"] = session.permissions
        result.data["session_expires_at"] = session.expires_at.isoformat()
    return envelope_response(result)
