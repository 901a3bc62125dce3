"""
Privacy router: data subject requests, consent and regional requirements.

Every route here uses ``require_identity`` rather than
``require_authentication`` so users who restricted processing can still
exercise their rights.
"""

from typing import Any, List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

import authentication.auth as auth
import models.schemas as schemas
from helpers.request_utils import get_client_info
from services.consent_service import ConsentInput
from services.security_system import SecuritySystem
from services.session_service import SessionInfo

router = APIRouter(prefix="/privacy", tags=["privacy"])


@router.post("/requests", response_model=schemas.PrivacyRequestCreated, status_code=202)
def file_privacy_request(
    body: schemas.PrivacyRequestCreate,
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> schemas.PrivacyRequestCreated:
    """
    File a data subject request.

    Access requests are fulfilled in the background. Other request types
    wait for an administrator to process them.
    """
    request_id = security.privacy.handle_privacy_request(
        db, session.user_id, body.request_type, body.request_data
    )
    return schemas.PrivacyRequestCreated(request_id=request_id)


@router.get("/requests", response_model=List[schemas.PrivacyRequestResponse])
def list_my_requests(
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    return security.privacy.get_requests_for_user(db, session.user_id)


@router.get("/requests/{request_id}", response_model=schemas.PrivacyRequestResponse)
def get_my_request(
    request_id: str,
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    """Requests filed by someone else are reported as not found."""
    return security.privacy.get_request_status(db, request_id, user_id=session.user_id)


@router.get("/consent")
def get_consent_status(
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> dict[str, Any]:
    return {
        "consents": security.consent.get_consent_status(db, session.user_id),
        "processing_restricted": security.consent.is_processing_restricted(
            db, session.user_id
        ),
        "regional_compliance": security.consent.validate_regional_compliance(
            db, session.user_id
        ),
    }


@router.get("/consent/history")
def get_consent_history(
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> list[dict[str, Any]]:
    return security.consent.get_consent_history(db, session.user_id)


@router.post("/consent")
def update_consent(
    request: Request,
    body: schemas.ConsentUpdate,
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> dict[str, Any]:
    """
    Grant or withdraw a consent.

    Withdrawing data processing consent restricts processing for the user
    until it is granted again.
    """
    client = get_client_info(request)
    if body.consent_given:
        record = security.consent.record_consent(
            db,
            ConsentInput(
                user_id=session.user_id,
                consent_type=body.consent_type,
                consent_given=True,
                consent_version=body.consent_version,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            ),
        )
    else:
        record = security.consent.withdraw_consent(
            db, session.user_id, body.consent_type, client.ip_address, client.user_agent
        )
    return {
        "consent_type": record.consent_type,
        "consent_given": record.consent_given,
        "consent_version": record.consent_version,
    }


@router.delete("/consent/{consent_type}")
def withdraw_consent(
    request: Request,
    consent_type: str,
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> dict[str, Any]:
    """Withdraw a consent. Withdrawing twice is not an error."""
    client = get_client_info(request)
    record = security.consent.withdraw_consent(
        db, session.user_id, consent_type, client.ip_address, client.user_agent
    )
    return {
        "consent_type": record.consent_type,
        "consent_given": record.consent_given,
        "withdrawal_date": record.withdrawal_date.isoformat()
        if record.withdrawal_date
        else None,
    }


@router.get("/sessions")
def get_my_sessions(
    session: SessionInfo = Depends(auth.require_identity),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> dict[str, Any]:
    return security.sessions.get_sessions_summary(db, session.user_id)


@router.get("/regions/{region}", response_model=schemas.RegionalRequirementsResponse)
def get_regional_requirements(
    region: str,
    security: SecuritySystem = Depends(auth.get_security_system),
) -> Any:
    """Requirements for a jurisdiction. Unknown regions fall back to the default."""
    return security.consent.get_regional_requirements(region)
