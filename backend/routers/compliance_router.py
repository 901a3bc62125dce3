"""
Admin router: audit trail, security alerts, retention and compliance
reporting.
"""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import authentication.auth as auth
import models.schemas as schemas
from helpers.pagination import PaginationLimit, PaginationLimitLarge, PaginationOffset
from helpers.request_utils import get_client_ip
from routers.auth_router import envelope_response
from services.retention_service import policy_to_dict
from services.security_system import SecuritySystem
from services.session_service import SessionInfo

router = APIRouter(prefix="/admin", tags=["admin"])

compliance_manager = auth.require_permission("compliance:manage")
user_manager = auth.require_permission("users:manage")


# ============================================================================
# Health
# ============================================================================


@router.get("/health")
def get_security_health(
    _: SessionInfo = Depends(auth.require_role("admin")),
    security: SecuritySystem = Depends(auth.get_security_system),
) -> dict[str, Any]:
    """Detailed health: alert counts, open violations, storage and scheduler state."""
    return security.get_health_status()


@router.post(
    "/security/assessment",
    response_model=schemas.SecurityAssessmentResponse,
    status_code=201,
)
def run_security_assessment(
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    """Run the scheduled security assessment now and return its stored result."""
    return security.compliance.run_security_assessment(db)


@router.get(
    "/security/assessment/latest",
    response_model=schemas.SecurityAssessmentResponse,
)
def get_latest_security_assessment(
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    assessment = security.compliance.get_latest_security_assessment(db)
    if assessment is None:
        return JSONResponse(
            status_code=404, content={"detail": "No security assessment has been run"}
        )
    return assessment


# ============================================================================
# Audit trail
# ============================================================================


@router.get("/audit/recent")
def get_recent_audit_events(
    limit: PaginationLimitLarge = 100,
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
) -> list[dict[str, Any]]:
    return security.audit.get_recent_events(limit)


@router.get("/audit/users/{user_id}", response_model=List[schemas.AuditEventResponse])
def get_user_audit_trail(
    request: Request,
    user_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: PaginationLimitLarge = 100,
    offset: PaginationOffset = 0,
    session: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    """A user's audit trail, newest first. The read itself is audited."""
    events = security.audit.get_user_audit_trail(
        db, user_id, start_date=start_date, end_date=end_date, limit=limit, offset=offset
    )
    security.audit.log_data_access(
        db,
        session.user_id,
        "audit_events",
        "admin_access",
        record_count=len(events),
        subject_user_id=user_id,
        session_id=session.session_id,
        ip_address=get_client_ip(request),
    )
    return events


# ============================================================================
# Security alerts
# ============================================================================


@router.get("/alerts", response_model=List[schemas.SecurityAlertResponse])
def list_security_alerts(
    limit: PaginationLimit = 50,
    since: Optional[datetime] = None,
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    return security.audit.get_recent_alerts(db, limit=limit, since=since)


@router.post("/alerts/{alert_id}/acknowledge", response_model=schemas.SecurityAlertResponse)
def acknowledge_alert(
    alert_id: str,
    session: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    return security.audit.acknowledge_alert(db, alert_id, session.user_id)


@router.post("/alerts/{alert_id}/resolve", response_model=schemas.SecurityAlertResponse)
def resolve_alert(
    alert_id: str,
    session: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    """Resolve an alert. An unacknowledged alert is acknowledged at the same time."""
    return security.audit.resolve_alert(db, alert_id, session.user_id)


@router.post("/monitors/run")
def run_monitors(
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> dict[str, int]:
    """Run every threshold monitor once and report the alerts each raised."""
    return {
        "failed_logins": security.compliance.monitor_failed_logins(db),
        "data_access": security.compliance.monitor_data_access(db),
        "privacy_requests": security.compliance.monitor_privacy_requests(db),
    }


# ============================================================================
# Compliance reports
# ============================================================================


@router.post(
    "/compliance/reports",
    response_model=schemas.ComplianceReportResponse,
    status_code=201,
)
def generate_compliance_report(
    body: schemas.ComplianceReportRequest,
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    if body.period_end < body.period_start:
        return JSONResponse(
            status_code=422, content={"detail": "period_end must not precede period_start"}
        )
    return security.compliance.generate_compliance_report(
        db, body.report_type, body.period_start, body.period_end
    )


@router.get("/compliance/reports/latest", response_model=schemas.ComplianceReportResponse)
def get_latest_compliance_report(
    report_type: Optional[str] = None,
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    return security.compliance.get_latest_report(db, report_type)


# ============================================================================
# Retention
# ============================================================================


@router.get("/retention/policies")
def list_retention_policies(
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> list[dict[str, Any]]:
    return [policy_to_dict(p) for p in security.retention.list_policies(db)]


@router.patch("/retention/policies/{data_type}")
def update_retention_policy(
    data_type: str,
    body: schemas.RetentionPolicyUpdate,
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> dict[str, Any]:
    policy = security.retention.update_policy(
        db, data_type, body.model_dump(exclude_unset=True, exclude_none=True)
    )
    return policy_to_dict(policy)


@router.delete("/retention/policies/{data_type}", status_code=204)
def delete_retention_policy(
    data_type: str,
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Response:
    """Delete a policy. Refused with 409 once any job has run for it."""
    security.retention.delete_policy(db, data_type)
    return Response(status_code=204)


@router.post(
    "/retention/{data_type}/run",
    response_model=schemas.RetentionJobResponse,
)
def run_retention_policy(
    data_type: str,
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    return security.retention.execute_manual_retention(db, data_type)


@router.post("/retention/run", response_model=List[schemas.RetentionJobResponse])
def run_all_retention_policies(
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    return security.retention.execute_retention_policies(db)


@router.get("/retention/status")
def get_retention_status(
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> dict[str, Any]:
    return security.retention.get_retention_status(db)


@router.post("/retention/report", status_code=201)
def generate_retention_report(
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> dict[str, Any]:
    report = security.retention.generate_retention_audit_report(db)
    return {"id": report.id, **report.report_data}


@router.get("/retention/report/latest")
def get_latest_retention_report(
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    report = security.retention.get_latest_report(db)
    if report is None:
        return JSONResponse(
            status_code=404, content={"detail": "No retention report has been generated"}
        )
    return {"id": report.id, **report.report_data}


# ============================================================================
# Privacy request queue
# ============================================================================


@router.get("/privacy/requests", response_model=List[schemas.PrivacyRequestResponse])
def list_privacy_requests(
    status: str = "pending",
    limit: PaginationLimit = 50,
    offset: PaginationOffset = 0,
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    return security.privacy.get_requests_by_status(db, status, limit=limit, offset=offset)


@router.post(
    "/privacy/requests/{request_id}/process",
    response_model=schemas.PrivacyRequestResponse,
)
def process_privacy_request(
    request_id: str,
    _: SessionInfo = Depends(compliance_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> Any:
    """
    Fulfil a pending request.

    A request that cannot be fulfilled is completed as rejected with a
    reason. Already finalized requests answer 400.
    """
    return security.privacy.process_request(db, request_id)


# ============================================================================
# Accounts
# ============================================================================


@router.post("/users/{user_id}/lock", response_model=schemas.AuthEnvelope)
def lock_user_account(
    user_id: str,
    session: SessionInfo = Depends(user_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    """Lock an account. All of its sessions are revoked."""
    return envelope_response(security.auth.lock_account(db, user_id, session.user_id))


@router.post("/users/{user_id}/unlock", response_model=schemas.AuthEnvelope)
def unlock_user_account(
    user_id: str,
    session: SessionInfo = Depends(user_manager),
    security: SecuritySystem = Depends(auth.get_security_system),
    db: Session = Depends(auth.get_db),
) -> JSONResponse:
    return envelope_response(security.auth.unlock_account(db, user_id, session.user_id))
