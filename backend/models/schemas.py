from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Optional, List, Dict


# Identity Schemas
class RegisterRequest(BaseModel):
    # Plain str: shape is enforced by sanitize_email so failures use the envelope
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    organization: Optional[str] = None
    professional_info: Optional[Dict[str, Any]] = None
    geographic_region: Optional[str] = Field(
        default=None, description="Jurisdiction tag, e.g. 'EU', 'US-CA', 'UK'"
    )
    consents: Dict[str, bool] = Field(
        default_factory=dict,
        description="Consent decisions by type, e.g. {'data_processing': true}",
    )


class LoginRequest(BaseModel):
    email: str
    password: str
    remember_me: bool = False


class TokenRequest(BaseModel):
    token: str


class EmailRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str


class AuthEnvelope(BaseModel):
    """Uniform response of the identity routes."""

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    details: Optional[List[str]] = None


# Consent & Privacy Schemas
class ConsentUpdate(BaseModel):
    consent_type: str
    consent_given: bool
    consent_version: Optional[str] = None


class PrivacyRequestCreate(BaseModel):
    request_type: str = Field(
        ...,
        description="access, rectification, erasure, portability, restriction or objection",
    )
    request_data: Dict[str, Any] = Field(default_factory=dict)


class PrivacyRequestCreated(BaseModel):
    request_id: str
    status: str = "pending"


class PrivacyRequestResponse(BaseModel):
    id: str
    request_type: str
    status: str
    request_date: datetime
    completion_date: Optional[datetime] = None
    response_data: Optional[Dict[str, Any]] = None
    rejection_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RegionalRequirementsResponse(BaseModel):
    region: str
    regime: str
    consent_required: bool
    data_retention_max_days: int
    right_to_erasure: bool
    right_to_portability: bool
    right_to_delete: bool
    right_to_know: bool
    opt_out_required: bool
    dpo_required: bool

    model_config = ConfigDict(from_attributes=True)


# Retention Schemas
class RetentionPolicyUpdate(BaseModel):
    retention_period_days: Optional[int] = Field(default=None, gt=0)
    anonymization_delay_days: Optional[int] = Field(default=None, ge=0)
    deletion_method: Optional[str] = None
    legal_basis: Optional[str] = None
    exceptions: Optional[List[str]] = None


class RetentionJobResponse(BaseModel):
    id: str
    policy_id: str
    data_type: str
    trigger: str
    status: str
    start_time: datetime
    end_time: Optional[datetime] = None
    records_processed: int
    records_deleted: int
    records_anonymized: int
    records_skipped: int
    errors: List[str]

    model_config = ConfigDict(from_attributes=True)


# Audit & Compliance Schemas
class AuditEventResponse(BaseModel):
    id: str
    event_type: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    risk_level: str
    event_data: Optional[Dict[str, Any]] = None
    source: str
    ip_address: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class SecurityAlertResponse(BaseModel):
    id: str
    alert_type: str
    severity: str
    message: str
    details: Optional[Dict[str, Any]] = None
    triggered_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ComplianceReportRequest(BaseModel):
    report_type: str = "on_demand"
    period_start: datetime
    period_end: datetime


class ComplianceReportResponse(BaseModel):
    id: str
    report_type: str
    period_start: datetime
    period_end: datetime
    metrics: Dict[str, Any]
    violations: List[Dict[str, Any]]
    recommendations: List[str]
    generated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SecurityAssessmentResponse(BaseModel):
    id: str
    overall_status: str
    checks: List[Dict[str, Any]]
    vulnerabilities: List[Dict[str, Any]]
    recommendations: List[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
