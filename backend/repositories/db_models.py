"""
Database models using SQLAlchemy 2.0 style with Mapped type hints.

This module defines all database models with proper type annotations
for improved IDE support and type checking.

Foreign keys from dependent tables to ``user_profiles`` either cascade or
null out, so erasing a user never leaves dangling references while audit
and privacy-request evidence survives.
"""

import enum
import secrets
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repositories.database import Base


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def generate_secure_id() -> str:
    """Random 128-bit identifier as 32 hex characters."""
    return secrets.token_hex(16)


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"
    ANALYST = "analyst"


class ConsentType(str, enum.Enum):
    """Categories of processing a user can consent to."""

    DATA_PROCESSING = "data_processing"  # Baseline consent; withdrawing restricts processing
    MARKETING = "marketing"
    ANALYTICS = "analytics"
    THIRD_PARTY_SHARING = "third_party_sharing"


class PrivacyRequestType(str, enum.Enum):
    ACCESS = "access"
    RECTIFICATION = "rectification"
    ERASURE = "erasure"
    PORTABILITY = "portability"
    RESTRICTION = "restriction"
    OBJECTION = "objection"


class PrivacyRequestStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class DeletionMethod(str, enum.Enum):
    HARD_DELETE = "hard_delete"
    SOFT_DELETE = "soft_delete"
    ANONYMIZE = "anonymize"


class RetentionJobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RiskLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AssessmentStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELETED = "deleted"


# ============================================================================
# Identity
# ============================================================================


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    organization: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    professional_info: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    geographic_region: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True, comment="Jurisdiction tag, e.g. 'EU', 'US-CA', 'UK'"
    )
    processing_restricted: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    restriction_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, onupdate=_utc_now, nullable=False
    )

    credential: Mapped[Optional["UserCredential"]] = relationship(
        "UserCredential", back_populates="user", uselist=False, passive_deletes=True
    )


class UserCredential(Base):
    """Authentication data, owned exclusively by the credential flows."""

    __tablename__ = "user_credentials"

    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        primary_key=True,
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verification_token: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, index=True
    )
    reset_token_hash: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True, comment="sha256 of the reset token"
    )
    reset_token_expires: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    account_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), default=UserRole.USER.value, nullable=False
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    password_changed_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )

    user: Mapped["UserProfile"] = relationship("UserProfile", back_populates="credential")


class PasswordHistory(Base):
    """Previous password hashes, used to prevent reuse."""

    __tablename__ = "password_history"
    __table_args__ = (Index("ix_password_history_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )


class UserSessionRecord(Base):
    """
    Durable mirror of a cache session.

    The cache entry is authoritative for liveness; this row exists for
    audit, bulk revocation and cleanup.
    """

    __tablename__ = "user_sessions"
    __table_args__ = (
        Index("ix_user_sessions_user_active", "user_id", "invalidated_at"),
        Index("ix_user_sessions_expires", "expires_at"),
    )

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    invalidated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


# ============================================================================
# Consent & Privacy
# ============================================================================


class ConsentRecord(Base):
    """Current consent state, one row per (user, consent type)."""

    __tablename__ = "user_consent"

    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        primary_key=True,
    )
    consent_type: Mapped[str] = mapped_column(String(50), primary_key=True)
    consent_given: Mapped[bool] = mapped_column(Boolean, nullable=False)
    consent_date: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    consent_version: Mapped[str] = mapped_column(String(20), nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    withdrawal_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )


class ConsentLog(Base):
    """
    Audit log for all consent-related actions.

    Tracks every grant and withdrawal with IP/user agent, so the current
    state in ``user_consent`` can always be explained.
    """

    __tablename__ = "consent_logs"
    __table_args__ = (
        Index("ix_consent_logs_user_id", "user_id"),
        Index("ix_consent_logs_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    consent_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="Action: 'granted', 'withdrawn'"
    )
    policy_version: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )


class PrivacyRequest(Base):
    __tablename__ = "privacy_requests"
    __table_args__ = (
        Index("ix_privacy_requests_status_date", "status", "request_date"),
        Index("ix_privacy_requests_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    # Nulled on erasure so the request itself remains as evidence
    user_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("user_profiles.id", ondelete="SET NULL"), nullable=True
    )
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PrivacyRequestStatus.PENDING.value, nullable=False
    )
    request_date: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    completion_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    request_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    response_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


class LegalObligation(Base):
    """
    A hold on a user's data (legal hold, dispute, regulatory requirement).

    Active obligations block erasure and exempt records from retention
    policies that list the obligation type among their exceptions.
    """

    __tablename__ = "legal_obligations"
    __table_args__ = (Index("ix_legal_obligations_user_status", "user_id", "status"),)

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    obligation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


# ============================================================================
# Assessment data (subject to retention and erasure)
# ============================================================================


class AssessmentSession(Base):
    __tablename__ = "assessment_sessions"
    __table_args__ = (Index("ix_assessment_sessions_status_created", "status", "created_at"),)

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    assessment_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=AssessmentStatus.IN_PROGRESS.value, nullable=False
    )
    cultural_adaptations: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    anonymized_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    responses: Mapped[List["AssessmentResponse"]] = relationship(
        "AssessmentResponse", passive_deletes=True
    )
    results: Mapped[List["AssessmentResult"]] = relationship(
        "AssessmentResult", passive_deletes=True
    )


class AssessmentResponse(Base):
    __tablename__ = "assessment_responses"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("assessment_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_id: Mapped[str] = mapped_column(String(100), nullable=False)
    response_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )


class AssessmentResult(Base):
    __tablename__ = "assessment_results"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("assessment_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    persona: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    scores: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    regulatory_considerations: Mapped[Optional[Any]] = mapped_column(
        JSON, nullable=True
    )
    implementation_priorities: Mapped[Optional[Any]] = mapped_column(
        JSON, nullable=True
    )
    next_steps: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    resource_requirements: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )


class CurriculumRecommendation(Base):
    __tablename__ = "curriculum_recommendations"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    result_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("assessment_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )


class UserAnalytics(Base):
    __tablename__ = "user_analytics"
    __table_args__ = (Index("ix_user_analytics_created", "created_at"),)

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    event_name: Mapped[str] = mapped_column(String(100), nullable=False)
    properties: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


# ============================================================================
# Retention
# ============================================================================


class RetentionPolicyRecord(Base):
    __tablename__ = "retention_policies"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    data_type: Mapped[str] = mapped_column(
        String(50), unique=True, index=True, nullable=False
    )
    retention_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    anonymization_delay_days: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    deletion_method: Mapped[str] = mapped_column(String(20), nullable=False)
    legal_basis: Mapped[str] = mapped_column(String(255), nullable=False)
    exceptions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )


class RetentionJobRecord(Base):
    """One execution of a retention policy. Immutable once terminal."""

    __tablename__ = "retention_job_log"
    __table_args__ = (Index("ix_retention_job_log_start", "start_time"),)

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    # RESTRICT: policies referenced by job history cannot be deleted
    policy_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("retention_policies.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    data_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger: Mapped[str] = mapped_column(
        String(20), default="scheduled", nullable=False, comment="'scheduled' or 'manual'"
    )
    status: Mapped[str] = mapped_column(
        String(20), default=RetentionJobStatus.PENDING.value, nullable=False
    )
    start_time: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_deleted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_anonymized: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[list] = mapped_column(JSON, default=list, nullable=False)


class RetentionAuditReport(Base):
    __tablename__ = "retention_audit_reports"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    report_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )


# ============================================================================
# Audit & Compliance
# ============================================================================


class AuditEvent(Base):
    """
    Append-only audit trail of security- and privacy-relevant events.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_type_timestamp", "event_type", "timestamp"),
        Index("ix_audit_events_user_timestamp", "user_id", "timestamp"),
        Index("ix_audit_events_identifier_timestamp", "identifier", "timestamp"),
    )

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("user_profiles.id", ondelete="SET NULL"), nullable=True
    )
    session_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    identifier: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Login identifier for events without a resolved user",
    )
    risk_level: Mapped[str] = mapped_column(
        String(10), default=RiskLevel.LOW.value, nullable=False, index=True
    )
    event_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    source: Mapped[str] = mapped_column(String(50), default="system", nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )


class SecurityAlert(Base):
    __tablename__ = "security_alerts"
    __table_args__ = (
        Index("ix_security_alerts_type_triggered", "alert_type", "triggered_at"),
        Index("ix_security_alerts_severity", "severity"),
    )

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    triggered_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


class ComplianceReport(Base):
    """Immutable snapshot of compliance metrics over a period."""

    __tablename__ = "compliance_reports"
    __table_args__ = (
        Index("ix_compliance_reports_type", "report_type"),
        Index("ix_compliance_reports_period", "period_start", "period_end"),
    )

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    report_type: Mapped[str] = mapped_column(String(50), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    metrics: Mapped[dict] = mapped_column(JSON, nullable=False)
    violations: Mapped[list] = mapped_column(JSON, nullable=False)
    recommendations: Mapped[list] = mapped_column(JSON, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )


class SecurityAssessment(Base):
    """Point-in-time result of the periodic security posture checks."""

    __tablename__ = "security_assessments"
    __table_args__ = (Index("ix_security_assessments_created", "created_at"),)

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_secure_id
    )
    overall_status: Mapped[str] = mapped_column(String(10), nullable=False)
    checks: Mapped[list] = mapped_column(JSON, nullable=False)
    vulnerabilities: Mapped[list] = mapped_column(JSON, nullable=False)
    recommendations: Mapped[list] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
