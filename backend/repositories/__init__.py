"""
Repository pattern implementation for data access layer.
"""

from .assessment_repository import AnalyticsRepository, AssessmentRepository
from .audit_repository import (
    AuditEventRepository,
    ComplianceReportRepository,
    SecurityAlertRepository,
    SecurityAssessmentRepository,
)
from .base import BaseRepository
from .consent_repository import ConsentLogRepository, ConsentRepository
from .privacy_repository import LegalObligationRepository, PrivacyRequestRepository
from .retention_repository import (
    RetentionJobRepository,
    RetentionPolicyRepository,
    RetentionReportRepository,
)
from .session_repository import SessionRecordRepository
from .user_repository import (
    CredentialRepository,
    PasswordHistoryRepository,
    UserRepository,
)

__all__ = [
    "AnalyticsRepository",
    "AssessmentRepository",
    "AuditEventRepository",
    "BaseRepository",
    "ComplianceReportRepository",
    "ConsentLogRepository",
    "ConsentRepository",
    "CredentialRepository",
    "LegalObligationRepository",
    "PasswordHistoryRepository",
    "PrivacyRequestRepository",
    "RetentionJobRepository",
    "RetentionPolicyRepository",
    "RetentionReportRepository",
    "SecurityAlertRepository",
    "SecurityAssessmentRepository",
    "SessionRecordRepository",
    "UserRepository",
]
