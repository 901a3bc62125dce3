"""
Services layer for business logic.

Each service takes its collaborators in the constructor and a database
session per call; ``SecuritySystem`` wires them together.
"""

from .anonymization_service import AnonymizationService
from .audit_service import AuditService
from .auth_service import AuthResult, AuthService
from .compliance_service import ComplianceService
from .consent_service import ConsentService
from .credential_service import CredentialService
from .notification_service import NotificationService
from .privacy_request_service import PrivacyRequestService
from .retention_service import RetentionService
from .session_service import LoginAttemptService, SessionService
from .security_system import SecuritySystem

__all__ = [
    "AnonymizationService",
    "AuditService",
    "AuthResult",
    "AuthService",
    "ComplianceService",
    "ConsentService",
    "CredentialService",
    "LoginAttemptService",
    "NotificationService",
    "PrivacyRequestService",
    "RetentionService",
    "SecuritySystem",
    "SessionService",
]
