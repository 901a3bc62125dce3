"""
Custom domain exceptions for the application.

These exceptions are raised by the service layer and converted to HTTP exceptions
by centralized exception handlers in main.py, maintaining proper separation of concerns.

The authentication module (auth.py) also uses these domain exceptions to remain
HTTP-agnostic, allowing reuse in non-HTTP contexts (background jobs, CLI tasks).

Enhanced with correlation IDs for Sentry integration and user error reporting.
"""

from core.correlation import generate_correlation_id, get_correlation_id


class DomainException(Exception):
    """
    Base class for all domain exceptions.

    Attributes:
        message: Human-readable error message.
        correlation_id: Unique ID for error tracking (auto-generated if not provided).
    """

    def __init__(self, message: str, correlation_id: str | None = None):
        self.message = message
        # Use request correlation ID if available, otherwise generate new one
        self.correlation_id = (
            correlation_id or get_correlation_id() or generate_correlation_id()
        )
        super().__init__(self.message)


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    pass


class PermissionDeniedException(DomainException):
    """Raised when an authenticated identity lacks required permissions."""

    pass


class ValidationException(DomainException):
    """Raised when input validation fails."""

    pass


class ConflictException(DomainException):
    """Raised when operation conflicts with existing data."""

    pass


class AuthenticationException(DomainException):
    """Raised when authentication fails."""

    pass


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    pass


class InfrastructureException(DomainException):
    """Raised when a backing store is unavailable. Callers may retry."""

    pass


class ConfigurationException(DomainException):
    """Raised at startup when required configuration is missing or invalid."""

    pass


# ============================================================================
# Credential & Session Exceptions
# ============================================================================


class InvalidCredentialsException(AuthenticationException):
    """Invalid email or password."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class SessionNotFoundException(AuthenticationException):
    """Session is unknown, revoked or expired."""

    def __init__(self, message: str = "Invalid session"):
        super().__init__(message)


class InsufficientPermissionsException(PermissionDeniedException):
    """Identity doesn't have the required permission or role."""

    pass


class ProcessingRestrictedException(PermissionDeniedException):
    """Processing of the user's data is restricted."""

    def __init__(self, message: str = "Data processing restricted"):
        super().__init__(message)


class UserNotFoundException(NotFoundException):
    """User not found."""

    pass


class InvalidEmailException(ValidationException):
    """Email address is malformed."""

    def __init__(self, message: str = "Invalid email address"):
        super().__init__(message)


class PasswordPolicyException(ValidationException):
    """Password does not satisfy the configured policy."""

    def __init__(self, errors: list[str], field: str = "password"):
        super().__init__("Password does not meet security requirements")
        self.errors = errors
        self.field = field


# ============================================================================
# Consent & Privacy Exceptions
# ============================================================================


class InvalidPrivacyRequestException(ValidationException):
    """Privacy request type or payload is invalid."""

    pass


class PrivacyRequestNotFoundException(NotFoundException):
    """Privacy request not found."""

    def __init__(self, request_id: str):
        super().__init__(f"Privacy request {request_id} not found")
        self.request_id = request_id


class PrivacyRequestFinalizedException(BusinessRuleException):
    """Raised when a completed or rejected request is processed again."""

    def __init__(self, request_id: str, status: str):
        super().__init__(f"Privacy request {request_id} is already {status}")
        self.request_id = request_id
        self.status = status


# ============================================================================
# Retention Exceptions
# ============================================================================


class RetentionPolicyNotFoundException(NotFoundException):
    """No retention policy exists for the data type."""

    def __init__(self, data_type: str):
        super().__init__(f"No retention policy found for data type: {data_type}")
        self.data_type = data_type


class RetentionPolicyInUseException(ConflictException):
    """Raised when deleting a policy referenced by job history."""

    def __init__(self, data_type: str):
        super().__init__(
            f"Retention policy '{data_type}' is referenced by job history and cannot be deleted"
        )
        self.data_type = data_type


class InvalidJobTransitionException(BusinessRuleException):
    """Raised when a retention job is moved to a status it cannot reach."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"Retention job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id


class UnsupportedDeletionMethodException(BusinessRuleException):
    """The data type does not support the policy's deletion method."""

    def __init__(self, data_type: str, method: str):
        super().__init__(f"Deletion method '{method}' is not supported for {data_type}")


# ============================================================================
# Audit & Compliance Exceptions
# ============================================================================


class AlertNotFoundException(NotFoundException):
    """Security alert not found."""

    def __init__(self, alert_id: str):
        super().__init__(f"Security alert {alert_id} not found")
        self.alert_id = alert_id


class ComplianceReportNotFoundException(NotFoundException):
    """No compliance report has been generated yet."""

    pass


class UndeclaredAnonymizationFieldException(ValidationException):
    """A record field has no anonymization rule declared for it."""

    def __init__(self, field: str):
        super().__init__(f"No anonymization rule declared for field '{field}'")
        self.field = field
