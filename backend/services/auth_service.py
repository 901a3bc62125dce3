"""
Identity flows: registration, login, email verification, password reset,
password change, logout and operator lock/unlock.

Every public operation returns an ``AuthResult`` envelope instead of
raising. Internally the flows raise domain exceptions; ``_run`` maps the
exception family to the result's ``error_kind``. Infrastructure failures are
not caught here and propagate to the caller.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from helpers.password_validation import (
    PasswordRequirements,
    is_password_reused,
    validate_password_complexity,
)
from helpers.sanitization import sanitize_email, sanitize_optional
from helpers.time_utils import Clock, ensure_utc, format_iso8601, utc_now
from models.config import Settings
from models.exceptions import (
    AuthenticationException,
    BusinessRuleException,
    ConflictException,
    DomainException,
    InvalidCredentialsException,
    NotFoundException,
    PasswordPolicyException,
    PermissionDeniedException,
    UserNotFoundException,
    ValidationException,
)
from models.notification_types import NotificationType
from models.policies import permissions_for_role
from repositories.db_models import (
    ConsentType,
    PasswordHistory,
    RiskLevel,
    UserCredential,
    UserProfile,
    UserRole,
)
from repositories.user_repository import (
    CredentialRepository,
    PasswordHistoryRepository,
    UserRepository,
)
from services.audit_service import AuditEventType, AuditService
from services.consent_service import ConsentInput, ConsentService
from services.credential_service import CredentialService
from services.notification_service import Notifier
from services.session_service import LoginAttemptService, SessionService


class ErrorKind:
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


@dataclass
class AuthResult:
    """Uniform ``{success, data | error}`` envelope."""

    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    details: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Optional[dict[str, Any]] = None) -> "AuthResult":
        return cls(success=True, data=data or {})

    @classmethod
    def fail(cls, error: str, kind: str, details: Optional[list[str]] = None) -> "AuthResult":
        return cls(success=False, error=error, error_kind=kind, details=details or [])

    @classmethod
    def from_exception(cls, exc: DomainException) -> "AuthResult":
        details = list(getattr(exc, "errors", []) or [])
        if isinstance(exc, ValidationException):
            kind = ErrorKind.VALIDATION
        elif isinstance(exc, AuthenticationException):
            kind = ErrorKind.AUTHENTICATION
        elif isinstance(exc, PermissionDeniedException):
            kind = ErrorKind.AUTHORIZATION
        elif isinstance(exc, NotFoundException):
            kind = ErrorKind.NOT_FOUND
        elif isinstance(exc, (ConflictException, BusinessRuleException)):
            kind = ErrorKind.CONFLICT
        else:
            raise exc
        return cls.fail(exc.message, kind, details)

    def to_envelope(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        envelope: dict[str, Any] = {"success": False, "error": self.error}
        if self.details:
            envelope["details"] = self.details
        return envelope


@dataclass
class RegistrationInput:
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    organization: Optional[str] = None
    professional_info: Optional[dict[str, Any]] = None
    geographic_region: Optional[str] = None
    consents: dict[str, bool] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuthService:
    """Service for authentication and account flows."""

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialService,
        sessions: SessionService,
        login_attempts: LoginAttemptService,
        consent: ConsentService,
        audit: Optional[AuditService] = None,
        notifier: Optional[Notifier] = None,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.credentials = credentials
        self.sessions = sessions
        self.login_attempts = login_attempts
        self.consent = consent
        self.audit = audit
        self.notifier = notifier
        self.clock = clock
        self.password_requirements = PasswordRequirements.from_settings(settings)
        # Verified against when the email is unknown so both paths cost one bcrypt check
        self._dummy_hash = credentials.hash_password(credentials.generate_token(16))

    def _run(
        self, db: Session, flow: Callable[[], Optional[dict[str, Any]]]
    ) -> AuthResult:
        """Run a flow, discarding its uncommitted writes when it fails."""
        try:
            return AuthResult.ok(flow())
        except DomainException as e:
            db.rollback()
            return AuthResult.from_exception(e)

    def _audit(self, db: Session, event_type: str, **kwargs: Any) -> None:
        if self.audit is not None:
            self.audit.log_audit_event(db, event_type, source="auth", **kwargs)

    def _notify(
        self, notification_type: NotificationType, title: str, message: str, data: dict[str, Any]
    ) -> None:
        if self.notifier is not None:
            self.notifier.notify(notification_type, title, message, data)

    def _check_password_policy(self, password: str) -> None:
        is_valid, errors = validate_password_complexity(password, self.password_requirements)
        if not is_valid:
            raise PasswordPolicyException(errors)

    def _issue_login(
        self,
        db: Session,
        profile: UserProfile,
        credential: UserCredential,
        remember_me: bool = False,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict[str, Any]:
        permissions = permissions_for_role(credential.role)
        session = self.sessions.create_session(
            db,
            user_id=profile.id,
            email=profile.email,
            role=credential.role,
            permissions=permissions,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        access_token = self.credentials.issue_token(
            {
                "sub": profile.id,
                "sid": session.session_id,
                "email": profile.email,
                "role": credential.role,
            }
        )
        data: dict[str, Any] = {
            "user_id": profile.id,
            "email": profile.email,
            "role": credential.role,
            "permissions": permissions,
            "session_id": session.session_id,
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": self.settings.ACCESS_TOKEN_EXPIRE_SECONDS,
            "session_expires_at": format_iso8601(session.expires_at),
        }
        if remember_me:
            data["refresh_token"] = self.credentials.issue_token(
                {"sub": profile.id, "sid": session.session_id, "type": "refresh"},
                expires_in=self.settings.REFRESH_TOKEN_EXPIRE_SECONDS,
            )
        return data

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, db: Session, registration: RegistrationInput) -> AuthResult:
        """
        Create a user with profile, credential and consent records.

        All rows are written in one transaction. When email verification is
        not required the user is logged in straight away.
        """

        def flow() -> dict[str, Any]:
            email = sanitize_email(registration.email)
            self._check_password_policy(registration.password)

            requirements = self.consent.get_regional_requirements(registration.geographic_region)
            if requirements.consent_required and not registration.consents.get(
                ConsentType.DATA_PROCESSING.value
            ):
                raise ValidationException("Data processing consent is required")

            users = UserRepository(db)
            if users.email_exists(email):
                raise ConflictException("Email already registered")

            password_hash = self.credentials.hash_password(registration.password)
            verification_token = (
                self.credentials.generate_token()
                if self.settings.REQUIRE_EMAIL_VERIFICATION
                else None
            )

            profile = UserProfile(
                email=email,
                first_name=sanitize_optional(registration.first_name, 100),
                last_name=sanitize_optional(registration.last_name, 100),
                organization=sanitize_optional(registration.organization, 200),
                professional_info=registration.professional_info,
                geographic_region=requirements.region,
            )
            users.add(profile)
            users.flush()

            credential = UserCredential(
                user_id=profile.id,
                password_hash=password_hash,
                email_verified=not self.settings.REQUIRE_EMAIL_VERIFICATION,
                verification_token=verification_token,
                role=UserRole.USER.value,
                password_changed_at=self.clock(),
            )
            users.db.add(credential)
            users.db.add(PasswordHistory(user_id=profile.id, password_hash=password_hash))

            for consent_type, given in registration.consents.items():
                self.consent.stage_consent(
                    db,
                    ConsentInput(
                        user_id=profile.id,
                        consent_type=consent_type,
                        consent_given=bool(given),
                        ip_address=registration.ip_address,
                        user_agent=registration.user_agent,
                    ),
                )

            try:
                users.commit()
            except IntegrityError:
                users.rollback()
                raise ConflictException("Email already registered")

            logger.info(f"User registered: {profile.id}")
            self._audit(
                db,
                AuditEventType.USER_REGISTERED,
                user_id=profile.id,
                event_data={"region": requirements.region},
                ip_address=registration.ip_address,
                user_agent=registration.user_agent,
            )

            if verification_token is not None:
                self._notify(
                    NotificationType.EMAIL_VERIFICATION,
                    "Verify your email",
                    "Confirm your email address to activate your account.",
                    {"email": email, "token": verification_token},
                )
                return {"user_id": profile.id, "email": email, "verification_required": True}

            data = self._issue_login(
                db, profile, credential, False, registration.ip_address, registration.user_agent
            )
            data["verification_required"] = False
            return data

        return self._run(db, flow)

    def authenticate(
        self,
        db: Session,
        email: str,
        password: str,
        remember_me: bool = False,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        """
        Log a user in.

        Unknown email and wrong password produce the same generic failure
        and both count towards the identifier's lockout.
        """

        def flow() -> dict[str, Any]:
            try:
                identifier = sanitize_email(email)
            except ValidationException:
                raise InvalidCredentialsException()

            status = self.login_attempts.check_login_attempts(identifier)
            if not status.allowed:
                self._audit(
                    db,
                    AuditEventType.LOGIN_BLOCKED,
                    identifier=identifier,
                    risk_level=RiskLevel.MEDIUM.value,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
                raise AuthenticationException(
                    "Too many failed login attempts. Try again later."
                )

            profile = UserRepository(db).get_by_email(identifier)
            credential = profile.credential if profile is not None else None
            stored_hash = credential.password_hash if credential is not None else self._dummy_hash
            password_ok = self.credentials.verify_password(password, stored_hash)

            if profile is None or credential is None or not password_ok:
                attempt = self.login_attempts.record_login_attempt(identifier, success=False)
                self._audit(
                    db,
                    AuditEventType.LOGIN_FAILED,
                    user_id=profile.id if profile is not None else None,
                    identifier=identifier,
                    event_data={"remaining_attempts": attempt.remaining_attempts},
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
                raise InvalidCredentialsException()

            if self.settings.REQUIRE_EMAIL_VERIFICATION and not credential.email_verified:
                raise AuthenticationException("Email verification required")
            if credential.account_locked:
                raise InvalidCredentialsException()

            self.login_attempts.record_login_attempt(identifier, success=True)
            credential.last_login = self.clock()
            db.commit()

            data = self._issue_login(db, profile, credential, remember_me, ip_address, user_agent)
            self._audit(
                db,
                AuditEventType.LOGIN_SUCCESS,
                user_id=profile.id,
                session_id=data["session_id"],
                identifier=identifier,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return data

        return self._run(db, flow)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, db: Session, token: str) -> AuthResult:
        def flow() -> dict[str, Any]:
            repo = CredentialRepository(db)
            credential = repo.get_by_verification_token(token) if token else None
            if credential is None:
                raise ValidationException("Invalid verification token")
            credential.email_verified = True
            credential.verification_token = None
            repo.commit()
            self._audit(db, AuditEventType.EMAIL_VERIFIED, user_id=credential.user_id)
            return {"user_id": credential.user_id, "email_verified": True}

        return self._run(db, flow)

    def resend_verification(self, db: Session, email: str) -> AuthResult:
        """Always succeeds so the response never reveals whether the account exists."""

        def flow() -> dict[str, Any]:
            try:
                identifier = sanitize_email(email)
            except ValidationException:
                return {"sent": True}
            profile = UserRepository(db).get_by_email(identifier)
            credential = profile.credential if profile is not None else None
            if credential is not None and not credential.email_verified:
                token = self.credentials.generate_token()
                credential.verification_token = token
                db.commit()
                self._notify(
                    NotificationType.EMAIL_VERIFICATION,
                    "Verify your email",
                    "Confirm your email address to activate your account.",
                    {"email": identifier, "token": token},
                )
            return {"sent": True}

        return self._run(db, flow)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def request_password_reset(
        self, db: Session, email: str, ip_address: Optional[str] = None
    ) -> AuthResult:
        """
        Start a password reset.

        Always reports success. Only the sha256 of the token is stored; the
        token itself goes to the notifier.
        """

        def flow() -> dict[str, Any]:
            try:
                identifier = sanitize_email(email)
            except ValidationException:
                return {"requested": True}

            profile = UserRepository(db).get_by_email(identifier)
            credential = profile.credential if profile is not None else None
            if credential is None:
                logger.info("Password reset requested for unknown email")
                return {"requested": True}

            token = self.credentials.generate_token()
            credential.reset_token_hash = self.credentials.hash_token(token)
            credential.reset_token_expires = self.clock() + timedelta(
                seconds=self.settings.PASSWORD_RESET_EXPIRE_SECONDS
            )
            db.commit()

            self._notify(
                NotificationType.PASSWORD_RESET,
                "Reset your password",
                "Use this token to choose a new password. It expires in one hour.",
                {"email": identifier, "token": token},
            )
            self._audit(
                db,
                AuditEventType.PASSWORD_RESET_REQUESTED,
                user_id=credential.user_id,
                ip_address=ip_address,
            )
            return {"requested": True}

        return self._run(db, flow)

    def _apply_new_password(
        self, db: Session, credential: UserCredential, new_password: str
    ) -> list[str]:
        """
        Check policy and reuse, then replace the hash and revoke every
        session in the same transaction.

        Returns:
            Session ids whose cache keys the caller purges after commit
        """
        self._check_password_policy(new_password)

        history = PasswordHistoryRepository(db)
        previous = history.get_recent_hashes(
            credential.user_id, self.settings.PASSWORD_PREVENT_REUSE
        )
        if is_password_reused(new_password, previous, self.credentials.verify_password):
            raise PasswordPolicyException(
                [
                    f"Password must not match any of the last "
                    f"{self.settings.PASSWORD_PREVENT_REUSE} passwords"
                ]
            )

        new_hash = self.credentials.hash_password(new_password)
        credential.password_hash = new_hash
        credential.password_changed_at = self.clock()
        credential.reset_token_hash = None
        credential.reset_token_expires = None
        history.add(PasswordHistory(user_id=credential.user_id, password_hash=new_hash))

        session_ids = self.sessions.mark_user_sessions_revoked(db, credential.user_id)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        self.sessions.purge_cached_sessions(session_ids)
        return session_ids

    def confirm_password_reset(self, db: Session, token: str, new_password: str) -> AuthResult:
        def flow() -> dict[str, Any]:
            repo = CredentialRepository(db)
            credential = (
                repo.get_by_reset_token_hash(self.credentials.hash_token(token)) if token else None
            )
            expires = ensure_utc(credential.reset_token_expires) if credential else None
            if credential is None or expires is None or self.clock() >= expires:
                raise ValidationException("Invalid or expired reset token")

            revoked = self._apply_new_password(db, credential, new_password)
            if credential.user is not None:
                self.login_attempts.reset(credential.user.email)
            self._audit(
                db,
                AuditEventType.PASSWORD_RESET_COMPLETED,
                user_id=credential.user_id,
                risk_level=RiskLevel.MEDIUM.value,
                event_data={"revoked_sessions": len(revoked)},
            )
            return {"password_reset": True, "revoked_sessions": len(revoked)}

        return self._run(db, flow)

    def change_password(
        self,
        db: Session,
        user_id: str,
        current_password: str,
        new_password: str,
        ip_address: Optional[str] = None,
    ) -> AuthResult:
        """
        Change the password of a logged-in user.

        Every session of the user, including the current one, is revoked.
        """

        def flow() -> dict[str, Any]:
            credential = CredentialRepository(db).get_by_id(user_id)
            if credential is None:
                raise UserNotFoundException("User not found")
            if not self.credentials.verify_password(current_password, credential.password_hash):
                raise InvalidCredentialsException("Current password is incorrect")

            revoked = self._apply_new_password(db, credential, new_password)
            self._audit(
                db,
                AuditEventType.PASSWORD_CHANGED,
                user_id=user_id,
                risk_level=RiskLevel.MEDIUM.value,
                event_data={"revoked_sessions": len(revoked)},
                ip_address=ip_address,
            )
            if credential.user is not None:
                self._notify(
                    NotificationType.PASSWORD_CHANGED,
                    "Your password was changed",
                    "All sessions have been signed out.",
                    {"email": credential.user.email},
                )
            return {"password_changed": True, "revoked_sessions": len(revoked)}

        return self._run(db, flow)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def logout(self, db: Session, session_id: str, user_id: Optional[str] = None) -> AuthResult:
        def flow() -> dict[str, Any]:
            revoked = self.sessions.revoke_session(db, session_id)
            if user_id is not None:
                self._audit(db, AuditEventType.LOGOUT, user_id=user_id, session_id=session_id)
            return {"logged_out": revoked}

        return self._run(db, flow)

    def logout_all(self, db: Session, user_id: str) -> AuthResult:
        def flow() -> dict[str, Any]:
            count = self.sessions.revoke_all_sessions(db, user_id)
            self._audit(
                db,
                AuditEventType.LOGOUT,
                user_id=user_id,
                event_data={"scope": "all", "revoked_sessions": count},
            )
            return {"revoked_sessions": count}

        return self._run(db, flow)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def lock_account(self, db: Session, user_id: str, actor_id: Optional[str] = None) -> AuthResult:
        """Lock an account and revoke all of its sessions in one transaction."""

        def flow() -> dict[str, Any]:
            credential = CredentialRepository(db).get_by_id(user_id)
            if credential is None:
                raise UserNotFoundException("User not found")
            credential.account_locked = True
            session_ids = self.sessions.mark_user_sessions_revoked(db, user_id)
            db.commit()
            self.sessions.purge_cached_sessions(session_ids)

            logger.warning(f"Account {user_id} locked by {actor_id or 'system'}")
            self._audit(
                db,
                AuditEventType.ACCOUNT_LOCKED,
                user_id=user_id,
                risk_level=RiskLevel.MEDIUM.value,
                event_data={"actor_id": actor_id, "revoked_sessions": len(session_ids)},
            )
            return {"user_id": user_id, "account_locked": True, "revoked_sessions": len(session_ids)}

        return self._run(db, flow)

    def unlock_account(self, db: Session, user_id: str, actor_id: Optional[str] = None) -> AuthResult:
        def flow() -> dict[str, Any]:
            credential = CredentialRepository(db).get_by_id(user_id)
            if credential is None:
                raise UserNotFoundException("User not found")
            credential.account_locked = False
            db.commit()
            if credential.user is not None:
                self.login_attempts.reset(credential.user.email)
            self._audit(
                db,
                AuditEventType.ACCOUNT_UNLOCKED,
                user_id=user_id,
                event_data={"actor_id": actor_id},
            )
            return {"user_id": user_id, "account_locked": False}

        return self._run(db, flow)

    def get_profile(self, db: Session, user_id: str) -> AuthResult:
        def flow() -> dict[str, Any]:
            profile = UserRepository(db).get_by_id(user_id)
            if profile is None or profile.credential is None:
                raise UserNotFoundException("User not found")
            return {
                "user_id": profile.id,
                "email": profile.email,
                "first_name": profile.first_name,
                "last_name": profile.last_name,
                "organization": profile.organization,
                "geographic_region": profile.geographic_region,
                "role": profile.credential.role,
                "email_verified": profile.credential.email_verified,
                "processing_restricted": profile.processing_restricted,
                "created_at": format_iso8601(profile.created_at),
                "last_login": format_iso8601(profile.credential.last_login),
            }

        return self._run(db, flow)
