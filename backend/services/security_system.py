"""
Orchestrating facade.

Builds every component on shared storage handles (one database session
factory, one cache), resolves capability flags once at startup, owns the
background scheduler and exposes the authorization contract used by the
HTTP dependencies.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.orm import Session

from core.scheduler import PeriodicTaskScheduler
from helpers.time_utils import Clock, utc_now
from models.config import Settings
from models.config import settings as default_settings
from models.exceptions import (
    ConfigurationException,
    InfrastructureException,
    InsufficientPermissionsException,
    PrivacyRequestFinalizedException,
    ProcessingRestrictedException,
    SessionNotFoundException,
)
from repositories.cache import CacheStore, RedisCache, build_cache
from repositories.db_models import UserRole
from services.anonymization_service import AnonymizationService
from services.audit_service import AuditService
from services.auth_service import AuthService
from services.compliance_service import ComplianceService
from services.consent_service import ConsentService
from services.credential_service import CredentialService
from services.notification_service import NotificationService, Notifier
from services.privacy_request_service import PrivacyRequestService
from services.retention_service import RetentionService
from services.retention_targets import build_targets
from services.session_service import LoginAttemptService, SessionInfo, SessionService

log = logger.bind(component="security_system")

MIN_ENCRYPTION_KEY_LENGTH = 32


@dataclass(frozen=True)
class Capabilities:
    """Optional capabilities, resolved once by ``initialize``."""

    cache_available: bool
    redis_backed: bool
    notifier_configured: bool
    scheduler_enabled: bool


class SecuritySystem:
    """Wires the credential, consent, retention and audit components together."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        cache: Optional[CacheStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Clock = utc_now,
        scheduler: Optional[PeriodicTaskScheduler] = None,
    ):
        self.settings = settings or default_settings
        if session_factory is None:
            from repositories.database import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory
        self.clock = clock
        self.cache = cache if cache is not None else build_cache(self.settings.REDIS_URL, clock)
        self.notifier: Notifier = notifier if notifier is not None else NotificationService(self.settings)
        self.scheduler = scheduler or PeriodicTaskScheduler()
        self.capabilities: Optional[Capabilities] = None
        self.initialized = False

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _validate_secrets(self) -> None:
        if not self.settings.SECRET_KEY:
            raise ConfigurationException("SECRET_KEY must be set")
        if len(self.settings.ENCRYPTION_KEY or "") < MIN_ENCRYPTION_KEY_LENGTH:
            raise ConfigurationException(
                f"ENCRYPTION_KEY must be at least {MIN_ENCRYPTION_KEY_LENGTH} characters"
            )

    def _build_components(self) -> None:
        settings, clock = self.settings, self.clock
        self.credentials = CredentialService(settings, clock)
        self.audit = AuditService(self.cache, settings, self.notifier, clock)
        self.sessions = SessionService(self.cache, settings, clock)
        self.login_attempts = LoginAttemptService(self.cache, settings, clock)
        self.consent = ConsentService(self.cache, settings, self.audit, clock)
        self.anonymizer = AnonymizationService()
        self.auth = AuthService(
            settings,
            self.credentials,
            self.sessions,
            self.login_attempts,
            self.consent,
            self.audit,
            self.notifier,
            clock,
        )
        self.privacy = PrivacyRequestService(
            settings,
            self.consent,
            self.sessions,
            self.anonymizer,
            self.audit,
            self.notifier,
            clock,
            dispatcher=self.dispatch_access_request,
        )
        self.retention = RetentionService(
            settings, build_targets(self.cache), self.sessions, self.audit, clock
        )
        self.compliance = ComplianceService(settings, self.audit, self.cache, clock)

    def _resolve_capabilities(self) -> Capabilities:
        try:
            cache_available = self.cache.ping()
        except Exception as e:
            log.error(f"Cache unreachable at startup: {e}")
            cache_available = False
        return Capabilities(
            cache_available=cache_available,
            redis_backed=isinstance(self.cache, RedisCache),
            notifier_configured=self.notifier.is_configured,
            scheduler_enabled=self.settings.SCHEDULER_ENABLED,
        )

    def initialize(self) -> None:
        """
        Validate secrets, build components, check storage, seed retention
        policies and register background tasks.

        Raises:
            ConfigurationException: A required secret is missing or too short
            InfrastructureException: The database is unreachable
        """
        if self.initialized:
            return

        self._validate_secrets()
        self._build_components()
        self.capabilities = self._resolve_capabilities()

        with self.session_scope() as db:
            try:
                db.execute(text("SELECT 1"))
            except Exception as e:
                log.critical(f"Database unreachable at startup: {e}")
                raise InfrastructureException("Database unavailable")
            self.retention.seed_default_policies(db)

        self.retention.register_tasks(self.scheduler, self.session_factory)
        self.compliance.register_tasks(self.scheduler, self.session_factory)
        if self.capabilities.scheduler_enabled:
            self.scheduler.start()

        self.initialized = True
        log.info(f"Security system initialized: {asdict(self.capabilities)}")

    def shutdown(self) -> None:
        """Stop every timer, wait for running tasks, then release the cache."""
        if not self.initialized:
            return
        self.retention.request_stop()
        self.scheduler.shutdown(wait=True)
        self.cache.close()
        self.initialized = False
        log.info("Security system shut down")

    def get_health_status(self) -> dict[str, Any]:
        with self.session_scope() as db:
            health = self.compliance.get_system_health(db)
        health["capabilities"] = asdict(self.capabilities) if self.capabilities else None
        health["scheduler"] = self.scheduler.status()
        return health

    # ------------------------------------------------------------------
    # Background privacy fulfilment
    # ------------------------------------------------------------------

    def dispatch_access_request(self, request_id: str) -> None:
        """
        Hand an access request to the scheduler.

        With the scheduler disabled nothing would ever pick the job up, so
        the request is fulfilled inline instead.
        """
        if self.capabilities is None or not self.capabilities.scheduler_enabled:
            log.warning(f"Scheduler disabled, fulfilling access request {request_id} inline")
            self._fulfil_access_request(request_id)
            return
        self.scheduler.run_once(
            f"privacy.access.{request_id}",
            self._fulfil_access_request,
            request_id,
            delay_seconds=self.settings.ACCESS_REQUEST_DELAY_SECONDS,
        )

    def _fulfil_access_request(self, request_id: str) -> None:
        with self.session_scope() as db:
            try:
                self.privacy.process_request(db, request_id)
            except PrivacyRequestFinalizedException:
                log.info(f"Access request {request_id} already processed")

    # ------------------------------------------------------------------
    # Authorization contract
    # ------------------------------------------------------------------

    def authenticate_token(self, token: str) -> SessionInfo:
        """
        Resolve a bearer token to its live session.

        Raises:
            SessionNotFoundException: Token invalid or expired, or session revoked
        """
        claims = self.credentials.verify_token(token)
        if claims is None or claims.get("type") == "refresh" or "sid" not in claims:
            raise SessionNotFoundException()
        session = self.sessions.validate_session(claims["sid"])
        if session is None or session.user_id != claims.get("sub"):
            raise SessionNotFoundException()
        return session

    def ensure_processing_allowed(self, db: Session, session: SessionInfo) -> None:
        if self.consent.is_processing_restricted(db, session.user_id):
            raise ProcessingRestrictedException()

    @staticmethod
    def ensure_permission(session: SessionInfo, permission: str) -> None:
        if permission not in session.permissions:
            raise InsufficientPermissionsException(f"Missing permission: {permission}")

    @staticmethod
    def ensure_role(session: SessionInfo, role: str) -> None:
        if session.role != role and session.role != UserRole.ADMIN.value:
            raise InsufficientPermissionsException(f"Requires role: {role}")
