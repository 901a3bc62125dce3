"""
Data-subject privacy requests.

A request is filed as ``pending`` and later processed, moving to
``processing`` and then to ``completed`` or ``rejected``. Terminal requests
are immutable. Access requests are handed to an injected dispatcher so they
can be fulfilled in the background.

Erasure runs as a single transaction: either every row referencing the user
is gone and the request is completed, or nothing changed and the request is
rejected.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger
from sqlalchemy.orm import Session

from helpers.sanitization import sanitize_optional
from helpers.time_utils import Clock, format_iso8601, utc_now
from models.config import Settings
from models.exceptions import (
    DomainException,
    InvalidPrivacyRequestException,
    PrivacyRequestFinalizedException,
    PrivacyRequestNotFoundException,
    UserNotFoundException,
    ValidationException,
)
from models.notification_types import NotificationType
from repositories.assessment_repository import AnalyticsRepository, AssessmentRepository
from repositories.audit_repository import AuditEventRepository
from repositories.consent_repository import ConsentLogRepository, ConsentRepository
from repositories.db_models import (
    ConsentType,
    PrivacyRequest,
    PrivacyRequestStatus,
    PrivacyRequestType,
    RiskLevel,
    UserProfile,
)
from repositories.privacy_repository import (
    LegalObligationRepository,
    PrivacyRequestRepository,
)
from repositories.session_repository import SessionRecordRepository
from repositories.user_repository import (
    CredentialRepository,
    PasswordHistoryRepository,
    UserRepository,
)
from services.anonymization_service import AnonymizationService
from services.audit_service import AuditEventType, AuditService
from services.consent_service import ConsentService, restriction_key
from services.notification_service import Notifier
from services.session_service import SessionService

EXPORT_FORMAT_VERSION = "1.0"
GENERIC_REJECTION = "Request could not be processed"

# Profile fields a rectification request may change, with their max length
RECTIFIABLE_FIELDS = {
    "first_name": 100,
    "last_name": 100,
    "organization": 200,
    "geographic_region": 20,
}

DEFAULT_OBJECTION_TYPES = [ConsentType.MARKETING.value, ConsentType.ANALYTICS.value]

TERMINAL_STATUSES = frozenset(
    {PrivacyRequestStatus.COMPLETED.value, PrivacyRequestStatus.REJECTED.value}
)

log = logger.bind(component="privacy")

Dispatcher = Callable[[str], None]


@dataclass
class _Outcome:
    """What a handler produced: final status, payload and post-commit work."""

    status: str = PrivacyRequestStatus.COMPLETED.value
    response_data: Optional[dict[str, Any]] = None
    rejection_reason: Optional[str] = None
    after_commit: list[Callable[[], None]] = field(default_factory=list)
    notify_email: Optional[str] = None


class PrivacyRequestService:
    """Service for filing and fulfilling privacy requests."""

    def __init__(
        self,
        settings: Settings,
        consent: ConsentService,
        sessions: SessionService,
        anonymizer: AnonymizationService,
        audit: Optional[AuditService] = None,
        notifier: Optional[Notifier] = None,
        clock: Clock = utc_now,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self.settings = settings
        self.consent = consent
        self.sessions = sessions
        self.anonymizer = anonymizer
        self.audit = audit
        self.notifier = notifier
        self.clock = clock
        self.dispatcher = dispatcher

    def set_dispatcher(self, dispatcher: Optional[Dispatcher]) -> None:
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Filing and status
    # ------------------------------------------------------------------

    def handle_privacy_request(
        self,
        db: Session,
        user_id: str,
        request_type: str,
        request_data: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        File a privacy request.

        Returns:
            ID of the new pending request

        Raises:
            InvalidPrivacyRequestException: Unknown request type
            UserNotFoundException: No such user
        """
        try:
            request_type = PrivacyRequestType(request_type).value
        except ValueError:
            raise InvalidPrivacyRequestException(f"Unknown privacy request type: {request_type}")

        if UserRepository(db).get_by_id(user_id) is None:
            raise UserNotFoundException("User not found")

        request = PrivacyRequestRepository(db).create(
            PrivacyRequest(
                user_id=user_id,
                request_type=request_type,
                status=PrivacyRequestStatus.PENDING.value,
                request_date=self.clock(),
                request_data=request_data or {},
            )
        )
        log.info(f"Privacy request {request.id} filed: {request_type}")

        if self.audit is not None:
            self.audit.log_audit_event(
                db,
                AuditEventType.PRIVACY_REQUEST,
                user_id=user_id,
                risk_level=RiskLevel.MEDIUM.value,
                event_data={"request_id": request.id, "request_type": request_type, "status": "pending"},
                source="privacy",
            )

        if request_type == PrivacyRequestType.ACCESS.value and self.dispatcher is not None:
            self.dispatcher(request.id)

        return request.id

    def get_request_status(
        self, db: Session, request_id: str, user_id: Optional[str] = None
    ) -> PrivacyRequest:
        """
        Fetch a request.

        When ``user_id`` is given, requests belonging to anyone else are
        reported as not found.
        """
        request = PrivacyRequestRepository(db).get_by_id(request_id)
        if request is None or (user_id is not None and request.user_id != user_id):
            raise PrivacyRequestNotFoundException(request_id)
        return request

    def get_requests_for_user(self, db: Session, user_id: str) -> list[PrivacyRequest]:
        return PrivacyRequestRepository(db).get_for_user(user_id)

    def get_requests_by_status(
        self, db: Session, status: str, limit: int = 100, offset: int = 0
    ) -> list[PrivacyRequest]:
        try:
            status = PrivacyRequestStatus(status).value
        except ValueError:
            raise ValidationException(f"Unknown privacy request status: {status}")
        return PrivacyRequestRepository(db).get_by_status(status, limit=limit, offset=offset)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_request(self, db: Session, request_id: str) -> PrivacyRequest:
        """
        Fulfil a pending request.

        Raises:
            PrivacyRequestNotFoundException: No such request
            PrivacyRequestFinalizedException: Request already completed or rejected
        """
        repo = PrivacyRequestRepository(db)
        request = repo.get_by_id(request_id)
        if request is None:
            raise PrivacyRequestNotFoundException(request_id)
        if request.status in TERMINAL_STATUSES:
            raise PrivacyRequestFinalizedException(request_id, request.status)

        request.status = PrivacyRequestStatus.PROCESSING.value
        repo.commit()

        request_type = request.request_type
        subject_id = request.user_id

        try:
            outcome = self._fulfil(db, request)
            request.status = outcome.status
            request.completion_date = self.clock()
            request.response_data = outcome.response_data
            request.rejection_reason = outcome.rejection_reason
            repo.commit()
        except DomainException as e:
            db.rollback()
            log.warning(f"Privacy request {request_id} rejected: {e.message}")
            return self._reject(db, request_id, e.message)
        except Exception as e:
            db.rollback()
            log.exception(f"Privacy request {request_id} failed: {e!r}")
            return self._reject(db, request_id, GENERIC_REJECTION)

        for action in outcome.after_commit:
            try:
                action()
            except Exception as e:
                log.error(f"Post-commit step failed for privacy request {request_id}: {e}")

        self._record_outcome(db, request, request_type, subject_id, outcome)
        return request

    def process_data_access_request(self, db: Session, request_id: str) -> PrivacyRequest:
        return self._process_typed(db, request_id, PrivacyRequestType.ACCESS)

    def process_data_erasure_request(self, db: Session, request_id: str) -> PrivacyRequest:
        return self._process_typed(db, request_id, PrivacyRequestType.ERASURE)

    def _process_typed(
        self, db: Session, request_id: str, expected: PrivacyRequestType
    ) -> PrivacyRequest:
        request = PrivacyRequestRepository(db).get_by_id(request_id)
        if request is None:
            raise PrivacyRequestNotFoundException(request_id)
        if request.request_type != expected.value:
            raise InvalidPrivacyRequestException(
                f"Privacy request {request_id} is not an {expected.value} request"
            )
        return self.process_request(db, request_id)

    def _reject(self, db: Session, request_id: str, reason: str) -> PrivacyRequest:
        repo = PrivacyRequestRepository(db)
        request = repo.get_by_id(request_id)
        if request is None:
            raise PrivacyRequestNotFoundException(request_id)
        request.status = PrivacyRequestStatus.REJECTED.value
        request.completion_date = self.clock()
        request.rejection_reason = reason
        repo.commit()

        if self.audit is not None:
            self.audit.log_audit_event(
                db,
                AuditEventType.PRIVACY_REQUEST,
                user_id=request.user_id,
                event_data={
                    "request_id": request_id,
                    "request_type": request.request_type,
                    "status": request.status,
                },
                source="privacy",
            )
        return request

    def _record_outcome(
        self,
        db: Session,
        request: PrivacyRequest,
        request_type: str,
        subject_id: Optional[str],
        outcome: _Outcome,
    ) -> None:
        erased = (
            request_type == PrivacyRequestType.ERASURE.value
            and outcome.status == PrivacyRequestStatus.COMPLETED.value
        )
        log.info(f"Privacy request {request.id} ({request_type}) {outcome.status}")
        if self.audit is not None:
            self.audit.log_audit_event(
                db,
                AuditEventType.PRIVACY_REQUEST,
                user_id=None if erased else subject_id,
                event_data={
                    "request_id": request.id,
                    "request_type": request_type,
                    "status": outcome.status,
                },
                source="privacy",
            )
        if (
            self.notifier is not None
            and outcome.notify_email
            and outcome.status == PrivacyRequestStatus.COMPLETED.value
        ):
            self.notifier.notify(
                NotificationType.PRIVACY_REQUEST_COMPLETED,
                "Your privacy request is complete",
                f"Your {request_type} request has been processed.",
                {"email": outcome.notify_email, "request_id": request.id},
            )

    def _fulfil(self, db: Session, request: PrivacyRequest) -> _Outcome:
        if request.user_id is None:
            return _Outcome(
                status=PrivacyRequestStatus.REJECTED.value,
                rejection_reason="User no longer exists",
            )
        profile = UserRepository(db).get_by_id(request.user_id)
        if profile is None:
            raise UserNotFoundException("User not found")

        handlers = {
            PrivacyRequestType.ACCESS.value: self._fulfil_access,
            PrivacyRequestType.PORTABILITY.value: self._fulfil_portability,
            PrivacyRequestType.RECTIFICATION.value: self._fulfil_rectification,
            PrivacyRequestType.RESTRICTION.value: self._fulfil_restriction,
            PrivacyRequestType.OBJECTION.value: self._fulfil_objection,
            PrivacyRequestType.ERASURE.value: self._fulfil_erasure,
        }
        handler = handlers.get(request.request_type)
        if handler is None:
            raise InvalidPrivacyRequestException(
                f"Unknown privacy request type: {request.request_type}"
            )
        outcome = handler(db, request, profile)
        outcome.notify_email = profile.email
        return outcome

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def collect_user_data(self, db: Session, profile: UserProfile) -> dict[str, Any]:
        """
        Everything stored about a user, as a JSON-serializable payload.

        Assessment responses are exported with their values removed and
        session ids hashed.
        """
        user_id = profile.id
        assessments = AssessmentRepository(db)
        responses = [
            {
                "id": r.id,
                "session_id": r.session_id,
                "question_id": r.question_id,
                "response_type": type(r.response_value).__name__,
                "response_value": r.response_value,
                "created_at": format_iso8601(r.created_at),
            }
            for r in assessments.get_responses_for_user(user_id)
        ]

        return {
            "profile": {
                "id": profile.id,
                "email": profile.email,
                "first_name": profile.first_name,
                "last_name": profile.last_name,
                "organization": profile.organization,
                "professional_info": profile.professional_info,
                "geographic_region": profile.geographic_region,
                "processing_restricted": profile.processing_restricted,
                "created_at": format_iso8601(profile.created_at),
            },
            "sessions": self.sessions.get_sessions_summary(db, user_id),
            "consent": self.consent.get_consent_status(db, user_id),
            "consent_history": self.consent.get_consent_history(db, user_id),
            "assessment_sessions": [
                {
                    "id": s.id,
                    "assessment_type": s.assessment_type,
                    "status": s.status,
                    "created_at": format_iso8601(s.created_at),
                }
                for s in assessments.get_for_user(user_id)
            ],
            "assessment_responses": self.anonymizer.anonymize_records(responses),
            "privacy_requests": [
                {
                    "id": r.id,
                    "request_type": r.request_type,
                    "status": r.status,
                    "request_date": format_iso8601(r.request_date),
                }
                for r in PrivacyRequestRepository(db).get_for_user(user_id)
            ],
        }

    def _fulfil_access(
        self, db: Session, request: PrivacyRequest, profile: UserProfile
    ) -> _Outcome:
        return _Outcome(response_data=self.collect_user_data(db, profile))

    def _fulfil_portability(
        self, db: Session, request: PrivacyRequest, profile: UserProfile
    ) -> _Outcome:
        return _Outcome(
            response_data={
                "format_version": EXPORT_FORMAT_VERSION,
                "exported_at": format_iso8601(self.clock()),
                "data": self.collect_user_data(db, profile),
            }
        )

    def _fulfil_rectification(
        self, db: Session, request: PrivacyRequest, profile: UserProfile
    ) -> _Outcome:
        changes = dict(request.request_data or {})
        if not changes:
            raise InvalidPrivacyRequestException("No fields to rectify")
        unknown = sorted(name for name in changes if name not in RECTIFIABLE_FIELDS)
        if unknown:
            raise InvalidPrivacyRequestException(
                f"Fields cannot be rectified: {', '.join(unknown)}"
            )

        for name, value in changes.items():
            cleaned = sanitize_optional(value, RECTIFIABLE_FIELDS[name])
            if name == "geographic_region" and cleaned:
                cleaned = cleaned.upper()
            setattr(profile, name, cleaned)
        return _Outcome(response_data={"updated_fields": sorted(changes)})

    def _fulfil_restriction(
        self, db: Session, request: PrivacyRequest, profile: UserProfile
    ) -> _Outcome:
        profile.processing_restricted = True
        profile.restriction_date = self.clock()
        user_id = profile.id
        return _Outcome(
            response_data={"processing_restricted": True},
            after_commit=[lambda: self.consent.restrict_processing_cache(user_id)],
        )

    def _fulfil_objection(
        self, db: Session, request: PrivacyRequest, profile: UserProfile
    ) -> _Outcome:
        data = request.request_data or {}
        consent_types = data.get("consent_types") or DEFAULT_OBJECTION_TYPES
        withdrawn = []
        for consent_type in consent_types:
            record = self.consent.stage_withdrawal(db, profile.id, consent_type)
            withdrawn.append(record.consent_type)

        after_commit: list[Callable[[], None]] = []
        if ConsentType.DATA_PROCESSING.value in withdrawn:
            user_id = profile.id
            after_commit.append(lambda: self.consent.restrict_processing_cache(user_id))
        return _Outcome(response_data={"withdrawn": withdrawn}, after_commit=after_commit)

    def _fulfil_erasure(
        self, db: Session, request: PrivacyRequest, profile: UserProfile
    ) -> _Outcome:
        """
        Delete every row referencing the user, leaves first.

        All deletes are staged in the caller's transaction; audit events and
        privacy requests are kept with ``user_id`` nulled.
        """
        user_id = profile.id
        if LegalObligationRepository(db).has_active(user_id, self.clock()):
            log.info(f"Erasure blocked by legal obligation for user {user_id}")
            return _Outcome(
                status=PrivacyRequestStatus.REJECTED.value,
                rejection_reason="Erasure blocked by an active legal obligation",
            )

        sessions = SessionRecordRepository(db)
        session_ids = [r.session_id for r in sessions.get_for_user(user_id)]
        assessments = AssessmentRepository(db)

        counts: dict[str, int] = {"user_sessions": sessions.delete_for_user(user_id)}
        counts.update(
            assessments.delete_session_trees(assessments.get_session_ids_for_user(user_id))
        )
        counts["user_analytics"] = AnalyticsRepository(db).delete_for_user(user_id)
        counts["user_consent"] = ConsentRepository(db).delete_for_user(user_id)
        counts["consent_logs"] = ConsentLogRepository(db).delete_for_user(user_id)
        counts["password_history"] = PasswordHistoryRepository(db).delete_for_user(user_id)
        counts["legal_obligations"] = LegalObligationRepository(db).delete_for_user(user_id)
        counts["user_credentials"] = CredentialRepository(db).delete_for_user(user_id)
        AuditEventRepository(db).detach_user(user_id)
        PrivacyRequestRepository(db).detach_user(user_id)
        counts["user_profiles"] = UserRepository(db).delete_profile(user_id)
        request.user_id = None

        def purge_cache() -> None:
            self.sessions.purge_cached_sessions(session_ids)
            self.consent.cache.delete(restriction_key(user_id))

        return _Outcome(response_data={"deleted": counts}, after_commit=[purge_cache])
