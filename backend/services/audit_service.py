"""
Audit trail and real-time security alerting.

Every security- and privacy-relevant action is persisted to
``audit_events``, mirrored into a capped recent-events list in the cache,
and evaluated for risk: high and critical events raise a SecurityAlert at
once. Audit logging is best-effort; a failure here is logged and never
aborts the operation being audited.
"""

import json
from collections.abc import Callable
from datetime import datetime
from typing import Any, Optional

from loguru import logger
from sqlalchemy.orm import Session

from helpers.time_utils import Clock, format_iso8601, utc_now
from models.config import Settings
from models.exceptions import AlertNotFoundException
from models.notification_types import NotificationType
from models.policies import MAX_USER_AGENT_LENGTH
from repositories import db_models
from repositories.audit_repository import AuditEventRepository, SecurityAlertRepository
from repositories.cache import CacheStore
from services.notification_service import Notifier

RECENT_EVENTS_KEY = "audit:recent_events"

log = logger.bind(component="audit")

AlertCallback = Callable[[db_models.SecurityAlert], None]


class AuditEventType:
    """Standard audit event types."""

    USER_REGISTERED = "user_registered"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGIN_BLOCKED = "login_blocked"
    LOGOUT = "logout"
    EMAIL_VERIFIED = "email_verified"
    PASSWORD_CHANGED = "password_changed"  # nosec B105 - event type, not password
    PASSWORD_RESET_REQUESTED = "password_reset_requested"  # nosec B105
    PASSWORD_RESET_COMPLETED = "password_reset_completed"  # nosec B105
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    CONSENT_GRANTED = "consent_granted"
    CONSENT_WITHDRAWN = "consent_withdrawn"
    PRIVACY_REQUEST = "privacy_request"
    DATA_ACCESS = "data_access"
    RETENTION_RUN = "retention_run"
    USER_INTERACTION = "user_interaction"
    SYSTEM = "system_event"


# Account actions logged at medium risk by log_user_interaction
SENSITIVE_ACTIONS = frozenset(
    {
        "password_change",
        "email_change",
        "consent_withdrawn",
        "privacy_request",
        "account_deletion",
        "logout_all",
    }
)

SENSITIVE_DATA_TYPES = frozenset({"user_profiles", "assessment_responses", "personal_data"})
BULK_OPERATIONS = frozenset({"export", "bulk_access", "admin_access"})


def data_access_risk(data_type: str, operation: str) -> str:
    """
    Risk of a data access.

    Bulk operations on personal data are high, bulk operations elsewhere
    and routine access to personal data are medium, the rest is low.
    """
    sensitive = data_type in SENSITIVE_DATA_TYPES
    bulk = operation in BULK_OPERATIONS
    if sensitive and bulk:
        return db_models.RiskLevel.HIGH.value
    if sensitive or bulk:
        return db_models.RiskLevel.MEDIUM.value
    return db_models.RiskLevel.LOW.value


class AuditService:
    """Service for audit logging and security alerts."""

    def __init__(
        self,
        cache: CacheStore,
        settings: Settings,
        notifier: Optional[Notifier] = None,
        clock: Clock = utc_now,
    ):
        self.cache = cache
        self.notifier = notifier
        self.clock = clock
        self.recent_limit = settings.AUDIT_RECENT_EVENTS_LIMIT
        self._alert_callbacks: list[AlertCallback] = []

    def register_alert_callback(self, callback: AlertCallback) -> None:
        self._alert_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def log_audit_event(
        self,
        db: Session,
        event_type: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        identifier: Optional[str] = None,
        risk_level: str = db_models.RiskLevel.LOW.value,
        event_data: Optional[dict[str, Any]] = None,
        source: str = "system",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[db_models.AuditEvent]:
        """
        Persist an audit event and evaluate its risk.

        Must be called at a transaction boundary: it commits, and on failure
        it rolls back and returns None.

        Args:
            db: Database session
            event_type: Type of event (use AuditEventType constants)
            user_id: Resolved user, if any
            session_id: Session the action happened in
            identifier: Login identifier for events without a resolved user
            risk_level: low, medium, high or critical
            event_data: Additional details
            source: Component that produced the event
            ip_address: Client IP address
            user_agent: Client user agent string

        Returns:
            Created AuditEvent, or None if it could not be stored
        """
        event = db_models.AuditEvent(
            event_type=event_type,
            user_id=user_id,
            session_id=session_id,
            identifier=identifier,
            risk_level=risk_level,
            event_data=event_data or {},
            source=source,
            ip_address=ip_address,
            user_agent=user_agent[:MAX_USER_AGENT_LENGTH] if user_agent else None,
            timestamp=self.clock(),
        )

        try:
            AuditEventRepository(db).create(event)
        except Exception as e:
            db.rollback()
            log.error(f"Failed to persist audit event {event_type}: {e}")
            return None

        self._push_recent(event)

        if risk_level in (db_models.RiskLevel.HIGH.value, db_models.RiskLevel.CRITICAL.value):
            log.warning(f"High-risk audit event: {event_type} (risk={risk_level})")
            severity = (
                db_models.AlertSeverity.CRITICAL.value
                if risk_level == db_models.RiskLevel.CRITICAL.value
                else db_models.AlertSeverity.ERROR.value
            )
            self.create_security_alert(
                db,
                alert_type="high_risk_event",
                severity=severity,
                message=f"High-risk event detected: {event_type}",
                details={
                    "event_id": event.id,
                    "event_type": event_type,
                    "risk_level": risk_level,
                    "subject": user_id or identifier,
                },
            )
        else:
            log.info(f"Audit event: {event_type}")

        return event

    def _push_recent(self, event: db_models.AuditEvent) -> None:
        compact = {
            "id": event.id,
            "event_type": event.event_type,
            "user_id": event.user_id,
            "risk_level": event.risk_level,
            "source": event.source,
            "timestamp": format_iso8601(event.timestamp),
        }
        try:
            self.cache.push_capped(RECENT_EVENTS_KEY, json.dumps(compact), self.recent_limit)
        except Exception as e:
            log.warning(f"Could not mirror audit event to cache: {e}")

    def log_user_interaction(
        self,
        db: Session,
        user_id: str,
        action: str,
        details: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[db_models.AuditEvent]:
        risk = (
            db_models.RiskLevel.MEDIUM.value
            if action in SENSITIVE_ACTIONS
            else db_models.RiskLevel.LOW.value
        )
        return self.log_audit_event(
            db,
            AuditEventType.USER_INTERACTION,
            user_id=user_id,
            session_id=session_id,
            risk_level=risk,
            event_data={"action": action, **(details or {})},
            source="user",
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def log_data_access(
        self,
        db: Session,
        user_id: Optional[str],
        data_type: str,
        operation: str,
        record_count: Optional[int] = None,
        subject_user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Optional[db_models.AuditEvent]:
        """
        Log an access to stored data.

        Args:
            user_id: Who accessed the data
            data_type: Table or category accessed
            operation: read, export, bulk_access, admin_access, ...
            record_count: Rows returned, when known
            subject_user_id: Whose data was accessed, when different
        """
        return self.log_audit_event(
            db,
            AuditEventType.DATA_ACCESS,
            user_id=user_id,
            session_id=session_id,
            risk_level=data_access_risk(data_type, operation),
            event_data={
                "data_type": data_type,
                "operation": operation,
                "record_count": record_count,
                "subject_user_id": subject_user_id,
            },
            source="data_access",
            ip_address=ip_address,
        )

    def log_system_event(
        self,
        db: Session,
        event_type: str,
        details: Optional[dict[str, Any]] = None,
        risk_level: str = db_models.RiskLevel.LOW.value,
    ) -> Optional[db_models.AuditEvent]:
        return self.log_audit_event(
            db, event_type, risk_level=risk_level, event_data=details, source="system"
        )

    def get_recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        """Newest-first events from the cache ring buffer."""
        raw = self.cache.list_range(RECENT_EVENTS_KEY, 0, max(0, limit - 1))
        return [json.loads(item) for item in raw]

    def get_user_audit_trail(
        self,
        db: Session,
        user_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[db_models.AuditEvent]:
        return AuditEventRepository(db).get_user_trail(
            user_id, start_date=start_date, end_date=end_date, limit=limit, offset=offset
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def create_security_alert(
        self,
        db: Session,
        alert_type: str,
        severity: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> Optional[db_models.SecurityAlert]:
        """
        Persist an alert, run the registered callbacks and page on critical.

        Returns:
            Created SecurityAlert, or None if it could not be stored
        """
        alert = db_models.SecurityAlert(
            alert_type=alert_type,
            severity=severity,
            message=message,
            details=details or {},
            triggered_at=self.clock(),
        )
        try:
            SecurityAlertRepository(db).create(alert)
        except Exception as e:
            db.rollback()
            log.error(f"Failed to persist security alert {alert_type}: {e}")
            return None

        if severity == db_models.AlertSeverity.CRITICAL.value:
            log.critical(f"Security alert: {alert_type} - {message}")
        else:
            log.warning(f"Security alert: {alert_type} ({severity}) - {message}")

        for callback in self._alert_callbacks:
            try:
                callback(alert)
            except Exception as e:
                log.error(f"Alert callback failed for {alert_type}: {e}")

        if severity == db_models.AlertSeverity.CRITICAL.value and self.notifier is not None:
            self.notifier.notify(
                NotificationType.SECURITY_ALERT,
                title=f"Critical security alert: {alert_type}",
                message=message,
                data={"alert_id": alert.id, "alert_type": alert_type},
            )

        return alert

    def acknowledge_alert(
        self, db: Session, alert_id: str, actor_id: str
    ) -> db_models.SecurityAlert:
        repo = SecurityAlertRepository(db)
        alert = repo.get_by_id(alert_id)
        if alert is None:
            raise AlertNotFoundException(alert_id)
        if alert.acknowledged_at is None:
            alert.acknowledged_at = self.clock()
            alert.acknowledged_by = actor_id
            repo.save(alert)
        return alert

    def resolve_alert(
        self, db: Session, alert_id: str, actor_id: str
    ) -> db_models.SecurityAlert:
        repo = SecurityAlertRepository(db)
        alert = repo.get_by_id(alert_id)
        if alert is None:
            raise AlertNotFoundException(alert_id)
        if alert.resolved_at is None:
            now = self.clock()
            alert.resolved_at = now
            alert.resolved_by = actor_id
            if alert.acknowledged_at is None:
                alert.acknowledged_at = now
                alert.acknowledged_by = actor_id
            repo.save(alert)
        return alert

    def get_recent_alerts(
        self, db: Session, limit: int = 50, since: Optional[datetime] = None
    ) -> list[db_models.SecurityAlert]:
        return SecurityAlertRepository(db).get_recent(limit=limit, since=since)
