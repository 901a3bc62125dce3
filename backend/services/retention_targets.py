"""
Retention targets: what each retention policy operates on.

A target knows how to select candidate rows of one data type past a cutoff
and how to apply each deletion method it supports to a single row. Selection
is keyset-paginated on the primary key so batches stay bounded and a run
never revisits a row.

For ``anonymize`` the selection only returns rows that still hold
identifying data, which makes a second run a no-op.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from helpers.time_utils import format_iso8601
from models.exceptions import UnsupportedDeletionMethodException
from repositories.assessment_repository import AnalyticsRepository, AssessmentRepository
from repositories.audit_repository import AuditEventRepository
from repositories.cache import CacheStore
from repositories.db_models import (
    AssessmentSession,
    AssessmentStatus,
    AuditEvent,
    DeletionMethod,
    UserAnalytics,
    UserSessionRecord,
)
from repositories.session_repository import SessionRecordRepository
from services.session_service import session_key

ANONYMIZE = DeletionMethod.ANONYMIZE.value
HARD_DELETE = DeletionMethod.HARD_DELETE.value
SOFT_DELETE = DeletionMethod.SOFT_DELETE.value


class RetentionTarget(ABC):
    """One data type that retention policies can be applied to."""

    data_type: str = ""
    supported_methods: frozenset[str] = frozenset()

    def check_method(self, method: str) -> None:
        if method not in self.supported_methods:
            raise UnsupportedDeletionMethodException(self.data_type, method)

    @abstractmethod
    def select(
        self,
        db: Session,
        method: str,
        cutoff: datetime,
        after_id: Optional[str],
        limit: int,
    ) -> list[Any]:
        """Next batch of candidate rows, ordered by id."""

    @abstractmethod
    def record_id(self, record: Any) -> str: ...

    @abstractmethod
    def owner_id(self, record: Any) -> Optional[str]:
        """User the row belongs to, for legal-obligation exemptions."""

    @abstractmethod
    def apply(self, db: Session, record: Any, method: str, now: datetime) -> None:
        """Stage the change for one row without committing."""

    def after_commit(self, record_id: str, method: str) -> None:
        """Work that must only happen once the row's change is durable."""


class AssessmentSessionTarget(RetentionTarget):
    """Completed assessment sessions with their responses and results."""

    data_type = "assessment_sessions"
    supported_methods = frozenset({ANONYMIZE, HARD_DELETE, SOFT_DELETE})

    def select(self, db, method, cutoff, after_id, limit):  # type: ignore[no-untyped-def]
        return AssessmentRepository(db).get_completed_before(
            cutoff, after_id, limit, identified_only=(method == ANONYMIZE)
        )

    def record_id(self, record: AssessmentSession) -> str:
        return record.id

    def owner_id(self, record: AssessmentSession) -> Optional[str]:
        return record.user_id

    def apply(self, db: Session, record: AssessmentSession, method: str, now: datetime) -> None:
        if method == HARD_DELETE:
            AssessmentRepository(db).delete_session_trees([record.id])
        elif method == SOFT_DELETE:
            record.status = AssessmentStatus.DELETED.value
            record.updated_at = now
        else:
            record.user_id = None
            record.cultural_adaptations = None
            record.anonymized_at = now
            for response in record.responses:
                response.response_value = {
                    "anonymized": True,
                    "response_type": type(response.response_value).__name__,
                    "timestamp": format_iso8601(response.created_at),
                }
            for result in record.results:
                result.regulatory_considerations = None
                result.implementation_priorities = None
                result.next_steps = None
                result.resource_requirements = None


class AnalyticsTarget(RetentionTarget):
    data_type = "user_analytics"
    supported_methods = frozenset({ANONYMIZE, HARD_DELETE, SOFT_DELETE})

    def select(self, db, method, cutoff, after_id, limit):  # type: ignore[no-untyped-def]
        return AnalyticsRepository(db).get_before(
            cutoff,
            after_id,
            limit,
            identified_only=(method == ANONYMIZE),
            live_only=(method == SOFT_DELETE),
        )

    def record_id(self, record: UserAnalytics) -> str:
        return record.id

    def owner_id(self, record: UserAnalytics) -> Optional[str]:
        return record.user_id

    def apply(self, db: Session, record: UserAnalytics, method: str, now: datetime) -> None:
        if method == HARD_DELETE:
            db.delete(record)
        elif method == SOFT_DELETE:
            record.deleted_at = now
        else:
            record.user_id = None
            record.ip_address = None
            record.user_agent = None


class AuditEventTarget(RetentionTarget):
    """Audit events. Soft deletion would defeat an append-only trail."""

    data_type = "audit_logs"
    supported_methods = frozenset({ANONYMIZE, HARD_DELETE})

    def select(self, db, method, cutoff, after_id, limit):  # type: ignore[no-untyped-def]
        return AuditEventRepository(db).get_before(
            cutoff, after_id, limit, identified_only=(method == ANONYMIZE)
        )

    def record_id(self, record: AuditEvent) -> str:
        return record.id

    def owner_id(self, record: AuditEvent) -> Optional[str]:
        return record.user_id

    def apply(self, db: Session, record: AuditEvent, method: str, now: datetime) -> None:
        if method == HARD_DELETE:
            db.delete(record)
        else:
            record.user_id = None
            record.session_id = None
            record.identifier = None
            record.ip_address = None
            record.user_agent = None


class SessionRecordTarget(RetentionTarget):
    """Session mirror rows that expired or were revoked before the cutoff."""

    data_type = "user_sessions"
    supported_methods = frozenset({HARD_DELETE})

    def __init__(self, cache: CacheStore):
        self.cache = cache

    def select(self, db, method, cutoff, after_id, limit):  # type: ignore[no-untyped-def]
        return SessionRecordRepository(db).get_dead_before(cutoff, after_id, limit)

    def record_id(self, record: UserSessionRecord) -> str:
        return record.session_id

    def owner_id(self, record: UserSessionRecord) -> Optional[str]:
        return record.user_id

    def apply(self, db: Session, record: UserSessionRecord, method: str, now: datetime) -> None:
        db.delete(record)

    def after_commit(self, record_id: str, method: str) -> None:
        self.cache.delete(session_key(record_id))


def build_targets(cache: CacheStore) -> dict[str, RetentionTarget]:
    targets: list[RetentionTarget] = [
        AssessmentSessionTarget(),
        AnalyticsTarget(),
        AuditEventTarget(),
        SessionRecordTarget(cache),
    ]
    return {target.data_type: target for target in targets}
