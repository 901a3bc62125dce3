"""
Audit repositories: audit events, security alerts, compliance reports and
security assessments.

Provides data access for the audit trail and for the suspicious-pattern
queries the compliance monitors run.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from repositories import db_models
from repositories.base import BaseRepository


class AuditEventRepository(BaseRepository[db_models.AuditEvent]):
    """Repository for audit event operations."""

    def __init__(self, db: Session):
        super().__init__(db_models.AuditEvent, db)

    def get_user_trail(
        self,
        user_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[db_models.AuditEvent]:
        """
        Get audit events for a user, newest first.

        Args:
            user_id: User ID
            start_date: Filter by start date
            end_date: Filter by end date
            limit: Maximum records to return
            offset: Number of records to skip
        """
        query = self.db.query(self.model).filter(self.model.user_id == user_id)
        if start_date:
            query = query.filter(self.model.timestamp >= start_date)
        if end_date:
            query = query.filter(self.model.timestamp <= end_date)
        return (
            query.order_by(self.model.timestamp.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def get_identifiers_over_threshold(
        self, event_type: str, since: datetime, threshold: int
    ) -> list[tuple[str, int]]:
        """
        Login identifiers with at least ``threshold`` events since ``since``.

        Returns:
            List of (identifier, count) tuples
        """
        rows = (
            self.db.query(
                self.model.identifier,
                func.count(self.model.id).label("count"),
            )
            .filter(
                self.model.event_type == event_type,
                self.model.timestamp >= since,
                self.model.identifier.isnot(None),
            )
            .group_by(self.model.identifier)
            .having(func.count(self.model.id) >= threshold)
            .all()
        )
        return [(str(row[0]), int(row[1])) for row in rows]

    def get_users_over_threshold(
        self, event_type: str, since: datetime, threshold: int
    ) -> list[tuple[str, int]]:
        """
        Users with at least ``threshold`` events since ``since``.

        Returns:
            List of (user_id, count) tuples
        """
        rows = (
            self.db.query(
                self.model.user_id,
                func.count(self.model.id).label("count"),
            )
            .filter(
                self.model.event_type == event_type,
                self.model.timestamp >= since,
                self.model.user_id.isnot(None),
            )
            .group_by(self.model.user_id)
            .having(func.count(self.model.id) >= threshold)
            .all()
        )
        return [(str(row[0]), int(row[1])) for row in rows]

    def count_between(
        self, start: datetime, end: datetime, event_types: Optional[list[str]] = None
    ) -> int:
        query = self.db.query(self.model).filter(
            self.model.timestamp >= start, self.model.timestamp <= end
        )
        if event_types:
            query = query.filter(self.model.event_type.in_(event_types))
        return query.count()

    def get_before(
        self,
        cutoff: datetime,
        after_id: Optional[str],
        limit: int,
        identified_only: bool = False,
    ) -> list[db_models.AuditEvent]:
        query = self.db.query(self.model).filter(self.model.timestamp < cutoff)
        if identified_only:
            query = query.filter(
                or_(
                    self.model.user_id.isnot(None),
                    self.model.session_id.isnot(None),
                    self.model.identifier.isnot(None),
                    self.model.ip_address.isnot(None),
                    self.model.user_agent.isnot(None),
                )
            )
        if after_id is not None:
            query = query.filter(self.model.id > after_id)
        return query.order_by(self.model.id).limit(limit).all()

    def detach_user(self, user_id: str) -> int:
        """Null out ``user_id`` on the user's events; no commit."""
        return (
            self.db.query(self.model)
            .filter(self.model.user_id == user_id)
            .update({self.model.user_id: None}, synchronize_session=False)
        )


class SecurityAlertRepository(BaseRepository[db_models.SecurityAlert]):
    """Repository for security alerts."""

    def __init__(self, db: Session):
        super().__init__(db_models.SecurityAlert, db)

    def get_recent(
        self, limit: int = 50, since: Optional[datetime] = None, unresolved_only: bool = False
    ) -> list[db_models.SecurityAlert]:
        query = self.db.query(self.model)
        if since is not None:
            query = query.filter(self.model.triggered_at >= since)
        if unresolved_only:
            query = query.filter(self.model.resolved_at.is_(None))
        return query.order_by(self.model.triggered_at.desc()).limit(limit).all()

    def get_unresolved_of_type(
        self, alert_type: str, since: datetime
    ) -> list[db_models.SecurityAlert]:
        return (
            self.db.query(self.model)
            .filter(
                self.model.alert_type == alert_type,
                self.model.triggered_at >= since,
                self.model.resolved_at.is_(None),
            )
            .all()
        )

    def count_between(
        self,
        start: datetime,
        end: datetime,
        severities: Optional[list[str]] = None,
        alert_type: Optional[str] = None,
    ) -> int:
        query = self.db.query(self.model).filter(
            self.model.triggered_at >= start, self.model.triggered_at <= end
        )
        if severities:
            query = query.filter(self.model.severity.in_(severities))
        if alert_type:
            query = query.filter(self.model.alert_type == alert_type)
        return query.count()


class ComplianceReportRepository(BaseRepository[db_models.ComplianceReport]):
    """Stored compliance report snapshots."""

    def __init__(self, db: Session):
        super().__init__(db_models.ComplianceReport, db)

    def get_latest(
        self, report_type: Optional[str] = None
    ) -> Optional[db_models.ComplianceReport]:
        query = self.db.query(self.model)
        if report_type:
            query = query.filter(self.model.report_type == report_type)
        return query.order_by(self.model.generated_at.desc()).first()


class SecurityAssessmentRepository(BaseRepository[db_models.SecurityAssessment]):
    """Stored security assessment results."""

    def __init__(self, db: Session):
        super().__init__(db_models.SecurityAssessment, db)

    def get_latest(self) -> Optional[db_models.SecurityAssessment]:
        return self.db.query(self.model).order_by(self.model.created_at.desc()).first()
