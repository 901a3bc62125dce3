"""
Retention repositories: policies, job history and audit report snapshots.
"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

import repositories.db_models as db_models

from .base import BaseRepository


class RetentionPolicyRepository(BaseRepository[db_models.RetentionPolicyRecord]):
    """Repository for retention policies (one per data type)."""

    def __init__(self, db: Session):
        super().__init__(db_models.RetentionPolicyRecord, db)

    def get_by_data_type(
        self, data_type: str
    ) -> Optional[db_models.RetentionPolicyRecord]:
        return (
            self.db.query(db_models.RetentionPolicyRecord)
            .filter(db_models.RetentionPolicyRecord.data_type == data_type)
            .first()
        )

    def list_all(self) -> list[db_models.RetentionPolicyRecord]:
        return (
            self.db.query(db_models.RetentionPolicyRecord)
            .order_by(db_models.RetentionPolicyRecord.data_type)
            .all()
        )


class RetentionJobRepository(BaseRepository[db_models.RetentionJobRecord]):
    """Repository for retention job history."""

    def __init__(self, db: Session):
        super().__init__(db_models.RetentionJobRecord, db)

    def get_recent(self, limit: int = 50) -> list[db_models.RetentionJobRecord]:
        return (
            self.db.query(db_models.RetentionJobRecord)
            .order_by(db_models.RetentionJobRecord.start_time.desc())
            .limit(limit)
            .all()
        )

    def count_for_policy(self, policy_id: str) -> int:
        return (
            self.db.query(db_models.RetentionJobRecord)
            .filter(db_models.RetentionJobRecord.policy_id == policy_id)
            .count()
        )

    def get_last_for_data_type(
        self, data_type: str
    ) -> Optional[db_models.RetentionJobRecord]:
        return (
            self.db.query(db_models.RetentionJobRecord)
            .filter(db_models.RetentionJobRecord.data_type == data_type)
            .order_by(db_models.RetentionJobRecord.start_time.desc())
            .first()
        )

    def count_by_status(self) -> dict[str, int]:
        rows = (
            self.db.query(
                db_models.RetentionJobRecord.status,
                func.count(db_models.RetentionJobRecord.id),
            )
            .group_by(db_models.RetentionJobRecord.status)
            .all()
        )
        return {status: count for status, count in rows}


class RetentionReportRepository(BaseRepository[db_models.RetentionAuditReport]):
    """Stored retention audit report snapshots."""

    def __init__(self, db: Session):
        super().__init__(db_models.RetentionAuditReport, db)

    def get_latest(self) -> Optional[db_models.RetentionAuditReport]:
        return (
            self.db.query(db_models.RetentionAuditReport)
            .order_by(db_models.RetentionAuditReport.created_at.desc())
            .first()
        )
