"""
Consent repositories: current consent state and its append-only log.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

import repositories.db_models as db_models

from .base import BaseRepository


class ConsentRepository(BaseRepository[db_models.ConsentRecord]):
    """One row per (user, consent type)."""

    def __init__(self, db: Session):
        super().__init__(db_models.ConsentRecord, db)

    def get(self, user_id: str, consent_type: str) -> Optional[db_models.ConsentRecord]:
        return self.db.get(db_models.ConsentRecord, (user_id, consent_type))

    def get_for_user(self, user_id: str) -> list[db_models.ConsentRecord]:
        return (
            self.db.query(db_models.ConsentRecord)
            .filter(db_models.ConsentRecord.user_id == user_id)
            .all()
        )

    def count_given(self, user_ids: list[str], consent_type: str) -> int:
        """Users among ``user_ids`` currently holding the given consent."""
        if not user_ids:
            return 0
        return (
            self.db.query(db_models.ConsentRecord)
            .filter(
                db_models.ConsentRecord.user_id.in_(user_ids),
                db_models.ConsentRecord.consent_type == consent_type,
                db_models.ConsentRecord.consent_given.is_(True),
            )
            .count()
        )

    def count_given_since(self, consent_type: str, since: datetime) -> int:
        return (
            self.db.query(db_models.ConsentRecord)
            .filter(
                db_models.ConsentRecord.consent_type == consent_type,
                db_models.ConsentRecord.consent_given.is_(True),
                db_models.ConsentRecord.consent_date >= since,
            )
            .count()
        )

    def delete_for_user(self, user_id: str) -> int:
        return (
            self.db.query(db_models.ConsentRecord)
            .filter(db_models.ConsentRecord.user_id == user_id)
            .delete(synchronize_session=False)
        )


class ConsentLogRepository(BaseRepository[db_models.ConsentLog]):
    """Repository for consent log operations."""

    def __init__(self, db: Session):
        super().__init__(db_models.ConsentLog, db)

    def add_entry(
        self,
        user_id: str,
        consent_type: str,
        action: str,
        policy_version: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> db_models.ConsentLog:
        """
        Stage a consent log entry in the current transaction.

        Args:
            user_id: User ID
            consent_type: Type of consent
            action: 'granted' or 'withdrawn'
            policy_version: Consent text version the action refers to
            ip_address: Optional IP address for audit
            user_agent: Optional user agent for audit

        Returns:
            The pending ConsentLog row
        """
        log = db_models.ConsentLog(
            user_id=user_id,
            consent_type=consent_type,
            action=action,
            policy_version=policy_version,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.add(log)
        return log

    def get_by_user(
        self, user_id: str, skip: int = 0, limit: int = 100
    ) -> list[db_models.ConsentLog]:
        return (
            self.db.query(db_models.ConsentLog)
            .filter(db_models.ConsentLog.user_id == user_id)
            .order_by(db_models.ConsentLog.created_at.desc(), db_models.ConsentLog.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def delete_for_user(self, user_id: str) -> int:
        return (
            self.db.query(db_models.ConsentLog)
            .filter(db_models.ConsentLog.user_id == user_id)
            .delete(synchronize_session=False)
        )
