"""
Repository for the durable session mirror.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

import repositories.db_models as db_models

from .base import BaseRepository


class SessionRecordRepository(BaseRepository[db_models.UserSessionRecord]):
    """Mirror rows for cache sessions."""

    def __init__(self, db: Session):
        super().__init__(db_models.UserSessionRecord, db)

    def get_active_for_user(self, user_id: str) -> List[db_models.UserSessionRecord]:
        return (
            self.db.query(db_models.UserSessionRecord)
            .filter(
                db_models.UserSessionRecord.user_id == user_id,
                db_models.UserSessionRecord.invalidated_at.is_(None),
            )
            .all()
        )

    def get_for_user(self, user_id: str) -> List[db_models.UserSessionRecord]:
        return (
            self.db.query(db_models.UserSessionRecord)
            .filter(db_models.UserSessionRecord.user_id == user_id)
            .order_by(db_models.UserSessionRecord.created_at.desc())
            .all()
        )

    def invalidate_ids(self, session_ids: List[str], when: datetime) -> int:
        """Stamp ``invalidated_at`` on the given rows; no commit."""
        if not session_ids:
            return 0
        return (
            self.db.query(db_models.UserSessionRecord)
            .filter(
                db_models.UserSessionRecord.session_id.in_(session_ids),
                db_models.UserSessionRecord.invalidated_at.is_(None),
            )
            .update(
                {db_models.UserSessionRecord.invalidated_at: when},
                synchronize_session=False,
            )
        )

    def get_expired_active_ids(self, now: datetime) -> List[str]:
        rows = (
            self.db.query(db_models.UserSessionRecord.session_id)
            .filter(
                db_models.UserSessionRecord.invalidated_at.is_(None),
                db_models.UserSessionRecord.expires_at <= now,
            )
            .all()
        )
        return [r[0] for r in rows]

    def get_dead_before(
        self, cutoff: datetime, after_id: Optional[str], limit: int
    ) -> List[db_models.UserSessionRecord]:
        """
        Mirror rows that expired or were invalidated before ``cutoff``.

        Keyset-paginated on session id.
        """
        query = self.db.query(db_models.UserSessionRecord).filter(
            or_(
                db_models.UserSessionRecord.expires_at < cutoff,
                db_models.UserSessionRecord.invalidated_at < cutoff,
            )
        )
        if after_id is not None:
            query = query.filter(db_models.UserSessionRecord.session_id > after_id)
        return query.order_by(db_models.UserSessionRecord.session_id).limit(limit).all()

    def count_live(self, now: datetime, created_before: Optional[datetime] = None) -> int:
        """Rows neither invalidated nor expired at ``now``."""
        query = self.db.query(db_models.UserSessionRecord).filter(
            db_models.UserSessionRecord.invalidated_at.is_(None),
            db_models.UserSessionRecord.expires_at > now,
        )
        if created_before is not None:
            query = query.filter(db_models.UserSessionRecord.created_at < created_before)
        return query.count()

    def count_distinct_users_between(self, start: datetime, end: datetime) -> int:
        return (
            self.db.query(db_models.UserSessionRecord.user_id)
            .filter(
                db_models.UserSessionRecord.created_at >= start,
                db_models.UserSessionRecord.created_at <= end,
            )
            .distinct()
            .count()
        )

    def delete_for_user(self, user_id: str) -> int:
        return (
            self.db.query(db_models.UserSessionRecord)
            .filter(db_models.UserSessionRecord.user_id == user_id)
            .delete(synchronize_session=False)
        )
