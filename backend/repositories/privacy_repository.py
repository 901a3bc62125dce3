"""
Privacy repositories: data-subject requests and legal obligations.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from repositories import db_models
from repositories.base import BaseRepository


class PrivacyRequestRepository(BaseRepository[db_models.PrivacyRequest]):
    """Repository for privacy request rows."""

    def __init__(self, db: Session):
        super().__init__(db_models.PrivacyRequest, db)

    def get_for_user(self, user_id: str) -> list[db_models.PrivacyRequest]:
        return (
            self.db.query(db_models.PrivacyRequest)
            .filter(db_models.PrivacyRequest.user_id == user_id)
            .order_by(db_models.PrivacyRequest.request_date.desc())
            .all()
        )

    def get_by_status(
        self, status: str, limit: int = 100, offset: int = 0
    ) -> list[db_models.PrivacyRequest]:
        """Oldest first, so the queue is worked in filing order."""
        return (
            self.db.query(db_models.PrivacyRequest)
            .filter(db_models.PrivacyRequest.status == status)
            .order_by(db_models.PrivacyRequest.request_date.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_pending_before(self, cutoff: datetime) -> int:
        """Requests still pending that were filed before ``cutoff``."""
        return (
            self.db.query(db_models.PrivacyRequest)
            .filter(
                db_models.PrivacyRequest.status
                == db_models.PrivacyRequestStatus.PENDING.value,
                db_models.PrivacyRequest.request_date < cutoff,
            )
            .count()
        )

    def count_pending(self) -> int:
        return (
            self.db.query(db_models.PrivacyRequest)
            .filter(
                db_models.PrivacyRequest.status
                == db_models.PrivacyRequestStatus.PENDING.value
            )
            .count()
        )

    def get_completed_between(
        self, start: datetime, end: datetime
    ) -> list[db_models.PrivacyRequest]:
        return (
            self.db.query(db_models.PrivacyRequest)
            .filter(
                db_models.PrivacyRequest.status
                == db_models.PrivacyRequestStatus.COMPLETED.value,
                db_models.PrivacyRequest.completion_date >= start,
                db_models.PrivacyRequest.completion_date <= end,
            )
            .all()
        )

    def detach_user(self, user_id: str) -> int:
        """Null out ``user_id`` so the requests survive erasure."""
        return (
            self.db.query(db_models.PrivacyRequest)
            .filter(db_models.PrivacyRequest.user_id == user_id)
            .update({db_models.PrivacyRequest.user_id: None}, synchronize_session=False)
        )


class LegalObligationRepository(BaseRepository[db_models.LegalObligation]):
    """Legal holds that block erasure and exempt records from retention."""

    def __init__(self, db: Session):
        super().__init__(db_models.LegalObligation, db)

    def _active_query(self, now: datetime):  # type: ignore[no-untyped-def]
        return self.db.query(db_models.LegalObligation).filter(
            db_models.LegalObligation.status == "active",
            or_(
                db_models.LegalObligation.expires_at.is_(None),
                db_models.LegalObligation.expires_at > now,
            ),
        )

    def get_active_for_user(
        self, user_id: str, now: datetime
    ) -> list[db_models.LegalObligation]:
        return (
            self._active_query(now)
            .filter(db_models.LegalObligation.user_id == user_id)
            .all()
        )

    def has_active(
        self, user_id: str, now: datetime, obligation_types: Optional[list[str]] = None
    ) -> bool:
        """
        Whether the user has an active obligation.

        Args:
            user_id: User ID
            now: Reference time for expiry
            obligation_types: Restrict to these types; any type when None
        """
        query = self._active_query(now).filter(
            db_models.LegalObligation.user_id == user_id
        )
        if obligation_types is not None:
            if not obligation_types:
                return False
            query = query.filter(
                db_models.LegalObligation.obligation_type.in_(obligation_types)
            )
        return query.first() is not None

    def delete_for_user(self, user_id: str) -> int:
        return (
            self.db.query(db_models.LegalObligation)
            .filter(db_models.LegalObligation.user_id == user_id)
            .delete(synchronize_session=False)
        )
