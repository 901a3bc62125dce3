"""
Repositories for assessment and analytics records.

These rows are not managed by this service directly; they are what
retention policies and erasure requests operate on.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

import repositories.db_models as db_models

from .base import BaseRepository


class AssessmentRepository(BaseRepository[db_models.AssessmentSession]):
    """Assessment sessions and their responses, results and recommendations."""

    def __init__(self, db: Session):
        super().__init__(db_models.AssessmentSession, db)

    def get_for_user(self, user_id: str) -> list[db_models.AssessmentSession]:
        return (
            self.db.query(db_models.AssessmentSession)
            .filter(db_models.AssessmentSession.user_id == user_id)
            .order_by(db_models.AssessmentSession.created_at)
            .all()
        )

    def get_session_ids_for_user(self, user_id: str) -> list[str]:
        rows = (
            self.db.query(db_models.AssessmentSession.id)
            .filter(db_models.AssessmentSession.user_id == user_id)
            .all()
        )
        return [r[0] for r in rows]

    def get_responses_for_user(self, user_id: str) -> list[db_models.AssessmentResponse]:
        return (
            self.db.query(db_models.AssessmentResponse)
            .join(
                db_models.AssessmentSession,
                db_models.AssessmentResponse.session_id == db_models.AssessmentSession.id,
            )
            .filter(db_models.AssessmentSession.user_id == user_id)
            .order_by(db_models.AssessmentResponse.created_at)
            .all()
        )

    def get_result_ids(self, session_ids: list[str]) -> list[str]:
        if not session_ids:
            return []
        rows = (
            self.db.query(db_models.AssessmentResult.id)
            .filter(db_models.AssessmentResult.session_id.in_(session_ids))
            .all()
        )
        return [r[0] for r in rows]

    def delete_responses(self, session_ids: list[str]) -> int:
        if not session_ids:
            return 0
        return (
            self.db.query(db_models.AssessmentResponse)
            .filter(db_models.AssessmentResponse.session_id.in_(session_ids))
            .delete(synchronize_session=False)
        )

    def delete_recommendations(self, result_ids: list[str]) -> int:
        if not result_ids:
            return 0
        return (
            self.db.query(db_models.CurriculumRecommendation)
            .filter(db_models.CurriculumRecommendation.result_id.in_(result_ids))
            .delete(synchronize_session=False)
        )

    def delete_results(self, session_ids: list[str]) -> int:
        if not session_ids:
            return 0
        return (
            self.db.query(db_models.AssessmentResult)
            .filter(db_models.AssessmentResult.session_id.in_(session_ids))
            .delete(synchronize_session=False)
        )

    def delete_sessions(self, session_ids: list[str]) -> int:
        if not session_ids:
            return 0
        return (
            self.db.query(db_models.AssessmentSession)
            .filter(db_models.AssessmentSession.id.in_(session_ids))
            .delete(synchronize_session=False)
        )

    def delete_session_trees(self, session_ids: list[str]) -> dict[str, int]:
        """
        Delete sessions and their children, leaves first.

        Stages the deletes without committing.

        Returns:
            Count of deleted rows per table
        """
        result_ids = self.get_result_ids(session_ids)
        counts = {"assessment_responses": self.delete_responses(session_ids)}
        counts["curriculum_recommendations"] = self.delete_recommendations(result_ids)
        counts["assessment_results"] = self.delete_results(session_ids)
        counts["assessment_sessions"] = self.delete_sessions(session_ids)
        return counts

    def get_completed_before(
        self,
        cutoff: datetime,
        after_id: Optional[str],
        limit: int,
        identified_only: bool = False,
    ) -> list[db_models.AssessmentSession]:
        """
        Completed sessions created before ``cutoff``, keyset-paginated on id.

        ``identified_only`` restricts to sessions still linked to a user.
        """
        query = self.db.query(db_models.AssessmentSession).filter(
            db_models.AssessmentSession.status
            == db_models.AssessmentStatus.COMPLETED.value,
            db_models.AssessmentSession.created_at < cutoff,
        )
        if identified_only:
            query = query.filter(db_models.AssessmentSession.user_id.isnot(None))
        if after_id is not None:
            query = query.filter(db_models.AssessmentSession.id > after_id)
        return query.order_by(db_models.AssessmentSession.id).limit(limit).all()

    def count_completed_identified_before(self, cutoff: datetime) -> int:
        """Sessions the assessment retention policy would still have to act on."""
        return (
            self.db.query(db_models.AssessmentSession)
            .filter(
                db_models.AssessmentSession.status
                == db_models.AssessmentStatus.COMPLETED.value,
                db_models.AssessmentSession.user_id.isnot(None),
                db_models.AssessmentSession.created_at < cutoff,
            )
            .count()
        )

    def count_completed_between(self, start: datetime, end: datetime) -> int:
        return (
            self.db.query(db_models.AssessmentSession)
            .filter(
                db_models.AssessmentSession.status
                == db_models.AssessmentStatus.COMPLETED.value,
                db_models.AssessmentSession.updated_at >= start,
                db_models.AssessmentSession.updated_at <= end,
            )
            .count()
        )


class AnalyticsRepository(BaseRepository[db_models.UserAnalytics]):
    """Repository for analytics events."""

    def __init__(self, db: Session):
        super().__init__(db_models.UserAnalytics, db)

    def get_before(
        self,
        cutoff: datetime,
        after_id: Optional[str],
        limit: int,
        identified_only: bool = False,
        live_only: bool = False,
    ) -> list[db_models.UserAnalytics]:
        query = self.db.query(db_models.UserAnalytics).filter(
            db_models.UserAnalytics.created_at < cutoff
        )
        if identified_only:
            query = query.filter(
                (db_models.UserAnalytics.user_id.isnot(None))
                | (db_models.UserAnalytics.ip_address.isnot(None))
                | (db_models.UserAnalytics.user_agent.isnot(None))
            )
        if live_only:
            query = query.filter(db_models.UserAnalytics.deleted_at.is_(None))
        if after_id is not None:
            query = query.filter(db_models.UserAnalytics.id > after_id)
        return query.order_by(db_models.UserAnalytics.id).limit(limit).all()

    def delete_for_user(self, user_id: str) -> int:
        return (
            self.db.query(db_models.UserAnalytics)
            .filter(db_models.UserAnalytics.user_id == user_id)
            .delete(synchronize_session=False)
        )
