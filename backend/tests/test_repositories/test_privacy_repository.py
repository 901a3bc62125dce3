"""Tests for privacy request and legal obligation repositories."""

from datetime import timedelta

import repositories.db_models as db_models
from repositories.privacy_repository import (
    LegalObligationRepository,
    PrivacyRequestRepository,
)


def _request(user_id, request_date, request_type="access", status="pending", **kwargs):
    return db_models.PrivacyRequest(
        user_id=user_id,
        request_type=request_type,
        status=status,
        request_date=request_date,
        **kwargs,
    )


class TestPrivacyRequestRepository:
    """Test cases for PrivacyRequestRepository."""

    def test_get_for_user_newest_first(self, db_session, test_user, clock):
        repo = PrivacyRequestRepository(db_session)
        old = repo.create(_request(test_user["user_id"], clock() - timedelta(days=2)))
        new = repo.create(_request(test_user["user_id"], clock()))

        assert [r.id for r in repo.get_for_user(test_user["user_id"])] == [new.id, old.id]

    def test_get_by_status_oldest_first(self, db_session, test_user, clock):
        repo = PrivacyRequestRepository(db_session)
        new = repo.create(_request(test_user["user_id"], clock()))
        old = repo.create(_request(test_user["user_id"], clock() - timedelta(days=2)))
        repo.create(_request(test_user["user_id"], clock(), status="completed"))

        assert [r.id for r in repo.get_by_status("pending")] == [old.id, new.id]
        assert [r.id for r in repo.get_by_status("pending", limit=1, offset=1)] == [new.id]

    def test_count_pending_before(self, db_session, test_user, clock):
        repo = PrivacyRequestRepository(db_session)
        repo.create(_request(test_user["user_id"], clock() - timedelta(days=40)))
        repo.create(_request(test_user["user_id"], clock()))
        repo.create(
            _request(test_user["user_id"], clock() - timedelta(days=40), status="completed")
        )

        assert repo.count_pending_before(clock() - timedelta(days=30)) == 1

    def test_get_completed_between(self, db_session, test_user, clock):
        repo = PrivacyRequestRepository(db_session)
        inside = repo.create(
            _request(
                test_user["user_id"],
                clock() - timedelta(days=3),
                status="completed",
                completion_date=clock() - timedelta(days=1),
            )
        )
        repo.create(
            _request(
                test_user["user_id"],
                clock() - timedelta(days=30),
                status="completed",
                completion_date=clock() - timedelta(days=20),
            )
        )

        found = repo.get_completed_between(clock() - timedelta(days=2), clock())
        assert [r.id for r in found] == [inside.id]

    def test_detach_user(self, db_session, test_user, clock):
        repo = PrivacyRequestRepository(db_session)
        request = repo.create(_request(test_user["user_id"], clock()))

        assert repo.detach_user(test_user["user_id"]) == 1
        repo.commit()
        db_session.expire_all()
        assert repo.get_by_id(request.id).user_id is None


class TestLegalObligationRepository:
    """Test cases for LegalObligationRepository."""

    def _hold(self, db_session, user_id, **kwargs):
        return LegalObligationRepository(db_session).create(
            db_models.LegalObligation(
                user_id=user_id, obligation_type=kwargs.pop("obligation_type", "legal_hold"), **kwargs
            )
        )

    def test_active_without_expiry(self, db_session, test_user, clock):
        self._hold(db_session, test_user["user_id"])
        repo = LegalObligationRepository(db_session)

        assert repo.has_active(test_user["user_id"], clock()) is True
        assert len(repo.get_active_for_user(test_user["user_id"], clock())) == 1

    def test_expired_and_released_are_inactive(self, db_session, test_user, clock):
        self._hold(db_session, test_user["user_id"], expires_at=clock() - timedelta(days=1))
        self._hold(db_session, test_user["user_id"], status="released")

        assert LegalObligationRepository(db_session).has_active(test_user["user_id"], clock()) is False

    def test_filter_by_type(self, db_session, test_user, clock):
        self._hold(db_session, test_user["user_id"], obligation_type="active_dispute")
        repo = LegalObligationRepository(db_session)

        assert repo.has_active(test_user["user_id"], clock(), ["active_dispute"]) is True
        assert repo.has_active(test_user["user_id"], clock(), ["legal_hold"]) is False
        assert repo.has_active(test_user["user_id"], clock(), []) is False

    def test_delete_for_user(self, db_session, test_user):
        self._hold(db_session, test_user["user_id"])
        self._hold(db_session, test_user["user_id"], obligation_type="regulatory")

        assert LegalObligationRepository(db_session).delete_for_user(test_user["user_id"]) == 2
