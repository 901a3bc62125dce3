"""Tests for SessionService and LoginAttemptService."""

import pytest

from repositories.db_models import UserSessionRecord
from services.session_service import (
    LoginAttemptService,
    SessionService,
    login_attempts_key,
    session_key,
)


@pytest.fixture
def sessions(cache, test_settings, clock) -> SessionService:
    return SessionService(cache, test_settings, clock)


@pytest.fixture
def attempts(cache, test_settings, clock) -> LoginAttemptService:
    return LoginAttemptService(cache, test_settings, clock)


@pytest.fixture
def user_id(test_user) -> str:
    return test_user["user_id"]


def _new_session(sessions, db_session, user_id):  # type: ignore[no-untyped-def]
    return sessions.create_session(
        db_session, user_id, "user@example.com", "user", ["profile:read"], "127.0.0.1", "pytest"
    )


class TestCreateAndValidate:
    """Session lifecycle against the cache and the mirror table."""

    def test_create_session_writes_cache_and_mirror(
        self, sessions, db_session, cache, user_id
    ) -> None:
        info = _new_session(sessions, db_session, user_id)

        assert cache.exists(session_key(info.session_id))
        record = db_session.get(UserSessionRecord, info.session_id)
        assert record is not None
        assert record.user_id == user_id
        assert record.invalidated_at is None

    def test_session_expires_after_timeout(self, sessions, db_session, user_id, test_settings) -> None:
        info = _new_session(sessions, db_session, user_id)
        expected = info.created_at.timestamp() + test_settings.SESSION_TIMEOUT_SECONDS
        assert info.expires_at.timestamp() == expected

    def test_validate_returns_live_session(self, sessions, db_session, user_id) -> None:
        info = _new_session(sessions, db_session, user_id)
        validated = sessions.validate_session(info.session_id)
        assert validated is not None
        assert validated.user_id == user_id
        assert validated.permissions == ["profile:read"]

    def test_validate_unknown_session(self, sessions) -> None:
        assert sessions.validate_session("does-not-exist") is None

    def test_session_invalid_at_expiry(
        self, sessions, db_session, user_id, clock, test_settings
    ) -> None:
        """Valid while now < expires_at; at expiry it is gone."""
        info = _new_session(sessions, db_session, user_id)

        clock.advance(seconds=test_settings.SESSION_TIMEOUT_SECONDS - 1)
        assert sessions.validate_session(info.session_id) is not None

        clock.advance(seconds=1)
        assert sessions.validate_session(info.session_id) is None


class TestRevocation:
    def test_revoke_session(self, sessions, db_session, user_id, cache) -> None:
        info = _new_session(sessions, db_session, user_id)

        assert sessions.revoke_session(db_session, info.session_id) is True
        assert sessions.validate_session(info.session_id) is None
        db_session.expire_all()
        assert db_session.get(UserSessionRecord, info.session_id).invalidated_at is not None

    def test_revoke_twice_reports_false(self, sessions, db_session, user_id) -> None:
        info = _new_session(sessions, db_session, user_id)
        sessions.revoke_session(db_session, info.session_id)
        assert sessions.revoke_session(db_session, info.session_id) is False

    def test_revoke_all_sessions(self, sessions, db_session, user_id, test_user) -> None:
        first = _new_session(sessions, db_session, user_id)
        second = _new_session(sessions, db_session, user_id)

        # Includes the session opened at registration
        assert sessions.revoke_all_sessions(db_session, user_id) == 3
        assert sessions.validate_session(first.session_id) is None
        assert sessions.validate_session(second.session_id) is None
        assert sessions.validate_session(test_user["session_id"]) is None

    def test_revoke_all_is_idempotent(self, sessions, db_session, user_id) -> None:
        sessions.revoke_all_sessions(db_session, user_id)
        assert sessions.revoke_all_sessions(db_session, user_id) == 0

    def test_cleanup_expired_sessions(
        self, sessions, db_session, user_id, clock, test_settings
    ) -> None:
        _new_session(sessions, db_session, user_id)
        clock.advance(seconds=test_settings.SESSION_TIMEOUT_SECONDS + 1)

        # The registration session expires too
        assert sessions.cleanup_expired_sessions(db_session) == 2
        assert sessions.cleanup_expired_sessions(db_session) == 0

    def test_sessions_summary(self, sessions, db_session, user_id) -> None:
        info = _new_session(sessions, db_session, user_id)
        sessions.revoke_session(db_session, info.session_id)

        summary = sessions.get_sessions_summary(db_session, user_id)
        assert summary["total_sessions"] == 2
        assert summary["active_sessions"] == 1
        assert summary["last_session_at"] is not None


class TestLoginAttempts:
    """Failure counting and lockout per identifier."""

    def test_fresh_identifier_is_allowed(self, attempts, test_settings) -> None:
        status = attempts.check_login_attempts("a@example.com")
        assert status.allowed is True
        assert status.remaining_attempts == test_settings.MAX_LOGIN_ATTEMPTS

    def test_failures_decrement_remaining(self, attempts) -> None:
        attempts.record_login_attempt("a@example.com", success=False)
        status = attempts.record_login_attempt("a@example.com", success=False)
        assert status.allowed is True
        assert status.remaining_attempts == 3
        assert attempts.check_login_attempts("a@example.com").remaining_attempts == 3

    def test_lockout_after_max_attempts(self, attempts, clock, test_settings) -> None:
        for _ in range(test_settings.MAX_LOGIN_ATTEMPTS):
            status = attempts.record_login_attempt("a@example.com", success=False)

        assert status.allowed is False
        assert status.remaining_attempts == 0
        assert status.lockout_expires is not None

        check = attempts.check_login_attempts("a@example.com")
        assert check.allowed is False
        assert check.lockout_expires == status.lockout_expires

    def test_lockout_ends_after_duration(self, attempts, clock, test_settings) -> None:
        """An expired lockout resets the budget on the next check."""
        for _ in range(test_settings.MAX_LOGIN_ATTEMPTS):
            attempts.record_login_attempt("a@example.com", success=False)

        clock.advance(seconds=test_settings.LOCKOUT_DURATION_SECONDS)
        status = attempts.check_login_attempts("a@example.com")
        assert status.allowed is True
        assert status.remaining_attempts == test_settings.MAX_LOGIN_ATTEMPTS

    def test_success_clears_record(self, attempts, cache) -> None:
        attempts.record_login_attempt("a@example.com", success=False)
        attempts.record_login_attempt("a@example.com", success=True)
        assert not cache.exists(login_attempts_key("a@example.com"))

    def test_identifiers_are_independent(self, attempts, test_settings) -> None:
        for _ in range(test_settings.MAX_LOGIN_ATTEMPTS):
            attempts.record_login_attempt("a@example.com", success=False)
        assert attempts.check_login_attempts("b@example.com").allowed is True

    def test_counter_expires_with_lockout_window(self, attempts, clock, test_settings) -> None:
        attempts.record_login_attempt("a@example.com", success=False)
        clock.advance(seconds=test_settings.LOCKOUT_DURATION_SECONDS)
        status = attempts.check_login_attempts("a@example.com")
        assert status.remaining_attempts == test_settings.MAX_LOGIN_ATTEMPTS

    def test_reset(self, attempts, test_settings) -> None:
        for _ in range(test_settings.MAX_LOGIN_ATTEMPTS):
            attempts.record_login_attempt("a@example.com", success=False)
        attempts.reset("a@example.com")
        assert attempts.check_login_attempts("a@example.com").allowed is True
