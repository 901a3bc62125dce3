"""
Session lifecycle and login-attempt tracking.

The cache is authoritative for session liveness and failure counters; the
``user_sessions`` table mirrors sessions for audit, bulk revocation and
retention. Absolute expiry is enforced when a session is read, so no timer
is needed for correctness; the periodic cleanup only tidies the mirror.
"""

import json
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from loguru import logger
from sqlalchemy.orm import Session

from helpers.time_utils import Clock, ensure_utc, parse_iso8601, utc_now
from models.config import Settings
from repositories.cache import CacheStore
from repositories.db_models import UserSessionRecord, generate_secure_id
from repositories.session_repository import SessionRecordRepository

SESSION_KEY_PREFIX = "session:"
LOGIN_ATTEMPTS_KEY_PREFIX = "login_attempts:"


def session_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def login_attempts_key(identifier: str) -> str:
    return f"{LOGIN_ATTEMPTS_KEY_PREFIX}{identifier}"


@dataclass
class SessionInfo:
    session_id: str
    user_id: str
    email: str
    role: str
    permissions: list[str]
    created_at: datetime
    expires_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["expires_at"] = self.expires_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionInfo":
        values = dict(data)
        values["created_at"] = parse_iso8601(data["created_at"])
        values["expires_at"] = parse_iso8601(data["expires_at"])
        return cls(**values)


class SessionService:
    """Create, validate and revoke sessions."""

    def __init__(self, cache: CacheStore, settings: Settings, clock: Clock = utc_now):
        self.cache = cache
        self.timeout_seconds = settings.SESSION_TIMEOUT_SECONDS
        self.clock = clock

    def create_session(
        self,
        db: Session,
        user_id: str,
        email: str,
        role: str,
        permissions: list[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionInfo:
        """
        Issue a session.

        The mirror row is committed first so a cached session always has a
        durable record that bulk revocation can find.
        """
        now = self.clock()
        info = SessionInfo(
            session_id=generate_secure_id(),
            user_id=user_id,
            email=email,
            role=role,
            permissions=list(permissions),
            created_at=now,
            expires_at=now + timedelta(seconds=self.timeout_seconds),
            ip_address=ip_address,
            user_agent=user_agent,
        )

        repo = SessionRecordRepository(db)
        repo.add(
            UserSessionRecord(
                session_id=info.session_id,
                user_id=user_id,
                role=role,
                created_at=now,
                expires_at=info.expires_at,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        repo.commit()

        self.cache.set_json(session_key(info.session_id), info.to_dict(), self.timeout_seconds)
        logger.debug(f"Session created for user {user_id}")
        return info

    def validate_session(self, session_id: str) -> Optional[SessionInfo]:
        """
        Return the live session, or None.

        A session is valid while ``now < expires_at``. At or past expiry the
        cache entry is purged.
        """
        data = self.cache.get_json(session_key(session_id))
        if data is None:
            return None

        info = SessionInfo.from_dict(data)
        if self.clock() >= info.expires_at:
            self.cache.delete(session_key(session_id))
            return None
        return info

    def revoke_session(self, db: Session, session_id: str) -> bool:
        """Revoke one session. Returns False if it was already gone."""
        purged = self.cache.delete(session_key(session_id)) > 0

        repo = SessionRecordRepository(db)
        marked = repo.invalidate_ids([session_id], self.clock()) > 0
        repo.commit()
        return purged or marked

    def mark_user_sessions_revoked(self, db: Session, user_id: str) -> list[str]:
        """
        Invalidate every mirror row of the user inside the caller's
        transaction. Returns the session ids whose cache keys must be purged
        once the caller commits.
        """
        repo = SessionRecordRepository(db)
        session_ids = [r.session_id for r in repo.get_active_for_user(user_id)]
        repo.invalidate_ids(session_ids, self.clock())
        return session_ids

    def purge_cached_sessions(self, session_ids: list[str]) -> int:
        if not session_ids:
            return 0
        return self.cache.delete(*(session_key(sid) for sid in session_ids))

    def revoke_all_sessions(self, db: Session, user_id: str) -> int:
        """Revoke every session of the user. Idempotent."""
        session_ids = self.mark_user_sessions_revoked(db, user_id)
        db.commit()
        self.purge_cached_sessions(session_ids)
        if session_ids:
            logger.info(f"Revoked {len(session_ids)} session(s) for user {user_id}")
        return len(session_ids)

    def cleanup_expired_sessions(self, db: Session) -> int:
        """Invalidate expired mirror rows and drop their cache keys."""
        repo = SessionRecordRepository(db)
        now = self.clock()
        session_ids = repo.get_expired_active_ids(now)
        repo.invalidate_ids(session_ids, now)
        repo.commit()
        self.purge_cached_sessions(session_ids)
        return len(session_ids)

    def get_sessions_summary(self, db: Session, user_id: str) -> dict[str, Any]:
        """Counts and last activity, used by data access exports."""
        rows = SessionRecordRepository(db).get_for_user(user_id)
        now = self.clock()
        active = [
            r
            for r in rows
            if r.invalidated_at is None and ensure_utc(r.expires_at) > now  # type: ignore[operator]
        ]
        last = ensure_utc(rows[0].created_at) if rows else None
        return {
            "total_sessions": len(rows),
            "active_sessions": len(active),
            "last_session_at": last.isoformat() if last else None,
        }


# ============================================================================
# Login attempts
# ============================================================================


@dataclass
class LoginAttemptStatus:
    allowed: bool
    remaining_attempts: int
    lockout_expires: Optional[datetime] = field(default=None)


class LoginAttemptService:
    """
    Failure counters per login identifier, stored as JSON
    ``{count, last_attempt, lockout_expires}`` under ``login_attempts:{id}``.

    All reads and writes go through ``CacheStore.atomic_update`` so two
    concurrent failures can never both observe the same count.
    """

    def __init__(self, cache: CacheStore, settings: Settings, clock: Clock = utc_now):
        self.cache = cache
        self.max_attempts = settings.MAX_LOGIN_ATTEMPTS
        self.lockout_seconds = settings.LOCKOUT_DURATION_SECONDS
        self.clock = clock

    def check_login_attempts(self, identifier: str) -> LoginAttemptStatus:
        """
        Whether ``identifier`` may attempt a login.

        An expired lockout is cleared inside the same atomic update, so the
        caller sees a full attempt budget as soon as the window has elapsed.
        """
        now = self.clock()

        def _check(current: Optional[str]):  # type: ignore[no-untyped-def]
            if current is None:
                return None, None, LoginAttemptStatus(True, self.max_attempts)

            record = json.loads(current)
            lockout = parse_iso8601(record.get("lockout_expires"))
            if lockout is not None:
                if now < lockout:
                    return current, None, LoginAttemptStatus(False, 0, lockout)
                return None, None, LoginAttemptStatus(True, self.max_attempts)

            remaining = max(0, self.max_attempts - int(record.get("count", 0)))
            return current, None, LoginAttemptStatus(True, remaining)

        return self.cache.atomic_update(login_attempts_key(identifier), _check)

    def record_login_attempt(self, identifier: str, success: bool) -> LoginAttemptStatus:
        """
        Record the outcome of a login attempt.

        Success clears the record. Failure increments the counter with the
        lockout window as its TTL; reaching the maximum stamps
        ``lockout_expires`` and aligns the TTL to it.
        """
        key = login_attempts_key(identifier)
        if success:
            self.cache.delete(key)
            return LoginAttemptStatus(True, self.max_attempts)

        now = self.clock()

        def _fail(current: Optional[str]):  # type: ignore[no-untyped-def]
            record = json.loads(current) if current else {"count": 0, "lockout_expires": None}
            lockout = parse_iso8601(record.get("lockout_expires"))
            if lockout is not None and now >= lockout:
                record = {"count": 0, "lockout_expires": None}
                lockout = None

            record["count"] = int(record.get("count", 0)) + 1
            record["last_attempt"] = now.isoformat()

            if lockout is None and record["count"] >= self.max_attempts:
                lockout = now + timedelta(seconds=self.lockout_seconds)
                record["lockout_expires"] = lockout.isoformat()
                logger.warning(f"Login locked out for identifier after {record['count']} failures")

            if lockout is not None:
                ttl = max(1, math.ceil((lockout - now).total_seconds()))
                status = LoginAttemptStatus(False, 0, lockout)
            else:
                ttl = self.lockout_seconds
                status = LoginAttemptStatus(True, max(0, self.max_attempts - record["count"]))
            return json.dumps(record), ttl, status

        return self.cache.atomic_update(key, _fail)

    def reset(self, identifier: str) -> None:
        self.cache.delete(login_attempts_key(identifier))
