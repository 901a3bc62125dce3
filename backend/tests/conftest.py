"""
Pytest configuration and fixtures for backend tests.
"""

import os
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test environment variables before importing config
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-with-at-least-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["http://localhost:3000"]'

from models.config import Settings  # noqa: E402
from repositories.cache import InMemoryCache  # noqa: E402
from repositories.database import Base, enable_sqlite_foreign_keys  # noqa: E402
from repositories.db_models import UserRole  # noqa: E402
from repositories.user_repository import CredentialRepository  # noqa: E402
from services.auth_service import RegistrationInput  # noqa: E402
from services.security_system import SecuritySystem  # noqa: E402

# Test database engine (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(engine)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

STRONG_PASSWORD = "Str0ng!Passw0rd"


class FakeClock:
    """Controllable UTC clock shared by the services and the cache."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class RecordingNotifier:
    """Notifier that keeps every message instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    @property
    def is_configured(self) -> bool:
        return True

    def notify(self, notification_type, title, message, data=None) -> None:  # type: ignore[no-untyped-def]
        self.sent.append(
            {"type": notification_type, "title": title, "message": message, "data": data or {}}
        )

    def of_type(self, notification_type) -> list[dict[str, Any]]:  # type: ignore[no-untyped-def]
        return [n for n in self.sent if n["type"] == notification_type]


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh in-memory database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db(db_session):
    """Alias for db_session for backward compatibility."""
    return db_session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> InMemoryCache:
    return InMemoryCache(clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(SCHEDULER_ENABLED=False)  # type: ignore[call-arg]


@pytest.fixture
def security_system(db_session, test_settings, cache, notifier, clock):
    """Initialized facade on the test database, fake clock and in-memory cache."""
    security = SecuritySystem(
        test_settings,
        session_factory=TestingSessionLocal,
        cache=cache,
        notifier=notifier,
        clock=clock,
    )
    security.initialize()
    yield security
    security.shutdown()


@pytest.fixture
def scheduler_enabled(security_system, monkeypatch):
    """Treat the scheduler as enabled; queued jobs stay queued since it never starts."""
    monkeypatch.setattr(
        security_system,
        "capabilities",
        replace(security_system.capabilities, scheduler_enabled=True),
    )
    return security_system.scheduler


@pytest.fixture(scope="function")
def client(security_system):
    """Create a test client bound to the test security system."""
    from helpers.rate_limiter import limiter
    from main import app

    # Reset rate limiter storage before each test to prevent rate limit errors
    limiter.reset()

    app.state.security = security_system
    with TestClient(app) as test_client:
        yield test_client
    del app.state.security


@pytest.fixture
def create_user(security_system, db_session):
    """
    Factory registering a user through the auth service.

    Returns the login data of the new user (user_id, access_token,
    session_id, ...). Non-default roles log in again so the token carries
    the role's permissions.
    """

    def _create(
        email: str = "user@example.com",
        password: str = STRONG_PASSWORD,
        role: str = UserRole.USER.value,
        region: str | None = None,
        consents: dict[str, bool] | None = None,
    ) -> dict[str, Any]:
        result = security_system.auth.register(
            db_session,
            RegistrationInput(
                email=email,
                password=password,
                first_name="Test",
                last_name="User",
                geographic_region=region,
                consents=consents if consents is not None else {"data_processing": True},
            ),
        )
        assert result.success, result.error
        if role != UserRole.USER.value:
            credential = CredentialRepository(db_session).get_by_id(result.data["user_id"])
            credential.role = role
            db_session.commit()
            result = security_system.auth.authenticate(db_session, email, password)
            assert result.success, result.error
        return result.data

    return _create


@pytest.fixture
def test_user(create_user) -> dict[str, Any]:
    return create_user("user@example.com")


@pytest.fixture
def admin_user(create_user) -> dict[str, Any]:
    return create_user("admin@example.com", role=UserRole.ADMIN.value)


@pytest.fixture
def user_headers(test_user) -> dict[str, str]:
    return {"Authorization": f"Bearer {test_user['access_token']}"}


@pytest.fixture
def admin_headers(admin_user) -> dict[str, str]:
    return {"Authorization": f"Bearer {admin_user['access_token']}"}
