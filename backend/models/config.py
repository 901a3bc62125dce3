import os
import sys
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _should_load_env_file() -> str | None:
    """Determine if .env should be loaded.

    For local development, load `.env` automatically so `SECRET_KEY` and
    `ENCRYPTION_KEY` can be provided from `backend/.env` (convenience).
    **Both secrets remain required** and must be set in production via
    environment variables.

    Do NOT auto-load `.env` when running under pytest or in CI (so tests
    that validate missing secrets continue to fail fast).
    """
    if any("pytest" in str(x) for x in sys.argv if x):
        return None
    if os.environ.get("CI") in ("1", "true", "True"):
        return None
    return ".env"


class Settings(BaseSettings):
    # Environment configuration
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: 'development', 'staging', 'production' or 'test'",
    )

    DATABASE_URL: str = "sqlite:///./data/trustledger.db"
    REDIS_URL: str = Field(
        default="",
        description="Redis URL for sessions and login counters. Empty uses the in-process cache.",
    )
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins (comma-separated in env var)",
    )

    # Secrets
    SECRET_KEY: str = Field(
        ...,  # Required, no default
        description="JWT signing key - must be set via SECRET_KEY environment variable",
    )
    ENCRYPTION_KEY: str = Field(
        ...,  # Required, no default
        description="Master key for field encryption (at least 32 characters)",
    )
    ENCRYPTION_SALT: str = Field(
        default="trustledger-field-encryption",
        description="Salt used when deriving the AES key from ENCRYPTION_KEY",
    )
    ENCRYPTION_CONTEXT: str = Field(
        default="assessment-platform",
        description="Associated data bound to every ciphertext",
    )

    # Tokens
    ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "ai-assessment-platform"
    JWT_AUDIENCE: str = "assessment-users"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = Field(
        default=3600,
        description="Lifetime of access tokens",
    )
    REFRESH_TOKEN_EXPIRE_SECONDS: int = Field(
        default=7 * 24 * 3600,
        description="Lifetime of refresh tokens issued with remember_me",
    )

    # Passwords, sessions and lockout
    BCRYPT_ROUNDS: int = Field(default=12, description="bcrypt cost factor")
    SESSION_TIMEOUT_SECONDS: int = Field(
        default=3600,
        description="Absolute session lifetime; also the cache TTL",
    )
    MAX_LOGIN_ATTEMPTS: int = Field(
        default=5,
        description="Consecutive failures before an identifier is locked out",
    )
    LOCKOUT_DURATION_SECONDS: int = Field(
        default=900,
        description="Lockout window; doubles as the failure counter TTL",
    )
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_REQUIRE_UPPERCASE: bool = True
    PASSWORD_REQUIRE_LOWERCASE: bool = True
    PASSWORD_REQUIRE_NUMBERS: bool = True
    PASSWORD_REQUIRE_SPECIAL: bool = True
    PASSWORD_PREVENT_REUSE: int = Field(
        default=5,
        description="Number of previous passwords that cannot be reused",
    )
    PASSWORD_RESET_EXPIRE_SECONDS: int = Field(
        default=3600,
        description="Lifetime of password reset tokens",
    )
    REQUIRE_EMAIL_VERIFICATION: bool = Field(
        default=False,
        description="When true, login is refused until the email is verified",
    )
    LOGIN_RATE_LIMIT: str = Field(
        default="10/minute",
        description="slowapi limit applied to the login endpoint",
    )

    # Consent & privacy
    CONSENT_VALIDITY_DAYS: int = Field(
        default=365,
        description="Consent older than this is no longer valid even if never withdrawn",
    )
    CONSENT_POLICY_VERSION: str = Field(
        default="1.0",
        description="Policy version recorded with new consent grants",
    )
    PROCESSING_RESTRICTION_TTL_SECONDS: int = Field(
        default=86400,
        description="TTL of the cached processing-restriction flag",
    )
    DEFAULT_REGION: str = Field(
        default="EU",
        description="Jurisdiction used when a user's region is unknown",
    )
    ACCESS_REQUEST_DELAY_SECONDS: int = Field(
        default=5,
        description="Delay before an access request is fulfilled in the background",
    )
    PRIVACY_REQUEST_MAX_PENDING_DAYS: int = Field(
        default=30,
        description="Pending privacy requests older than this are overdue",
    )

    # Retention
    DATA_RETENTION_DAYS: int = Field(
        default=1095,
        description="Default retention period for assessment data",
    )
    ANONYMIZATION_DELAY_DAYS: int = Field(
        default=30,
        description="Grace period recorded on policies before anonymization",
    )
    RETENTION_SCHEDULE: str = Field(
        default="0 2 * * *",
        description="Crontab expression for the main retention run",
    )
    RETENTION_REPORT_SCHEDULE: str = Field(
        default="0 3 * * 0",
        description="Crontab expression for the retention audit report",
    )
    SESSION_CLEANUP_INTERVAL_SECONDS: int = Field(
        default=3600,
        description="Interval of the expired-session cleanup task",
    )
    RETENTION_BATCH_SIZE: int = Field(
        default=1000,
        description="Maximum records loaded per retention batch",
    )

    # Audit & monitoring
    ALERT_FAILED_LOGINS_PER_HOUR: int = 10
    ALERT_DATA_ACCESS_PER_HOUR: int = 100
    ALERT_OVERDUE_PRIVACY_REQUESTS: int = 5
    MONITOR_FAILED_LOGINS_INTERVAL_SECONDS: int = 60
    MONITOR_DATA_ACCESS_INTERVAL_SECONDS: int = 300
    MONITOR_PRIVACY_REQUESTS_INTERVAL_SECONDS: int = 3600
    AUDIT_RECENT_EVENTS_LIMIT: int = Field(
        default=1000,
        description="Size of the recent-events ring buffer kept in the cache",
    )
    COMPLIANCE_REPORT_SCHEDULE: str = Field(
        default="0 4 * * 1",
        description="Crontab expression for the weekly compliance report",
    )
    SECURITY_ASSESSMENT_SCHEDULE: str = Field(
        default="0 5 * * *",
        description="Crontab expression for the daily security assessment",
    )
    PASSWORD_MAX_AGE_DAYS: int = Field(
        default=90,
        description="Passwords unchanged for longer fail the security assessment",
    )
    INACTIVE_SESSION_HOURS: int = Field(
        default=24,
        description="Live sessions older than this are reported by the security assessment",
    )
    HEALTH_ALERT_WINDOW_HOURS: int = 24
    HEALTH_ALERT_WARNING_THRESHOLD: int = Field(
        default=5,
        description="More recent alerts than this degrade health to 'warning'",
    )

    # Background scheduler
    SCHEDULER_ENABLED: bool = Field(
        default=True,
        description="Start periodic retention and monitoring tasks on startup",
    )

    # Notifications
    NOTIFIER_WEBHOOK_URL: str = Field(
        default="",
        description="Webhook receiving critical alerts and account emails. Empty logs only.",
    )
    NOTIFIER_AUTH_TOKEN: str = Field(
        default="",
        description="Optional bearer token for the notifier webhook",
    )

    # Database connection pool settings
    DB_POOL_SIZE: int = Field(
        default=5,
        description="Number of persistent connections in pool",
    )
    DB_MAX_OVERFLOW: int = Field(
        default=10,
        description="Extra connections when pool exhausted",
    )
    DB_POOL_TIMEOUT: int = Field(
        default=30,
        description="Seconds to wait for connection from pool",
    )
    DB_POOL_RECYCLE: int = Field(
        default=1800,
        description="Recycle connections after N seconds (30 min default)",
    )

    # Safety: avoid creating DB schema automatically unless explicitly enabled.
    AUTO_CREATE_DB: bool = Field(
        default=False,
        description="When true (development only), call Base.metadata.create_all on startup",
    )

    # Bootstrap administrator created by init_db.py
    ADMIN_EMAIL: str = Field(
        default="",
        description="Email of the administrator seeded by init_db.py (empty skips seeding)",
    )
    ADMIN_PASSWORD: str = Field(
        default="",
        description="Initial password of the seeded administrator",
    )

    SLOW_REQUEST_THRESHOLD: float = Field(
        default=1.0,
        description="Log warning for requests slower than this (seconds)",
    )
    TRUST_PROXY_HEADERS: bool = Field(
        default=True,
        description="Take the client IP from proxy headers. Disable when the API is exposed directly.",
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | List[str]) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("BCRYPT_ROUNDS")
    @classmethod
    def check_bcrypt_rounds(cls, v: int) -> int:
        """bcrypt only accepts cost factors between 4 and 31."""
        if not 4 <= v <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        return v

    model_config = SettingsConfigDict(
        env_file=_should_load_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",  # Allow extra env vars (e.g., SENTRY_DSN) without validation errors
    )


# Rely on pydantic BaseSettings to load `.env` and validate required fields.
# Instantiating Settings() raises pydantic.ValidationError if a secret is missing.
settings = Settings()  # type: ignore[call-arg]


def get_settings() -> Settings:
    """Get the settings instance (for dependency injection)."""
    return settings
