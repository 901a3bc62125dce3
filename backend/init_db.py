"""Initialize the database: tables, default retention policies and an admin user."""

from repositories.database import Base, engine
from repositories.db_models import UserRole
from repositories.user_repository import CredentialRepository, UserRepository
from services.auth_service import RegistrationInput
from services.security_system import SecuritySystem

# Create tables
Base.metadata.create_all(bind=engine)


def seed_admin(security: SecuritySystem) -> None:
    """Register ADMIN_EMAIL, promote it to admin and mark the email verified."""
    settings = security.settings
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        print("[SKIP] ADMIN_EMAIL / ADMIN_PASSWORD not set; no admin user created")
        return

    with security.session_scope() as db:
        if UserRepository(db).get_by_email(settings.ADMIN_EMAIL.lower()) is not None:
            print("[OK] Admin user already exists")
            return

        result = security.auth.register(
            db,
            RegistrationInput(
                email=settings.ADMIN_EMAIL,
                password=settings.ADMIN_PASSWORD,
                first_name="Administrator",
                # The operator consents on the organisation's behalf
                consents={"data_processing": True},
            ),
        )
        if not result.success:
            print(f"Error creating admin user: {result.error} {result.details or ''}")
            return

        credential = CredentialRepository(db).get_by_id(result.data["user_id"])
        credential.role = UserRole.ADMIN.value
        credential.email_verified = True
        credential.verification_token = None
        db.commit()

        print("[OK] Admin user created")
        print(f"  Email: {settings.ADMIN_EMAIL}")
        print("  Password: (from ADMIN_PASSWORD in .env)")
        print("  IMPORTANT: Change this password in production!")


def init_db() -> None:
    """Initialize the database with default data."""
    security = SecuritySystem()
    security.settings = security.settings.model_copy(update={"SCHEDULER_ENABLED": False})
    security.initialize()
    try:
        # initialize() has already seeded the retention policies
        with security.session_scope() as db:
            count = len(security.retention.list_policies(db))
        print(f"[OK] {count} retention policies in place")

        seed_admin(security)
        print("\n[OK] Database initialization complete!")
    finally:
        security.shutdown()


if __name__ == "__main__":
    init_db()
