"""
User repositories: profiles, credentials and password history.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

import repositories.db_models as db_models

from .base import BaseRepository


class UserRepository(BaseRepository[db_models.UserProfile]):
    """Repository for user profile operations."""

    def __init__(self, db: Session):
        super().__init__(db_models.UserProfile, db)

    def get_by_email(self, email: str) -> Optional[db_models.UserProfile]:
        """
        Get user profile by email.

        Args:
            email: Canonical (lowercased) email

        Returns:
            Profile if found, None otherwise
        """
        return (
            self.db.query(db_models.UserProfile)
            .filter(db_models.UserProfile.email == email)
            .first()
        )

    def email_exists(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def count_created_between(self, start, end) -> int:  # type: ignore[no-untyped-def]
        return (
            self.db.query(db_models.UserProfile)
            .filter(
                db_models.UserProfile.created_at >= start,
                db_models.UserProfile.created_at <= end,
            )
            .count()
        )

    def get_ids_created_between(self, start, end) -> List[str]:  # type: ignore[no-untyped-def]
        rows = (
            self.db.query(db_models.UserProfile.id)
            .filter(
                db_models.UserProfile.created_at >= start,
                db_models.UserProfile.created_at <= end,
            )
            .all()
        )
        return [r[0] for r in rows]

    def delete_profile(self, user_id: str) -> int:
        return (
            self.db.query(db_models.UserProfile)
            .filter(db_models.UserProfile.id == user_id)
            .delete(synchronize_session=False)
        )


class CredentialRepository(BaseRepository[db_models.UserCredential]):
    """Repository for credential rows (keyed by user id)."""

    def __init__(self, db: Session):
        super().__init__(db_models.UserCredential, db)

    def get_by_verification_token(
        self, token: str
    ) -> Optional[db_models.UserCredential]:
        return (
            self.db.query(db_models.UserCredential)
            .filter(db_models.UserCredential.verification_token == token)
            .first()
        )

    def get_by_reset_token_hash(
        self, token_hash: str
    ) -> Optional[db_models.UserCredential]:
        return (
            self.db.query(db_models.UserCredential)
            .filter(db_models.UserCredential.reset_token_hash == token_hash)
            .first()
        )

    def count_password_changed_before(self, cutoff: datetime) -> int:
        return (
            self.db.query(db_models.UserCredential)
            .filter(db_models.UserCredential.password_changed_at < cutoff)
            .count()
        )

    def delete_for_user(self, user_id: str) -> int:
        return (
            self.db.query(db_models.UserCredential)
            .filter(db_models.UserCredential.user_id == user_id)
            .delete(synchronize_session=False)
        )


class PasswordHistoryRepository(BaseRepository[db_models.PasswordHistory]):
    """Previous password hashes for reuse prevention."""

    def __init__(self, db: Session):
        super().__init__(db_models.PasswordHistory, db)

    def get_recent_hashes(self, user_id: str, limit: int) -> List[str]:
        """
        Most recent password hashes for a user, newest first.

        Args:
            user_id: User ID
            limit: How many previous passwords to return

        Returns:
            List of bcrypt hashes
        """
        rows = (
            self.db.query(db_models.PasswordHistory.password_hash)
            .filter(db_models.PasswordHistory.user_id == user_id)
            .order_by(
                db_models.PasswordHistory.created_at.desc(),
                db_models.PasswordHistory.id.desc(),
            )
            .limit(limit)
            .all()
        )
        return [r[0] for r in rows]

    def delete_for_user(self, user_id: str) -> int:
        return (
            self.db.query(db_models.PasswordHistory)
            .filter(db_models.PasswordHistory.user_id == user_id)
            .delete(synchronize_session=False)
        )
