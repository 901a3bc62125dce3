"""
Password complexity validation helper.

Provides password strength validation with requirements taken from settings,
plus reuse checking against previously stored hashes.
"""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import List

from models.config import Settings


@dataclass
class PasswordRequirements:
    """Password complexity requirements configuration."""

    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special: bool = True
    special_characters: str = "!@#$%^&*()_+-=[]{}|;:,.<>?"

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordRequirements":
        return cls(
            min_length=settings.PASSWORD_MIN_LENGTH,
            require_uppercase=settings.PASSWORD_REQUIRE_UPPERCASE,
            require_lowercase=settings.PASSWORD_REQUIRE_LOWERCASE,
            require_digit=settings.PASSWORD_REQUIRE_NUMBERS,
            require_special=settings.PASSWORD_REQUIRE_SPECIAL,
        )


DEFAULT_REQUIREMENTS = PasswordRequirements()


def validate_password_complexity(
    password: str,
    requirements: PasswordRequirements = DEFAULT_REQUIREMENTS,
) -> tuple[bool, List[str]]:
    """
    Validate password against complexity requirements.

    Args:
        password: Password to validate
        requirements: Password requirements configuration

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    errors: List[str] = []

    if len(password) < requirements.min_length:
        errors.append(
            f"Password must be at least {requirements.min_length} characters long"
        )

    if requirements.require_uppercase and not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")

    if requirements.require_lowercase and not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")

    if requirements.require_digit and not re.search(r"\d", password):
        errors.append("Password must contain at least one number")

    if requirements.require_special:
        special_pattern = re.escape(requirements.special_characters)
        if not re.search(f"[{special_pattern}]", password):
            errors.append("Password must contain at least one special character")

    return len(errors) == 0, errors


def is_password_reused(
    password: str,
    previous_hashes: Iterable[str],
    verify: Callable[[str, str], bool],
) -> bool:
    """True if ``password`` matches any of the given hashes."""
    return any(verify(password, stored) for stored in previous_hashes)
