"""
Input sanitization utilities.

Strips markup and shell/quote metacharacters from free-text input and
canonicalizes email addresses before they are used as identifiers
(login-attempt keys, lookups, audit records).
"""

import html
import re
from typing import Optional

import bleach

from models.exceptions import InvalidEmailException

MAX_INPUT_LENGTH = 1000

# Quote and command-injection characters removed after markup is stripped
_DANGEROUS_CHARS = re.compile(r"[<>'\"`;&|$]")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def strip_markup(content: str) -> str:
    """Remove every HTML tag, keeping text content."""
    # bleach escapes entities; unescape so the character filter sees them
    return html.unescape(bleach.clean(content, tags=[], strip=True))


def sanitize_input(content: Optional[str], max_length: int = MAX_INPUT_LENGTH) -> str:
    """
    Sanitize free-text input.

    Trims whitespace, strips HTML, removes quotes and ``; & | ` $``,
    and truncates to ``max_length`` characters.

    Examples:
        >>> sanitize_input('  <b>Acme</b> Corp; rm -rf /  ')
        'Acme Corp rm -rf /'
        >>> sanitize_input(None)
        ''
    """
    if content is None:
        return ""

    cleaned = strip_markup(content.strip())
    cleaned = _DANGEROUS_CHARS.sub("", cleaned)
    return cleaned.strip()[:max_length]


def sanitize_optional(content: Optional[str], max_length: int = MAX_INPUT_LENGTH) -> Optional[str]:
    """Like ``sanitize_input`` but keeps None and turns empty results into None."""
    if content is None:
        return None
    cleaned = sanitize_input(content, max_length)
    return cleaned or None


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def sanitize_email(email: Optional[str]) -> str:
    """
    Canonicalize an email address.

    Returns:
        Lowercased, sanitized address.

    Raises:
        InvalidEmailException: If the result is not a plausible address.
    """
    cleaned = sanitize_input(email, max_length=255).lower()
    if not is_valid_email(cleaned):
        raise InvalidEmailException()
    return cleaned
