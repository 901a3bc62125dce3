"""
Credential primitives: password hashing, field encryption and signed tokens.

Nothing in here touches the database. Failures on the verify side
(malformed hash, tampered ciphertext, forged or expired token) come back as
``False``/``None`` so callers can turn them into a generic authentication
failure.
"""

import base64
import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

import bcrypt
import jwt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from loguru import logger

from helpers.time_utils import Clock, utc_now
from models.config import Settings
from models.exceptions import ConfigurationException
from repositories.db_models import generate_secure_id

_NONCE_BYTES = 12
_TAG_BYTES = 16
_KDF_ITERATIONS = 100_000


@dataclass(frozen=True)
class EncryptedPayload:
    """AES-GCM output, each part base64-encoded."""

    ciphertext: str
    iv: str
    auth_tag: str

    def to_dict(self) -> dict[str, str]:
        return {"ciphertext": self.ciphertext, "iv": self.iv, "auth_tag": self.auth_tag}


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class CredentialService:
    """
    bcrypt password hashing, AES-256-GCM encryption bound to an application
    context, and PyJWT tokens carrying issuer, audience and expiry.
    """

    def __init__(self, settings: Settings, clock: Clock = utc_now):
        if len(settings.ENCRYPTION_KEY) < 32:
            raise ConfigurationException("ENCRYPTION_KEY must be at least 32 characters")

        self.settings = settings
        self.clock = clock
        self.bcrypt_rounds = settings.BCRYPT_ROUNDS
        self._context = settings.ENCRYPTION_CONTEXT.encode("utf-8")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=settings.ENCRYPTION_SALT.encode("utf-8"),
            iterations=_KDF_ITERATIONS,
        )
        self._aesgcm = AESGCM(kdf.derive(settings.ENCRYPTION_KEY.encode("utf-8")))

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(
            password.encode("utf-8"), bcrypt.gensalt(rounds=self.bcrypt_rounds)
        ).decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed or non-bcrypt hash
            return False

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str) -> EncryptedPayload:
        nonce = secrets.token_bytes(_NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), self._context)
        return EncryptedPayload(
            ciphertext=_b64(sealed[:-_TAG_BYTES]),
            iv=_b64(nonce),
            auth_tag=_b64(sealed[-_TAG_BYTES:]),
        )

    def decrypt(self, payload: EncryptedPayload) -> Optional[str]:
        """
        Decrypt a payload produced by ``encrypt``.

        Returns:
            Plaintext, or None when the payload was tampered with, was
            sealed under another context or key, or is not valid base64.
        """
        try:
            nonce = base64.b64decode(payload.iv)
            sealed = base64.b64decode(payload.ciphertext) + base64.b64decode(
                payload.auth_tag
            )
            plaintext = self._aesgcm.decrypt(nonce, sealed, self._context)
        except (InvalidTag, ValueError):
            logger.debug("Decryption failed")
            return None
        return plaintext.decode("utf-8")

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_token(self, claims: dict[str, Any], expires_in: Optional[int] = None) -> str:
        """
        Sign a JWT with issuer, audience, issue time, expiry and a unique id.

        Args:
            claims: Application claims (``sub``, ``sid``, ...)
            expires_in: Lifetime in seconds; defaults to ACCESS_TOKEN_EXPIRE_SECONDS
        """
        now = self.clock()
        lifetime = expires_in if expires_in is not None else self.settings.ACCESS_TOKEN_EXPIRE_SECONDS
        payload = dict(claims)
        payload.update(
            {
                "iss": self.settings.JWT_ISSUER,
                "aud": self.settings.JWT_AUDIENCE,
                "iat": now,
                "exp": now + timedelta(seconds=lifetime),
                "jti": uuid.uuid4().hex,
            }
        )
        return jwt.encode(payload, self.settings.SECRET_KEY, algorithm=self.settings.ALGORITHM)

    def verify_token(self, token: str) -> Optional[dict[str, Any]]:
        """Decoded claims, or None for expired, forged or foreign tokens."""
        now = self.clock()
        try:
            claims = jwt.decode(
                token,
                self.settings.SECRET_KEY,
                algorithms=[self.settings.ALGORITHM],
                audience=self.settings.JWT_AUDIENCE,
                issuer=self.settings.JWT_ISSUER,
                options={
                    "require": ["exp", "iat", "iss", "aud"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.exceptions.InvalidTokenError:
            return None
        # Time claims are checked against the service clock
        if claims["exp"] <= now.timestamp() or claims["iat"] > now.timestamp() + 60:
            return None
        return claims

    # ------------------------------------------------------------------
    # Random values
    # ------------------------------------------------------------------

    @staticmethod
    def generate_secure_id() -> str:
        return generate_secure_id()

    @staticmethod
    def generate_token(nbytes: int = 32) -> str:
        return secrets.token_urlsafe(nbytes)

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()
