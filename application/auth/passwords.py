"""Password hashing and strength policy."""

from __future__ import annotations

import hashlib
import logging
from typing import Tuple

import bcrypt

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
SPECIAL_CHARS = "@$!%*?&"
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Adaptive one-way hashing via bcrypt."""

    def __init__(self, rounds: int = BCRYPT_ROUNDS) -> None:
        self.rounds = rounds

    def hash(self, password: str) -> str:
        """Hash a password with a fresh salt."""

        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(_encode(password), salt).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Verify a password against a stored bcrypt hash."""

        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:MAX_PASSWORD_BYTES]


def password_fingerprint(password_hash: str) -> str:
    """Stable digest of a stored hash; changes whenever the password changes."""

    return hashlib.sha256(password_hash.encode("utf-8")).hexdigest()[:16]


def validate_password_strength(password: str, min_length: int = 12) -> Tuple[bool, str]:
    """Validate the strength of a password."""

    if not isinstance(password, str) or len(password) < min_length:
        return False, f"Password must be at least {min_length} characters"

    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False, f"Password must be at most {MAX_PASSWORD_BYTES} bytes"

    if not any(c.isupper() for c in password):
        return False, "Password must contain uppercase letters"

    if not any(c.islower() for c in password):
        return False, "Password must contain lowercase letters"

    if not any(c.isdigit() for c in password):
        return False, "Password must contain numbers"

    if not any(c in SPECIAL_CHARS for c in password):
        return False, f"Password must contain one of {SPECIAL_CHARS}"

    common_passwords = {'password', '123456', 'admin', 'qwerty', 'password123', 'admin123', 'itinera'}
    normalized_password = ''.join(c for c in password.lower() if c.isalnum())

    if normalized_password in common_passwords:
        return False, "Password is too common"

    return True, "Password is valid"
