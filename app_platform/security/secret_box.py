"""Authenticated encryption for secrets stored at rest (MFA seeds).

Keys are Fernet keys. The first key encrypts; every configured key may
decrypt, which lets operators rotate by prepending a new key and re-encrypting
with :meth:`SecretBox.rotate`. Values that do not authenticate under any key
are rejected; there is no plaintext fallback.
"""

from __future__ import annotations

import logging
from typing import Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from domains.auth.exceptions import CipherError, ConfigurationError

logger = logging.getLogger(__name__)


class SecretBox:
    """Encrypt/decrypt short secrets with key rotation support."""

    def __init__(self, keys: Sequence[str]) -> None:
        if not keys:
            raise ConfigurationError("at least one encryption key is required")
        try:
            self._fernets = [Fernet(key.encode("utf-8") if isinstance(key, str) else key) for key in keys]
        except (ValueError, TypeError) as exc:
            raise ConfigurationError("invalid encryption key material") from exc
        self._cipher = MultiFernet(self._fernets)
        logger.info("SecretBox initialized with %d key(s)", len(self._fernets))

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def encrypt(self, plaintext: str) -> str:
        return self._cipher.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._cipher.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            raise CipherError("stored secret failed authentication") from exc

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt ``ciphertext`` under the primary key."""

        try:
            return self._cipher.rotate(ciphertext.encode("ascii")).decode("ascii")
        except (InvalidToken, UnicodeError) as exc:
            raise CipherError("stored secret failed authentication") from exc

    def is_ciphertext(self, value: str) -> bool:
        """True when ``value`` authenticates under one of the configured keys."""

        try:
            self._cipher.decrypt(value.encode("ascii"))
        except (InvalidToken, UnicodeError):
            return False
        return True
