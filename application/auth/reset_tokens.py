"""Signed, single-use recovery tokens (password reset, MFA reset).

Tokens are HS256 JWTs bound to a fingerprint of the identity's current
credential state (password hash and MFA secret). Once the credential the token
was issued against changes, the token stops matching.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from jose import jwt
from jose.exceptions import JWTError

from domains.auth.models import Identity

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"

PASSWORD_RESET = "password_reset"
MFA_RESET = "mfa_reset"


@dataclass(frozen=True)
class RecoveryClaims:
    identity_id: str
    user_type: str
    purpose: str
    state: str


def credential_state(identity: Identity) -> str:
    """Digest of the credentials a recovery token is allowed to replace."""

    material = f"{identity.password_hash or ''}|{identity.mfa_secret or ''}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]


class RecoveryTokenService:
    def __init__(self, signing_key: str, *, ttl_seconds: int = 3600, clock: Optional[Callable[[], float]] = None):
        self._key = signing_key
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.time

    def issue(self, identity: Identity, purpose: str) -> str:
        now = int(self._clock())
        claims = {
            "sub": identity.id,
            "typ": identity.user_type,
            "pur": purpose,
            "st": credential_state(identity),
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        return jwt.encode(claims, self._key, algorithm=_ALGORITHM)

    def decode(self, token: str, purpose: str) -> Optional[RecoveryClaims]:
        """Return claims of a well-formed, unexpired token for ``purpose`` or None."""

        if not token:
            return None
        try:
            # Expiry is checked below against the injected clock.
            claims = jwt.decode(token, self._key, algorithms=[_ALGORITHM], options={"verify_exp": False})
        except JWTError:
            logger.info("Rejected malformed %s token", purpose)
            return None

        if claims.get("pur") != purpose:
            return None
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self._clock():
            logger.info("Rejected expired %s token", purpose)
            return None
        try:
            return RecoveryClaims(
                identity_id=str(claims["sub"]),
                user_type=str(claims["typ"]),
                purpose=purpose,
                state=str(claims["st"]),
            )
        except KeyError:
            return None

    @staticmethod
    def matches(claims: RecoveryClaims, identity: Identity) -> bool:
        return (
            claims.identity_id == identity.id
            and claims.user_type == identity.user_type
            and claims.state == credential_state(identity)
        )
