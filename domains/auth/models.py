"""Identity and session domain models.

The identity store holds two kinds of principals: hotel managers and platform
administrators. Both share the same credential, lockout, and MFA fields, so
they are modelled as one :class:`Identity` base with two concrete variants
resolved once at lookup time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, FrozenSet, Mapping, Optional, Type

logger = logging.getLogger(__name__)


HOTEL = "hotel"
ADMIN = "admin"
USER_TYPES = (HOTEL, ADMIN)


@dataclass
class Identity:
    """Credentialed principal that can open sessions."""

    user_type: ClassVar[str] = ""
    mfa_mandatory: ClassVar[bool] = False

    id: str
    email: str
    password_hash: Optional[str] = None
    mfa_secret: Optional[str] = None  # ciphertext, never plaintext
    mfa_enabled: bool = False
    login_attempts: int = 0
    locked_until: Optional[float] = None
    last_login: Optional[float] = None
    ip_whitelist: FrozenSet[str] = field(default_factory=frozenset)
    name: str = ""
    created_at: float = field(default_factory=time.time)

    def is_locked(self, now: Optional[float] = None) -> bool:
        """Check if the identity is inside a lockout window."""

        if self.locked_until is None:
            return False
        current = time.time() if now is None else now
        locked = self.locked_until > current
        if locked:
            logger.warning("Identity %s/%s is locked until %s", self.user_type, self.id, self.locked_until)
        return locked

    def has_password(self) -> bool:
        return bool(self.password_hash)

    def mfa_state(self) -> str:
        """Return ``unconfigured``, ``pending`` or ``enabled``."""

        if self.mfa_enabled:
            return "enabled"
        if self.mfa_secret:
            return "pending"
        return "unconfigured"

    def ip_allowed(self, ip_address: Optional[str]) -> bool:
        """An empty whitelist allows every address."""

        if not self.ip_whitelist:
            return True
        return bool(ip_address) and ip_address in self.ip_whitelist

    def public_view(self) -> Dict[str, Any]:
        """Client-safe projection; secrets and counters are never included."""

        payload: Dict[str, Any] = {
            "id": self.id,
            "email": self.email,
            "name": self.name or self.email,
            "type": self.user_type,
            "mfaEnabled": bool(self.mfa_enabled),
        }
        return payload


@dataclass
class HotelManager(Identity):
    """Hotel manager account; MFA is optional."""

    user_type: ClassVar[str] = HOTEL
    mfa_mandatory: ClassVar[bool] = False

    def public_view(self) -> Dict[str, Any]:
        payload = super().public_view()
        payload["hotelId"] = self.id
        return payload


@dataclass
class Administrator(Identity):
    """Platform administrator; MFA is mandatory."""

    user_type: ClassVar[str] = ADMIN
    mfa_mandatory: ClassVar[bool] = True


IDENTITY_TYPES: Mapping[str, Type[Identity]] = {
    HOTEL: HotelManager,
    ADMIN: Administrator,
}


def identity_class_for(user_type: str) -> Type[Identity]:
    """Resolve the concrete identity class for ``user_type``."""

    try:
        return IDENTITY_TYPES[user_type]
    except KeyError:
        raise ValueError(f"unknown user type: {user_type!r}") from None


@dataclass
class Session:
    """Server-side session bound to one identity."""

    token: str
    user_id: str
    user_type: str
    ip_address: str
    user_agent: str
    created_at: float
    expires_at: float
    mfa_verified: bool = False
    is_active: bool = True

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if session has expired."""

        current = time.time() if now is None else now
        expired = current >= self.expires_at
        if expired:
            logger.debug("Session %s has expired", self.token_prefix)
        return expired

    def is_valid(self, now: Optional[float] = None) -> bool:
        return self.is_active and not self.is_expired(now)

    @property
    def token_prefix(self) -> str:
        return token_prefix(self.token)


def token_prefix(token: Optional[str]) -> str:
    """Loggable prefix of a bearer token."""

    if not token:
        return ""
    return f"{token[:8]}..."


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """What the auth gate attaches to a request after every check passed."""

    id: str
    type: str
    mfa_verified: bool
    session_token: str = field(default="", repr=False)

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type, "mfaVerified": self.mfa_verified}


@dataclass(frozen=True)
class SecurityLogEntry:
    """Immutable audit trail record."""

    timestamp: float
    user_id: Optional[str]
    user_type: str
    action: str
    ip_address: str
    user_agent: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class RateLimitWindow:
    """Process-local fixed window counter."""

    key: str
    count: int
    window_start: float

    def elapsed(self, now: float, window_s: float) -> bool:
        return now - self.window_start >= window_s
