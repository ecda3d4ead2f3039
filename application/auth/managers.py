"""Identity and session managers."""

from __future__ import annotations

import logging
import secrets
import time
import uuid
from typing import Callable, Iterable, Optional

from adapters.db.sqlite.identities import IdentitiesTable
from adapters.db.sqlite.sessions import SessionsTable
from application.auth.passwords import PasswordHasher, validate_password_strength
from domains.auth.exceptions import AuthorizationError, NotFoundError, ValidationError
from domains.auth.models import ADMIN, Identity, Session, identity_class_for, token_prefix

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 256 bits


def generate_session_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


class IdentityManager:
    """Look up, register and update hotel managers and administrators.

    Responsibilities:
    - Resolve the concrete identity variant once per lookup
    - Registration and first-time password setup with strength enforcement
    - Password changes

    Out of scope:
    - Lockout counters (see LockoutPolicy)
    - Sessions (see SessionManager)
    """

    def __init__(self, identities: IdentitiesTable, hasher: PasswordHasher, *, password_min_length: int = 12):
        self.identities = identities
        self.hasher = hasher
        self.password_min_length = password_min_length
        logger.info("Initializing IdentityManager with database: %s", identities.db_path)

    def get(self, user_type: str, identity_id: str) -> Optional[Identity]:
        return self.identities.get(user_type, identity_id)

    def require(self, user_type: str, identity_id: str) -> Identity:
        identity = self.get(user_type, identity_id)
        if identity is None:
            raise NotFoundError("User not found")
        return identity

    def find_by_email(self, user_type: str, email: str) -> Optional[Identity]:
        if not email:
            return None
        return self.identities.get_by_email(user_type, email.strip())

    def save(self, identity: Identity) -> None:
        self.identities.upsert(identity)

    def register(
        self,
        user_type: str,
        email: str,
        *,
        password: Optional[str] = None,
        name: str = "",
        identity_id: Optional[str] = None,
        ip_whitelist: Iterable[str] = (),
    ) -> Identity:
        """Create a new identity; ``password`` may be deferred for hotels."""

        cls = identity_class_for(user_type)
        if self.find_by_email(user_type, email):
            raise ValidationError("User already exists")

        identity = cls(
            id=identity_id or str(uuid.uuid4()),
            email=email.strip(),
            name=name,
            ip_whitelist=frozenset(ip_whitelist),
        )
        if password is not None:
            identity.password_hash = self._hash_checked(password)
        self.identities.upsert(identity)
        logger.info("Registered %s identity %s", user_type, identity.id)
        return identity

    def setup_password(self, user_type: str, identity_id: str, password: str) -> Identity:
        """First-time password for an identity created without one."""

        identity = self.require(user_type, identity_id)
        if identity.has_password():
            raise ValidationError("Password already configured")
        identity.password_hash = self._hash_checked(password)
        self.identities.upsert(identity)
        logger.info("Password configured for %s/%s", user_type, identity_id)
        return identity

    def change_password(self, identity: Identity, password: str) -> Identity:
        identity.password_hash = self._hash_checked(password)
        self.identities.upsert(identity)
        return identity

    def _hash_checked(self, password: str) -> str:
        ok, message = validate_password_strength(password, self.password_min_length)
        if not ok:
            raise ValidationError(message)
        return self.hasher.hash(password)


class SessionManager:
    """Opaque bearer sessions with one active session per identity.

    Expiry is enforced when a token is read. Dead rows are reclaimed by
    :meth:`prune_expired`, which :meth:`create` also runs at most once per
    ``prune_interval`` seconds.
    """

    def __init__(
        self,
        sessions: SessionsTable,
        identities: IdentitiesTable,
        *,
        session_duration: int = 7200,
        prune_interval: int = 3600,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.sessions = sessions
        self.identities = identities
        self.session_duration = session_duration
        self._clock = clock or time.time
        self.prune_interval = prune_interval
        self._last_prune: Optional[float] = None
        logger.info("Initializing SessionManager with database: %s", sessions.db_path)

    @staticmethod
    def requires_mfa(identity: Identity) -> bool:
        return bool(identity.mfa_enabled or identity.mfa_mandatory)

    def create(self, identity: Identity, ip_address: str, user_agent: str) -> Session:
        """Supersede every active session of ``identity`` and open a new one."""

        now = self._clock()
        session = Session(
            token=generate_session_token(),
            user_id=identity.id,
            user_type=identity.user_type,
            ip_address=ip_address or "unknown",
            user_agent=user_agent or "unknown",
            created_at=now,
            expires_at=now + self.session_duration,
            mfa_verified=not self.requires_mfa(identity),
            is_active=True,
        )
        superseded = self.sessions.replace_active(session)
        self._maybe_prune(now)
        logger.info(
            "Session created %s for %s/%s (superseded=%d)",
            session.token_prefix,
            identity.user_type,
            identity.id,
            superseded,
        )
        return session

    def validate(self, token: Optional[str]) -> Optional[Session]:
        """Return the session iff it is active and unexpired."""

        if not token:
            return None
        session = self.sessions.get(token)
        if session is None:
            return None
        if not session.is_valid(self._clock()):
            return None
        return session

    def mark_mfa_verified(self, token: str) -> Session:
        """Idempotently flag the active session as MFA verified.

        Administrator sessions are only flagged once the administrator has MFA
        enabled.
        """

        session = self.validate(token)
        if session is None:
            raise AuthorizationError("Invalid session")
        if session.mfa_verified:
            return session

        if session.user_type == ADMIN:
            identity = self.identities.get(session.user_type, session.user_id)
            if identity is None or not identity.mfa_enabled:
                raise AuthorizationError("MFA setup required")

        self.sessions.set_mfa_verified(token)
        session.mfa_verified = True
        logger.info("Session %s marked MFA verified", session.token_prefix)
        return session

    def invalidate(self, token: str) -> bool:
        changed = self.sessions.deactivate(token)
        if changed:
            logger.info("Session invalidated %s", token_prefix(token))
        return changed

    def invalidate_identity(self, identity: Identity) -> int:
        return self.sessions.deactivate_for_identity(identity.user_type, identity.id)

    def invalidate_all(self) -> int:
        count = self.sessions.deactivate_all()
        logger.warning("All sessions invalidated (%d)", count)
        return count

    def count_active(self) -> int:
        return self.sessions.count_active(self._clock())

    def prune_expired(self) -> int:
        return self.sessions.delete_expired(self._clock())

    def _maybe_prune(self, now: float) -> None:
        if self._last_prune is None:
            self._last_prune = now
            return
        if now - self._last_prune < self.prune_interval:
            return
        self._last_prune = now
        removed = self.sessions.delete_expired(now)
        if removed:
            logger.info("Pruned %d dead sessions", removed)
