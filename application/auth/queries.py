import time
from typing import Any, Callable, Dict, Optional

from adapters.db.sqlite.identities import IdentitiesTable
from adapters.db.sqlite.security_logs import SecurityLogTable
from app_platform.security.secure_store import SecureDataWrapper
from application.auth.managers import IdentityManager, SessionManager
from domains.auth.models import AuthenticatedIdentity
from domains.auth.serializers import log_entry_to_dict


class GetCurrentIdentity:
    def __init__(self, identities: IdentityManager):
        self.identities = identities

    def execute(self, actor: AuthenticatedIdentity) -> Dict[str, Any]:
        return self.identities.require(actor.type, actor.id).public_view()


class GetMfaStatus:
    def __init__(self, identities: IdentityManager):
        self.identities = identities

    def execute(self, actor: AuthenticatedIdentity) -> Dict[str, Any]:
        identity = self.identities.require(actor.type, actor.id)
        return {
            "mfaEnabled": bool(identity.mfa_enabled),
            "state": identity.mfa_state(),
            "mandatory": identity.mfa_mandatory,
        }


class SecurityHealth:
    """Unauthenticated readiness view; carries no identity or session counts."""

    def __init__(self, store: SecureDataWrapper):
        self.store = store

    def execute(self) -> Dict[str, Any]:
        storage = self.store.health_check()
        return {
            "status": storage["status"],
            "storage": storage,
        }


class SecurityReport:
    """Recent audit trail plus lockout and session counters for administrators."""

    def __init__(
        self,
        logs: SecurityLogTable,
        identities: IdentitiesTable,
        sessions: SessionManager,
        *,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.logs = logs
        self.identities = identities
        self.sessions = sessions
        self._clock = clock or time.time

    def execute(self, limit: int = 50, window_s: int = 86400) -> Dict[str, Any]:
        now = self._clock()
        since = now - window_s
        locked = self.identities.list_locked(now)
        return {
            "generatedAt": now,
            "windowSeconds": window_s,
            "failedLogins": self.logs.count_since("login_failed", since),
            "failedMfa": self.logs.count_since("mfa_verify_failed", since),
            "activeSessions": self.sessions.count_active(),
            "lockedIdentities": [
                {"id": i.id, "type": i.user_type, "lockedUntil": i.locked_until} for i in locked
            ],
            "recentEvents": [{**log_entry_to_dict(e), "details": dict(e.details)} for e in self.logs.recent(limit=limit)],
        }
