"""Failed-attempt counting and timed lockout."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from adapters.db.sqlite.identities import IdentitiesTable
from domains.auth.models import Identity

logger = logging.getLogger(__name__)


class LockoutPolicy:
    """Applies the attempt threshold and lock duration to identity records.

    Callers must check :meth:`is_locked` before verifying a password.
    """

    def __init__(
        self,
        identities: IdentitiesTable,
        *,
        max_attempts: int = 5,
        lockout_duration: int = 1800,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.identities = identities
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration
        self._clock = clock or time.time

    def is_locked(self, identity: Identity) -> bool:
        return identity.is_locked(self._clock())

    def record_failure(self, identity: Identity) -> bool:
        """Count a wrong password; returns True when this failure triggered a lock."""

        identity.login_attempts += 1
        triggered = False
        if identity.login_attempts >= self.max_attempts:
            identity.locked_until = self._clock() + self.lockout_duration
            triggered = True
            logger.warning(
                "Identity %s/%s locked after %d failed attempts",
                identity.user_type,
                identity.id,
                identity.login_attempts,
            )
        self.identities.upsert(identity)
        return triggered

    def record_success(self, identity: Identity) -> None:
        identity.login_attempts = 0
        identity.locked_until = None
        identity.last_login = self._clock()
        self.identities.upsert(identity)

    def clear(self, identity: Identity) -> None:
        """Reset counters without touching ``last_login`` (password reset)."""

        identity.login_attempts = 0
        identity.locked_until = None
        self.identities.upsert(identity)
