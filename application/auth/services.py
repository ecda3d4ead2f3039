"""Authentication services."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from adapters.db.sqlite.security_logs import SecurityLogTable
from domains.auth.models import SecurityLogEntry, token_prefix

logger = logging.getLogger(__name__)

MAX_DETAILS_CHARS = 1000

_TOKEN_KEYS = {"token", "session_token", "sessiontoken", "reset_token", "authorization"}
_DROPPED_KEYS = {"password", "password_hash", "mfa_secret", "mfasecret", "secret", "code"}
_HASHED_KEYS = {"email"}


def fingerprint(value: Optional[str]) -> Optional[str]:
    """Short, stable, non-reversible identifier for logs."""

    if not value:
        return None
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()[:12]


def scrub_details(details: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Remove secrets, shorten tokens and cap the serialized size."""

    if not details:
        return {}

    scrubbed: Dict[str, Any] = {}
    for key, value in details.items():
        lowered = str(key).lower()
        if lowered in _DROPPED_KEYS:
            continue
        if lowered in _TOKEN_KEYS:
            scrubbed[key] = token_prefix(str(value)) if value else value
        elif lowered in _HASHED_KEYS:
            scrubbed[f"{key}_fingerprint"] = fingerprint(str(value)) if value else None
        elif isinstance(value, Mapping):
            scrubbed[key] = scrub_details(value)
        else:
            scrubbed[key] = value

    encoded = json.dumps(scrubbed, default=str, sort_keys=True)
    if len(encoded) > MAX_DETAILS_CHARS:
        return {"truncated": True, "preview": encoded[:MAX_DETAILS_CHARS]}
    return scrubbed


class AuditLogger:
    """Append-only security event sink.

    Every method is best-effort: a failure to persist an event is logged and
    swallowed so it never aborts the operation being annotated.
    """

    def __init__(self, table: SecurityLogTable, clock: Optional[Callable[[], float]] = None):
        """Initialize the AuditLogger."""

        self.table = table
        self._clock = clock or time.time
        logger.info("Initializing audit logger with database: %s", table.db_path)

    def append(self, entry: SecurityLogEntry) -> bool:
        """Persist ``entry``; returns False instead of raising on failure."""

        try:
            self.table.append(entry)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to persist security event %s", entry.action, exc_info=True)
            return False
        logger.info(
            "security_event action=%s user_type=%s user_id=%s",
            entry.action,
            entry.user_type,
            entry.user_id,
        )
        return True

    def log_event(
        self,
        action: str,
        *,
        user_id: Optional[str] = None,
        user_type: str = "unknown",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Build and append a :class:`SecurityLogEntry`."""

        try:
            entry = SecurityLogEntry(
                timestamp=self._clock(),
                user_id=user_id,
                user_type=user_type,
                action=action,
                ip_address=ip_address or "unknown",
                user_agent=user_agent or "unknown",
                details=scrub_details(details),
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to build security event %s", action, exc_info=True)
            return False
        return self.append(entry)

    def log_login_success(self, user_id: str, user_type: str, ip_address: str, user_agent: str, session_token: str) -> bool:
        return self.log_event(
            "login_success",
            user_id=user_id,
            user_type=user_type,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"session_token": session_token},
        )

    def log_login_failure(
        self,
        reason: str,
        *,
        user_id: Optional[str],
        user_type: str,
        ip_address: str,
        user_agent: str,
        email: Optional[str] = None,
    ) -> bool:
        details: Dict[str, Any] = {}
        if email:
            details["email"] = email
        return self.log_event(
            f"login_failed_{reason}",
            user_id=user_id,
            user_type=user_type,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details,
        )

    def log_session_destruction(self, session_token: str, user_id: Optional[str], user_type: str, ip_address: Optional[str] = None) -> bool:
        return self.log_event(
            "logout",
            user_id=user_id,
            user_type=user_type,
            ip_address=ip_address,
            details={"session_token": session_token},
        )

    def log_permission_denied(
        self,
        action: str,
        *,
        user_id: Optional[str],
        user_type: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
        endpoint: str,
        **details: Any,
    ) -> bool:
        return self.log_event(
            action,
            user_id=user_id,
            user_type=user_type,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"endpoint": endpoint, **details},
        )

    def recent(self, limit: int = 50, action: Optional[str] = None) -> List[SecurityLogEntry]:
        return self.table.recent(limit=limit, action=action)
