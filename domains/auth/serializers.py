"""Serialization helpers for auth domain models.

These helpers convert pure domain dataclasses to and from storage rows. They
live outside the dataclasses so the models stay free of persistence details.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Mapping, Optional

from .models import Identity, SecurityLogEntry, Session, identity_class_for

logger = logging.getLogger(__name__)


def identity_to_dict(identity: Identity) -> dict[str, Any]:
    """Convert an :class:`Identity` into a storage dictionary."""

    logger.debug("Serializing identity %s/%s", identity.user_type, identity.id)
    payload: dict[str, Any] = {
        "id": identity.id,
        "user_type": identity.user_type,
        "email": identity.email,
        "name": identity.name,
        "password_hash": identity.password_hash,
        "mfa_secret": identity.mfa_secret,
        "mfa_enabled": 1 if identity.mfa_enabled else 0,
        "login_attempts": identity.login_attempts,
        "locked_until": identity.locked_until,
        "last_login": identity.last_login,
        "ip_whitelist": json.dumps(sorted(identity.ip_whitelist)),
        "created_at": identity.created_at,
    }
    return payload


def identity_from_dict(data: Mapping[str, Any]) -> Identity:
    """Create the concrete :class:`Identity` variant from a storage row."""

    cls = identity_class_for(str(data["user_type"]))
    return cls(
        id=str(data["id"]),
        email=str(data["email"]),
        name=str(data.get("name") or ""),
        password_hash=data.get("password_hash") or None,
        mfa_secret=data.get("mfa_secret") or None,
        mfa_enabled=bool(data.get("mfa_enabled")),
        login_attempts=_coerce_int(data.get("login_attempts"), default=0),
        locked_until=_optional_number(data.get("locked_until")),
        last_login=_optional_number(data.get("last_login")),
        ip_whitelist=frozenset(_safe_json_list(data.get("ip_whitelist", "[]"))),
        created_at=_coerce_number(data.get("created_at"), default=time.time()),
    )


def session_to_dict(session: Session) -> dict[str, Any]:
    """Convert a :class:`Session` into a storage dictionary."""

    logger.debug("Serializing session %s", session.token_prefix)
    return {
        "token": session.token,
        "user_id": session.user_id,
        "user_type": session.user_type,
        "ip_address": session.ip_address,
        "user_agent": session.user_agent,
        "created_at": session.created_at,
        "expires_at": session.expires_at,
        "mfa_verified": 1 if session.mfa_verified else 0,
        "is_active": 1 if session.is_active else 0,
    }


def session_from_dict(data: Mapping[str, Any]) -> Session:
    """Create a :class:`Session` from a storage dictionary."""

    created_at = _coerce_number(data.get("created_at"), default=time.time())
    # A row with a broken expiry is treated as already expired.
    expires_at = _coerce_number(data.get("expires_at"), default=created_at)

    return Session(
        token=str(data["token"]),
        user_id=str(data["user_id"]),
        user_type=str(data["user_type"]),
        ip_address=str(data.get("ip_address") or ""),
        user_agent=str(data.get("user_agent") or ""),
        created_at=created_at,
        expires_at=expires_at,
        mfa_verified=bool(data.get("mfa_verified")),
        is_active=bool(data.get("is_active")),
    )


def log_entry_to_dict(entry: SecurityLogEntry) -> dict[str, Any]:
    return {
        "timestamp": entry.timestamp,
        "user_id": entry.user_id,
        "user_type": entry.user_type,
        "action": entry.action,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "details": json.dumps(dict(entry.details), default=str, sort_keys=True),
    }


def log_entry_from_dict(data: Mapping[str, Any]) -> SecurityLogEntry:
    details_raw = data.get("details") or "{}"
    try:
        details = json.loads(details_raw) if isinstance(details_raw, str) else dict(details_raw)
    except ValueError:
        details = {"raw": str(details_raw)}

    return SecurityLogEntry(
        timestamp=_coerce_number(data.get("timestamp"), default=0.0),
        user_id=data.get("user_id"),
        user_type=str(data.get("user_type") or ""),
        action=str(data["action"]),
        ip_address=str(data.get("ip_address") or ""),
        user_agent=str(data.get("user_agent") or ""),
        details=details,
    )


def _optional_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _coerce_number(value: Any, *, default: float) -> float:
    try:
        if value is None:
            return float(default)
        numeric = float(value)
        return numeric if numeric >= 0 else float(default)
    except (TypeError, ValueError):
        return float(default)


def _coerce_int(value: Any, *, default: int) -> int:
    try:
        numeric = int(value)
        return numeric if numeric >= 0 else default
    except (TypeError, ValueError):
        return default


def _safe_json_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item) for item in value]
    try:
        parsed = json.loads(value)  # type: ignore[arg-type]
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
    except (TypeError, ValueError):
        pass
    return []


__all__ = [
    "identity_to_dict",
    "identity_from_dict",
    "session_to_dict",
    "session_from_dict",
    "log_entry_to_dict",
    "log_entry_from_dict",
]
