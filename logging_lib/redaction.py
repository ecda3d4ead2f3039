"""Redaction helpers for structured logging.

Session tokens are shortened to a prefix that still correlates log lines,
secrets are replaced by a salted digest, and email addresses keep only
their first character and domain. Redaction walks nested mappings and
lists, including the record context.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping

from .config import RedactionSettings
from .metrics import record_redaction

Redactor = Callable[[str, Any], Any]

TOKEN_PREFIX_LENGTH = 8

TOKEN_KEYS = ("token", "session_token", "sessiontoken", "authorization", "access_token", "reset_token")
SECRET_KEYS = ("password", "password_hash", "passwordhash", "mfa_secret", "mfasecret", "secret", "code")
EMAIL_KEYS = ("email",)


def mask_token(_key: str, value: Any) -> str:
    text = str(value)
    if text.lower().startswith("bearer "):
        text = text[7:]
    if len(text) <= TOKEN_PREFIX_LENGTH:
        return "***"
    return f"{text[:TOKEN_PREFIX_LENGTH]}..."


def mask_email(_key: str, value: Any) -> str:
    text = str(value)
    if "@" not in text:
        return "***"
    local, _, domain = text.partition("@")
    masked_local = local[0] + "***" if local else "***"
    return f"{masked_local}@{domain}"


def hashing_redactor(salt: str) -> Redactor:
    def _hash(_key: str, value: Any) -> str:
        digest = hashlib.sha256(f"{salt}{value}".encode("utf-8")).hexdigest()[:12]
        return f"redacted:{digest}"

    return _hash


def _drop(_key: str, _value: Any) -> str:
    return "[REDACTED]"


@dataclass
class RedactorRegistry:
    """Registry of per-field redaction callables, matched case-insensitively."""

    _redactors: Dict[str, Redactor] = field(default_factory=dict)
    allowlist: frozenset = frozenset()

    def register(self, key: str, fn: Redactor) -> None:
        self._redactors[key.lower()] = fn

    def apply(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        counter = [0]
        sanitized = self._walk(record, counter)
        record_redaction(counter[0])
        return sanitized

    def _walk(self, mapping: Mapping[str, Any], counter: list) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in mapping.items():
            lowered = str(key).lower()
            redactor = None if lowered in self.allowlist else self._redactors.get(lowered)
            if redactor is not None and value is not None:
                result[key] = redactor(key, value)
                counter[0] += 1
            else:
                result[key] = self._value(value, counter)
        return result

    def _value(self, value: Any, counter: list) -> Any:
        if isinstance(value, Mapping):
            return self._walk(value, counter)
        if isinstance(value, (list, tuple)):
            return [self._value(item, counter) for item in value]
        return value


def build_registry(settings: RedactionSettings) -> RedactorRegistry | None:
    """Build the registry described by ``settings``; ``None`` when disabled."""

    if not settings.enabled:
        return None

    registry = RedactorRegistry(allowlist=frozenset(key.lower() for key in settings.allowlist))
    hashed = hashing_redactor(settings.hash_salt)

    for key in TOKEN_KEYS:
        registry.register(key, mask_token)
    for key in SECRET_KEYS:
        registry.register(key, hashed)
    for key in EMAIL_KEYS:
        registry.register(key, mask_email)
    for key in settings.denylist:
        registry.register(key, _drop)

    return registry
