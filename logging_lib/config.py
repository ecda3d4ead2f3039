"""Configuration utilities for the logging library."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, replace
from typing import Any, Mapping

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _comma_tuple(value: str | None, *, default: tuple[str, ...]) -> tuple[str, ...]:
    """Convert a comma-separated string to a tuple."""

    if not value:
        return default

    return tuple(filter(None, (part.strip() for part in value.split(","))))


def _bool_env(value: str | None, default: bool) -> bool:
    """Convert a string to a boolean."""

    if value is None:
        return default

    return value.lower() in {"1", "true", "yes", "on"}


def _int_env(value: str | None, default: int) -> int:
    if value is None:
        return default

    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _level(value: str | None, default: str) -> str:
    candidate = (value or default).upper()
    return candidate if candidate in LEVELS else default


@dataclass(frozen=True)
class RedactionSettings:
    """Which record fields are masked before a record leaves the process."""

    enabled: bool
    denylist: tuple[str, ...]
    allowlist: tuple[str, ...]
    hash_salt: str


@dataclass(frozen=True)
class LoggingSettings:
    """Immutable runtime configuration."""

    service: str
    env: str
    level: str
    queue_size: int
    batch_size: int
    flush_interval_ms: int
    flush_timeout_ms: int
    sinks: tuple[str, ...]
    default_context: Mapping[str, Any]
    exclude_routes: tuple[str, ...]
    request_id_header: str
    payload_limit_bytes: int
    max_field_length: int
    truncate_suffix: str
    redaction: RedactionSettings

    def with_overrides(self, **kwargs: Any) -> "LoggingSettings":
        return replace(self, **kwargs)


_SETTINGS_LOCK = threading.RLock()
_SETTINGS: LoggingSettings | None = None


def load_settings(env: Mapping[str, str] | None = None) -> LoggingSettings:
    source = os.environ if env is None else env

    redaction_settings = RedactionSettings(
        enabled=_bool_env(source.get("LOG_REDACTION_ENABLED"), True),
        denylist=_comma_tuple(source.get("LOG_REDACTION_DENYLIST"), default=()),
        allowlist=_comma_tuple(source.get("LOG_REDACTION_ALLOWLIST"), default=()),
        hash_salt=source.get("LOG_REDACTION_HASH_SALT", ""),
    )

    return LoggingSettings(
        service=source.get("LOG_SERVICE_NAME", "itinera-auth"),
        env=source.get("LOG_ENV", "local"),
        level=_level(source.get("LOG_LEVEL"), "INFO"),
        queue_size=max(1, _int_env(source.get("LOG_QUEUE_SIZE"), 8192)),
        batch_size=max(1, _int_env(source.get("LOG_BATCH_SIZE"), 64)),
        flush_interval_ms=_int_env(source.get("LOG_FLUSH_MS"), 200),
        flush_timeout_ms=_int_env(source.get("LOG_FLUSH_TIMEOUT_MS"), 2000),
        sinks=_comma_tuple(source.get("LOG_SINKS"), default=("stdout",)),
        default_context={},
        exclude_routes=_comma_tuple(source.get("LOG_EXCLUDE_ROUTES"), default=("/healthz",)),
        request_id_header=source.get("LOG_REQUEST_ID_HEADER", "X-Request-Id"),
        payload_limit_bytes=_int_env(source.get("LOG_PAYLOAD_LIMIT_BYTES"), 16_384),
        max_field_length=_int_env(source.get("LOG_FIELD_MAX_LENGTH"), 1024),
        truncate_suffix=source.get("LOG_TRUNCATE_SUFFIX", "..."),
        redaction=redaction_settings,
    )


def configure_settings(
    settings: LoggingSettings | None = None, **overrides: Any
) -> LoggingSettings:
    with _SETTINGS_LOCK:
        resolved = settings or load_settings()
        if overrides:
            resolved = resolved.with_overrides(**overrides)
        global _SETTINGS
        _SETTINGS = resolved
        return _SETTINGS


def get_settings() -> LoggingSettings:
    with _SETTINGS_LOCK:
        if _SETTINGS is None:
            return configure_settings()
        return _SETTINGS
