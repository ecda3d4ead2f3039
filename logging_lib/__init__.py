"""Public API for the structured logging library."""

from __future__ import annotations

from .config import LoggingSettings, configure_settings, get_settings, load_settings
from .logger import (
    clear_context,
    configure_manager,
    flush,
    get_context,
    get_logger,
    logger_context,
    memory_records,
    pop_context,
    push_context,
    reset_loggers,
)
from .metrics import get_metrics

__all__ = [
    "configure",
    "flush",
    "get_logger",
    "logger_context",
    "LoggingSettings",
    "load_settings",
    "get_settings",
    "get_metrics",
    "memory_records",
    "push_context",
    "pop_context",
    "get_context",
    "clear_context",
    "reset_loggers",
]


def configure(settings: LoggingSettings | None = None, **overrides) -> LoggingSettings:
    """Configure the logging library and start background workers."""

    resolved = configure_settings(settings, **overrides)
    configure_manager(resolved)

    return resolved
