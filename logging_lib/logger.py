"""Structured logging facade."""

from __future__ import annotations

import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar, Token
from threading import RLock
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

from .config import LEVELS, LoggingSettings, get_settings
from .dispatcher import Dispatcher, RingBufferQueue
from .metrics import get_metrics, reset_metrics
from .redaction import RedactorRegistry, build_registry
from .schema import build_log_record
from .sinks.memory import InMemorySink
from .sinks.stdout import StdoutSink


_CONTEXT: ContextVar[Mapping[str, Any]] = ContextVar("logging_lib_context", default={})

_LEVEL_RANK = {name: index for index, name in enumerate(LEVELS)}


def _format_exc_info(exc_info: Any) -> Optional[str]:
    if not exc_info:
        return None
    if isinstance(exc_info, BaseException):
        exc_info = (type(exc_info), exc_info, exc_info.__traceback__)
    elif not isinstance(exc_info, tuple):
        exc_info = sys.exc_info()
    if exc_info[0] is None:
        return None
    return "".join(traceback.format_exception(*exc_info))


class StructuredLogger:
    """Structured logger bound to a component name.

    Accepts the same ``extra={...}`` and ``exc_info=True`` keywords as the
    standard library logger so call sites read the same either way.
    """

    def __init__(self, name: str, manager: "LoggerManager") -> None:
        self._name = name
        self._manager = manager

    @property
    def name(self) -> str:
        return self._name

    def debug(self, message: str, **fields: Any) -> None:
        self._log("DEBUG", message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log("INFO", message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log("WARNING", message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log("ERROR", message, **fields)

    def exception(self, message: str, **fields: Any) -> None:
        fields.setdefault("exc_info", True)
        self._log("ERROR", message, **fields)

    def critical(self, message: str, **fields: Any) -> None:
        self._log("CRITICAL", message, **fields)

    def _log(self, level: str, message: str, **fields: Any) -> None:
        manager = self._manager
        settings = manager.settings

        if _LEVEL_RANK.get(level, 0) < _LEVEL_RANK.get(settings.level, 0):
            return

        runtime_context = dict(manager.base_context)
        runtime_context.update(_CONTEXT.get())

        explicit_context = fields.pop("context", {}) or {}
        if explicit_context:
            runtime_context.update(explicit_context)

        extra = fields.pop("extra", None) or {}
        for key, value in extra.items():
            fields.setdefault(key, value)

        trace = _format_exc_info(fields.pop("exc_info", None))
        if trace:
            fields["traceback"] = trace

        record = build_log_record(
            level=level,
            message=message,
            settings=settings,
            component=self._name,
            context=runtime_context,
            **fields,
        )
        redactor = manager.redactor
        sanitized = redactor.apply(record) if redactor else record

        manager.dispatcher.submit(sanitized)


class LoggerManager:
    """Owns the settings, queue, dispatcher and loggers for the process."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._loggers: Dict[str, StructuredLogger] = {}
        self._settings: LoggingSettings | None = None
        self._dispatcher: Dispatcher | None = None
        self._queue: RingBufferQueue | None = None
        self._base_context: MutableMapping[str, Any] = {}
        self._redactor: Optional[RedactorRegistry] = None

    def configure(self, settings: LoggingSettings) -> None:
        with self._lock:
            self._shutdown_dispatcher()

            self._settings = settings

            self._queue = RingBufferQueue(settings.queue_size, on_drop=self._handle_drop)
            sinks = []

            for sink_name in settings.sinks:
                name = sink_name.strip().lower()

                if name == "stdout":
                    sinks.append(StdoutSink(settings))

                elif name == "memory":
                    sinks.append(InMemorySink())

            if not sinks:
                sinks.append(StdoutSink(settings))

            self._dispatcher = Dispatcher(
                self._queue,
                sinks,
                batch_size=settings.batch_size,
                flush_interval_ms=settings.flush_interval_ms,
                flush_timeout_ms=settings.flush_timeout_ms,
            )

            self._base_context = dict(settings.default_context)
            self._redactor = build_registry(settings.redaction)

            reset_metrics()

    @property
    def dispatcher(self) -> Dispatcher:
        dispatcher = self._dispatcher

        if dispatcher is None:
            self.configure(get_settings())
            dispatcher = self._dispatcher

        assert dispatcher is not None

        return dispatcher

    @property
    def settings(self) -> LoggingSettings:
        settings = self._settings

        if settings is None:
            settings = get_settings()
            self.configure(settings)

        return settings

    @property
    def base_context(self) -> Mapping[str, Any]:
        return dict(self._base_context)

    @property
    def redactor(self) -> Optional[RedactorRegistry]:
        return self._redactor

    def get_logger(self, name: str) -> StructuredLogger:
        # Loggers survive reconfiguration; they resolve settings through the manager.
        with self._lock:
            logger = self._loggers.get(name)

            if logger is None:
                logger = StructuredLogger(name, self)
                self._loggers[name] = logger

            return logger

    def flush(self) -> None:
        dispatcher = self._dispatcher
        if dispatcher is not None:
            dispatcher.flush()

    def reset(self) -> None:
        with self._lock:
            self._shutdown_dispatcher()

            self._settings = None
            self._queue = None

            self._base_context.clear()
            self._redactor = None

    # --------------------- internal helpers ---------------------
    def _shutdown_dispatcher(self) -> None:
        dispatcher = self._dispatcher

        if dispatcher is not None:
            dispatcher.stop()

        self._dispatcher = None

    def _handle_drop(self, dropped: Mapping[str, object]) -> None:
        dispatcher = self._dispatcher
        settings = self._settings

        if dispatcher is None or settings is None:
            return

        metrics = get_metrics()
        notice = build_log_record(
            level="WARNING",
            message="log_drop",
            settings=settings,
            component="logging.queue",
            context=dict(self._base_context),
            dropped_level=dropped.get("level"),
            dropped_component=dropped.get("component"),
            dropped_total=metrics.dropped_total,
        )

        dispatcher.emit_immediate(notice)


_MANAGER = LoggerManager()


def configure_manager(settings: LoggingSettings) -> None:
    _MANAGER.configure(settings)


def get_logger(name: str) -> StructuredLogger:
    """Get a logger with a given name."""

    return _MANAGER.get_logger(name)


def flush() -> None:
    """Drain buffered records into the sinks synchronously."""

    _MANAGER.flush()


@contextmanager
def logger_context(**context: Any):
    """Context manager for temporary context variables."""

    token = push_context(**context)
    try:
        yield
    finally:
        pop_context(token)


def reset_loggers() -> None:
    _MANAGER.reset()


def memory_records() -> List[Mapping[str, object]]:
    """Records captured by the in-memory sink, after draining the buffer."""

    dispatcher = _MANAGER._dispatcher

    if dispatcher is None:
        return []

    dispatcher.flush()
    for sink in dispatcher.sinks:
        if isinstance(sink, InMemorySink):
            return list(sink.records)

    return []


def push_context(**context: Any) -> Token:
    current = dict(_CONTEXT.get())
    current.update(context)
    return _CONTEXT.set(current)


def pop_context(token: Token) -> None:
    _CONTEXT.reset(token)


def get_context() -> Mapping[str, Any]:
    return dict(_CONTEXT.get())


def clear_context() -> None:
    _CONTEXT.set({})
