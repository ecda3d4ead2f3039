"""Fixtures for logging library unit tests."""

from __future__ import annotations

from typing import Iterable, List, Mapping

import pytest

from logging_lib.config import load_settings
from logging_lib.dispatcher import RingBufferQueue, Sink
from logging_lib.logger import LoggerManager, reset_loggers
from logging_lib.metrics import record_flush, reset_metrics, set_queue_depth
from logging_lib.sinks.memory import InMemorySink


class _DeterministicDispatcher:
    """Synchronous dispatcher replacement to keep logging tests deterministic."""

    def __init__(
        self,
        queue: RingBufferQueue,
        sinks: Iterable[Sink],
        *,
        batch_size: int,
        flush_interval_ms: int,
        flush_timeout_ms: int,
    ) -> None:
        self._queue = queue
        self._sinks: List[Sink] = list(sinks)

    @property
    def sinks(self) -> List[Sink]:
        return list(self._sinks)

    def submit(self, record: Mapping[str, object]) -> None:
        self._queue.put(record)
        self.flush()

    def emit_immediate(self, record: Mapping[str, object]) -> None:
        for sink in list(self._sinks):
            sink.emit(record)

    def flush(self) -> None:
        batch = self._queue.drain(max(1, self._queue.size()))
        for record in batch:
            for sink in list(self._sinks):
                sink.emit(record)
        if batch:
            record_flush(len(batch))
        set_queue_depth(self._queue.size())

    def stop(self) -> None:
        self.flush()

    def register_sink(self, sink: Sink) -> None:
        self._sinks.append(sink)


def pytest_collection_modifyitems(config, items):  # pragma: no cover - Pytest hook
    """Tag every test in this directory with the `logging` marker."""

    for item in items:
        item.add_marker(pytest.mark.logging)
        item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def _reset_logging_state():
    """Reset logging globals (manager + metrics) around each test."""

    reset_loggers()
    reset_metrics()
    yield
    reset_metrics()
    reset_loggers()


@pytest.fixture(autouse=True)
def _patch_dispatcher(monkeypatch):
    """Swap the production dispatcher for a deterministic test double."""

    import logging_lib.logger as logger_module

    monkeypatch.setattr(logger_module, "Dispatcher", _DeterministicDispatcher)


@pytest.fixture
def logging_settings():
    """Deterministic logging settings wired to the in-memory sink."""

    return load_settings(
        {
            "LOG_SERVICE_NAME": "logging-unit-tests",
            "LOG_ENV": "test",
            "LOG_LEVEL": "DEBUG",
            "LOG_SINKS": "memory",
            "LOG_QUEUE_SIZE": "8",
            "LOG_BATCH_SIZE": "4",
            "LOG_FLUSH_MS": "0",
            "LOG_FLUSH_TIMEOUT_MS": "50",
            "LOG_REDACTION_HASH_SALT": "pepper",
        }
    )


@pytest.fixture
def logger_manager(monkeypatch, logging_settings):
    """Test-scoped logger manager installed as the process manager."""

    import logging_lib.config as config_module
    import logging_lib.logger as logger_module

    manager = LoggerManager()

    monkeypatch.setattr(logger_module, "_MANAGER", manager)
    monkeypatch.setattr(config_module, "_SETTINGS", logging_settings, raising=False)

    manager.configure(logging_settings)

    yield manager

    manager.reset()


@pytest.fixture
def memory_sink(logger_manager) -> InMemorySink:
    """The in-memory sink built during configuration."""

    sinks = [sink for sink in logger_manager.dispatcher.sinks if isinstance(sink, InMemorySink)]
    if not sinks:
        pytest.fail("Expected an InMemorySink to be registered during configuration")
    return sinks[0]


@pytest.fixture
def make_logger(logger_manager):
    return logger_manager.get_logger
