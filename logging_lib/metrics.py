"""In-process counters for the logging runtime."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class RuntimeMetrics:
    dropped_total: int = 0
    dropped_levels: Dict[str, int] = field(default_factory=dict)
    flush_total: int = 0
    sink_errors: int = 0
    queue_depth: int = 0
    redacted_total: int = 0
    payload_truncations: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, object]:
        return {
            "dropped_total": self.dropped_total,
            "dropped_levels": dict(self.dropped_levels),
            "flush_total": self.flush_total,
            "sink_errors": self.sink_errors,
            "queue_depth": self.queue_depth,
            "redacted_total": self.redacted_total,
            "payload_truncations": dict(self.payload_truncations),
        }


_LOCK = threading.RLock()
_METRICS = RuntimeMetrics()


def record_drop(level: str) -> None:
    with _LOCK:
        _METRICS.dropped_total += 1
        _METRICS.dropped_levels[level] = _METRICS.dropped_levels.get(level, 0) + 1


def record_flush(batch_size: int) -> None:
    with _LOCK:
        _METRICS.flush_total += batch_size


def record_sink_error() -> None:
    with _LOCK:
        _METRICS.sink_errors += 1


def set_queue_depth(depth: int) -> None:
    with _LOCK:
        _METRICS.queue_depth = depth


def record_redaction(count: int) -> None:
    if count <= 0:
        return
    with _LOCK:
        _METRICS.redacted_total += count


def record_payload_truncation(kind: str) -> None:
    with _LOCK:
        _METRICS.payload_truncations[kind] = _METRICS.payload_truncations.get(kind, 0) + 1


def reset_metrics() -> None:
    global _METRICS
    with _LOCK:
        _METRICS = RuntimeMetrics()


def get_metrics() -> RuntimeMetrics:
    """Return a snapshot; later updates do not affect it."""

    with _LOCK:
        return RuntimeMetrics(
            dropped_total=_METRICS.dropped_total,
            dropped_levels=dict(_METRICS.dropped_levels),
            flush_total=_METRICS.flush_total,
            sink_errors=_METRICS.sink_errors,
            queue_depth=_METRICS.queue_depth,
            redacted_total=_METRICS.redacted_total,
            payload_truncations=dict(_METRICS.payload_truncations),
        )
