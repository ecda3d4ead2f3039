"""Bounded buffer and background dispatcher for log records.

Request threads only append to the buffer. A single daemon worker drains it
in batches and fans records out to the sinks, so a slow sink never delays an
authentication response. When the buffer is full the oldest record is
dropped and counted.
"""

from __future__ import annotations

import collections
import sys
import threading
from typing import Callable, Deque, Iterable, List, Mapping, Optional, Protocol

from .metrics import record_drop, record_flush, record_sink_error, set_queue_depth

Record = Mapping[str, object]


class Sink(Protocol):
    def emit(self, record: Record) -> None:  # pragma: no cover - protocol
        ...


class RingBufferQueue:
    """Thread-safe FIFO that evicts its oldest entry when full."""

    def __init__(self, capacity: int, *, on_drop: Callable[[Record], None] | None = None) -> None:
        if capacity <= 0:
            raise ValueError("Queue capacity must be positive")

        self._capacity = capacity
        self._items: Deque[Record] = collections.deque()
        self._cond = threading.Condition(threading.Lock())
        self._dropped = 0
        self._on_drop = on_drop

    @property
    def dropped(self) -> int:
        with self._cond:
            return self._dropped

    def size(self) -> int:
        with self._cond:
            return len(self._items)

    def put(self, item: Record) -> Optional[Record]:
        """Append ``item``; returns the evicted record, if any."""

        evicted: Optional[Record] = None
        with self._cond:
            if len(self._items) >= self._capacity:
                evicted = self._items.popleft()
                self._dropped += 1
            self._items.append(item)
            self._cond.notify()

        if evicted is not None:
            record_drop(str(evicted.get("level", "INFO")))
            if self._on_drop is not None:
                self._on_drop(evicted)
        return evicted

    def drain(self, max_items: int) -> List[Record]:
        with self._cond:
            batch: List[Record] = []
            while self._items and len(batch) < max_items:
                batch.append(self._items.popleft())
            return batch

    def wait(self, timeout: float) -> bool:
        """Block until an item is available or ``timeout`` elapses."""

        with self._cond:
            if self._items:
                return True
            return self._cond.wait(timeout)


class Dispatcher:
    """Background worker that drains the buffer into the sinks."""

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
        self._batch_size = max(1, batch_size)
        self._flush_interval = max(0.01, flush_interval_ms / 1000.0)
        self._flush_timeout = flush_timeout_ms / 1000.0
        self._sinks_lock = threading.Lock()
        self._emit_lock = threading.Lock()  # sinks see records in submission order
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._worker, name="logging-dispatcher", daemon=True)
        self._thread.start()

    @property
    def sinks(self) -> List[Sink]:
        with self._sinks_lock:
            return list(self._sinks)

    def register_sink(self, sink: Sink) -> None:
        with self._sinks_lock:
            self._sinks.append(sink)

    def submit(self, record: Record) -> None:
        self._queue.put(record)

    def emit_immediate(self, record: Record) -> None:
        """Bypass the buffer; used for the drop notice itself."""

        with self._emit_lock:
            self._emit(record)

    def flush(self) -> None:
        """Synchronously drain whatever is buffered."""

        with self._emit_lock:
            while True:
                batch = self._queue.drain(self._batch_size)
                if not batch:
                    break
                self._emit_batch(batch)

    def stop(self) -> None:
        self._stop_event.set()
        self._thread.join(timeout=max(1.0, self._flush_timeout))
        self.flush()

    # --------------------- internal helpers ---------------------
    def _worker(self) -> None:
        while not self._stop_event.is_set():
            if not self._queue.wait(self._flush_interval):
                continue
            with self._emit_lock:
                batch = self._queue.drain(self._batch_size)
                if batch:
                    self._emit_batch(batch)

    def _emit_batch(self, batch: List[Record]) -> None:
        for record in batch:
            self._emit(record)
        record_flush(len(batch))
        set_queue_depth(self._queue.size())

    def _emit(self, record: Record) -> None:
        for sink in self.sinks:
            try:
                sink.emit(record)
            except Exception:  # noqa: BLE001
                # Logging must never take the service down; count and move on.
                record_sink_error()
                print("logging_lib dispatcher failed to emit record", file=sys.stderr)
