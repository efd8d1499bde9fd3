"""Batch accumulator — lock-protected pending buffer with size and age thresholds."""

import enum
import threading
import time
import logging

from telemetry_shipper.models import LogRecord

logger = logging.getLogger(__name__)


class FlushDecision(enum.Enum):
    NO_FLUSH = "no_flush"
    FLUSH_NOW = "flush_now"
    FLUSH_STALE = "flush_stale"


class BatchAccumulator:
    """Collects records until the batch is full or too old, then hands it off.

    Every detach swaps the internal list for a fresh one while the lock is
    held, so a record is either in the returned batch or in the new buffer,
    never both.
    """

    def __init__(self, batch_size: int = 100, batch_timeout: float = 30.0, clock=time.monotonic):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._batch_size = batch_size
        self._batch_timeout = batch_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._buffer: list[LogRecord] = []
        self._last_flush = clock()

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def batch_timeout(self) -> float:
        return self._batch_timeout

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def last_flush(self) -> float:
        with self._lock:
            return self._last_flush

    def pending(self) -> list[LogRecord]:
        """Return a copy of the pending records in insertion order."""
        with self._lock:
            return list(self._buffer)

    def append(self, record: LogRecord) -> tuple[FlushDecision, list[LogRecord] | None]:
        """Add a record and report whether the buffer was detached.

        Returns ``(decision, batch)`` where *batch* is the detached list for
        FLUSH_NOW / FLUSH_STALE and None for NO_FLUSH.
        """
        with self._lock:
            self._buffer.append(record)
            if len(self._buffer) >= self._batch_size:
                return FlushDecision.FLUSH_NOW, self._detach_locked()
            if self._clock() - self._last_flush >= self._batch_timeout:
                return FlushDecision.FLUSH_STALE, self._detach_locked()
            return FlushDecision.NO_FLUSH, None

    def check_stale(self) -> list[LogRecord] | None:
        """Detach the buffer if it is non-empty and older than the timeout."""
        with self._lock:
            if self._buffer and self._clock() - self._last_flush >= self._batch_timeout:
                return self._detach_locked()
            return None

    def detach(self) -> list[LogRecord]:
        """Detach whatever is pending, even below the thresholds."""
        with self._lock:
            return self._detach_locked()

    def _detach_locked(self) -> list[LogRecord]:
        """Swap the buffer for an empty one. Must be called with self._lock held."""
        batch = self._buffer
        self._buffer = []
        self._last_flush = self._clock()
        if batch:
            logger.debug("Detached batch of %d records", len(batch))
        return batch
