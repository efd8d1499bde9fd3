"""Shipping metrics — thread-safe counters and a rolling window of send times."""

import collections
import math
import threading
import time
import logging

logger = logging.getLogger(__name__)

FLUSH_TRIGGERS = ("size", "stale", "manual", "sync")

# Send times kept for the average and p95; older samples fall off.
SEND_TIME_WINDOW = 1000


class ShippingMetrics:
    """Collects and reports metrics about telemetry shipping."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records_logged: int = 0
        self._batches_sent: int = 0
        self._records_sent: int = 0
        self._batches_failed: int = 0
        self._records_dropped: int = 0
        self._records_spooled: int = 0
        self._send_attempts: int = 0
        self._send_times: collections.deque = collections.deque(maxlen=SEND_TIME_WINDOW)
        self._flush_triggers: dict = {trigger: 0 for trigger in FLUSH_TRIGGERS}
        self._start_time = time.monotonic()

    def record_logged(self) -> None:
        with self._lock:
            self._records_logged += 1

    def record_flush(self, trigger: str) -> None:
        with self._lock:
            self._flush_triggers[trigger] = self._flush_triggers.get(trigger, 0) + 1

    def record_sent(self, record_count: int, attempts: int, send_time_ms: float) -> None:
        """Record a batch the sink accepted.

        Args:
            record_count: Number of records in the batch.
            attempts: HTTP attempts it took, including the successful one.
            send_time_ms: Wall time spent in the transport, in milliseconds.
        """
        with self._lock:
            self._batches_sent += 1
            self._records_sent += record_count
            self._send_attempts += attempts
            self._send_times.append(send_time_ms)

    def record_failed(self, record_count: int, attempts: int) -> None:
        """Record a batch that was dropped after every attempt failed."""
        with self._lock:
            self._batches_failed += 1
            self._records_dropped += record_count
            self._send_attempts += attempts

    def record_spooled(self, record_count: int) -> None:
        with self._lock:
            self._records_spooled += record_count

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all collected metrics."""
        with self._lock:
            send_times = list(self._send_times)
            avg_send = sum(send_times) / len(send_times) if send_times else 0.0

            return {
                "records_logged": self._records_logged,
                "batches_sent": self._batches_sent,
                "records_sent": self._records_sent,
                "batches_failed": self._batches_failed,
                "records_dropped": self._records_dropped,
                "records_spooled": self._records_spooled,
                "send_attempts": self._send_attempts,
                "avg_send_time_ms": avg_send,
                "p95_send_time_ms": self._percentile(send_times, 95),
                "flush_triggers": dict(self._flush_triggers),
                "uptime_seconds": time.monotonic() - self._start_time,
            }

    @staticmethod
    def _percentile(samples, pct: float) -> float:
        """Linearly interpolated percentile (0-100) of *samples*; 0.0 when empty."""
        if not samples:
            return 0.0
        ordered = sorted(samples)
        rank = (len(ordered) - 1) * pct / 100
        low = math.floor(rank)
        high = min(low + 1, len(ordered) - 1)
        weight = rank - low
        return float(ordered[low] * (1 - weight) + ordered[high] * weight)
