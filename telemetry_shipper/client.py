"""Telemetry client — wires the accumulator, sender worker, spool and metrics together."""

import atexit
import contextlib
import enum
import queue
import threading
import time
import uuid
import logging
from dataclasses import dataclass, field

from telemetry_shipper.accumulator import BatchAccumulator, FlushDecision
from telemetry_shipper.config import SinkConfig
from telemetry_shipper.errors import TelemetryError, TransportError
from telemetry_shipper.metrics import ShippingMetrics
from telemetry_shipper.models import LogRecord, build_record
from telemetry_shipper.spool import DeadLetterSpool, LocalLogWriter
from telemetry_shipper.transport import HTTPTransport

logger = logging.getLogger(__name__)
record_logger = logging.getLogger("telemetry_shipper.records")


class SchedulerState(enum.Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


@dataclass
class _Job:
    batch: list
    trigger: str
    done: threading.Event = field(default_factory=threading.Event)
    delivered: bool = False


_STOP = object()


class TelemetryClient:
    """Batches log records and ships them to the sink from one background sender.

    Logging calls only build a record and append it under the accumulator's
    lock. Detached batches go through a FIFO queue to a single sender thread,
    so at most one HTTP send is in flight and batches arrive in order. A timer
    thread detaches stale batches, and ``close()`` (registered with atexit)
    performs the final drain.

    Only record-building errors (InvalidArgument, UnsupportedPropertyType)
    reach the caller; every other failure is logged and swallowed.
    """

    def __init__(
        self,
        config: SinkConfig,
        transport=None,
        spool: DeadLetterSpool | None = None,
        local_writer: LocalLogWriter | None = None,
        register_atexit: bool = True,
        clock=time.monotonic,
        timer_interval: float | None = None,
    ):
        self._config = config.validate()
        self._transport = transport if transport is not None else HTTPTransport(config)
        if spool is None and config.spool_dir:
            spool = DeadLetterSpool(config.spool_dir)
        self._spool = spool
        if local_writer is None and config.log_dir:
            local_writer = LocalLogWriter(config.log_dir)
        self._local_writer = local_writer

        self._metrics = ShippingMetrics()
        self._accumulator = BatchAccumulator(config.batch_size, config.batch_timeout, clock)
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        # Held while accepting a record or batch; close() takes it to flip _closed.
        self._accept_lock = threading.Lock()
        self._outstanding = 0
        self._current_job: _Job | None = None
        self._closed = False
        self._stop_event = threading.Event()

        if timer_interval is None:
            timer_interval = min(1.0, config.batch_timeout)
        self._timer_interval = timer_interval

        self._sender = threading.Thread(
            target=self._sender_loop, name="telemetry-sender", daemon=True
        )
        self._timer = threading.Thread(
            target=self._flush_timer, name="telemetry-flush-timer", daemon=True
        )
        self._sender.start()
        self._timer.start()

        self._atexit_registered = register_atexit
        if register_atexit:
            atexit.register(self.close)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> SinkConfig:
        return self._config

    @property
    def metrics(self) -> ShippingMetrics:
        return self._metrics

    @property
    def pending_count(self) -> int:
        return self._accumulator.pending_count

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            if self._outstanding:
                return SchedulerState.FLUSHING
        if self._accumulator.pending_count:
            return SchedulerState.ACCUMULATING
        return SchedulerState.IDLE

    # ------------------------------------------------------------------
    # Logging API
    # ------------------------------------------------------------------

    def log(self, message: str, level="Info", component: str | None = None, **options) -> LogRecord:
        """Build a record and queue it for batched delivery.

        Keyword options are passed to ``build_record`` (correlation_id,
        operation_id, properties, metrics, duration_ms, event_name).
        """
        record = build_record(
            message,
            level,
            component,
            default_component=self._config.default_component,
            **options,
        )
        self._submit(record)
        return record

    def trace(self, message: str, component: str | None = None, **options) -> LogRecord:
        return self.log(message, "Trace", component, **options)

    def debug(self, message: str, component: str | None = None, **options) -> LogRecord:
        return self.log(message, "Debug", component, **options)

    def info(self, message: str, component: str | None = None, **options) -> LogRecord:
        return self.log(message, "Info", component, **options)

    def warning(self, message: str, component: str | None = None, **options) -> LogRecord:
        return self.log(message, "Warning", component, **options)

    def error(self, message: str, component: str | None = None, **options) -> LogRecord:
        return self.log(message, "Error", component, **options)

    def critical(self, message: str, component: str | None = None, **options) -> LogRecord:
        return self.log(message, "Critical", component, **options)

    def success(self, message: str, component: str | None = None, **options) -> LogRecord:
        return self.log(message, "Success", component, **options)

    def log_event(self, event_name: str, message: str | None = None, level="Info", **options) -> LogRecord:
        """Log a named event; the message defaults to the event name."""
        return self.log(message or f"Event: {event_name}", level, event_name=event_name, **options)

    def log_metric(self, name: str, value: float, component: str | None = None, **options) -> LogRecord:
        """Log a single numeric metric as its own record."""
        metrics = dict(options.pop("metrics", None) or {})
        metrics[name] = value
        return self.log(f"Metric {name} = {value}", "Info", component, metrics=metrics, **options)

    @contextlib.contextmanager
    def track_operation(
        self,
        name: str,
        component: str | None = None,
        correlation_id: str | None = None,
        properties: dict | None = None,
    ):
        """Log start and end of a block with its duration under one operation id.

        Yields the operation id. Exceptions from the block are logged at
        Error level and re-raised.
        """
        operation_id = str(uuid.uuid4())
        common = {
            "operation_id": operation_id,
            "correlation_id": correlation_id,
            "properties": properties,
        }
        self.log(f"Operation '{name}' started", "Info", component, event_name=f"{name}.Started", **common)
        start = time.perf_counter()
        try:
            yield operation_id
        except Exception as exc:
            self.log(
                f"Operation '{name}' failed: {exc}",
                "Error",
                component,
                event_name=f"{name}.Failed",
                duration_ms=(time.perf_counter() - start) * 1000,
                **common,
            )
            raise
        self.log(
            f"Operation '{name}' completed",
            "Success",
            component,
            event_name=f"{name}.Completed",
            duration_ms=(time.perf_counter() - start) * 1000,
            **common,
        )

    def send_now(self, message: str, level="Info", component: str | None = None, timeout: float | None = None, **options) -> bool:
        """Ship one record immediately and wait for the outcome.

        The record goes through the sender queue, so it is delivered after any
        batch already handed off. Returns True if the sink accepted it.
        """
        record = build_record(
            message,
            level,
            component,
            default_component=self._config.default_component,
            **options,
        )
        try:
            self._metrics.record_logged()
            self._echo(record)
            with self._accept_lock:
                job = None if self._closed else self._enqueue([record], "sync")
            if job is None:
                self._spool_batch([record], "client closed")
                return False
            if not job.done.wait(timeout):
                logger.warning("Synchronous send did not complete within %ss", timeout)
                return False
            return job.delivered
        except Exception:
            logger.exception("Telemetry pipeline failed during synchronous send")
            return False

    # ------------------------------------------------------------------
    # Flush / shutdown
    # ------------------------------------------------------------------

    def flush(self, timeout: float | None = None) -> bool:
        """Hand off pending records and wait until every queued batch was attempted.

        Returns False if *timeout* elapsed first or the client is closed.
        """
        with self._accept_lock:
            if self._closed:
                return False
            barrier = self._detach_pending()
        return barrier.done.wait(timeout)

    def close(self, timeout: float | None = None):
        """Stop the timer, drain pending records and stop the sender. Idempotent.

        Batches that could not be attempted within *timeout* (default
        ``shutdown_timeout``) are written to the spool.
        """
        with self._accept_lock:
            if self._closed:
                return
            self._closed = True
            barrier = self._detach_pending()

        if timeout is None:
            timeout = self._config.shutdown_timeout

        self._stop_event.set()
        drained = barrier.done.wait(timeout)
        self._timer.join(timeout=timeout)

        if drained:
            self._queue.put(_STOP)
            self._sender.join(timeout=timeout)
            try:
                self._transport.close()
            except Exception as exc:
                logger.warning("Error closing transport: %s", exc)
        else:
            leftover = self._discard_queued("shutdown timeout")
            logger.warning(
                "Final drain did not finish within %.1fs; %d in-flight or queued records not sent",
                timeout,
                leftover,
            )

        if self._atexit_registered:
            atexit.unregister(self.close)
        logger.info("Telemetry client closed: %s", self._metrics.snapshot())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _submit(self, record: LogRecord):
        try:
            self._metrics.record_logged()
            self._echo(record)
            with self._accept_lock:
                closed = self._closed
                if not closed:
                    decision, batch = self._accumulator.append(record)
                    if decision is FlushDecision.FLUSH_NOW:
                        self._enqueue(batch, "size")
                    elif decision is FlushDecision.FLUSH_STALE:
                        self._enqueue(batch, "stale")
            if closed:
                self._spool_batch([record], "client closed")
        except Exception:
            logger.exception("Telemetry pipeline failed to accept record")

    def _echo(self, record: LogRecord):
        record_logger.log(
            record.level.logging_level,
            "[%s] %s",
            record.component,
            record.message,
        )
        if self._local_writer is not None:
            self._local_writer.write(record)

    def _detach_pending(self) -> _Job:
        """Queue whatever is pending behind earlier batches; the job doubles as a barrier."""
        return self._enqueue(self._accumulator.detach(), "manual")

    def _enqueue(self, batch: list, trigger: str) -> _Job:
        """Queue a batch for the sender. An empty batch acts as a barrier."""
        job = _Job(batch=batch, trigger=trigger)
        if batch:
            with self._lock:
                self._outstanding += 1
            self._metrics.record_flush(trigger)
        self._queue.put(job)
        return job

    def _sender_loop(self):
        """Deliver queued batches one at a time until the stop marker arrives."""
        while True:
            job = self._queue.get()
            if job is _STOP:
                return
            with self._lock:
                self._current_job = job
            try:
                if job.batch:
                    job.delivered = self._deliver(job.batch, job.trigger)
            except Exception:
                logger.exception("Unexpected error in telemetry sender")
            finally:
                with self._lock:
                    self._current_job = None
                    if job.batch:
                        self._outstanding -= 1
                job.done.set()

    def _deliver(self, batch: list[LogRecord], trigger: str) -> bool:
        try:
            ack = self._transport.send(batch)
        except TelemetryError as exc:
            attempts = exc.attempts if isinstance(exc, TransportError) else 0
            self._metrics.record_failed(len(batch), attempts)
            logger.error(
                "Dropping batch of %d records (%s flush): %s", len(batch), trigger, exc
            )
            self._spool_batch(batch, str(exc))
            return False

        self._metrics.record_sent(ack.record_count, ack.attempts, ack.elapsed_ms)
        logger.info(
            "Sent batch of %d records (%s flush, %d attempt(s), %.1f ms)",
            ack.record_count,
            trigger,
            ack.attempts,
            ack.elapsed_ms,
        )
        return True

    def _spool_batch(self, batch: list[LogRecord], reason: str):
        if self._spool is None:
            logger.warning("No spool configured; %d records lost (%s)", len(batch), reason)
            return
        if self._spool.write(batch, reason):
            self._metrics.record_spooled(len(batch))

    def _discard_queued(self, reason: str) -> int:
        """Spool the batch still being sent and every job queued behind it.

        The in-flight batch is spooled even though its send may still
        complete, so the spool can hold a record the sink also accepted.
        """
        queued = []
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                break
            queued.append(job)
        with self._lock:
            in_flight = self._current_job

        count = 0
        if in_flight is not None and in_flight.batch and not in_flight.done.is_set():
            count += len(in_flight.batch)
            self._spool_batch(in_flight.batch, reason)
        for job in queued:
            if job.batch:
                count += len(job.batch)
                self._metrics.record_failed(len(job.batch), 0)
                self._spool_batch(job.batch, reason)
                with self._lock:
                    self._outstanding -= 1
            job.done.set()
        # The sender may still be mid-send; let it exit once that finishes.
        self._queue.put(_STOP)
        return count

    def _flush_timer(self):
        """Background thread that detaches batches older than batch_timeout."""
        while not self._stop_event.wait(timeout=self._timer_interval):
            with self._accept_lock:
                if self._closed:
                    return
                batch = self._accumulator.check_stale()
                if batch:
                    self._enqueue(batch, "stale")
