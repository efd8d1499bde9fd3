"""Log record model and the record builder."""

import datetime
import enum
import getpass
import logging
import math
import os
import socket
import threading
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from telemetry_shipper.errors import InvalidArgument, UnsupportedPropertyType

DEFAULT_COMPONENT = "telemetry-shipper"

TRACE = logging.DEBUG - 5
SUCCESS = logging.INFO + 5

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(SUCCESS, "SUCCESS")


class Level(enum.Enum):
    TRACE = "Trace"
    DEBUG = "Debug"
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"
    CRITICAL = "Critical"
    SUCCESS = "Success"

    @classmethod
    def parse(cls, value) -> "Level":
        """Accept a Level or a case-insensitive level name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
        raise InvalidArgument(f"Unknown log level: {value!r}")

    @property
    def logging_level(self) -> int:
        return _LOGGING_LEVELS[self]


_LOGGING_LEVELS = {
    Level.TRACE: TRACE,
    Level.DEBUG: logging.DEBUG,
    Level.INFO: logging.INFO,
    Level.WARNING: logging.WARNING,
    Level.ERROR: logging.ERROR,
    Level.CRITICAL: logging.CRITICAL,
    Level.SUCCESS: SUCCESS,
}

# Column names used by the ingestion endpoint for built-in fields.
BUILTIN_COLUMNS = (
    "TimeGenerated",
    "Level",
    "Message",
    "Component",
    "Computer",
    "User",
    "ProcessId",
    "ThreadId",
    "OperationId",
    "CorrelationId",
    "EventName",
    "DurationMs",
)

METRIC_PREFIX = "Metric_"
PROPERTY_PREFIX = "Property_"


@dataclass(frozen=True)
class LogRecord:
    timestamp: str
    level: Level
    message: str
    component: str
    host: str
    user: str
    process_id: int
    thread_id: int
    operation_id: str
    correlation_id: Optional[str] = None
    event_name: Optional[str] = None
    duration_ms: Optional[float] = None
    properties: Mapping[str, Any] = field(default_factory=dict)
    metrics: Mapping[str, float] = field(default_factory=dict)


class _Clock:
    """Issues millisecond UTC stamps that never go backwards in this process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last: datetime.datetime | None = None

    def now(self) -> str:
        current = datetime.datetime.now(datetime.timezone.utc)
        current = current.replace(microsecond=(current.microsecond // 1000) * 1000)
        with self._lock:
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
        return current.strftime("%Y-%m-%dT%H:%M:%S.") + f"{current.microsecond // 1000:03d}Z"


_clock = _Clock()


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USERNAME", "unknown")


_HOST = socket.gethostname()
_USER = _current_user()


def _check_uuid(value: str, name: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        raise InvalidArgument(f"{name} is not a valid UUID: {value!r}") from None


def _column_for_property(key: str) -> str:
    if key in BUILTIN_COLUMNS or key.startswith(METRIC_PREFIX):
        return PROPERTY_PREFIX + key
    return key


def _check_properties(properties: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    checked = {}
    for key, value in (properties or {}).items():
        if not isinstance(value, (str, int, float, bool)):
            raise UnsupportedPropertyType(
                f"Property {key!r} has unsupported type {type(value).__name__}"
            )
        if isinstance(value, float) and not math.isfinite(value):
            raise InvalidArgument(f"Property {key!r} must be finite, got {value!r}")
        checked[str(key)] = value

    columns: dict[str, str] = {}
    for key in checked:
        column = _column_for_property(key)
        if column in columns:
            raise InvalidArgument(
                f"Properties {columns[column]!r} and {key!r} both map to column {column!r}"
            )
        columns[column] = key
    return MappingProxyType(checked)


def _check_metrics(metrics: Optional[Mapping[str, Any]]) -> Mapping[str, float]:
    checked = {}
    for key, value in (metrics or {}).items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidArgument(f"Metric {key!r} must be numeric, got {value!r}")
        if isinstance(value, float) and not math.isfinite(value):
            raise InvalidArgument(f"Metric {key!r} must be finite, got {value!r}")
        checked[str(key)] = float(value)
    return MappingProxyType(checked)


def build_record(
    message: str,
    level="Info",
    component: Optional[str] = None,
    *,
    correlation_id: Optional[str] = None,
    operation_id: Optional[str] = None,
    properties: Optional[Mapping[str, Any]] = None,
    metrics: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    event_name: Optional[str] = None,
    default_component: str = DEFAULT_COMPONENT,
) -> LogRecord:
    """Build an immutable LogRecord stamped with the current time and process context.

    Raises InvalidArgument for an empty message, unknown level, malformed ids,
    a negative or non-finite duration, a non-numeric or non-finite metric, or
    two properties that flatten to the same column, and UnsupportedPropertyType
    for property values that are not scalars.
    """
    if not isinstance(message, str) or not message.strip():
        raise InvalidArgument("Log message must be a non-empty string")

    parsed_level = Level.parse(level)

    if duration_ms is not None:
        if isinstance(duration_ms, bool) or not isinstance(duration_ms, (int, float)):
            raise InvalidArgument(f"duration_ms must be numeric, got {duration_ms!r}")
        if isinstance(duration_ms, float) and not math.isfinite(duration_ms):
            raise InvalidArgument(f"duration_ms must be finite, got {duration_ms!r}")
        if duration_ms < 0:
            raise InvalidArgument(f"duration_ms must be non-negative, got {duration_ms}")
        duration_ms = float(duration_ms)

    return LogRecord(
        timestamp=_clock.now(),
        level=parsed_level,
        message=message,
        component=component or default_component,
        host=_HOST,
        user=_USER,
        process_id=os.getpid(),
        thread_id=threading.get_ident(),
        operation_id=(
            _check_uuid(operation_id, "operation_id") if operation_id else str(uuid.uuid4())
        ),
        correlation_id=(
            _check_uuid(correlation_id, "correlation_id") if correlation_id else None
        ),
        event_name=event_name or None,
        duration_ms=duration_ms,
        properties=_check_properties(properties),
        metrics=_check_metrics(metrics),
    )


def record_to_dict(record: LogRecord) -> dict:
    """Flatten a LogRecord into the column layout the sink ingests.

    Properties land at the top level (prefixed with ``Property_`` when they
    collide with a built-in column or the metric prefix); metrics are always
    prefixed with ``Metric_``.
    """
    row = {
        "TimeGenerated": record.timestamp,
        "Level": record.level.value,
        "Message": record.message,
        "Component": record.component,
        "Computer": record.host,
        "User": record.user,
        "ProcessId": record.process_id,
        "ThreadId": record.thread_id,
        "OperationId": record.operation_id,
    }
    if record.correlation_id is not None:
        row["CorrelationId"] = record.correlation_id
    if record.event_name is not None:
        row["EventName"] = record.event_name
    if record.duration_ms is not None:
        row["DurationMs"] = record.duration_ms

    for key, value in record.properties.items():
        row[_column_for_property(key)] = value
    for key, value in record.metrics.items():
        row[METRIC_PREFIX + key] = value
    return row


def format_text(record: LogRecord) -> str:
    """Human-readable one-line rendering used for local log files."""
    line = f"[{record.timestamp}] [{record.level.value.upper()}] [{record.component}] {record.message}"
    if record.duration_ms is not None:
        line += f" ({record.duration_ms:.1f} ms)"
    return line
