"""Local files — dead-letter spool for undeliverable batches and local log echo."""

import json
import os
import threading
import logging

from telemetry_shipper.models import LogRecord, format_text, record_to_dict

logger = logging.getLogger(__name__)


def _rotate(path: str, keep: int):
    """Shift rotated files (.1 -> .2, ... up to .keep), then rename *path* to .1."""
    for i in range(keep, 1, -1):
        src = f"{path}.{i - 1}"
        dst = f"{path}.{i}"
        if os.path.exists(src):
            os.replace(src, dst)

    if os.path.exists(path):
        os.replace(path, f"{path}.1")

    logger.info("Rotated %s", path)


class DeadLetterSpool:
    """Appends dropped batches to a JSON-lines file, one batch per line.

    Each line is ``{"reason": ..., "records": [...]}`` with records in the
    same flattened layout that is posted to the sink.
    """

    def __init__(
        self,
        directory: str,
        filename: str = "telemetry-deadletter.jsonl",
        max_bytes: int = 10 * 1024 * 1024,
        keep: int = 5,
    ):
        self._path = os.path.join(directory, filename)
        self._max_bytes = max_bytes
        self._keep = keep
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    def write(self, batch: list[LogRecord], reason: str) -> bool:
        """Spool *batch*. Returns False (after logging a warning) on I/O failure."""
        if not batch:
            return True
        line = json.dumps(
            {"reason": reason, "records": [record_to_dict(r) for r in batch]},
            ensure_ascii=False,
        )
        with self._lock:
            try:
                os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
                if (
                    os.path.exists(self._path)
                    and os.path.getsize(self._path) >= self._max_bytes
                ):
                    _rotate(self._path, self._keep)
                with open(self._path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as exc:
                logger.warning(
                    "Could not spool %d records to %s: %s", len(batch), self._path, exc
                )
                return False

        logger.info("Spooled %d undelivered records to %s", len(batch), self._path)
        return True


def read_spool(path: str) -> list[dict]:
    """Return every spooled batch entry in *path*, skipping corrupt lines."""
    entries = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt spool line in %s", path)
    except FileNotFoundError:
        return []
    return entries


class LocalLogWriter:
    """Writes each record to a human-readable log and a structured JSON-lines log."""

    def __init__(
        self,
        directory: str,
        text_name: str = "telemetry.log",
        json_name: str = "telemetry.jsonl",
    ):
        self._text_path = os.path.join(directory, text_name)
        self._json_path = os.path.join(directory, json_name)
        self._lock = threading.Lock()
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            logger.warning("Could not create log directory %s: %s", directory, exc)

    @property
    def text_path(self) -> str:
        return self._text_path

    @property
    def json_path(self) -> str:
        return self._json_path

    def write(self, record: LogRecord):
        text = format_text(record)
        structured = json.dumps(record_to_dict(record), ensure_ascii=False)
        with self._lock:
            for path, line in ((self._text_path, text), (self._json_path, structured)):
                try:
                    with open(path, "a", encoding="utf-8") as f:
                        f.write(line + "\n")
                except OSError as exc:
                    logger.warning("Could not write local log %s: %s", path, exc)
