"""HTTP transport — signed POST of a batch with fixed-delay retry."""

import time
import logging
from dataclasses import dataclass

import httpx

from telemetry_shipper.config import SinkConfig
from telemetry_shipper.errors import TransportError
from telemetry_shipper.models import LogRecord
from telemetry_shipper.serializer import serialize_batch
from telemetry_shipper.signer import rfc1123_date, sign

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/json"
TIME_GENERATED_FIELD = "TimeGenerated"


@dataclass(frozen=True)
class Ack:
    status_code: int
    attempts: int
    record_count: int
    elapsed_ms: float


class HTTPTransport:
    """Posts batches to the ingestion endpoint.

    Attempts run strictly one after another. Each failed attempt (network
    error, timeout or non-2xx status) is followed by ``retry_delay`` seconds
    of sleep; after ``retry_count`` attempts a TransportError is raised.
    """

    def __init__(self, config: SinkConfig, client: httpx.Client | None = None, sleep=time.sleep):
        self._config = config
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=config.timeout)
        self._sleep = sleep

    def _headers(self, body: bytes) -> dict:
        date = rfc1123_date()
        return {
            "Content-Type": CONTENT_TYPE,
            "Authorization": sign(
                "POST",
                len(body),
                CONTENT_TYPE,
                date,
                self._config.resource,
                self._config.workspace_id,
                self._config.shared_key,
            ),
            "Log-Type": self._config.log_type,
            "x-ms-date": date,
            "time-generated-field": TIME_GENERATED_FIELD,
        }

    def send(self, batch: list[LogRecord]) -> Ack:
        """Deliver *batch* and return an Ack, or raise TransportError."""
        body = serialize_batch(batch)
        retry_count = max(1, self._config.retry_count)
        start = time.monotonic()
        last_error: Exception | None = None
        last_status: int | None = None

        for attempt in range(1, retry_count + 1):
            try:
                response = self._client.post(
                    self._config.url,
                    content=body,
                    headers=self._headers(body),
                    timeout=self._config.timeout,
                )
            except httpx.HTTPError as exc:
                last_error, last_status = exc, None
                logger.warning(
                    "Send failed (attempt %d/%d): %s", attempt, retry_count, exc
                )
            else:
                if response.is_success:
                    elapsed_ms = (time.monotonic() - start) * 1000
                    logger.debug(
                        "Sent %d records in %d attempt(s), HTTP %d",
                        len(batch),
                        attempt,
                        response.status_code,
                    )
                    return Ack(
                        status_code=response.status_code,
                        attempts=attempt,
                        record_count=len(batch),
                        elapsed_ms=elapsed_ms,
                    )
                last_error, last_status = None, response.status_code
                logger.warning(
                    "Sink returned HTTP %d (attempt %d/%d)",
                    response.status_code,
                    attempt,
                    retry_count,
                )

            self._sleep(self._config.retry_delay)

        detail = f"HTTP {last_status}" if last_status is not None else str(last_error)
        logger.error("Send failed after %d attempts: %s", retry_count, detail)
        raise TransportError(
            f"Batch of {len(batch)} records not delivered after {retry_count} attempts: {detail}",
            attempts=retry_count,
            last_error=last_error,
            status_code=last_status,
        )

    def close(self):
        """Close the underlying HTTP client if this transport created it."""
        if self._owns_client:
            self._client.close()
