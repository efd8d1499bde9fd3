import base64
import json
import threading
import time

import httpx
import pytest

from telemetry_shipper.config import SinkConfig
from telemetry_shipper.transport import HTTPTransport

SHARED_KEY = base64.b64encode(b"unit-test-shared-key-0123456789").decode("ascii")


class FakeSink:
    """In-process ingestion endpoint backed by httpx.MockTransport.

    *outcomes* is consumed one per request: an int is returned as the HTTP
    status, an exception class is raised. Once exhausted every request gets 200.
    """

    def __init__(self, outcomes=None):
        self.requests: list[httpx.Request] = []
        self._outcomes = list(outcomes or [])
        self._lock = threading.Lock()

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            outcome = self._outcomes.pop(0) if self._outcomes else 200
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("simulated failure", request=request)
        return httpx.Response(outcome)

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.requests)

    @property
    def batches(self) -> list[list[dict]]:
        with self._lock:
            return [json.loads(r.content) for r in self.requests]

    def wait_for_calls(self, expected: int, timeout: float = 3.0) -> bool:
        """Poll until *expected* requests arrived or timeout."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.call_count >= expected:
                return True
            time.sleep(0.01)
        return self.call_count >= expected


def make_config(**overrides) -> SinkConfig:
    """Build a SinkConfig aimed at the fake sink."""
    defaults = {
        "workspace_id": "ws-0001",
        "shared_key": SHARED_KEY,
        "log_type": "UnitTestLogs",
        "batch_size": 100,
        "batch_timeout": 60.0,
        "retry_count": 3,
        "retry_delay": 0.0,
        "timeout": 5.0,
        "shutdown_timeout": 5.0,
    }
    defaults.update(overrides)
    return SinkConfig(**defaults)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def make_transport():
    """Factory: make_transport(config, sink, sleep=None) -> HTTPTransport."""
    created = []

    def _make(config, fake_sink, sleep=None):
        client = httpx.Client(transport=httpx.MockTransport(fake_sink.handler))
        transport = HTTPTransport(
            config, client=client, sleep=sleep if sleep is not None else (lambda _s: None)
        )
        created.append(client)
        return transport

    yield _make
    for client in created:
        client.close()
