"""Tests for the sample-shipping entry point."""

import threading

import main
from conftest import FakeSink, make_config
from telemetry_shipper.client import TelemetryClient


def test_invalid_config_exits_with_error(monkeypatch):
    monkeypatch.delenv("TELEMETRY_WORKSPACE_ID", raising=False)
    monkeypatch.delenv("TELEMETRY_SHARED_KEY", raising=False)
    monkeypatch.delenv("TELEMETRY_CONFIG", raising=False)
    assert main.main(["--count", "1"]) == 2


def test_parse_args():
    args = main.parse_args(["--count", "7", "--rate", "0", "--batch-size", "3"])
    assert args.count == 7
    assert args.rate == 0
    assert args.batch_size == 3


def test_emit_samples(make_transport):
    sink = FakeSink()
    config = make_config(batch_size=4)
    client = TelemetryClient(config, transport=make_transport(config, sink), register_atexit=False)

    main.emit_samples(client, count=10, rate=0, component="Sample", shutdown=threading.Event())
    client.close()

    rows = [row for batch in sink.batches for row in batch]
    assert len(rows) == 10
    assert [row["sequence"] for row in rows] == list(range(10))
    assert all(row["Component"] == "Sample" for row in rows)


def test_emit_samples_stops_on_shutdown(make_transport):
    sink = FakeSink()
    config = make_config()
    client = TelemetryClient(config, transport=make_transport(config, sink), register_atexit=False)
    shutdown = threading.Event()
    shutdown.set()

    main.emit_samples(client, count=10, rate=0, component=None, shutdown=shutdown)

    assert client.pending_count == 0
    client.close()
