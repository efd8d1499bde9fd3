"""Entry point — ships sample telemetry records to the configured sink."""

import logging
import random
import signal
import sys
import threading
import time

from telemetry_shipper.client import TelemetryClient
from telemetry_shipper.config import build_arg_parser, config_from_args
from telemetry_shipper.errors import ConfigError

SAMPLE_LEVELS = ["Debug", "Info", "Info", "Info", "Success", "Warning", "Error"]
SAMPLE_MESSAGES = [
    "Windows feature installed",
    "Application package downloaded",
    "Installer exited with code 0",
    "Oracle connectivity check passed",
    "Scheduled cleanup task registered",
    "Prerequisite validation completed",
    "Blob download retried",
    "Disk usage above threshold",
    "Service restarted",
]


def parse_args(argv=None):
    parser = build_arg_parser()
    parser.add_argument("--count", type=int, default=20, help="records to emit")
    parser.add_argument("--rate", type=float, default=5.0, help="records per second")
    parser.add_argument("--component", type=str, default=None)
    parser.add_argument("--verbose", action="store_true", default=False)
    return parser.parse_args(argv)


def emit_samples(client: TelemetryClient, count: int, rate: float, component, shutdown: threading.Event):
    """Emit *count* random records at roughly *rate* per second."""
    interval = 1.0 / rate if rate > 0 else 0.0
    for i in range(count):
        if shutdown.is_set():
            break
        client.log(
            random.choice(SAMPLE_MESSAGES),
            random.choice(SAMPLE_LEVELS),
            component,
            properties={"sequence": i},
            metrics={"elapsed_ms": round(random.uniform(1.0, 250.0), 2)},
        )
        if interval:
            shutdown.wait(timeout=interval)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger(__name__)

    try:
        config = config_from_args(args).validate()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    shutdown_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    client = TelemetryClient(config)
    logger.info(
        "Shipping %d records to %s (log_type=%s, batch_size=%d, batch_timeout=%.1fs)",
        args.count,
        config.url,
        config.log_type,
        config.batch_size,
        config.batch_timeout,
    )

    start = time.monotonic()
    try:
        with client.track_operation("SampleRun", args.component):
            emit_samples(client, args.count, args.rate, args.component, shutdown_event)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        client.close()

    logger.info("Finished in %.1fs: %s", time.monotonic() - start, client.metrics.snapshot())
    return 0


if __name__ == "__main__":
    sys.exit(main())
