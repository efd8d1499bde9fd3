"""Configuration module — frozen dataclass loaded from YAML, env vars and CLI args."""

import argparse
import logging
import os
import re
from dataclasses import dataclass, fields

import yaml

from telemetry_shipper.errors import ConfigError

logger = logging.getLogger(__name__)

_LOG_TYPE_RE = re.compile(r"^[A-Za-z0-9_]{1,100}$")


@dataclass(frozen=True)
class SinkConfig:
    workspace_id: str = ""
    shared_key: str = ""
    log_type: str = "ServerOperations"
    resource: str = "/api/logs"
    api_version: str = "2016-04-01"
    ingestion_domain: str = "ods.opinsights.azure.com"
    endpoint_override: str = ""
    batch_size: int = 100
    batch_timeout: float = 30.0
    retry_count: int = 3
    retry_delay: float = 5.0
    timeout: float = 30.0
    shutdown_timeout: float = 5.0
    default_component: str = "telemetry-shipper"
    spool_dir: str = ""
    log_dir: str = ""

    @property
    def url(self) -> str:
        base = self.endpoint_override.rstrip("/") or (
            f"https://{self.workspace_id}.{self.ingestion_domain}"
        )
        return f"{base}{self.resource}?api-version={self.api_version}"

    def validate(self) -> "SinkConfig":
        """Raise ConfigError on the first invalid value; return self otherwise."""
        if not self.workspace_id:
            raise ConfigError("workspace_id is required")
        if not self.shared_key:
            raise ConfigError("shared_key is required")
        if not _LOG_TYPE_RE.match(self.log_type):
            raise ConfigError(
                f"log_type must be 1-100 letters, digits or underscores: {self.log_type!r}"
            )
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.batch_timeout <= 0:
            raise ConfigError(f"batch_timeout must be positive, got {self.batch_timeout}")
        if self.retry_count < 1:
            raise ConfigError(f"retry_count must be at least 1, got {self.retry_count}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry_delay must not be negative, got {self.retry_delay}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        return self


# field name -> environment variable
ENV_VARS = {
    "workspace_id": "TELEMETRY_WORKSPACE_ID",
    "shared_key": "TELEMETRY_SHARED_KEY",
    "log_type": "TELEMETRY_LOG_TYPE",
    "ingestion_domain": "TELEMETRY_INGESTION_DOMAIN",
    "endpoint_override": "TELEMETRY_ENDPOINT",
    "batch_size": "TELEMETRY_BATCH_SIZE",
    "batch_timeout": "TELEMETRY_BATCH_TIMEOUT",
    "retry_count": "TELEMETRY_RETRY_COUNT",
    "retry_delay": "TELEMETRY_RETRY_DELAY",
    "timeout": "TELEMETRY_TIMEOUT",
    "shutdown_timeout": "TELEMETRY_SHUTDOWN_TIMEOUT",
    "default_component": "TELEMETRY_COMPONENT",
    "spool_dir": "TELEMETRY_SPOOL_DIR",
    "log_dir": "TELEMETRY_LOG_DIR",
}

_FIELD_TYPES = {f.name: f.type for f in fields(SinkConfig)}


def _coerce(name: str, value):
    kind = _FIELD_TYPES[name]
    try:
        if kind in (int, "int"):
            return int(value)
        if kind in (float, "float"):
            return float(value)
        return str(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {name}: {value!r}") from None


def load_yaml(path: str) -> dict:
    """Load the ``telemetry`` section of a YAML file (or the whole file).

    A missing file yields an empty dict; invalid YAML is logged and ignored.
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.debug("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as exc:
        logger.warning("Invalid YAML in %s, using defaults: %s", path, exc)
        return {}

    if not isinstance(data, dict):
        return {}
    section = data.get("telemetry", data)
    if not isinstance(section, dict):
        return {}
    unknown = set(section) - set(_FIELD_TYPES)
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", path, sorted(unknown))
    return {k: v for k, v in section.items() if k in _FIELD_TYPES}


def build_arg_parser(parser: argparse.ArgumentParser | None = None) -> argparse.ArgumentParser:
    """Add the sink flags to *parser* (or a new one)."""
    if parser is None:
        parser = argparse.ArgumentParser(description="Telemetry shipper")
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--workspace-id", type=str, default=None)
    parser.add_argument("--shared-key", type=str, default=None)
    parser.add_argument("--log-type", type=str, default=None)
    parser.add_argument("--endpoint", dest="endpoint_override", type=str, default=None)
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--batch-timeout", type=float, default=None)
    parser.add_argument("--retry-count", type=int, default=None)
    parser.add_argument("--retry-delay", type=float, default=None)
    parser.add_argument("--timeout", type=float, default=None)
    parser.add_argument("--shutdown-timeout", type=float, default=None)
    parser.add_argument("--spool-dir", type=str, default=None)
    parser.add_argument("--log-dir", type=str, default=None)
    return parser


def config_from_args(args: argparse.Namespace, path: str | None = None) -> SinkConfig:
    """Build SinkConfig from defaults <- YAML <- env vars <- parsed CLI args.

    The YAML file is *path*, else ``--config``, else ``TELEMETRY_CONFIG``.
    Its keys replace defaults one field at a time.
    """
    path = path or args.config or os.environ.get("TELEMETRY_CONFIG")
    values: dict = {}
    if path:
        values.update(load_yaml(path))

    for name, env_name in ENV_VARS.items():
        if env_name in os.environ:
            values[name] = os.environ[env_name]

    for name in _FIELD_TYPES:
        cli_value = getattr(args, name, None)
        if cli_value is not None:
            values[name] = cli_value

    return SinkConfig(**{name: _coerce(name, value) for name, value in values.items()})


def load_sink_config(argv=None, path: str | None = None) -> SinkConfig:
    """Build SinkConfig from YAML, environment variables and CLI args.

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args, _unknown = build_arg_parser().parse_known_args(argv)
    return config_from_args(args, path)
