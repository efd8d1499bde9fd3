"""Exception hierarchy for the telemetry pipeline."""


class TelemetryError(Exception):
    """Base class for every error raised by telemetry_shipper."""


class InvalidArgument(TelemetryError, ValueError):
    """A record was built from malformed inputs (bad level, empty message)."""


class UnsupportedPropertyType(TelemetryError, TypeError):
    """A custom property value is not a str, int, float or bool."""


class InvalidKeyEncoding(TelemetryError, ValueError):
    """The shared key could not be base64-decoded."""


class ConfigError(TelemetryError, ValueError):
    """The sink configuration has an invalid value."""


class TransportError(TelemetryError):
    """Delivery failed after every attempt was used up.

    ``last_error`` is the exception from the final attempt, or None when the
    final attempt got a response with a non-2xx status (see ``status_code``).
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Exception | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
        self.status_code = status_code
