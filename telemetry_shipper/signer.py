"""SharedKey request signing (HMAC-SHA256 over a canonical request string)."""

import base64
import binascii
import hashlib
import hmac
from datetime import datetime, timezone
from email.utils import format_datetime

from telemetry_shipper.errors import InvalidKeyEncoding


def rfc1123_date(now: datetime | None = None) -> str:
    """Format *now* (default: current UTC time) as an ``x-ms-date`` header value."""
    now = now or datetime.now(timezone.utc)
    return format_datetime(now.astimezone(timezone.utc), usegmt=True)


def build_string_to_sign(
    method: str,
    content_length: int,
    content_type: str,
    date: str,
    resource: str,
) -> str:
    return f"{method}\n{content_length}\n{content_type}\nx-ms-date:{date}\n{resource}"


def decode_key(shared_key: str) -> bytes:
    """Strictly base64-decode the shared key."""
    try:
        return base64.b64decode(shared_key, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise InvalidKeyEncoding(f"Shared key is not valid base64: {exc}") from exc


def sign(
    method: str,
    content_length: int,
    content_type: str,
    date: str,
    resource: str,
    workspace_id: str,
    shared_key: str,
) -> str:
    """Return the ``Authorization`` header value for a request.

    The result has the form ``SharedKey {workspace_id}:{base64 signature}``.
    """
    key = decode_key(shared_key)
    message = build_string_to_sign(method, content_length, content_type, date, resource)
    digest = hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()
    return f"SharedKey {workspace_id}:{base64.b64encode(digest).decode('ascii')}"
