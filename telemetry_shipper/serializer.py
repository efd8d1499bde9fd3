"""Batch serializer — JSON array of flattened records."""

import json

from telemetry_shipper.models import LogRecord, record_to_dict


def serialize_batch(records: list[LogRecord]) -> bytes:
    """Serialize records, in order, to the UTF-8 JSON body posted to the sink."""
    rows = [record_to_dict(record) for record in records]
    return json.dumps(rows, ensure_ascii=False, allow_nan=False).encode("utf-8")


def deserialize_batch(data: bytes) -> list[dict]:
    """Decode bytes produced by *serialize_batch* back to a list of dicts."""
    return json.loads(data.decode("utf-8"))
