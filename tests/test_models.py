"""Tests for the record builder and record flattening."""

import logging
import os
import re
import uuid
from dataclasses import FrozenInstanceError

import pytest

from telemetry_shipper.errors import InvalidArgument, UnsupportedPropertyType
from telemetry_shipper.models import (
    DEFAULT_COMPONENT,
    Level,
    build_record,
    format_text,
    record_to_dict,
)

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


class TestLevel:
    def test_parse_case_insensitive(self):
        assert Level.parse("info") is Level.INFO
        assert Level.parse("SUCCESS") is Level.SUCCESS
        assert Level.parse(" Warning ") is Level.WARNING

    def test_parse_accepts_member(self):
        assert Level.parse(Level.CRITICAL) is Level.CRITICAL

    @pytest.mark.parametrize("bad", ["verbose", "", None, 3])
    def test_parse_rejects_unknown(self, bad):
        with pytest.raises(InvalidArgument):
            Level.parse(bad)

    def test_logging_levels(self):
        assert Level.ERROR.logging_level == logging.ERROR
        assert Level.TRACE.logging_level < logging.DEBUG
        assert logging.INFO < Level.SUCCESS.logging_level < logging.WARNING
        assert logging.getLevelName(Level.SUCCESS.logging_level) == "SUCCESS"


class TestBuildRecord:
    def test_defaults(self):
        record = build_record("Feature installed")

        assert record.message == "Feature installed"
        assert record.level is Level.INFO
        assert record.component == DEFAULT_COMPONENT
        assert record.process_id == os.getpid()
        assert record.host
        assert record.correlation_id is None
        assert record.duration_ms is None
        assert TIMESTAMP_RE.match(record.timestamp)

    def test_operation_id_is_generated_uuid(self):
        record = build_record("msg")
        assert str(uuid.UUID(record.operation_id)) == record.operation_id

    def test_operation_ids_are_unique(self):
        ids = {build_record("msg").operation_id for _ in range(50)}
        assert len(ids) == 50

    def test_explicit_ids_kept(self):
        op = str(uuid.uuid4())
        corr = str(uuid.uuid4())
        record = build_record("msg", operation_id=op, correlation_id=corr)
        assert record.operation_id == op
        assert record.correlation_id == corr

    def test_invalid_uuid_rejected(self):
        with pytest.raises(InvalidArgument):
            build_record("msg", correlation_id="not-a-uuid")

    def test_timestamps_non_decreasing(self):
        stamps = [build_record(f"msg-{i}").timestamp for i in range(500)]
        assert stamps == sorted(stamps)

    def test_component_and_default_component(self):
        assert build_record("msg", component="Deploy").component == "Deploy"
        assert build_record("msg", component="", default_component="Setup").component == "Setup"

    @pytest.mark.parametrize("message", ["", "   ", None])
    def test_empty_message_rejected(self, message):
        with pytest.raises(InvalidArgument):
            build_record(message)

    def test_bad_level_rejected(self):
        with pytest.raises(InvalidArgument):
            build_record("msg", "Fatal")

    def test_negative_duration_rejected(self):
        with pytest.raises(InvalidArgument):
            build_record("msg", duration_ms=-1)

    def test_duration_stored_as_float(self):
        assert build_record("msg", duration_ms=12).duration_ms == 12.0

    def test_scalar_properties_accepted(self):
        record = build_record(
            "msg", properties={"app": "7zip", "exit_code": 0, "ratio": 0.5, "reboot": False}
        )
        assert record.properties == {"app": "7zip", "exit_code": 0, "ratio": 0.5, "reboot": False}

    @pytest.mark.parametrize("value", [[1, 2], {"a": 1}, None, object()])
    def test_unsupported_property_type(self, value):
        with pytest.raises(UnsupportedPropertyType):
            build_record("msg", properties={"bad": value})

    def test_metrics_must_be_numeric(self):
        with pytest.raises(InvalidArgument):
            build_record("msg", metrics={"size": "large"})
        with pytest.raises(InvalidArgument):
            build_record("msg", metrics={"flag": True})

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_numbers_rejected(self, value):
        with pytest.raises(InvalidArgument):
            build_record("msg", metrics={"x": value})
        with pytest.raises(InvalidArgument):
            build_record("msg", duration_ms=value)
        with pytest.raises(InvalidArgument):
            build_record("msg", properties={"ratio": value})

    def test_properties_sharing_a_column_rejected(self):
        with pytest.raises(InvalidArgument):
            build_record("msg", properties={"Level": "high", "Property_Level": "low"})

    def test_metrics_become_floats(self):
        assert build_record("msg", metrics={"bytes": 10}).metrics == {"bytes": 10.0}

    def test_record_is_immutable(self):
        record = build_record("msg", properties={"a": 1})
        with pytest.raises(FrozenInstanceError):
            record.message = "changed"
        with pytest.raises(TypeError):
            record.properties["a"] = 2

    def test_caller_mapping_not_shared(self):
        props = {"a": 1}
        record = build_record("msg", properties=props)
        props["a"] = 2
        assert record.properties["a"] == 1


class TestRecordToDict:
    def test_builtin_columns(self):
        record = build_record("msg", "Warning", "Oracle", event_name="Connect", duration_ms=5)
        row = record_to_dict(record)

        assert row["TimeGenerated"] == record.timestamp
        assert row["Level"] == "Warning"
        assert row["Message"] == "msg"
        assert row["Component"] == "Oracle"
        assert row["OperationId"] == record.operation_id
        assert row["EventName"] == "Connect"
        assert row["DurationMs"] == 5.0

    def test_optional_columns_omitted(self):
        row = record_to_dict(build_record("msg"))
        assert "CorrelationId" not in row
        assert "EventName" not in row
        assert "DurationMs" not in row

    def test_properties_and_metrics_flattened(self):
        record = build_record(
            "msg",
            properties={"app": "7zip", "Message": "shadow", "Metric_x": 1},
            metrics={"download_ms": 120.5, "app": 3},
        )
        row = record_to_dict(record)

        assert row["app"] == "7zip"
        assert row["Message"] == "msg"
        assert row["Property_Message"] == "shadow"
        assert row["Property_Metric_x"] == 1
        assert row["Metric_download_ms"] == 120.5
        assert row["Metric_app"] == 3.0

    def test_format_text(self):
        record = build_record("Installed", "Success", "Setup", duration_ms=1500)
        text = format_text(record)
        assert "[SUCCESS]" in text
        assert "[Setup] Installed" in text
        assert "(1500.0 ms)" in text
