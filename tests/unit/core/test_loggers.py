import json
import logging
import os
from unittest.mock import patch

import pytest
from buildkite_exporter.core.loggers import CustomJSONFormatter, logger_name, make_logger
from opentelemetry.sdk.trace import TracerProvider


def _record(message: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="buildkite_exporter.test",
        level=logging.WARNING,
        pathname="/app/buildkite_exporter/test.py",
        lineno=12,
        msg=message,
        args=(),
        exc_info=None,
    )


def test_logger_name():
    assert logger_name() == __name__


def test_make_logger_is_idempotent():
    logger = make_logger("buildkite_exporter.tests.idempotent")
    again = make_logger("buildkite_exporter.tests.idempotent")

    assert logger is again
    assert len(logger.handlers) == 1
    assert logger.propagate is False


def test_make_logger_rejects_empty_name():
    with pytest.raises(ValueError):
        make_logger("")


def test_json_formatter_fields():
    with patch.dict(os.environ, {"OTEL_SERVICE_NAME": "ci-traces"}):
        payload = json.loads(CustomJSONFormatter().format(_record()))

    assert payload["message"] == "hello"
    assert payload["level"] == "WARNING"
    assert payload["name"] == "buildkite_exporter.test"
    assert payload["lineno"] == 12
    assert payload["service"] == "ci-traces"
    assert "trace_id" not in payload


def test_json_formatter_adds_current_span():
    tracer = TracerProvider().get_tracer(__name__)
    with tracer.start_as_current_span("cycle") as span:
        payload = json.loads(CustomJSONFormatter().format(_record()))
        span_context = span.get_span_context()

    assert payload["trace_id"] == format(span_context.trace_id, "032x")
    assert payload["span_id"] == format(span_context.span_id, "016x")
