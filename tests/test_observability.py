"""
Tests for structured logging and correlation ids.
"""

import json
import logging

import pytest

from pg_index_advisor.core.observability import (
    CorrelationIdFilter,
    JSONFormatter,
    correlation_id_ctx,
    trace_operation,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("pg_index_advisor.test", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extras():
    out = json.loads(JSONFormatter().format(_record(rid="abc", dur_ms=12)))
    assert out["message"] == "hello"
    assert out["level"] == "INFO"
    assert out["logger"] == "pg_index_advisor.test"
    assert out["rid"] == "abc"
    assert out["dur_ms"] == 12


def test_correlation_id_filter():
    token = correlation_id_ctx.set("req-7")
    try:
        record = _record()
        assert CorrelationIdFilter().filter(record)
        assert record.correlation_id == "req-7"
    finally:
        correlation_id_ctx.reset(token)


def test_trace_operation_preserves_result_and_errors():
    @trace_operation("double")
    def double(x):
        return x * 2

    @trace_operation("fail")
    def fail():
        raise ValueError("bad")

    assert double(21) == 42
    assert double.__name__ == "double"
    with pytest.raises(ValueError, match="bad"):
        fail()
