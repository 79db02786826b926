"""
Tests for the parse-then-analyze pipeline and the response envelope.
"""

import pytest

from pg_index_advisor.core import analyzer
from pg_index_advisor.core.analyzer import analyze, analyze_plan, analyze_request, build_response
from pg_index_advisor.core.config import AnalyzerOptions
from pg_index_advisor.core.errors import InternalError, InvalidInput, MalformedInput
from pg_index_advisor.core.json_parser import parse_json_plan


def test_seq_scan_end_to_end(seq_scan_plan):
    result = analyze_plan(seq_scan_plan)
    assert result.format == "text"
    assert result.raw_plan == seq_scan_plan
    assert result.plan.relation_name == "users"
    assert result.plan.metrics.exclusive_time == pytest.approx(2.345)
    assert result.plan.metrics.time_percentage == pytest.approx(93.8)
    warnings = [r for r in result.recommendations if r.severity.value == "warning"]
    assert len(warnings) == 1
    assert warnings[0].node_id == 0


def test_json_input_detected(hash_join_json):
    result = analyze_plan(hash_join_json)
    assert result.format == "json"
    assert result.summary.node_count == 3
    assert not result.summary.has_analyze


def test_repeated_analysis_is_idempotent(nested_loop_json):
    parsed = parse_json_plan(nested_loop_json)
    first = analyze(parsed, AnalyzerOptions())
    second = analyze(parsed, AnalyzerOptions())
    assert first == second
    assert parsed.plan.metrics is None


def test_same_tree_with_different_thresholds(nested_loop_json):
    parsed = parse_json_plan(nested_loop_json)
    _, _, default_recs = analyze(parsed, AnalyzerOptions())
    _, _, strict_recs = analyze(parsed, AnalyzerOptions(nested_loop_min_loops=10000))
    assert any(r.rule_id == "nested-loop" for r in default_recs)
    assert not any(r.rule_id == "nested-loop" for r in strict_recs)


def test_errors_propagate():
    with pytest.raises(InvalidInput):
        analyze_plan("")
    with pytest.raises(MalformedInput):
        analyze_plan("not a plan at all")


def test_internal_failure_is_wrapped(monkeypatch, seq_scan_plan):
    def boom(*args, **kwargs):
        raise ZeroDivisionError("division by zero")

    monkeypatch.setattr(analyzer, "evaluate_rules", boom)
    with pytest.raises(InternalError) as exc:
        analyze_plan(seq_scan_plan)
    assert isinstance(exc.value.__cause__, ZeroDivisionError)


def test_analyze_request_reads_format(hash_join_json):
    result = analyze_request({"plan": hash_join_json, "format": "json"})
    assert result.format == "json"
    with pytest.raises(InvalidInput):
        analyze_request(["not", "an", "object"])
    with pytest.raises(InvalidInput):
        analyze_request({"format": "json"})


def test_build_response_success(seq_scan_plan):
    status, body = build_response({"plan": seq_scan_plan})
    assert status == 200
    assert body["success"] is True
    data = body["data"]
    assert set(data) == {"plan", "summary", "recommendations", "rawPlan", "format"}
    assert data["plan"]["nodeType"] == "Seq Scan"
    assert data["plan"]["relationName"] == "users"
    assert data["plan"]["children"] == []
    assert data["plan"]["warnings"] == ["SEQ_SCAN_LARGE", "BOTTLENECK"]
    assert data["summary"]["executionTime"] == 2.5


def test_build_response_client_errors():
    status, body = build_response({"plan": ""})
    assert status == 400
    assert body == {
        "success": False,
        "error": "План не указан",
        "errorEn": "Plan not provided",
        "code": "INVALID_INPUT",
        "detail": "plan must be a non-empty string",
    }

    status, body = build_response({"plan": "not a plan at all"})
    assert status == 400
    assert body["code"] == "MALFORMED_INPUT"
    assert body["errorEn"] == "Invalid plan format. Make sure this is EXPLAIN ANALYZE output."


def test_build_response_internal_error_hides_detail(monkeypatch, seq_scan_plan):
    def boom(*args, **kwargs):
        raise KeyError("secret")

    monkeypatch.setattr(analyzer, "annotate_plan", boom)
    status, body = build_response({"plan": seq_scan_plan})
    assert status == 500
    assert body["code"] == "INTERNAL_ERROR"
    assert "detail" not in body
    assert "secret" not in str(body)
