"""
Tests for input format detection and input validation.
"""

import pytest

from pg_index_advisor.core.errors import InvalidInput, MalformedInput
from pg_index_advisor.core.format_detector import detect_format, looks_like_json
from pg_index_advisor.core.plan_parser import parse_plan, validate_plan_text


def test_looks_like_json():
    assert looks_like_json('[{"Plan": {}}]')
    assert looks_like_json('  \n {"Plan": {}}')
    assert not looks_like_json("{bad json")
    assert not looks_like_json("Seq Scan on users  (cost=0.00..1.00 rows=1 width=4)")
    assert not looks_like_json("")


def test_auto_detection(hash_join_json, hash_join_text):
    assert detect_format(hash_join_json) == "json"
    assert detect_format(hash_join_text) == "text"
    assert detect_format(hash_join_json, None) == "json"


def test_explicit_hint_is_honored(hash_join_json):
    assert detect_format(hash_join_json, "text") == "text"
    assert detect_format("anything", "JSON") == "json"


def test_unknown_hint_rejected():
    with pytest.raises(InvalidInput):
        detect_format("Result  (cost=0.00..0.01 rows=1 width=4)", "yaml")


def test_hint_mismatch_fails_in_chosen_parser(hash_join_json):
    with pytest.raises(MalformedInput):
        parse_plan(hash_join_json, "text")


@pytest.mark.parametrize("plan", [None, "", "   \n\t", 42, {"plan": "x"}])
def test_empty_or_non_string_plan(plan):
    with pytest.raises(InvalidInput) as exc:
        validate_plan_text(plan)
    assert exc.value.message.en == "Plan not provided"


def test_oversized_plan():
    with pytest.raises(InvalidInput) as exc:
        validate_plan_text("x" * 101, max_bytes=100)
    assert exc.value.message.en == "Plan is too large"
    assert exc.value.message.ru == "План слишком большой"


def test_size_limit_counts_utf8_bytes():
    # 60 characters, 120 bytes
    with pytest.raises(InvalidInput):
        validate_plan_text("я" * 60, max_bytes=100)
    assert validate_plan_text("a" * 100, max_bytes=100) == "a" * 100


def test_psql_wrapped_json_detected(fixture_text, hash_join_text):
    wrapped = fixture_text("result_psql.json")
    assert not looks_like_json(wrapped)
    assert detect_format(wrapped) == "json"
    assert parse_plan(wrapped).plan.node_type == "Result"
    assert detect_format(hash_join_text) == "text"
