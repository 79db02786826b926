"""
Tests for rendering plan trees back to EXPLAIN JSON and to the tree view.
"""

import json

from pg_index_advisor.core.analyzer import analyze_plan
from pg_index_advisor.core.json_parser import parse_json_plan
from pg_index_advisor.core.render import render_tree, to_explain_json
from pg_index_advisor.core.text_parser import parse_text_plan


def _reparse(parsed):
    doc = to_explain_json(parsed.plan, parsed.execution_time, parsed.planning_time)
    return parse_json_plan(json.dumps(doc))


def test_json_round_trip(nested_loop_json):
    parsed = parse_json_plan(nested_loop_json)
    again = _reparse(parsed)
    assert again.plan == parsed.plan
    assert again.execution_time == parsed.execution_time
    assert again.planning_time == parsed.planning_time


def test_text_plan_renders_to_equivalent_json(hash_join_text, fixture_text):
    for text in (hash_join_text, fixture_text("parallel_initplan.txt"), fixture_text("bitmap_lossy.txt")):
        parsed = parse_text_plan(text)
        assert _reparse(parsed).plan == parsed.plan


def test_explain_json_shape(hash_join_text):
    parsed = parse_text_plan(hash_join_text)
    doc = to_explain_json(parsed.plan, parsed.execution_time, parsed.planning_time)
    assert isinstance(doc, list) and len(doc) == 1
    wrapper = doc[0]
    assert wrapper["Execution Time"] == 13.0
    assert wrapper["Planning Time"] == 0.25
    root = wrapper["Plan"]
    assert root["Node Type"] == "Hash Join"
    assert root["Hash Cond"] == "(o.user_id = u.id)"
    assert root["Shared Hit Blocks"] == 120
    assert [c["Node Type"] for c in root["Plans"]] == ["Seq Scan", "Hash"]
    assert root["Plans"][1]["Hash Batches"] == 4


def test_render_tree(hash_join_text):
    lines = render_tree(analyze_plan(hash_join_text).plan).splitlines()
    assert len(lines) == 4
    assert lines[0].startswith("[0] Hash Join  (cost=30.50..150.25 rows=500)")
    assert "BOTTLENECK" in lines[0]
    assert lines[1].startswith("  -> [1] Seq Scan on orders o")
    assert "[SEQ_SCAN_LARGE, BOTTLENECK]" in lines[1]
    assert lines[3].startswith("    -> [3] Seq Scan on public.users u")


def test_render_tree_never_executed(fixture_text):
    tree = render_tree(analyze_plan(fixture_text("parallel_initplan.txt")).plan)
    assert "[5] Index Scan using t_pkey on t" in tree
    assert "(never executed)" in tree
