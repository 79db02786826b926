"""
Tests for derived per-node metrics and the plan summary.
"""

import pytest

from pg_index_advisor.core.analyzer import analyze
from pg_index_advisor.core.config import AnalyzerOptions
from pg_index_advisor.core.json_parser import parse_json_plan
from pg_index_advisor.core.models import iter_preorder
from pg_index_advisor.core.plan_metrics import annotate_plan, effective_execution_time
from pg_index_advisor.core.text_parser import parse_text_plan

OPTIONS = AnalyzerOptions()


def test_single_node_metrics(seq_scan_plan):
    plan, summary, _ = analyze(parse_text_plan(seq_scan_plan), OPTIONS)
    m = plan.metrics
    assert m.exclusive_time == pytest.approx(2.345)
    assert m.time_percentage == pytest.approx(93.8)
    assert m.rows_estimate_ratio == pytest.approx(1.0)
    assert m.is_bottleneck
    assert summary.execution_time == 2.5
    assert summary.node_count == 1
    assert summary.total_rows == 1000
    assert summary.estimation_accuracy == 1.0
    assert summary.has_seq_scans
    assert not summary.has_estimation_errors


def test_exclusive_times_sum_to_root_inclusive(hash_join_text):
    plan, _, _ = analyze(parse_text_plan(hash_join_text), OPTIONS)
    exclusive = {n.id: n.metrics.exclusive_time for n in iter_preorder(plan)}
    assert exclusive[0] == pytest.approx(5.5)
    assert exclusive[1] == pytest.approx(6.0)
    assert exclusive[2] == pytest.approx(0.4)
    assert exclusive[3] == pytest.approx(0.6)
    assert sum(exclusive.values()) == pytest.approx(plan.inclusive_time())


def test_percentages_and_bottlenecks(hash_join_text):
    plan, summary, _ = analyze(parse_text_plan(hash_join_text), OPTIONS)
    nodes = {n.id: n for n in iter_preorder(plan)}
    assert nodes[0].metrics.time_percentage == pytest.approx(5.5 / 13.0 * 100)
    assert nodes[1].metrics.time_percentage == pytest.approx(6.0 / 13.0 * 100)
    assert [n.id for n in nodes.values() if n.metrics.is_bottleneck] == [0, 1]

    assert summary.total_rows == 6000
    assert summary.planning_time == 0.25
    assert [op.node_type for op in summary.top_operations] == ["Seq Scan", "Hash Join", "Hash"]
    seq = summary.top_operations[0]
    assert seq.count == 2
    assert seq.total_time == pytest.approx(6.6)


def test_loop_aware_timing(nested_loop_json):
    parsed = parse_json_plan(nested_loop_json)
    plan, summary, _ = analyze(parsed, OPTIONS)
    nodes = {n.id: n for n in iter_preorder(plan)}
    assert nodes[3].metrics.exclusive_time == pytest.approx(700.0)
    assert nodes[1].metrics.exclusive_time == pytest.approx(99.5)
    assert nodes[0].metrics.exclusive_time == pytest.approx(150.0)
    assert nodes[3].metrics.is_bottleneck
    assert summary.total_rows == 102000
    assert summary.estimation_accuracy == pytest.approx(0.5)
    assert summary.has_estimation_errors


def test_per_loop_timing_when_disabled(nested_loop_json):
    options = AnalyzerOptions(loop_aware_timing=False)
    plan, summary, _ = analyze(parse_json_plan(nested_loop_json), options)
    nodes = {n.id: n for n in iter_preorder(plan)}
    assert nodes[3].metrics.exclusive_time == pytest.approx(0.35)
    assert nodes[1].metrics.exclusive_time == pytest.approx(800.0 - 0.85)
    assert summary.total_rows == 2050


def test_parallel_workers_are_not_rescans(fixture_text):
    plan, _, _ = analyze(parse_text_plan(fixture_text("parallel_initplan.txt")), OPTIONS)
    nodes = {n.id: n for n in iter_preorder(plan)}
    assert nodes[2].metrics.exclusive_time == pytest.approx(6.9)
    assert nodes[3].metrics.exclusive_time == pytest.approx(15.0)
    assert nodes[4].metrics.exclusive_time == pytest.approx(30.0)
    assert nodes[4].metrics.time_percentage == pytest.approx(30.0 / 52.5 * 100)
    assert sum(n.metrics.exclusive_time for n in nodes.values()) == pytest.approx(plan.actual_total_time)
    for node in nodes.values():
        assert 0.0 <= node.metrics.exclusive_time
        assert node.metrics.time_percentage <= 100.0
    assert [n.id for n in nodes.values() if n.metrics.is_bottleneck] == [3, 4]


def test_rescans_inside_parallel_workers_still_count():
    text = (
        "Gather  (cost=1000.00..2000.00 rows=100 width=8) (actual time=0.500..20.000 rows=99 loops=1)\n"
        "  Workers Planned: 2\n"
        "  ->  Nested Loop  (cost=0.29..900.00 rows=42 width=8) (actual time=0.100..18.000 rows=33 loops=3)\n"
        "        ->  Parallel Seq Scan on a  (cost=0.00..400.00 rows=42 width=4) (actual time=0.010..2.000 rows=33 loops=3)\n"
        "        ->  Index Scan using b_pkey on b  (cost=0.29..8.30 rows=1 width=4) (actual time=0.010..0.100 rows=1 loops=99)\n"
        "              Index Cond: (id = a.b_id)\n"
        "Execution Time: 20.500 ms\n"
    )
    plan, _, _ = analyze(parse_text_plan(text), OPTIONS)
    nodes = {n.id: n for n in iter_preorder(plan)}
    assert nodes[3].metrics.exclusive_time == pytest.approx(3.3)
    assert nodes[1].metrics.exclusive_time == pytest.approx(18.0 - 2.0 - 3.3)
    assert nodes[0].metrics.exclusive_time == pytest.approx(2.0)
    assert sum(n.metrics.exclusive_time for n in nodes.values()) == pytest.approx(20.0)


def test_never_executed_node_has_no_ratio(fixture_text):
    plan, _, _ = analyze(parse_text_plan(fixture_text("parallel_initplan.txt")), OPTIONS)
    index_scan = plan.children[2]
    assert index_scan.metrics.rows_estimate_ratio is None
    assert index_scan.metrics.exclusive_time == 0.0


def test_passthrough_parent_is_not_a_bottleneck():
    text = (
        "Limit  (cost=0.00..10.00 rows=100 width=4) (actual time=0.010..10.000 rows=100 loops=1)\n"
        "  ->  Seq Scan on t  (cost=0.00..10.00 rows=100 width=4) (actual time=0.010..9.800 rows=100 loops=1)\n"
        "Execution Time: 10.000 ms\n"
    )
    plan, _, _ = analyze(parse_text_plan(text), AnalyzerOptions(bottleneck_pct=1.0))
    assert not plan.metrics.is_bottleneck
    assert plan.children[0].metrics.is_bottleneck


def test_plain_explain_has_no_timings(fixture_text):
    plan, summary, _ = analyze(parse_text_plan(fixture_text("index_scan_plain.txt")), OPTIONS)
    for node in iter_preorder(plan):
        assert node.metrics.exclusive_time is None
        assert node.metrics.time_percentage is None
        assert node.metrics.rows_estimate_ratio is None
        assert not node.metrics.is_bottleneck
    assert summary.execution_time == 0.0
    assert not summary.has_analyze
    assert summary.total_rows == 1
    assert summary.top_operations == ()
    assert summary.estimation_accuracy == 1.0


def test_missing_execution_time_falls_back_to_root():
    parsed = parse_text_plan(
        "Seq Scan on t  (cost=0.00..1.00 rows=1 width=4) (actual time=0.010..4.000 rows=1 loops=2)"
    )
    assert parsed.execution_time is None
    assert effective_execution_time(parsed, OPTIONS) == pytest.approx(8.0)
    assert effective_execution_time(parsed, AnalyzerOptions(loop_aware_timing=False)) == pytest.approx(4.0)


def test_annotation_leaves_input_untouched(hash_join_text):
    parsed = parse_text_plan(hash_join_text)
    annotated = annotate_plan(parsed.plan, 13.0, OPTIONS)
    assert parsed.plan.metrics is None
    assert annotated.metrics is not None
    assert annotated is not parsed.plan
