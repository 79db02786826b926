"""
Derived per-node metrics and the plan-level summary.

Postgres reports ``actual time`` and ``rows`` as per-loop averages, so by
default a node's inclusive time is ``actual_total_time * actual_loops``,
except that loops contributed by parallel workers below a Gather are not
counted as rescans.
``AnalyzerOptions.loop_aware_timing=False`` switches back to the raw
per-loop figures.
"""

from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from pg_index_advisor.core.config import AnalyzerOptions
from pg_index_advisor.core.models import (
    NodeKind,
    NodeMetrics,
    OperationStat,
    ParseResult,
    PlanNode,
    PlanSummary,
    iter_preorder,
)


def node_rows(node: PlanNode) -> float:
    """Actual per-loop rows when measured, planned rows otherwise."""
    return node.actual_rows if node.actual_rows is not None else node.plan_rows


def effective_execution_time(result: ParseResult, options: AnalyzerOptions) -> Optional[float]:
    """Reported execution time, or the root's inclusive time if the summary line was cut off."""
    if result.execution_time is not None:
        return result.execution_time
    if result.plan.has_actuals:
        return result.plan.inclusive_time(options.loop_aware_timing)
    return None


def _child_workers(node: PlanNode, child: PlanNode, workers: float) -> float:
    """Worker count in effect below ``node`` for ``child``."""
    if node.kind not in (NodeKind.GATHER, NodeKind.GATHER_MERGE):
        return workers
    if not node.actual_loops or not child.actual_loops:
        return workers
    # one loop per process for every loop of the Gather itself
    return workers * max(child.actual_loops / node.actual_loops, 1.0)


def inclusive_times(root: PlanNode, loop_aware: bool = True) -> Dict[int, Optional[float]]:
    """Inclusive time of every node keyed by id.

    Below a Gather or Gather Merge the loop count includes one loop per
    parallel process, so the per-loop average already approximates wall time
    there; only loops beyond that are treated as rescans.
    """
    out: Dict[int, Optional[float]] = {}
    stack: List[Tuple[PlanNode, float]] = [(root, 1.0)]
    while stack:
        node, workers = stack.pop()
        out[node.id] = node.inclusive_time(loop_aware, workers)
        for child in node.children:
            stack.append((child, _child_workers(node, child, workers)))
    return out


def _is_passthrough(node: PlanNode, times: Dict[int, Optional[float]], options: AnalyzerOptions) -> bool:
    if len(node.children) != 1:
        return False
    own = times[node.id]
    child = times[node.children[0].id]
    if not own or child is None:
        return False
    return child >= own * options.passthrough_child_share


def _node_metrics(
    node: PlanNode,
    times: Dict[int, Optional[float]],
    execution_time: Optional[float],
    options: AnalyzerOptions,
) -> NodeMetrics:
    exclusive = None
    inclusive = times[node.id]
    if inclusive is not None:
        children = sum(times[c.id] or 0.0 for c in node.children)
        # Float cancellation can leave tiny negatives
        exclusive = max(0.0, inclusive - children)

    percentage = None
    if exclusive is not None and execution_time:
        percentage = exclusive / execution_time * 100

    ratio = None
    if node.actual_rows is not None and node.executed:
        ratio = node.actual_rows / max(node.plan_rows, 1)

    bottleneck = (
        percentage is not None
        and percentage > options.bottleneck_pct
        and not _is_passthrough(node, times, options)
    )
    return NodeMetrics(
        exclusive_time=exclusive,
        time_percentage=percentage,
        rows_estimate_ratio=ratio,
        is_bottleneck=bottleneck,
    )


def _annotate(
    node: PlanNode,
    times: Dict[int, Optional[float]],
    execution_time: Optional[float],
    options: AnalyzerOptions,
) -> PlanNode:
    children = tuple(_annotate(child, times, execution_time, options) for child in node.children)
    return replace(node, children=children, metrics=_node_metrics(node, times, execution_time, options))


def annotate_plan(root: PlanNode, execution_time: Optional[float], options: AnalyzerOptions) -> PlanNode:
    """Return an annotated copy of ``root``; the input tree is left untouched."""
    times = inclusive_times(root, options.loop_aware_timing)
    return _annotate(root, times, execution_time, options)


def attach_warnings(root: PlanNode, codes: Dict[int, Tuple[str, ...]]) -> PlanNode:
    children = tuple(attach_warnings(child, codes) for child in root.children)
    metrics = root.metrics or NodeMetrics()
    if root.id in codes:
        metrics = replace(metrics, warnings=codes[root.id])
    return replace(root, children=children, metrics=metrics)


def _within_band(ratio: float, options: AnalyzerOptions) -> bool:
    return options.accuracy_band_low <= ratio <= options.accuracy_band_high


def _top_operations(nodes: List[PlanNode], execution_time: Optional[float], limit: int) -> Tuple[OperationStat, ...]:
    grouped: Dict[str, List[float]] = {}
    for node in nodes:
        if node.metrics is None or node.metrics.exclusive_time is None:
            continue
        entry = grouped.setdefault(node.node_type, [0, 0.0])
        entry[0] += 1
        entry[1] += node.metrics.exclusive_time

    stats = [
        OperationStat(
            node_type=node_type,
            count=int(count),
            total_time=total,
            percentage=(total / execution_time * 100) if execution_time else 0.0,
        )
        for node_type, (count, total) in grouped.items()
    ]
    stats.sort(key=lambda s: -s.total_time)
    return tuple(stats[:limit])


def build_summary(
    root: PlanNode,
    execution_time: Optional[float],
    planning_time: Optional[float],
    options: AnalyzerOptions,
) -> PlanSummary:
    """Aggregate an annotated tree into a ``PlanSummary``."""
    nodes = list(iter_preorder(root))
    has_analyze = any(n.has_actuals for n in nodes)

    leaves = [n for n in nodes if not n.children]
    if has_analyze:
        if options.loop_aware_timing:
            total_rows = sum(n.total_actual_rows() or 0 for n in leaves)
        else:
            total_rows = sum(n.actual_rows or 0 for n in leaves)
    else:
        total_rows = sum(n.plan_rows for n in leaves)

    ratios = [
        n.metrics.rows_estimate_ratio
        for n in nodes
        if n.metrics is not None and n.metrics.rows_estimate_ratio is not None
    ]
    within = sum(1 for r in ratios if _within_band(r, options))
    accuracy = within / len(ratios) if ratios else 1.0

    has_seq_scans = any(
        n.kind is NodeKind.SEQ_SCAN and node_rows(n) >= options.seq_scan_min_rows for n in nodes
    )

    return PlanSummary(
        execution_time=execution_time or 0.0,
        planning_time=planning_time,
        total_rows=total_rows,
        estimation_accuracy=accuracy,
        top_operations=_top_operations(nodes, execution_time, options.top_operations_limit),
        has_seq_scans=has_seq_scans,
        has_estimation_errors=within < len(ratios),
        node_count=len(nodes),
        has_analyze=has_analyze,
    )
