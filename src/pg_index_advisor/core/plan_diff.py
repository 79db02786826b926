from typing import Any, Dict, List, Optional

from pg_index_advisor.core.models import AnalysisResult, iter_preorder
from pg_index_advisor.core.plan_metrics import inclusive_times


def _round(value: Optional[float]) -> Optional[float]:
    return None if value is None else float(f"{value:.3f}")


def _delta(before: Optional[float], after: Optional[float]) -> Optional[float]:
    if before is None or after is None:
        return None
    return _round(after - before)


def diff_plans(before: AnalysisResult, after: AnalysisResult) -> Dict[str, Any]:
    """Compute a compact diff between two analyzed plans.

    Nodes are paired by pre-order position.

    Returns:
        { nodes: [ { beforeOp, afterOp, costBefore, costAfter, timeBefore, timeAfter,
                     rowsBefore, rowsAfter } ], executionTime*, unmatched, recommendations* }
    """
    b_nodes = list(iter_preorder(before.plan))
    a_nodes = list(iter_preorder(after.plan))
    b_times = inclusive_times(before.plan)
    a_times = inclusive_times(after.plan)
    n = min(len(b_nodes), len(a_nodes))
    out: List[Dict[str, Any]] = []
    for i in range(n):
        b = b_nodes[i]
        a = a_nodes[i]
        out.append(
            {
                "beforeOp": b.node_type,
                "afterOp": a.node_type,
                "costBefore": _round(b.total_cost),
                "costAfter": _round(a.total_cost),
                "timeBefore": _round(b_times[b.id]),
                "timeAfter": _round(a_times[a.id]),
                "rowsBefore": b.actual_rows if b.actual_rows is not None else b.plan_rows,
                "rowsAfter": a.actual_rows if a.actual_rows is not None else a.plan_rows,
            }
        )

    exec_before = before.summary.execution_time if before.summary.has_analyze else None
    exec_after = after.summary.execution_time if after.summary.has_analyze else None
    return {
        "nodes": out,
        "executionTimeBefore": _round(exec_before),
        "executionTimeAfter": _round(exec_after),
        "executionTimeDelta": _delta(exec_before, exec_after),
        "totalCostDelta": _delta(before.plan.total_cost, after.plan.total_cost),
        "unmatched": abs(len(b_nodes) - len(a_nodes)),
        "recommendationsBefore": len(before.recommendations),
        "recommendationsAfter": len(after.recommendations),
    }
