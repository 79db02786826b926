"""Render plan trees back to Postgres JSON or to an indented text view."""

from typing import Any, Dict, List, Optional

from pg_index_advisor.core.json_parser import (
    BUFFER_FIELDS,
    DETAIL_FIELDS,
    NODE_FIELDS,
    REQUIRED_FIELDS,
)
from pg_index_advisor.core.models import PlanNode


def _node_to_explain(node: PlanNode) -> Dict[str, Any]:
    out: Dict[str, Any] = {"Node Type": node.node_type}
    for key, attr, _ in REQUIRED_FIELDS + NODE_FIELDS:
        value = getattr(node, attr)
        if value is not None:
            out[key] = value
    if node.buffers is not None:
        for key, attr, _ in BUFFER_FIELDS:
            value = getattr(node.buffers, attr)
            if value is not None:
                out[key] = value
    if node.details is not None:
        for key, attr, _ in DETAIL_FIELDS[type(node.details)]:
            value = getattr(node.details, attr)
            if value is None or value == ():
                continue
            out[key] = list(value) if isinstance(value, tuple) else value
    if node.children:
        out["Plans"] = [_node_to_explain(child) for child in node.children]
    return out


def to_explain_json(
    plan: PlanNode,
    execution_time: Optional[float] = None,
    planning_time: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """Canonical ``EXPLAIN (FORMAT JSON)`` document for a plan tree."""
    wrapper: Dict[str, Any] = {"Plan": _node_to_explain(plan)}
    if planning_time is not None:
        wrapper["Planning Time"] = planning_time
    if execution_time is not None:
        wrapper["Execution Time"] = execution_time
    return [wrapper]


def _label(node: PlanNode) -> str:
    label = node.node_type
    if node.index_name:
        label += f" using {node.index_name}"
    if node.qualified_relation:
        label += f" on {node.qualified_relation}"
        if node.alias and node.alias != node.relation_name:
            label += f" {node.alias}"
    return label


def _describe(node: PlanNode) -> str:
    parts = [f"[{node.id}] {_label(node)}", f"(cost={node.startup_cost:.2f}..{node.total_cost:.2f} rows={node.plan_rows})"]
    if node.has_actuals:
        if not node.executed:
            parts.append("(never executed)")
        elif node.actual_total_time is not None:
            parts.append(f"(actual {node.actual_total_time:.3f} ms rows={node.actual_rows} loops={node.actual_loops})")
        else:
            parts.append(f"(actual rows={node.actual_rows} loops={node.actual_loops})")
    m = node.metrics
    if m is not None:
        if m.exclusive_time is not None:
            parts.append(f"self={m.exclusive_time:.3f} ms")
        if m.time_percentage is not None:
            parts.append(f"{m.time_percentage:.1f}%")
        if m.is_bottleneck:
            parts.append("BOTTLENECK")
        if m.warnings:
            parts.append("[" + ", ".join(m.warnings) + "]")
    return "  ".join(parts)


def render_tree(plan: PlanNode) -> str:
    lines: List[str] = []

    def rec(node: PlanNode, depth: int) -> None:
        prefix = "" if depth == 0 else "  " * depth + "-> "
        lines.append(prefix + _describe(node))
        for child in node.children:
            rec(child, depth + 1)

    rec(plan, 0)
    return "\n".join(lines)
