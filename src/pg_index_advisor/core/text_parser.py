"""
Parser for the indented, human-readable ``EXPLAIN`` output.

Tree structure is implicit in the column where each operator name starts.
The parser makes one forward pass over the lines, keeping an explicit stack of
open nodes keyed by that column:

* EXPECT_ROOT: skip preamble until the first node header.
* IN_TREE: headers open nodes, detail lines attach to the deepest open node
  whose column is left of the detail.
* TRAILER: ``Planning:``/``JIT:``/``Triggers:`` blocks after the tree; only
  the timing summary lines are still read.
"""

import itertools
import logging
import math
import re
from dataclasses import fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pg_index_advisor.core.errors import MalformedInput, UnparsableHeader
from pg_index_advisor.core.models import (
    MAX_DEPTH,
    BufferCounters,
    NodeKind,
    ParseResult,
    PlanNode,
    ScanDetails,
    details_class_for,
)

logger = logging.getLogger(__name__)


class _State(Enum):
    EXPECT_ROOT = "expect_root"
    IN_TREE = "in_tree"
    TRAILER = "trailer"


# ---------- Line patterns ----------

_HEADER_RE = re.compile(
    r"^(?P<indent>\s*)(?P<arrow>->\s*)?(?P<label>[^\s(].*?)\s*"
    r"\(cost=(?P<cost>[^)]*)\)"
    r"(?:\s*\((?P<actual>[^)]*)\))?\s*$"
)
_COST_RE = re.compile(r"^(?P<startup>\S+?)\.\.(?P<total>\S+)\s+rows=(?P<rows>\S+)\s+width=(?P<width>\S+)$")
_ACTUAL_RE = re.compile(
    r"^actual(?:\s+time=(?P<startup>\S+?)\.\.(?P<total>\S+))?\s+rows=(?P<rows>\S+)\s+loops=(?P<loops>\S+)$"
)
_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")

_SUMMARY_RE = re.compile(
    r"^(?P<key>Planning Time|Execution Time|Total runtime):\s*(?P<value>\d+(?:\.\d+)?)\s*ms$",
    re.IGNORECASE,
)
_SUBPLAN_RE = re.compile(r"^(?P<kind>InitPlan|SubPlan)\b.*$|^CTE (?P<cte>\S+)$")
_ROWS_FOOTER_RE = re.compile(r"^\(\d+ rows?\)$")

# ---------- Label patterns ----------

_JOIN_TYPES = r"Left|Full|Right Semi|Right Anti|Right|Semi|Anti"
_HASH_MERGE_JOIN_RE = re.compile(rf"^(?P<algo>Hash|Merge) (?:(?P<jt>{_JOIN_TYPES}) )?Join$")
_NESTED_LOOP_RE = re.compile(rf"^Nested Loop(?: (?P<jt>{_JOIN_TYPES}) Join)?$")
_INDEX_SCAN_RE = re.compile(
    r"^(?P<type>Index Only Scan|Index Scan)(?P<backward> Backward)? using (?P<index>\S+)"
    r" on (?P<rel>\S+)(?: (?P<alias>\S+))?$"
)
_BITMAP_INDEX_RE = re.compile(r"^Bitmap Index Scan on (?P<index>\S+)$")
_ON_RELATION_RE = re.compile(r"^(?P<type>.+?) on (?P<rel>\S+)(?: (?P<alias>\S+))?$")

_MODIFY_OPERATIONS = ("Insert", "Update", "Delete", "Merge")
_AGGREGATE_STRATEGIES = {
    "Aggregate": "Plain",
    "GroupAggregate": "Sorted",
    "HashAggregate": "Hashed",
    "MixedAggregate": "Mixed",
}

# ---------- Detail patterns ----------

_HASH_RE = re.compile(
    r"^Buckets:\s*(?P<buckets>\d+)(?:\s+\(originally (?P<obuckets>\d+)\))?"
    r"\s+Batches:\s*(?P<batches>\d+)(?:\s+\(originally (?P<obatches>\d+)\))?"
    r"\s+Memory Usage:\s*(?P<memory>\d+)kB$"
)
_SORT_METHOD_RE = re.compile(r"^(?P<method>.+?)\s+(?P<type>Memory|Disk):\s*(?P<used>\d+)kB$")
_KV_RE = re.compile(r"(\w+)=(\d+)")

# detail label -> (target, attribute, is_numeric); target is "node" or "details"
_SIMPLE_DETAILS: Dict[str, Tuple[str, str, bool]] = {
    "Filter": ("node", "filter", False),
    "Rows Removed by Filter": ("node", "rows_removed_by_filter", True),
    "Index Name": ("details", "index_name", False),
    "Index Cond": ("details", "index_cond", False),
    "Recheck Cond": ("details", "recheck_cond", False),
    "Rows Removed by Index Recheck": ("details", "rows_removed_by_index_recheck", True),
    "Hash Cond": ("details", "hash_cond", False),
    "Merge Cond": ("details", "merge_cond", False),
    "Join Filter": ("details", "join_filter", False),
    "Rows Removed by Join Filter": ("details", "rows_removed_by_join_filter", True),
}


def _number(token: str, line_number: int, line: str, what: str):
    if not _NUMBER_RE.match(token):
        raise UnparsableHeader(line_number, line, f"{what} is not a number ({token!r})")
    value = float(token)
    if not math.isfinite(value):
        raise UnparsableHeader(line_number, line, f"{what} is out of range")
    return int(value) if value.is_integer() else value


class _NodeBuilder:
    """Mutable accumulator for one node while its lines are still being read."""

    def __init__(self, key: int, node_id: int, node_type: str):
        self.key = key
        self.node_id = node_id
        self.node_type = node_type
        self.values: Dict[str, Any] = {}
        self.details: Dict[str, Any] = {}
        self.buffers: Dict[str, int] = {}
        self.children: List["_NodeBuilder"] = []

    def build(self) -> PlanNode:
        kind = NodeKind.of(self.node_type)
        cls = details_class_for(kind)
        if cls is None and "relation_name" in self.details:
            cls = ScanDetails
        details = None
        if cls is not None:
            allowed = {f.name for f in fields(cls)}
            kept = {k: v for k, v in self.details.items() if k in allowed}
            if kept:
                details = cls(**kept)
        return PlanNode(
            id=self.node_id,
            node_type=self.node_type,
            buffers=BufferCounters(**self.buffers) if self.buffers else None,
            details=details,
            children=tuple(child.build() for child in self.children),
            **self.values,
        )


# ---------- Header decoding ----------


def _split_relation(rel: str) -> Dict[str, str]:
    schema, dot, name = rel.rpartition(".")
    if dot and schema:
        return {"schema": schema, "relation_name": name}
    return {"relation_name": rel}


def _decode_label(label: str) -> Tuple[str, Dict[str, Any], Dict[str, Any]]:
    """Split a header label into (node type, universal fields, detail fields)."""
    values: Dict[str, Any] = {}
    details: Dict[str, Any] = {}

    if label.startswith("Parallel "):
        values["parallel_aware"] = True
        label = label[len("Parallel ") :]
    for mode in ("Partial", "Finalize"):
        if label.startswith(mode + " "):
            values["partial_mode"] = mode
            label = label[len(mode) + 1 :]

    m = _HASH_MERGE_JOIN_RE.match(label)
    if m:
        details["join_type"] = m.group("jt") or "Inner"
        return f"{m.group('algo')} Join", values, details
    m = _NESTED_LOOP_RE.match(label)
    if m:
        details["join_type"] = m.group("jt") or "Inner"
        return "Nested Loop", values, details

    m = _INDEX_SCAN_RE.match(label)
    if m:
        details["index_name"] = m.group("index")
        details["scan_direction"] = "Backward" if m.group("backward") else "Forward"
        details.update(_split_relation(m.group("rel")))
        if m.group("alias"):
            details["alias"] = m.group("alias")
        return m.group("type"), values, details
    m = _BITMAP_INDEX_RE.match(label)
    if m:
        details["index_name"] = m.group("index")
        return "Bitmap Index Scan", values, details
    m = _ON_RELATION_RE.match(label)
    if m:
        node_type = m.group("type")
        details.update(_split_relation(m.group("rel")))
        if m.group("alias"):
            details["alias"] = m.group("alias")
        if node_type in _MODIFY_OPERATIONS:
            node_type = NodeKind.MODIFY_TABLE.value
        return node_type, values, details

    if label in _AGGREGATE_STRATEGIES:
        details["strategy"] = _AGGREGATE_STRATEGIES[label]
    return label, values, details


def _parse_cost_group(group: str, line_number: int, line: str) -> Dict[str, Any]:
    m = _COST_RE.match(group.strip())
    if not m:
        raise UnparsableHeader(line_number, line, "malformed cost group")
    startup = float(_number(m.group("startup"), line_number, line, "startup cost"))
    total = float(_number(m.group("total"), line_number, line, "total cost"))
    if total < startup:
        raise UnparsableHeader(line_number, line, "total cost below startup cost")
    return {
        "startup_cost": startup,
        "total_cost": total,
        "plan_rows": int(_number(m.group("rows"), line_number, line, "plan rows")),
        "plan_width": int(_number(m.group("width"), line_number, line, "plan width")),
    }


def _parse_actual_group(group: str, line_number: int, line: str) -> Dict[str, Any]:
    group = group.strip()
    if group == "never executed":
        return {
            "actual_startup_time": 0.0,
            "actual_total_time": 0.0,
            "actual_rows": 0,
            "actual_loops": 0,
        }
    m = _ACTUAL_RE.match(group)
    if not m:
        raise UnparsableHeader(line_number, line, "malformed actual group")
    values: Dict[str, Any] = {
        "actual_rows": _number(m.group("rows"), line_number, line, "actual rows"),
        "actual_loops": int(_number(m.group("loops"), line_number, line, "loops")),
    }
    if m.group("startup") is not None:
        values["actual_startup_time"] = float(_number(m.group("startup"), line_number, line, "startup time"))
        values["actual_total_time"] = float(_number(m.group("total"), line_number, line, "total time"))
    return values


# ---------- Detail decoding ----------


def _detail_int(value: str, line_number: int, label: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise MalformedInput(f"line {line_number}: {label} is not a number ({value!r})") from e


def _parse_buffers(value: str, builder: _NodeBuilder) -> None:
    for group in value.split(","):
        parts = group.split(None, 1)
        if len(parts) != 2 or parts[0] not in ("shared", "temp"):
            continue
        for name, count in _KV_RE.findall(parts[1]):
            builder.buffers[f"{parts[0]}_{name}_blocks"] = int(count)


def _apply_detail(builder: _NodeBuilder, stripped: str, line_number: int) -> None:
    label, sep, value = stripped.partition(":")
    if not sep:
        return
    value = value.strip()

    if label in _SIMPLE_DETAILS:
        target, attr, numeric = _SIMPLE_DETAILS[label]
        parsed = _detail_int(value, line_number, label) if numeric else value
        (builder.values if target == "node" else builder.details)[attr] = parsed
    elif label == "Sort Key":
        builder.details["sort_key"] = tuple(k.strip() for k in value.split(", ") if k.strip())
    elif label == "Group Key":
        builder.details["group_key"] = tuple(k.strip() for k in value.split(", ") if k.strip())
    elif label == "Sort Method":
        m = _SORT_METHOD_RE.match(value)
        if m:
            builder.details["sort_method"] = m.group("method")
            builder.details["sort_space_type"] = m.group("type")
            builder.details["sort_space_used"] = int(m.group("used"))
        else:
            builder.details["sort_method"] = value
    elif label == "Buckets":
        m = _HASH_RE.match(stripped)
        if m:
            builder.details["hash_buckets"] = int(m.group("buckets"))
            builder.details["original_hash_buckets"] = int(m.group("obuckets") or m.group("buckets"))
            builder.details["hash_batches"] = int(m.group("batches"))
            builder.details["original_hash_batches"] = int(m.group("obatches") or m.group("batches"))
            builder.details["peak_memory_usage"] = int(m.group("memory"))
    elif label == "Heap Blocks":
        for name, count in _KV_RE.findall(value):
            if name in ("exact", "lossy"):
                builder.details[f"{name}_heap_blocks"] = int(count)
    elif label == "Buffers":
        _parse_buffers(value, builder)


# ---------- Driver ----------


def _is_noise(stripped: str) -> bool:
    if not stripped or stripped == "QUERY PLAN":
        return True
    if set(stripped) <= {"-", "+"}:
        return True
    return bool(_ROWS_FOOTER_RE.match(stripped))


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip())


def parse_text_plan(text: str) -> ParseResult:
    state = _State.EXPECT_ROOT
    stack: List[_NodeBuilder] = []
    root: Optional[_NodeBuilder] = None
    analyze = False
    ids = itertools.count()
    pending_subplan: Optional[Tuple[str, str]] = None
    timings: Dict[str, float] = {}

    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip()
        stripped = line.strip()
        if _is_noise(stripped):
            continue

        summary = _SUMMARY_RE.match(stripped)
        if summary:
            key = "planning" if summary.group("key").lower().startswith("planning") else "execution"
            value = float(summary.group("value"))
            if not math.isfinite(value):
                raise MalformedInput(f"line {line_number}: {summary.group('key')} is out of range")
            timings[key] = value
            continue

        header_shaped = stripped.startswith("->") or "(cost=" in stripped
        if header_shaped:
            if state is _State.TRAILER:
                raise MalformedInput(f"line {line_number}: plan node after the end of the plan tree")
            m = _HEADER_RE.match(line)
            if not m:
                raise UnparsableHeader(line_number, line, "cannot split cost/actual groups")
            node_type, values, details = _decode_label(m.group("label"))
            values.update(_parse_cost_group(m.group("cost"), line_number, line))
            actual = m.group("actual")
            if state is _State.EXPECT_ROOT:
                analyze = actual is not None
            elif analyze and actual is None:
                raise UnparsableHeader(line_number, line, "missing actual group in an EXPLAIN ANALYZE plan")
            elif not analyze and actual is not None:
                raise UnparsableHeader(line_number, line, "unexpected actual group in a plain EXPLAIN plan")
            if actual is not None:
                values.update(_parse_actual_group(actual, line_number, line))
            if pending_subplan is not None:
                values["parent_relationship"], values["subplan_name"] = pending_subplan
                pending_subplan = None

            key = len(m.group("indent")) + len(m.group("arrow") or "")
            builder = _NodeBuilder(key, next(ids), node_type)
            builder.values.update(values)
            builder.details.update(details)

            while stack and stack[-1].key >= key:
                stack.pop()
            if root is None:
                root = builder
                state = _State.IN_TREE
            elif not stack:
                raise MalformedInput(f"line {line_number}: second root node {stripped!r}")
            else:
                stack[-1].children.append(builder)
            stack.append(builder)
            if len(stack) > MAX_DEPTH + 1:
                raise MalformedInput(f"line {line_number}: plan depth exceeded limit of {MAX_DEPTH}")
            continue

        if state is not _State.IN_TREE:
            continue
        column = _indent_of(line)
        if root is not None and column <= root.key:
            state = _State.TRAILER
            continue

        subplan = _SUBPLAN_RE.match(stripped)
        if subplan:
            if subplan.group("cte"):
                pending_subplan = ("InitPlan", f"CTE {subplan.group('cte')}")
            else:
                pending_subplan = (subplan.group("kind"), stripped)
            continue

        owner = next((b for b in reversed(stack) if b.key < column), None)
        if owner is not None:
            _apply_detail(owner, stripped, line_number)

    if root is None:
        raise MalformedInput("no plan node found in input")

    plan = root.build()
    logger.debug("parsed text plan: root=%s analyze=%s", plan.node_type, analyze)
    return ParseResult(
        plan=plan,
        execution_time=timings.get("execution") if analyze else None,
        planning_time=timings.get("planning"),
        format="text",
    )
