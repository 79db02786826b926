"""
Parser for ``EXPLAIN (FORMAT JSON)`` output.

The key tables below are the single source of truth for mapping Postgres'
space-separated keys onto model attributes; the renderer walks the same
tables in reverse.
"""

import itertools
import json
import logging
import math
import re
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from pg_index_advisor.core.errors import MalformedInput
from pg_index_advisor.core.models import (
    MAX_DEPTH,
    AggregateDetails,
    BufferCounters,
    HashDetails,
    JoinDetails,
    NodeKind,
    ParseResult,
    PlanNode,
    ScanDetails,
    SortDetails,
    details_class_for,
)

logger = logging.getLogger(__name__)


# ---------- Value coercion ----------


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    f = float(value)
    if not math.isfinite(f):
        raise ValueError("number is not finite")
    return f


def _as_int(value: Any) -> int:
    return int(round(_as_float(value)))


def _as_number(value: Any):
    f = _as_float(value)
    return int(f) if f.is_integer() else f


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("true", "on", "yes")
    return bool(value)


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(_as_str(v) for v in value)
    return (_as_str(value),)


Field = Tuple[str, str, Callable[[Any], Any]]

REQUIRED_FIELDS: Tuple[Field, ...] = (
    ("Startup Cost", "startup_cost", _as_float),
    ("Total Cost", "total_cost", _as_float),
    ("Plan Rows", "plan_rows", _as_int),
    ("Plan Width", "plan_width", _as_int),
)

NODE_FIELDS: Tuple[Field, ...] = (
    ("Parent Relationship", "parent_relationship", _as_str),
    ("Subplan Name", "subplan_name", _as_str),
    ("Parallel Aware", "parallel_aware", _as_bool),
    ("Partial Mode", "partial_mode", _as_str),
    ("Actual Startup Time", "actual_startup_time", _as_float),
    ("Actual Total Time", "actual_total_time", _as_float),
    ("Actual Rows", "actual_rows", _as_number),
    ("Actual Loops", "actual_loops", _as_int),
    ("Filter", "filter", _as_str),
    ("Rows Removed by Filter", "rows_removed_by_filter", _as_int),
)

BUFFER_FIELDS: Tuple[Field, ...] = (
    ("Shared Hit Blocks", "shared_hit_blocks", _as_int),
    ("Shared Read Blocks", "shared_read_blocks", _as_int),
    ("Shared Dirtied Blocks", "shared_dirtied_blocks", _as_int),
    ("Shared Written Blocks", "shared_written_blocks", _as_int),
    ("Temp Read Blocks", "temp_read_blocks", _as_int),
    ("Temp Written Blocks", "temp_written_blocks", _as_int),
)

DETAIL_FIELDS: Dict[type, Tuple[Field, ...]] = {
    ScanDetails: (
        ("Relation Name", "relation_name", _as_str),
        ("Schema", "schema", _as_str),
        ("Alias", "alias", _as_str),
        ("Index Name", "index_name", _as_str),
        ("Scan Direction", "scan_direction", _as_str),
        ("Index Cond", "index_cond", _as_str),
        ("Recheck Cond", "recheck_cond", _as_str),
        ("Rows Removed by Index Recheck", "rows_removed_by_index_recheck", _as_int),
        ("Exact Heap Blocks", "exact_heap_blocks", _as_int),
        ("Lossy Heap Blocks", "lossy_heap_blocks", _as_int),
    ),
    JoinDetails: (
        ("Join Type", "join_type", _as_str),
        ("Inner Unique", "inner_unique", _as_bool),
        ("Hash Cond", "hash_cond", _as_str),
        ("Merge Cond", "merge_cond", _as_str),
        ("Join Filter", "join_filter", _as_str),
        ("Rows Removed by Join Filter", "rows_removed_by_join_filter", _as_int),
    ),
    SortDetails: (
        ("Sort Key", "sort_key", _as_tuple),
        ("Sort Method", "sort_method", _as_str),
        ("Sort Space Used", "sort_space_used", _as_int),
        ("Sort Space Type", "sort_space_type", _as_str),
    ),
    HashDetails: (
        ("Hash Buckets", "hash_buckets", _as_int),
        ("Original Hash Buckets", "original_hash_buckets", _as_int),
        ("Hash Batches", "hash_batches", _as_int),
        ("Original Hash Batches", "original_hash_batches", _as_int),
        ("Peak Memory Usage", "peak_memory_usage", _as_int),
    ),
    AggregateDetails: (
        ("Strategy", "strategy", _as_str),
        ("Group Key", "group_key", _as_tuple),
    ),
}


# ---------- Tree walk ----------


def _read(raw: Dict[str, Any], table: Tuple[Field, ...], required: bool = False) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, attr, coerce in table:
        if key not in raw or raw[key] is None:
            if required:
                raise MalformedInput(f"node is missing required field {key!r}")
            continue
        try:
            values[attr] = coerce(raw[key])
        except (TypeError, ValueError, OverflowError) as e:
            raise MalformedInput(f"field {key!r} is not a number: {raw[key]!r}") from e
    return values


def _pick_details_class(kind: NodeKind, raw: Dict[str, Any]):
    cls = details_class_for(kind)
    if cls is None and any(key in raw for key, _, _ in DETAIL_FIELDS[ScanDetails]):
        # Unmodeled operators that still target a relation keep their target
        cls = ScanDetails
    return cls


def _build_node(raw: Any, ids: Iterator[int], depth: int) -> PlanNode:
    if not isinstance(raw, dict):
        raise MalformedInput("plan node is not an object")
    if depth > MAX_DEPTH:
        raise MalformedInput(f"plan depth exceeded limit of {MAX_DEPTH}")
    node_type = raw.get("Node Type")
    if not isinstance(node_type, str) or not node_type:
        raise MalformedInput("plan node is missing 'Node Type'")

    node_id = next(ids)
    values = _read(raw, REQUIRED_FIELDS, required=True)
    values.update(_read(raw, NODE_FIELDS))
    if values["total_cost"] < values["startup_cost"]:
        raise MalformedInput(f"node {node_type!r} has total cost below startup cost")

    buffers = BufferCounters(**_read(raw, BUFFER_FIELDS))
    details_cls = _pick_details_class(NodeKind.of(node_type), raw)
    details = None
    if details_cls is not None:
        detail_values = _read(raw, DETAIL_FIELDS[details_cls])
        if detail_values:
            details = details_cls(**detail_values)

    children_raw = raw.get("Plans") or []
    if not isinstance(children_raw, list):
        raise MalformedInput("'Plans' must be a list")
    children = tuple(_build_node(child, ids, depth + 1) for child in children_raw)

    return PlanNode(
        id=node_id,
        node_type=node_type,
        buffers=None if buffers.is_empty() else buffers,
        details=details,
        children=children,
        **values,
    )


# ---------- Input decoding ----------

_PSQL_CONTINUATION = re.compile(r"\s*\+\s*$", re.MULTILINE)


def _extract_json_block(text: str) -> Any:
    """Recover a JSON document wrapped in psql banners or continuation markers."""
    cleaned = _PSQL_CONTINUATION.sub("", text)
    starts = [i for i in (cleaned.find("["), cleaned.find("{")) if i >= 0]
    if not starts:
        raise MalformedInput("no JSON document found")
    start = min(starts)
    end = cleaned.rfind("]" if cleaned[start] == "[" else "}")
    if end <= start:
        raise MalformedInput("unterminated JSON document")
    try:
        return json.loads(cleaned[start : end + 1])
    except ValueError as e:
        raise MalformedInput(f"invalid JSON: {e}") from e


def _decode(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return _extract_json_block(text)


def _unwrap(document: Any) -> Dict[str, Any]:
    if isinstance(document, list):
        if not document:
            raise MalformedInput("EXPLAIN JSON array is empty")
        if len(document) > 1:
            logger.debug("EXPLAIN JSON holds %d statements; using the first", len(document))
        document = document[0]
    if not isinstance(document, dict) or "Plan" not in document:
        raise MalformedInput("no 'Plan' key found in input")
    return document


def _optional_time(container: Dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        if container.get(key) is not None:
            try:
                return _as_float(container[key])
            except (TypeError, ValueError, OverflowError) as e:
                raise MalformedInput(f"{key!r} is not a number") from e
    return None


def parse_json_document(document: Any) -> ParseResult:
    """Build a plan tree from an already-decoded EXPLAIN JSON value."""
    wrapper = _unwrap(document)
    plan = _build_node(wrapper["Plan"], itertools.count(), depth=0)
    return ParseResult(
        plan=plan,
        execution_time=_optional_time(wrapper, "Execution Time", "Total Runtime"),
        planning_time=_optional_time(wrapper, "Planning Time"),
        format="json",
    )


def parse_json_plan(text: str) -> ParseResult:
    result = parse_json_document(_decode(text))
    logger.debug("parsed JSON plan rooted at %s", result.plan.node_type)
    return result

