"""
Typed execution-plan model shared by the parsers and the diagnostic engine.

Nodes are frozen dataclasses: a parsed tree is never mutated. The diagnostic
engine builds annotated copies with ``dataclasses.replace`` so one parsed tree
can be analyzed any number of times.

Every public type exposes ``to_dict()`` producing the camelCase wire shape
consumed by the HTTP layer and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Tuple, Union

Number = Union[int, float]

# Deepest operator nesting either grammar accepts (root is depth 0)
MAX_DEPTH = 200


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


class NodeKind(str, Enum):
    """Operator kinds the rules care about; everything else is ``OTHER``."""

    SEQ_SCAN = "Seq Scan"
    INDEX_SCAN = "Index Scan"
    INDEX_ONLY_SCAN = "Index Only Scan"
    BITMAP_INDEX_SCAN = "Bitmap Index Scan"
    BITMAP_HEAP_SCAN = "Bitmap Heap Scan"
    TID_SCAN = "Tid Scan"
    CTE_SCAN = "CTE Scan"
    SUBQUERY_SCAN = "Subquery Scan"
    FUNCTION_SCAN = "Function Scan"
    VALUES_SCAN = "Values Scan"
    WORKTABLE_SCAN = "WorkTable Scan"
    FOREIGN_SCAN = "Foreign Scan"
    NESTED_LOOP = "Nested Loop"
    HASH_JOIN = "Hash Join"
    MERGE_JOIN = "Merge Join"
    SORT = "Sort"
    INCREMENTAL_SORT = "Incremental Sort"
    HASH = "Hash"
    AGGREGATE = "Aggregate"
    GROUP_AGGREGATE = "GroupAggregate"
    HASH_AGGREGATE = "HashAggregate"
    MIXED_AGGREGATE = "MixedAggregate"
    GROUP = "Group"
    WINDOW_AGG = "WindowAgg"
    LIMIT = "Limit"
    UNIQUE = "Unique"
    APPEND = "Append"
    MERGE_APPEND = "Merge Append"
    RESULT = "Result"
    MATERIALIZE = "Materialize"
    MEMOIZE = "Memoize"
    GATHER = "Gather"
    GATHER_MERGE = "Gather Merge"
    SETOP = "SetOp"
    MODIFY_TABLE = "ModifyTable"
    OTHER = "Other"

    @classmethod
    def of(cls, node_type: str) -> "NodeKind":
        member = cls._value2member_map_.get(node_type)
        if member is None or member is cls.OTHER:
            return cls.OTHER
        return member  # type: ignore[return-value]


SCAN_KINDS = frozenset(
    {
        NodeKind.SEQ_SCAN,
        NodeKind.INDEX_SCAN,
        NodeKind.INDEX_ONLY_SCAN,
        NodeKind.BITMAP_INDEX_SCAN,
        NodeKind.BITMAP_HEAP_SCAN,
        NodeKind.TID_SCAN,
        NodeKind.CTE_SCAN,
        NodeKind.SUBQUERY_SCAN,
        NodeKind.FUNCTION_SCAN,
        NodeKind.VALUES_SCAN,
        NodeKind.WORKTABLE_SCAN,
        NodeKind.FOREIGN_SCAN,
        NodeKind.MODIFY_TABLE,
    }
)
JOIN_KINDS = frozenset({NodeKind.NESTED_LOOP, NodeKind.HASH_JOIN, NodeKind.MERGE_JOIN})
SORT_KINDS = frozenset({NodeKind.SORT, NodeKind.INCREMENTAL_SORT})
AGGREGATE_KINDS = frozenset(
    {
        NodeKind.AGGREGATE,
        NodeKind.GROUP_AGGREGATE,
        NodeKind.HASH_AGGREGATE,
        NodeKind.MIXED_AGGREGATE,
        NodeKind.GROUP,
    }
)


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}


class LocalizedText(NamedTuple):
    """One fact in both supported presentations."""

    ru: str
    en: str

    def get(self, lang: str) -> str:
        return self.ru if lang == "ru" else self.en


# ---------- Operator detail payloads ----------


class _Payload:
    """camelCase serialization shared by the small record types below."""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if value is None:
                continue
            out[_camel(f.name)] = list(value) if isinstance(value, tuple) else value
        return out


@dataclass(frozen=True)
class BufferCounters(_Payload):
    shared_hit_blocks: Optional[int] = None
    shared_read_blocks: Optional[int] = None
    shared_dirtied_blocks: Optional[int] = None
    shared_written_blocks: Optional[int] = None
    temp_read_blocks: Optional[int] = None
    temp_written_blocks: Optional[int] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


@dataclass(frozen=True)
class ScanDetails(_Payload):
    relation_name: Optional[str] = None
    schema: Optional[str] = None
    alias: Optional[str] = None
    index_name: Optional[str] = None
    index_cond: Optional[str] = None
    recheck_cond: Optional[str] = None
    scan_direction: Optional[str] = None
    rows_removed_by_index_recheck: Optional[int] = None
    exact_heap_blocks: Optional[int] = None
    lossy_heap_blocks: Optional[int] = None


@dataclass(frozen=True)
class JoinDetails(_Payload):
    join_type: Optional[str] = None
    hash_cond: Optional[str] = None
    merge_cond: Optional[str] = None
    join_filter: Optional[str] = None
    rows_removed_by_join_filter: Optional[int] = None
    inner_unique: Optional[bool] = None


@dataclass(frozen=True)
class SortDetails(_Payload):
    sort_key: Tuple[str, ...] = ()
    sort_method: Optional[str] = None
    sort_space_used: Optional[int] = None
    sort_space_type: Optional[str] = None

    @property
    def spilled_to_disk(self) -> bool:
        if (self.sort_space_type or "").lower() == "disk":
            return True
        return "external" in (self.sort_method or "").lower()


@dataclass(frozen=True)
class HashDetails(_Payload):
    hash_buckets: Optional[int] = None
    original_hash_buckets: Optional[int] = None
    hash_batches: Optional[int] = None
    original_hash_batches: Optional[int] = None
    peak_memory_usage: Optional[int] = None


@dataclass(frozen=True)
class AggregateDetails(_Payload):
    strategy: Optional[str] = None
    group_key: Tuple[str, ...] = ()


NodeDetails = Union[ScanDetails, JoinDetails, SortDetails, HashDetails, AggregateDetails]


def details_class_for(kind: NodeKind):
    """Pick the payload type for a node kind (``None`` when only a scan target could apply)."""
    if kind in JOIN_KINDS:
        return JoinDetails
    if kind in SORT_KINDS:
        return SortDetails
    if kind is NodeKind.HASH:
        return HashDetails
    if kind in AGGREGATE_KINDS:
        return AggregateDetails
    if kind in SCAN_KINDS:
        return ScanDetails
    return None


# ---------- Plan tree ----------


@dataclass(frozen=True)
class NodeMetrics(_Payload):
    """Derived values computed by the diagnostic engine."""

    exclusive_time: Optional[float] = None
    time_percentage: Optional[float] = None
    rows_estimate_ratio: Optional[float] = None
    is_bottleneck: bool = False
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PlanNode:
    """One operator of the execution plan."""

    id: int
    node_type: str
    startup_cost: float
    total_cost: float
    plan_rows: int
    plan_width: int
    actual_startup_time: Optional[float] = None
    actual_total_time: Optional[float] = None
    actual_rows: Optional[Number] = None
    actual_loops: Optional[int] = None
    buffers: Optional[BufferCounters] = None
    filter: Optional[str] = None
    rows_removed_by_filter: Optional[int] = None
    parallel_aware: bool = False
    partial_mode: Optional[str] = None
    parent_relationship: Optional[str] = None
    subplan_name: Optional[str] = None
    details: Optional[NodeDetails] = None
    children: Tuple["PlanNode", ...] = ()
    metrics: Optional[NodeMetrics] = None

    @property
    def kind(self) -> NodeKind:
        return NodeKind.of(self.node_type)

    @property
    def has_actuals(self) -> bool:
        return self.actual_loops is not None

    @property
    def executed(self) -> bool:
        return bool(self.actual_loops)

    def _detail(self, name: str) -> Any:
        return getattr(self.details, name, None)

    @property
    def relation_name(self) -> Optional[str]:
        return self._detail("relation_name")

    @property
    def alias(self) -> Optional[str]:
        return self._detail("alias")

    @property
    def schema(self) -> Optional[str]:
        return self._detail("schema")

    @property
    def index_name(self) -> Optional[str]:
        return self._detail("index_name")

    @property
    def qualified_relation(self) -> Optional[str]:
        if not self.relation_name:
            return None
        if self.schema:
            return f"{self.schema}.{self.relation_name}"
        return self.relation_name

    def inclusive_time(self, loop_aware: bool = True, workers: float = 1.0) -> Optional[float]:
        """Total time spent in this subtree, in milliseconds.

        ``workers`` is the number of parallel processes sharing this node's
        loops; only the loops beyond one per worker count as rescans.
        """
        if self.actual_total_time is None:
            return None
        if not loop_aware:
            return self.actual_total_time
        loops = self.actual_loops or 0
        if not loops:
            return 0.0
        return self.actual_total_time * max(loops / workers, 1.0)

    def total_actual_rows(self) -> Optional[float]:
        if self.actual_rows is None:
            return None
        return self.actual_rows * (self.actual_loops or 0)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "nodeType": self.node_type,
            "startupCost": self.startup_cost,
            "totalCost": self.total_cost,
            "planRows": self.plan_rows,
            "planWidth": self.plan_width,
            "actualStartupTime": self.actual_startup_time,
            "actualTotalTime": self.actual_total_time,
            "actualRows": self.actual_rows,
            "actualLoops": self.actual_loops,
            "filter": self.filter,
            "rowsRemovedByFilter": self.rows_removed_by_filter,
            "parallelAware": True if self.parallel_aware else None,
            "partialMode": self.partial_mode,
            "parentRelationship": self.parent_relationship,
            "subplanName": self.subplan_name,
        }
        out = _compact(out)
        if self.buffers is not None:
            out.update(self.buffers.to_dict())
        if self.details is not None:
            out.update(self.details.to_dict())
        if self.metrics is not None:
            out.update(self.metrics.to_dict())
        out["children"] = [c.to_dict() for c in self.children]
        return out


def iter_preorder(node: PlanNode) -> Iterator[PlanNode]:
    """Yield nodes depth-first, parent before children, children in order."""
    stack: List[PlanNode] = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


# ---------- Analysis output ----------


@dataclass(frozen=True)
class OperationStat:
    node_type: str
    count: int
    total_time: float
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeType": self.node_type,
            "count": self.count,
            "totalTime": self.total_time,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class PlanSummary:
    execution_time: float
    total_rows: float
    estimation_accuracy: float
    top_operations: Tuple[OperationStat, ...]
    has_seq_scans: bool
    has_estimation_errors: bool
    planning_time: Optional[float] = None
    node_count: int = 0
    has_analyze: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "executionTime": self.execution_time,
                "planningTime": self.planning_time,
                "totalRows": self.total_rows,
                "estimationAccuracy": self.estimation_accuracy,
                "topOperations": [op.to_dict() for op in self.top_operations],
                "hasSeqScans": self.has_seq_scans,
                "hasEstimationErrors": self.has_estimation_errors,
                "nodeCount": self.node_count,
                "hasAnalyze": self.has_analyze,
            }
        )


@dataclass(frozen=True)
class Recommendation:
    """Single finding produced by a rule; immutable once built."""

    id: str
    rule_id: str
    severity: Severity
    title: LocalizedText
    issue: LocalizedText
    explanation: LocalizedText
    suggestion: LocalizedText
    node_id: Optional[int] = None
    sql: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[int, float]:
        node_order = float("inf") if self.node_id is None else float(self.node_id)
        return (self.severity.rank, node_order)

    def to_dict(self) -> Dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "ruleId": self.rule_id,
                "severity": self.severity.value,
                "title": self.title.ru,
                "titleEn": self.title.en,
                "nodeId": self.node_id,
                "issue": self.issue.ru,
                "issueEn": self.issue.en,
                "explanation": self.explanation.ru,
                "explanationEn": self.explanation.en,
                "suggestion": self.suggestion.ru,
                "suggestionEn": self.suggestion.en,
                "sql": self.sql,
            }
        )


@dataclass(frozen=True)
class ParseResult:
    plan: PlanNode
    execution_time: Optional[float] = None
    planning_time: Optional[float] = None
    format: str = "text"


@dataclass(frozen=True)
class AnalysisResult:
    plan: PlanNode
    summary: PlanSummary
    recommendations: Tuple[Recommendation, ...]
    raw_plan: str
    format: str = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "summary": self.summary.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "rawPlan": self.raw_plan,
            "format": self.format,
        }
