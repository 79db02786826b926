"""
PostgreSQL execution plan heuristics.

Each rule inspects the annotated plan tree and returns zero or more
``Recommendation`` objects. Rules only read derived metrics; they never
mutate the tree. ``evaluate_rules`` runs them in a fixed order,
de-duplicates by ``(node_id, rule_id)`` and sorts the result most severe
first, then by pre-order node id.
"""

import math
import re
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from pg_index_advisor.core.config import AnalyzerOptions
from pg_index_advisor.core.models import (
    HashDetails,
    LocalizedText,
    NodeKind,
    PlanNode,
    PlanSummary,
    Recommendation,
    Severity,
    SortDetails,
    SORT_KINDS,
    iter_preorder,
)
from pg_index_advisor.core.plan_metrics import node_rows

# Column referenced on the left of a comparison, e.g. "(email = ...)",
# "((status)::text = ...)", "(u.age > 30)", "(deleted_at IS NULL)"
_FILTER_COLUMN_RE = re.compile(
    r"\(+(?:\w+\.)?(?P<col>\w+)\)?(?:::[\w ]+?)?\s*(?:<>|!=|<=|>=|=|<|>|!?~~\*?|\bIS\b|\bIN\b)",
    re.IGNORECASE,
)


def extract_filter_columns(condition: Optional[str]) -> List[str]:
    """Return columns compared in a filter expression, de-duplicated in order."""
    if not condition:
        return []
    seen: List[str] = []
    for m in _FILTER_COLUMN_RE.finditer(condition):
        col = m.group("col")
        if col[0].isdigit() or col in seen:
            continue
        seen.append(col)
    return seen


def _index_name(table: str, cols: List[str]) -> str:
    safe_table = re.sub(r"[^A-Za-z0-9_]+", "_", table or "tbl")
    safe_cols = [re.sub(r"[^A-Za-z0-9_]+", "_", c) for c in cols]
    name = f"idx_{safe_table}_" + "_".join(safe_cols)
    return name.lower()[:63]  # respect PG identifier length


def create_index_sql(table: str, cols: List[str], schema: Optional[str] = None) -> str:
    target = f"{schema}.{table}" if schema else table
    return f"CREATE INDEX {_index_name(table, cols)} ON {target} ({', '.join(cols)});"


def _work_mem_mb(required_kb: float) -> int:
    """Suggested work_mem: twice the observed spill, never below 64MB."""
    return max(64, int(math.ceil(required_kb * 2 / 1024)))


def _rec(
    rule_id: str,
    severity: Severity,
    node: Optional[PlanNode],
    title: LocalizedText,
    issue: LocalizedText,
    explanation: LocalizedText,
    suggestion: LocalizedText,
    sql: Optional[str] = None,
) -> Recommendation:
    return Recommendation(
        id=rule_id if node is None else f"{rule_id}-{node.id}",
        rule_id=rule_id,
        severity=severity,
        title=title,
        issue=issue,
        explanation=explanation,
        suggestion=suggestion,
        node_id=None if node is None else node.id,
        sql=sql,
    )


# ---------- Node rules ----------


def _check_seq_scan(node: PlanNode, summary: PlanSummary, options: AnalyzerOptions) -> Optional[Recommendation]:
    if node.kind is not NodeKind.SEQ_SCAN:
        return None
    rows = node_rows(node)
    if rows < options.seq_scan_min_rows:
        return None
    pct = node.metrics.time_percentage if node.metrics else None
    if pct is not None and pct < options.seq_scan_min_time_pct:
        return None

    table = node.relation_name or "table"
    columns = extract_filter_columns(node.filter)
    sql = None
    if columns and node.relation_name:
        sql = create_index_sql(node.relation_name, columns, node.schema)
        suggestion = LocalizedText(
            ru=f"Создайте индекс по колонкам: {', '.join(columns)}",
            en=f"Create an index on columns: {', '.join(columns)}",
        )
    elif node.filter:
        suggestion = LocalizedText(
            ru="Создайте индекс по колонкам, используемым в фильтре",
            en="Create an index on the columns used in the filter",
        )
    else:
        suggestion = LocalizedText(
            ru="Проверьте, нужна ли вся таблица: добавьте условие WHERE или LIMIT и индекс под него",
            en="Check whether the whole table is needed: add a WHERE or LIMIT clause and an index to support it",
        )

    return _rec(
        "seq-scan",
        Severity.CRITICAL if rows >= options.seq_scan_critical_rows else Severity.WARNING,
        node,
        title=LocalizedText(ru=f"Sequential Scan на {table}", en=f"Sequential Scan on {table}"),
        issue=LocalizedText(
            ru=f"Последовательное сканирование {rows:,.0f} строк",
            en=f"Sequential scan of {rows:,.0f} rows",
        ),
        explanation=LocalizedText(
            ru=f"PostgreSQL читает всю таблицу {table} построчно вместо использования индекса. "
            "При большом количестве строк это значительно замедляет запрос.",
            en=f"PostgreSQL reads the entire {table} table row by row instead of using an index. "
            "With many rows, this significantly slows down the query.",
        ),
        suggestion=suggestion,
        sql=sql,
    )


def _check_estimation(node: PlanNode, summary: PlanSummary, options: AnalyzerOptions) -> Optional[Recommendation]:
    ratio = node.metrics.rows_estimate_ratio if node.metrics else None
    if ratio is None or node.actual_rows is None:
        return None
    if max(node.actual_rows, node.plan_rows) < options.misestimate_min_rows:
        return None
    if options.misestimate_low <= ratio <= options.misestimate_high:
        return None

    target = node.qualified_relation
    return _rec(
        "estimation",
        Severity.WARNING,
        node,
        title=LocalizedText(ru="Ошибка оценки планировщика", en="Planner estimation error"),
        issue=LocalizedText(
            ru=f"Ожидалось {node.plan_rows:,} строк, получено {node.actual_rows:,.0f}",
            en=f"Expected {node.plan_rows:,} rows, got {node.actual_rows:,.0f}",
        ),
        explanation=LocalizedText(
            ru="Планировщик PostgreSQL использует устаревшую статистику. "
            "Это может приводить к выбору неоптимального плана выполнения.",
            en="PostgreSQL planner uses outdated statistics. "
            "This can lead to choosing a suboptimal execution plan.",
        ),
        suggestion=LocalizedText(
            ru="Обновите статистику таблицы командой ANALYZE",
            en="Update table statistics with ANALYZE command",
        ),
        sql=f"ANALYZE {target};" if target else "ANALYZE;",
    )


def _check_nested_loop(node: PlanNode, summary: PlanSummary, options: AnalyzerOptions) -> Optional[Recommendation]:
    if node.kind is not NodeKind.NESTED_LOOP or len(node.children) < 2:
        return None
    outer, inner = node.children[0], node.children[1]
    loops = inner.actual_loops if inner.has_actuals else outer.plan_rows
    if loops < options.nested_loop_min_loops or inner.total_cost < options.nested_loop_min_inner_cost:
        return None

    inner_seq = inner.kind is NodeKind.SEQ_SCAN
    if inner.relation_name:
        suggestion = LocalizedText(
            ru=f"Добавьте индекс на таблицу {inner.relation_name} по ключу соединения",
            en=f"Add an index on table {inner.relation_name} on the join key",
        )
    else:
        suggestion = LocalizedText(
            ru="Добавьте индекс на внутреннюю таблицу по ключу соединения",
            en="Add an index on the inner table on the join key",
        )
    inner_label = inner.node_type
    return _rec(
        "nested-loop",
        Severity.CRITICAL if inner_seq else Severity.WARNING,
        node,
        title=LocalizedText(ru="Неэффективный Nested Loop", en="Inefficient Nested Loop"),
        issue=LocalizedText(
            ru=f"Nested Loop с {loops:,} итерациями и {inner_label} внутри",
            en=f"Nested Loop with {loops:,} iterations and {inner_label} inside",
        ),
        explanation=LocalizedText(
            ru="Для каждой строки внешней таблицы повторно выполняется внутренняя часть соединения. "
            "Это O(n*m) сложность.",
            en="For each row of the outer table, the inner side of the join is executed again. "
            "This is O(n*m) complexity.",
        ),
        suggestion=suggestion,
    )


def _check_sort_disk(node: PlanNode, summary: PlanSummary, options: AnalyzerOptions) -> Optional[Recommendation]:
    if node.kind not in SORT_KINDS or not isinstance(node.details, SortDetails):
        return None
    if not node.details.spilled_to_disk:
        return None

    used = node.details.sort_space_used or 0
    return _rec(
        "sort-disk",
        Severity.WARNING,
        node,
        title=LocalizedText(ru="Сортировка на диске", en="Disk-based sort"),
        issue=LocalizedText(
            ru=f"Сортировка выполняется на диске ({used} KB)",
            en=f"Sort is performed on disk ({used} KB)",
        ),
        explanation=LocalizedText(
            ru="Данные не поместились в work_mem и были сброшены на диск, "
            "что значительно медленнее сортировки в памяти.",
            en="Data didn't fit in work_mem and was spilled to disk, "
            "which is much slower than in-memory sorting.",
        ),
        suggestion=LocalizedText(
            ru="Увеличьте work_mem или добавьте индекс для сортировки",
            en="Increase work_mem or add an index for sorting",
        ),
        sql=f"SET work_mem = '{_work_mem_mb(used)}MB';",
    )


def _check_hash_batches(node: PlanNode, summary: PlanSummary, options: AnalyzerOptions) -> Optional[Recommendation]:
    if node.kind is not NodeKind.HASH or not isinstance(node.details, HashDetails):
        return None
    batches = node.details.hash_batches or 0
    if batches <= 1:
        return None

    peak = node.details.peak_memory_usage or 0
    return _rec(
        "hash-batches",
        Severity.WARNING,
        node,
        title=LocalizedText(ru="Хеш-таблица не поместилась в память", en="Hash table exceeded memory"),
        issue=LocalizedText(
            ru=f"Хеш разбит на {batches} пакетов",
            en=f"Hash split into {batches} batches",
        ),
        explanation=LocalizedText(
            ru="Хеш-таблица не поместилась в work_mem, поэтому PostgreSQL записывал пакеты во временные файлы.",
            en="The hash table did not fit in work_mem, so PostgreSQL wrote batches to temporary files.",
        ),
        suggestion=LocalizedText(
            ru="Увеличьте work_mem, чтобы хеш-таблица строилась за один пакет",
            en="Increase work_mem so the hash table is built in a single batch",
        ),
        sql=f"SET work_mem = '{_work_mem_mb(peak * batches)}MB';",
    )


def _check_bitmap_lossy(node: PlanNode, summary: PlanSummary, options: AnalyzerOptions) -> Optional[Recommendation]:
    if node.kind is not NodeKind.BITMAP_HEAP_SCAN:
        return None
    lossy = getattr(node.details, "lossy_heap_blocks", None) or 0
    if lossy <= 0:
        return None

    return _rec(
        "bitmap-lossy",
        Severity.INFO,
        node,
        title=LocalizedText(ru="Неточный Bitmap Heap Scan", en="Lossy Bitmap Heap Scan"),
        issue=LocalizedText(
            ru=f"{lossy:,} страниц обработано в неточном режиме",
            en=f"{lossy:,} heap blocks processed in lossy mode",
        ),
        explanation=LocalizedText(
            ru="Битовая карта не поместилась в work_mem и хранит только номера страниц, "
            "поэтому каждую строку приходится перепроверять.",
            en="The bitmap did not fit in work_mem and only tracks whole pages, "
            "so every row on those pages has to be rechecked.",
        ),
        suggestion=LocalizedText(
            ru="Увеличьте work_mem или сделайте условие более селективным",
            en="Increase work_mem or make the condition more selective",
        ),
    )


def _check_bottleneck(node: PlanNode, summary: PlanSummary, options: AnalyzerOptions) -> Optional[Recommendation]:
    if node.metrics is None or not node.metrics.is_bottleneck:
        return None

    pct = node.metrics.time_percentage or 0.0
    label = node.node_type + (f" ({node.relation_name})" if node.relation_name else "")
    return _rec(
        "bottleneck",
        Severity.INFO,
        node,
        title=LocalizedText(ru=f"Узкое место: {label}", en=f"Bottleneck: {label}"),
        issue=LocalizedText(
            ru=f"Операция занимает {pct:.1f}% времени выполнения",
            en=f"Operation takes {pct:.1f}% of execution time",
        ),
        explanation=LocalizedText(
            ru="Большая часть времени запроса приходится на этот узел плана.",
            en="Most of the query time is spent in this plan node.",
        ),
        suggestion=LocalizedText(
            ru="Начните оптимизацию с этой операции",
            en="Start optimizing with this operation",
        ),
    )


# ---------- Plan rules ----------


def _check_planning_overhead(root: PlanNode, summary: PlanSummary, options: AnalyzerOptions) -> List[Recommendation]:
    planning = summary.planning_time
    if not summary.has_analyze or planning is None:
        return []
    if planning < options.planning_overhead_min_ms or planning <= summary.execution_time:
        return []

    return [
        _rec(
            "planning-overhead",
            Severity.INFO,
            None,
            title=LocalizedText(ru="Долгое планирование", en="Planning dominates"),
            issue=LocalizedText(
                ru=f"Планирование {planning:.1f} мс дольше выполнения {summary.execution_time:.1f} мс",
                en=f"Planning {planning:.1f} ms exceeds execution {summary.execution_time:.1f} ms",
            ),
            explanation=LocalizedText(
                ru="Планировщик тратит больше времени, чем само выполнение запроса.",
                en="The planner spends more time than the query execution itself.",
            ),
            suggestion=LocalizedText(
                ru="Используйте подготовленные запросы или упростите запрос (меньше соединений и партиций)",
                en="Use prepared statements or simplify the query (fewer joins and partitions)",
            ),
        )
    ]


# ---------- Registry ----------

NodeCheck = Callable[[PlanNode, PlanSummary, AnalyzerOptions], Optional[Recommendation]]
PlanCheck = Callable[[PlanNode, PlanSummary, AnalyzerOptions], List[Recommendation]]


class Rule(NamedTuple):
    rule_id: str
    code: Optional[str]
    node_check: Optional[NodeCheck] = None
    plan_check: Optional[PlanCheck] = None

    def evaluate(self, root: PlanNode, summary: PlanSummary, options: AnalyzerOptions) -> List[Recommendation]:
        if self.plan_check is not None:
            return self.plan_check(root, summary, options)
        found = []
        for node in iter_preorder(root):
            rec = self.node_check(node, summary, options)
            if rec is not None:
                found.append(rec)
        return found


RULES: Tuple[Rule, ...] = (
    Rule("seq-scan", "SEQ_SCAN_LARGE", node_check=_check_seq_scan),
    Rule("estimation", "ESTIMATE_MISMATCH", node_check=_check_estimation),
    Rule("nested-loop", "NESTED_LOOP_RESCAN", node_check=_check_nested_loop),
    Rule("sort-disk", "SORT_SPILL", node_check=_check_sort_disk),
    Rule("hash-batches", "HASH_BATCHES", node_check=_check_hash_batches),
    Rule("bitmap-lossy", "BITMAP_LOSSY", node_check=_check_bitmap_lossy),
    Rule("bottleneck", "BOTTLENECK", node_check=_check_bottleneck),
    Rule("planning-overhead", None, plan_check=_check_planning_overhead),
)

_RULE_ORDER = {rule.rule_id: i for i, rule in enumerate(RULES)}
_RULE_CODES = {rule.rule_id: rule.code for rule in RULES}


def evaluate_rules(
    root: PlanNode,
    summary: PlanSummary,
    options: AnalyzerOptions,
    rules: Tuple[Rule, ...] = RULES,
) -> List[Recommendation]:
    """
    Run every rule against an annotated tree.

    Args:
        root: Annotated plan root
        summary: Plan summary built from the same tree
        options: Analysis thresholds

    Returns:
        Recommendations sorted by severity, node pre-order position, then rule order
    """
    seen = set()
    found: List[Recommendation] = []
    for rule in rules:
        for rec in rule.evaluate(root, summary, options):
            key = (rec.node_id, rec.rule_id)
            if key in seen:
                continue
            seen.add(key)
            found.append(rec)
    found.sort(key=lambda r: r.sort_key + (_RULE_ORDER.get(r.rule_id, len(_RULE_ORDER)),))
    return found


def warning_codes(recommendations: List[Recommendation]) -> Dict[int, Tuple[str, ...]]:
    """Group machine-readable warning codes by node id, in rule order."""
    by_node: Dict[int, List[str]] = {}
    for rec in sorted(recommendations, key=lambda r: _RULE_ORDER.get(r.rule_id, len(_RULE_ORDER))):
        code = _RULE_CODES.get(rec.rule_id)
        if rec.node_id is None or code is None:
            continue
        by_node.setdefault(rec.node_id, []).append(code)
    return {node_id: tuple(codes) for node_id, codes in by_node.items()}
