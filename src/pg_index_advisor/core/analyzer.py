"""
Parse-then-analyze pipeline.

``analyze`` is the pure diagnostic step over an already parsed tree;
``analyze_plan``/``analyze_request`` add input handling, and
``build_response`` wraps everything in the success/error envelope shared by
the HTTP layer and the CLI.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from pg_index_advisor.core import metrics
from pg_index_advisor.core.config import AnalyzerOptions
from pg_index_advisor.core.errors import (
    InternalError,
    InvalidInput,
    PlanAdvisorError,
    http_status_for,
)
from pg_index_advisor.core.models import (
    AnalysisResult,
    ParseResult,
    PlanNode,
    PlanSummary,
    Recommendation,
)
from pg_index_advisor.core.observability import trace_operation
from pg_index_advisor.core.plan_heuristics import evaluate_rules, warning_codes
from pg_index_advisor.core.plan_metrics import (
    annotate_plan,
    attach_warnings,
    build_summary,
    effective_execution_time,
)
from pg_index_advisor.core.plan_parser import parse_plan

logger = logging.getLogger(__name__)


def analyze(
    parsed: ParseResult,
    options: Optional[AnalyzerOptions] = None,
) -> Tuple[PlanNode, PlanSummary, List[Recommendation]]:
    """
    Compute derived metrics and recommendations for a parsed plan.

    The parsed tree is not modified, so the same ``ParseResult`` can be
    analyzed repeatedly (e.g. with different thresholds).

    Returns:
        Tuple of (annotated plan, summary, recommendations)
    """
    options = options or AnalyzerOptions.from_settings()
    execution_time = effective_execution_time(parsed, options)
    annotated = annotate_plan(parsed.plan, execution_time, options)
    summary = build_summary(annotated, execution_time, parsed.planning_time, options)
    recommendations = evaluate_rules(annotated, summary, options)
    annotated = attach_warnings(annotated, warning_codes(recommendations))
    return annotated, summary, recommendations


@trace_operation("analyze_plan")
def analyze_plan(
    text: Any,
    fmt: Optional[str] = "auto",
    options: Optional[AnalyzerOptions] = None,
) -> AnalysisResult:
    """
    Parse raw EXPLAIN output and analyze it.

    Raises:
        InvalidInput: empty, non-string or oversized input
        MalformedInput: neither grammar can reconstruct a tree
        InternalError: a metric or rule failed on a successfully parsed tree
    """
    start = time.time()
    try:
        parsed = parse_plan(text, fmt)
        plan, summary, recommendations = analyze(parsed, options)
    except PlanAdvisorError as e:
        metrics.count_analysis_failure(e.code.value)
        raise
    except Exception as e:
        logger.error("internal error while analyzing plan", exc_info=True)
        err = InternalError(f"{type(e).__name__}: {e}")
        metrics.count_analysis_failure(err.code.value)
        raise err from e

    metrics.observe_analysis(parsed.format, time.time() - start, recommendations)
    logger.info(
        "analyzed %s plan: %d nodes, %d recommendations",
        parsed.format,
        summary.node_count,
        len(recommendations),
    )
    return AnalysisResult(
        plan=plan,
        summary=summary,
        recommendations=tuple(recommendations),
        raw_plan=text,
        format=parsed.format,
    )


def analyze_request(payload: Any, options: Optional[AnalyzerOptions] = None) -> AnalysisResult:
    """Analyze a ``{"plan": str, "format": "json" | "text" | "auto"}`` request body."""
    if not isinstance(payload, dict):
        raise InvalidInput("request body must be an object")
    return analyze_plan(payload.get("plan"), payload.get("format") or "auto", options)


def build_response(
    payload: Any,
    options: Optional[AnalyzerOptions] = None,
) -> Tuple[int, Dict[str, Any]]:
    """
    Run a request through the pipeline and return ``(status, body)``.

    400 for input/parse failures, 500 for internal ones; internal details are
    never included in the body.
    """
    try:
        result = analyze_request(payload, options)
    except PlanAdvisorError as e:
        return http_status_for(e), e.to_dict()
    return 200, {"success": True, "data": result.to_dict()}
