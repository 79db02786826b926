"""Prometheus metrics plumbing (opt-in).

When METRICS_ENABLED=false, this module should not register collectors.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from pg_index_advisor.core.config import settings

_registry: CollectorRegistry | None = None
_c_requests: Counter | None = None
_h_latency: Histogram | None = None
_h_analysis: Histogram | None = None
_c_analysis_failures: Counter | None = None
_c_recommendations: Counter | None = None
_h_llm_latency: Histogram | None = None


def _buckets() -> list[float]:
    try:
        return [float(x) for x in (settings.METRICS_BUCKETS or "").split(",") if x]
    except ValueError:
        return [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5]


def _enabled() -> bool:
    return settings.METRICS_ENABLED and _registry is not None


def init_metrics() -> None:
    global _registry, _c_requests, _h_latency, _h_analysis, _c_analysis_failures, _c_recommendations, _h_llm_latency
    if not settings.METRICS_ENABLED:
        return
    if _registry is not None:
        return  # avoid duplicate collectors on reload
    _registry = CollectorRegistry()
    ns = settings.METRICS_NAMESPACE
    buckets = _buckets()
    _c_requests = Counter(
        f"{ns}_requests_total",
        "HTTP requests",
        labelnames=("route", "method", "status"),
        registry=_registry,
    )
    _h_latency = Histogram(
        f"{ns}_request_latency_seconds",
        "HTTP request latency",
        labelnames=("route", "method", "status"),
        buckets=buckets,
        registry=_registry,
    )
    _h_analysis = Histogram(
        f"{ns}_analysis_seconds",
        "Parse + analyze duration",
        labelnames=("format",),
        buckets=buckets,
        registry=_registry,
    )
    _c_analysis_failures = Counter(
        f"{ns}_analysis_failures_total",
        "Failed analyses by error code",
        labelnames=("code",),
        registry=_registry,
    )
    _c_recommendations = Counter(
        f"{ns}_recommendations_total",
        "Recommendations emitted",
        labelnames=("rule", "severity"),
        registry=_registry,
    )
    _h_llm_latency = Histogram(
        f"{ns}_llm_latency_seconds",
        "LLM generation latency",
        buckets=buckets,
        registry=_registry,
    )


def observe_request(route: str, method: str, status: int, dur_s: float) -> None:
    if not _enabled():
        return
    # Keep labels low-cardinality: route template paths only
    _c_requests.labels(route=route, method=method, status=str(status)).inc()
    _h_latency.labels(route=route, method=method, status=str(status)).observe(dur_s)


def observe_analysis(fmt: str, seconds: float, recommendations=()) -> None:
    if not _enabled():
        return
    _h_analysis.labels(format=fmt).observe(max(seconds, 0.0))
    for rec in recommendations:
        _c_recommendations.labels(rule=rec.rule_id, severity=rec.severity.value).inc()


def count_analysis_failure(code: str) -> None:
    if not _enabled():
        return
    _c_analysis_failures.labels(code=code).inc()


def observe_llm_latency(seconds: float) -> None:
    if not _enabled():
        return
    _h_llm_latency.observe(max(seconds, 0.0))


def metrics_exposition() -> tuple[bytes, str]:
    if not _enabled():
        return (b"metrics disabled", CONTENT_TYPE_LATEST)
    data = generate_latest(_registry)
    return (data, CONTENT_TYPE_LATEST)
