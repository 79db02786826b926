"""
Health check router.

Provides basic health and status endpoints.
"""

import logging

from fastapi import APIRouter

from pg_index_advisor.core.analyzer import analyze_plan
from pg_index_advisor.core.errors import PlanAdvisorError

logger = logging.getLogger(__name__)

router = APIRouter()

_PROBE_PLAN = "Result  (cost=0.00..0.01 rows=1 width=4) (actual time=0.001..0.001 rows=1 loops=1)"


@router.get("/health")
async def health_check():
    """Back-compat simple health endpoint."""
    return {"status": "ok"}


@router.get("/livez")
async def livez():
    """Liveness probe: process is up."""
    return {"status": "alive"}


@router.get("/healthz")
def healthz():
    """Readiness probe: the parser and rule engine handle a trivial plan."""
    try:
        result = analyze_plan(_PROBE_PLAN, "text")
    except PlanAdvisorError:
        logger.exception("readiness probe failed")
        return {"status": "degraded"}
    return {"status": "ok" if result.summary.node_count == 1 else "degraded"}
