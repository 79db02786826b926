"""
FastAPI application entry point.

Mounts routers and wires logging, CORS, rate limiting and metrics.
"""

import logging
import time

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from pg_index_advisor.core.auth import verify_token
from pg_index_advisor.core.config import settings
from pg_index_advisor.core.errors import Forbidden, http_status_for
from pg_index_advisor.core.metrics import init_metrics, metrics_exposition, observe_request
from pg_index_advisor.core.observability import configure_logging, configure_tracing, correlation_id_ctx
from pg_index_advisor.routers import analyze, explain, health

configure_logging()
configure_tracing()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="PostgreSQL Plan Advisor",
    description="Parses EXPLAIN / EXPLAIN ANALYZE output and recommends optimizations",
    version=settings.VERSION,
)

# Configure rate limiter
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.RATE_LIMIT])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Rate limit errors in the same envelope as analysis errors, plus retry headers."""
    return Response(
        content='{"success": false, "error": "Слишком много запросов", "errorEn": "Rate limit exceeded. Please try again later."}',
        status_code=429,
        headers={
            "Content-Type": "application/json",
            "X-RateLimit-Limit": str(exc.detail.split()[0]) if exc.detail else "Unknown",
            "X-RateLimit-Reset": "60",  # seconds
            "Retry-After": "60",
        },
    )


@app.exception_handler(Forbidden)
async def forbidden_handler(request: Request, exc: Forbidden):
    return JSONResponse(
        content=exc.to_dict(),
        status_code=http_status_for(exc),
        headers={"WWW-Authenticate": "Bearer"},
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add SlowAPI middleware for rate limit headers
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    start = time.time()
    rid = request.headers.get("x-request-id", str(int(start * 1000000)))
    token = correlation_id_ctx.set(rid)
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            "request failed",
            extra={"method": request.method, "path": request.url.path, "dur_ms": int((time.time() - start) * 1000)},
        )
        raise
    finally:
        correlation_id_ctx.reset(token)

    duration_ms = int((time.time() - start) * 1000)
    route = request.scope.get("route")
    route_tmpl = getattr(route, "path", request.url.path)
    observe_request(route_tmpl, request.method, response.status_code, duration_ms / 1000.0)
    logger.info(
        "%s %s -> %d",
        request.method,
        request.url.path,
        response.status_code,
        extra={"rid": rid, "status": response.status_code, "dur_ms": duration_ms},
    )
    response.headers["x-request-id"] = rid
    return response


# Initialize metrics once on startup
init_metrics()


@app.get("/metrics")
async def metrics():
    if not settings.METRICS_ENABLED:
        return Response(status_code=404)
    data, content_type = metrics_exposition()
    return Response(content=data, media_type=content_type)


# Health endpoints are public (no auth required)
app.include_router(health.router, tags=["health"])

# verify_token checks AUTH_ENABLED at request time
app.include_router(analyze.router, prefix="/api/v1", tags=["analyze"], dependencies=[Depends(verify_token)])
app.include_router(explain.router, prefix="/api/v1", tags=["explain"], dependencies=[Depends(verify_token)])


@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {
        "name": "PostgreSQL Plan Advisor",
        "version": settings.VERSION,
        "status": "running",
        "docs": "/docs",
    }
