"""
Logging and tracing setup.

Provides:
- Structured JSON logging with request correlation IDs
- OpenTelemetry spans around analysis operations (exported only when
  TRACING_ENABLED is set)
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Callable, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from pg_index_advisor.core.config import settings

# Correlation ID context variable
correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")

_RESERVED = {
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName",
}


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the current request's correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = correlation_id_ctx.get()
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record):
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Extra fields (correlation_id included)
        for key, value in record.__dict__.items():
            if key not in _RESERVED and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Install a single root handler; safe to call more than once."""
    level = (level or settings.LOG_LEVEL).upper()
    json_output = settings.LOG_JSON if json_output is None else json_output

    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s")
        )

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_pg_index_advisor", False):
            root.removeHandler(existing)
    handler._pg_index_advisor = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))


# ---------- Tracing ----------

_tracing_configured = False


def configure_tracing() -> None:
    global _tracing_configured
    if _tracing_configured:
        return
    resource = Resource.create(
        {
            SERVICE_NAME: "pg-index-advisor",
            SERVICE_VERSION: settings.VERSION,
        }
    )
    provider = TracerProvider(resource=resource)
    if settings.TRACING_ENABLED:
        exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _tracing_configured = True


def trace_operation(operation_name: str) -> Callable:
    """
    Decorator that wraps a call in a span named ``operation_name``.

    Without a configured provider the OpenTelemetry API hands out no-op spans.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            tracer = trace.get_tracer(func.__module__)
            with tracer.start_as_current_span(operation_name) as span:
                correlation_id = correlation_id_ctx.get()
                if correlation_id:
                    span.set_attribute("correlation_id", correlation_id)
                try:
                    result = func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                    raise

        return wrapper

    return decorator
