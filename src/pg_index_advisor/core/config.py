"""
Application configuration management.
Loads settings from environment variables (via .env if present).
"""

import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv

# Load .env once at import time (real OS env still wins if set)
load_dotenv(override=False)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    # Application environment
    APP_ENV: str = os.getenv("APP_ENV", "development")
    VERSION: str = "1.0.0"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON: bool = _env_bool("LOG_JSON", "false")

    # API configuration
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_KEY: str = os.getenv("API_KEY", "dev-key-12345")
    AUTH_ENABLED: bool = _env_bool("AUTH_ENABLED", "false")
    CORS_ALLOW_ORIGINS: str = os.getenv("CORS_ALLOW_ORIGINS", "*")
    RATE_LIMIT: str = os.getenv("RATE_LIMIT", "100/minute")

    # Development settings
    DEBUG: bool = _env_bool("DEBUG", "true")

    # LLM configuration (explanation collaborator)
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "dummy")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "llama2")
    LLM_TIMEOUT_S: int = int(os.getenv("LLM_TIMEOUT_S", "30"))
    OLLAMA_HOST: str = os.getenv("OLLAMA_HOST", "http://localhost:11434")

    # Metrics configuration
    METRICS_ENABLED: bool = _env_bool("METRICS_ENABLED", "false")
    METRICS_NAMESPACE: str = os.getenv("METRICS_NAMESPACE", "pgadvisor")
    METRICS_BUCKETS: str = os.getenv("METRICS_BUCKETS", "0.001,0.005,0.01,0.025,0.05,0.1,0.25,0.5,1,2")

    # Tracing (OpenTelemetry OTLP export)
    TRACING_ENABLED: bool = _env_bool("TRACING_ENABLED", "false")
    OTEL_EXPORTER_OTLP_ENDPOINT: str = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")

    # Input limits
    MAX_PLAN_BYTES: int = int(os.getenv("MAX_PLAN_BYTES", str(5 * 1024 * 1024)))

    # Analysis thresholds
    SEQ_SCAN_MIN_ROWS: int = int(os.getenv("SEQ_SCAN_MIN_ROWS", "1000"))
    SEQ_SCAN_CRITICAL_ROWS: int = int(os.getenv("SEQ_SCAN_CRITICAL_ROWS", "10000"))
    SEQ_SCAN_MIN_TIME_PCT: float = float(os.getenv("SEQ_SCAN_MIN_TIME_PCT", "1"))
    MISESTIMATE_HIGH: float = float(os.getenv("MISESTIMATE_HIGH", "10"))
    MISESTIMATE_LOW: float = float(os.getenv("MISESTIMATE_LOW", "0.1"))
    MISESTIMATE_MIN_ROWS: int = int(os.getenv("MISESTIMATE_MIN_ROWS", "100"))
    ACCURACY_BAND_LOW: float = float(os.getenv("ACCURACY_BAND_LOW", "0.5"))
    ACCURACY_BAND_HIGH: float = float(os.getenv("ACCURACY_BAND_HIGH", "2"))
    BOTTLENECK_PCT: float = float(os.getenv("BOTTLENECK_PCT", "20"))
    PASSTHROUGH_CHILD_SHARE: float = float(os.getenv("PASSTHROUGH_CHILD_SHARE", "0.95"))
    NESTED_LOOP_MIN_LOOPS: int = int(os.getenv("NESTED_LOOP_MIN_LOOPS", "1000"))
    NESTED_LOOP_MIN_INNER_COST: float = float(os.getenv("NESTED_LOOP_MIN_INNER_COST", "10"))
    PLANNING_OVERHEAD_MIN_MS: float = float(os.getenv("PLANNING_OVERHEAD_MIN_MS", "10"))
    TOP_OPERATIONS_LIMIT: int = int(os.getenv("TOP_OPERATIONS_LIMIT", "5"))
    # Postgres reports per-loop averages; multiply by loops when aggregating
    LOOP_AWARE_TIMING: bool = _env_bool("LOOP_AWARE_TIMING", "true")

    # ---- Convenience helpers ----
    @property
    def cors_origins(self) -> List[str]:
        return [s.strip() for s in self.CORS_ALLOW_ORIGINS.split(",") if s.strip()] or ["*"]


settings = Settings()


@dataclass(frozen=True)
class AnalyzerOptions:
    """Threshold snapshot handed to the diagnostic engine.

    Defaults mirror ``Settings``; tests and callers build their own instance
    to tune individual thresholds without touching the environment.
    """

    seq_scan_min_rows: int = 1000
    seq_scan_critical_rows: int = 10000
    seq_scan_min_time_pct: float = 1.0
    misestimate_high: float = 10.0
    misestimate_low: float = 0.1
    misestimate_min_rows: int = 100
    accuracy_band_low: float = 0.5
    accuracy_band_high: float = 2.0
    bottleneck_pct: float = 20.0
    passthrough_child_share: float = 0.95
    nested_loop_min_loops: int = 1000
    nested_loop_min_inner_cost: float = 10.0
    planning_overhead_min_ms: float = 10.0
    top_operations_limit: int = 5
    loop_aware_timing: bool = True

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "AnalyzerOptions":
        return cls(
            seq_scan_min_rows=s.SEQ_SCAN_MIN_ROWS,
            seq_scan_critical_rows=s.SEQ_SCAN_CRITICAL_ROWS,
            seq_scan_min_time_pct=s.SEQ_SCAN_MIN_TIME_PCT,
            misestimate_high=s.MISESTIMATE_HIGH,
            misestimate_low=s.MISESTIMATE_LOW,
            misestimate_min_rows=s.MISESTIMATE_MIN_ROWS,
            accuracy_band_low=s.ACCURACY_BAND_LOW,
            accuracy_band_high=s.ACCURACY_BAND_HIGH,
            bottleneck_pct=s.BOTTLENECK_PCT,
            passthrough_child_share=s.PASSTHROUGH_CHILD_SHARE,
            nested_loop_min_loops=s.NESTED_LOOP_MIN_LOOPS,
            nested_loop_min_inner_cost=s.NESTED_LOOP_MIN_INNER_COST,
            planning_overhead_min_ms=s.PLANNING_OVERHEAD_MIN_MS,
            top_operations_limit=s.TOP_OPERATIONS_LIMIT,
            loop_aware_timing=s.LOOP_AWARE_TIMING,
        )
