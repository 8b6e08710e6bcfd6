"""
Prometheus Metrics for Observability

Tracks workflow stage latency, upstream API calls, retries and
generation polling. Exposed on /api/metrics for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Latency per workflow stage (matting, generation, fusion, storage...)
stage_latency_seconds = Histogram(
    "fusion_stage_latency_seconds",
    "Time spent in each workflow stage",
    labelnames=["stage", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Upstream API calls (stability, piapi, openrouter, storage, download)
upstream_api_calls_total = Counter(
    "fusion_upstream_api_calls_total",
    "Total number of upstream API calls",
    labelnames=["service", "http_status"]
)

upstream_retries_total = Counter(
    "fusion_upstream_retries_total",
    "Upstream calls retried after a 5xx or network error",
    labelnames=["service", "reason"]
)

generation_poll_attempts = Histogram(
    "fusion_generation_poll_attempts",
    "Number of status polls before a generation task finished",
    labelnames=["provider", "outcome"],
    buckets=[1, 2, 5, 10, 20, 40, 80]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Application Info
app_info = Info(
    "fusion_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("matting"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        stage_latency_seconds.labels(stage=stage, status=status).observe(time.time() - start)


def record_upstream_call(service: str, http_status) -> None:
    """Record an upstream call; http_status may be "network" for transport errors."""
    upstream_api_calls_total.labels(service=service, http_status=str(http_status)).inc()


def record_upstream_retry(service: str, reason: str) -> None:
    upstream_retries_total.labels(service=service, reason=reason).inc()


def record_poll_attempts(provider: str, outcome: str, attempts: int) -> None:
    generation_poll_attempts.labels(provider=provider, outcome=outcome).observe(attempts)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
