"""
Prometheus Metrics for Observability

Tracks pipeline stage latency, generation API calls and mask cache
effectiveness. Exposes /api/v1/metrics for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "homedecor_stage_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
)

# Requests reaching a terminal status
requests_total = Counter(
    "homedecor_requests_total",
    "Generation requests by terminal status",
    labelnames=["status"]
)

active_requests_gauge = Gauge(
    "homedecor_active_requests",
    "Number of requests currently being processed"
)

# Generation API Calls
generation_api_calls_total = Counter(
    "homedecor_generation_api_calls_total",
    "Total number of generation API calls",
    labelnames=["status", "http_status"]
)

# Mask generation
mask_strategy_total = Counter(
    "homedecor_mask_strategy_total",
    "Masks produced per strategy",
    labelnames=["strategy"]
)

mask_cache_hits = Counter(
    "homedecor_mask_cache_hits_total",
    "Mask cache hits"
)

mask_cache_misses = Counter(
    "homedecor_mask_cache_misses_total",
    "Mask cache misses"
)

# API Request Metrics
http_requests_total = Counter(
    "homedecor_http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "homedecor_http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "homedecor_app",
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
        with track_stage_latency("conformance"):
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
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(time.time() - start)


def record_generation_call(status: str, http_status: int = 0):
    """Record a generation API call (http_status 0 means no response)."""
    generation_api_calls_total.labels(
        status=status,
        http_status=str(http_status)
    ).inc()


def record_request_started():
    active_requests_gauge.inc()


def record_request_finished(status: str):
    requests_total.labels(status=status).inc()
    active_requests_gauge.dec()


def record_mask_strategy(strategy: str):
    mask_strategy_total.labels(strategy=strategy).inc()


def record_mask_cache(hit: bool):
    if hit:
        mask_cache_hits.inc()
    else:
        mask_cache_misses.inc()


def record_http_request(method: str, endpoint: str, status: int, duration_seconds: float):
    http_requests_total.labels(method=method, endpoint=endpoint, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration_seconds)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
