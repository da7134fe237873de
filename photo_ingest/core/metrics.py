"""
Prometheus Metrics for Observability

Tracks per-stage latency, upload outcomes and rendition writes.
Exposes /metrics endpoint for Prometheus scraping.
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

# Pipeline Latency - Per Stage
stage_latency_seconds = Histogram(
    "photo_stage_latency_seconds",
    "Time spent in each photo pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Upload outcomes per tier
uploads_total = Counter(
    "photo_uploads_total",
    "Total number of photo uploads processed",
    labelnames=["account_type", "status"]
)

# Storage writes per rendition kind
rendition_writes_total = Counter(
    "photo_rendition_writes_total",
    "Total number of rendition writes to storage",
    labelnames=["rendition", "status"]
)

bytes_stored_total = Counter(
    "photo_bytes_stored_total",
    "Total bytes written to storage",
    labelnames=["rendition"]
)

deletions_total = Counter(
    "photo_deletions_total",
    "Total number of rendition deletions issued",
    labelnames=["bucket", "status"]
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
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "photo_ingest_app",
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
        with track_stage_latency("thumbnail"):
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
        duration = time.time() - start
        stage_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_upload(account_type: str, status: str):
    """Record the final outcome of one upload call."""
    uploads_total.labels(account_type=account_type, status=status).inc()


def record_rendition_write(rendition: str, ok: bool, size_bytes: int = 0):
    """Record a rendition write and the bytes it stored."""
    rendition_writes_total.labels(
        rendition=rendition,
        status="success" if ok else "error"
    ).inc()
    if ok:
        bytes_stored_total.labels(rendition=rendition).inc(size_bytes)


def record_deletion(bucket: str, ok: bool):
    """Record a deletion call against a bucket."""
    deletions_total.labels(bucket=bucket, status="success" if ok else "error").inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
