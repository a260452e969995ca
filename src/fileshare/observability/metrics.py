"""Prometheus metrics for fileshare.

Metric naming follows Prometheus conventions. Share outcomes are labelled
by the stable error code so dashboards can split denials by cause.

Usage::

    from fileshare.observability.metrics import SHARE_RESOLUTIONS_TOTAL

    SHARE_RESOLUTIONS_TOTAL.labels(path="share_code", outcome="ok").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "fileshare_http_requests_total",
    "Total HTTP requests by method, path pattern, and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "fileshare_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "fileshare_http_requests_in_flight",
    "Number of HTTP requests currently being processed.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Sharing metrics
# ---------------------------------------------------------------------------

SHARE_RESOLUTIONS_TOTAL = Counter(
    "fileshare_share_resolutions_total",
    "Share resolutions by credential path and outcome code.",
    labelnames=["path", "outcome"],
    registry=REGISTRY,
)

SHARES_CREATED_TOTAL = Counter(
    "fileshare_shares_created_total",
    "Shares created.",
    registry=REGISTRY,
)

SHARE_CODE_COLLISIONS_TOTAL = Counter(
    "fileshare_share_code_collisions_total",
    "Share code unique-constraint collisions retried on insert.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Abuse control metrics
# ---------------------------------------------------------------------------

RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "fileshare_rate_limit_decisions_total",
    "Rate limiter decisions by policy.",
    labelnames=["policy", "allowed"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
