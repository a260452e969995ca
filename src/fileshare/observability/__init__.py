"""Observability infrastructure for fileshare.

Provides structured logging, Prometheus metrics, and request-ID
correlation middleware.

Quick start::

    from fileshare.observability import configure_logging, get_logger
    from fileshare.observability.middleware import (
        MetricsMiddleware,
        RequestIdMiddleware,
        RequestLoggingMiddleware,
    )
    from fileshare.observability.metrics import metrics_text

    configure_logging()
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)
"""

from .logging import configure_logging, get_logger, request_id_ctx
from .metrics import metrics_text

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics_text",
    "request_id_ctx",
]
