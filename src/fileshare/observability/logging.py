"""Structured logging configuration for fileshare.

Configures structlog for JSON-formatted, request-ID-correlated logging.
Modules keep using ``logging.getLogger(__name__)``; stdlib records are
rendered through structlog's ``ProcessorFormatter`` so both paths end up
in the same output stream and format. Token-like strings are redacted in
every rendered entry.

Usage::

    from fileshare.observability.logging import configure_logging, get_logger

    configure_logging()  # Call once at app startup
    logger = get_logger()
    logger.info("share_resolved", share_code="0A1B2C3D4E5F6071", outcome="ok")
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar

import structlog

from fileshare.sharing.audit import redact_string, redact_token

# Context variable for request-scoped correlation ID.
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

_configured = False


def _add_request_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Inject the current request_id from context into every log entry."""
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict["request_id"] = rid
    return event_dict


def _add_activity(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Flatten ``extra={'activity': {...}}`` from stdlib records."""
    record = event_dict.get("_record")
    activity = getattr(record, "activity", None) if record is not None else None
    if isinstance(activity, dict):
        for key, value in activity.items():
            event_dict.setdefault(key, value)
    return event_dict


_SECRET_KEYS = frozenset({"token", "signature", "authorization"})
_FREE_TEXT_KEYS = frozenset({"event", "detail", "url"})


def _redact_secrets(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Keep capability tokens and signatures out of rendered log lines."""
    for key, value in list(event_dict.items()):
        if not isinstance(value, str):
            continue
        if key in _SECRET_KEYS:
            event_dict[key] = redact_token(value)
        elif key in _FREE_TEXT_KEYS:
            event_dict[key] = redact_string(value)
    return event_dict


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
    force: bool = False,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
            Defaults to LOG_LEVEL env var or INFO.
        json_output: If True, emit JSON lines. If False, emit
            human-readable console output. Defaults to LOG_FORMAT
            env var == "json".
        force: Reconfigure even if already configured.
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"

    shared_processors: list = [
        _add_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*shared_processors, _add_activity],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _redact_secrets,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Quiet noisy libraries.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the given name."""
    return structlog.get_logger(name)
