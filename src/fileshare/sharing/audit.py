"""Share activity events and log redaction.

Records share lifecycle and access activity for the activity-logging
sink:

  - share.created, share.accessed, share.denied, shares.revoked,
    capability.issued.
  - Capability tokens and signatures are redacted from every payload;
    only a short prefix is kept for correlation.

Emission is fire-and-forget. ``emit_activity`` swallows and logs sink
failures so an unhealthy sink never blocks or fails a share operation.

This module provides:
  1. ``ShareActivityEvent``: structured activity record.
  2. ``ActivitySink``: protocol for event sinks.
  3. ``InMemoryActivitySink`` / ``LoggingActivitySink``: implementations.
  4. ``redact_token`` / ``redact_string``: token-safe logging helpers.
  5. ``emit_activity``: failure-isolating emit wrapper.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────

TOKEN_PREFIX_LENGTH = 8

# Base64url payloads and hex signatures are both long runs of URL-safe
# characters; share codes (16 chars) stay below the threshold.
_TOKEN_PATTERN = re.compile(r'[A-Za-z0-9_-]{24,}')

SHARE_CREATED = 'share.created'
SHARE_ACCESSED = 'share.accessed'
SHARE_DENIED = 'share.denied'
SHARES_REVOKED = 'shares.revoked'
CAPABILITY_ISSUED = 'capability.issued'


# ── Token redaction ──────────────────────────────────────────────────


def redact_token(token: str | None) -> str:
    """Safely truncate a token to a prefix for logging."""
    if not token or len(token) < TOKEN_PREFIX_LENGTH:
        return '<redacted>'
    return f'{token[:TOKEN_PREFIX_LENGTH]}...'


def redact_string(text: str) -> str:
    """Replace any token-like runs in ``text`` with redacted prefixes."""
    def _replace(match: re.Match) -> str:
        return redact_token(match.group(0))

    return _TOKEN_PATTERN.sub(_replace, text)


# ── Event model ───────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ShareActivityEvent:
    """Structured activity event for share operations.

    Attributes:
        event_type: One of the ``SHARE_*`` / ``CAPABILITY_*`` constants.
        file_id: File the event relates to (if known).
        share_id: Share record id (if known).
        share_code: Share code (if known). Share codes are not secrets
            in the way tokens are; they are the public link identifier.
        token_prefix: Redacted capability token (for correlation only).
        access_type: view or download, for access events.
        access_method: share_code or capability, for access events.
        actor_user_id: Owner performing a management action.
        ip_address: Requesting client address, for access events.
        detail: Denial reason or other context.
        timestamp: When the event occurred.
    """

    event_type: str
    file_id: str = ''
    share_id: str | None = None
    share_code: str = ''
    token_prefix: str = ''
    access_type: str = ''
    access_method: str = ''
    actor_user_id: str = ''
    ip_address: str = ''
    detail: str = ''
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dict safe for JSON logging."""
        return {
            'event_type': self.event_type,
            'file_id': self.file_id,
            'share_id': self.share_id,
            'share_code': self.share_code,
            'token_prefix': self.token_prefix,
            'access_type': self.access_type,
            'access_method': self.access_method,
            'actor_user_id': self.actor_user_id,
            'ip_address': self.ip_address,
            'detail': redact_string(self.detail),
            'timestamp': self.timestamp.isoformat(),
        }


# ── Sink protocol ────────────────────────────────────────────────────


class ActivitySink(Protocol):
    """Abstract activity event sink."""

    async def emit(self, event: ShareActivityEvent) -> None: ...


# ── Implementations ──────────────────────────────────────────────────


class InMemoryActivitySink:
    """Test sink that stores events in memory."""

    def __init__(self) -> None:
        self.events: list[ShareActivityEvent] = []

    async def emit(self, event: ShareActivityEvent) -> None:
        self.events.append(event)

    def find(
        self,
        event_type: str | None = None,
        file_id: str | None = None,
    ) -> list[ShareActivityEvent]:
        """Filter events by type and/or file."""
        result = self.events
        if event_type:
            result = [e for e in result if e.event_type == event_type]
        if file_id:
            result = [e for e in result if e.file_id == file_id]
        return result


class LoggingActivitySink:
    """Default sink: one structured log line per event."""

    def __init__(self, logger_name: str = 'fileshare.activity') -> None:
        self._logger = logging.getLogger(logger_name)

    async def emit(self, event: ShareActivityEvent) -> None:
        self._logger.info(event.event_type, extra={'activity': event.to_dict()})


async def emit_activity(
    sink: ActivitySink | None,
    event: ShareActivityEvent,
) -> None:
    """Emit ``event``; sink failures are logged, never raised."""
    if sink is None:
        return
    try:
        await sink.emit(event)
    except Exception:
        logger.exception(
            'Activity emit failed for event=%s file=%s',
            event.event_type,
            event.file_id or '?',
        )
