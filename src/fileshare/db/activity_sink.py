"""Supabase-backed ActivitySink implementation.

Writes share activity events to ``share_activity`` via PostgREST. Emit is
fire-and-forget: DB errors are logged but never propagate to callers.

Event payloads are built from ``ShareActivityEvent.to_dict`` (tokens
already redacted) and scrubbed once more for credential-like keys before
persistence.
"""

from __future__ import annotations

import logging
from typing import Any

from fileshare.sharing.audit import ShareActivityEvent

from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

# Keys that must never appear in persisted payloads.
_SENSITIVE_KEYS = frozenset({
    "authorization",
    "apikey",
    "service_role_key",
    "signing_secret",
    "signature",
    "token",
    "secret",
    "password",
})


def _sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Copy ``payload`` with sensitive keys redacted, recursively."""
    sanitized: dict[str, Any] = {}
    for key, value in payload.items():
        if key.lower() in _SENSITIVE_KEYS:
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_payload(value)
        else:
            sanitized[key] = value
    return sanitized


class SupabaseActivitySink:
    """ActivitySink backed by ``share_activity``.

    emit() is fire-and-forget: errors are logged but never raised.
    """

    TABLE = "share_activity"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def emit(self, event: ShareActivityEvent) -> None:
        try:
            data = event.to_dict()
            row = {
                "event_type": event.event_type,
                "file_id": event.file_id,
                "share_id": event.share_id,
                "payload": _sanitize_payload(data),
                "created_at": data["timestamp"],
            }
            await self._client.insert(self.TABLE, row)
        except Exception:
            logger.exception(
                "Activity emit failed for event=%s file=%s",
                event.event_type,
                event.file_id or "?",
            )
