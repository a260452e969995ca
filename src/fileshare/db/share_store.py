"""Supabase-backed ShareStore implementation.

Persists shares in ``file_shares`` and access records in
``share_access_log`` via PostgREST. The check-and-increment for an access
is a single call to the ``record_share_access`` Postgres function (see
``fileshare/migrations/001_file_shares.sql``), which locks the share row
for the duration of the check, the counter update and the log insert.

Error mapping:
  - 409 on insert -> ``ShareCodeCollision`` (the registry retries).
  - Any other Supabase or transport error -> ``Unavailable``.
  - Function status codes -> the matching sharing taxonomy error.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import httpx

from fileshare.errors import (
    PermissionDenied,
    QuotaExceeded,
    ShareAccessError,
    ShareCodeCollision,
    ShareExpired,
    ShareNotFound,
    Unavailable,
)
from fileshare.sharing.model import (
    AccessLogEntry,
    AccessType,
    ClientInfo,
    Permission,
    Share,
)

from .errors import SupabaseConflictError, SupabaseError
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

_REJECTIONS: dict[str, type[ShareAccessError]] = {
    "not_found": ShareNotFound,
    "revoked": ShareExpired,
    "expired": ShareExpired,
    "quota_exceeded": QuotaExceeded,
    "permission_denied": PermissionDenied,
}

_REJECTION_DETAIL = {
    "not_found": "share not found",
    "revoked": "share has been revoked",
    "expired": "share has expired",
    "quota_exceeded": "download limit reached for this share",
    "permission_denied": "action not permitted for this share",
}


# PostgREST trims trailing zeros from fractional seconds.
_FRACTION_RE = re.compile(r"\.(\d{1,6})\d*(?=[+-]\d{2}:\d{2}$|$)")


def _parse_ts(value: str) -> datetime:
    value = value.replace("Z", "+00:00")
    value = _FRACTION_RE.sub(lambda m: "." + m.group(1).ljust(6, "0"), value, count=1)
    return datetime.fromisoformat(value)


def _share_from_row(row: dict[str, Any]) -> Share:
    return Share(
        id=str(row["id"]),
        file_id=row["file_id"],
        share_code=row["share_code"],
        shared_by=row["shared_by"],
        permissions=Permission(row["permissions"]),
        expires_at=_parse_ts(row["expires_at"]),
        max_downloads=row.get("max_downloads"),
        download_count=row.get("download_count", 0),
        view_count=row.get("view_count", 0),
        is_active=row.get("is_active", True),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _share_to_row(share: Share) -> dict[str, Any]:
    return {
        "id": share.id,
        "file_id": share.file_id,
        "share_code": share.share_code,
        "shared_by": share.shared_by,
        "permissions": share.permissions.value,
        "expires_at": share.expires_at.isoformat(),
        "max_downloads": share.max_downloads,
        "download_count": share.download_count,
        "view_count": share.view_count,
        "is_active": share.is_active,
        "created_at": share.created_at.isoformat(),
        "updated_at": share.updated_at.isoformat(),
    }


def _log_from_row(row: dict[str, Any]) -> AccessLogEntry:
    return AccessLogEntry(
        id=str(row["id"]),
        share_id=str(row["share_id"]),
        access_type=AccessType(row["access_type"]),
        ip_address=row.get("ip_address", "unknown"),
        user_agent=row.get("user_agent", "unknown"),
        referrer=row.get("referrer", "unknown"),
        accessed_at=_parse_ts(row["accessed_at"]),
    )


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate Supabase and transport failures into ``Unavailable``."""
    try:
        yield
    except SupabaseError as exc:
        logger.error("Share store %s failed: %s", operation, exc)
        raise Unavailable(f"share store {operation} failed") from exc
    except httpx.HTTPError as exc:
        logger.error("Share store %s transport error: %s", operation, type(exc).__name__)
        raise Unavailable(f"share store {operation} failed") from exc


class SupabaseShareStore:
    """ShareStore backed by ``file_shares`` / ``share_access_log``."""

    TABLE = "file_shares"
    LOG_TABLE = "share_access_log"
    RECORD_ACCESS_FN = "record_share_access"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def insert_share(self, share: Share) -> Share:
        with _store_errors("insert"):
            try:
                rows = await self._client.insert(self.TABLE, _share_to_row(share))
            except SupabaseConflictError as exc:
                raise ShareCodeCollision(share.share_code) from exc
        if not rows:
            raise Unavailable("share store insert returned no row")
        return _share_from_row(rows[0])

    async def get_by_code(self, share_code: str) -> Share | None:
        with _store_errors("lookup"):
            rows = await self._client.select(
                self.TABLE, {"share_code": share_code}, limit=1,
            )
        return _share_from_row(rows[0]) if rows else None

    async def get_by_id(self, share_id: str) -> Share | None:
        with _store_errors("lookup"):
            rows = await self._client.select(self.TABLE, {"id": share_id}, limit=1)
        return _share_from_row(rows[0]) if rows else None

    async def list_for_file(self, file_id: str) -> list[Share]:
        with _store_errors("list"):
            rows = await self._client.select(
                self.TABLE, {"file_id": file_id}, order="created_at.asc",
            )
        return [_share_from_row(r) for r in rows]

    async def deactivate_for_file(self, file_id: str, now: datetime) -> int:
        with _store_errors("revoke"):
            rows = await self._client.update(
                self.TABLE,
                {"file_id": file_id, "is_active": ("is", True)},
                {"is_active": False, "updated_at": now.isoformat()},
            )
        return len(rows)

    async def record_access(
        self,
        share_id: str,
        access_type: AccessType,
        client: ClientInfo,
        now: datetime,
    ) -> tuple[Share, AccessLogEntry]:
        with _store_errors("record_access"):
            result = await self._client.rpc(
                self.RECORD_ACCESS_FN,
                {
                    "p_share_id": share_id,
                    "p_access_type": access_type.value,
                    "p_ip_address": client.ip_address,
                    "p_user_agent": client.user_agent,
                    "p_referrer": client.referrer,
                    "p_now": now.isoformat(),
                },
            )

        if not isinstance(result, dict):
            raise Unavailable("unexpected record_share_access response")

        status = result.get("status")
        if status == "ok":
            return _share_from_row(result["share"]), _log_from_row(result["log"])
        if status in _REJECTIONS:
            raise _REJECTIONS[status](_REJECTION_DETAIL[status])
        raise Unavailable(f"unexpected record_share_access status: {status!r}")

    async def list_access_log(self, share_id: str) -> list[AccessLogEntry]:
        with _store_errors("list_access_log"):
            rows = await self._client.select(
                self.LOG_TABLE, {"share_id": share_id}, order="accessed_at.asc",
            )
        return [_log_from_row(r) for r in rows]
