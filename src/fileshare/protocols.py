"""Store and provider protocol interfaces for dependency injection.

These protocols define the contracts that concrete implementations
(InMemory for local dev and tests, Supabase for non-local) must satisfy.
The app factory accepts any implementation that matches these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from fileshare.sharing.model import AccessLogEntry, AccessType, ClientInfo, Share


@dataclass(frozen=True, slots=True)
class StoredFile:
    """File metadata as seen by the sharing core."""

    id: str
    owner_id: str
    original_name: str
    mime_type: str = 'application/octet-stream'
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'original_name': self.original_name,
            'mime_type': self.mime_type,
            'size': self.size,
        }


@runtime_checkable
class ShareStore(Protocol):
    """Durable share records and their access log.

    ``insert_share`` raises ``ShareCodeCollision`` when the share code is
    taken. ``record_access`` is the single atomic check-and-increment
    primitive: it re-checks usability, bumps the matching counter and
    appends one log entry, or raises the matching taxonomy error with no
    mutation at all. Transient failures raise ``Unavailable``.
    """

    async def insert_share(self, share: Share) -> Share: ...
    async def get_by_code(self, share_code: str) -> Share | None: ...
    async def get_by_id(self, share_id: str) -> Share | None: ...
    async def list_for_file(self, file_id: str) -> list[Share]: ...
    async def deactivate_for_file(self, file_id: str, now: datetime) -> int: ...
    async def record_access(
        self,
        share_id: str,
        access_type: AccessType,
        client: ClientInfo,
        now: datetime,
    ) -> tuple[Share, AccessLogEntry]: ...
    async def list_access_log(self, share_id: str) -> list[AccessLogEntry]: ...


@runtime_checkable
class FileStorage(Protocol):
    """File metadata and content owned by the storage layer."""

    async def get_file(self, file_id: str) -> StoredFile | None: ...
    async def read_bytes(self, file_id: str) -> bytes | None: ...
    async def put(
        self,
        owner_id: str,
        original_name: str,
        content: bytes,
        mime_type: str = 'application/octet-stream',
    ) -> StoredFile: ...
