"""In-memory store implementations for local development and tests.

These are used when ENVIRONMENT=local. They satisfy the protocol
interfaces but keep everything in dicts (no persistence across restarts).

``InMemoryShareStore`` serializes every mutation behind one
``asyncio.Lock`` so ``record_access`` is a true check-and-increment:
concurrent downloads against a capped share can never overshoot
``max_downloads``. Callers always receive copies, never live records.
"""

from __future__ import annotations

import asyncio
import dataclasses
import uuid
from datetime import datetime

from fileshare.errors import ShareCodeCollision, ShareNotFound
from fileshare.protocols import StoredFile
from fileshare.sharing.model import (
    AccessLogEntry,
    AccessType,
    ClientInfo,
    Share,
    check_usable,
)


class InMemoryShareStore:
    def __init__(self) -> None:
        self._shares: dict[str, Share] = {}
        self._by_code: dict[str, str] = {}
        self._log: list[AccessLogEntry] = []
        self._lock = asyncio.Lock()

    async def insert_share(self, share: Share) -> Share:
        async with self._lock:
            if share.share_code in self._by_code:
                raise ShareCodeCollision(share.share_code)
            stored = dataclasses.replace(share)
            self._shares[stored.id] = stored
            self._by_code[stored.share_code] = stored.id
            return dataclasses.replace(stored)

    async def get_by_code(self, share_code: str) -> Share | None:
        share_id = self._by_code.get(share_code)
        if share_id is None:
            return None
        return dataclasses.replace(self._shares[share_id])

    async def get_by_id(self, share_id: str) -> Share | None:
        share = self._shares.get(share_id)
        return dataclasses.replace(share) if share else None

    async def list_for_file(self, file_id: str) -> list[Share]:
        shares = [s for s in self._shares.values() if s.file_id == file_id]
        shares.sort(key=lambda s: s.created_at)
        return [dataclasses.replace(s) for s in shares]

    async def deactivate_for_file(self, file_id: str, now: datetime) -> int:
        async with self._lock:
            revoked = 0
            for share in self._shares.values():
                if share.file_id == file_id and share.is_active:
                    share.is_active = False
                    share.updated_at = now
                    revoked += 1
            return revoked

    async def record_access(
        self,
        share_id: str,
        access_type: AccessType,
        client: ClientInfo,
        now: datetime,
    ) -> tuple[Share, AccessLogEntry]:
        async with self._lock:
            share = self._shares.get(share_id)
            if share is None:
                raise ShareNotFound('share not found')
            check_usable(share, access_type, now)

            entry = AccessLogEntry(
                id=str(uuid.uuid4()),
                share_id=share.id,
                access_type=access_type,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                referrer=client.referrer,
                accessed_at=now,
            )
            await self._append_log(entry)

            if access_type is AccessType.DOWNLOAD:
                share.download_count += 1
            else:
                share.view_count += 1
            share.updated_at = now
            return dataclasses.replace(share), entry

    async def _append_log(self, entry: AccessLogEntry) -> None:
        # Runs between the usability check and the counter write.
        self._log.append(entry)

    async def list_access_log(self, share_id: str) -> list[AccessLogEntry]:
        return [e for e in self._log if e.share_id == share_id]


class InMemoryFileStorage:
    def __init__(self) -> None:
        self._files: dict[str, StoredFile] = {}
        self._content: dict[str, bytes] = {}

    def add(
        self,
        owner_id: str,
        original_name: str,
        content: bytes = b'',
        mime_type: str = 'application/octet-stream',
        file_id: str | None = None,
    ) -> StoredFile:
        """Synchronous seeding helper for local dev and tests."""
        stored = StoredFile(
            id=file_id or str(uuid.uuid4()),
            owner_id=owner_id,
            original_name=original_name,
            mime_type=mime_type,
            size=len(content),
        )
        self._files[stored.id] = stored
        self._content[stored.id] = content
        return stored

    async def get_file(self, file_id: str) -> StoredFile | None:
        return self._files.get(file_id)

    async def read_bytes(self, file_id: str) -> bytes | None:
        return self._content.get(file_id)

    async def put(
        self,
        owner_id: str,
        original_name: str,
        content: bytes,
        mime_type: str = 'application/octet-stream',
    ) -> StoredFile:
        return self.add(owner_id, original_name, content, mime_type)
