"""Share domain model.

Implements the durable records behind file sharing:

  - ``Share`` is one sharing grant for one file: a share code, a
    permission set, an expiry, an optional download cap, and live
    view/download counters.
  - ``AccessLogEntry`` is the append-only record of one successful access.

Invariants:
  - ``share_code`` is 16 uppercase hex characters drawn from 8 CSPRNG
    bytes and never changes once issued.
  - ``download_count`` never exceeds ``max_downloads``; the cap is checked
    before the increment, in the same atomic step.
  - ``is_active`` only ever moves from True to False.

This module provides:
  1. ``Permission`` / ``AccessType`` value enums.
  2. ``Share`` / ``AccessLogEntry`` / ``ClientInfo`` records.
  3. ``generate_share_code`` / ``is_valid_share_code``.
  4. ``check_usable``: the single usability predicate shared by the
     resolution service and every store implementation.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from fileshare.errors import (
    PermissionDenied,
    QuotaExceeded,
    ShareExpired,
)

# ── Constants ─────────────────────────────────────────────────────────

SHARE_CODE_BYTES = 8
SHARE_CODE_PATTERN = re.compile(r'^[A-F0-9]{16}$')

Clock = Callable[[], datetime]
RandomBytes = Callable[[int], bytes]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Value types ───────────────────────────────────────────────────────


class Permission(str, Enum):
    VIEW = 'view'
    DOWNLOAD = 'download'
    BOTH = 'both'

    def allows(self, action: AccessType) -> bool:
        if self is Permission.BOTH:
            return True
        return self.value == action.value


class AccessType(str, Enum):
    VIEW = 'view'
    DOWNLOAD = 'download'


# ── Share codes ───────────────────────────────────────────────────────


def generate_share_code(random_bytes: RandomBytes = secrets.token_bytes) -> str:
    """Generate a 16-character uppercase hex share code."""
    return random_bytes(SHARE_CODE_BYTES).hex().upper()


def is_valid_share_code(code: object) -> bool:
    return isinstance(code, str) and SHARE_CODE_PATTERN.match(code) is not None


# ── Records ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ClientInfo:
    """Request-side details captured into the access log."""

    ip_address: str = 'unknown'
    user_agent: str = 'unknown'
    referrer: str = 'unknown'


@dataclass
class Share:
    """One sharing grant for one file.

    Attributes:
        id: Opaque identifier assigned at creation.
        file_id: The shared file.
        share_code: 16 uppercase hex characters, globally unique.
        shared_by: Owner identity.
        permissions: view, download, or both.
        max_downloads: Optional positive download cap.
        download_count: Successful downloads recorded so far.
        view_count: Successful views recorded so far.
        expires_at: Absolute expiry.
        is_active: False once revoked.
    """

    id: str
    file_id: str
    share_code: str
    shared_by: str
    permissions: Permission
    expires_at: datetime
    max_downloads: int | None = None
    download_count: int = 0
    view_count: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def downloads_remaining(self) -> int | None:
        if self.max_downloads is None:
            return None
        return max(0, self.max_downloads - self.download_count)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'file_id': self.file_id,
            'share_code': self.share_code,
            'shared_by': self.shared_by,
            'permissions': self.permissions.value,
            'max_downloads': self.max_downloads,
            'download_count': self.download_count,
            'view_count': self.view_count,
            'expires_at': self.expires_at.isoformat(),
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class AccessLogEntry:
    """Append-only record of one successful access."""

    id: str
    share_id: str
    access_type: AccessType
    ip_address: str
    user_agent: str
    referrer: str
    accessed_at: datetime


# ── Usability ─────────────────────────────────────────────────────────


def check_usable(share: Share, action: AccessType, now: datetime) -> None:
    """Raise the matching taxonomy error if ``share`` cannot serve ``action``.

    Order matters and is part of the contract: lifecycle (revoked or
    expired) first, then the download cap, then permissions.
    """
    if not share.is_active:
        raise ShareExpired('share has been revoked')
    if share.is_expired(now):
        raise ShareExpired(f'share expired at {share.expires_at.isoformat()}')
    if (
        action is AccessType.DOWNLOAD
        and share.max_downloads is not None
        and share.download_count >= share.max_downloads
    ):
        raise QuotaExceeded('download limit reached for this share')
    if not share.permissions.allows(action):
        raise PermissionDenied(f'{action.value} not permitted for this share')
