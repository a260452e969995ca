"""Share registry: creation, listing, revocation and usage recording.

Owns the lifecycle rules for durable shares on top of a ``ShareStore``:

  - ``create_share`` validates inputs, draws a fresh share code and
    retries on unique-constraint collisions (at most
    ``MAX_CODE_ATTEMPTS`` codes, then ``Unavailable``).
  - ``get_active_shares`` lists usable shares, oldest first.
  - ``revoke_all`` deactivates every active share of a file. Idempotent.
  - ``record_access`` delegates to the store's atomic check-and-increment.

Limits:
  - Expiry between 1 hour and 1 year (8760 hours).
  - ``max_downloads`` between 1 and 10000 when given.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta

from fileshare.errors import MalformedInput, ShareCodeCollision, Unavailable
from fileshare.observability.metrics import (
    SHARE_CODE_COLLISIONS_TOTAL,
    SHARES_CREATED_TOTAL,
)
from fileshare.protocols import ShareStore

from .model import (
    AccessType,
    ClientInfo,
    Clock,
    Permission,
    RandomBytes,
    Share,
    generate_share_code,
    is_valid_share_code,
    utc_now,
)

logger = logging.getLogger(__name__)

# ── Limits ────────────────────────────────────────────────────────────

MIN_EXPIRY_HOURS = 1
MAX_EXPIRY_HOURS = 8760  # 1 year.
MIN_DOWNLOADS = 1
MAX_DOWNLOADS = 10000
DEFAULT_EXPIRY_HOURS = 24
MAX_CODE_ATTEMPTS = 5


def validate_share_request(
    permissions: object,
    expires_in_hours: object,
    max_downloads: object = None,
) -> Permission:
    """Validate share creation inputs; return the parsed permission."""
    try:
        permission = Permission(permissions)
    except ValueError:
        raise MalformedInput(
            f'permissions must be one of: {[p.value for p in Permission]}',
        ) from None

    if (
        not isinstance(expires_in_hours, (int, float))
        or isinstance(expires_in_hours, bool)
        or not MIN_EXPIRY_HOURS <= expires_in_hours <= MAX_EXPIRY_HOURS
    ):
        raise MalformedInput(
            f'expires_in must be between {MIN_EXPIRY_HOURS} and '
            f'{MAX_EXPIRY_HOURS} hours',
        )

    if max_downloads is not None and (
        not isinstance(max_downloads, int)
        or isinstance(max_downloads, bool)
        or not MIN_DOWNLOADS <= max_downloads <= MAX_DOWNLOADS
    ):
        raise MalformedInput(
            f'max_downloads must be between {MIN_DOWNLOADS} and {MAX_DOWNLOADS}',
        )

    return permission


class ShareRegistry:
    """Durable share lifecycle over an injected ``ShareStore``.

    Args:
        store: Durable record store.
        clock: Returns the current UTC time.
        random_bytes: CSPRNG used for share codes.
    """

    def __init__(
        self,
        store: ShareStore,
        *,
        clock: Clock = utc_now,
        random_bytes: RandomBytes = secrets.token_bytes,
    ) -> None:
        self._store = store
        self._clock = clock
        self._random_bytes = random_bytes

    @property
    def store(self) -> ShareStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    async def create_share(
        self,
        file_id: str,
        owner: str,
        permissions: Permission | str = Permission.BOTH,
        expires_in_hours: float = DEFAULT_EXPIRY_HOURS,
        max_downloads: int | None = None,
    ) -> Share:
        """Create and persist a new share with a fresh share code."""
        permission = validate_share_request(
            permissions, expires_in_hours, max_downloads,
        )
        if not file_id or not owner:
            raise MalformedInput('file_id and owner are required')

        now = self._clock()
        expires_at = now + timedelta(hours=expires_in_hours)

        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            share = Share(
                id=str(uuid.uuid4()),
                file_id=file_id,
                share_code=generate_share_code(self._random_bytes),
                shared_by=owner,
                permissions=permission,
                expires_at=expires_at,
                max_downloads=max_downloads,
                created_at=now,
                updated_at=now,
            )
            try:
                created = await self._store.insert_share(share)
            except ShareCodeCollision as exc:
                SHARE_CODE_COLLISIONS_TOTAL.inc()
                logger.warning(
                    'Share code collision on attempt %d/%d (code=%s)',
                    attempt, MAX_CODE_ATTEMPTS, exc.share_code,
                )
                continue
            SHARES_CREATED_TOTAL.inc()
            return created

        raise Unavailable(
            f'could not allocate a unique share code after {MAX_CODE_ATTEMPTS} attempts',
        )

    async def get_by_code(self, share_code: str) -> Share | None:
        """Look up a share by code. Malformed codes never reach the store."""
        if not is_valid_share_code(share_code):
            raise MalformedInput('share code must be 16 uppercase hex characters')
        return await self._store.get_by_code(share_code)

    async def get_active_shares(self, file_id: str) -> list[Share]:
        now = self._clock()
        shares = await self._store.list_for_file(file_id)
        return [s for s in shares if s.is_active and not s.is_expired(now)]

    async def list_shares(self, file_id: str) -> list[Share]:
        """All shares for a file including revoked and expired ones."""
        return await self._store.list_for_file(file_id)

    async def revoke_all(self, file_id: str) -> int:
        revoked = await self._store.deactivate_for_file(file_id, self._clock())
        logger.info('Revoked %d share(s) for file %s', revoked, file_id)
        return revoked

    async def record_access(
        self,
        share_id: str,
        access_type: AccessType,
        client: ClientInfo,
    ) -> Share:
        """Atomically re-check usability, bump the counter, log the access."""
        share, _entry = await self._store.record_access(
            share_id, access_type, client, self._clock(),
        )
        return share
