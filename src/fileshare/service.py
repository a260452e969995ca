"""Sharing facade: the operations the HTTP layer and other callers use.

``SharingService`` wires the registry, the capability token codec, the
resolution service and the rate limiters behind four operations:

  - ``mint_share``: create a durable share, return its public URL.
  - ``mint_capability_link``: issue a signed capability URL.
  - ``resolve_share``: authorize one access for a share code or token.
  - ``check_rate``: apply a named rate-limit policy to an identifier.

Plus owner management: ``get_active_shares``, ``list_shares`` and
``revoke_all``.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote

from fileshare.errors import MalformedInput, ShareNotFound
from fileshare.protocols import ShareStore
from fileshare.ratelimit import RateLimiterRegistry, RateLimitResult

from .sharing.audit import (
    CAPABILITY_ISSUED,
    SHARE_CREATED,
    SHARES_REVOKED,
    ActivitySink,
    ShareActivityEvent,
    emit_activity,
    redact_token,
)
from .sharing.model import (
    AccessType,
    ClientInfo,
    Clock,
    Permission,
    RandomBytes,
    Share,
    utc_now,
)
from .sharing.registry import (
    DEFAULT_EXPIRY_HOURS,
    ShareRegistry,
    validate_share_request,
)
from .sharing.resolution import (
    Credential,
    ResolutionResult,
    ShareResolutionService,
    parse_credential,
)
from .sharing.tokens import CapabilityTokenCodec, build_capability_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MintedShare:
    """A newly created share and the links that reach it."""

    share_code: str
    public_url: str
    expires_at: datetime
    share: Share
    capability_url: str | None = None

    def to_dict(self) -> dict:
        data = {
            'share_code': self.share_code,
            'url': self.public_url,
            'expires_at': self.expires_at.isoformat(),
            'permissions': self.share.permissions.value,
            'max_downloads': self.share.max_downloads,
        }
        if self.capability_url:
            data['capability_url'] = self.capability_url
        return data


class SharingService:
    """Facade over the sharing and abuse-control core.

    Args:
        registry: Share registry.
        codec: Capability token codec.
        rate_limiters: Named rate-limit policies.
        public_base_url: Origin for share-code URLs.
        activity: Optional activity sink.
    """

    def __init__(
        self,
        registry: ShareRegistry,
        codec: CapabilityTokenCodec,
        rate_limiters: RateLimiterRegistry,
        *,
        public_base_url: str,
        activity: ActivitySink | None = None,
    ) -> None:
        self.registry = registry
        self.codec = codec
        self.rate_limiters = rate_limiters
        self.resolver = ShareResolutionService(registry, codec, activity=activity)
        self._public_base_url = public_base_url.rstrip('/')
        self._activity = activity

    @classmethod
    def build(
        cls,
        store: ShareStore,
        signing_secret: str,
        *,
        public_base_url: str,
        rate_limiters: RateLimiterRegistry | None = None,
        activity: ActivitySink | None = None,
        clock: Clock = utc_now,
        random_bytes: RandomBytes = secrets.token_bytes,
    ) -> SharingService:
        """Assemble a service from its collaborators."""
        return cls(
            ShareRegistry(store, clock=clock, random_bytes=random_bytes),
            CapabilityTokenCodec(signing_secret, clock=clock, random_bytes=random_bytes),
            rate_limiters or RateLimiterRegistry(),
            public_base_url=public_base_url,
            activity=activity,
        )

    @property
    def public_base_url(self) -> str:
        return self._public_base_url

    def public_share_url(self, share_code: str) -> str:
        return f'{self._public_base_url}/share/{quote(share_code, safe="")}'

    # ── Minting ──────────────────────────────────────────────────────

    async def mint_share(
        self,
        file_id: str,
        owner: str,
        permissions: Permission | str = Permission.BOTH,
        expires_in_hours: float = DEFAULT_EXPIRY_HOURS,
        max_downloads: int | None = None,
        *,
        file_name: str | None = None,
        with_capability_link: bool = False,
    ) -> MintedShare:
        """Create a share; optionally also a capability link bound to it."""
        share = await self.registry.create_share(
            file_id, owner, permissions, expires_in_hours, max_downloads,
        )
        await emit_activity(self._activity, ShareActivityEvent(
            event_type=SHARE_CREATED,
            file_id=file_id,
            share_id=share.id,
            share_code=share.share_code,
            actor_user_id=owner,
            detail=f'permissions={share.permissions.value} max_downloads={max_downloads}',
        ))

        capability_url = None
        if with_capability_link:
            capability_url = self._issue_link(
                self._public_base_url,
                file_id,
                file_name=file_name,
                permissions=share.permissions,
                expires_in_hours=expires_in_hours,
                max_downloads=max_downloads,
                share_code=share.share_code,
            )

        return MintedShare(
            share_code=share.share_code,
            public_url=self.public_share_url(share.share_code),
            expires_at=share.expires_at,
            share=share,
            capability_url=capability_url,
        )

    async def mint_capability_link(
        self,
        base_url: str,
        file_id: str,
        *,
        owner: str | None = None,
        file_name: str | None = None,
        permissions: Permission | str = Permission.BOTH,
        expires_in_hours: float = DEFAULT_EXPIRY_HOURS,
        max_downloads: int | None = None,
        share_code: str | None = None,
    ) -> str:
        """Issue a signed capability URL for ``file_id``.

        A download cap is only enforceable through a share's counter, so
        ``max_downloads`` without ``share_code`` creates a backing share
        (which requires ``owner``). An explicit ``share_code`` must name a
        share of the same file.
        """
        permission = validate_share_request(permissions, expires_in_hours, max_downloads)
        if not file_id:
            raise MalformedInput('file_id is required')

        if share_code is not None:
            share = await self.registry.get_by_code(share_code)
            if share is None or share.file_id != file_id:
                raise ShareNotFound('share not found')
        elif max_downloads is not None:
            if not owner:
                raise MalformedInput('owner is required for a download-capped link')
            minted = await self.mint_share(
                file_id, owner, permission, expires_in_hours, max_downloads,
            )
            share_code = minted.share_code

        url = self._issue_link(
            base_url,
            file_id,
            file_name=file_name,
            permissions=permission,
            expires_in_hours=expires_in_hours,
            max_downloads=max_downloads,
            share_code=share_code,
        )
        await emit_activity(self._activity, ShareActivityEvent(
            event_type=CAPABILITY_ISSUED,
            file_id=file_id,
            share_code=share_code or '',
            actor_user_id=owner or '',
            detail=f'permissions={permission.value} bound={share_code is not None}',
        ))
        return url

    def _issue_link(
        self,
        base_url: str,
        file_id: str,
        *,
        file_name: str | None,
        permissions: Permission,
        expires_in_hours: float,
        max_downloads: int | None,
        share_code: str | None,
    ) -> str:
        payload = self.codec.new_payload(
            file_id,
            permissions=permissions,
            expires_in_hours=expires_in_hours,
            file_name=file_name,
            max_downloads=max_downloads,
            share_code=share_code,
        )
        token, signature = self.codec.issue(payload)
        logger.info(
            'Issued capability link for file %s (token=%s)',
            file_id, redact_token(token),
        )
        return build_capability_url(base_url, file_id, token, signature, file_name)

    # ── Resolution ───────────────────────────────────────────────────

    async def resolve_share(
        self,
        share_code_or_token: str | Credential,
        action: AccessType | str = AccessType.VIEW,
        client: ClientInfo | None = None,
        file_id: str | None = None,
    ) -> ResolutionResult:
        """Authorize one access. Denials come back as a result value.

        Raises:
            Unavailable: The store failed; nothing was recorded.
        """
        credential = (
            parse_credential(share_code_or_token)
            if isinstance(share_code_or_token, str)
            else share_code_or_token
        )
        return await self.resolver.resolve(credential, action, client, file_id)

    async def authorize(
        self,
        credential: Credential,
        action: AccessType | str,
        client: ClientInfo | None = None,
        file_id: str | None = None,
    ) -> ResolutionResult:
        """Like ``resolve_share`` but raises the taxonomy error on denial."""
        return await self.resolver.authorize(credential, action, client, file_id)

    # ── Abuse control ────────────────────────────────────────────────

    def check_rate(self, identifier: str, policy_name: str) -> RateLimitResult:
        return self.rate_limiters.check(policy_name, identifier)

    # ── Owner management ─────────────────────────────────────────────

    async def get_active_shares(self, file_id: str) -> list[Share]:
        return await self.registry.get_active_shares(file_id)

    async def list_shares(self, file_id: str) -> list[Share]:
        return await self.registry.list_shares(file_id)

    async def revoke_all(self, file_id: str, actor: str = '') -> int:
        revoked = await self.registry.revoke_all(file_id)
        await emit_activity(self._activity, ShareActivityEvent(
            event_type=SHARES_REVOKED,
            file_id=file_id,
            actor_user_id=actor,
            detail=f'revoked={revoked}',
        ))
        return revoked
