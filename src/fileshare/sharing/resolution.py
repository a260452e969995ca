"""Share resolution: one authorization path for both credential kinds.

A visitor presents either a share code or a capability token/signature
pair. Both are funnelled through ``ShareResolutionService.authorize``:

  Capability path:
    1. Verify signature (``invalid_signature``) and expiry (``expired``).
    2. File id in the URL must match the token's file id (``not_found``).
    3. Token permission must cover the action (``permission_denied``).
    4. Token bound to a share code: continue on the share-code path with
       that share so its counters and cap apply. Unbound: authorized,
       untracked.

  Share-code path:
    1. Format check (``malformed_input``), lookup (``not_found``).
    2. Revoked or past expiry (``expired``).
    3. Download cap (``quota_exceeded``), permission (``permission_denied``).
    4. Atomic record: exactly one counter increment and one log entry.

Rejections never mutate state. The only side effect of a rejection is a
fire-and-forget ``share.denied`` activity event. Storage failures raise
``Unavailable`` on both ``authorize`` and ``resolve``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from fileshare.errors import (
    InvalidSignature,
    MalformedInput,
    PermissionDenied,
    ShareAccessError,
    ShareErrorCode,
    ShareExpired,
    ShareNotFound,
)
from fileshare.observability.metrics import SHARE_RESOLUTIONS_TOTAL

from .audit import (
    SHARE_ACCESSED,
    SHARE_DENIED,
    ActivitySink,
    ShareActivityEvent,
    emit_activity,
    redact_token,
)
from .model import (
    AccessType,
    ClientInfo,
    Share,
    check_usable,
    is_valid_share_code,
)
from .registry import ShareRegistry
from .tokens import CapabilityPayload, CapabilityTokenCodec

logger = logging.getLogger(__name__)

ACCESS_METHOD_SHARE_CODE = 'share_code'
ACCESS_METHOD_CAPABILITY = 'capability'


# ── Credentials ──────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ShareCodeCredential:
    code: str


@dataclass(frozen=True, slots=True)
class CapabilityCredential:
    token: str
    signature: str


Credential = Union[ShareCodeCredential, CapabilityCredential]


def parse_credential(value: str) -> Credential:
    """Parse the single-string credential form.

    ``<token>.<signature>`` is a capability credential (the token alphabet
    never contains ``.``); anything else is treated as a share code.
    """
    if isinstance(value, str) and '.' in value:
        token, _, signature = value.rpartition('.')
        return CapabilityCredential(token=token, signature=signature)
    return ShareCodeCredential(code=value if isinstance(value, str) else '')


def credential_from_request(
    identifier: str,
    token: str | None = None,
    signature: str | None = None,
) -> Credential:
    """Pick the credential from route parts: query pair beats path id."""
    if token is not None or signature is not None:
        return CapabilityCredential(token=token or '', signature=signature or '')
    return ShareCodeCredential(code=identifier)


# ── Result ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    """Outcome of resolving a credential for one action.

    ``reason`` is None exactly when ``authorized`` is True.
    """

    authorized: bool
    file_id: str | None = None
    access_method: str = ''
    share: Share | None = None
    payload: CapabilityPayload | None = None
    reason: ShareErrorCode | None = None
    detail: str = ''

    @property
    def tracked(self) -> bool:
        return self.share is not None

    def to_dict(self) -> dict:
        return {
            'authorized': self.authorized,
            'file_id': self.file_id,
            'access_method': self.access_method,
            'reason': self.reason.value if self.reason else None,
            'detail': self.detail,
            'share': self.share.to_dict() if self.share else None,
        }


# ── Service ──────────────────────────────────────────────────────────


def _parse_action(action: AccessType | str) -> AccessType:
    try:
        return AccessType(action)
    except ValueError:
        raise MalformedInput('action must be view or download') from None


class ShareResolutionService:
    """Authorize access to a shared file for one credential and action.

    Args:
        registry: Share registry (owns the store and clock).
        codec: Capability token codec.
        activity: Optional activity sink; failures never propagate.
    """

    def __init__(
        self,
        registry: ShareRegistry,
        codec: CapabilityTokenCodec,
        *,
        activity: ActivitySink | None = None,
    ) -> None:
        self._registry = registry
        self._codec = codec
        self._activity = activity

    async def authorize(
        self,
        credential: Credential,
        action: AccessType | str,
        client: ClientInfo | None = None,
        file_id: str | None = None,
    ) -> ResolutionResult:
        """Authorize and record one access, raising on any rejection.

        Raises:
            ShareAccessError: The matching taxonomy subclass.
            Unavailable: The store failed; nothing was recorded.
        """
        client = client or ClientInfo()
        path = _method_for(credential)
        try:
            access = _parse_action(action)
            if isinstance(credential, CapabilityCredential):
                result = await self._authorize_capability(
                    credential, access, client, file_id,
                )
            elif isinstance(credential, ShareCodeCredential):
                result = await self._authorize_share_code(
                    credential.code, access, client, file_id,
                )
            else:
                raise MalformedInput('unsupported credential')
        except ShareAccessError as exc:
            SHARE_RESOLUTIONS_TOTAL.labels(path=path, outcome=exc.code.value).inc()
            await emit_activity(self._activity, ShareActivityEvent(
                event_type=SHARE_DENIED,
                file_id=file_id or '',
                share_code=_share_code_for(credential),
                token_prefix=_token_prefix_for(credential),
                access_type=str(getattr(action, 'value', action)),
                access_method=path,
                ip_address=client.ip_address,
                detail=f'{exc.code.value}: {exc.detail}',
            ))
            raise

        SHARE_RESOLUTIONS_TOTAL.labels(path=path, outcome='ok').inc()
        await emit_activity(self._activity, ShareActivityEvent(
            event_type=SHARE_ACCESSED,
            file_id=result.file_id or '',
            share_id=result.share.id if result.share else None,
            share_code=result.share.share_code if result.share else '',
            token_prefix=_token_prefix_for(credential),
            access_type=access.value,
            access_method=path,
            ip_address=client.ip_address,
        ))
        return result

    async def resolve(
        self,
        credential: Credential,
        action: AccessType | str,
        client: ClientInfo | None = None,
        file_id: str | None = None,
    ) -> ResolutionResult:
        """Like ``authorize`` but returns denials as a result value.

        ``Unavailable`` still propagates: a storage outage is not a denial.
        """
        try:
            return await self.authorize(credential, action, client, file_id)
        except ShareAccessError as exc:
            return ResolutionResult(
                authorized=False,
                file_id=file_id,
                access_method=_method_for(credential),
                reason=exc.code,
                detail=exc.detail,
            )

    # ── Paths ─────────────────────────────────────────────────────────

    async def _authorize_capability(
        self,
        credential: CapabilityCredential,
        action: AccessType,
        client: ClientInfo,
        file_id: str | None,
    ) -> ResolutionResult:
        verified = self._codec.verify(credential.token, credential.signature)
        if not verified.signature_ok:
            raise InvalidSignature('invalid or tampered capability link')
        if verified.is_expired:
            raise ShareExpired('capability link has expired')

        payload = verified.payload
        if file_id is not None and file_id != payload.file_id:
            raise ShareNotFound('file not found')
        if not payload.permissions.allows(action):
            raise PermissionDenied(f'{action.value} not permitted by this link')

        if payload.share_code is None:
            return ResolutionResult(
                authorized=True,
                file_id=payload.file_id,
                access_method=ACCESS_METHOD_CAPABILITY,
                payload=payload,
            )

        share = await self._registry.store.get_by_code(payload.share_code)
        if share is None or share.file_id != payload.file_id:
            raise ShareNotFound('share not found')
        share = await self._use_share(share, action, client)
        return ResolutionResult(
            authorized=True,
            file_id=share.file_id,
            access_method=ACCESS_METHOD_CAPABILITY,
            share=share,
            payload=payload,
        )

    async def _authorize_share_code(
        self,
        code: str,
        action: AccessType,
        client: ClientInfo,
        file_id: str | None,
    ) -> ResolutionResult:
        if not is_valid_share_code(code):
            raise MalformedInput('share code must be 16 uppercase hex characters')
        share = await self._registry.store.get_by_code(code)
        if share is None:
            raise ShareNotFound('share not found')
        if file_id is not None and file_id != share.file_id:
            raise ShareNotFound('share not found')
        share = await self._use_share(share, action, client)
        return ResolutionResult(
            authorized=True,
            file_id=share.file_id,
            access_method=ACCESS_METHOD_SHARE_CODE,
            share=share,
        )

    async def _use_share(
        self,
        share: Share,
        action: AccessType,
        client: ClientInfo,
    ) -> Share:
        # Fast rejection on the snapshot; the store re-checks atomically.
        check_usable(share, action, self._registry.now())
        return await self._registry.record_access(share.id, action, client)


def _method_for(credential: Credential) -> str:
    if isinstance(credential, CapabilityCredential):
        return ACCESS_METHOD_CAPABILITY
    return ACCESS_METHOD_SHARE_CODE


def _share_code_for(credential: Credential) -> str:
    if isinstance(credential, ShareCodeCredential) and is_valid_share_code(credential.code):
        return credential.code
    return ''


def _token_prefix_for(credential: Credential) -> str:
    if isinstance(credential, CapabilityCredential):
        return redact_token(credential.token)
    return ''
