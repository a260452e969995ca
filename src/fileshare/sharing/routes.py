"""Owner share-management API endpoints.

  POST   /api/files/{file_id}/share        → create a share (code + URL)
  GET    /api/files/{file_id}/share        → list shares with counters
  DELETE /api/files/{file_id}/share        → revoke every active share
  POST   /api/files/{file_id}/share/link   → issue a signed capability URL

Auth contract:
  - All endpoints require an authenticated owner (AuthIdentity).
  - Only the file's owner may manage its shares. Creation answers 403
    for a non-owner; listing and revocation answer 404 so file ids of
    other users are not confirmed.
  - Every endpoint is rate-limited by the ``api`` policy.

Validation failures raise ``MalformedInput`` from the registry, and
ownership checks raise ``ShareNotFound`` or ``PermissionDenied``. The
app-level handler renders them with the ``api`` rate-limit headers.

This module provides:
  ``create_share_router``: FastAPI router factory with injected deps.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from fileshare.errors import PermissionDenied, ShareNotFound
from fileshare.protocols import FileStorage, StoredFile
from fileshare.ratelimit import require_rate_limit
from fileshare.security.auth_guard import get_auth_identity
from fileshare.security.token_verify import AuthIdentity
from fileshare.service import SharingService

from .registry import DEFAULT_EXPIRY_HOURS


# ── Request schemas ──────────────────────────────────────────────────


class CreateShareRequest(BaseModel):
    """Request body for share creation. Ranges are checked by the registry."""

    permissions: str = Field(default='both', description='view, download or both')
    expires_in: float = Field(
        default=DEFAULT_EXPIRY_HOURS, description='Share lifetime in hours',
    )
    max_downloads: int | None = Field(default=None, description='Optional download cap')
    capability_link: bool = Field(
        default=False, description='Also issue a signed link bound to the share',
    )


class CreateLinkRequest(BaseModel):
    """Request body for a signed capability link."""

    permissions: str = 'both'
    expires_in: float = DEFAULT_EXPIRY_HOURS
    max_downloads: int | None = None
    share_code: str | None = Field(
        default=None, description='Bind the link to an existing share',
    )


# ── Shared helpers ───────────────────────────────────────────────────


async def _owned_file(
    files: FileStorage,
    file_id: str,
    user_id: str,
    *,
    hide_foreign: bool,
) -> StoredFile:
    """Return the file if ``user_id`` owns it, else raise the ownership error."""
    stored = await files.get_file(file_id)
    if stored is None:
        raise ShareNotFound('File not found')
    if stored.owner_id != user_id:
        if hide_foreign:
            raise ShareNotFound('File not found')
        raise PermissionDenied("You don't have permission to share this file")
    return stored


# ── Route factory ────────────────────────────────────────────────────


def create_share_router(
    service: SharingService,
    files: FileStorage,
) -> APIRouter:
    """Create the owner share-management router.

    Args:
        service: Sharing facade.
        files: File metadata lookup for ownership checks.

    Returns:
        FastAPI router with share lifecycle routes.
    """
    router = APIRouter(
        tags=['shares'],
        dependencies=[Depends(require_rate_limit('api'))],
    )

    @router.post('/api/files/{file_id}/share')
    async def create_share(
        file_id: str,
        body: CreateShareRequest,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """Create a share for a file the caller owns."""
        stored = await _owned_file(files, file_id, identity.user_id, hide_foreign=False)
        minted = await service.mint_share(
            stored.id,
            identity.user_id,
            body.permissions,
            body.expires_in,
            body.max_downloads,
            file_name=stored.original_name,
            with_capability_link=body.capability_link,
        )
        return {'success': True, 'share_data': minted.to_dict()}

    @router.get('/api/files/{file_id}/share')
    async def list_shares(
        file_id: str,
        include_inactive: bool = False,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """List a file's shares with their live counters."""
        stored = await _owned_file(files, file_id, identity.user_id, hide_foreign=True)
        if include_inactive:
            shares = await service.list_shares(file_id)
        else:
            shares = await service.get_active_shares(file_id)
        return {
            'success': True,
            'shares': [
                {
                    **s.to_dict(),
                    'url': service.public_share_url(s.share_code),
                    'remaining_downloads': s.downloads_remaining(),
                }
                for s in shares
            ],
        }

    @router.delete('/api/files/{file_id}/share')
    async def revoke_shares(
        file_id: str,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """Revoke every active share of a file. Idempotent."""
        stored = await _owned_file(files, file_id, identity.user_id, hide_foreign=True)
        revoked = await service.revoke_all(file_id, actor=identity.user_id)
        return {'success': True, 'revoked': revoked}

    @router.post('/api/files/{file_id}/share/link')
    async def create_link(
        file_id: str,
        body: CreateLinkRequest,
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        """Issue a signed capability URL for a file the caller owns."""
        stored = await _owned_file(files, file_id, identity.user_id, hide_foreign=False)
        url = await service.mint_capability_link(
            service.public_base_url,
            stored.id,
            owner=identity.user_id,
            file_name=stored.original_name,
            permissions=body.permissions,
            expires_in_hours=body.expires_in,
            max_downloads=body.max_downloads,
            share_code=body.share_code,
        )
        return {'success': True, 'url': url}

    return router
