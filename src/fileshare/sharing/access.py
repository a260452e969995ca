"""Public shared-file access endpoints.

  GET /api/shared/{id}?action=view|download[&token=&signature=]
  GET /share/{code}  → redirect to the view action for a share code

Credential selection:
  - ``token`` and/or ``signature`` present: capability path, ``{id}`` is
    the file id and must match the token.
  - Otherwise ``{id}`` is a share code.

Responses:
  - view: file metadata plus share info (permissions, remaining
    downloads, expiry) and follow-up URLs.
  - download: file bytes with ``Content-Disposition: attachment`` and
    no-cache headers.
  - denial: the taxonomy error, rendered by the app-level handler.

The file is fetched after the access is recorded, so an access whose
backing file has vanished is still counted.

This module provides:
  ``client_info_from_request``: access-log details for a request.
  ``create_share_access_router``: FastAPI router factory.
"""

from __future__ import annotations

from typing import Literal
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse, Response

from fileshare.errors import ShareNotFound
from fileshare.protocols import FileStorage
from fileshare.ratelimit import require_rate_limit
from fileshare.service import SharingService

from .model import ClientInfo
from .resolution import CapabilityCredential, ResolutionResult, credential_from_request

_NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}


def client_info_from_request(request: Request) -> ClientInfo:
    forwarded = request.headers.get('x-forwarded-for', '')
    ip = (
        forwarded.split(',')[0].strip()
        or request.headers.get('x-real-ip', '').strip()
        or (request.client.host if request.client else '')
        or 'unknown'
    )
    return ClientInfo(
        ip_address=ip,
        user_agent=request.headers.get('user-agent') or 'unknown',
        referrer=request.headers.get('referer') or 'unknown',
    )


def _content_disposition(filename: str) -> str:
    fallback = filename.encode('ascii', 'ignore').decode('ascii').replace('"', '') or 'download'
    return f'attachment; filename="{fallback}"; filename*=UTF-8\'\'{quote(filename)}'


def _share_info(result: ResolutionResult) -> dict:
    if result.share is not None:
        return {
            'permissions': result.share.permissions.value,
            'remaining_downloads': result.share.downloads_remaining(),
            'expires_at': result.share.expires_at.isoformat(),
        }
    payload = result.payload
    return {
        'permissions': payload.permissions.value,
        'remaining_downloads': None,
        'expires_at': payload.expires_at_datetime.isoformat(),
    }


def create_share_access_router(
    service: SharingService,
    files: FileStorage,
) -> APIRouter:
    """Create the public shared-file access router.

    Args:
        service: Sharing facade.
        files: File metadata and content.

    Returns:
        FastAPI router with the access and redirect routes.
    """
    router = APIRouter(
        tags=['shared-access'],
        dependencies=[Depends(require_rate_limit('api'))],
    )

    @router.get('/api/shared/{share_id}')
    async def access_shared(
        share_id: str,
        request: Request,
        action: Literal['view', 'download'] = 'view',
        token: str | None = Query(default=None, max_length=8192),
        signature: str | None = Query(default=None, max_length=256),
    ):
        """Authorize one access and serve metadata or bytes."""
        credential = credential_from_request(share_id, token, signature)
        file_id = share_id if isinstance(credential, CapabilityCredential) else None

        result = await service.authorize(
            credential, action, client_info_from_request(request), file_id,
        )

        stored = await files.get_file(result.file_id)
        if stored is None:
            raise ShareNotFound('File not found')

        if action == 'download':
            content = await files.read_bytes(stored.id)
            if content is None:
                raise ShareNotFound('File not found')
            return Response(
                content=content,
                media_type=stored.mime_type,
                headers={
                    'Content-Disposition': _content_disposition(stored.original_name),
                    **_NO_CACHE_HEADERS,
                },
            )

        return {
            'success': True,
            'file': {
                **stored.to_dict(),
                'view_url': str(request.url.include_query_params(action='view')),
                'download_url': str(request.url.include_query_params(action='download')),
            },
            'share_info': _share_info(result),
        }

    @router.get('/share/{share_code}', include_in_schema=False)
    async def share_page(share_code: str):
        return RedirectResponse(
            url=f'/api/shared/{quote(share_code, safe="")}?action=view',
            status_code=307,
        )

    return router
