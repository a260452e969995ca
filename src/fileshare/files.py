"""File upload endpoint guarded by the upload rate-limit policies.

  POST /api/files?name=<original name>   (raw request body is the content)

Uploads are the expensive operation the abuse controls exist for: the
route applies ``strict_upload`` (burst) and ``upload`` (sustained), then
rejects an oversized declared ``Content-Length`` with 413, all before
reading the body. Content storage itself is delegated to ``FileStorage``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from fileshare.errors import MalformedInput, PayloadTooLarge
from fileshare.protocols import FileStorage
from fileshare.ratelimit import require_rate_limit
from fileshare.security.auth_guard import get_auth_identity
from fileshare.security.token_verify import AuthIdentity

MAX_UPLOAD_BYTES = 100 * 1024 * 1024
MAX_NAME_LENGTH = 255


def create_files_router(files: FileStorage) -> APIRouter:
    """Create the upload router.

    Args:
        files: Destination storage.
    """
    router = APIRouter(tags=['files'])

    @router.post(
        '/api/files',
        status_code=201,
        dependencies=[
            Depends(require_rate_limit('strict_upload')),
            Depends(require_rate_limit('upload')),
        ],
    )
    async def upload_file(
        request: Request,
        name: str = Query(..., min_length=1, max_length=MAX_NAME_LENGTH),
        identity: AuthIdentity = Depends(get_auth_identity),
    ):
        _check_declared_length(request.headers.get('content-length'))
        content = await _read_body(request)
        if not content:
            raise MalformedInput('empty upload')

        stored = await files.put(
            identity.user_id,
            name,
            content,
            request.headers.get('content-type') or 'application/octet-stream',
        )
        return {'success': True, 'file': stored.to_dict()}

    return router


def _check_declared_length(header: str | None) -> None:
    if header is None:
        return
    try:
        declared = int(header)
    except ValueError:
        raise MalformedInput('invalid Content-Length header') from None
    if declared > MAX_UPLOAD_BYTES:
        raise PayloadTooLarge(f'upload exceeds {MAX_UPLOAD_BYTES} bytes')


async def _read_body(request: Request) -> bytes:
    # Chunked uploads declare no length; enforce the limit while streaming.
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > MAX_UPLOAD_BYTES:
            raise PayloadTooLarge(f'upload exceeds {MAX_UPLOAD_BYTES} bytes')
        chunks.append(chunk)
    return b''.join(chunks)
