"""Owner identity middleware and dependency.

``AuthGuardMiddleware`` runs in optional mode: it sets
``request.state.auth_identity`` when a valid Bearer token is present and
otherwise lets the request through, because shared-file routes are
anonymous by design. A *present but invalid* token is still rejected
with 401 so clients notice expired sessions.

Owner-only routes enforce identity with the ``get_auth_identity``
dependency.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .token_verify import (
    AuthIdentity,
    TokenVerificationError,
    TokenVerifier,
    extract_bearer_token,
)

DEFAULT_EXEMPT_PREFIXES: tuple[str, ...] = (
    '/health',
    '/metrics',
    '/docs',
    '/openapi.json',
)


def _unauthorized(code: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={'success': False, 'error': 'unauthorized', 'code': code, 'detail': detail},
        headers={'WWW-Authenticate': 'Bearer'},
    )


class AuthGuardMiddleware(BaseHTTPMiddleware):
    """Attach the verified owner identity to the request, if any.

    Args:
        app: The ASGI application.
        token_verifier: Verifier for Bearer tokens. None disables
            verification entirely (every request is anonymous).
        exempt_prefixes: Path prefixes that skip token parsing.
        require_auth: If True, requests without credentials get 401.
    """

    def __init__(
        self,
        app,
        token_verifier: TokenVerifier | None,
        exempt_prefixes: tuple[str, ...] = DEFAULT_EXEMPT_PREFIXES,
        require_auth: bool = False,
    ) -> None:
        super().__init__(app)
        self._verifier = token_verifier
        self._exempt_prefixes = exempt_prefixes
        self._require_auth = require_auth

    def _is_exempt(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self._exempt_prefixes)

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.auth_identity = None

        if self._is_exempt(request.url.path):
            return await call_next(request)

        token = extract_bearer_token(request)
        if token and self._verifier is not None:
            try:
                request.state.auth_identity = self._verifier.verify(token)
            except TokenVerificationError as exc:
                return _unauthorized(exc.code, exc.detail)
        elif self._require_auth:
            return _unauthorized('no_credentials', 'Authentication required')

        return await call_next(request)


def get_auth_identity(request: Request) -> AuthIdentity:
    """FastAPI dependency that requires an authenticated owner.

    Raises:
        HTTPException: 401 if no authenticated identity on the request.
    """
    from fastapi import HTTPException

    identity: AuthIdentity | None = getattr(request.state, 'auth_identity', None)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={
                'success': False,
                'error': 'unauthorized',
                'detail': 'Authentication required',
            },
            headers={'WWW-Authenticate': 'Bearer'},
        )
    return identity
