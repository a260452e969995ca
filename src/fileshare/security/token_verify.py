"""Owner access-token verification.

File owners authenticate with a Supabase-issued JWT:

  - Bearer transport only: ``Authorization: Bearer <access_token>``.
  - RS256 via the project JWKS endpoint when ``supabase_url`` is set,
    HS256 with a static secret otherwise (local dev and tests).
  - ``sub`` becomes the owner id and the ``user:<id>`` rate-limit key.

Capability links and share codes are separate credentials and never
pass through here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import jwt
from jwt import PyJWKClient, PyJWKClientError
from starlette.requests import Request

# ── Constants ─────────────────────────────────────────────────────────

DEFAULT_AUDIENCE = 'authenticated'
JWKS_CACHE_TTL_SECONDS = 300
BEARER_PREFIX = 'Bearer '

# ── Types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AuthIdentity:
    """Verified owner identity.

    Attributes:
        user_id: Subject of the token; owns files and shares.
        email: Lower-cased email claim, empty when absent.
        role: Role claim (typically ``authenticated``).
        raw_claims: Full decoded payload.
    """

    user_id: str
    email: str = ''
    role: str = 'authenticated'
    raw_claims: dict[str, Any] = field(default_factory=dict)


class TokenVerificationError(Exception):
    """Raised when an owner token is rejected."""

    def __init__(self, code: str, detail: str = '') -> None:
        self.code = code
        self.detail = detail
        super().__init__(f'{code}: {detail}' if detail else code)


class KeyProvider(Protocol):
    """Resolves the verification key for an (unverified) token."""

    def get_signing_key(self, token: str) -> Any: ...


class JWKSKeyProvider:
    """Signing keys from a JWKS endpoint, cached by PyJWKClient."""

    def __init__(
        self,
        jwks_url: str,
        cache_ttl: int = JWKS_CACHE_TTL_SECONDS,
    ) -> None:
        self._client = PyJWKClient(
            jwks_url,
            cache_jwk_set=True,
            lifespan=cache_ttl,
        )

    def get_signing_key(self, token: str) -> Any:
        try:
            return self._client.get_signing_key_from_jwt(token).key
        except PyJWKClientError as exc:
            raise TokenVerificationError('jwks_fetch_error', str(exc)) from exc


class StaticKeyProvider:
    """Single shared secret for HS256 tokens."""

    def __init__(self, secret: str) -> None:
        self._secret = secret

    def get_signing_key(self, token: str) -> str:
        return self._secret


# ── Verifier ─────────────────────────────────────────────────────────


class TokenVerifier:
    """Verifies owner JWTs and extracts the identity.

    Args:
        key_provider: Resolves signing keys.
        audience: Expected ``aud`` claim.
        algorithms: Accepted algorithms.
    """

    def __init__(
        self,
        key_provider: KeyProvider,
        audience: str = DEFAULT_AUDIENCE,
        algorithms: list[str] | None = None,
    ) -> None:
        self._key_provider = key_provider
        self._audience = audience
        self._algorithms = algorithms or ['RS256']

    def verify(self, token: str) -> AuthIdentity:
        """Return the identity carried by ``token``.

        Raises:
            TokenVerificationError: On any verification failure.
        """
        if not token or not token.strip():
            raise TokenVerificationError('empty_token')

        key = self._key_provider.get_signing_key(token)
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=self._algorithms,
                audience=self._audience,
                options={'require': ['sub', 'exp', 'aud']},
            )
        except jwt.ExpiredSignatureError:
            raise TokenVerificationError('token_expired') from None
        except jwt.InvalidAudienceError:
            raise TokenVerificationError(
                'invalid_audience', f'expected {self._audience}',
            ) from None
        except jwt.InvalidTokenError as exc:
            raise TokenVerificationError('invalid_token', str(exc)) from None

        user_id = claims.get('sub')
        if not user_id or not isinstance(user_id, str):
            raise TokenVerificationError('missing_sub_claim')

        email = claims.get('email') or ''
        return AuthIdentity(
            user_id=user_id,
            email=email.lower() if isinstance(email, str) else '',
            role=claims.get('role', 'authenticated'),
            raw_claims=claims,
        )


def extract_bearer_token(request: Request) -> str | None:
    """Return the Bearer token from the Authorization header, if any."""
    auth_header = request.headers.get('authorization', '')
    if auth_header.startswith(BEARER_PREFIX):
        return auth_header[len(BEARER_PREFIX):].strip()
    return None


def create_token_verifier(
    supabase_url: str | None = None,
    jwt_secret: str | None = None,
    audience: str = DEFAULT_AUDIENCE,
) -> TokenVerifier | None:
    """Build a verifier from settings; None when owner auth is unconfigured.

    A static ``jwt_secret`` takes precedence so local stacks can point at
    a Supabase URL while still signing their own test tokens.
    """
    if jwt_secret:
        return TokenVerifier(
            StaticKeyProvider(jwt_secret), audience=audience, algorithms=['HS256'],
        )
    if supabase_url:
        jwks_url = f'{supabase_url.rstrip("/")}/auth/v1/.well-known/jwks.json'
        return TokenVerifier(
            JWKSKeyProvider(jwks_url), audience=audience, algorithms=['RS256'],
        )
    return None
