"""Share access error taxonomy.

Every authorization failure in the sharing core maps to one stable,
machine-readable code so clients (including the owner listing/revocation
UI) branch on ``error`` rather than parsing free text.

Authorization failures (``ShareAccessError`` subclasses) are terminal for
the request and never mutate state. Storage failures are a separate
family: ``Unavailable`` is surfaced to the caller as retryable, and
``ShareCodeCollision`` is consumed internally by the registry's retry loop.
"""

from __future__ import annotations

from enum import Enum


class ShareErrorCode(str, Enum):
    """Stable outcome codes for share resolution and abuse control."""

    INVALID_SIGNATURE = 'invalid_signature'
    EXPIRED = 'expired'
    NOT_FOUND = 'not_found'
    PERMISSION_DENIED = 'permission_denied'
    QUOTA_EXCEEDED = 'quota_exceeded'
    RATE_LIMITED = 'rate_limited'
    MALFORMED_INPUT = 'malformed_input'
    PAYLOAD_TOO_LARGE = 'payload_too_large'
    UNAVAILABLE = 'unavailable'


HTTP_STATUS_BY_CODE: dict[ShareErrorCode, int] = {
    ShareErrorCode.INVALID_SIGNATURE: 403,
    ShareErrorCode.EXPIRED: 410,
    ShareErrorCode.NOT_FOUND: 404,
    ShareErrorCode.PERMISSION_DENIED: 403,
    ShareErrorCode.QUOTA_EXCEEDED: 403,
    ShareErrorCode.RATE_LIMITED: 429,
    ShareErrorCode.MALFORMED_INPUT: 400,
    ShareErrorCode.PAYLOAD_TOO_LARGE: 413,
    ShareErrorCode.UNAVAILABLE: 503,
}


def http_status_for(code: ShareErrorCode) -> int:
    return HTTP_STATUS_BY_CODE.get(code, 500)


# ── Authorization failures ────────────────────────────────────────────


class ShareAccessError(Exception):
    """Base class for recoverable-by-caller authorization failures."""

    code: ShareErrorCode = ShareErrorCode.MALFORMED_INPUT

    def __init__(self, detail: str = '') -> None:
        self.detail = detail
        super().__init__(f'{self.code.value}: {detail}' if detail else self.code.value)

    @property
    def http_status(self) -> int:
        return http_status_for(self.code)

    def to_dict(self) -> dict:
        return {
            'success': False,
            'error': self.code.value,
            'detail': self.detail,
        }


class InvalidSignature(ShareAccessError):
    """Capability token failed verification (or could not be decoded)."""

    code = ShareErrorCode.INVALID_SIGNATURE


class ShareExpired(ShareAccessError):
    """Share or token is past expiry, or the share was revoked."""

    code = ShareErrorCode.EXPIRED


class ShareNotFound(ShareAccessError):
    """Unknown share code, or file id does not match the credential."""

    code = ShareErrorCode.NOT_FOUND


class PermissionDenied(ShareAccessError):
    """Requested action is not covered by the grant's permissions."""

    code = ShareErrorCode.PERMISSION_DENIED


class QuotaExceeded(ShareAccessError):
    """Download cap reached."""

    code = ShareErrorCode.QUOTA_EXCEEDED


class RateLimited(ShareAccessError):
    """Client exceeded a rate-limit policy."""

    code = ShareErrorCode.RATE_LIMITED

    def __init__(
        self,
        detail: str = '',
        retry_after: float = 0.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.retry_after = retry_after
        self.headers = headers or {}
        super().__init__(detail)


class MalformedInput(ShareAccessError):
    """Input failed structural validation before any lookup."""

    code = ShareErrorCode.MALFORMED_INPUT


class PayloadTooLarge(ShareAccessError):
    """Upload body exceeds the size limit."""

    code = ShareErrorCode.PAYLOAD_TOO_LARGE


# ── Storage failures ──────────────────────────────────────────────────


class Unavailable(Exception):
    """The durable store could not complete the operation. Retryable."""

    code = ShareErrorCode.UNAVAILABLE

    def __init__(self, detail: str = 'storage unavailable') -> None:
        self.detail = detail
        super().__init__(detail)

    @property
    def http_status(self) -> int:
        return http_status_for(self.code)

    def to_dict(self) -> dict:
        return {
            'success': False,
            'error': self.code.value,
            'detail': self.detail,
        }


class ShareCodeCollision(Exception):
    """Insert hit the unique constraint on ``share_code``."""

    def __init__(self, share_code: str) -> None:
        self.share_code = share_code
        super().__init__(f'share code collision: {share_code}')
