"""Capability tokens for direct file links.

A capability token is a self-contained, signed bearer credential that
carries its own file id, permissions, expiry and optional download cap.
Authenticity is checked without any database lookup.

Wire format (two query parameters):
  - ``token``: base64url (unpadded) of the compact, key-sorted JSON payload.
  - ``signature``: lowercase hex HMAC-SHA-256 of the ``token`` text,
    keyed with the server signing secret.

Verification order:
  1. Structural check of both strings (alphabet and length only).
  2. HMAC recomputed over the encoded token and compared in constant time.
  3. Only then is the payload base64-decoded and parsed.

Every failure in steps 1-3 produces the same ``VerifiedPayload.invalid()``
result, so callers cannot learn *why* a token was rejected.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote, urlencode

from .model import (
    Clock,
    Permission,
    RandomBytes,
    is_valid_share_code,
    utc_now,
)

# ── Constants ─────────────────────────────────────────────────────────

NONCE_BYTES = 16
DEFAULT_EXPIRY_HOURS = 24
MAX_TOKEN_LENGTH = 4096

_TOKEN_RE = re.compile(r'^[A-Za-z0-9_-]+$')
_SIGNATURE_RE = re.compile(r'^[0-9a-f]{64}$')


def _to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


# ── Payload ───────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class CapabilityPayload:
    """Logical contents of a capability token.

    ``expires_at`` is epoch milliseconds. ``share_code`` optionally binds
    the token to a durable Share so its usage is counted.
    """

    file_id: str
    permissions: Permission
    expires_at: int
    nonce: str
    file_name: str | None = None
    max_downloads: int | None = None
    share_code: str | None = None

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at / 1000, tz=timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            'file_id': self.file_id,
            'permissions': self.permissions.value,
            'expires_at': self.expires_at,
            'nonce': self.nonce,
            'file_name': self.file_name,
            'max_downloads': self.max_downloads,
            'share_code': self.share_code,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Any) -> CapabilityPayload:
        """Build a payload from decoded JSON. Raises ValueError on any defect."""
        if not isinstance(data, dict):
            raise ValueError('payload must be an object')

        file_id = data.get('file_id')
        nonce = data.get('nonce')
        expires_at = data.get('expires_at')
        file_name = data.get('file_name')
        max_downloads = data.get('max_downloads')
        share_code = data.get('share_code')

        if not isinstance(file_id, str) or not file_id:
            raise ValueError('file_id')
        if not isinstance(nonce, str) or not nonce:
            raise ValueError('nonce')
        if not isinstance(expires_at, int) or isinstance(expires_at, bool):
            raise ValueError('expires_at')
        if file_name is not None and not isinstance(file_name, str):
            raise ValueError('file_name')
        if max_downloads is not None and (
            not isinstance(max_downloads, int)
            or isinstance(max_downloads, bool)
            or max_downloads < 1
        ):
            raise ValueError('max_downloads')
        if share_code is not None and not is_valid_share_code(share_code):
            raise ValueError('share_code')

        return cls(
            file_id=file_id,
            permissions=Permission(data.get('permissions')),
            expires_at=expires_at,
            nonce=nonce,
            file_name=file_name,
            max_downloads=max_downloads,
            share_code=share_code,
        )


@dataclass(frozen=True, slots=True)
class VerifiedPayload:
    """Outcome of ``CapabilityTokenCodec.verify``.

    ``payload`` is None exactly when the signature (or decoding) failed.
    """

    is_valid: bool
    is_expired: bool
    payload: CapabilityPayload | None = None
    remaining_uses: int | None = None

    @property
    def signature_ok(self) -> bool:
        return self.payload is not None

    @classmethod
    def invalid(cls) -> VerifiedPayload:
        return cls(is_valid=False, is_expired=True)


# ── Codec ─────────────────────────────────────────────────────────────


class CapabilityTokenCodec:
    """Issues and verifies HMAC-signed capability tokens.

    Args:
        secret: Server-held signing secret. Must be non-empty.
        clock: Returns the current UTC time.
        random_bytes: CSPRNG used for nonces.
    """

    def __init__(
        self,
        secret: str,
        *,
        clock: Clock = utc_now,
        random_bytes: RandomBytes = secrets.token_bytes,
    ) -> None:
        if not secret:
            raise ValueError('signing secret is required')
        self._key = secret.encode('utf-8')
        self._clock = clock
        self._random_bytes = random_bytes

    def new_payload(
        self,
        file_id: str,
        *,
        permissions: Permission = Permission.BOTH,
        expires_in_hours: float = DEFAULT_EXPIRY_HOURS,
        file_name: str | None = None,
        max_downloads: int | None = None,
        share_code: str | None = None,
    ) -> CapabilityPayload:
        expires_at = self._clock() + timedelta(hours=expires_in_hours)
        return CapabilityPayload(
            file_id=file_id,
            permissions=Permission(permissions),
            expires_at=_to_epoch_ms(expires_at),
            nonce=self._random_bytes(NONCE_BYTES).hex(),
            file_name=file_name,
            max_downloads=max_downloads,
            share_code=share_code,
        )

    def _sign(self, encoded_token: str) -> str:
        return hmac.new(
            self._key, encoded_token.encode('utf-8'), hashlib.sha256,
        ).hexdigest()

    def issue(self, payload: CapabilityPayload) -> tuple[str, str]:
        """Return ``(encoded_token, signature)`` for ``payload``."""
        serialized = json.dumps(
            payload.to_dict(), sort_keys=True, separators=(',', ':'),
        ).encode('utf-8')
        encoded = base64.urlsafe_b64encode(serialized).rstrip(b'=').decode('ascii')
        return encoded, self._sign(encoded)

    def verify(
        self,
        encoded_token: str,
        signature: str,
        usage_count: int | None = None,
    ) -> VerifiedPayload:
        """Verify a token/signature pair and decode its payload."""
        token = encoded_token if isinstance(encoded_token, str) else ''
        sig = signature if isinstance(signature, str) else ''

        well_formed = (
            0 < len(token) <= MAX_TOKEN_LENGTH
            and _TOKEN_RE.match(token) is not None
            and _SIGNATURE_RE.match(sig) is not None
        )
        expected = self._sign(token)
        matches = hmac.compare_digest(
            expected.encode('ascii'), sig.encode('utf-8', 'replace'),
        )
        if not (well_formed and matches):
            return VerifiedPayload.invalid()

        try:
            payload = _decode(token)
        except ValueError:
            return VerifiedPayload.invalid()

        is_expired = _to_epoch_ms(self._clock()) > payload.expires_at

        remaining: int | None = None
        if payload.max_downloads is not None and usage_count is not None:
            remaining = max(0, payload.max_downloads - usage_count)

        has_uses = remaining is None or remaining > 0
        return VerifiedPayload(
            is_valid=not is_expired and has_uses,
            is_expired=is_expired,
            payload=payload,
            remaining_uses=remaining,
        )


def _decode(token: str) -> CapabilityPayload:
    padded = token + '=' * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode('ascii'))
        data = json.loads(raw.decode('utf-8'))
    except (binascii.Error, UnicodeDecodeError, ValueError, RecursionError) as exc:
        raise ValueError('undecodable token') from exc
    return CapabilityPayload.from_dict(data)


# ── Links ─────────────────────────────────────────────────────────────


def build_capability_url(
    base_url: str,
    file_id: str,
    token: str,
    signature: str,
    file_name: str | None = None,
) -> str:
    """Build the public URL carrying a capability token."""
    params = {'token': token, 'signature': signature}
    if file_name:
        params['filename'] = file_name
    return (
        f'{base_url.rstrip("/")}/api/shared/{quote(file_id, safe="")}'
        f'?{urlencode(params)}'
    )
