"""Share codes, capability tokens and the share resolution path."""

from .model import (
    AccessLogEntry,
    AccessType,
    ClientInfo,
    Permission,
    Share,
    check_usable,
    generate_share_code,
    is_valid_share_code,
)
from .tokens import (
    CapabilityPayload,
    CapabilityTokenCodec,
    VerifiedPayload,
    build_capability_url,
)
from .audit import (
    InMemoryActivitySink,
    LoggingActivitySink,
    ShareActivityEvent,
    emit_activity,
    redact_string,
    redact_token,
)
from .registry import ShareRegistry, validate_share_request
from .resolution import (
    CapabilityCredential,
    Credential,
    ResolutionResult,
    ShareCodeCredential,
    ShareResolutionService,
    credential_from_request,
    parse_credential,
)

__all__ = [
    'AccessLogEntry',
    'AccessType',
    'CapabilityCredential',
    'CapabilityPayload',
    'CapabilityTokenCodec',
    'ClientInfo',
    'Credential',
    'InMemoryActivitySink',
    'LoggingActivitySink',
    'Permission',
    'ResolutionResult',
    'Share',
    'ShareActivityEvent',
    'ShareCodeCredential',
    'ShareRegistry',
    'ShareResolutionService',
    'VerifiedPayload',
    'build_capability_url',
    'check_usable',
    'credential_from_request',
    'emit_activity',
    'generate_share_code',
    'is_valid_share_code',
    'parse_credential',
    'redact_string',
    'redact_token',
    'validate_share_request',
]
