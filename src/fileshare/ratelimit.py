"""Fixed-window rate limiting for expensive operations.

Counts requests per client identifier in fixed windows:

  - First request for a key, or any request after the stored window
    has passed, starts a fresh window with count 1 and is allowed.
  - Once ``count >= max_requests`` further requests are denied without
    incrementing; denied attempts never extend the window.
  - Otherwise the count is incremented and the request allowed.

State lives behind a ``RateLimitStore``. The default
``InMemoryRateLimitStore`` is process local and guarded by one lock that
``hit`` and ``purge_expired`` share, so compaction never races a check.
Losing the state (restart) fails open.

Identifier priority: ``user:<id>`` > ``ip:<address>`` > ``ip:unknown``.
All unidentifiable clients share the ``ip:unknown`` bucket.

This module provides:
  1. ``RateLimitPolicy`` / ``DEFAULT_POLICIES``: named policies.
  2. ``RateLimitStore`` / ``InMemoryRateLimitStore``: counter storage.
  3. ``FixedWindowRateLimiter`` / ``RateLimiterRegistry``: the checks.
  4. ``client_identifier`` / ``identifier_from_request``.
  5. ``RateLimitCompactor``: periodic purge task.
  6. ``require_rate_limit``: FastAPI dependency returning 429.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Protocol, runtime_checkable

from fastapi import Request, Response

from fileshare.errors import RateLimited
from fileshare.observability.metrics import RATE_LIMIT_DECISIONS_TOTAL

logger = logging.getLogger(__name__)

TimeSource = Callable[[], float]

UNKNOWN_IDENTIFIER = 'ip:unknown'


# ── Policies ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RateLimitPolicy:
    """Configuration for a single fixed-window limit."""
    name: str
    max_requests: int
    window_seconds: float
    description: str = ''

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError('max_requests must be >= 1')
        if self.window_seconds <= 0:
            raise ValueError('window_seconds must be > 0')


DEFAULT_POLICIES: dict[str, RateLimitPolicy] = {
    'upload': RateLimitPolicy(
        name='upload', max_requests=50, window_seconds=15 * 60,
        description='Uploads per client',
    ),
    'api': RateLimitPolicy(
        name='api', max_requests=1000, window_seconds=15 * 60,
        description='General API calls per client',
    ),
    'strict_upload': RateLimitPolicy(
        name='strict_upload', max_requests=10, window_seconds=60,
        description='Upload burst limit',
    ),
}


# ── Results ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one check. ``reset_at`` is unix seconds."""
    allowed: bool
    remaining: int
    reset_at: float
    total: int
    retry_after: float = 0.0

    def headers(self) -> dict[str, str]:
        return rate_limit_headers(self)


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Standard rate-limit response headers for ``result``."""
    headers = {
        'X-RateLimit-Limit': str(result.total),
        'X-RateLimit-Remaining': str(result.remaining),
        'X-RateLimit-Reset': str(math.ceil(result.reset_at)),
    }
    if not result.allowed:
        headers['Retry-After'] = str(max(1, math.ceil(result.retry_after)))
    return headers


# ── Store ─────────────────────────────────────────────────────────────


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@runtime_checkable
class RateLimitStore(Protocol):
    """Counter storage. ``hit`` must be atomic per key.

    ``hit`` returns ``(count, reset_at, allowed)`` after applying the
    fixed-window rule for one request.
    """

    def hit(
        self, key: str, max_requests: int, window_seconds: float, now: float,
    ) -> tuple[int, float, bool]: ...
    def purge_expired(self, now: float) -> int: ...
    def reset(self, key: str) -> None: ...
    def reset_all(self) -> None: ...


class InMemoryRateLimitStore:
    """Thread-safe process-local counter map."""

    def __init__(self) -> None:
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = Lock()

    def hit(
        self, key: str, max_requests: int, window_seconds: float, now: float,
    ) -> tuple[int, float, bool]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_at:
                entry = RateLimitEntry(count=1, reset_at=now + window_seconds)
                self._entries[key] = entry
                return entry.count, entry.reset_at, True

            if entry.count >= max_requests:
                return entry.count, entry.reset_at, False

            entry.count += 1
            return entry.count, entry.reset_at, True

    def purge_expired(self, now: float) -> int:
        """Drop entries whose window has passed. Returns the number removed."""
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.reset_at]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def reset_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ── Limiters ──────────────────────────────────────────────────────────


class FixedWindowRateLimiter:
    """Applies one policy against a store.

    Keys are namespaced by policy name so several policies can share one
    store without interfering.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        store: RateLimitStore | None = None,
        clock: TimeSource = time.time,
    ):
        self.policy = policy
        self.store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock

    def _key(self, identifier: str) -> str:
        return f'{self.policy.name}:{identifier or UNKNOWN_IDENTIFIER}'

    def check(self, identifier: str, now: float | None = None) -> RateLimitResult:
        now = now if now is not None else self._clock()
        count, reset_at, allowed = self.store.hit(
            self._key(identifier),
            self.policy.max_requests,
            self.policy.window_seconds,
            now,
        )
        RATE_LIMIT_DECISIONS_TOTAL.labels(
            policy=self.policy.name, allowed=str(allowed).lower(),
        ).inc()
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, self.policy.max_requests - count),
            reset_at=reset_at,
            total=self.policy.max_requests,
            retry_after=0.0 if allowed else max(reset_at - now, 0.0),
        )

    def reset(self, identifier: str) -> None:
        self.store.reset(self._key(identifier))


class RateLimiterRegistry:
    """Named policies over one shared store."""

    def __init__(
        self,
        policies: dict[str, RateLimitPolicy] | None = None,
        store: RateLimitStore | None = None,
        clock: TimeSource = time.time,
    ):
        self.store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock
        self._limiters = {
            name: FixedWindowRateLimiter(policy, self.store, clock)
            for name, policy in (policies or DEFAULT_POLICIES).items()
        }

    def get(self, policy_name: str) -> FixedWindowRateLimiter:
        try:
            return self._limiters[policy_name]
        except KeyError:
            raise KeyError(f'unknown rate limit policy: {policy_name}') from None

    def check(self, policy_name: str, identifier: str) -> RateLimitResult:
        return self.get(policy_name).check(identifier)

    def purge_expired(self, now: float | None = None) -> int:
        return self.store.purge_expired(now if now is not None else self._clock())

    @property
    def policies(self) -> dict[str, RateLimitPolicy]:
        return {name: lim.policy for name, lim in self._limiters.items()}


# ── Identifiers ──────────────────────────────────────────────────────


def client_identifier(
    user_id: str | None = None,
    forwarded_for: str | None = None,
    real_ip: str | None = None,
    client_host: str | None = None,
) -> str:
    """Derive the rate-limit identifier. User beats address beats unknown."""
    if user_id:
        return f'user:{user_id}'
    if forwarded_for:
        first_hop = forwarded_for.split(',')[0].strip()
        if first_hop:
            return f'ip:{first_hop}'
    if real_ip and real_ip.strip():
        return f'ip:{real_ip.strip()}'
    if client_host:
        return f'ip:{client_host}'
    return UNKNOWN_IDENTIFIER


def identifier_from_request(request: Request) -> str:
    identity = getattr(request.state, 'auth_identity', None)
    return client_identifier(
        user_id=getattr(identity, 'user_id', None),
        forwarded_for=request.headers.get('x-forwarded-for'),
        real_ip=request.headers.get('x-real-ip'),
        client_host=request.client.host if request.client else None,
    )


# ── Compaction ───────────────────────────────────────────────────────


class RateLimitCompactor:
    """Background task that periodically purges expired windows."""

    def __init__(self, registry: RateLimiterRegistry, interval_seconds: float = 300):
        self._registry = registry
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name='rate-limit-compactor')

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            removed = self._registry.purge_expired()
            if removed:
                logger.debug('Purged %d expired rate-limit window(s)', removed)


# ── FastAPI dependency ───────────────────────────────────────────────


def require_rate_limit(policy_name: str):
    """Dependency factory enforcing ``policy_name`` on a route.

    Reads the registry from ``request.app.state.rate_limiters``. Allowed
    requests get the rate-limit headers, also kept on ``request.state`` for
    error responses. Denied ones raise ``RateLimited``, rendered as 429.
    """

    async def _dependency(request: Request, response: Response) -> None:
        registry: RateLimiterRegistry = request.app.state.rate_limiters
        result = registry.check(policy_name, identifier_from_request(request))
        headers = result.headers()
        if not result.allowed:
            logger.warning(
                'Rate limit %s exceeded; retry after %.1fs',
                policy_name, result.retry_after,
            )
            raise RateLimited(
                f'too many requests; retry after {math.ceil(result.retry_after)}s',
                retry_after=result.retry_after,
                headers=headers,
            )
        response.headers.update(headers)
        # Error handlers re-apply these; the injected Response is dropped on raise.
        request.state.rate_limit_headers = headers

    return _dependency
