"""Fileshare configuration settings.

ShareSettings is the single configuration object accepted by create_app().
It is intentionally a plain dataclass (not env-coupled) so tests can inject
config without touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

MIN_SIGNING_SECRET_LENGTH = 32

DEFAULT_CORS_ORIGINS: tuple[str, ...] = (
    "http://localhost:5173",
    "http://localhost:3000",
)


@dataclass(frozen=True, slots=True)
class ShareSettings:
    """Configuration for the fileshare FastAPI application.

    All fields have sensible defaults for local development.
    Non-local environments must supply real values for signing_secret,
    supabase_url and supabase_service_role_key.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Link signing ───────────────────────────────────────────────
    signing_secret: str = ""
    """HMAC key for capability links. Must be >=32 chars in non-local."""

    public_base_url: str = "http://localhost:3000"
    """Origin used to build share and capability URLs."""

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    """Supabase project URL (e.g. https://xyz.supabase.co)."""

    supabase_service_role_key: str = ""
    """Supabase service-role key for PostgREST calls. Never log this."""

    store_timeout_seconds: float = 10.0
    """Timeout applied to every store round trip."""

    # ── Owner auth ─────────────────────────────────────────────────
    jwt_secret: str = ""
    """HS256 secret for owner tokens when JWKS is not used (local dev)."""

    jwt_audience: str = "authenticated"
    """Expected ``aud`` claim on owner tokens."""

    # ── Abuse control ──────────────────────────────────────────────
    rate_limit_sweep_seconds: float = 300.0
    """Interval between purges of expired rate-limit windows."""

    # ── CORS ───────────────────────────────────────────────────────
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    """Allowed CORS origins."""

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.signing_secret:
            errors.append(f"{self.environment}: signing_secret is required")
        if self.store_timeout_seconds <= 0:
            errors.append(f"{self.environment}: store_timeout_seconds must be > 0")
        if self.rate_limit_sweep_seconds <= 0:
            errors.append(
                f"{self.environment}: rate_limit_sweep_seconds must be > 0"
            )
        if not self.is_local:
            if len(self.signing_secret) < MIN_SIGNING_SECRET_LENGTH:
                errors.append(
                    f"{self.environment}: signing_secret must be >= "
                    f"{MIN_SIGNING_SECRET_LENGTH} characters"
                )
            if not self.supabase_url:
                errors.append(f"{self.environment}: supabase_url is required")
            if not self.supabase_service_role_key:
                errors.append(
                    f"{self.environment}: supabase_service_role_key is required"
                )
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> ShareSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct ShareSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw else DEFAULT_CORS_ORIGINS
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            signing_secret=env.get("URL_SIGNING_SECRET", ""),
            public_base_url=env.get("PUBLIC_BASE_URL", "http://localhost:3000"),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            store_timeout_seconds=float(env.get("STORE_TIMEOUT_SECONDS", "10")),
            jwt_secret=env.get("SUPABASE_JWT_SECRET", ""),
            jwt_audience=env.get("SUPABASE_AUDIENCE", "authenticated"),
            rate_limit_sweep_seconds=float(
                env.get("RATE_LIMIT_SWEEP_SECONDS", "300")
            ),
            cors_origins=cors,
        )
