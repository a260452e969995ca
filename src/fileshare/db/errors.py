"""Supabase client error hierarchy.

Kept small and dependency-free so the share store can map them onto the
sharing taxonomy without leaking httpx.Response objects (or secrets).
"""

from __future__ import annotations

from dataclasses import dataclass

# Postgres SQLSTATE for unique_violation.
UNIQUE_VIOLATION = "23505"


@dataclass(frozen=True, slots=True)
class SupabaseError(Exception):
    """Base Supabase error for PostgREST requests."""

    status_code: int
    message: str
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION

    def __str__(self) -> str:
        bits: list[str] = [f"SupabaseError(status={self.status_code})", self.message]
        if self.code:
            bits.append(f"code={self.code}")
        if self.details:
            bits.append(f"details={self.details}")
        return " ".join(bits)


class SupabaseAuthError(SupabaseError):
    """401/403: bad service key or row-level security rejection."""


class SupabaseNotFoundError(SupabaseError):
    """404: missing table, view or RPC function (migration not applied)."""


class SupabaseConflictError(SupabaseError):
    """409: unique or foreign-key violation."""
