"""Async PostgREST client wrapper for Supabase.

This is the single point of Supabase HTTP interaction for the share store
and the activity sink. Every call carries the configured timeout so no
store round trip waits unbounded.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import httpx

from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)

# Module-level shared client for connection pooling in app runtimes.
_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


@dataclass(frozen=True, slots=True)
class PostgrestFilter:
    column: str
    op: str
    value: Any


Filters = Sequence[PostgrestFilter] | Mapping[str, Any] | None


def _encode_filter_value(op: str, value: Any) -> str:
    if op == "is":
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    if op == "in":
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("in operator requires an iterable of values")
        items = [json.dumps(v) if isinstance(v, str) else str(v) for v in value]
        return f"({','.join(items)})"

    if value is None:
        raise ValueError(f"{op} does not support None; use op='is' with value=None")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filters_to_params(filters: Filters) -> dict[str, str]:
    """Render filters as PostgREST query params (``col=op.value``).

    Mapping values are either a plain value (``eq``) or an ``(op, value)``
    tuple.
    """
    if not filters:
        return {}

    if isinstance(filters, Mapping):
        params: dict[str, str] = {}
        for column, spec in filters.items():
            op, value = spec if isinstance(spec, tuple) and len(spec) == 2 else ("eq", spec)
            params[str(column)] = f"{op}.{_encode_filter_value(str(op), value)}"
        return params

    return {f.column: f"{f.op}.{_encode_filter_value(f.op, f.value)}" for f in filters}


def _error_class_for(status_code: int) -> type[SupabaseError]:
    if status_code in (401, 403):
        return SupabaseAuthError
    if status_code == 404:
        return SupabaseNotFoundError
    if status_code == 409:
        return SupabaseConflictError
    return SupabaseError


class SupabaseClient:
    """Minimal async PostgREST client (service role) with typed results."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._supabase_url = supabase_url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout_seconds = float(timeout_seconds)
        self._client = http_client or _get_shared_async_client()

    @property
    def base_rest_url(self) -> str:
        return f"{self._supabase_url}/rest/v1"

    def _headers(self, *, representation: bool = False) -> dict[str, str]:
        # Never log these headers.
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }
        if representation:
            headers["Prefer"] = "return=representation"
        return headers

    def _raise_for_error(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        message = resp.text
        code = details = hint = None
        try:
            payload = resp.json()
            if isinstance(payload, dict):
                message = payload.get("message") or message
                code = payload.get("code")
                details = payload.get("details")
                hint = payload.get("hint")
        except ValueError:
            pass

        # Avoid including secrets in the exception string.
        raise _error_class_for(resp.status_code)(
            status_code=resp.status_code,
            message=message,
            code=code,
            details=details,
            hint=hint,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
        representation: bool = False,
    ) -> Any:
        resp = await self._client.request(
            method,
            f"{self.base_rest_url}/{path}",
            params=params,
            json=json_body,
            headers=self._headers(representation=representation),
            timeout=self._timeout_seconds,
        )
        self._raise_for_error(resp)
        if not resp.content:
            return None
        return resp.json()

    async def _request_rows(self, method: str, path: str, **kwargs: Any) -> list[dict[str, Any]]:
        payload = await self._request(method, path, **kwargs)
        if not isinstance(payload, list):
            raise SupabaseError(
                status_code=500,
                message=f"expected list response from {method} {path}",
            )
        return payload

    async def select(
        self,
        table: str,
        filters: Filters = None,
        *,
        columns: str = "*",
        limit: int | None = None,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        params = _filters_to_params(filters)
        params["select"] = columns
        if limit is not None:
            params["limit"] = str(int(limit))
        if order:
            params["order"] = order
        return await self._request_rows("GET", table, params=params)

    async def insert(
        self,
        table: str,
        data: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    ) -> list[dict[str, Any]]:
        return await self._request_rows(
            "POST", table, json_body=data, representation=True,
        )

    async def update(
        self,
        table: str,
        filters: Filters,
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        return await self._request_rows(
            "PATCH",
            table,
            params=_filters_to_params(filters),
            json_body=data,
            representation=True,
        )

    async def rpc(self, function_name: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self._request(
            "POST", f"rpc/{function_name}", json_body=dict(params or {}),
        )
