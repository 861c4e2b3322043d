from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import httpx

from edu_console.core.errors import StoreError, StoreErrorKind
from edu_console.store.base import Row

logger = logging.getLogger(__name__)

# PGRST204: column not in schema cache. 42703: undefined_column. 42P01: undefined_table.
SCHEMA_ERROR_CODES = {"PGRST204", "42703", "42P01", "PGRST205"}


def _filter_value(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def _match_params(match: Mapping[str, Any] | None) -> dict[str, str]:
    return {k: _filter_value(v) for k, v in (match or {}).items()}


def classify_response(res: httpx.Response) -> StoreError:
    """Turn a PostgREST error body ({code, message, details, hint}) into a tagged StoreError."""
    try:
        body = res.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    code = str(body.get("code") or "") or None
    message = str(body.get("message") or res.text or f"HTTP {res.status_code}")
    details = body.get("details")
    hint = body.get("hint")

    kind: StoreErrorKind
    if code in SCHEMA_ERROR_CODES:
        kind = "schema"
    elif res.status_code >= 500:
        kind = "transport"
    else:
        kind = "validation"
    return StoreError(
        kind,
        message,
        code=code,
        details=str(details) if details is not None else None,
        hint=str(hint) if hint is not None else None,
    )


def _json_body(res: httpx.Response) -> Any:
    if not res.content:
        return None
    try:
        return res.json()
    except ValueError as e:
        raise StoreError("transport", f"Store returned a non-JSON body (HTTP {res.status_code})") from e


class PostgrestStore:
    """Supabase-style PostgREST access over httpx (`<url>/rest/v1/<table>`)."""

    def __init__(
        self,
        *,
        url: str,
        key: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base = f"{url.rstrip('/')}/rest/v1"
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
        )

    async def _send(self, method: str, table: str, **kwargs: Any) -> httpx.Response:
        try:
            res = await self._client.request(method, f"{self._base}/{table}", **kwargs)
        except httpx.HTTPError as e:
            raise StoreError("transport", f"Store request failed: {e}") from e
        if res.status_code >= 400:
            err = classify_response(res)
            logger.debug("Store %s %s failed: kind=%s code=%s msg=%s", method, table, err.kind, err.code, err)
            raise err
        return res

    async def select(
        self,
        table: str,
        *,
        columns: Sequence[str] = ("*",),
        match: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        params = _match_params(match)
        params["select"] = ",".join(columns)
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(int(limit))
        res = await self._send("GET", table, params=params)
        rows = _json_body(res)
        return list(rows) if isinstance(rows, list) else []

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row:
        res = await self._send(
            "POST",
            table,
            json=[dict(record)],
            headers={"Prefer": "return=representation"},
        )
        rows = _json_body(res)
        if isinstance(rows, list) and rows:
            return dict(rows[0])
        return dict(record)

    async def update(self, table: str, values: Mapping[str, Any], *, match: Mapping[str, Any]) -> int:
        if not match:
            # PostgREST refuses unfiltered updates; fail the same way locally.
            raise StoreError("validation", "update requires a match filter")
        res = await self._send(
            "PATCH",
            table,
            params=_match_params(match),
            json=dict(values),
            headers={"Prefer": "return=representation"},
        )
        rows = _json_body(res)
        return len(rows) if isinstance(rows, list) else 0

    async def aclose(self) -> None:
        await self._client.aclose()
