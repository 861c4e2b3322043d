from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from edu_console.core.errors import MuxApiError, MuxNotConfigured, TransferFailed
from edu_console.core.settings import Settings
from edu_console.pipeline.files import LocalVideoFile
from edu_console.schemas.mux import MediaAsset, UploadLink, UploadSlot

logger = logging.getLogger(__name__)


def _reason_for_status(status_code: int) -> str:
    if status_code == 404:
        return "not_found"
    if status_code == 401:
        return "unauthorized"
    if status_code == 403:
        return "forbidden"
    return "service"


async def _iter_file(file: LocalVideoFile, *, chunk_size: int, on_bytes: Callable[[int], None] | None):
    sent = 0
    with file.path.open("rb") as fh:
        while True:
            chunk = await asyncio.to_thread(fh.read, chunk_size)
            if not chunk:
                break
            sent += len(chunk)
            if on_bytes is not None:
                on_bytes(sent)
            yield chunk


class MuxClient:
    """Minimal Mux Video client (direct uploads + asset lookups).

    Endpoints used:
      POST https://api.mux.com/video/v1/uploads
      GET  https://api.mux.com/video/v1/uploads/{upload_id}
      GET  https://api.mux.com/video/v1/assets/{asset_id}
      GET  https://api.mux.com/video/v1/assets
    plus a PUT of the raw bytes to the one-time upload URL Mux hands back.

    Parsing is tolerant; anything unexpected in an asset payload degrades to
    "preparing" rather than raising.
    """

    def __init__(
        self,
        *,
        token_id: str,
        token_secret: str,
        base_url: str = "https://api.mux.com",
        timeout: float = 30.0,
        cors_origin: str = "*",
        playback_policy: str = "public",
        encoding_tier: str = "baseline",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._auth = (token_id, token_secret)
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._cors_origin = cors_origin
        self._playback_policy = playback_policy
        self._encoding_tier = encoding_tier
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "MuxClient":
        if not settings.mux_configured:
            raise MuxNotConfigured("Mux credentials not configured (MUX_TOKEN_ID / MUX_TOKEN_SECRET missing)")
        return cls(
            token_id=str(settings.mux_token_id),
            token_secret=str(settings.mux_token_secret),
            base_url=settings.mux_api_base_url,
            timeout=settings.mux_timeout_seconds,
            cors_origin=settings.mux_cors_origin,
            playback_policy=settings.mux_playback_policy,
            encoding_tier=settings.mux_encoding_tier,
            **kwargs,
        )

    def _client(self, *, timeout: httpx.Timeout | float | None = None, auth: bool = True) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout if timeout is None else timeout,
            auth=self._auth if auth else None,
            transport=self._transport,
        )

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with self._client() as client:
                res = await client.request(method, f"{self._base}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise MuxApiError("network", f"Mux API request failed: {e}") from e

        if res.status_code >= 400:
            reason = _reason_for_status(res.status_code)
            raise MuxApiError(
                reason,
                f"Mux API error {res.status_code} on {method} {path}: {res.text[:500]}",
                status_code=res.status_code,
            )
        try:
            payload = res.json()
        except ValueError as e:
            raise MuxApiError(
                "service",
                f"Mux API returned a non-JSON body on {method} {path}: {res.text[:200]}",
                status_code=res.status_code,
            ) from e
        return payload if isinstance(payload, dict) else {}

    async def create_upload_slot(self) -> UploadSlot:
        body = {
            "cors_origin": self._cors_origin,
            "new_asset_settings": {
                "playback_policy": [self._playback_policy],
                "encoding_tier": self._encoding_tier,
            },
        }
        payload = await self._request_json("POST", "/video/v1/uploads", json=body)
        data = payload.get("data") or {}
        handle = str(data.get("id") or "").strip()
        url = str(data.get("url") or "").strip()
        if not handle or not url:
            raise MuxApiError("service", "Mux upload response missing id or url")
        logger.info("Created Mux direct upload %s", handle)
        return UploadSlot(upload_handle=handle, upload_target_url=url)

    async def transfer(
        self,
        *,
        upload_target_url: str,
        file: LocalVideoFile,
        chunk_size: int = 8 * 1024 * 1024,
        on_bytes: Callable[[int], None] | None = None,
    ) -> None:
        # Transfer time scales with file size, so only connecting is bounded.
        timeout = httpx.Timeout(None, connect=self._timeout, pool=self._timeout)
        headers = {"Content-Type": file.mime_type, "Content-Length": str(file.size_bytes)}
        content: AsyncIterator[bytes] = _iter_file(file, chunk_size=chunk_size, on_bytes=on_bytes)
        try:
            async with self._client(timeout=timeout, auth=False) as client:
                res = await client.put(upload_target_url, content=content, headers=headers)
        except httpx.HTTPError as e:
            raise TransferFailed(f"Upload failed: {e}") from e

        if not res.is_success:
            raise TransferFailed("Upload failed", status_code=res.status_code, body=res.text[:500])

    async def get_upload_link(self, upload_handle: str) -> UploadLink:
        handle = (upload_handle or "").strip()
        if not handle:
            raise ValueError("upload_handle is required")
        payload = await self._request_json("GET", f"/video/v1/uploads/{handle}")
        data = payload.get("data") or {}
        link = UploadLink.from_api(data)
        if not link.upload_handle:
            link.upload_handle = handle
        return link

    async def get_asset(self, asset_id: str) -> MediaAsset:
        aid = (asset_id or "").strip()
        if not aid:
            raise ValueError("asset_id is required")
        payload = await self._request_json("GET", f"/video/v1/assets/{aid}")
        asset = MediaAsset.from_api(payload.get("data") or {})
        if not asset.asset_id:
            asset.asset_id = aid
        logger.debug(
            "Mux asset %s status=%s playback_ids=%d duration=%s",
            asset.asset_id,
            asset.raw_status,
            len(asset.stream_ids),
            asset.duration_seconds,
        )
        return asset

    async def list_assets(self, *, limit: int = 25, page: int = 1) -> list[MediaAsset]:
        payload = await self._request_json(
            "GET", "/video/v1/assets", params={"limit": int(limit), "page": int(page)}
        )
        items = payload.get("data") or []
        return [MediaAsset.from_api(d) for d in items if isinstance(d, dict)]
