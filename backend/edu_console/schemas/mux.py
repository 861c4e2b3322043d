from __future__ import annotations

import math
from typing import Any, Literal

from pydantic import BaseModel, Field

AssetStatus = Literal["preparing", "ready", "errored"]

_KNOWN_ASSET_STATUSES = {"preparing", "ready", "errored"}


class UploadSlot(BaseModel):
    upload_handle: str = Field(min_length=1)
    upload_target_url: str = Field(min_length=1)


class UploadLink(BaseModel):
    upload_handle: str
    status: str | None = None
    asset_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "UploadLink":
        asset_id = (data.get("asset_id") or "").strip() or None
        return cls(
            upload_handle=str(data.get("id") or ""),
            status=(str(data["status"]).lower() if data.get("status") else None),
            asset_id=asset_id,
        )

    @property
    def failed(self) -> bool:
        return self.status in {"errored", "cancelled", "timed_out"}


class MediaAsset(BaseModel):
    """Read-only snapshot of an asset owned by the transcoding service."""

    asset_id: str
    status: AssetStatus
    raw_status: str = ""
    stream_ids: list[str] = Field(default_factory=list)
    duration_seconds: float | None = None

    @property
    def first_stream_id(self) -> str | None:
        # "ready" with no playback id yet is a legitimate short window.
        return self.stream_ids[0] if self.stream_ids else None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MediaAsset":
        raw_status = str(data.get("status") or "").strip().lower()
        status = raw_status if raw_status in _KNOWN_ASSET_STATUSES else "preparing"

        stream_ids: list[str] = []
        for p in data.get("playback_ids") or []:
            if isinstance(p, dict) and p.get("id"):
                stream_ids.append(str(p["id"]))

        duration = data.get("duration")
        try:
            duration = float(duration) if duration is not None else None
        except (TypeError, ValueError):
            duration = None
        if duration is not None and (not math.isfinite(duration) or duration <= 0):
            duration = None

        return cls(
            asset_id=str(data.get("id") or ""),
            status=status,
            raw_status=raw_status,
            stream_ids=stream_ids,
            duration_seconds=duration,
        )
