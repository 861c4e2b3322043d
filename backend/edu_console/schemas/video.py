from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from edu_console.mux.urls import playback_url, thumbnail_url
from edu_console.pipeline.ingest import IngestOutcome
from edu_console.pipeline.reconcile import ReconcileResult
from edu_console.schemas.mux import MediaAsset


class DurationPublic(BaseModel):
    seconds: int
    source: str
    display: str


class IngestOutcomePublic(BaseModel):
    uploadId: str
    assetId: str | None
    streamId: str | None
    videoUrl: str
    playbackUrl: str | None = None
    thumbnailUrl: str | None = None
    duration: DurationPublic
    processingState: str
    processingNote: str | None = None

    table: str
    rowId: Any = None
    strategy: str | None
    reusedExisting: bool
    videoFieldsApplied: bool

    @classmethod
    def from_outcome(cls, outcome: IngestOutcome) -> "IngestOutcomePublic":
        sid = outcome.stream_id
        return cls(
            uploadId=outcome.upload_handle,
            assetId=outcome.asset_id,
            streamId=sid,
            videoUrl=outcome.video.video_url,
            playbackUrl=playback_url(sid) if sid else None,
            thumbnailUrl=thumbnail_url(sid, width=640) if sid else None,
            duration=DurationPublic(
                seconds=outcome.duration.seconds,
                source=outcome.duration.source,
                display=outcome.duration.display(),
            ),
            processingState=outcome.processing_state,
            processingNote=outcome.processing_note,
            table=outcome.commit.table,
            rowId=outcome.commit.row_id,
            strategy=outcome.commit.strategy,
            reusedExisting=outcome.commit.reused_existing,
            videoFieldsApplied=outcome.commit.video_fields_applied,
        )


class ReconcilePublic(BaseModel):
    assetId: str | None
    uploadId: str | None = None
    status: str
    streamId: str | None
    rowsUpdated: int

    @classmethod
    def from_result(cls, result: ReconcileResult) -> "ReconcilePublic":
        return cls(
            assetId=result.asset_id,
            uploadId=result.upload_handle,
            status=result.status,
            streamId=result.stream_id,
            rowsUpdated=result.rows_updated,
        )


class UploadSlotPublic(BaseModel):
    uploadId: str
    uploadUrl: str


class UploadLinkPublic(BaseModel):
    id: str
    status: str | None
    assetId: str | None


class AssetPublic(BaseModel):
    id: str
    status: str
    playbackIds: list[str] = Field(default_factory=list)
    duration: float | None = None
    playbackUrl: str | None = None
    thumbnailUrl: str | None = None

    @classmethod
    def from_asset(cls, asset: MediaAsset) -> "AssetPublic":
        sid = asset.first_stream_id
        return cls(
            id=asset.asset_id,
            status=asset.raw_status or asset.status,
            playbackIds=list(asset.stream_ids),
            duration=asset.duration_seconds,
            playbackUrl=playback_url(sid) if sid else None,
            thumbnailUrl=thumbnail_url(sid, width=64, height=48, fit_mode="crop") if sid else None,
        )
